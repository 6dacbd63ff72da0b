"""HTTP helpers shared by the session bridge and Cloud API providers."""

from typing import Any, Dict

import httpx

from errors import (
    AuthenticationExpired,
    DeliveryError,
    RateLimited,
    RecipientInvalid,
    TransportUnavailable,
)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        if body.get("message"):
            return str(body["message"])
    return str(body)


def raise_for_response(response: httpx.Response) -> None:
    """Raise the ``DeliveryError`` matching a failed response."""
    if response.is_success:
        return
    status = response.status_code
    message = f"HTTP {status}: {_error_message(response)}"
    if status in (401, 403):
        raise AuthenticationExpired(message)
    if status == 429:
        raise RateLimited(message)
    if status in (400, 404) and any(word in message.lower() for word in ("recipient", "phone", "number", "jid")):
        raise RecipientInvalid(message)
    if status >= 500 or status == 408:
        raise TransportUnavailable(message)
    raise DeliveryError(message)


async def request_json(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
    """Perform a request, translating transport failures and error statuses."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise TransportUnavailable(f"timed out calling {url}") from e
    except httpx.TransportError as e:
        raise TransportUnavailable(f"cannot reach {url}: {e}") from e
    raise_for_response(response)
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"data": body}
