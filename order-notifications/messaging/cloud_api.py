"""WhatsApp Cloud API (Graph API) provider."""

import logging
from typing import Optional

import httpx

from errors import AuthenticationExpired
from messaging.base import AuthStatus, MessagingProvider
from messaging.transport import request_json
from messaging.phone import phone_digits

logger = logging.getLogger(__name__)


class CloudApiProvider(MessagingProvider):
    """Sends text messages through the hosted Cloud API.

    There is no interactive login: starting a session just verifies the
    access token against the phone-number resource.
    """

    kind = "cloud_api"

    def __init__(self, access_token: str, phone_number_id: str, api_version: str = "v21.0",
                 base_url: str = "https://graph.facebook.com", timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self._access_token}"}

    @property
    def _phone_path(self) -> str:
        return f"/{self.api_version}/{self.phone_number_id}"

    async def start_session(self) -> AuthStatus:
        if not self._access_token or not self.phone_number_id:
            return AuthStatus(rejected=True, detail="Cloud API credentials not configured")
        try:
            await self.check()
        except AuthenticationExpired as e:
            return AuthStatus(rejected=True, detail=str(e))
        return AuthStatus(confirmed=True)

    async def check(self) -> None:
        await request_json(self._client, "GET", self._phone_path, headers=self._headers)

    async def send(self, recipient: str, message: str) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "to": phone_digits(recipient),
            "type": "text",
            "text": {"body": message},
        }
        body = await request_json(self._client, "POST", f"{self._phone_path}/messages",
                                  headers=self._headers, json=payload)
        messages = body.get("messages") or []
        message_id = messages[0].get("id") if messages and isinstance(messages[0], dict) else None
        logger.debug(f"Cloud API accepted message {message_id}")
        return message_id or ""

    async def close(self) -> None:
        await self._client.aclose()
