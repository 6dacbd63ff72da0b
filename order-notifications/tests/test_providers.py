import json

import httpx
import pytest

from errors import (
    AuthenticationExpired,
    DeliveryError,
    RateLimited,
    RecipientInvalid,
    TransportUnavailable,
    classify_error,
)
from messaging import create_provider
from messaging.cloud_api import CloudApiProvider
from messaging.manual_link import ManualLinkProvider
from messaging.session_bridge import SessionBridgeProvider
from models import FailureReason


def cloud_provider(handler, token="token", phone_id="12345"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://graph.test")
    return CloudApiProvider(token, phone_id, api_version="v21.0", client=client)


def bridge_provider(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://bridge.test")
    return SessionBridgeProvider("http://bridge.test", client=client)


@pytest.mark.asyncio
async def test_cloud_api_send_posts_text_message():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

    provider = cloud_provider(handler)
    message_id = await provider.send("+251912345678", "hi")

    assert message_id == "wamid.1"
    assert seen["url"] == "https://graph.test/v21.0/12345/messages"
    assert seen["auth"] == "Bearer token"
    assert seen["body"] == {
        "messaging_product": "whatsapp",
        "to": "251912345678",
        "type": "text",
        "text": {"body": "hi"},
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("status,body,error", [
    (401, {"error": {"message": "Invalid OAuth access token"}}, AuthenticationExpired),
    (429, {"error": {"message": "Too many messages"}}, RateLimited),
    (400, {"error": {"message": "Recipient phone number not in allowed list"}}, RecipientInvalid),
    (503, {"error": {"message": "Service unavailable"}}, TransportUnavailable),
    (400, {"error": {"message": "Unsupported post request"}}, DeliveryError),
])
async def test_cloud_api_error_statuses_are_classified(status, body, error):
    provider = cloud_provider(lambda request: httpx.Response(status, json=body))
    with pytest.raises(error):
        await provider.send("+251912345678", "hi")


@pytest.mark.asyncio
async def test_cloud_api_network_error_is_transport_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = cloud_provider(handler)
    with pytest.raises(TransportUnavailable) as exc_info:
        await provider.send("+251912345678", "hi")
    assert classify_error(exc_info.value) == FailureReason.TRANSPORT_UNAVAILABLE


@pytest.mark.asyncio
async def test_cloud_api_session_checks_credentials():
    missing = cloud_provider(lambda request: httpx.Response(200, json={}), token="")
    assert (await missing.start_session()).rejected

    expired = cloud_provider(lambda request: httpx.Response(401, json={"error": {"message": "expired"}}))
    assert (await expired.start_session()).rejected

    ok = cloud_provider(lambda request: httpx.Response(200, json={"id": "12345"}))
    assert (await ok.start_session()).confirmed


@pytest.mark.asyncio
async def test_cloud_api_reconnect_with_revoked_token_is_auth_expiry():
    provider = cloud_provider(lambda request: httpx.Response(401, json={"error": {"message": "Invalid OAuth access token"}}))
    with pytest.raises(AuthenticationExpired, match="Invalid OAuth access token"):
        await provider.reconnect()


@pytest.mark.asyncio
async def test_cloud_api_reconnect_when_unreachable_is_transport_unavailable():
    provider = cloud_provider(lambda request: httpx.Response(503, json={"error": {"message": "Service unavailable"}}))
    with pytest.raises(TransportUnavailable):
        await provider.reconnect()


@pytest.mark.asyncio
async def test_session_bridge_reports_qr_then_connected():
    responses = iter([
        {"status": "qr", "qr": "2@abc"},
        {"status": "connected"},
    ])
    provider = bridge_provider(lambda request: httpx.Response(200, json=next(responses)))

    first = await provider.start_session()
    assert first.challenge == "2@abc"
    assert not first.confirmed
    assert (await provider.poll_authentication()).confirmed


@pytest.mark.asyncio
async def test_session_bridge_send_uses_jid():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "3EB0"})

    provider = bridge_provider(handler)
    assert await provider.send("+251912345678", "hi") == "3EB0"
    assert seen == {"path": "/messages", "body": {"jid": "251912345678@s.whatsapp.net", "text": "hi"}}


@pytest.mark.asyncio
async def test_session_bridge_logged_out_check_is_auth_expiry():
    provider = bridge_provider(lambda request: httpx.Response(200, json={"status": "logged_out"}))
    with pytest.raises(AuthenticationExpired):
        await provider.check()


@pytest.mark.asyncio
async def test_manual_provider_never_sends():
    provider = ManualLinkProvider()
    assert (await provider.start_session()).confirmed
    with pytest.raises(TransportUnavailable):
        await provider.send("+251912345678", "hi")


def test_create_provider_by_kind(settings):
    assert isinstance(create_provider("manual", settings), ManualLinkProvider)
    assert isinstance(create_provider("session_bridge", settings), SessionBridgeProvider)
    assert isinstance(create_provider("cloud_api", settings), CloudApiProvider)
    with pytest.raises(ValueError):
        create_provider("carrier_pigeon", settings)


def test_classify_error_falls_back_to_unknown():
    assert classify_error(TimeoutError()) == FailureReason.TRANSPORT_UNAVAILABLE
    assert classify_error(RateLimited("x")) == FailureReason.RATE_LIMITED
    assert classify_error(DeliveryError("x", FailureReason.RECIPIENT_INVALID)) == FailureReason.RECIPIENT_INVALID
    assert classify_error(ValueError("x")) == FailureReason.UNKNOWN
