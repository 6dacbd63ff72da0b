"""Session-based provider backed by a self-hosted WhatsApp Web bridge."""

import logging
from typing import Optional

import httpx

from errors import AuthenticationExpired, TransportUnavailable
from messaging.base import AuthStatus, MessagingProvider
from messaging.transport import request_json
from messaging.phone import phone_digits

logger = logging.getLogger(__name__)


class SessionBridgeProvider(MessagingProvider):
    """Talks to a bridge process that owns the linked-device socket.

    The bridge exposes:

    - ``POST /session/start`` and ``GET /session/status`` returning
      ``{"status": "connected" | "qr" | "connecting" | "logged_out", "qr": ...}``
    - ``POST /session/logout``
    - ``POST /messages`` with ``{"jid": ..., "text": ...}`` returning ``{"id": ...}``
    """

    kind = "session_bridge"

    def __init__(self, base_url: str, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    @staticmethod
    def _auth_status(body: dict) -> AuthStatus:
        status = str(body.get("status", "")).lower()
        if status in ("connected", "open", "ready"):
            return AuthStatus(confirmed=True)
        if status in ("logged_out", "rejected"):
            return AuthStatus(rejected=True, detail=body.get("error") or status)
        return AuthStatus(challenge=body.get("qr"), detail=status or None)

    async def start_session(self) -> AuthStatus:
        body = await request_json(self._client, "POST", "/session/start")
        return self._auth_status(body)

    async def poll_authentication(self) -> AuthStatus:
        body = await request_json(self._client, "GET", "/session/status")
        return self._auth_status(body)

    async def reconnect(self) -> None:
        status = await self.start_session()
        if status.rejected:
            raise AuthenticationExpired(status.detail or "bridge session logged out")
        if not status.confirmed:
            raise TransportUnavailable(status.detail or "bridge session not connected")

    async def check(self) -> None:
        status = await self.poll_authentication()
        if status.rejected:
            raise AuthenticationExpired(status.detail or "bridge session logged out")
        if not status.confirmed:
            raise TransportUnavailable(status.detail or "bridge session not connected")

    async def send(self, recipient: str, message: str) -> str:
        jid = f"{phone_digits(recipient)}@s.whatsapp.net"
        body = await request_json(self._client, "POST", "/messages", json={"jid": jid, "text": message})
        message_id = body.get("id") or body.get("messageId")
        logger.debug(f"Bridge accepted message {message_id} for {jid}")
        return str(message_id) if message_id else ""

    async def logout(self) -> None:
        await request_json(self._client, "POST", "/session/logout")

    async def close(self) -> None:
        await self._client.aclose()
