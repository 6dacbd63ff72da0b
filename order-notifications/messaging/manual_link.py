"""Manual mode: nothing is sent automatically, admins get a click-to-send link."""

from errors import TransportUnavailable
from messaging.base import AuthStatus, MessagingProvider


class ManualLinkProvider(MessagingProvider):
    kind = "manual"
    automatic = False

    async def start_session(self) -> AuthStatus:
        return AuthStatus(confirmed=True)

    async def check(self) -> None:
        return None

    async def send(self, recipient: str, message: str) -> str:
        raise TransportUnavailable("manual provider does not send automatically")
