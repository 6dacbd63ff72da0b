"""Messaging provider port: the interface every backend implements."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from errors import AuthenticationExpired, TransportUnavailable


@dataclass
class AuthStatus:
    """Result of starting or polling provider authentication.

    ``confirmed`` means the session can send. ``challenge`` carries the
    credential payload (e.g. QR text) a human must act on. ``rejected``
    means authentication cannot succeed without a reset.
    """
    confirmed: bool = False
    challenge: Optional[str] = None
    rejected: bool = False
    detail: Optional[str] = None


class MessagingProvider(ABC):
    """Abstract interface for messaging backends.

    Methods raise ``errors.DeliveryError`` subclasses on failure.
    """

    kind: str = "abstract"
    automatic: bool = True

    @abstractmethod
    async def start_session(self) -> AuthStatus:
        """Begin authenticating with the backend."""
        ...

    async def poll_authentication(self) -> AuthStatus:
        """Check whether a pending authentication has been confirmed."""
        return await self.start_session()

    async def reconnect(self) -> None:
        """Re-establish the transport of an authenticated session."""
        status = await self.start_session()
        if status.rejected:
            raise AuthenticationExpired(status.detail or "session rejected on reconnect")
        if not status.confirmed:
            raise TransportUnavailable(status.detail or "session not confirmed after reconnect")

    @abstractmethod
    async def check(self) -> None:
        """Liveness check; raises when the transport is unhealthy."""
        ...

    @abstractmethod
    async def send(self, recipient: str, message: str) -> str:
        """Send a text message to a normalized recipient; returns the message id."""
        ...

    async def logout(self) -> None:
        """Invalidate the backend session, if the backend keeps one."""
        return None

    async def close(self) -> None:
        """Release transport resources."""
        return None
