"""Error taxonomy for notification delivery."""

import asyncio
from typing import Optional

import httpx

from models import FailureReason


class DeliveryError(Exception):
    """A messaging send failed for a classified reason."""

    reason: FailureReason = FailureReason.UNKNOWN

    def __init__(self, message: str, reason: Optional[FailureReason] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class AuthenticationExpired(DeliveryError):
    reason = FailureReason.AUTHENTICATION_EXPIRED


class RateLimited(DeliveryError):
    reason = FailureReason.RATE_LIMITED


class RecipientInvalid(DeliveryError):
    reason = FailureReason.RECIPIENT_INVALID


class TransportUnavailable(DeliveryError):
    reason = FailureReason.TRANSPORT_UNAVAILABLE


class InvalidStateTransition(RuntimeError):
    """Raised when the provider session is asked to make an illegal move."""


def classify_error(exc: BaseException) -> FailureReason:
    """Map an arbitrary exception onto a delivery failure reason."""
    if isinstance(exc, DeliveryError):
        return exc.reason
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError)):
        return FailureReason.TRANSPORT_UNAVAILABLE
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return FailureReason.TRANSPORT_UNAVAILABLE
    return FailureReason.UNKNOWN
