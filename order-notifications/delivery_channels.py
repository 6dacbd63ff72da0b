"""Delivery channels: independent sinks that each receive a copy of an order event."""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Protocol

from errors import classify_error
from messaging.formatting import MessageFormatter
from messaging.links import build_deep_link
from messaging.phone import InvalidPhoneNumber, normalize_phone
from messaging.session import ProviderSessionManager
from models import (
    BroadcastMessage,
    ConnectionCheckResult,
    DeliveryAttempt,
    DeliveryChannelKind,
    DeliveryOutcome,
    FailureReason,
    OrderEvent,
    utcnow,
)

logger = logging.getLogger(__name__)

NEW_PENDING_ORDER = "new_pending_order"


class Broadcaster(Protocol):
    async def broadcast(self, topic: str, message: BroadcastMessage) -> int:
        ...


class DeliveryChannel(ABC):
    """A sink the dispatcher drives once per order event."""

    kind: DeliveryChannelKind

    @abstractmethod
    async def deliver(self, event: OrderEvent) -> DeliveryAttempt:
        ...


class LiveBellChannel(DeliveryChannel):
    """Pushes a small badge payload to connected dashboard sessions."""

    kind = DeliveryChannelKind.LIVE_BELL

    def __init__(self, broadcaster: Broadcaster, topic: str = "pending-order-notifications",
                 enabled: bool = True):
        self.broadcaster = broadcaster
        self.topic = topic
        self.enabled = enabled

    @staticmethod
    def payload(event: OrderEvent) -> BroadcastMessage:
        created_at = event.snapshot.created_at or event.occurred_at
        return BroadcastMessage(
            event=NEW_PENDING_ORDER,
            data={"orderId": event.order_id, "createdAt": created_at.isoformat()},
        )

    async def deliver(self, event: OrderEvent) -> DeliveryAttempt:
        if not self.enabled:
            return DeliveryAttempt.skipped(self.kind, event.order_id, "realtime notifications disabled")
        try:
            delivered = await self.broadcaster.broadcast(self.topic, self.payload(event))
        except Exception as e:
            return DeliveryAttempt.failed(self.kind, event.order_id, classify_error(e), str(e) or type(e).__name__)
        if delivered == 0:
            return DeliveryAttempt.skipped(self.kind, event.order_id, "no subscribers connected")
        return DeliveryAttempt(channel=self.kind, order_id=event.order_id, outcome=DeliveryOutcome.SENT,
                               detail=f"{delivered} subscriber(s)")


class MessagingChannel(DeliveryChannel):
    """Sends the administrator a formatted message, falling back to a deep link.

    The fallback path counts as a successful delivery: the message is ready
    to be sent by hand even though nothing went out automatically.
    """

    kind = DeliveryChannelKind.MESSAGING_PROVIDER

    def __init__(self, session: ProviderSessionManager, admin_recipient: str, country_code: str,
                 formatter: Optional[MessageFormatter] = None, enabled: bool = True):
        self.session = session
        self.admin_recipient = admin_recipient
        self.country_code = country_code
        self.formatter = formatter or MessageFormatter()
        self.enabled = enabled

    async def deliver(self, event: OrderEvent) -> DeliveryAttempt:
        if not self.enabled:
            return DeliveryAttempt.skipped(self.kind, event.order_id, "order notifications disabled")
        return await self.notify_admin(event)

    async def notify_admin(self, event: OrderEvent) -> DeliveryAttempt:
        """Send (or prepare) the admin notification for one order event."""
        try:
            recipient = normalize_phone(self.admin_recipient, self.country_code)
        except InvalidPhoneNumber as e:
            return DeliveryAttempt.failed(self.kind, event.order_id, FailureReason.RECIPIENT_INVALID, str(e))

        message = self.formatter.format(event)
        result = await self.session.send(message, recipient)

        if result.sent:
            return DeliveryAttempt(channel=self.kind, order_id=event.order_id, outcome=DeliveryOutcome.SENT,
                                   message_id=result.message_id)

        if result.fallback_eligible:
            link = build_deep_link(recipient, message)
            logger.info(f"Admin notification for order {event.order_id} needs manual sending: {result.detail}")
            return DeliveryAttempt(channel=self.kind, order_id=event.order_id, outcome=DeliveryOutcome.SENT,
                                   fallback_used=True, fallback_link=link, detail=result.detail)

        return DeliveryAttempt.failed(self.kind, event.order_id, result.reason or FailureReason.UNKNOWN,
                                      result.detail)

    async def check_connection(self, recipient: Optional[str] = None) -> ConnectionCheckResult:
        """Send the fixed test message to ``recipient`` (default: the admin number)."""
        session = self.session
        try:
            normalized = normalize_phone(recipient or self.admin_recipient, self.country_code)
        except InvalidPhoneNumber as e:
            return ConnectionCheckResult(provider_kind=session.provider.kind, state=session.state,
                                         failure_reason=FailureReason.RECIPIENT_INVALID, detail=str(e))

        message = self.formatter.format_test_message(utcnow())
        result = await session.send(message, normalized)
        check = ConnectionCheckResult(provider_kind=session.provider.kind, state=session.state,
                                      recipient=normalized, detail=result.detail)

        if result.sent:
            return check.model_copy(update={"sent": True, "message_id": result.message_id})
        if result.fallback_eligible:
            return check.model_copy(update={"fallback_used": True,
                                            "fallback_link": build_deep_link(normalized, message)})
        return check.model_copy(update={"failure_reason": result.reason or FailureReason.UNKNOWN})
