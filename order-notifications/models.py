"""Data models for the order notification pipeline."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_column(value: Any) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return dict(value)


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class LineItem(BaseModel):
    """One ordered product as shown in admin notifications."""
    model_config = ConfigDict(frozen=True)

    product_name: str
    quantity: float = 1
    price: Decimal = Decimal("0")


class OrderSnapshot(BaseModel):
    """Read-only projection of the order fields used for formatting."""
    model_config = ConfigDict(frozen=True)

    display_id: str
    total_amount: Decimal = Decimal("0")
    delivery_cost: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    delivery_address: Optional[str] = None
    order_type: Optional[str] = None
    created_at: Optional[datetime] = None
    items: Tuple[LineItem, ...] = ()

    @property
    def net_total(self) -> Decimal:
        return self.total_amount + self.delivery_cost - self.discount_amount


class OrderEvent(BaseModel):
    """Canonical fact produced by the change feed adapter."""
    model_config = ConfigDict(frozen=True)

    order_id: str
    change_kind: ChangeKind
    status: str
    previous_status: Optional[str] = None
    occurred_at: datetime
    snapshot: OrderSnapshot


class RawChange(BaseModel):
    """Storage-level change notification, before normalization."""
    table: str
    operation: str
    new_record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None
    changed_at: datetime = Field(default_factory=utcnow)
    change_id: Optional[int] = None

    @classmethod
    def from_change_log_row(cls, row: Dict[str, Any]) -> 'RawChange':
        """Create RawChange from an ``order_changes`` database row."""
        return cls(
            table=row.get('table_name') or 'orders',
            operation=row['operation_type'],
            old_record=_json_column(row.get('old_data')),
            new_record=_json_column(row.get('new_data')),
            changed_at=row['changed_at'],
            change_id=row['id']
        )

    @classmethod
    def from_webhook_payload(cls, payload: Dict[str, Any]) -> 'RawChange':
        """Create RawChange from a database webhook body (``type``/``table``/``record``)."""
        record = payload.get('record') or {}
        changed_at = payload.get('commit_timestamp') or record.get('updated_at') or record.get('created_at')
        return cls(
            table=payload.get('table') or '',
            operation=payload.get('type') or '',
            new_record=payload.get('record'),
            old_record=payload.get('old_record'),
            changed_at=changed_at or utcnow(),
        )

    @property
    def order_id(self) -> Optional[str]:
        record = self.new_record or self.old_record or {}
        value = record.get('id')
        return str(value) if value is not None else None


class PendingOrderRecord(BaseModel):
    """Order awaiting attention, as returned by the catch-up query."""
    id: str
    display_id: Optional[str] = None
    status: str
    created_at: datetime
    total_amount: Optional[Decimal] = None
    profile_id: Optional[str] = None

    @field_validator('id', 'profile_id', mode='before')
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return str(value) if value is not None else None


class PendingNotificationsResult(BaseModel):
    success: bool
    records: List[PendingOrderRecord] = Field(default_factory=list)
    count: int = 0
    error: Optional[str] = None


class ProviderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_AUTHENTICATION = "awaiting_authentication"
    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"


class SessionSnapshot(BaseModel):
    """Point-in-time view of the messaging provider session."""
    state: ProviderState
    provider_kind: str
    last_heartbeat_at: Optional[datetime] = None
    auth_challenge: Optional[str] = None
    reconnect_attempts: int = 0
    last_error: Optional[str] = None


class DeliveryChannelKind(str, Enum):
    LIVE_BELL = "live_bell"
    MESSAGING_PROVIDER = "messaging_provider"


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureReason(str, Enum):
    AUTHENTICATION_EXPIRED = "authentication_expired"
    RATE_LIMITED = "rate_limited"
    RECIPIENT_INVALID = "recipient_invalid"
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    UNKNOWN = "unknown"


class DeliveryAttempt(BaseModel):
    """Outcome of one channel delivering one order event."""
    channel: DeliveryChannelKind
    order_id: str
    outcome: DeliveryOutcome
    failure_reason: Optional[FailureReason] = None
    fallback_used: bool = False
    fallback_link: Optional[str] = None
    message_id: Optional[str] = None
    detail: Optional[str] = None
    attempted_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def _reason_iff_failed(self) -> 'DeliveryAttempt':
        if (self.outcome == DeliveryOutcome.FAILED) != (self.failure_reason is not None):
            raise ValueError("failure_reason must be set exactly when outcome is failed")
        return self

    @classmethod
    def failed(cls, channel: DeliveryChannelKind, order_id: str, reason: FailureReason,
               detail: Optional[str] = None) -> 'DeliveryAttempt':
        return cls(channel=channel, order_id=order_id, outcome=DeliveryOutcome.FAILED,
                   failure_reason=reason, detail=detail)

    @classmethod
    def skipped(cls, channel: DeliveryChannelKind, order_id: str,
                detail: Optional[str] = None) -> 'DeliveryAttempt':
        return cls(channel=channel, order_id=order_id, outcome=DeliveryOutcome.SKIPPED, detail=detail)


class BroadcastMessage(BaseModel):
    """Live bell wire envelope."""
    event: str
    data: Optional[Dict[str, Any]] = None


class AdminNotificationRequest(BaseModel):
    """Body of the manual "send admin notification" call."""
    order_id: str
    status: str = "pending"
    snapshot: OrderSnapshot


class ConnectionCheckRequest(BaseModel):
    """Body of the provider test send; defaults to the admin number."""
    recipient: Optional[str] = None


class ConnectionCheckResult(BaseModel):
    """Outcome of sending the fixed test message through the provider session."""
    provider_kind: str
    state: ProviderState
    recipient: Optional[str] = None
    sent: bool = False
    message_id: Optional[str] = None
    fallback_used: bool = False
    fallback_link: Optional[str] = None
    failure_reason: Optional[FailureReason] = None
    detail: Optional[str] = None
