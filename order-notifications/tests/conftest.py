from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from config import Config
from messaging.base import AuthStatus, MessagingProvider
from models import ChangeKind, OrderEvent, OrderSnapshot
from order_status import AwaitingAttentionFilter


class FakeDatabase:
    """In-memory stand-in for ``DatabaseManager``."""

    def __init__(self, changes: Optional[List[Dict[str, Any]]] = None,
                 orders: Optional[List[Dict[str, Any]]] = None,
                 details: Optional[Dict[str, Dict[str, Any]]] = None):
        self.changes = list(changes or [])
        self.orders = list(orders or [])
        self.details = details or {}
        self.processed: List[int] = []
        self.recent_orders_error: Optional[Exception] = None
        self.recent_orders_calls: List[tuple] = []
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def health_check(self) -> bool:
        return True

    async def get_unprocessed_changes(self, limit: int = 100) -> List[Dict[str, Any]]:
        pending = [row for row in self.changes if row["id"] not in self.processed]
        return pending[:limit]

    async def mark_changes_processed(self, change_ids: List[int]) -> None:
        self.processed.extend(change_ids)

    async def count_recent_changes(self) -> int:
        return len(self.changes)

    async def get_order_details(self, order_id: str) -> Optional[Dict[str, Any]]:
        return self.details.get(order_id)

    async def get_recent_orders(self, limit: int, scope_id: Optional[str] = None) -> List[Dict[str, Any]]:
        self.recent_orders_calls.append((limit, scope_id))
        if self.recent_orders_error is not None:
            raise self.recent_orders_error
        rows = [row for row in self.orders if scope_id is None or row.get("customer_profile_id") == scope_id]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return rows[:limit]


class FakeProvider(MessagingProvider):
    """Scriptable messaging backend.

    ``send_errors`` and ``reconnect_errors`` are consumed one per call; an
    entry of ``None`` means that call succeeds.
    """

    kind = "fake"

    def __init__(self, auth: Optional[AuthStatus] = None, automatic: bool = True):
        self.auth = auth or AuthStatus(confirmed=True)
        self.automatic = automatic
        self.sent: List[tuple] = []
        self.send_errors: List[Optional[Exception]] = []
        self.reconnect_errors: List[Optional[Exception]] = []
        self.check_error: Optional[Exception] = None
        self.reconnect_calls = 0
        self.start_calls = 0
        self.logged_out = False
        self.closed = False

    async def start_session(self) -> AuthStatus:
        self.start_calls += 1
        return self.auth

    async def check(self) -> None:
        if self.check_error is not None:
            raise self.check_error

    async def reconnect(self) -> None:
        self.reconnect_calls += 1
        if self.reconnect_errors:
            error = self.reconnect_errors.pop(0)
            if error is not None:
                raise error

    async def send(self, recipient: str, message: str) -> str:
        if self.send_errors:
            error = self.send_errors.pop(0)
            if error is not None:
                raise error
        self.sent.append((recipient, message))
        return f"msg-{len(self.sent)}"

    async def logout(self) -> None:
        self.logged_out = True

    async def close(self) -> None:
        self.closed = True


class FakeBroadcaster:
    def __init__(self, subscribers: int = 1, error: Optional[Exception] = None):
        self.subscribers = subscribers
        self.error = error
        self.messages: List[tuple] = []

    async def broadcast(self, topic, message) -> int:
        if self.error is not None:
            raise self.error
        self.messages.append((topic, message))
        return self.subscribers


def make_event(order_id: str = "order-1", status: str = "pending",
               kind: ChangeKind = ChangeKind.CREATED, **snapshot: Any) -> OrderEvent:
    snapshot.setdefault("display_id", "BO-1001")
    snapshot.setdefault("total_amount", Decimal("250.00"))
    return OrderEvent(
        order_id=order_id,
        change_kind=kind,
        status=status,
        occurred_at=datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc),
        snapshot=OrderSnapshot(**snapshot),
    )


@pytest.fixture
def status_filter():
    return AwaitingAttentionFilter(["pending", "new", "processing"], ["pending"])


@pytest.fixture
def settings():
    cfg = Config()
    cfg.ADMIN_WHATSAPP_NUMBER = "+251912345678"
    cfg.DEFAULT_COUNTRY_CODE = "251"
    cfg.MESSAGING_PROVIDER = "manual"
    cfg.CHANGE_LOG_POLL_INTERVAL = 0.01
    cfg.HEARTBEAT_INTERVAL = 60
    cfg.STATUS_FILTER = ["pending", "new", "processing"]
    cfg.STATUS_SUBSTRING_FILTER = ["pending"]
    cfg.ENABLE_ORDER_NOTIFICATIONS = True
    cfg.ENABLE_REALTIME_NOTIFICATIONS = True
    cfg.DEDUP_WINDOW_SECONDS = 0
    cfg.WEBHOOK_VERIFY_TOKEN = "verify-me"
    cfg.WHATSAPP_APP_SECRET = ""
    cfg.ORDER_WEBHOOK_SECRET = ""
    return cfg
