"""Translates storage change notifications into order events."""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from models import ChangeKind, LineItem, OrderEvent, OrderSnapshot, RawChange
from order_status import AwaitingAttentionFilter, normalize_status

logger = logging.getLogger(__name__)

_DATETIME = TypeAdapter(datetime)

_OPERATIONS = {
    "INSERT": ChangeKind.CREATED,
    "UPDATE": ChangeKind.UPDATED,
    "DELETE": ChangeKind.DELETED,
}


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return _DATETIME.validate_python(value)
    except ValidationError:
        return None


def _items(raw_items: Any) -> List[LineItem]:
    items = []
    for item in raw_items or []:
        if not isinstance(item, dict):
            continue
        name = item.get("product_name") or item.get("name")
        if not name:
            continue
        items.append(LineItem(
            product_name=str(name),
            quantity=float(item.get("quantity") or 1),
            price=_decimal(item.get("price")),
        ))
    return items


def build_snapshot(order_id: str, row: Dict[str, Any]) -> OrderSnapshot:
    """Project an order row (optionally enriched with customer and items) to a snapshot."""
    return OrderSnapshot(
        display_id=str(row.get("display_id") or order_id),
        total_amount=_decimal(row.get("total_amount")),
        delivery_cost=_decimal(row.get("delivery_cost")),
        discount_amount=_decimal(row.get("discount_amount")),
        customer_name=row.get("customer_name"),
        customer_phone=row.get("customer_phone"),
        customer_email=row.get("customer_email"),
        delivery_address=row.get("delivery_address"),
        order_type=row.get("type") or row.get("order_type"),
        created_at=_timestamp(row.get("created_at")),
        items=_items(row.get("items")),
    )


class ChangeFeedAdapter:
    """Filters raw row changes down to the order events worth notifying on.

    Emits exactly one event for every insert into the orders table, and one
    for an update only when the new status is awaiting attention. Deletes,
    other tables and malformed rows produce nothing. ``to_event`` never
    raises.
    """

    def __init__(self, status_filter: AwaitingAttentionFilter, orders_table: str = "orders"):
        self.status_filter = status_filter
        self.orders_table = orders_table.lower()

    def to_event(self, raw: RawChange) -> Optional[OrderEvent]:
        try:
            return self._to_event(raw)
        except Exception as e:
            logger.error(f"Dropping change {raw.change_id} for table {raw.table}: {e}")
            return None

    def _to_event(self, raw: RawChange) -> Optional[OrderEvent]:
        if (raw.table or "").strip().lower() != self.orders_table:
            return None

        kind = _OPERATIONS.get((raw.operation or "").strip().upper())
        if kind is None or kind == ChangeKind.DELETED:
            return None

        row = raw.new_record or {}
        order_id = row.get("id")
        status = row.get("status")
        if order_id is None or str(order_id) == "" or not isinstance(status, str):
            logger.warning(f"Dropping malformed {kind.value} change {raw.change_id}: missing id or status")
            return None

        if kind == ChangeKind.UPDATED and not self.status_filter.matches(status):
            logger.debug(f"Ignoring update of order {order_id} to status {status!r}")
            return None

        previous = (raw.old_record or {}).get("status")
        order_id = str(order_id)
        return OrderEvent(
            order_id=order_id,
            change_kind=kind,
            status=normalize_status(status),
            previous_status=normalize_status(previous) or None,
            occurred_at=raw.changed_at,
            snapshot=build_snapshot(order_id, row),
        )
