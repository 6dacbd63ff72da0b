"""Catch-up query: which orders are awaiting attention right now."""

import logging
from typing import Optional, Protocol, List, Dict, Any

from models import PendingNotificationsResult, PendingOrderRecord
from order_status import AwaitingAttentionFilter

logger = logging.getLogger(__name__)


class OrderReader(Protocol):
    async def get_recent_orders(self, limit: int, scope_id: Optional[str] = None) -> List[Dict[str, Any]]:
        ...


async def fetch_pending_notifications(
    db: OrderReader,
    status_filter: AwaitingAttentionFilter,
    scope_id: Optional[str] = None,
    page_size: int = 50,
    scan_limit: int = 500,
) -> PendingNotificationsResult:
    """Return awaiting-attention orders, newest first, at most ``page_size`` of them.

    Reads the newest ``scan_limit`` orders (scoped to one customer profile
    when ``scope_id`` is given) and applies the same status predicate the
    change feed uses. Storage errors come back as ``success=False``.
    """
    try:
        rows = await db.get_recent_orders(max(scan_limit, page_size), scope_id)
        records = [
            PendingOrderRecord(
                id=row["id"],
                display_id=row.get("display_id"),
                status=row["status"],
                created_at=row["created_at"],
                total_amount=row.get("total_amount"),
                profile_id=row.get("profile_id"),
            )
            for row in rows
            if status_filter.matches(row.get("status"))
        ]
        records.sort(key=lambda record: record.created_at, reverse=True)
    except Exception as e:
        logger.error(f"Failed to fetch pending orders for notification: {e}")
        return PendingNotificationsResult(success=False, error=f"Failed to load orders: {e}")

    records = records[:page_size]
    return PendingNotificationsResult(success=True, records=records, count=len(records))
