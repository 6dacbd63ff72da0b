"""Plain-text admin messages for order events."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models import ChangeKind, OrderEvent

RULE = "--------------------"


class MessageFormatter:
    """Renders order events as WhatsApp-flavoured text (``*bold*`` markup)."""

    def __init__(self, store_name: str = "Betty Organic", currency: str = "ETB",
                 timezone_name: str = "Africa/Addis_Ababa"):
        self.store_name = store_name
        self.currency = currency
        try:
            self.tz: Optional[ZoneInfo] = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            self.tz = None

    def money(self, amount: Decimal) -> str:
        return f"{self.currency} {Decimal(amount):,.2f}"

    def local_time(self, moment: datetime) -> str:
        if self.tz is not None and moment.tzinfo is not None:
            moment = moment.astimezone(self.tz)
        return moment.strftime("%b %d, %Y %H:%M")

    def format(self, event: OrderEvent) -> str:
        if event.change_kind == ChangeKind.UPDATED:
            return self.format_status_update(event)
        return self.format_new_order(event)

    def format_new_order(self, event: OrderEvent) -> str:
        snap = event.snapshot
        lines = [
            f"*NEW ORDER - {self.store_name}*",
            "",
            f"*Order ID:* {snap.display_id}",
        ]
        if snap.customer_name:
            lines.append(f"*Customer:* {snap.customer_name}")
        if snap.customer_phone:
            lines.append(f"*Phone:* {snap.customer_phone}")
        if snap.customer_email:
            lines.append(f"*Email:* {snap.customer_email}")
        if snap.delivery_address:
            lines.append(f"*Address:* {snap.delivery_address}")

        if snap.items:
            lines += ["", "*Products Ordered:*"]
            for item in snap.items:
                quantity = f"{item.quantity:g}"
                lines.append(f"- {item.product_name} (Qty: {quantity}) - {self.money(item.price)}")

        lines += ["", RULE, f"*Subtotal:* {self.money(snap.total_amount)}"]
        if snap.delivery_cost:
            lines.append(f"*Delivery:* {self.money(snap.delivery_cost)}")
        if snap.discount_amount:
            lines.append(f"*Discount:* -{self.money(snap.discount_amount)}")
        lines.append(f"*Total Amount:* {self.money(snap.net_total)}")
        lines += [
            RULE,
            f"*Time:* {self.local_time(event.occurred_at)}",
            f"*Status:* {event.status.upper() or 'UNKNOWN'}",
        ]
        if snap.order_type:
            kind = "Customer Order" if snap.order_type == "self_service" else "Store Order"
            lines.append(f"*Type:* {kind}")
        lines += ["", "Please process this order as soon as possible."]
        return "\n".join(lines)

    def format_status_update(self, event: OrderEvent) -> str:
        snap = event.snapshot
        old = (event.previous_status or "unknown").upper()
        lines = [
            "*ORDER STATUS UPDATE*",
            "",
            f"*Order ID:* {snap.display_id}",
        ]
        if snap.customer_name:
            lines.append(f"*Customer:* {snap.customer_name}")
        lines += [
            "",
            f"*Status:* {old} -> {event.status.upper()}",
            f"*Total Amount:* {self.money(snap.net_total)}",
            f"*Updated:* {self.local_time(event.occurred_at)}",
            "",
            f"*{self.store_name}*",
        ]
        return "\n".join(lines)

    def format_test_message(self, moment: datetime) -> str:
        """Fixed message used to check that the provider can deliver."""
        return "\n".join([
            f"*{self.store_name} - WhatsApp test*",
            "",
            "This is a test message from the order notification service.",
            "If you received it, admin order notifications can reach this number.",
            "",
            f"*Sent:* {self.local_time(moment)}",
        ])
