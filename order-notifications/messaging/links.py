"""Click-to-send deep links, the manual fallback for admin notifications."""

from urllib.parse import quote

from messaging.phone import phone_digits

WHATSAPP_LINK_BASE = "https://wa.me"


def build_deep_link(recipient: str, message: str) -> str:
    """Build a link that opens a chat with ``recipient`` prefilled with ``message``.

    ``recipient`` must already be normalized.
    """
    return f"{WHATSAPP_LINK_BASE}/{phone_digits(recipient)}?text={quote(message, safe='')}"
