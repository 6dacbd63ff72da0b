"""Messaging backends for admin order notifications.

``create_provider`` picks the backend named by configuration; everything
else talks to the ``MessagingProvider`` interface.
"""

from messaging.base import AuthStatus, MessagingProvider

PROVIDER_KINDS = ("session_bridge", "cloud_api", "manual")


def create_provider(kind: str, settings) -> MessagingProvider:
    """Instantiate the messaging provider for ``kind``.

    Args:
        kind: One of ``PROVIDER_KINDS``.
        settings: Object exposing the ``Config`` attributes.
    """
    if kind == "session_bridge":
        from messaging.session_bridge import SessionBridgeProvider

        return SessionBridgeProvider(settings.WHATSAPP_BRIDGE_URL, timeout=settings.SEND_TIMEOUT)
    elif kind == "cloud_api":
        from messaging.cloud_api import CloudApiProvider

        return CloudApiProvider(
            access_token=settings.WHATSAPP_ACCESS_TOKEN,
            phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
            api_version=settings.WHATSAPP_API_VERSION,
            base_url=settings.WHATSAPP_API_BASE_URL,
            timeout=settings.SEND_TIMEOUT,
        )
    elif kind == "manual":
        from messaging.manual_link import ManualLinkProvider

        return ManualLinkProvider()
    raise ValueError(f"Unknown messaging provider: {kind}")


__all__ = ["AuthStatus", "MessagingProvider", "PROVIDER_KINDS", "create_provider"]
