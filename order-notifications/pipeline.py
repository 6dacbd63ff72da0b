"""Wires the notification pipeline together from configuration."""

import logging
from typing import Optional

from change_feed import ChangeFeedAdapter
from delivery_channels import LiveBellChannel, MessagingChannel
from dispatcher import NotificationDispatcher
from event_listener import EventListener
from messaging import create_provider
from messaging.base import MessagingProvider
from messaging.formatting import MessageFormatter
from messaging.session import ProviderSessionManager, ReconnectPolicy
from models import PendingNotificationsResult
from order_status import AwaitingAttentionFilter
from pending_notifications import fetch_pending_notifications
from websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)


class NotificationPipeline:
    """Owns every pipeline component; the host calls ``start`` and ``stop``."""

    def __init__(self, settings, db, provider: Optional[MessagingProvider] = None):
        self.settings = settings
        self.db = db
        self.status_filter = AwaitingAttentionFilter(settings.STATUS_FILTER, settings.STATUS_SUBSTRING_FILTER)
        self.adapter = ChangeFeedAdapter(self.status_filter, settings.ORDERS_TABLE)
        self.websockets = WebSocketManager(send_timeout=settings.BROADCAST_TIMEOUT)

        self.session = ProviderSessionManager(
            provider or create_provider(settings.MESSAGING_PROVIDER, settings),
            reconnect_policy=ReconnectPolicy(
                initial_delay=settings.RECONNECT_INITIAL_DELAY,
                max_delay=settings.RECONNECT_MAX_DELAY,
                max_attempts=settings.RECONNECT_MAX_ATTEMPTS,
            ),
            send_timeout=settings.SEND_TIMEOUT,
            auth_poll_interval=settings.AUTH_POLL_INTERVAL,
            auth_timeout=settings.AUTH_TIMEOUT,
        )

        self.live_bell = LiveBellChannel(
            self.websockets,
            topic=settings.NOTIFICATION_TOPIC,
            enabled=settings.ENABLE_REALTIME_NOTIFICATIONS,
        )
        self.messaging = MessagingChannel(
            self.session,
            admin_recipient=settings.ADMIN_WHATSAPP_NUMBER,
            country_code=settings.DEFAULT_COUNTRY_CODE,
            formatter=MessageFormatter(settings.STORE_NAME, settings.CURRENCY, settings.STORE_TIMEZONE),
            enabled=settings.ENABLE_ORDER_NOTIFICATIONS,
        )
        self.dispatcher = NotificationDispatcher(
            [self.live_bell, self.messaging],
            channel_timeout=settings.CHANNEL_TIMEOUT,
            dedup_window=settings.DEDUP_WINDOW_SECONDS,
        )

        self.listener = EventListener(
            db,
            self.adapter,
            poll_interval=settings.CHANGE_LOG_POLL_INTERVAL,
            batch_size=settings.CHANGE_LOG_BATCH_SIZE,
        )
        self.listener.subscribe(self.dispatcher.dispatch)

    async def start(self) -> None:
        await self.listener.start()
        # Sessions with no interactive login can connect eagerly; others wait
        # for an explicit connect or the first send.
        if self.session.provider.kind != "session_bridge":
            await self.session.connect()

    async def stop(self) -> None:
        await self.listener.stop()
        await self.session.shutdown()

    async def pending_notifications(self, scope_id: Optional[str] = None) -> PendingNotificationsResult:
        return await fetch_pending_notifications(
            self.db,
            self.status_filter,
            scope_id=scope_id,
            page_size=self.settings.PENDING_PAGE_SIZE,
            scan_limit=self.settings.PENDING_SCAN_LIMIT,
        )
