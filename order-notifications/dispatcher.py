"""Fan-out dispatcher: drives every delivery channel for each order event."""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from delivery_channels import DeliveryChannel
from errors import classify_error
from models import DeliveryAttempt, DeliveryOutcome, FailureReason, OrderEvent

logger = logging.getLogger(__name__)


class RecentDeliveries:
    """Short-lived memory of ``(order_id, status, channel)`` keys already delivered."""

    def __init__(self, window_seconds: float, clock=time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._seen: Dict[Tuple[str, str, str], float] = {}

    def seen_recently(self, key: Tuple[str, str, str]) -> bool:
        now = self._clock()
        expired = [k for k, at in self._seen.items() if now - at >= self.window_seconds]
        for k in expired:
            del self._seen[k]
        return key in self._seen

    def remember(self, key: Tuple[str, str, str]) -> None:
        self._seen[key] = self._clock()


class NotificationDispatcher:
    """Delivers one event to all channels concurrently with isolated failures.

    ``dispatch`` never raises: a channel that errors or exceeds
    ``channel_timeout`` yields a failed attempt and the others carry on.
    Delivery is at-least-once upstream, so the same event may arrive twice;
    ``dedup_window`` > 0 suppresses repeats inside that many seconds.
    """

    def __init__(self, channels: Sequence[DeliveryChannel], channel_timeout: float = 15.0,
                 dedup_window: float = 0.0):
        self.channels = list(channels)
        self.channel_timeout = channel_timeout
        self._recent: Optional[RecentDeliveries] = RecentDeliveries(dedup_window) if dedup_window > 0 else None
        self._counters: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.events_dispatched = 0

    async def dispatch(self, event: OrderEvent) -> List[DeliveryAttempt]:
        self.events_dispatched += 1
        attempts = await asyncio.gather(*(self._run_channel(channel, event) for channel in self.channels))
        for attempt in attempts:
            self._record(attempt)
        return list(attempts)

    async def _run_channel(self, channel: DeliveryChannel, event: OrderEvent) -> DeliveryAttempt:
        key = (event.order_id, event.status, channel.kind.value)
        if self._recent is not None and self._recent.seen_recently(key):
            return DeliveryAttempt.skipped(channel.kind, event.order_id, "duplicate within dedup window")
        try:
            attempt = await asyncio.wait_for(channel.deliver(event), self.channel_timeout)
        except asyncio.TimeoutError:
            attempt = DeliveryAttempt.failed(channel.kind, event.order_id, FailureReason.TRANSPORT_UNAVAILABLE,
                                             f"timed out after {self.channel_timeout}s")
        except Exception as e:
            attempt = DeliveryAttempt.failed(channel.kind, event.order_id, classify_error(e),
                                             str(e) or type(e).__name__)
        if self._recent is not None and attempt.outcome == DeliveryOutcome.SENT:
            self._recent.remember(key)
        return attempt

    def _record(self, attempt: DeliveryAttempt) -> None:
        outcome = attempt.outcome.value
        if attempt.fallback_used:
            outcome = "sent_fallback"
        self._counters[attempt.channel.value][outcome] += 1

        if attempt.outcome == DeliveryOutcome.FAILED:
            logger.warning(
                f"{attempt.channel.value} delivery failed for order {attempt.order_id}: "
                f"{attempt.failure_reason.value} ({attempt.detail})"
            )
        else:
            logger.info(
                f"{attempt.channel.value} delivery for order {attempt.order_id}: {outcome}"
                + (f" ({attempt.detail})" if attempt.detail else "")
            )

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {channel: dict(outcomes) for channel, outcomes in self._counters.items()}
