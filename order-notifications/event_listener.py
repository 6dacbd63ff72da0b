"""Event listener service: polls the change log and feeds order events to subscribers."""

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from change_feed import ChangeFeedAdapter
from models import OrderEvent, RawChange

logger = logging.getLogger(__name__)

Subscriber = Callable[[OrderEvent], Awaitable[Any]]


class EventListener:
    """Listens for database changes and notifies subscribers.

    Changes to the same order are handled in the order the database emitted
    them; changes to different orders are handled concurrently.
    """

    def __init__(self, db, adapter: ChangeFeedAdapter, poll_interval: float = 0.5, batch_size: int = 100):
        self.db = db
        self.adapter = adapter
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.subscribers: List[Subscriber] = []
        self.running = False
        self._task: Optional[asyncio.Task] = None

    def subscribe(self, callback: Subscriber) -> None:
        """Subscribe to order events."""
        self.subscribers.append(callback)
        logger.info(f"New subscriber added. Total subscribers: {len(self.subscribers)}")

    async def start(self) -> None:
        """Start the event listener."""
        if self.running:
            logger.warning("Event listener is already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._listen_loop())
        logger.info("Event listener started")

    async def stop(self) -> None:
        """Stop the event listener."""
        if not self.running:
            return

        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Event listener stopped")

    async def _listen_loop(self) -> None:
        """Main listening loop."""
        logger.info("Starting change detection loop")

        while self.running:
            try:
                await self.poll_once()

                # Wait before next poll
                await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                logger.info("Event listener cancelled")
                break
            except Exception as e:
                logger.error(f"Error in event listener loop: {e}")
                await asyncio.sleep(1)  # Brief pause before retry

    async def poll_once(self) -> int:
        """Fetch and handle one batch of unprocessed changes; returns rows handled."""
        changes = await self.db.get_unprocessed_changes(self.batch_size)
        if not changes:
            return 0

        logger.info(f"Processing {len(changes)} new changes")
        processed_ids = await self.process_batch(changes)

        # Mark changes as processed
        if processed_ids:
            await self.db.mark_changes_processed(processed_ids)
        return len(processed_ids)

    async def process_batch(self, changes: List[Dict[str, Any]]) -> List[int]:
        """Handle change-log rows, grouped per order; returns the ids to mark processed."""
        groups: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        for row in changes:
            groups.setdefault(str(row.get("order_id")), []).append(row)

        results = await asyncio.gather(*(self._process_group(rows) for rows in groups.values()))
        return [change_id for ids in results for change_id in ids]

    async def _process_group(self, rows: List[Dict[str, Any]]) -> List[int]:
        processed = []
        for row in rows:
            try:
                raw = RawChange.from_change_log_row(row)
            except Exception as e:
                logger.error(f"Dropping unreadable change {row.get('id')}: {e}")
            else:
                await self.handle_raw_change(raw)
            if row.get("id") is not None:
                processed.append(row["id"])
        return processed

    async def handle_raw_change(self, raw: RawChange) -> Optional[OrderEvent]:
        """Adapt one raw change and notify subscribers; returns the event, if any."""
        event = self.adapter.to_event(raw)
        if event is None:
            return None

        event = await self._enrich(raw, event)
        await self._notify_subscribers(event)
        return event

    async def _enrich(self, raw: RawChange, event: OrderEvent) -> OrderEvent:
        """Fill in customer contact and line items from the current order row."""
        try:
            details = await self.db.get_order_details(event.order_id)
        except Exception as e:
            logger.warning(f"Could not load details for order {event.order_id}: {e}")
            return event
        if not details:
            return event

        enriched = raw.model_copy(update={"new_record": {**details, **(raw.new_record or {})}})
        return self.adapter.to_event(enriched) or event

    async def _notify_subscribers(self, event: OrderEvent) -> None:
        """Notify all subscribers of an order event."""
        if not self.subscribers:
            return

        # Notify all subscribers concurrently
        tasks = [
            asyncio.create_task(subscriber(event))
            for subscriber in self.subscribers.copy()  # Copy to avoid modification during iteration
        ]

        # Wait for all notifications to complete
        results = await asyncio.gather(*tasks, return_exceptions=True)

        # Log any errors
        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(f"Error notifying subscriber {i}: {result}")
