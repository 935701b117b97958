"""
Realtime moderation events.
Emits state transitions for dashboards and consumes them idempotently.
"""

import asyncio
import logging
from collections import defaultdict, deque, OrderedDict
from typing import Any, Callable, Deque, Dict, Optional
from uuid import UUID

from pydantic import ValidationError

from chat_moderation.lib.kafka_client import MessageBroker
from chat_moderation.models.enums import EventType
from chat_moderation.models.realtime import ModerationEvent

logger = logging.getLogger(__name__)


class EventEmitter:
    """
    Publishes moderation events, numbering them per channel within this
    process.
    Publishing runs in a worker thread and is bounded by the broker's own
    send timeout. Publishing failures are logged and never undo the
    transition that produced the event.
    """

    def __init__(
        self,
        broker: Optional[MessageBroker] = None,
        history_size: int = 1000,
    ):
        self.broker = broker
        self._sequences: Dict[str, int] = defaultdict(int)
        self.recent: Deque[ModerationEvent] = deque(maxlen=history_size)

        self.metrics = {
            'events_emitted': 0,
            'publish_failures': 0,
        }

    async def emit(self, event_type: EventType, channel: str, payload: Dict[str, Any]) -> ModerationEvent:
        self._sequences[channel] += 1
        event = ModerationEvent(
            event_type=event_type,
            channel=channel,
            sequence=self._sequences[channel],
            payload=payload,
        )
        self.recent.append(event)
        self.metrics['events_emitted'] += 1

        if self.broker is not None:
            try:
                published = await asyncio.to_thread(self.broker.publish_event, event.model_dump(mode="json"))
                if not published:
                    self.metrics['publish_failures'] += 1
            except Exception as e:
                self.metrics['publish_failures'] += 1
                logger.error(f"Failed to publish {event_type.value} event on {channel}: {e}")

        return event

    def get_metrics(self) -> dict:
        return self.metrics.copy()


class ModerationEventHandler:
    """
    Re-delivery-safe consumer for moderation events.

    Events are skipped only when their event_id was already handled; the
    last max_tracked_events ids are remembered. Sequence numbers come from
    each emitting process and restart with it, so they are passed through
    for display and never used to drop events. Per-channel order is the
    partition order of the events topic. The callback runs before the event
    is recorded, so a failed callback is retried on redelivery.
    """

    def __init__(self, on_event: Callable[[ModerationEvent], None], max_tracked_events: int = 10000):
        self.on_event = on_event
        self.max_tracked_events = max_tracked_events
        self._seen: "OrderedDict[UUID, None]" = OrderedDict()

        self.metrics = {
            'handled': 0,
            'duplicates': 0,
            'invalid': 0,
        }

    def handle(self, raw_event: Dict[str, Any]) -> bool:
        """Process one delivered event; returns True when the callback ran."""
        try:
            event = ModerationEvent.model_validate(raw_event)
        except ValidationError as e:
            self.metrics['invalid'] += 1
            logger.warning(f"Dropping malformed moderation event: {e}")
            return False

        if event.event_id in self._seen:
            self.metrics['duplicates'] += 1
            return False

        self.on_event(event)

        self._seen[event.event_id] = None
        if len(self._seen) > self.max_tracked_events:
            self._seen.popitem(last=False)
        self.metrics['handled'] += 1
        return True

    def get_metrics(self) -> dict:
        return self.metrics.copy()
