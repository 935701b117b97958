"""
Human review queue.
Flagged content waits here for a moderator disposition. Items are served
highest priority first, newest first within a priority.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from chat_moderation.lib.database import ModerationStore
from chat_moderation.lib.errors import QueueItemNotFound, SanctionError, StoreError
from chat_moderation.lib.metrics import metrics
from chat_moderation.models.content import ContentMetadata, ModerationVerdict
from chat_moderation.models.enums import QueueStatus, ActionType, EventType
from chat_moderation.models.review import ModerationQueueItem, priority_for_confidence
from chat_moderation.services.realtime_service import EventEmitter
from chat_moderation.services.sanction_service import SanctionStateMachine

logger = logging.getLogger(__name__)

QUEUE_CHANNEL = "review-queue"


class ReviewQueue:
    """
    Pending -> approved | rejected (terminal), or escalated back to pending
    one priority level higher.
    """

    def __init__(
        self,
        store: ModerationStore,
        sanctions: Optional[SanctionStateMachine] = None,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.sanctions = sanctions
        self.emitter = emitter
        self.clock = clock

    async def enqueue(self, item: ModerationQueueItem) -> ModerationQueueItem:
        """Insert an item as pending."""
        item = item.model_copy(update={"status": QueueStatus.PENDING})
        await self.store.insert_queue_item(item)
        logger.info(
            f"Queued {item.content_type.value} {item.content_id} for review "
            f"(priority {item.priority_level}, confidence {item.confidence_score})"
        )
        await self._emit(EventType.QUEUE_ITEM_CREATED, item)
        await self._refresh_depth()
        return item

    async def enqueue_verdict(
        self,
        content_id: str,
        text: str,
        verdict: ModerationVerdict,
        author_id: Optional[str] = None,
        metadata: Optional[ContentMetadata] = None,
    ) -> ModerationQueueItem:
        """Build a queue item from a flagged verdict and enqueue it."""
        metadata = metadata or ContentMetadata()
        item = ModerationQueueItem(
            content_id=content_id,
            content_type=metadata.content_type,
            content_text=text,
            author_id=author_id,
            author_name=metadata.author_name,
            auto_flagged=True,
            flag_reason="; ".join(verdict.violation_labels) or None,
            confidence_score=verdict.confidence_score,
            priority_level=priority_for_confidence(verdict.confidence_score),
        )
        return await self.enqueue(item)

    async def get(self, item_id: UUID) -> ModerationQueueItem:
        item = await self.store.get_queue_item(item_id)
        if item is None:
            raise QueueItemNotFound(f"Queue item {item_id} not found")
        return item

    async def dequeue_next(self) -> Optional[ModerationQueueItem]:
        """Highest-priority pending item, most recent first on ties. Does not change its status."""
        return await self.store.next_pending_item()

    async def list_items(self, status: QueueStatus = QueueStatus.PENDING, limit: int = 50) -> List[ModerationQueueItem]:
        return await self.store.list_queue_items(status, limit)

    async def pending_count(self) -> int:
        return await self.store.count_queue_items(QueueStatus.PENDING)

    async def disposition(
        self,
        item_id: UUID,
        outcome: QueueStatus,
        notes: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        moderator_id: Optional[str] = None,
    ) -> bool:
        """
        Resolve a review item.

        Returns False when the item is missing, already terminal, claimed by
        a concurrent disposition, or the outcome is not a disposition.

        The item moves first with a conditional write, so only the winning
        disposition goes on to sanction. A rejected item sanctions its
        author: a warning, or a mute when duration_minutes is given. If that
        sanction fails the item is put back and SanctionError propagates.
        """
        if outcome == QueueStatus.PENDING:
            logger.warning(f"Ignoring disposition of {item_id} to pending")
            return False

        item = await self.store.get_queue_item(item_id)
        if item is None:
            logger.warning(f"Disposition for unknown queue item {item_id}")
            return False
        if item.status.is_terminal:
            logger.warning(f"Queue item {item_id} already {item.status.value}")
            return False

        now = self.clock()
        if outcome == QueueStatus.ESCALATED:
            updated = item.model_copy(update={
                "status": QueueStatus.PENDING,
                "priority_level": item.priority_level + 1,
                "review_notes": notes,
                "reviewed_by": moderator_id,
                "reviewed_at": now,
            })
        else:
            updated = item.model_copy(update={
                "status": outcome,
                "review_notes": notes,
                "reviewed_by": moderator_id,
                "reviewed_at": now,
            })

        if not await self.store.update_queue_item(updated, expected=item):
            logger.warning(f"Queue item {item_id} changed during disposition; {outcome.value} not applied")
            return False

        if outcome == QueueStatus.REJECTED and item.author_id:
            try:
                await self._sanction_author(item, duration_minutes, moderator_id)
            except SanctionError:
                await self._restore(item, updated)
                raise

        metrics.record_disposition(outcome.value)
        logger.info(f"Queue item {item_id} -> {updated.status.value} (priority {updated.priority_level})")

        await self._emit(EventType.QUEUE_ITEM_UPDATED, updated, outcome=outcome.value)
        await self._refresh_depth()
        return True

    async def _sanction_author(
        self,
        item: ModerationQueueItem,
        duration_minutes: Optional[int],
        moderator_id: Optional[str],
    ) -> None:
        if self.sanctions is None:
            logger.warning(f"No sanction handler configured; author of {item.id} not sanctioned")
            return

        action_type = ActionType.MUTE if duration_minutes else ActionType.WARN
        reason = item.flag_reason or "Content rejected in review"
        try:
            await self.sanctions.apply(
                item.author_id,
                action_type,
                reason,
                duration_minutes=duration_minutes,
                moderator_id=moderator_id,
            )
        except SanctionError:
            logger.error(f"Could not sanction {item.author_id} for queue item {item.id}")
            raise

    async def _restore(self, original: ModerationQueueItem, claimed: ModerationQueueItem) -> None:
        """Undo a claim whose sanction failed, unless someone has moved the item since."""
        try:
            restored = await self.store.update_queue_item(original, expected=claimed)
        except StoreError as e:
            logger.error(f"Could not return queue item {original.id} to {original.status.value}: {e}")
            return
        if not restored:
            logger.error(f"Queue item {original.id} moved before it could be returned to {original.status.value}")

    async def _emit(self, event_type: EventType, item: ModerationQueueItem, **extra) -> None:
        if self.emitter is None:
            return
        payload = {
            "item_id": str(item.id),
            "content_id": item.content_id,
            "status": item.status.value,
            "priority_level": item.priority_level,
            "author_id": item.author_id,
        }
        payload.update(extra)
        await self.emitter.emit(event_type, channel=QUEUE_CHANNEL, payload=payload)

    async def _refresh_depth(self) -> None:
        try:
            metrics.update_queue_depth(await self.pending_count())
        except Exception as e:
            logger.debug(f"Could not refresh queue depth: {e}")
