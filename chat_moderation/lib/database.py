"""
Moderation store: filters, rate-limit windows, review queue, sanctions,
reputation and accepted messages.

Two backends share one async interface:

* ``InMemoryStore`` - process-local dictionaries, used for tests and
  single-node development. Every method body runs without yielding to the
  event loop, so each call is atomic with respect to other coroutines.
* ``PostgresStore`` - psycopg2 connection pool; blocking calls run in a
  worker thread and are bounded by a timeout. Multi-row writes share one
  transaction.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, List, Dict, Any, Optional
from uuid import UUID

import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from chat_moderation.lib.config import DatabaseSettings
from chat_moderation.lib.errors import StoreError, StoreTimeout
from chat_moderation.models.content import ContentFilter
from chat_moderation.models.enums import QueueStatus, ActionType
from chat_moderation.models.realtime import RateLimitWindow
from chat_moderation.models.review import ModerationQueueItem
from chat_moderation.models.user import (
    UserModerationStatus, ModerationAction, ReputationActivity
)

logger = logging.getLogger(__name__)

# current status -> new status, applied under the store's lock
StatusTransition = Callable[[UserModerationStatus], UserModerationStatus]


class ModerationStore(ABC):
    """Async persistence interface used by every engine component"""

    # Filters
    @abstractmethod
    async def list_filters(self, active_only: bool = True) -> List[ContentFilter]:
        ...

    @abstractmethod
    async def insert_filter(self, content_filter: ContentFilter) -> ContentFilter:
        ...

    @abstractmethod
    async def set_filter_active(self, filter_id: UUID, is_active: bool) -> bool:
        ...

    # Rate limiting
    @abstractmethod
    async def increment_rate_window(
        self, identifier: str, action_type: str, window_seconds: int, now: datetime
    ) -> int:
        """Atomically bump the window counter and return the post-increment count."""

    # Accepted messages
    @abstractmethod
    async def insert_message(self, message: Dict[str, Any]) -> str:
        ...

    # Review queue
    @abstractmethod
    async def insert_queue_item(self, item: ModerationQueueItem) -> ModerationQueueItem:
        ...

    @abstractmethod
    async def get_queue_item(self, item_id: UUID) -> Optional[ModerationQueueItem]:
        ...

    @abstractmethod
    async def update_queue_item(self, item: ModerationQueueItem, expected: ModerationQueueItem) -> bool:
        """
        Write item's review fields only while the stored row still has
        expected's status and priority. False when the row moved on or is gone.
        """

    @abstractmethod
    async def next_pending_item(self) -> Optional[ModerationQueueItem]:
        """Highest priority pending item, most recent first on ties."""

    @abstractmethod
    async def list_queue_items(self, status: QueueStatus, limit: int = 50) -> List[ModerationQueueItem]:
        ...

    @abstractmethod
    async def count_queue_items(self, status: QueueStatus) -> int:
        ...

    # Sanctions
    @abstractmethod
    async def get_user_status(self, user_id: str) -> Optional[UserModerationStatus]:
        ...

    @abstractmethod
    async def commit_sanction(self, action: ModerationAction, transition: StatusTransition) -> UserModerationStatus:
        """
        Apply transition to the target's current status and record the audit
        action, both or neither. The read and the write are one atomic step,
        so concurrent sanctions on one user serialize. Returns the new status.
        """

    @abstractmethod
    async def set_shadow_ban(self, user_id: str, enabled: bool) -> UserModerationStatus:
        ...

    @abstractmethod
    async def list_actions(
        self, user_id: str, action_type: Optional[ActionType] = None
    ) -> List[ModerationAction]:
        """Newest first."""

    # Reputation
    @abstractmethod
    async def add_reputation(self, activity: ReputationActivity) -> int:
        """Record the activity, atomically add its points, return the new score."""

    @abstractmethod
    async def get_reputation(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def count_users_above(self, score: int) -> int:
        ...

    @abstractmethod
    async def list_activity(self, user_id: str, limit: int = 20) -> List[ReputationActivity]:
        ...

    async def close(self) -> None:
        return None


class InMemoryStore(ModerationStore):
    """Dictionary-backed store (replace with PostgresStore in production)"""

    def __init__(self):
        self.filters: Dict[UUID, ContentFilter] = {}
        self.rate_windows: Dict[tuple, RateLimitWindow] = {}
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.queue: Dict[UUID, ModerationQueueItem] = {}
        self.user_status: Dict[str, UserModerationStatus] = {}
        self.actions: List[ModerationAction] = []
        self.reputation: Dict[str, int] = {}
        self.activity: List[ReputationActivity] = []

    async def list_filters(self, active_only: bool = True) -> List[ContentFilter]:
        filters = sorted(self.filters.values(), key=lambda f: f.created_at)
        if active_only:
            filters = [f for f in filters if f.is_active]
        return [f.model_copy() for f in filters]

    async def insert_filter(self, content_filter: ContentFilter) -> ContentFilter:
        self.filters[content_filter.id] = content_filter.model_copy()
        return content_filter

    async def set_filter_active(self, filter_id: UUID, is_active: bool) -> bool:
        existing = self.filters.get(filter_id)
        if existing is None:
            return False
        self.filters[filter_id] = existing.model_copy(update={"is_active": is_active})
        return True

    async def increment_rate_window(
        self, identifier: str, action_type: str, window_seconds: int, now: datetime
    ) -> int:
        key = (identifier, action_type)
        window = self.rate_windows.get(key)
        if window is None or window.is_expired(now, window_seconds):
            window = RateLimitWindow(identifier=identifier, action_type=action_type, window_start=now)
            self.rate_windows[key] = window
        window.count += 1
        return window.count

    async def insert_message(self, message: Dict[str, Any]) -> str:
        message_id = str(message["id"])
        self.messages[message_id] = dict(message)
        return message_id

    async def insert_queue_item(self, item: ModerationQueueItem) -> ModerationQueueItem:
        self.queue[item.id] = item.model_copy()
        return item

    async def get_queue_item(self, item_id: UUID) -> Optional[ModerationQueueItem]:
        item = self.queue.get(item_id)
        return item.model_copy() if item else None

    async def update_queue_item(self, item: ModerationQueueItem, expected: ModerationQueueItem) -> bool:
        stored = self.queue.get(item.id)
        if stored is None:
            return False
        if (stored.status, stored.priority_level) != (expected.status, expected.priority_level):
            return False
        self.queue[item.id] = stored.model_copy(update={
            "status": item.status,
            "priority_level": item.priority_level,
            "reviewed_by": item.reviewed_by,
            "review_notes": item.review_notes,
            "reviewed_at": item.reviewed_at,
        })
        return True

    async def next_pending_item(self) -> Optional[ModerationQueueItem]:
        pending = [i for i in self.queue.values() if i.status == QueueStatus.PENDING]
        if not pending:
            return None
        best = max(pending, key=lambda i: (i.priority_level, i.created_at))
        return best.model_copy()

    async def list_queue_items(self, status: QueueStatus, limit: int = 50) -> List[ModerationQueueItem]:
        items = [i for i in self.queue.values() if i.status == status]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return [i.model_copy() for i in items[:limit]]

    async def count_queue_items(self, status: QueueStatus) -> int:
        return sum(1 for i in self.queue.values() if i.status == status)

    async def get_user_status(self, user_id: str) -> Optional[UserModerationStatus]:
        status = self.user_status.get(user_id)
        if status is None:
            return None
        return status.model_copy(update={"reputation_score": self.reputation.get(user_id, 0)})

    async def commit_sanction(self, action: ModerationAction, transition: StatusTransition) -> UserModerationStatus:
        user_id = action.target_user_id
        current = self.user_status.get(user_id) or UserModerationStatus(user_id=user_id)
        updated = transition(current.model_copy())
        if updated.user_id != user_id:
            raise StoreError("Sanction status and audit record target different users")
        self.user_status[user_id] = updated.model_copy()
        self.actions.append(action.model_copy())
        return updated.model_copy(update={"reputation_score": self.reputation.get(user_id, 0)})

    async def set_shadow_ban(self, user_id: str, enabled: bool) -> UserModerationStatus:
        current = self.user_status.get(user_id) or UserModerationStatus(user_id=user_id)
        updated = current.model_copy(update={
            "is_shadow_banned": enabled,
            "updated_at": datetime.utcnow(),
        })
        self.user_status[user_id] = updated
        return updated.model_copy(update={"reputation_score": self.reputation.get(user_id, 0)})

    async def list_actions(
        self, user_id: str, action_type: Optional[ActionType] = None
    ) -> List[ModerationAction]:
        actions = [
            a for a in self.actions
            if a.target_user_id == user_id and (action_type is None or a.action_type == action_type)
        ]
        return [a.model_copy() for a in reversed(actions)]

    async def add_reputation(self, activity: ReputationActivity) -> int:
        self.activity.append(activity.model_copy())
        score = self.reputation.get(activity.user_id, 0) + activity.points_earned
        self.reputation[activity.user_id] = score
        return score

    async def get_reputation(self, user_id: str) -> int:
        return self.reputation.get(user_id, 0)

    async def count_users_above(self, score: int) -> int:
        return sum(1 for s in self.reputation.values() if s > score)

    async def list_activity(self, user_id: str, limit: int = 20) -> List[ReputationActivity]:
        activity = [a for a in self.activity if a.user_id == user_id]
        return [a.model_copy() for a in reversed(activity)][:limit]


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS content_filters (
    id UUID PRIMARY KEY,
    filter_type TEXT NOT NULL,
    pattern TEXT NOT NULL,
    is_regex BOOLEAN NOT NULL DEFAULT FALSE,
    severity SMALLINT NOT NULL CHECK (severity BETWEEN 1 AND 3),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS rate_limit_windows (
    identifier TEXT NOT NULL,
    action_type TEXT NOT NULL,
    window_start TIMESTAMP NOT NULL,
    count INTEGER NOT NULL,
    PRIMARY KEY (identifier, action_type)
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    channel_id TEXT,
    content_type TEXT NOT NULL,
    text_content TEXT NOT NULL,
    parent_content_id TEXT,
    confidence_score SMALLINT NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS moderation_queue (
    id UUID PRIMARY KEY,
    content_id TEXT NOT NULL,
    content_type TEXT NOT NULL,
    content_text TEXT NOT NULL,
    author_id TEXT,
    author_name TEXT,
    auto_flagged BOOLEAN NOT NULL DEFAULT TRUE,
    flag_reason TEXT,
    confidence_score SMALLINT NOT NULL DEFAULT 0,
    priority_level INTEGER NOT NULL DEFAULT 1,
    status TEXT NOT NULL DEFAULT 'pending',
    reviewed_by TEXT,
    review_notes TEXT,
    reviewed_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS moderation_queue_pending_idx
    ON moderation_queue (status, priority_level DESC, created_at DESC);

CREATE TABLE IF NOT EXISTS user_moderation_status (
    user_id TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'active',
    muted_until TIMESTAMP,
    banned_until TIMESTAMP,
    suspended_until TIMESTAMP,
    total_warnings INTEGER NOT NULL DEFAULT 0 CHECK (total_warnings >= 0),
    is_shadow_banned BOOLEAN NOT NULL DEFAULT FALSE,
    last_infraction_at TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS moderation_actions (
    id UUID PRIMARY KEY,
    target_user_id TEXT NOT NULL,
    moderator_id TEXT,
    action_type TEXT NOT NULL,
    reason TEXT NOT NULL DEFAULT '',
    duration_minutes INTEGER,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS profiles (
    user_id TEXT PRIMARY KEY,
    reputation INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS reputation_activity (
    id UUID PRIMARY KEY,
    user_id TEXT NOT NULL,
    action_type TEXT NOT NULL,
    points_earned INTEGER NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

QUEUE_COLUMNS = """
    id, content_id, content_type, content_text, author_id, author_name,
    auto_flagged, flag_reason, confidence_score, priority_level, status,
    reviewed_by, review_notes, reviewed_at, created_at
"""

STATUS_SELECT = """
    SELECT s.user_id, s.status, s.muted_until, s.banned_until, s.suspended_until,
           s.total_warnings, s.is_shadow_banned, s.last_infraction_at, s.updated_at,
           COALESCE(p.reputation, 0) AS reputation_score
    FROM user_moderation_status s
    LEFT JOIN profiles p ON p.user_id = s.user_id
    WHERE s.user_id = %s
"""


def _queue_payload(item: ModerationQueueItem) -> Dict[str, Any]:
    payload = item.model_dump(mode="json")
    payload["created_at"] = item.created_at
    payload["reviewed_at"] = item.reviewed_at
    return payload


class PostgresStore(ModerationStore):
    """PostgreSQL-backed store using a psycopg2 connection pool"""

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        timeout_seconds: float = 2.0,
        grace_seconds: float = 1.0,
    ):
        self.settings = settings or DatabaseSettings.from_env()
        self.timeout_seconds = timeout_seconds
        # The server cancels statements at timeout_seconds and rolls back; the
        # client-side wait allows grace_seconds more so the server cancel lands first
        self.grace_seconds = grace_seconds
        self.connection_pool = None
        self._initialize_pool()

    def _initialize_pool(self):
        """Create connection pool"""
        try:
            self.connection_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.settings.min_connections,
                maxconn=self.settings.max_connections,
                host=self.settings.host,
                port=self.settings.port,
                database=self.settings.database,
                user=self.settings.user,
                password=self.settings.password,
                connect_timeout=max(1, int(self.timeout_seconds)),
                options=f"-c statement_timeout={int(self.timeout_seconds * 1000)}",
            )
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.error(f"Failed to create connection pool: {e}")
            raise StoreError(str(e)) from e

    @contextmanager
    def get_cursor(self, cursor_factory=RealDictCursor):
        """Get database cursor; commits on success, rolls back on any error"""
        conn = self.connection_pool.getconn()
        cursor = None
        try:
            cursor = conn.cursor(cursor_factory=cursor_factory)
            yield cursor
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            if cursor is not None:
                cursor.close()
            self.connection_pool.putconn(conn)

    async def _run(self, func, *args):
        """
        Run a blocking database call off the event loop within the time budget.

        A statement past statement_timeout is cancelled by the server and its
        transaction rolls back, so StoreTimeout means nothing was written. The
        client-side wait is only a backstop for a hung connection; when it
        fires the worker thread is abandoned and the outcome is unknown.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), self.timeout_seconds + self.grace_seconds
            )
        except asyncio.TimeoutError as e:
            raise StoreTimeout(f"{func.__name__} exceeded {self.timeout_seconds}s") from e
        except psycopg2.extensions.QueryCanceledError as e:
            raise StoreTimeout(f"{func.__name__} cancelled by statement_timeout: {e}") from e
        except psycopg2.Error as e:
            raise StoreError(str(e)) from e

    def create_schema(self):
        with self.get_cursor() as cursor:
            cursor.execute(SCHEMA_SQL)

    # Filters

    async def list_filters(self, active_only: bool = True) -> List[ContentFilter]:
        def query():
            with self.get_cursor() as cursor:
                sql = "SELECT * FROM content_filters"
                if active_only:
                    sql += " WHERE is_active = TRUE"
                cursor.execute(sql + " ORDER BY created_at ASC")
                return [ContentFilter(**row) for row in cursor.fetchall()]
        return await self._run(query)

    async def insert_filter(self, content_filter: ContentFilter) -> ContentFilter:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO content_filters (id, filter_type, pattern, is_regex, severity, is_active, created_at)
                    VALUES (%(id)s, %(filter_type)s, %(pattern)s, %(is_regex)s, %(severity)s, %(is_active)s, %(created_at)s)
                    """,
                    {
                        "id": str(content_filter.id),
                        "filter_type": content_filter.filter_type.value,
                        "pattern": content_filter.pattern,
                        "is_regex": content_filter.is_regex,
                        "severity": content_filter.severity,
                        "is_active": content_filter.is_active,
                        "created_at": content_filter.created_at,
                    },
                )
            return content_filter
        return await self._run(query)

    async def set_filter_active(self, filter_id: UUID, is_active: bool) -> bool:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    "UPDATE content_filters SET is_active = %s WHERE id = %s",
                    (is_active, str(filter_id)),
                )
                return cursor.rowcount > 0
        return await self._run(query)

    # Rate limiting

    async def increment_rate_window(
        self, identifier: str, action_type: str, window_seconds: int, now: datetime
    ) -> int:
        # SET expressions see the pre-update row, so the reset test and the
        # increment are evaluated against the same window_start.
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO rate_limit_windows (identifier, action_type, window_start, count)
                    VALUES (%(identifier)s, %(action_type)s, %(now)s, 1)
                    ON CONFLICT (identifier, action_type) DO UPDATE SET
                        count = CASE
                            WHEN %(now)s - rate_limit_windows.window_start > make_interval(secs => %(window)s)
                            THEN 1 ELSE rate_limit_windows.count + 1 END,
                        window_start = CASE
                            WHEN %(now)s - rate_limit_windows.window_start > make_interval(secs => %(window)s)
                            THEN %(now)s ELSE rate_limit_windows.window_start END
                    RETURNING count
                    """,
                    {
                        "identifier": identifier,
                        "action_type": action_type,
                        "now": now,
                        "window": window_seconds,
                    },
                )
                return int(cursor.fetchone()["count"])
        return await self._run(query)

    # Accepted messages

    async def insert_message(self, message: Dict[str, Any]) -> str:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO messages (
                        id, user_id, channel_id, content_type, text_content,
                        parent_content_id, confidence_score, created_at
                    )
                    VALUES (
                        %(id)s, %(user_id)s, %(channel_id)s, %(content_type)s, %(text_content)s,
                        %(parent_content_id)s, %(confidence_score)s,
                        COALESCE(%(created_at)s, CURRENT_TIMESTAMP)
                    )
                    ON CONFLICT (id) DO NOTHING
                    """,
                    {
                        "id": str(message["id"]),
                        "user_id": message.get("user_id"),
                        "channel_id": message.get("channel_id"),
                        "content_type": message.get("content_type", "message"),
                        "text_content": message["text_content"],
                        "parent_content_id": message.get("parent_content_id"),
                        "confidence_score": int(message.get("confidence_score", 0) or 0),
                        "created_at": message.get("created_at"),
                    },
                )
            return str(message["id"])
        return await self._run(query)

    # Review queue

    async def insert_queue_item(self, item: ModerationQueueItem) -> ModerationQueueItem:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    f"""
                    INSERT INTO moderation_queue ({QUEUE_COLUMNS})
                    VALUES (
                        %(id)s, %(content_id)s, %(content_type)s, %(content_text)s, %(author_id)s,
                        %(author_name)s, %(auto_flagged)s, %(flag_reason)s, %(confidence_score)s,
                        %(priority_level)s, %(status)s, %(reviewed_by)s, %(review_notes)s,
                        %(reviewed_at)s, %(created_at)s
                    )
                    ON CONFLICT (id) DO NOTHING
                    """,
                    _queue_payload(item),
                )
            return item
        return await self._run(query)

    async def get_queue_item(self, item_id: UUID) -> Optional[ModerationQueueItem]:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    f"SELECT {QUEUE_COLUMNS} FROM moderation_queue WHERE id = %s",
                    (str(item_id),),
                )
                row = cursor.fetchone()
                return ModerationQueueItem(**row) if row else None
        return await self._run(query)

    async def update_queue_item(self, item: ModerationQueueItem, expected: ModerationQueueItem) -> bool:
        def query():
            params = _queue_payload(item)
            params["expected_status"] = expected.status.value
            params["expected_priority"] = expected.priority_level
            with self.get_cursor() as cursor:
                cursor.execute(
                    """
                    UPDATE moderation_queue SET
                        status = %(status)s,
                        priority_level = %(priority_level)s,
                        reviewed_by = %(reviewed_by)s,
                        review_notes = %(review_notes)s,
                        reviewed_at = %(reviewed_at)s
                    WHERE id = %(id)s
                      AND status = %(expected_status)s
                      AND priority_level = %(expected_priority)s
                    """,
                    params,
                )
                return cursor.rowcount > 0
        return await self._run(query)

    async def next_pending_item(self) -> Optional[ModerationQueueItem]:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    f"""
                    SELECT {QUEUE_COLUMNS} FROM moderation_queue
                    WHERE status = 'pending'
                    ORDER BY priority_level DESC, created_at DESC
                    LIMIT 1
                    """
                )
                row = cursor.fetchone()
                return ModerationQueueItem(**row) if row else None
        return await self._run(query)

    async def list_queue_items(self, status: QueueStatus, limit: int = 50) -> List[ModerationQueueItem]:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    f"""
                    SELECT {QUEUE_COLUMNS} FROM moderation_queue
                    WHERE status = %s
                    ORDER BY created_at DESC
                    LIMIT %s
                    """,
                    (status.value, limit),
                )
                return [ModerationQueueItem(**row) for row in cursor.fetchall()]
        return await self._run(query)

    async def count_queue_items(self, status: QueueStatus) -> int:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    "SELECT COUNT(*) AS cnt FROM moderation_queue WHERE status = %s",
                    (status.value,),
                )
                return int(cursor.fetchone()["cnt"])
        return await self._run(query)

    # Sanctions

    async def get_user_status(self, user_id: str) -> Optional[UserModerationStatus]:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(STATUS_SELECT, (user_id,))
                row = cursor.fetchone()
                return UserModerationStatus(**row) if row else None
        return await self._run(query)

    async def commit_sanction(self, action: ModerationAction, transition: StatusTransition) -> UserModerationStatus:
        def query():
            # One cursor, one transaction: the row lock is held from the read
            # through both writes, and both rows commit or neither does
            with self.get_cursor() as cursor:
                cursor.execute(
                    "INSERT INTO user_moderation_status (user_id) VALUES (%s) ON CONFLICT (user_id) DO NOTHING",
                    (action.target_user_id,),
                )
                cursor.execute(STATUS_SELECT + " FOR UPDATE OF s", (action.target_user_id,))
                status = transition(UserModerationStatus(**cursor.fetchone()))
                if status.user_id != action.target_user_id:
                    raise StoreError("Sanction status and audit record target different users")
                cursor.execute(
                    """
                    UPDATE user_moderation_status SET
                        status = %(status)s,
                        muted_until = %(muted_until)s,
                        banned_until = %(banned_until)s,
                        suspended_until = %(suspended_until)s,
                        total_warnings = %(total_warnings)s,
                        last_infraction_at = %(last_infraction_at)s,
                        updated_at = %(updated_at)s
                    WHERE user_id = %(user_id)s
                    """,
                    {
                        "user_id": status.user_id,
                        "status": status.status.value,
                        "muted_until": status.muted_until,
                        "banned_until": status.banned_until,
                        "suspended_until": status.suspended_until,
                        "total_warnings": status.total_warnings,
                        "last_infraction_at": status.last_infraction_at,
                        "updated_at": status.updated_at,
                    },
                )
                cursor.execute(
                    """
                    INSERT INTO moderation_actions (
                        id, target_user_id, moderator_id, action_type, reason, duration_minutes, created_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        str(action.id), action.target_user_id, action.moderator_id,
                        action.action_type.value, action.reason, action.duration_minutes,
                        action.created_at,
                    ),
                )
            return status
        return await self._run(query)

    async def set_shadow_ban(self, user_id: str, enabled: bool) -> UserModerationStatus:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO user_moderation_status (user_id, is_shadow_banned, updated_at)
                    VALUES (%s, %s, CURRENT_TIMESTAMP)
                    ON CONFLICT (user_id) DO UPDATE SET
                        is_shadow_banned = EXCLUDED.is_shadow_banned,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (user_id, enabled),
                )
                cursor.execute(STATUS_SELECT, (user_id,))
                return UserModerationStatus(**cursor.fetchone())
        return await self._run(query)

    async def list_actions(
        self, user_id: str, action_type: Optional[ActionType] = None
    ) -> List[ModerationAction]:
        def query():
            with self.get_cursor() as cursor:
                sql = "SELECT * FROM moderation_actions WHERE target_user_id = %s"
                params: List[Any] = [user_id]
                if action_type is not None:
                    sql += " AND action_type = %s"
                    params.append(action_type.value)
                cursor.execute(sql + " ORDER BY created_at DESC", tuple(params))
                return [ModerationAction(**row) for row in cursor.fetchall()]
        return await self._run(query)

    # Reputation

    async def add_reputation(self, activity: ReputationActivity) -> int:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO reputation_activity (id, user_id, action_type, points_earned, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (
                        str(activity.id), activity.user_id, activity.action_type.value,
                        activity.points_earned, activity.created_at,
                    ),
                )
                cursor.execute(
                    """
                    INSERT INTO profiles (user_id, reputation) VALUES (%(user_id)s, %(points)s)
                    ON CONFLICT (user_id) DO UPDATE SET
                        reputation = profiles.reputation + EXCLUDED.reputation
                    RETURNING reputation
                    """,
                    {"user_id": activity.user_id, "points": activity.points_earned},
                )
                return int(cursor.fetchone()["reputation"])
        return await self._run(query)

    async def get_reputation(self, user_id: str) -> int:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute("SELECT reputation FROM profiles WHERE user_id = %s", (user_id,))
                row = cursor.fetchone()
                return int(row["reputation"]) if row else 0
        return await self._run(query)

    async def count_users_above(self, score: int) -> int:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute("SELECT COUNT(*) AS cnt FROM profiles WHERE reputation > %s", (score,))
                return int(cursor.fetchone()["cnt"])
        return await self._run(query)

    async def list_activity(self, user_id: str, limit: int = 20) -> List[ReputationActivity]:
        def query():
            with self.get_cursor() as cursor:
                cursor.execute(
                    """
                    SELECT * FROM reputation_activity
                    WHERE user_id = %s
                    ORDER BY created_at DESC
                    LIMIT %s
                    """,
                    (user_id, limit),
                )
                return [ReputationActivity(**row) for row in cursor.fetchall()]
        return await self._run(query)

    async def close(self):
        """Close all connections in pool"""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")


def create_store(settings) -> ModerationStore:
    """Build the configured store backend"""
    if settings.store_backend == "postgres":
        return PostgresStore(settings.database, timeout_seconds=settings.store_timeout_seconds)
    return InMemoryStore()
