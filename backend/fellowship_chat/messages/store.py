"""MessageStore: DuckDB-backed durable record of chat messages.

Database Schema:
    messages table:
        - id: Server-assigned UUID (primary key)
        - seq: Insertion sequence, breaks createdAt ties
        - scope: 'community', 'admin' or 'private'
        - author_id / author_name / author_avatar: Sender
        - recipient_id: Other participant (private only)
        - content: Message body
        - created_at: Insertion time (UTC, non-decreasing)
        - is_delivered / delivered_at, is_read / read_at: Acknowledgement state
        - reactions: JSON object emoji -> {count, users}

    read_watermarks table:
        - (user_id, scope) primary key
        - last_read_at: When the user last caught up on the scope

Thread Safety:
    The DuckDB connection is NOT thread-safe. Every statement runs under a
    single store-wide lock, which also serializes read-modify-write updates
    on the same message so concurrent delivered/read/reaction changes cannot
    interleave.

Usage:
    store = MessageStore(db_path=":memory:")
    message = store.create(ChatScope.COMMUNITY, "u1", "Hello", author_name="Ada")
    store.mark_read(message.id, identity)
"""
import json
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple

import duckdb

from fellowship_chat.errors import NotFoundError, StorageError, ValidationError
from fellowship_chat.identity.schemas import Identity

from . import receipts
from .reactions import toggle_reaction
from .schemas import (
    ChatScope,
    Message,
    Reaction,
    UnreadCounts,
    Watermark,
    utcnow,
)

logger = logging.getLogger(__name__)

# Default page size for community/admin lists
DEFAULT_PAGE_SIZE = 100

_EPOCH = datetime(1970, 1, 1)

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1"

_CREATE_MESSAGES = """
CREATE TABLE IF NOT EXISTS messages (
    id            VARCHAR PRIMARY KEY,
    seq           BIGINT NOT NULL DEFAULT nextval('messages_seq'),
    scope         VARCHAR NOT NULL,
    author_id     VARCHAR NOT NULL,
    author_name   VARCHAR NOT NULL DEFAULT '',
    author_avatar VARCHAR,
    recipient_id  VARCHAR,
    content       VARCHAR NOT NULL,
    created_at    TIMESTAMP NOT NULL,
    is_delivered  BOOLEAN NOT NULL DEFAULT FALSE,
    delivered_at  TIMESTAMP,
    is_read       BOOLEAN NOT NULL DEFAULT FALSE,
    read_at       TIMESTAMP,
    reactions     VARCHAR NOT NULL DEFAULT '{}'
)
"""

_CREATE_WATERMARKS = """
CREATE TABLE IF NOT EXISTS read_watermarks (
    user_id      VARCHAR NOT NULL,
    scope        VARCHAR NOT NULL,
    last_read_at TIMESTAMP NOT NULL,
    PRIMARY KEY (user_id, scope)
)
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_messages_scope ON messages(scope)",
    "CREATE INDEX IF NOT EXISTS idx_messages_recipient ON messages(recipient_id)",
)

_COLUMNS = (
    "id, scope, author_id, author_name, author_avatar, recipient_id, content, "
    "created_at, is_delivered, delivered_at, is_read, read_at, reactions"
)


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC for TIMESTAMP columns."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


class MessageStore:
    """Authoritative CRUD for chat messages and read watermarks.

    Attributes:
        page_size: Upper bound for community/admin list queries.
    """

    def __init__(self, db_path: str = ":memory:", page_size: int = DEFAULT_PAGE_SIZE) -> None:
        """Open (or create) the database and its schema.

        Args:
            db_path: DuckDB file path, or ":memory:" for a throwaway store.
            page_size: Cap applied to community/admin lists.
        """
        self._db_path = db_path
        self.page_size = page_size
        self._lock = threading.Lock()
        try:
            self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(db_path)
            self._conn.execute(_CREATE_SEQUENCE)
            self._conn.execute(_CREATE_MESSAGES)
            self._conn.execute(_CREATE_WATERMARKS)
            for statement in _INDEXES:
                self._conn.execute(statement)
            row = self._conn.execute("SELECT max(created_at) FROM messages").fetchone()
        except duckdb.Error as exc:
            logger.error("[Store] Failed to open %s: %s", db_path, exc)
            raise StorageError("Message storage is unavailable.") from exc
        self._last_created_at: Optional[datetime] = _from_db(row[0]) if row else None
        logger.info("[Store] Initialized with db=%s page_size=%d", db_path, page_size)

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @contextmanager
    def _cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield the connection under the store lock, mapping DuckDB errors."""
        with self._lock:
            if self._conn is None:
                raise StorageError("Message storage is closed.")
            try:
                yield self._conn
            except duckdb.Error as exc:
                logger.error("[Store] Database error: %s", exc)
                raise StorageError("Message storage failed.") from exc

    def _row_to_message(self, row) -> Message:
        reactions = {
            emoji: Reaction(**value)
            for emoji, value in json.loads(row[12] or "{}").items()
        }
        return Message(
            id=row[0],
            scope=ChatScope(row[1]),
            authorId=row[2],
            authorName=row[3] or "",
            authorAvatar=row[4],
            recipientId=row[5],
            content=row[6],
            createdAt=_from_db(row[7]),
            delivered=bool(row[8]),
            deliveredAt=_from_db(row[9]),
            read=bool(row[10]),
            readAt=_from_db(row[11]),
            reactions=reactions,
        )

    def _fetch(self, conn: duckdb.DuckDBPyConnection, message_id: str) -> Message:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [message_id]
        ).fetchone()
        if row is None:
            raise NotFoundError("Message not found.")
        return self._row_to_message(row)

    def _write_status(self, conn: duckdb.DuckDBPyConnection, message: Message) -> None:
        conn.execute(
            """
            UPDATE messages
               SET is_delivered = ?, delivered_at = ?, is_read = ?, read_at = ?
             WHERE id = ?
            """,
            [
                message.delivered, _to_db(message.deliveredAt),
                message.read, _to_db(message.readAt),
                message.id,
            ],
        )

    def _next_created_at(self) -> datetime:
        now = utcnow()
        if self._last_created_at is not None and now < self._last_created_at:
            now = self._last_created_at
        self._last_created_at = now
        return now

    @staticmethod
    def _validate_draft(scope: ChatScope, author_id: str, content: str,
                        recipient_id: Optional[str]) -> None:
        if not author_id:
            raise ValidationError("Message author is required.")
        if not content or not content.strip():
            raise ValidationError("Message content is required.")
        if scope == ChatScope.PRIVATE:
            if not recipient_id:
                raise ValidationError("A private message requires a recipientId.")
            if recipient_id == author_id:
                raise ValidationError("A private message cannot be addressed to its author.")
        elif recipient_id:
            raise ValidationError(f"A {scope.value} message cannot have a recipientId.")

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def create(
        self,
        scope: ChatScope,
        author_id: str,
        content: str,
        recipient_id: Optional[str] = None,
        author_name: str = "",
        author_avatar: Optional[str] = None,
    ) -> Message:
        """Persist a new message and return the stored copy.

        Community and admin messages are stored already delivered, since
        joining those rooms implies reachability. Private messages start
        as SENT and wait for an explicit acknowledgement.

        Raises:
            ValidationError: If scope-specific fields are missing or misplaced.
            StorageError: If the insert fails.
        """
        self._validate_draft(scope, author_id, content, recipient_id)

        with self._cursor() as conn:
            created_at = self._next_created_at()
            delivered = scope != ChatScope.PRIVATE
            message = Message(
                id=str(uuid.uuid4()),
                scope=scope,
                authorId=author_id,
                authorName=author_name,
                authorAvatar=author_avatar,
                recipientId=recipient_id if scope == ChatScope.PRIVATE else None,
                content=content,
                createdAt=created_at,
                delivered=delivered,
                deliveredAt=created_at if delivered else None,
            )
            conn.execute(
                """
                INSERT INTO messages
                  (id, scope, author_id, author_name, author_avatar, recipient_id,
                   content, created_at, is_delivered, delivered_at, is_read, read_at,
                   reactions)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, FALSE, NULL, '{}')
                """,
                [
                    message.id, scope.value, author_id, author_name, author_avatar,
                    message.recipientId, content, _to_db(created_at),
                    delivered, _to_db(message.deliveredAt),
                ],
            )
        logger.debug("[Store] Created %s message %s by %s", scope.value, message.id, author_id)
        return message

    def get(self, message_id: str) -> Message:
        """Fetch one message.

        Raises:
            NotFoundError: If no message has this ID.
        """
        with self._cursor() as conn:
            return self._fetch(conn, message_id)

    def _list_scope(self, scope: ChatScope, limit: Optional[int]) -> List[Message]:
        limit = min(limit or self.page_size, self.page_size)
        with self._cursor() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM (
                    SELECT *, seq AS _seq FROM messages
                     WHERE scope = ?
                     ORDER BY created_at DESC, seq DESC
                     LIMIT ?
                ) ORDER BY created_at ASC, _seq ASC
                """,
                [scope.value, limit],
            ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def list_community(self, limit: Optional[int] = None) -> List[Message]:
        """Most recent community messages, oldest first, capped at page_size."""
        return self._list_scope(ChatScope.COMMUNITY, limit)

    def list_admin(self, limit: Optional[int] = None) -> List[Message]:
        """Most recent admin messages, oldest first, capped at page_size."""
        return self._list_scope(ChatScope.ADMIN, limit)

    def list_private(self, user_a: str, user_b: str) -> List[Message]:
        """Whole conversation between two users, oldest first."""
        with self._cursor() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM messages
                 WHERE scope = 'private'
                   AND ((author_id = ? AND recipient_id = ?)
                     OR (author_id = ? AND recipient_id = ?))
                 ORDER BY created_at ASC, seq ASC
                """,
                [user_a, user_b, user_b, user_a],
            ).fetchall()
        return [self._row_to_message(r) for r in rows]

    # -----------------------------------------------------------------------
    # Acknowledgements
    # -----------------------------------------------------------------------

    def mark_delivered(self, message_id: str) -> Message:
        """Advance a message to DELIVERED. Idempotent.

        No identity check: delivery models transport-level receipt.

        Raises:
            NotFoundError: If no message has this ID.
        """
        with self._cursor() as conn:
            current = self._fetch(conn, message_id)
            updated = receipts.apply_delivered(current)
            if updated is not current:
                self._write_status(conn, updated)
        return updated

    def mark_read(self, message_id: str, actor: Identity) -> Message:
        """Advance a message to READ (and DELIVERED). Idempotent.

        Raises:
            NotFoundError: If no message has this ID.
            AuthorizationError: If ``actor`` has no standing in the message.
        """
        with self._cursor() as conn:
            current = self._fetch(conn, message_id)
            receipts.ensure_can_read(current, actor)
            updated = receipts.apply_read(current)
            if updated is not current:
                self._write_status(conn, updated)
        return updated

    # -----------------------------------------------------------------------
    # Reactions
    # -----------------------------------------------------------------------

    def toggle_reaction(self, message_id: str, emoji: str, user_id: str) -> Tuple[Message, bool]:
        """Add or remove ``user_id``'s ``emoji`` reaction.

        Returns:
            Tuple of (message, added) with the updated message.

        Raises:
            NotFoundError: If no message has this ID.
        """
        if not emoji:
            raise ValidationError("An emoji is required.")
        with self._cursor() as conn:
            current = self._fetch(conn, message_id)
            reactions, added = toggle_reaction(current.reactions, emoji, user_id)
            conn.execute(
                "UPDATE messages SET reactions = ? WHERE id = ?",
                [
                    json.dumps({k: v.model_dump() for k, v in reactions.items()}),
                    message_id,
                ],
            )
        return current.model_copy(update={"reactions": reactions}), added

    # -----------------------------------------------------------------------
    # Watermarks and unread counts
    # -----------------------------------------------------------------------

    def set_watermark(self, user_id: str, scope: ChatScope,
                      at: Optional[datetime] = None) -> Watermark:
        """Record that ``user_id`` has caught up on ``scope`` at ``at`` (default now)."""
        if scope == ChatScope.PRIVATE:
            raise ValidationError("Watermarks apply to community and admin chats only.")
        at = at or utcnow()
        with self._cursor() as conn:
            conn.execute(
                """
                INSERT INTO read_watermarks (user_id, scope, last_read_at)
                VALUES (?, ?, ?)
                ON CONFLICT (user_id, scope) DO UPDATE SET last_read_at = excluded.last_read_at
                """,
                [user_id, scope.value, _to_db(at)],
            )
        return Watermark(userId=user_id, scope=scope, lastReadAt=at)

    def get_watermark(self, user_id: str, scope: ChatScope) -> Optional[datetime]:
        with self._cursor() as conn:
            row = conn.execute(
                "SELECT last_read_at FROM read_watermarks WHERE user_id = ? AND scope = ?",
                [user_id, scope.value],
            ).fetchone()
        return _from_db(row[0]) if row else None

    def _count_unread_broadcast(self, conn: duckdb.DuckDBPyConnection, user_id: str,
                                scope: ChatScope, since: datetime) -> int:
        row = conn.execute(
            """
            SELECT count(*) FROM messages
             WHERE scope = ? AND author_id <> ? AND is_read = FALSE AND created_at >= ?
            """,
            [scope.value, user_id, since],
        ).fetchone()
        return int(row[0]) if row else 0

    def unread_counts(self, user_id: str, role_is_admin: bool) -> UnreadCounts:
        """Aggregate unread totals for one user.

        Args:
            user_id: The reader.
            role_is_admin: Whether the admin chat counts for this reader.
        """
        with self._cursor() as conn:
            rows = conn.execute(
                """
                SELECT author_id, count(*) FROM messages
                 WHERE scope = 'private' AND recipient_id = ? AND is_read = FALSE
                 GROUP BY author_id
                """,
                [user_id],
            ).fetchall()
            private: Dict[str, int] = {author: int(count) for author, count in rows}

            marks = dict(conn.execute(
                "SELECT scope, last_read_at FROM read_watermarks WHERE user_id = ?",
                [user_id],
            ).fetchall())

            community = self._count_unread_broadcast(
                conn, user_id, ChatScope.COMMUNITY,
                marks.get(ChatScope.COMMUNITY.value) or _EPOCH,
            )
            admin = 0
            if role_is_admin:
                admin = self._count_unread_broadcast(
                    conn, user_id, ChatScope.ADMIN,
                    marks.get(ChatScope.ADMIN.value) or _EPOCH,
                )
        return UnreadCounts(private=private, community=community, admin=admin)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("[Store] Closed db=%s", self._db_path)
