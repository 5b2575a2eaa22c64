"""NotificationSink: DuckDB-backed per-user notification queue.

Notifications are written as side effects of messaging events so that users
who were not connected still find out about them. Marking notifications
read is scoped to the owning user: ids that do not exist or belong to
someone else are silently ignored, so the endpoint never reveals whether a
notification id exists.
"""
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import duckdb

from tutorlink.errors import TransientStoreError

from .schemas import Notification, NotificationType, utcnow

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS notifications (
    id              VARCHAR PRIMARY KEY,
    user_id         VARCHAR NOT NULL,
    type            VARCHAR NOT NULL,
    payload         VARCHAR NOT NULL DEFAULT '{}',
    conversation_id VARCHAR,
    is_read         BOOLEAN NOT NULL DEFAULT FALSE,
    created_at      TIMESTAMP NOT NULL
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id)"

DEFAULT_PAGE_SIZE = 50


class NotificationSink:
    """Durable per-user notifications in DuckDB."""

    _COLUMNS = ["id", "user_id", "type", "payload", "is_read", "created_at"]

    def __init__(self, db_path: str = "notifications.duckdb", page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._db_path = db_path
        self.page_size = page_size
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        self._conn.execute(_INDEX)
        logger.info("[Notifications] Initialized with db=%s", self._db_path)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _execute(self, sql: str, params: list) -> list:
        try:
            return self._conn.execute(sql, params).fetchall()
        except duckdb.Error as e:
            logger.error("[Notifications] Query failed: %s", e)
            raise TransientStoreError() from e

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def create_notification(
        self,
        user_id: str,
        type_: NotificationType,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            id=str(uuid.uuid4()),
            userId=user_id,
            type=type_,
            payload=payload or {},
            createdAt=utcnow(),
        )
        self._execute(
            """
            INSERT INTO notifications (id, user_id, type, payload, conversation_id, is_read, created_at)
            VALUES (?, ?, ?, ?, ?, FALSE, ?)
            """,
            [
                notification.id,
                user_id,
                notification.type.value,
                json.dumps(notification.payload),
                notification.payload.get("conversationId"),
                notification.createdAt,
            ],
        )
        return notification

    def mark_read(self, notification_id: str, user_id: str) -> None:
        self._execute(
            "UPDATE notifications SET is_read = TRUE WHERE id = ? AND user_id = ?",
            [notification_id, user_id],
        )

    def mark_all_read(self, user_id: str) -> int:
        rows = self._execute(
            "UPDATE notifications SET is_read = TRUE WHERE user_id = ? AND is_read = FALSE RETURNING id",
            [user_id],
        )
        return len(rows)

    def mark_conversation_read(self, user_id: str, conversation_id: str) -> int:
        """Mark the user's unread message notifications for one conversation.

        Keeps the notification centre in step with the conversation's read
        state. Other notification types and other conversations are untouched.
        """
        rows = self._execute(
            """
            UPDATE notifications
            SET is_read = TRUE
            WHERE user_id = ? AND type = ? AND conversation_id = ? AND is_read = FALSE
            RETURNING id
            """,
            [user_id, NotificationType.MESSAGE.value, conversation_id],
        )
        return len(rows)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def list_notifications(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        """Newest first, capped at ``page_size``."""
        query = f"SELECT {', '.join(self._COLUMNS)} FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = FALSE"
        query += " ORDER BY created_at DESC LIMIT ?"
        rows = self._execute(query, [user_id, self.page_size])
        return [self._row_to_notification(r) for r in rows]

    def unread_count(self, user_id: str) -> int:
        rows = self._execute(
            "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND is_read = FALSE",
            [user_id],
        )
        return rows[0][0]

    def _row_to_notification(self, row) -> Notification:
        d = dict(zip(self._COLUMNS, row))
        return Notification(
            id=d["id"],
            userId=d["user_id"],
            type=NotificationType(d["type"]),
            payload=json.loads(d["payload"] or "{}"),
            isRead=bool(d["is_read"]),
            createdAt=d["created_at"],
        )
