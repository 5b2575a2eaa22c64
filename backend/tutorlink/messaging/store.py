"""DuckDB-backed conversation store.

This module is the source of truth for conversations, their membership and
their messages. It also keeps a small directory of public user profiles,
refreshed from token claims, so conversation listings can show who is on
the other side.

Database Schema:
    users table:
        - id, first_name, last_name, avatar, role
    conversations table:
        - id: UUID primary key
        - title: Optional title
        - created_at / updated_at: updated_at is bumped on every new message
    conversation_members table:
        - (conversation_id, user_id) composite primary key, joined_at
    messages table:
        - id: UUID primary key
        - seq: Insertion sequence, tie-breaker for equal sent_at
        - conversation_id, sender_id, body, sent_at
        - is_read: False until a recipient reads it

Concurrency:
    Every public method runs to completion without awaiting, so on the
    single asyncio event loop a store call is never interleaved with
    another. Multi-statement writes additionally run inside a DuckDB
    transaction so a failure leaves nothing half-written.

Usage:
    store = ConversationStore(db_path="messaging.duckdb")
    conversation_id, created = store.create_conversation("alice", "bob")
    message = store.append_message(conversation_id, "alice", "Hello")
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

import duckdb

from tutorlink.errors import AuthorizationError, NotFoundError, TransientStoreError, ValidationError

from .schemas import Conversation, ConversationSummary, Message, UserProfile, UserRole

logger = logging.getLogger(__name__)

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS users (
        id          VARCHAR PRIMARY KEY,
        first_name  VARCHAR NOT NULL DEFAULT '',
        last_name   VARCHAR NOT NULL DEFAULT '',
        avatar      VARCHAR,
        role        VARCHAR NOT NULL DEFAULT 'student'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id          VARCHAR PRIMARY KEY,
        title       VARCHAR,
        created_at  TIMESTAMP NOT NULL,
        updated_at  TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_members (
        conversation_id VARCHAR NOT NULL,
        user_id         VARCHAR NOT NULL,
        joined_at       TIMESTAMP NOT NULL,
        PRIMARY KEY (conversation_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id              VARCHAR PRIMARY KEY,
        seq             BIGINT DEFAULT nextval('messages_seq'),
        conversation_id VARCHAR NOT NULL,
        sender_id       VARCHAR NOT NULL,
        body            VARCHAR NOT NULL,
        sent_at         TIMESTAMP NOT NULL,
        is_read         BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_members_user ON conversation_members(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)",
]

_MESSAGE_SELECT = """
    SELECT m.id, m.conversation_id, m.sender_id, m.body, m.sent_at, m.is_read,
           u.first_name, u.last_name, u.avatar
    FROM messages m
    LEFT JOIN users u ON m.sender_id = u.id
"""

_PROFILE_CLAIMS = ("firstName", "lastName", "avatar", "role")
_ROLES = {role.value for role in UserRole}


def _utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ConversationStore:
    """Durable conversations, membership and messages in DuckDB.

    Every ``duckdb.Error`` raised while talking to the database is re-raised
    as ``TransientStoreError`` with the original exception chained.
    """

    def __init__(self, db_path: str = "messaging.duckdb") -> None:
        """Open (or create) the database and ensure the schema exists.

        Args:
            db_path: Path to the DuckDB file, or ``:memory:``.
        """
        self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[Store] Conversation store ready (db=%s)", self._db_path)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        for statement in _SCHEMA:
            conn.execute(statement)

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        conn = self._get_connection()
        try:
            conn.begin()
        except duckdb.Error as e:
            raise TransientStoreError() from e
        try:
            yield conn
            conn.commit()
        except duckdb.Error as e:
            self._rollback(conn)
            logger.error("[Store] Transaction failed: %s", e)
            raise TransientStoreError() from e
        except Exception:
            self._rollback(conn)
            raise

    @staticmethod
    def _rollback(conn: duckdb.DuckDBPyConnection) -> None:
        try:
            conn.rollback()
        except duckdb.Error as e:
            logger.warning("[Store] Rollback failed: %s", e)

    def _fetchall(self, sql: str, params: Optional[list] = None) -> list:
        try:
            return self._get_connection().execute(sql, params or []).fetchall()
        except duckdb.Error as e:
            logger.error("[Store] Query failed: %s", e)
            raise TransientStoreError() from e

    def _fetchone(self, sql: str, params: Optional[list] = None):
        rows = self._fetchall(sql, params)
        return rows[0] if rows else None

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            id=row[0],
            conversationId=row[1],
            senderId=row[2],
            body=row[3],
            sentAt=row[4],
            isRead=bool(row[5]),
            firstName=row[6],
            lastName=row[7],
            avatar=row[8],
        )

    @staticmethod
    def _row_to_profile(row) -> UserProfile:
        return UserProfile(
            id=row[0],
            firstName=row[1] or "",
            lastName=row[2] or "",
            avatar=row[3],
            role=UserRole(row[4]) if row[4] else UserRole.STUDENT,
        )

    @staticmethod
    def _member_exists(conn: duckdb.DuckDBPyConnection, conversation_id: str, user_id: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM conversation_members WHERE conversation_id = ? AND user_id = ?",
            [conversation_id, user_id],
        ).fetchone()
        return row is not None

    # -----------------------------------------------------------------------
    # User directory
    # -----------------------------------------------------------------------

    def upsert_user(self, profile: UserProfile) -> UserProfile:
        """Insert or refresh a public profile (fed by the account service)."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, first_name, last_name, avatar, role)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    first_name = excluded.first_name,
                    last_name = excluded.last_name,
                    avatar = excluded.avatar,
                    role = excluded.role
                """,
                [profile.id, profile.firstName, profile.lastName, profile.avatar, profile.role.value],
            )
        return profile

    def record_identity(self, user_id: str, claims: Optional[Dict[str, Any]] = None) -> None:
        """Keep the directory row of an authenticated caller current.

        Profile fields carried by the token claims overwrite the stored ones;
        a token without them only makes sure the row exists.
        """
        claims = claims or {}
        if not any(claims.get(field) for field in _PROFILE_CLAIMS):
            with self._transaction() as conn:
                conn.execute("INSERT INTO users (id) VALUES (?) ON CONFLICT (id) DO NOTHING", [user_id])
            return

        current = self.get_user(user_id) or UserProfile(id=user_id)
        role = claims.get("role")
        self.upsert_user(UserProfile(
            id=user_id,
            firstName=str(claims.get("firstName") or current.firstName),
            lastName=str(claims.get("lastName") or current.lastName),
            avatar=claims.get("avatar") or current.avatar,
            role=UserRole(role) if role in _ROLES else current.role,
        ))

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        row = self._fetchone(
            "SELECT id, first_name, last_name, avatar, role FROM users WHERE id = ?",
            [user_id],
        )
        return self._row_to_profile(row) if row else None

    # -----------------------------------------------------------------------
    # Conversations and membership
    # -----------------------------------------------------------------------

    def find_direct_conversation(self, user_a: str, user_b: str) -> Optional[str]:
        """Find the conversation whose membership is exactly {user_a, user_b}.

        Returns:
            The oldest matching conversation id, or None.
        """
        row = self._fetchone(
            """
            SELECT c.id
            FROM conversations c
            INNER JOIN conversation_members m1
                ON m1.conversation_id = c.id AND m1.user_id = ?
            INNER JOIN conversation_members m2
                ON m2.conversation_id = c.id AND m2.user_id = ?
            WHERE (
                SELECT COUNT(*) FROM conversation_members m
                WHERE m.conversation_id = c.id
            ) = 2
            ORDER BY c.created_at ASC
            LIMIT 1
            """,
            [user_a, user_b],
        )
        return row[0] if row else None

    def create_conversation(
        self,
        initiator_id: str,
        recipient_id: str,
        title: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """Get or create the direct conversation between two users.

        An existing conversation is returned untouched (its title is kept),
        whichever of the two users initiates.

        Args:
            initiator_id: User starting the conversation.
            recipient_id: The other participant.
            title: Optional title, only used when a conversation is created.

        Returns:
            Tuple of (conversation_id, created).

        Raises:
            ValidationError: If both ids are the same user.
        """
        if initiator_id == recipient_id:
            raise ValidationError("Cannot start a conversation with yourself")

        existing = self.find_direct_conversation(initiator_id, recipient_id)
        if existing:
            return existing, False

        conversation_id = str(uuid.uuid4())
        now = _utcnow()
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO conversations (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
                [conversation_id, title or None, now, now],
            )
            for member_id in (initiator_id, recipient_id):
                conn.execute(
                    "INSERT INTO conversation_members (conversation_id, user_id, joined_at) VALUES (?, ?, ?)",
                    [conversation_id, member_id, now],
                )
        logger.info(
            "[Store] Created conversation %s between %s and %s",
            conversation_id, initiator_id, recipient_id,
        )
        return conversation_id, True

    def get_conversation(self, conversation_id: str) -> Conversation:
        row = self._fetchone(
            "SELECT id, title, created_at, updated_at FROM conversations WHERE id = ?",
            [conversation_id],
        )
        if row is None:
            raise NotFoundError("Conversation not found")
        return Conversation(id=row[0], title=row[1], createdAt=row[2], updatedAt=row[3])

    def is_member(self, conversation_id: str, user_id: str) -> bool:
        try:
            return self._member_exists(self._get_connection(), conversation_id, user_id)
        except duckdb.Error as e:
            raise TransientStoreError() from e

    def list_member_ids(self, conversation_id: str) -> List[str]:
        rows = self._fetchall(
            "SELECT user_id FROM conversation_members WHERE conversation_id = ? ORDER BY joined_at, user_id",
            [conversation_id],
        )
        return [r[0] for r in rows]

    def add_member(self, conversation_id: str, user_id: str) -> bool:
        """Add a user to a conversation.

        Returns:
            True if the user was added, False if already a member.

        Raises:
            NotFoundError: If the conversation does not exist.
        """
        self.get_conversation(conversation_id)

        with self._transaction() as conn:
            if self._member_exists(conn, conversation_id, user_id):
                return False
            conn.execute(
                "INSERT INTO conversation_members (conversation_id, user_id, joined_at) VALUES (?, ?, ?)",
                [conversation_id, user_id, _utcnow()],
            )
        logger.info("[Store] Added %s to conversation %s", user_id, conversation_id)
        return True

    def list_conversations_for_user(self, user_id: str) -> List[ConversationSummary]:
        """List a user's conversations, most recently updated first.

        Each entry carries the latest message, the other members' public
        profiles and the user's unread count.
        """
        rows = self._fetchall(
            """
            SELECT c.id, c.title, c.created_at, c.updated_at
            FROM conversations c
            INNER JOIN conversation_members cm ON c.id = cm.conversation_id
            WHERE cm.user_id = ?
            ORDER BY c.updated_at DESC, c.created_at DESC
            """,
            [user_id],
        )

        summaries = []
        for conv_id, title, created_at, updated_at in rows:
            last_row = self._fetchone(
                _MESSAGE_SELECT + " WHERE m.conversation_id = ? ORDER BY m.sent_at DESC, m.seq DESC LIMIT 1",
                [conv_id],
            )
            member_rows = self._fetchall(
                """
                SELECT cm.user_id, u.first_name, u.last_name, u.avatar, u.role
                FROM conversation_members cm
                LEFT JOIN users u ON cm.user_id = u.id
                WHERE cm.conversation_id = ? AND cm.user_id != ?
                ORDER BY cm.joined_at, cm.user_id
                """,
                [conv_id, user_id],
            )
            unread = self._fetchone(
                """
                SELECT COUNT(*) FROM messages
                WHERE conversation_id = ? AND sender_id != ? AND is_read = FALSE
                """,
                [conv_id, user_id],
            )
            summaries.append(ConversationSummary(
                id=conv_id,
                title=title,
                createdAt=created_at,
                updatedAt=updated_at,
                lastMessage=self._row_to_message(last_row) if last_row else None,
                members=[self._row_to_profile(r) for r in member_rows],
                unreadCount=unread[0] if unread else 0,
            ))
        return summaries

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def append_message(self, conversation_id: str, sender_id: str, body: str) -> Message:
        """Persist a message and bump the conversation's updated_at.

        Both writes happen in one transaction, so no reader sees the message
        without the new timestamp or the timestamp without the message.

        Raises:
            AuthorizationError: If the sender is not a member.
        """
        message_id = str(uuid.uuid4())
        with self._transaction() as conn:
            if not self._member_exists(conn, conversation_id, sender_id):
                raise AuthorizationError(
                    f"{sender_id} is not a member of conversation {conversation_id}"
                )
            # sent_at never goes backwards within a conversation, even if the clock does
            now = _utcnow()
            last = conn.execute(
                "SELECT MAX(sent_at) FROM messages WHERE conversation_id = ?", [conversation_id]
            ).fetchone()[0]
            sent_at = max(now, last) if last else now
            conn.execute(
                """
                INSERT INTO messages (id, conversation_id, sender_id, body, sent_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [message_id, conversation_id, sender_id, body, sent_at],
            )
            conn.execute(
                "UPDATE conversations SET updated_at = GREATEST(updated_at, ?) WHERE id = ?",
                [sent_at, conversation_id],
            )
        return self.get_message(message_id)

    def get_message(self, message_id: str) -> Message:
        row = self._fetchone(_MESSAGE_SELECT + " WHERE m.id = ?", [message_id])
        if row is None:
            raise NotFoundError("Message not found")
        return self._row_to_message(row)

    def list_messages(self, conversation_id: str) -> List[Message]:
        """Full history of a conversation, oldest first."""
        rows = self._fetchall(
            _MESSAGE_SELECT + " WHERE m.conversation_id = ? ORDER BY m.sent_at ASC, m.seq ASC",
            [conversation_id],
        )
        return [self._row_to_message(r) for r in rows]

    def mark_messages_read_excluding_sender(self, conversation_id: str, reader_id: str) -> int:
        """Mark every unread message not sent by ``reader_id`` as read.

        Returns:
            Number of messages that flipped to read (0 when repeated).
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                UPDATE messages
                SET is_read = TRUE
                WHERE conversation_id = ? AND sender_id != ? AND is_read = FALSE
                RETURNING id
                """,
                [conversation_id, reader_id],
            ).fetchall()
        return len(rows)
