"""Summary: SQLite storage implementation for MailAssist.

Importance: Provides a local-first persistence layer behind the MessageStore contract.
Alternatives: Use an ORM or an external database immediately.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from mailassist.models import (
    CHAT_ROLES,
    SENTIMENTS,
    AiRequest,
    AiResponse,
    ChatTurn,
    CredentialPatch,
    EmailAnalysis,
    EmailContext,
    EnrichmentPatch,
    Message,
    MessageStatePatch,
    NewUser,
    StoredMessage,
    User,
)
from mailassist.storage.base import MessageStore, StoredAiRequest

_MESSAGE_COLUMNS = (
    "id, user_id, subject, sender, recipient, body, body_preview, received_at, "
    "is_read, is_important, is_flagged, folder, category, priority, ai_summary, ai_context"
)
_USER_COLUMNS = (
    "id, username, email, provider_id, access_token, refresh_token, token_expires_at, created_at"
)


class SqliteStore(MessageStore):
    """Summary: SQLite-backed storage for MailAssist.

    Importance: Enables local-first persistence with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: Allows configurable database location per environment.
        Alternatives: Hardcode a default path in the class.
        """

        self._db_path = Path(db_path)
        self._write_lock = threading.RLock()

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready for sync, enrichment, and chat.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    provider_id TEXT UNIQUE,
                    access_token TEXT,
                    refresh_token TEXT,
                    token_expires_at TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    recipient TEXT NOT NULL,
                    body TEXT NOT NULL,
                    body_preview TEXT NOT NULL,
                    received_at TEXT NOT NULL,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    is_important INTEGER NOT NULL DEFAULT 0,
                    is_flagged INTEGER NOT NULL DEFAULT 0,
                    folder TEXT NOT NULL DEFAULT 'inbox',
                    category TEXT,
                    priority INTEGER NOT NULL DEFAULT 0,
                    ai_summary TEXT,
                    ai_context TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_user_folder "
                "ON messages (user_id, folder, received_at)"
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_turns (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS email_analysis (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    message_id TEXT NOT NULL,
                    sentiment TEXT,
                    urgency INTEGER,
                    action_required INTEGER NOT NULL DEFAULT 0,
                    suggested_actions TEXT NOT NULL,
                    writing_style TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_responses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_id INTEGER NOT NULL,
                    response_text TEXT NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    token_estimate INTEGER NOT NULL
                )
                """
            )
            connection.commit()

    def get_user(self, user_id: str) -> User | None:
        """Summary: Retrieve a user by identifier.

        Importance: Resolves credentials before sync and reply generation.
        Alternatives: Cache users in memory.
        """

        return self._fetch_user("id", user_id)

    def get_user_by_provider_id(self, provider_id: str) -> User | None:
        """Summary: Retrieve a user by Microsoft account identifier.

        Importance: Matches returning logins to existing records.
        Alternatives: Match on email only.
        """

        return self._fetch_user("provider_id", provider_id)

    def get_user_by_email(self, email: str) -> User | None:
        """Summary: Retrieve a user by email address.

        Importance: Provides a fallback identity match when no provider id is stored.
        Alternatives: Require provider identifiers for every user.
        """

        return self._fetch_user("email", email)

    def create_user(self, user: NewUser) -> User:
        """Summary: Create a user record.

        Importance: Runs on the first successful credential exchange.
        Alternatives: Create users lazily at first sync.
        """

        user_id = str(uuid.uuid4())
        with self._write_lock, self._connection() as connection:
            connection.execute(
                f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    user_id,
                    user.username,
                    user.email,
                    user.provider_id,
                    user.access_token,
                    user.refresh_token,
                    _format_datetime(user.token_expires_at),
                    _format_datetime(_utcnow()),
                ),
            )
            connection.commit()
        created = self.get_user(user_id)
        assert created is not None
        return created

    def update_user(self, user_id: str, patch: CredentialPatch) -> User | None:
        """Summary: Apply a credential patch to a user.

        Importance: Updates tokens on re-login or refresh without touching identity fields.
        Alternatives: Replace the whole user row.
        """

        changes: dict[str, Any] = {}
        if patch.access_token is not None:
            changes["access_token"] = patch.access_token
        if patch.refresh_token is not None:
            changes["refresh_token"] = patch.refresh_token
        if patch.token_expires_at is not None:
            changes["token_expires_at"] = _format_datetime(patch.token_expires_at)
        self._apply_changes("users", user_id, changes)
        return self.get_user(user_id)

    def message_exists(self, message_id: str) -> bool:
        """Summary: Check whether a message is already stored.

        Importance: Provides the sole deduplication check during sync.
        Alternatives: Compare content hashes.
        """

        with self._connection() as connection:
            row = connection.execute(
                "SELECT 1 FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
        return row is not None

    def list_messages(
        self,
        user_id: str,
        folder: str | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[StoredMessage]:
        """Summary: Retrieve a user's messages newest-first.

        Importance: Supplies listings, chat context, and writing-style samples.
        Alternatives: Implement full-text search using SQLite FTS.
        """

        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if folder:
            clauses.append("folder = ?")
            params.append(folder)
        if search:
            pattern = f"%{search}%"
            clauses.append(
                "(subject LIKE ? OR sender LIKE ? OR body_preview LIKE ? OR body LIKE ?)"
            )
            params.extend([pattern, pattern, pattern, pattern])
        query = (
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE {' AND '.join(clauses)} "
            "ORDER BY received_at DESC, rowid DESC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._connection() as connection:
            rows = connection.execute(query, params).fetchall()
        return [_row_to_message(row) for row in rows]

    def get_message(self, message_id: str) -> StoredMessage | None:
        """Summary: Retrieve a message by identifier.

        Importance: Supports updates, analysis lookup, and reply generation.
        Alternatives: Filter messages in memory after listing all.
        """

        with self._connection() as connection:
            row = connection.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
        return _row_to_message(row) if row else None

    def create_message(
        self, user_id: str, message: Message, folder: str = "inbox"
    ) -> StoredMessage | None:
        """Summary: Persist a canonical message with empty enrichment fields.

        Importance: Stores the message before enrichment so failures never lose it.
        Alternatives: Persist only after enrichment succeeds.
        """

        with self._write_lock, self._connection() as connection:
            cursor = connection.execute(
                """
                INSERT OR IGNORE INTO messages (
                    id, user_id, subject, sender, recipient, body, body_preview, received_at,
                    is_read, is_important, is_flagged, folder, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.provider_message_id,
                    user_id,
                    message.subject,
                    message.sender,
                    message.recipient,
                    message.body,
                    message.body_preview,
                    _format_datetime(message.received_at),
                    int(message.is_read),
                    int(message.is_important),
                    int(message.is_flagged),
                    folder,
                    _format_datetime(_utcnow()),
                ),
            )
            connection.commit()
            inserted = cursor.rowcount > 0
        if not inserted:
            return None
        return self.get_message(message.provider_message_id)

    def update_message_state(
        self, message_id: str, patch: MessageStatePatch
    ) -> StoredMessage | None:
        """Summary: Apply a user action patch to a message.

        Importance: Writes only read, flag, folder, and manual category columns.
        Alternatives: Accept arbitrary column updates.
        """

        changes: dict[str, Any] = {}
        if patch.is_read is not None:
            changes["is_read"] = int(patch.is_read)
        if patch.is_flagged is not None:
            changes["is_flagged"] = int(patch.is_flagged)
        if patch.folder is not None:
            changes["folder"] = patch.folder
        if patch.category is not None:
            changes["category"] = patch.category
        self._apply_changes("messages", message_id, changes)
        return self.get_message(message_id)

    def apply_enrichment(self, message_id: str, patch: EnrichmentPatch) -> StoredMessage | None:
        """Summary: Apply an enrichment patch to a message.

        Importance: Writes only AI-derived columns so concurrent user actions survive.
        Alternatives: Rewrite the full message row.
        """

        changes: dict[str, Any] = {}
        if patch.category is not None:
            changes["category"] = patch.category
        if patch.priority is not None:
            changes["priority"] = patch.priority
        if patch.ai_summary is not None:
            changes["ai_summary"] = patch.ai_summary
        if patch.ai_context is not None:
            changes["ai_context"] = json.dumps(patch.ai_context.to_dict())
        self._apply_changes("messages", message_id, changes)
        return self.get_message(message_id)

    def list_chat_turns(self, user_id: str, limit: int) -> list[ChatTurn]:
        """Summary: Retrieve a user's most recent chat turns newest-first.

        Importance: Feeds the chat context window and history views.
        Alternatives: Load the full transcript every time.
        """

        with self._connection() as connection:
            rows = connection.execute(
                """
                SELECT id, user_id, role, content, timestamp
                FROM chat_turns
                WHERE user_id = ?
                ORDER BY timestamp DESC, seq DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [
            ChatTurn(
                id=row["id"],
                user_id=row["user_id"],
                role=row["role"],
                content=row["content"],
                timestamp=_parse_datetime(row["timestamp"]),
            )
            for row in rows
        ]

    def create_chat_turn(
        self, user_id: str, role: str, content: str, timestamp: datetime | None = None
    ) -> ChatTurn:
        """Summary: Append a chat turn with a server-assigned timestamp.

        Importance: Chat history is append-only.
        Alternatives: Let clients supply timestamps.
        """

        if role not in CHAT_ROLES:
            raise ValueError(f"Unsupported chat role: {role}")
        turn = ChatTurn(
            id=str(uuid.uuid4()),
            user_id=user_id,
            role=role,
            content=content,
            timestamp=_as_utc(timestamp) if timestamp else _utcnow(),
        )
        with self._write_lock, self._connection() as connection:
            connection.execute(
                "INSERT INTO chat_turns (id, user_id, role, content, timestamp) VALUES (?, ?, ?, ?, ?)",
                (turn.id, turn.user_id, turn.role, turn.content, _format_datetime(turn.timestamp)),
            )
            connection.commit()
        return turn

    def get_analysis(self, message_id: str) -> EmailAnalysis | None:
        """Summary: Retrieve the latest analysis record for a message.

        Importance: Re-enrichment appends records and readers always see the newest.
        Alternatives: Enforce one record per message with an upsert.
        """

        with self._connection() as connection:
            row = connection.execute(
                """
                SELECT id, message_id, sentiment, urgency, action_required,
                       suggested_actions, writing_style, created_at
                FROM email_analysis
                WHERE message_id = ?
                ORDER BY created_at DESC, seq DESC
                LIMIT 1
                """,
                (message_id,),
            ).fetchone()
        if not row:
            return None
        return EmailAnalysis(
            id=row["id"],
            message_id=row["message_id"],
            sentiment=row["sentiment"],
            urgency=row["urgency"],
            action_required=bool(row["action_required"]),
            suggested_actions=json.loads(row["suggested_actions"]),
            writing_style=json.loads(row["writing_style"]) if row["writing_style"] else None,
            created_at=_parse_datetime(row["created_at"]),
        )

    def create_analysis(
        self,
        message_id: str,
        sentiment: str | None,
        urgency: int | None,
        action_required: bool,
        suggested_actions: list[str],
        writing_style: dict[str, Any] | None = None,
    ) -> EmailAnalysis:
        """Summary: Record an analysis for a message.

        Importance: Keeps sentiment, urgency, and suggested actions alongside the message.
        Alternatives: Store analysis fields on the message row.
        """

        if sentiment is not None and sentiment not in SENTIMENTS:
            raise ValueError(f"Unsupported sentiment: {sentiment}")
        analysis = EmailAnalysis(
            id=str(uuid.uuid4()),
            message_id=message_id,
            sentiment=sentiment,
            urgency=urgency,
            action_required=action_required,
            suggested_actions=list(suggested_actions),
            writing_style=writing_style,
            created_at=_utcnow(),
        )
        with self._write_lock, self._connection() as connection:
            connection.execute(
                """
                INSERT INTO email_analysis (
                    id, message_id, sentiment, urgency, action_required,
                    suggested_actions, writing_style, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    analysis.id,
                    analysis.message_id,
                    analysis.sentiment,
                    analysis.urgency,
                    int(analysis.action_required),
                    json.dumps(analysis.suggested_actions),
                    json.dumps(writing_style) if writing_style is not None else None,
                    _format_datetime(analysis.created_at),
                ),
            )
            connection.commit()
        return analysis

    def log_ai_request(self, request: AiRequest, user_id: str | None = None) -> int:
        """Summary: Persist an AI request for auditing.

        Importance: Tracks prompts and providers used by the system.
        Alternatives: Use structured logs instead of database storage.
        """

        with self._write_lock, self._connection() as connection:
            cursor = connection.execute(
                """
                INSERT INTO ai_requests (user_id, provider, model, prompt, purpose, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    request.provider,
                    request.model,
                    request.prompt,
                    request.purpose,
                    _format_datetime(request.timestamp),
                ),
            )
            request_id = cursor.lastrowid
            connection.commit()
        return int(request_id)

    def log_ai_response(self, response: AiResponse) -> int:
        """Summary: Persist an AI response for auditing.

        Importance: Enables traceability of AI outputs and latency.
        Alternatives: Store responses in a flat log file.
        """

        with self._write_lock, self._connection() as connection:
            cursor = connection.execute(
                """
                INSERT INTO ai_responses (request_id, response_text, latency_ms, token_estimate)
                VALUES (?, ?, ?, ?)
                """,
                (
                    response.request_id,
                    response.response_text,
                    response.latency_ms,
                    response.token_estimate,
                ),
            )
            response_id = cursor.lastrowid
            connection.commit()
        return int(response_id)

    def list_ai_requests(self, limit: int, user_id: str | None = None) -> list[StoredAiRequest]:
        """Summary: Return recent AI requests with response metadata.

        Importance: Supports auditing which purposes hit the backend and how fast.
        Alternatives: Skip AI request storage.
        """

        query = """
            SELECT r.id, r.provider, r.model, r.purpose, r.timestamp,
                   s.latency_ms, s.token_estimate
            FROM ai_requests r
            LEFT JOIN ai_responses s ON s.request_id = r.id
        """
        params: list[Any] = []
        if user_id is not None:
            query += " WHERE r.user_id = ?"
            params.append(user_id)
        query += " ORDER BY r.id DESC LIMIT ?"
        params.append(limit)
        with self._connection() as connection:
            rows = connection.execute(query, params).fetchall()
        return [StoredAiRequest(*tuple(row)) for row in rows]

    def _fetch_user(self, column: str, value: str) -> User | None:
        with self._connection() as connection:
            row = connection.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE {column} = ?", (value,)
            ).fetchone()
        if not row:
            return None
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            provider_id=row["provider_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            token_expires_at=_parse_datetime(row["token_expires_at"])
            if row["token_expires_at"]
            else None,
            created_at=_parse_datetime(row["created_at"]),
        )

    def _apply_changes(self, table: str, record_id: str, changes: dict[str, Any]) -> None:
        """Summary: Update only the given columns of one row.

        Importance: Patches merge onto the latest row instead of replacing it.
        Alternatives: Read-modify-write the full record.
        """

        if not changes:
            return
        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._write_lock, self._connection() as connection:
            connection.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                (*changes.values(), record_id),
            )
            connection.commit()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path, timeout=30)
        connection.row_factory = sqlite3.Row
        try:
            yield connection
        finally:
            connection.close()


def _row_to_message(row: sqlite3.Row) -> StoredMessage:
    context = json.loads(row["ai_context"]) if row["ai_context"] else None
    return StoredMessage(
        id=row["id"],
        user_id=row["user_id"],
        subject=row["subject"],
        sender=row["sender"],
        recipient=row["recipient"],
        body=row["body"],
        body_preview=row["body_preview"],
        received_at=_parse_datetime(row["received_at"]),
        is_read=bool(row["is_read"]),
        is_important=bool(row["is_important"]),
        is_flagged=bool(row["is_flagged"]),
        folder=row["folder"],
        category=row["category"],
        priority=int(row["priority"]),
        ai_summary=row["ai_summary"],
        ai_context=EmailContext(**context) if context else None,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_datetime(value: datetime | None) -> str | None:
    """Summary: Serialize datetimes as fixed-width UTC ISO strings.

    Importance: Keeps lexical ORDER BY consistent with chronological order.
    Alternatives: Store epoch integers.
    """

    if value is None:
        return None
    return _as_utc(value).isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)
