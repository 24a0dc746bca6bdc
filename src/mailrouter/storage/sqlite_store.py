"""Summary: SQLite storage implementation for MailRouter.

Importance: Persists messages, AI analysis state, credentials, audit and sync logs locally.
Alternatives: Use an ORM or an external database immediately.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from mailrouter.models import AI_STATUS_PENDING, AiRequest, AiResponse, Message, User


_MESSAGE_COLUMNS = """
    id, user_id, provider_message_id, channel, subject, sender, sender_name, recipients,
    timestamp, snippet, body, labels, is_unread, priority, attachment_count,
    ai_status, ai_analysis, ai_processed_at, ai_error_message, ai_raw_response,
    ai_prompt_tokens, ai_completion_tokens
"""


@dataclass(frozen=True)
class StoredMessage:
    """Summary: Message record with database identifier and AI state.

    Importance: The unit the processor reads for pending work and writes analysis onto.
    Alternatives: Keep AI results in a separate table joined by message id.
    """

    id: int
    user_id: int | None
    provider_message_id: str
    channel: str
    subject: str
    sender: str
    sender_name: str
    recipients: str
    timestamp: str
    snippet: str
    body: str
    labels: tuple[str, ...]
    is_unread: bool
    priority: str
    attachment_count: int
    ai_status: str
    ai_analysis: dict[str, Any] | None
    ai_processed_at: str | None
    ai_error_message: str | None
    ai_raw_response: str | None
    ai_prompt_tokens: int | None
    ai_completion_tokens: int | None

    @property
    def has_attachments(self) -> bool:
        return self.attachment_count > 0


@dataclass(frozen=True)
class StoredUser:
    """Summary: User record with database identifier.

    Importance: Scopes messages and per-user API keys.
    Alternatives: Keep only a single implicit user without records.
    """

    id: int
    display_name: str
    email: str


@dataclass(frozen=True)
class StoredCredential:
    """Summary: Per-user provider API key record.

    Importance: Lets callers bring their own provider key instead of the global one.
    Alternatives: Use only the globally configured key.
    """

    id: int
    user_id: int
    service: str
    encoded_key: str
    is_active: bool
    expires_at: str | None

    def is_valid(self, now: datetime | None = None) -> bool:
        """Summary: Check the credential is active and unexpired.

        Importance: Invalid keys must fall back to the global key instead of failing calls.
        Alternatives: Validate the key against the provider on every request.
        """

        if not self.is_active or not self.encoded_key:
            return False
        if self.expires_at is None:
            return True
        current = now or datetime.now()
        return datetime.fromisoformat(self.expires_at) > current


@dataclass(frozen=True)
class StoredAiRequest:
    """AI request audit record."""

    id: int
    user_id: int | None
    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: str


@dataclass(frozen=True)
class StoredAiResponse:
    """AI response audit record."""

    id: int
    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int


@dataclass(frozen=True)
class StoredSyncLog:
    """Summary: One sync run for a single channel.

    Importance: Gives operators a history of fetch runs and their failures.
    Alternatives: Rely on application logs only.
    """

    id: int
    user_id: int | None
    channel: str
    status: str
    started_at: str
    completed_at: str | None
    messages_fetched: int
    new_messages: int
    error_message: str | None


class SqliteStore:
    """Summary: SQLite-backed storage for MailRouter.

    Importance: Enables local-first persistence with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: Allows configurable database location per environment.
        Alternatives: Hardcode a default path in the class.
        """

        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready for sync, analysis and audit writes.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    provider_message_id TEXT NOT NULL,
                    channel TEXT NOT NULL,
                    subject TEXT,
                    sender TEXT,
                    sender_name TEXT,
                    recipients TEXT,
                    timestamp TEXT,
                    snippet TEXT,
                    body TEXT,
                    labels TEXT NOT NULL DEFAULT '[]',
                    is_unread INTEGER NOT NULL DEFAULT 1,
                    priority TEXT NOT NULL DEFAULT 'normal',
                    attachment_count INTEGER NOT NULL DEFAULT 0,
                    ai_status TEXT NOT NULL DEFAULT 'pending',
                    ai_analysis TEXT,
                    ai_processed_at TEXT,
                    ai_error_message TEXT,
                    ai_raw_response TEXT,
                    ai_prompt_tokens INTEGER,
                    ai_completion_tokens INTEGER,
                    UNIQUE(channel, provider_message_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    service TEXT NOT NULL,
                    encoded_key TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    expires_at TEXT,
                    UNIQUE(user_id, service)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
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
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    channel TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    messages_fetched INTEGER NOT NULL DEFAULT 0,
                    new_messages INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT
                )
                """
            )
            connection.commit()

    def ensure_user(self, user: User) -> int:
        """Summary: Ensure a user exists and return their ID.

        Importance: Provides a stable user record for data ownership.
        Alternatives: Omit user records in single-user mode.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO users (display_name, email) VALUES (?, ?)",
                (user.display_name, user.email),
            )
            if cursor.rowcount:
                user_id = cursor.lastrowid
            else:
                cursor.execute("SELECT id FROM users WHERE email = ?", (user.email,))
                row = cursor.fetchone()
                user_id = int(row[0]) if row else 0
            connection.commit()
        return int(user_id)

    def save_messages(self, messages: list[Message], user_id: int | None = None) -> list[int]:
        """Summary: Persist new messages and return the IDs of rows actually inserted.

        Importance: Lets sync report how many messages are new; duplicates keep their AI state.
        Alternatives: Upsert and overwrite previously analyzed messages.
        """

        ids: list[int] = []
        with self._connection() as connection:
            cursor = connection.cursor()
            for message in messages:
                cursor.execute(
                    """
                    INSERT OR IGNORE INTO messages (
                        user_id, provider_message_id, channel, subject, sender, sender_name,
                        recipients, timestamp, snippet, body, labels, is_unread, priority,
                        attachment_count, ai_status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        message.provider_message_id,
                        message.channel,
                        message.subject,
                        message.sender,
                        message.sender_name,
                        message.recipients,
                        message.timestamp.isoformat(),
                        message.snippet,
                        message.body,
                        json.dumps(list(message.labels)),
                        int(message.is_unread),
                        message.priority,
                        message.attachment_count,
                        AI_STATUS_PENDING,
                    ),
                )
                if cursor.rowcount:
                    ids.append(int(cursor.lastrowid))
            connection.commit()
        return ids

    def list_messages(
        self, limit: int, user_id: int | None = None, ai_status: str | None = None
    ) -> list[StoredMessage]:
        """Summary: Retrieve recent messages from storage.

        Importance: Supplies CLI and API listings.
        Alternatives: Stream messages from the provider directly.
        """

        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if ai_status is not None:
            clauses.append("ai_status = ?")
            params.append(ai_status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages {where} ORDER BY timestamp DESC, id DESC LIMIT ?",
                (*params, limit),
            )
            rows = cursor.fetchall()
        return [_message_from_row(row) for row in rows]

    def find_pending(self, limit: int, user_id: int | None = None) -> list[StoredMessage]:
        """Summary: Select messages waiting for AI analysis, newest first.

        Importance: Feeds the AI batch in a stable query order.
        Alternatives: Keep a separate work queue table.
        """

        return self.list_messages(limit, user_id=user_id, ai_status=AI_STATUS_PENDING)

    def get_message(self, message_id: int, user_id: int | None = None) -> StoredMessage | None:
        """Summary: Retrieve a message by database ID.

        Importance: Supports single-message processing.
        Alternatives: Filter messages in memory after listing all.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            if user_id is None:
                cursor.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
                )
            else:
                cursor.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? AND user_id = ?",
                    (message_id, user_id),
                )
            row = cursor.fetchone()
        return _message_from_row(row) if row else None

    def save_message(self, message: StoredMessage) -> None:
        """Summary: Write the AI fields of a message in one statement.

        Importance: Each final state transition (completed or failed) lands atomically.
        Alternatives: Update fields one by one.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE messages SET
                    ai_status = ?, ai_analysis = ?, ai_processed_at = ?, ai_error_message = ?,
                    ai_raw_response = ?, ai_prompt_tokens = ?, ai_completion_tokens = ?
                WHERE id = ?
                """,
                (
                    message.ai_status,
                    json.dumps(message.ai_analysis) if message.ai_analysis is not None else None,
                    message.ai_processed_at,
                    message.ai_error_message,
                    message.ai_raw_response,
                    message.ai_prompt_tokens,
                    message.ai_completion_tokens,
                    message.id,
                ),
            )
            connection.commit()

    def count_messages_by_status(self, user_id: int | None = None) -> dict[str, int]:
        with self._connection() as connection:
            cursor = connection.cursor()
            if user_id is None:
                cursor.execute("SELECT ai_status, COUNT(*) FROM messages GROUP BY ai_status")
            else:
                cursor.execute(
                    "SELECT ai_status, COUNT(*) FROM messages WHERE user_id = ? GROUP BY ai_status",
                    (user_id,),
                )
            rows = cursor.fetchall()
        return {status: int(count) for status, count in rows}

    def store_credential(
        self,
        user_id: int,
        service: str,
        encoded_key: str,
        expires_at: str | None = None,
    ) -> int:
        """Summary: Save or replace a user's API key for a service.

        Importance: Keeps one active key per user and provider.
        Alternatives: Keep a history of keys and pick the newest.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO credentials (user_id, service, encoded_key, is_active, expires_at)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(user_id, service) DO UPDATE SET
                    encoded_key = excluded.encoded_key,
                    is_active = 1,
                    expires_at = excluded.expires_at
                """,
                (user_id, service, encoded_key, expires_at),
            )
            cursor.execute(
                "SELECT id FROM credentials WHERE user_id = ? AND service = ?",
                (user_id, service),
            )
            row = cursor.fetchone()
            connection.commit()
        return int(row[0])

    def deactivate_credential(self, user_id: int, service: str) -> None:
        with self._connection() as connection:
            connection.execute(
                "UPDATE credentials SET is_active = 0 WHERE user_id = ? AND service = ?",
                (user_id, service),
            )
            connection.commit()

    def get_credential(self, user_id: int, service: str) -> StoredCredential | None:
        """Summary: Retrieve the stored API key for a user and service.

        Importance: Backs per-user adapter construction.
        Alternatives: Read keys from environment variables per user.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, user_id, service, encoded_key, is_active, expires_at
                FROM credentials
                WHERE user_id = ? AND service = ?
                """,
                (user_id, service),
            )
            row = cursor.fetchone()
        if not row:
            return None
        return StoredCredential(
            id=row[0],
            user_id=row[1],
            service=row[2],
            encoded_key=row[3],
            is_active=bool(row[4]),
            expires_at=row[5],
        )

    def log_ai_request(self, request: AiRequest, user_id: int | None = None) -> int:
        """Summary: Persist an AI request for auditing.

        Importance: Tracks prompts and models used by the system.
        Alternatives: Use structured logs instead of database storage.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
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
                    request.timestamp.isoformat(),
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

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
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

    def list_ai_requests(self, limit: int, user_id: int | None = None) -> list[StoredAiRequest]:
        with self._connection() as connection:
            cursor = connection.cursor()
            if user_id is None:
                cursor.execute(
                    """
                    SELECT id, user_id, provider, model, prompt, purpose, timestamp
                    FROM ai_requests ORDER BY id DESC LIMIT ?
                    """,
                    (limit,),
                )
            else:
                cursor.execute(
                    """
                    SELECT id, user_id, provider, model, prompt, purpose, timestamp
                    FROM ai_requests WHERE user_id = ? ORDER BY id DESC LIMIT ?
                    """,
                    (user_id, limit),
                )
            rows = cursor.fetchall()
        return [StoredAiRequest(*row) for row in rows]

    def list_ai_responses(self, limit: int, user_id: int | None = None) -> list[StoredAiResponse]:
        with self._connection() as connection:
            cursor = connection.cursor()
            if user_id is None:
                cursor.execute(
                    """
                    SELECT id, request_id, response_text, latency_ms, token_estimate
                    FROM ai_responses ORDER BY id DESC LIMIT ?
                    """,
                    (limit,),
                )
            else:
                cursor.execute(
                    """
                    SELECT r.id, r.request_id, r.response_text, r.latency_ms, r.token_estimate
                    FROM ai_responses r
                    JOIN ai_requests q ON q.id = r.request_id
                    WHERE q.user_id = ?
                    ORDER BY r.id DESC LIMIT ?
                    """,
                    (user_id, limit),
                )
            rows = cursor.fetchall()
        return [StoredAiResponse(*row) for row in rows]

    def start_sync_log(self, channel: str, started_at: datetime, user_id: int | None = None) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT INTO sync_logs (user_id, channel, status, started_at) VALUES (?, ?, 'started', ?)",
                (user_id, channel, started_at.isoformat()),
            )
            log_id = cursor.lastrowid
            connection.commit()
        return int(log_id)

    def complete_sync_log(
        self, log_id: int, completed_at: datetime, messages_fetched: int, new_messages: int
    ) -> None:
        with self._connection() as connection:
            connection.execute(
                """
                UPDATE sync_logs
                SET status = 'completed', completed_at = ?, messages_fetched = ?, new_messages = ?
                WHERE id = ?
                """,
                (completed_at.isoformat(), messages_fetched, new_messages, log_id),
            )
            connection.commit()

    def fail_sync_log(self, log_id: int, completed_at: datetime, error_message: str) -> None:
        with self._connection() as connection:
            connection.execute(
                """
                UPDATE sync_logs SET status = 'failed', completed_at = ?, error_message = ?
                WHERE id = ?
                """,
                (completed_at.isoformat(), error_message, log_id),
            )
            connection.commit()

    def list_sync_logs(self, limit: int, user_id: int | None = None) -> list[StoredSyncLog]:
        """Summary: Retrieve recent sync runs, newest first.

        Importance: Surfaces per-channel history in the sync status output.
        Alternatives: Read sync history from log files.
        """

        columns = (
            "id, user_id, channel, status, started_at, completed_at, "
            "messages_fetched, new_messages, error_message"
        )
        with self._connection() as connection:
            cursor = connection.cursor()
            if user_id is None:
                cursor.execute(
                    f"SELECT {columns} FROM sync_logs ORDER BY id DESC LIMIT ?", (limit,)
                )
            else:
                cursor.execute(
                    f"SELECT {columns} FROM sync_logs WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                    (user_id, limit),
                )
            rows = cursor.fetchall()
        return [StoredSyncLog(*row) for row in rows]

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path, timeout=30)
        try:
            yield connection
        finally:
            connection.close()


def _message_from_row(row: tuple[Any, ...]) -> StoredMessage:
    analysis = row[16]
    return StoredMessage(
        id=row[0],
        user_id=row[1],
        provider_message_id=row[2],
        channel=row[3],
        subject=row[4] or "",
        sender=row[5] or "",
        sender_name=row[6] or "",
        recipients=row[7] or "",
        timestamp=row[8] or "",
        snippet=row[9] or "",
        body=row[10] or "",
        labels=tuple(json.loads(row[11] or "[]")),
        is_unread=bool(row[12]),
        priority=row[13],
        attachment_count=int(row[14]),
        ai_status=row[15],
        ai_analysis=json.loads(analysis) if analysis else None,
        ai_processed_at=row[17],
        ai_error_message=row[18],
        ai_raw_response=row[19],
        ai_prompt_tokens=row[20],
        ai_completion_tokens=row[21],
    )
