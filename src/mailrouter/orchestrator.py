"""Summary: Serializes message sync and AI batch runs with TTL locks.

Importance: Prevents overlapping runs across workers that share only the cache store.
Alternatives: Use a job queue with unique-job constraints.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator

from mailrouter.services import AiMessageProcessor, MessageSyncService
from mailrouter.storage.cache_store import CacheStore
from mailrouter.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

LOCK_MESSAGES = "sync_lock_messages"
LOCK_AI = "sync_lock_ai"
LOCK_KEYS = {"messages": LOCK_MESSAGES, "ai": LOCK_AI}
DEFAULT_LOCK_TTL = 900
STATUS_ALREADY_RUNNING = "already_running"


def resolve_lock_key(key: str) -> str:
    """Summary: Map a short lock name (messages, ai) to its cache key.

    Importance: Callers may pass either the short name or the full key.
    Alternatives: Accept only full cache keys.
    """

    if key in LOCK_KEYS:
        return LOCK_KEYS[key]
    if key in LOCK_KEYS.values():
        return key
    raise ValueError(f"Unknown lock key: {key}")


class SyncOrchestratorService:
    """Summary: Runs sync and AI batches under mutually exclusive named locks.

    Importance: A second trigger while a run is active is rejected immediately, never queued.
    Alternatives: Block until the lock frees up.
    """

    def __init__(
        self,
        cache: CacheStore,
        sync_service: MessageSyncService,
        processor: AiMessageProcessor,
        store: SqliteStore,
        user_id: int | None = None,
        lock_ttl: int = DEFAULT_LOCK_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._sync_service = sync_service
        self._processor = processor
        self._store = store
        self._user_id = user_id
        self._lock_ttl = lock_ttl
        self._clock = clock

    def sync_messages_only(self) -> dict[str, Any]:
        with self._exclusive(LOCK_MESSAGES) as acquired:
            if not acquired:
                return _already_running("Message sync already in progress")
            try:
                result = self._sync_service.sync_all_channels()
            except Exception as exc:
                logger.exception("Message sync failed")
                return {"success": False, "error": str(exc)}
            logger.info(
                "Message sync completed: total=%s successful=%s failed=%s",
                result["total"],
                result["successful"],
                result["failed"],
            )
            return {"success": True, **result}

    def process_ai_only(self, limit: int = 50) -> dict[str, Any]:
        """Summary: Analyze up to `limit` pending messages, newest first.

        Importance: The AI lock guarantees a single batch at a time across workers.
        Alternatives: Let overlapping batches race on message status.
        """

        with self._exclusive(LOCK_AI) as acquired:
            if not acquired:
                return _already_running("AI processing already in progress")
            try:
                messages = self._store.find_pending(limit, user_id=self._user_id)
                if not messages:
                    return {"success": True, "processed": 0, "message": "No pending messages"}
                result = self._processor.process_batch(messages)
            except Exception as exc:
                logger.exception("AI processing failed")
                return {"success": False, "error": str(exc)}
            logger.info("AI processing completed: processed=%s failed=%s", result["processed"], result["failed"])
            return {**result, "success": True}

    def process_single_message_by_id(
        self, message_id: int, force_reprocess: bool = False
    ) -> dict[str, Any]:
        """Single-message runs bypass the batch lock."""

        message = self._store.get_message(message_id, user_id=self._user_id)
        if message is None:
            return {"success": False, "error": "Message not found", "message_id": message_id}
        result = self._processor.process_single_message(message, force_reprocess)
        logger.info("Single message %s processed: success=%s", message_id, result["success"])
        return result

    def is_sync_in_progress(self, key: str) -> bool:
        return self._cache.has(resolve_lock_key(key))

    def force_release_lock(self, key: str) -> bool:
        """Summary: Delete a lock for operator recovery.

        Importance: Does not stop in-flight work; it only lets a new run start.
        Alternatives: Signal the running worker to cancel.
        """

        lock_key = resolve_lock_key(key)
        released = self._cache.forget(lock_key)
        logger.warning("Lock force released: %s (was held: %s)", lock_key, released)
        return released

    def get_sync_status(self, key: str) -> dict[str, Any]:
        lock_key = resolve_lock_key(key)
        value = self._cache.get(lock_key)
        if value is None:
            return {"is_locked": False, "locked_at": None, "locked_for_seconds": None}
        locked_at = lock_timestamp(value)
        return {
            "is_locked": True,
            "locked_at": datetime.fromtimestamp(locked_at).strftime("%Y-%m-%d %H:%M:%S"),
            "locked_for_seconds": int(self._clock() - locked_at),
        }

    @contextmanager
    def _exclusive(self, lock_key: str) -> Iterator[bool]:
        """Summary: Acquire a lock atomically and release it on every exit path if still owned.

        Importance: Yields False without side effects when another worker holds the lock.
        Alternatives: Check has() then put(), which lets two workers both acquire.
        """

        owner = f"{int(self._clock())}:{uuid.uuid4().hex}"
        acquired = self._cache.add(lock_key, owner, ttl_seconds=self._lock_ttl)
        if not acquired:
            yield False
            return
        logger.debug("Lock created: %s", lock_key)
        try:
            yield True
        finally:
            if self._cache.forget_if(lock_key, owner):
                logger.debug("Lock released: %s", lock_key)
            else:
                logger.warning("Lock %s expired or was taken over before release", lock_key)


def lock_timestamp(value: Any) -> int:
    """Return the acquisition epoch stored in a lock value (`<epoch>:<owner token>`)."""

    return int(str(value).split(":", 1)[0])


def _already_running(message: str) -> dict[str, Any]:
    return {"success": False, "status": STATUS_ALREADY_RUNNING, "error": message}
