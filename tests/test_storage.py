"""Summary: Tests for SQLite storage layer.

Importance: Ensures persistence behaves as expected for sync, analysis and audit.
Alternatives: Rely on manual testing for storage operations.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path

from mailrouter.models import AiRequest, AiResponse, Message, User
from mailrouter.storage.sqlite_store import SqliteStore


def _message(provider_id: str, timestamp: datetime, channel: str = "mock") -> Message:
    return Message(
        provider_message_id=provider_id,
        channel=channel,
        subject=f"Subject {provider_id}",
        sender="sender@example.com",
        recipients="receiver@example.com",
        timestamp=timestamp,
        snippet="Hello",
        body="Hello world",
        labels=("INBOX",),
        attachment_count=2,
    )


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


def test_save_messages_returns_only_new_ids(tmp_path: Path) -> None:
    """Summary: Verify duplicate provider ids are ignored.

    Importance: Re-syncing a channel must not reset analyzed messages.
    Alternatives: Upsert every fetched message.
    """

    store = _store(tmp_path)
    now = datetime(2026, 1, 15, 10, 0)
    first = store.save_messages([_message("a", now), _message("b", now)], user_id=1)
    second = store.save_messages([_message("a", now), _message("c", now)], user_id=1)
    assert len(first) == 2
    assert len(second) == 1
    assert len(store.list_messages(10)) == 3


def test_find_pending_orders_newest_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    base = datetime(2026, 1, 15, 10, 0)
    store.save_messages(
        [_message("old", base), _message("new", base + timedelta(hours=1))], user_id=1
    )
    pending = store.find_pending(10, user_id=1)
    assert [message.provider_message_id for message in pending] == ["new", "old"]
    assert pending[0].ai_status == "pending"
    assert pending[0].labels == ("INBOX",)
    assert pending[0].has_attachments


def test_save_message_writes_ai_fields(tmp_path: Path) -> None:
    store = _store(tmp_path)
    [message_id] = store.save_messages([_message("a", datetime(2026, 1, 15))], user_id=1)
    message = store.get_message(message_id, user_id=1)
    store.save_message(
        replace(
            message,
            ai_status="completed",
            ai_analysis={"id": str(message_id), "summary": "ok"},
            ai_processed_at="2026-01-15T10:00:00+00:00",
            ai_prompt_tokens=10,
            ai_completion_tokens=5,
        )
    )
    stored = store.get_message(message_id)
    assert stored.ai_status == "completed"
    assert stored.ai_analysis == {"id": str(message_id), "summary": "ok"}
    assert stored.ai_prompt_tokens == 10
    assert store.find_pending(10) == []
    assert store.count_messages_by_status() == {"completed": 1}


def test_get_message_scoped_by_user(tmp_path: Path) -> None:
    store = _store(tmp_path)
    [message_id] = store.save_messages([_message("a", datetime(2026, 1, 15))], user_id=1)
    assert store.get_message(message_id, user_id=2) is None
    assert store.get_message(message_id, user_id=1) is not None


def test_ensure_user_is_idempotent(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = store.ensure_user(User(display_name="Local", email="local@mailrouter"))
    second = store.ensure_user(User(display_name="Local", email="local@mailrouter"))
    assert first == second


def test_credentials_upsert_and_validity(tmp_path: Path) -> None:
    """Summary: Verify credential storage replaces keys and honors expiry.

    Importance: Expired or inactive keys must not be used for provider calls.
    Alternatives: Validate keys at call time only.
    """

    store = _store(tmp_path)
    first_id = store.store_credential(1, "groq", "encoded-1")
    second_id = store.store_credential(1, "groq", "encoded-2", expires_at="2026-01-01T00:00:00")
    credential = store.get_credential(1, "groq")
    assert first_id == second_id
    assert credential.encoded_key == "encoded-2"
    assert credential.is_valid(now=datetime(2025, 12, 31))
    assert not credential.is_valid(now=datetime(2026, 1, 2))
    store.deactivate_credential(1, "groq")
    assert not store.get_credential(1, "groq").is_valid(now=datetime(2025, 12, 31))
    assert store.get_credential(1, "openai") is None


def test_ai_audit_records(tmp_path: Path) -> None:
    store = _store(tmp_path)
    request_id = store.log_ai_request(
        AiRequest(
            provider="mock",
            model="mock-analyzer",
            prompt="Prompt",
            purpose="email_analysis",
            timestamp=datetime(2026, 1, 15),
        ),
        user_id=1,
    )
    store.log_ai_response(
        AiResponse(request_id=request_id, response_text="{}", latency_ms=12, token_estimate=30)
    )
    assert store.list_ai_requests(10, user_id=1)[0].model == "mock-analyzer"
    assert store.list_ai_responses(10, user_id=1)[0].token_estimate == 30
    assert store.list_ai_responses(10, user_id=2) == []


def test_sync_logs_lifecycle(tmp_path: Path) -> None:
    store = _store(tmp_path)
    started = datetime(2026, 1, 15, 10, 0)
    ok_id = store.start_sync_log("mock", started, user_id=1)
    store.complete_sync_log(ok_id, started + timedelta(seconds=3), 5, 2)
    failed_id = store.start_sync_log("gmail", started, user_id=1)
    store.fail_sync_log(failed_id, started + timedelta(seconds=1), "boom")
    logs = store.list_sync_logs(10, user_id=1)
    assert [log.status for log in logs] == ["failed", "completed"]
    assert logs[0].error_message == "boom"
    assert logs[1].new_messages == 2
