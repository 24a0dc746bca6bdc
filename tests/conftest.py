"""Summary: Shared fixtures for MailRouter tests.

Importance: Gives every test an isolated database and an offline configuration.
Alternatives: Build a full AppConfig inside each test module.
"""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

import pytest

from mailrouter.config import AppConfig


MOCK_MESSAGES = [
    {
        "provider_message_id": "mock-1",
        "subject": "Workflow automation project",
        "sender": "ana@acme.io",
        "sender_name": "Ana Petrovic",
        "recipients": "you@example.com",
        "timestamp": "2026-01-15T10:00:00",
        "snippet": "We would like to automate our invoicing workflow",
        "body": "We would like to automate our invoicing workflow this week.",
        "labels": ["INBOX"],
        "is_unread": True,
        "attachment_count": 1,
    },
    {
        "provider_message_id": "mock-2",
        "subject": "Weekly newsletter",
        "sender": "newsletter@updates.example.com",
        "sender_name": "Updates",
        "recipients": "you@example.com",
        "timestamp": "2026-01-14T08:30:00",
        "snippet": "This week in automation",
        "body": "Five new tools. Click unsubscribe to stop receiving these emails.",
        "labels": ["INBOX"],
        "is_unread": True,
        "attachment_count": 0,
    },
]


def build_config(tmp_path: Path, **overrides: Any) -> AppConfig:
    """Summary: Build an AppConfig for tests.

    Importance: Ensures tests use isolated storage and the offline mock adapter.
    Alternatives: Load AppConfig from environment variables.
    """

    fixture = tmp_path / "mock_messages.json"
    if not fixture.exists():
        fixture.write_text(json.dumps(MOCK_MESSAGES), encoding="utf-8")
    config = AppConfig(
        db_path=str(tmp_path / "test.db"),
        cache_driver="sqlite",
        ai_provider="mock",
        groq_api_key=None,
        groq_base_url="https://api.groq.test/openai/v1",
        openai_api_key=None,
        openai_model="gpt-4o-mini",
        openai_base_url="https://api.openai.test/v1",
        routing_strategy="predictive",
        primary_model="llama-3.1-8b-instant",
        model_priority=[],
        fallback_delay_seconds=0,
        ai_timeout_seconds=5,
        chars_per_token=4,
        safety_buffer_percentage=20,
        max_completion_tokens=2500,
        email_token_limit=12000,
        anonymize=True,
        ai_max_workers=2,
        ai_batch_limit=50,
        lock_ttl_seconds=900,
        sync_channels=["mock"],
        sync_fetch_limit=25,
        mock_fixture_path=str(fixture),
        eml_directory=str(tmp_path / "eml"),
        gmail_access_token=None,
        gmail_api_base_url="https://gmail.test/gmail/v1",
        api_host="127.0.0.1",
        api_port=8000,
        api_key="",
        default_user_name="Local User",
        default_user_email="local@mailrouter",
        token_secret="secret",
    )
    return replace(config, **overrides)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AppConfig]:
    def factory(**overrides: Any) -> AppConfig:
        return build_config(tmp_path, **overrides)

    return factory


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_768_471_200.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
