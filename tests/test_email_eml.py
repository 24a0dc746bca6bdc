"""Summary: Tests for .eml email ingestion.

Importance: Ensures .eml parsing works for local email imports.
Alternatives: Use only mock email data for tests.
"""

from __future__ import annotations

from pathlib import Path

from mailrouter.email import EmlEmailProvider, MockEmailProvider


SAMPLE_EML = """From: Ana Petrovic <ana@acme.io>
To: receiver@example.com
Subject: =?utf-8?q?Pozdrav_iz_Beograda?=
Date: Thu, 15 Jan 2026 10:00:00 +0000
Message-Id: <test-1@example.com>

Hello there.
"""


def test_eml_provider_parses_message(tmp_path: Path) -> None:
    """Summary: Parse a .eml file into a Message.

    Importance: Validates local email ingestion with encoded headers.
    Alternatives: Skip .eml support tests.
    """

    eml = tmp_path / "sample.eml"
    eml.write_text(SAMPLE_EML, encoding="utf-8")
    messages = EmlEmailProvider([eml]).fetch_recent(5)
    assert messages[0].subject == "Pozdrav iz Beograda"
    assert messages[0].sender == "ana@acme.io"
    assert messages[0].sender_name == "Ana Petrovic"
    assert messages[0].provider_message_id == "<test-1@example.com>"
    assert messages[0].body == "Hello there."
    assert messages[0].channel == "eml"


def test_eml_directory_provider(tmp_path: Path) -> None:
    (tmp_path / "b.eml").write_text(SAMPLE_EML.replace("test-1", "test-2"), encoding="utf-8")
    (tmp_path / "a.eml").write_text(SAMPLE_EML, encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
    messages = EmlEmailProvider.from_directory(tmp_path).fetch_recent(10)
    assert [message.provider_message_id for message in messages] == [
        "<test-1@example.com>",
        "<test-2@example.com>",
    ]
    assert EmlEmailProvider.from_directory(tmp_path / "missing").fetch_recent(10) == []


def test_mock_provider_respects_limit(make_config) -> None:
    config = make_config()
    messages = MockEmailProvider(Path(config.mock_fixture_path)).fetch_recent(1)
    assert len(messages) == 1
    assert messages[0].channel == "mock"
    assert messages[0].attachment_count == 1
