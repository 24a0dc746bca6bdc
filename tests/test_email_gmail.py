"""Summary: Tests for Gmail message fetching and parsing.

Importance: Ensures Gmail payloads are normalized into readable messages.
Alternatives: Use integration tests with the live Gmail API.
"""

from __future__ import annotations

import base64
import io
import json
import urllib.error
import urllib.request
from typing import Any

import pytest

from mailrouter.email import GmailEmailProvider, _extract_gmail_body, _parse_gmail_message
from mailrouter.errors import ProviderError


def _encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("utf-8").rstrip("=")


GMAIL_MESSAGE = {
    "id": "g-1",
    "internalDate": "1768471200000",
    "labelIds": ["INBOX", "UNREAD", "IMPORTANT"],
    "snippet": "Quick question",
    "payload": {
        "mimeType": "multipart/mixed",
        "headers": [
            {"name": "Subject", "value": "Quick question"},
            {"name": "From", "value": "Ana <ana@acme.io>"},
            {"name": "To", "value": "you@example.com"},
        ],
        "parts": [
            {"mimeType": "text/plain", "body": {"data": _encode("Can we talk?")}},
            {"mimeType": "text/html", "body": {"data": _encode("<p>Can we talk?</p>")}},
            {"mimeType": "application/pdf", "filename": "brief.pdf", "body": {"attachmentId": "x"}},
        ],
    },
}


class _FakeResponse:
    def __init__(self, payload: dict[str, Any]) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *args: Any) -> None:
        return None


def test_extract_gmail_body_prefers_plain_text() -> None:
    assert _extract_gmail_body(GMAIL_MESSAGE["payload"]) == "Can we talk?"


def test_parse_gmail_message_maps_labels() -> None:
    """Summary: Verify Gmail labels map to unread state, priority and attachments.

    Importance: The analysis prompt includes these flags.
    Alternatives: Drop label information.
    """

    message = _parse_gmail_message(GMAIL_MESSAGE)
    assert message.provider_message_id == "g-1"
    assert message.sender == "ana@acme.io"
    assert message.sender_name == "Ana"
    assert message.is_unread is True
    assert message.priority == "high"
    assert message.attachment_count == 1
    assert message.channel == "gmail"


def test_gmail_provider_fetches_list_then_details(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[str] = []

    def fake_urlopen(request: urllib.request.Request, timeout: int) -> _FakeResponse:
        seen.append(request.full_url)
        assert request.get_header("Authorization") == "Bearer token"
        if "?maxResults=" in request.full_url:
            return _FakeResponse({"messages": [{"id": "g-1"}]})
        return _FakeResponse(GMAIL_MESSAGE)

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    messages = GmailEmailProvider("token", "https://gmail.test/gmail/v1/").fetch_recent(5)
    assert [message.subject for message in messages] == ["Quick question"]
    assert seen == [
        "https://gmail.test/gmail/v1/users/me/messages?maxResults=5",
        "https://gmail.test/gmail/v1/users/me/messages/g-1?format=full",
    ]


def test_gmail_provider_http_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(request: urllib.request.Request, timeout: int) -> _FakeResponse:
        raise urllib.error.HTTPError(request.full_url, 401, "Unauthorized", {}, io.BytesIO(b"bad token"))

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(ProviderError) as excinfo:
        GmailEmailProvider("token", "https://gmail.test/gmail/v1").fetch_recent(5)
    assert excinfo.value.status_code == 401
