"""Summary: Email channel providers used by message sync.

Importance: Encapsulates read-only fetching from fixtures, exported files and Gmail.
Alternatives: Rely solely on provider SDKs with vendor lock-in.
"""

from __future__ import annotations

import base64
import json
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from datetime import datetime
from email import message_from_bytes
from email.header import decode_header
from email.message import Message as MimeMessage
from email.utils import parseaddr, parsedate_to_datetime
from pathlib import Path
from typing import Any

from mailrouter.errors import ProviderError
from mailrouter.models import Message


class EmailProvider(ABC):
    """Summary: Abstract interface for one message channel.

    Importance: Lets sync treat every channel the same way.
    Alternatives: Use provider-specific classes directly in sync flows.
    """

    channel: str = "email"

    @abstractmethod
    def fetch_recent(self, limit: int) -> list[Message]:
        """Summary: Fetch recent messages from the channel.

        Importance: Drives message sync across channels.
        Alternatives: Fetch messages by cursor or history id instead.
        """


class MockEmailProvider(EmailProvider):
    """Summary: Loads email messages from a local JSON fixture.

    Importance: Supports offline runs and tests.
    Alternatives: Generate synthetic messages.
    """

    channel = "mock"

    def __init__(self, fixture_path: Path) -> None:
        self._fixture_path = fixture_path

    def fetch_recent(self, limit: int) -> list[Message]:
        data = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        messages = [
            Message(
                provider_message_id=item["provider_message_id"],
                channel=self.channel,
                subject=item["subject"],
                sender=item["sender"],
                sender_name=item.get("sender_name", ""),
                recipients=item.get("recipients", ""),
                timestamp=datetime.fromisoformat(item["timestamp"]),
                snippet=item.get("snippet", ""),
                body=item.get("body", ""),
                labels=tuple(item.get("labels", [])),
                is_unread=bool(item.get("is_unread", True)),
                attachment_count=int(item.get("attachment_count", 0)),
            )
            for item in data
        ]
        return messages[:limit]


class EmlEmailProvider(EmailProvider):
    """Summary: Loads messages from exported .eml files.

    Importance: Allows local-first ingestion without provider APIs.
    Alternatives: Use IMAP only.
    """

    channel = "eml"

    def __init__(self, eml_paths: list[Path]) -> None:
        self._eml_paths = eml_paths

    @staticmethod
    def from_directory(directory: Path) -> "EmlEmailProvider":
        """Build a provider over every .eml file in a directory, sorted by name."""

        if not directory.exists():
            return EmlEmailProvider([])
        return EmlEmailProvider(sorted(directory.glob("*.eml")))

    def fetch_recent(self, limit: int) -> list[Message]:
        messages: list[Message] = []
        for path in self._eml_paths[:limit]:
            message = message_from_bytes(path.read_bytes())
            sender_name, sender = parseaddr(_decode_header_value(message.get("From", "")))
            body = _extract_body(message)
            messages.append(
                Message(
                    provider_message_id=str(message.get("Message-Id", path.name)).strip(),
                    channel=self.channel,
                    subject=_decode_header_value(message.get("Subject", "")),
                    sender=sender,
                    sender_name=sender_name,
                    recipients=_decode_header_value(message.get("To", "")),
                    timestamp=_parse_date(message.get("Date", "")),
                    snippet=body[:200].replace("\n", " "),
                    body=body,
                    attachment_count=_count_attachments(message),
                )
            )
        return messages


class GmailEmailProvider(EmailProvider):
    """Summary: Reads emails via the Gmail API using an OAuth access token.

    Importance: Enables OAuth-based ingestion without IMAP passwords.
    Alternatives: Use the Google API client library.
    """

    channel = "gmail"

    def __init__(self, access_token: str, base_url: str) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")

    def fetch_recent(self, limit: int) -> list[Message]:
        list_url = f"{self._base_url}/users/me/messages?maxResults={limit}"
        payload = _gmail_api_get(list_url, self._access_token)
        messages: list[Message] = []
        for item in payload.get("messages", []):
            message_id = item.get("id")
            if not message_id:
                continue
            detail_url = f"{self._base_url}/users/me/messages/{message_id}?format=full"
            messages.append(_parse_gmail_message(_gmail_api_get(detail_url, self._access_token)))
        return messages


def _gmail_api_get(url: str, access_token: str) -> dict[str, Any]:
    request = urllib.request.Request(
        url,
        headers={"Authorization": f"Bearer {access_token}"},
        method="GET",
    )
    try:
        with urllib.request.urlopen(request, timeout=10) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="replace")
        raise ProviderError(
            f"Gmail API request failed: {exc.code}", status_code=exc.code, body=error_body
        ) from exc
    except urllib.error.URLError as exc:
        raise ProviderError(f"Gmail API request failed: {exc.reason}") from exc
    return json.loads(raw)


def _parse_gmail_message(message: dict[str, Any]) -> Message:
    """Summary: Parse a Gmail message payload into a Message.

    Importance: Maps Gmail labels onto unread state and priority.
    Alternatives: Store raw Gmail payloads and parse later.
    """

    payload = message.get("payload") or {}
    headers = {
        header["name"]: header["value"]
        for header in payload.get("headers", [])
        if header.get("name") and header.get("value")
    }
    sender_name, sender = parseaddr(headers.get("From", ""))
    internal_date = message.get("internalDate")
    if internal_date:
        timestamp = datetime.fromtimestamp(int(internal_date) / 1000)
    else:
        timestamp = _parse_date(headers.get("Date", ""))
    body = _extract_gmail_body(payload)
    snippet = message.get("snippet") or body[:200].replace("\n", " ")
    labels = tuple(message.get("labelIds", []))
    return Message(
        provider_message_id=message.get("id", ""),
        channel="gmail",
        subject=headers.get("Subject", ""),
        sender=sender,
        sender_name=sender_name,
        recipients=headers.get("To", ""),
        timestamp=timestamp,
        snippet=snippet,
        body=body or snippet,
        labels=labels,
        is_unread="UNREAD" in labels,
        priority="high" if "IMPORTANT" in labels else "normal",
        attachment_count=sum(1 for part in _walk_gmail_parts(payload) if part.get("filename")),
    )


def _extract_gmail_body(payload: dict[str, Any]) -> str:
    text_parts: list[str] = []
    fallback_parts: list[str] = []
    for part in _walk_gmail_parts(payload):
        data = (part.get("body") or {}).get("data")
        if not data or part.get("filename"):
            continue
        decoded = _decode_base64url(data).strip()
        if part.get("mimeType") == "text/plain":
            text_parts.append(decoded)
        else:
            fallback_parts.append(decoded)
    return "\n".join(item for item in (text_parts or fallback_parts) if item).strip()


def _walk_gmail_parts(payload: dict[str, Any]) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = [payload]
    for part in payload.get("parts", []) or []:
        parts.extend(_walk_gmail_parts(part))
    return parts


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("utf-8")).decode("utf-8", errors="ignore")


def _decode_header_value(value: str) -> str:
    """Summary: Decode encoded email header values.

    Importance: Ensures metadata is readable in storage and prompts.
    Alternatives: Store raw header values and decode at display time.
    """

    fragments: list[str] = []
    for part, encoding in decode_header(value):
        if isinstance(part, bytes):
            fragments.append(part.decode(encoding or "utf-8", errors="ignore"))
        else:
            fragments.append(part)
    return "".join(fragments).strip()


def _extract_body(message: MimeMessage) -> str:
    if message.is_multipart():
        parts = []
        for part in message.walk():
            if part.get_content_type() == "text/plain" and not part.get_filename():
                payload = part.get_payload(decode=True) or b""
                parts.append(payload.decode(part.get_content_charset() or "utf-8", errors="ignore"))
        return "\n".join(parts).strip()
    payload = message.get_payload(decode=True) or b""
    return payload.decode(message.get_content_charset() or "utf-8", errors="ignore").strip()


def _count_attachments(message: MimeMessage) -> int:
    return sum(1 for part in message.walk() if part.get_filename())


def _parse_date(raw_date: str) -> datetime:
    if not raw_date:
        return datetime.now()
    try:
        return parsedate_to_datetime(raw_date)
    except (TypeError, ValueError):
        return datetime.now()
