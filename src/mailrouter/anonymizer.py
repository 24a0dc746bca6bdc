"""Summary: Strips personal data from email records before they reach a model.

Importance: Third-party providers never see real addresses, phone numbers or names.
Alternatives: Run a named-entity recognizer over the text.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any


COMMON_DOMAINS = frozenset({"gmail.com", "yahoo.com", "outlook.com", "hotmail.com"})
PRESERVED_WORDS = frozenset(
    {
        "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
        "January", "February", "March", "April", "May", "June", "July", "August",
        "September", "October", "November", "December",
        "Dear", "Hi", "Hello", "Thanks",
    }
)

_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_URL_PATTERN = re.compile(r"https?://\S+")
# At least seven digits so dates and amounts survive.
_PHONE_PATTERN = re.compile(r"\+?\(?\d[\d\s().-]{5,}\d")
_NAME_PATTERN = re.compile(r"^[A-Z][a-z]+$")


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


class DataAnonymizer:
    """Summary: Replaces identifying data with stable hashed placeholders.

    Importance: The same input always maps to the same token, so threads stay linkable.
    Alternatives: Replace everything with a generic [REDACTED] marker.
    """

    def __init__(self) -> None:
        self._email_cache: dict[str, str] = {}
        self._name_cache: dict[str, str] = {}

    def anonymize_record(self, record: dict[str, Any]) -> dict[str, Any]:
        """Summary: Return a copy of a request record with sender, subject and content scrubbed.

        Importance: The id stays intact so analysis results map back to messages.
        Alternatives: Anonymize at ingestion time and lose the originals.
        """

        anonymized = dict(record)
        anonymized["sender"] = self.anonymize_email(str(record.get("sender") or "unknown"))
        if "sender_name" in record:
            anonymized["sender_name"] = self.anonymize_text(str(record.get("sender_name") or ""))
        anonymized["subject"] = self.anonymize_text(str(record.get("subject") or ""))
        anonymized["content"] = self.anonymize_text(str(record.get("content") or ""))
        return anonymized

    def anonymize_email(self, email: str) -> str:
        if email in self._email_cache:
            return self._email_cache[email]
        domain = email.split("@", 1)[1] if "@" in email else ""
        anonymized = f"user_{_md5(email)[:8]}@{self.anonymize_domain(domain)}"
        self._email_cache[email] = anonymized
        return anonymized

    def anonymize_domain(self, domain: str) -> str:
        if domain in COMMON_DOMAINS:
            return domain
        return f"company_{_md5(domain)[:6]}.com"

    def anonymize_text(self, text: str) -> str:
        text = _EMAIL_PATTERN.sub("[EMAIL]", text)
        text = _URL_PATTERN.sub("[URL]", text)
        text = _PHONE_PATTERN.sub("[PHONE]", text)
        return self._anonymize_names(text)

    def _anonymize_names(self, text: str) -> str:
        words = text.split(" ")
        return " ".join(self._replace_name(word) for word in words)

    def _replace_name(self, word: str) -> str:
        if word in PRESERVED_WORDS or not _NAME_PATTERN.match(word):
            return word
        if word not in self._name_cache:
            self._name_cache[word] = f"Person_{_md5(word)[:4]}"
        return self._name_cache[word]
