"""Summary: Request and response records exchanged with the analysis model.

Importance: Validates model output before it is persisted onto a message.
Alternatives: Store whatever the model returns and validate on read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mailrouter.errors import AnalysisValidationError
from mailrouter.storage.sqlite_store import StoredMessage


PRIORITY_LEVELS = ("low", "medium", "high")
TIMELINES = ("hitno", "ova_nedelja", "ovaj_mesec", "dugorocno", "nema_deadline")
REQUIRED_FIELDS = ("id", "sender", "subject")


@dataclass(frozen=True)
class AiMessageRequest:
    """Summary: Normalized view of a message used to build the prompt.

    Importance: Decouples the prompt from storage columns.
    Alternatives: Serialize the stored row directly.
    """

    id: str
    sender: str
    sender_name: str
    subject: str
    content: str
    timestamp: str
    has_attachments: bool
    attachment_count: int
    labels: tuple[str, ...] = ()
    is_unread: bool = True
    priority: str = "normal"

    @staticmethod
    def from_message(message: StoredMessage) -> "AiMessageRequest":
        return AiMessageRequest(
            id=str(message.id),
            sender=message.sender,
            sender_name=message.sender_name,
            subject=message.subject,
            content=message.body or message.snippet,
            timestamp=message.timestamp,
            has_attachments=message.has_attachments,
            attachment_count=message.attachment_count,
            labels=message.labels,
            is_unread=message.is_unread,
            priority=message.priority,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "sender_name": self.sender_name,
            "subject": self.subject,
            "content": self.content,
            "timestamp": self.timestamp,
            "has_attachments": self.has_attachments,
            "attachment_count": self.attachment_count,
            "labels": list(self.labels),
            "is_unread": self.is_unread,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class AiMessageResponse:
    """Summary: Canonical, validated analysis of one email.

    Importance: Out-of-range scores or unknown enums reject the record instead of being coerced.
    Alternatives: Clamp values into range and keep the record.
    """

    id: str
    sender: str
    subject: str
    html_analysis: dict[str, Any] = field(default_factory=dict)
    classification: dict[str, Any] = field(default_factory=dict)
    sentiment: dict[str, Any] = field(default_factory=dict)
    recommendation: dict[str, Any] = field(default_factory=dict)
    action_steps: list[dict[str, Any]] = field(default_factory=list)
    summary: str = ""
    gmail_link: str = ""

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "AiMessageResponse":
        """Summary: Validate a raw analysis record and build the response.

        Importance: Single gate between untrusted model output and storage.
        Alternatives: Use a schema library for validation.
        """

        validate_analysis(data)
        return AiMessageResponse(
            id=str(data["id"]),
            sender=str(data["sender"]),
            subject=str(data["subject"]),
            html_analysis=data.get("html_analysis") or {},
            classification=data.get("classification") or {},
            sentiment=data.get("sentiment") or {},
            recommendation=data.get("recommendation") or {},
            action_steps=list(data.get("action_steps") or []),
            summary=str(data.get("summary") or ""),
            gmail_link=str(data.get("gmail_link") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "subject": self.subject,
            "html_analysis": self.html_analysis,
            "classification": self.classification,
            "sentiment": self.sentiment,
            "recommendation": self.recommendation,
            "action_steps": self.action_steps,
            "summary": self.summary,
            "gmail_link": self.gmail_link,
        }


def validate_analysis(data: Any) -> None:
    """Summary: Raise AnalysisValidationError when a record breaks the schema.

    Importance: Keeps invalid analysis out of storage while preserving the payload for inspection.
    Alternatives: Return a list of problems instead of raising.
    """

    if not isinstance(data, dict):
        raise AnalysisValidationError("Analysis record must be an object", payload=data)
    for name in REQUIRED_FIELDS:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise AnalysisValidationError(f"Missing or empty required field: {name}", payload=data)

    for section in ("html_analysis", "classification", "sentiment", "recommendation"):
        if section in data and data[section] is not None and not isinstance(data[section], dict):
            raise AnalysisValidationError(f"{section} must be an object", payload=data)

    classification = data.get("classification") or {}
    if "confidence_score" in classification:
        _check_range(classification["confidence_score"], 0, 1, "confidence_score", data)

    sentiment = data.get("sentiment") or {}
    for name in ("urgency_score", "business_potential"):
        if name in sentiment:
            _check_range(sentiment[name], 1, 10, name, data)

    recommendation = data.get("recommendation") or {}
    if "priority_level" in recommendation and recommendation["priority_level"] not in PRIORITY_LEVELS:
        raise AnalysisValidationError(
            f"priority_level must be one of: {', '.join(PRIORITY_LEVELS)}", payload=data
        )

    steps = data.get("action_steps")
    if steps is None:
        return
    if not isinstance(steps, list):
        raise AnalysisValidationError("action_steps must be a list", payload=data)
    for step in steps:
        if not isinstance(step, dict):
            raise AnalysisValidationError("Each action step must be an object", payload=data)
        if "timeline" in step and step["timeline"] not in TIMELINES:
            raise AnalysisValidationError(
                f"timeline must be one of: {', '.join(TIMELINES)}", payload=data
            )


def _check_range(value: Any, low: float, high: float, name: str, data: dict[str, Any]) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise AnalysisValidationError(f"{name} must be a number", payload=data)
    if value < low or value > high:
        raise AnalysisValidationError(f"{name} must be between {low} and {high}", payload=data)
