"""Summary: Domain model dataclasses for MailRouter.

Importance: Defines the core entities shared across routing, processing, and storage.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


AI_STATUS_PENDING = "pending"
AI_STATUS_PROCESSING = "processing"
AI_STATUS_COMPLETED = "completed"
AI_STATUS_FAILED = "failed"


@dataclass(frozen=True)
class Message:
    """Summary: Represents an ingested email message before persistence.

    Importance: Core unit produced by channel providers and queued for AI analysis.
    Alternatives: Persist raw provider payloads and parse them lazily.
    """

    provider_message_id: str
    channel: str
    subject: str
    sender: str
    recipients: str
    timestamp: datetime
    snippet: str
    body: str
    sender_name: str = ""
    labels: tuple[str, ...] = ()
    is_unread: bool = True
    priority: str = "normal"
    attachment_count: int = 0


@dataclass(frozen=True)
class User:
    """Summary: Represents a user who owns messages and credentials.

    Importance: Scopes stored data and per-user provider keys.
    Alternatives: Run in single-user mode without user records.
    """

    display_name: str
    email: str


@dataclass(frozen=True)
class AdapterDescriptor:
    """Summary: Static description of one LLM model served by a provider.

    Importance: Lets a single adapter type serve every model from a data table.
    Alternatives: Write one adapter subclass per model.
    """

    name: str
    provider: str
    daily_token_limit: int | None
    max_output_tokens: int
    cost_per_token: float = 0.0

    @property
    def is_unbounded(self) -> bool:
        return self.daily_token_limit is None


@dataclass(frozen=True)
class ModelResponse:
    """Summary: Provider-neutral result of a single model call.

    Importance: Gives the router and analyzer one shape regardless of provider.
    Alternatives: Pass raw provider JSON through every layer.
    """

    model: str
    provider: str
    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    latency_ms: int
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AiRequest:
    """Summary: Records an AI request for audit and traceability.

    Importance: Provides visibility into prompts and provider usage.
    Alternatives: Log requests only in observability logs.
    """

    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: datetime


@dataclass(frozen=True)
class AiResponse:
    """Summary: Records an AI response paired to a request.

    Importance: Enables audit trails and usage review per call.
    Alternatives: Store only final outputs on the message records.
    """

    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int
