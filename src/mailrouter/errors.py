"""Summary: Exception types raised by routing and analysis.

Importance: Lets callers tell retryable provider failures from bad model output.
Alternatives: Raise RuntimeError everywhere and inspect messages.
"""

from __future__ import annotations

from typing import Any


class MailRouterError(RuntimeError):
    """Base class for routing, provider, and parsing failures."""


class LimitExceeded(MailRouterError):
    """An adapter has used up its daily token budget."""

    def __init__(self, model: str) -> None:
        super().__init__(f"Daily token limit exceeded for {model}")
        self.model = model


class ProviderError(MailRouterError):
    """Summary: A model provider call failed.

    Importance: Carries the HTTP status and body for diagnostics and fallback decisions.
    Alternatives: Surface the raw urllib exception to callers.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AllProvidersExhausted(MailRouterError):
    """No adapter could serve the request; callers should retry later."""

    def __init__(self, message: str, attempts: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts or []


class InvalidAiJson(MailRouterError):
    """Model output could not be parsed as JSON."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class AnalysisValidationError(ValueError):
    """An analysis record failed schema or range validation."""

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload
