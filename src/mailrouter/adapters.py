"""Summary: Model adapters and the catalog of supported provider models.

Importance: Wraps each rate-limited LLM behind one interface so the router can rotate between them.
Alternatives: Call provider SDKs directly from the router.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from mailrouter.config import AppConfig
from mailrouter.errors import LimitExceeded, ProviderError
from mailrouter.models import AdapterDescriptor, ModelResponse
from mailrouter.prompts import EMAILS_MARKER
from mailrouter.usage import UsageTracker


logger = logging.getLogger(__name__)

SERVICE_GROQ = "groq"
SERVICE_OPENAI = "openai"


def _groq(name: str, daily_limit: int, max_tokens: int) -> AdapterDescriptor:
    return AdapterDescriptor(
        name=name, provider=SERVICE_GROQ, daily_token_limit=daily_limit, max_output_tokens=max_tokens
    )


# Fastest free models first; this order is the default routing priority.
GROQ_MODELS: tuple[AdapterDescriptor, ...] = (
    _groq("llama-3.1-8b-instant", 14400, 8000),
    _groq("groq/compound-mini", 14400, 8192),
    _groq("llama-3.3-70b-versatile", 14400, 8000),
    _groq("groq/compound", 14400, 8192),
    _groq("openai/gpt-oss-20b", 14400, 8000),
    _groq("openai/gpt-oss-120b", 14400, 8000),
    _groq("meta-llama/llama-4-maverick-17b-128e-instruct", 14400, 8192),
    _groq("meta-llama/llama-4-scout-17b-16e-instruct", 14400, 8192),
    _groq("qwen/qwen3-32b", 14400, 8000),
    _groq("meta-llama/llama-guard-4-12b", 14400, 1024),
    _groq("moonshotai/kimi-k2-instruct-0905", 14400, 8000),
    _groq("allam-2-7b", 7000, 500000),
    _groq("meta-llama/llama-prompt-guard-2-22m", 14400, 500000),
    _groq("meta-llama/llama-prompt-guard-2-86m", 14400, 500000),
    _groq("playai-tts", 1200, 3600),
    _groq("playai-tts-arabic", 1200, 3600),
    _groq("whisper-large-v3", 7200, 28800),
    _groq("whisper-large-v3-turbo", 7200, 28800),
)

MOCK_MODEL = AdapterDescriptor(
    name="mock-analyzer", provider="mock", daily_token_limit=1_000_000, max_output_tokens=4096
)


def openai_descriptor(model: str) -> AdapterDescriptor:
    """Paid OpenAI model: no daily cap, billed per token."""

    return AdapterDescriptor(
        name=model,
        provider=SERVICE_OPENAI,
        daily_token_limit=None,
        max_output_tokens=4096,
        cost_per_token=0.0000006,
    )


class ModelAdapter(ABC):
    """Summary: Interface every model adapter exposes to the router.

    Importance: Lets the router select, call, and meter models without provider specifics.
    Alternatives: Branch on provider names inside the router.
    """

    @property
    @abstractmethod
    def descriptor(self) -> AdapterDescriptor:
        """Static model description."""

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def provider(self) -> str:
        return self.descriptor.provider

    @property
    def daily_token_limit(self) -> int | None:
        return self.descriptor.daily_token_limit

    @property
    def cost_per_token(self) -> float:
        return self.descriptor.cost_per_token

    @abstractmethod
    def used_tokens(self) -> int:
        """Tokens consumed today."""

    @abstractmethod
    def remaining_tokens(self) -> int | None:
        """Tokens left today, None when unbounded."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether today's usage is still under the daily limit."""

    @abstractmethod
    def call(self, system_prompt: str, user_prompt: str) -> ModelResponse:
        """Summary: Run one chat completion.

        Importance: The single entry point the router dispatches through.
        Alternatives: Stream partial tokens back to the caller.
        """


class BaseModelAdapter(ModelAdapter):
    """Summary: Adapter base that enforces the daily budget and records usage.

    Importance: Keeps limit checks and metering identical for every provider.
    Alternatives: Repeat the checks in each concrete adapter.
    """

    def __init__(self, descriptor: AdapterDescriptor, usage: UsageTracker) -> None:
        self._descriptor = descriptor
        self._usage = usage

    @property
    def descriptor(self) -> AdapterDescriptor:
        return self._descriptor

    def used_tokens(self) -> int:
        return self._usage.used(self.provider, self.name)

    def remaining_tokens(self) -> int | None:
        return self._usage.remaining(self.provider, self.name, self.daily_token_limit)

    def is_available(self) -> bool:
        return self._usage.is_available(self.provider, self.name, self.daily_token_limit)

    def call(self, system_prompt: str, user_prompt: str) -> ModelResponse:
        if not self.is_available():
            raise LimitExceeded(self.name)
        response = self._invoke(system_prompt, user_prompt)
        self._usage.track(self.provider, self.name, response.total_tokens)
        return response

    @abstractmethod
    def _invoke(self, system_prompt: str, user_prompt: str) -> ModelResponse:
        """Perform the provider call without budget checks."""


class ChatCompletionAdapter(BaseModelAdapter):
    """Summary: Adapter for OpenAI-compatible chat completion endpoints.

    Importance: Serves every Groq model and OpenAI with a single request shape.
    Alternatives: Use the vendor SDK per provider.
    """

    def __init__(
        self,
        descriptor: AdapterDescriptor,
        usage: UsageTracker,
        api_key: str | None,
        base_url: str,
        timeout_seconds: int = 60,
        max_completion_tokens: int | None = None,
    ) -> None:
        """Summary: Bind the adapter to a resolved credential.

        Importance: The key is fixed at construction, so one instance never switches callers.
        Alternatives: Look up the key on every call.
        """

        super().__init__(descriptor, usage)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_completion_tokens = max_completion_tokens

    def _invoke(self, system_prompt: str, user_prompt: str) -> ModelResponse:
        if not self._api_key:
            raise ProviderError(f"No API key configured for {self.provider}")
        max_tokens = self.descriptor.max_output_tokens
        if self._max_completion_tokens:
            max_tokens = min(max_tokens, self._max_completion_tokens)
        payload = {
            "model": self.name,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": 0.1,
            "response_format": {"type": "json_object"},
        }
        request = urllib.request.Request(
            url=f"{self._base_url}/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            logger.error("%s API error for %s: %s %s", self.provider, self.name, exc.code, body)
            raise ProviderError(
                f"{self.provider} API error: {exc.code}", status_code=exc.code, body=body
            ) from exc
        except urllib.error.URLError as exc:
            raise ProviderError(f"{self.provider} request failed: {exc.reason}") from exc
        latency_ms = int((time.time() - started) * 1000)
        return _response_from_payload(raw, self.descriptor, latency_ms)


class MockModelAdapter(BaseModelAdapter):
    """Summary: Deterministic adapter that answers analysis prompts offline.

    Importance: Enables local runs and tests without provider keys.
    Alternatives: Record and replay real provider responses.
    """

    def __init__(self, usage: UsageTracker, descriptor: AdapterDescriptor = MOCK_MODEL) -> None:
        super().__init__(descriptor, usage)

    def _invoke(self, system_prompt: str, user_prompt: str) -> ModelResponse:
        started = time.time()
        records = _records_from_prompt(user_prompt)
        content = json.dumps({"emails": [_mock_analysis(record) for record in records]})
        prompt_tokens = max(1, (len(system_prompt) + len(user_prompt)) // 4)
        completion_tokens = max(1, len(content) // 4)
        return ModelResponse(
            model=self.name,
            provider=self.provider,
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            latency_ms=int((time.time() - started) * 1000),
        )


KeyResolver = Callable[[int | None, str], str | None]


@dataclass(frozen=True)
class AdapterFactory:
    """Summary: Builds the ordered adapter fleet for one caller.

    Importance: Adapters are constructed per request with that caller's resolved key.
    Alternatives: Share one adapter set and mutate its credentials per user.
    """

    config: AppConfig
    usage: UsageTracker
    key_resolver: KeyResolver | None = None

    def build(self, user_id: int | None = None) -> list[ModelAdapter]:
        """Summary: Construct adapters in routing priority order.

        Importance: The returned order is what predictive and fallback routing walk.
        Alternatives: Let the router discover adapters itself.
        """

        if self.config.ai_provider == "mock":
            return [MockModelAdapter(self.usage)]
        adapters: list[ModelAdapter] = []
        groq_key = self._resolve(user_id, SERVICE_GROQ, self.config.groq_api_key)
        if groq_key:
            for descriptor in ordered_catalog(self.config.model_priority):
                adapters.append(
                    ChatCompletionAdapter(
                        descriptor,
                        self.usage,
                        api_key=groq_key,
                        base_url=self.config.groq_base_url,
                        timeout_seconds=self.config.ai_timeout_seconds,
                        max_completion_tokens=self.config.max_completion_tokens,
                    )
                )
        openai_key = self._resolve(user_id, SERVICE_OPENAI, self.config.openai_api_key)
        if openai_key:
            adapters.append(
                ChatCompletionAdapter(
                    openai_descriptor(self.config.openai_model),
                    self.usage,
                    api_key=openai_key,
                    base_url=self.config.openai_base_url,
                    timeout_seconds=self.config.ai_timeout_seconds,
                    max_completion_tokens=self.config.max_completion_tokens,
                )
            )
        if not adapters:
            logger.warning("No provider API keys resolved for user %s", user_id)
        return adapters

    def _resolve(self, user_id: int | None, service: str, global_key: str | None) -> str | None:
        if self.key_resolver is not None:
            user_key = self.key_resolver(user_id, service)
            if user_key:
                return user_key
        return global_key


def ordered_catalog(priority: list[str]) -> list[AdapterDescriptor]:
    """Summary: Reorder the Groq catalog by a configured priority list.

    Importance: Listed models come first in the given order; the rest keep catalog order.
    Alternatives: Require the full list in configuration.
    """

    by_name = {descriptor.name: descriptor for descriptor in GROQ_MODELS}
    unknown = [name for name in priority if name not in by_name]
    if unknown:
        raise ValueError(f"Unknown model(s) in priority list: {', '.join(unknown)}")
    head = [by_name[name] for name in dict.fromkeys(priority)]
    tail = [descriptor for descriptor in GROQ_MODELS if descriptor.name not in priority]
    return head + tail


def _response_from_payload(
    raw: dict[str, Any], descriptor: AdapterDescriptor, latency_ms: int
) -> ModelResponse:
    try:
        content = raw["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderError(f"Unexpected response shape from {descriptor.name}") from exc
    usage = raw.get("usage") or {}
    prompt_tokens = int(usage.get("prompt_tokens", 0))
    completion_tokens = int(usage.get("completion_tokens", 0))
    return ModelResponse(
        model=raw.get("model", descriptor.name),
        provider=descriptor.provider,
        content=content,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=int(usage.get("total_tokens", prompt_tokens + completion_tokens)),
        latency_ms=latency_ms,
        raw=raw,
    )


def _records_from_prompt(prompt: str) -> list[dict[str, Any]]:
    index = prompt.find(EMAILS_MARKER)
    if index < 0:
        return []
    remainder = prompt[index + len(EMAILS_MARKER):].lstrip()
    try:
        records, _ = json.JSONDecoder().raw_decode(remainder)
    except json.JSONDecodeError:
        return []
    return [record for record in records if isinstance(record, dict)] if isinstance(records, list) else []


def _mock_analysis(record: dict[str, Any]) -> dict[str, Any]:
    message_id = str(record.get("id", ""))
    sender = str(record.get("sender") or "unknown@example.com")
    subject = str(record.get("subject") or "(no subject)")
    content = str(record.get("content") or "")
    lowered = f"{subject} {content}".lower()
    is_newsletter = "unsubscribe" in lowered or sender.startswith(("newsletter@", "noreply@"))
    urgent = any(marker in lowered for marker in ("urgent", "asap", "this week", "today"))
    if is_newsletter:
        category, subcategory, priority, urgency, potential = "marketing", "newsletter", "low", 1, 1
        action = {"type": "ARCHIVE", "description": "Archive the newsletter", "timeline": "nema_deadline"}
    else:
        category, subcategory = "business_inquiry", "project_proposal"
        urgency = 8 if urgent else 5
        potential = 7 if "budget" in lowered else 5
        priority = "high" if urgent or potential >= 6 else "medium"
        action = {
            "type": "RESPOND",
            "description": f"Reply to {sender} about '{subject}'",
            "timeline": "ova_nedelja" if urgent else "ovaj_mesec",
        }
    digest = hashlib.md5(message_id.encode("utf-8")).hexdigest()[:6]
    return {
        "id": message_id,
        "sender": sender,
        "subject": subject,
        "html_analysis": {
            "cleaned_text": content[:500],
            "is_newsletter": is_newsletter,
            "urgency_markers": ["urgent"] if urgent else [],
            "structure_detected": "newsletter" if is_newsletter else "professional_email",
        },
        "classification": {
            "primary_category": category,
            "subcategory": subcategory,
            "confidence_score": 0.8,
            "matched_keywords": [],
        },
        "sentiment": {"urgency_score": urgency, "tone": "professional", "business_potential": potential},
        "recommendation": {
            "priority_level": priority,
            "text": f"Mock recommendation {digest}",
            "reasoning": "Deterministic offline analysis",
        },
        "action_steps": [action],
        "summary": content[:140],
        "gmail_link": f"https://mail.google.com/mail/u/0/#inbox/{message_id}",
    }
