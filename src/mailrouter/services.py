"""Summary: Core application services for MailRouter.

Importance: Orchestrates sync, credential lookup, email analysis and audit flows.
Alternatives: Build a full service layer with a dependency injection framework.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable

from mailrouter.anonymizer import DataAnonymizer
from mailrouter.dtos import AiMessageRequest, AiMessageResponse
from mailrouter.email import EmailProvider
from mailrouter.errors import AnalysisValidationError, InvalidAiJson
from mailrouter.models import (
    AI_STATUS_COMPLETED,
    AI_STATUS_FAILED,
    AI_STATUS_PENDING,
    AI_STATUS_PROCESSING,
    AiRequest,
    AiResponse,
    Message,
    ModelResponse,
)
from mailrouter.normalizer import AiResponseNormalizer
from mailrouter.prompts import SYSTEM_PROMPT, GoalBasedPromptBuilder
from mailrouter.router import ModelRouterService
from mailrouter.storage.sqlite_store import SqliteStore, StoredMessage, StoredSyncLog
from mailrouter.token_codec import KeyCodecError, TokenCodec
from mailrouter.tokens import TokenEstimator


logger = logging.getLogger(__name__)

SKIP_TOKEN_LIMIT = "token_limit_exceeded"


@dataclass(frozen=True)
class IngestionService:
    """Summary: Persists messages fetched outside the sync flow.

    Importance: Lets the CLI load fixtures or exports directly into the pending queue.
    Alternatives: Ingest directly inside CLI commands.
    """

    store: SqliteStore
    user_id: int

    def ingest_messages(self, messages: list[Message]) -> list[int]:
        ids = self.store.save_messages(messages, user_id=self.user_id)
        logger.info("Ingested %s new messages.", len(ids))
        return ids


@dataclass(frozen=True)
class CredentialService:
    """Summary: Stores and resolves per-user provider API keys.

    Importance: Adapters are built with the caller's own key when one is on file.
    Alternatives: Use only globally configured keys.
    """

    store: SqliteStore
    codec: TokenCodec

    def store_api_key(
        self, user_id: int, service: str, api_key: str, expires_at: datetime | None = None
    ) -> int:
        if not api_key.strip():
            raise ValueError("API key must not be empty")
        return self.store.store_credential(
            user_id,
            service,
            self.codec.encode(api_key.strip()),
            expires_at=expires_at.isoformat() if expires_at else None,
        )

    def revoke_api_key(self, user_id: int, service: str) -> None:
        self.store.deactivate_credential(user_id, service)

    def resolve_api_key(self, user_id: int | None, service: str) -> str | None:
        """Summary: Return the user's valid key for a service, or None.

        Importance: None tells the adapter factory to fall back to the global key.
        Alternatives: Raise when a user has no key.
        """

        if user_id is None:
            return None
        credential = self.store.get_credential(user_id, service)
        if credential is None or not credential.is_valid():
            return None
        try:
            return self.codec.decode(credential.encoded_key)
        except KeyCodecError as exc:
            logger.warning("Ignoring stored %s key for user %s: %s", service, user_id, exc)
            return None


@dataclass(frozen=True)
class AnalysisResult:
    """Summary: Output of one analyze_emails run.

    Importance: Carries records, usage totals, skipped emails and the raw model text.
    Alternatives: Return a loosely shaped dict.
    """

    records: list[dict[str, Any]]
    meta: dict[str, Any]
    raw_responses: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> list[dict[str, Any]]:
        return self.meta.get("skipped_emails", [])


class EmailAnalyzerService:
    """Summary: Runs email records through prompt building, routing and normalization.

    Importance: Single place where prompts meet the router and raw output becomes records.
    Alternatives: Let the processor call the router directly.
    """

    def __init__(
        self,
        router: ModelRouterService,
        normalizer: AiResponseNormalizer,
        prompt_builder: GoalBasedPromptBuilder | None = None,
        anonymizer: DataAnonymizer | None = None,
        store: SqliteStore | None = None,
        user_id: int | None = None,
        token_limit: int = 12000,
        chunk_size: int = 1,
        size_estimator: TokenEstimator | None = None,
    ) -> None:
        self._router = router
        self._normalizer = normalizer
        self._prompt_builder = prompt_builder or GoalBasedPromptBuilder()
        self._anonymizer = anonymizer
        self._store = store
        self._user_id = user_id
        self._token_limit = token_limit
        self._chunk_size = max(1, chunk_size)
        # Per-email size check ignores script density.
        self._size_estimator = size_estimator or TokenEstimator(
            chars_per_token=4, dense_chars_per_token=4, safety_buffer_percentage=20
        )

    def estimate_email_tokens(self, record: dict[str, Any]) -> int:
        text_tokens = self._size_estimator.estimate(str(record.get("content") or ""))
        html_tokens = self._size_estimator.estimate(str(record.get("content_html") or ""))
        return max(text_tokens, html_tokens)

    def analyze_emails(
        self, records: list[dict[str, Any]], goals: dict[str, str] | None = None
    ) -> AnalysisResult:
        """Summary: Analyze request records and return normalized analysis records.

        Importance: Oversized emails are skipped and reported rather than sent to a model.
        Alternatives: Truncate oversized emails before prompting.
        """

        processable: list[dict[str, Any]] = []
        skipped: list[dict[str, Any]] = []
        for record in records:
            estimated = self.estimate_email_tokens(record)
            if estimated > self._token_limit:
                logger.warning(
                    "Email %s skipped: %s estimated tokens exceeds %s",
                    record.get("id", "unknown"),
                    estimated,
                    self._token_limit,
                )
                skipped.append(
                    {
                        "id": record.get("id", "unknown"),
                        "reason": SKIP_TOKEN_LIMIT,
                        "estimated_tokens": estimated,
                        "limit": self._token_limit,
                    }
                )
            else:
                processable.append(record)

        meta: dict[str, Any] = {
            "models": [],
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
            "anonymized": bool(processable) and self._anonymizer is not None,
            "skipped_count": len(skipped),
            "skipped_emails": skipped,
        }
        if not processable:
            return AnalysisResult(records=[], meta=meta)

        prepared = (
            [self._anonymizer.anonymize_record(record) for record in processable]
            if self._anonymizer
            else processable
        )
        results: list[dict[str, Any]] = []
        raw_responses: list[str] = []
        for start in range(0, len(prepared), self._chunk_size):
            chunk = prepared[start : start + self._chunk_size]
            prompt = self._prompt_builder.build(chunk, goals)
            routed = self._router.route(SYSTEM_PROMPT, prompt)
            response = routed.response
            self._audit(prompt, response)
            raw_responses.append(response.content)
            results.extend(self._normalizer.normalize(response.content))
            meta["prompt_tokens"] += response.prompt_tokens
            meta["completion_tokens"] += response.completion_tokens
            meta["total_tokens"] += response.total_tokens
            if response.model not in meta["models"]:
                meta["models"].append(response.model)
        return AnalysisResult(records=results, meta=meta, raw_responses=raw_responses)

    def _audit(self, prompt: str, response: ModelResponse) -> None:
        if self._store is None:
            return
        request_id = self._store.log_ai_request(
            AiRequest(
                provider=response.provider,
                model=response.model,
                prompt=prompt,
                purpose="email_analysis",
                timestamp=datetime.now(timezone.utc),
            ),
            user_id=self._user_id,
        )
        self._store.log_ai_response(
            AiResponse(
                request_id=request_id,
                response_text=response.content,
                latency_ms=response.latency_ms,
                token_estimate=response.total_tokens,
            )
        )


class AiMessageProcessor:
    """Summary: Applies analysis to stored messages and records the outcome.

    Importance: Every message ends either completed with analysis or failed with an error.
    Alternatives: Leave failed messages in processing state for a retry job.
    """

    def __init__(
        self,
        store: SqliteStore,
        analyzer: EmailAnalyzerService,
        max_workers: int = 4,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._analyzer = analyzer
        self._max_workers = max(1, max_workers)
        self._clock = clock

    def process_single_message(
        self, message: StoredMessage, force_reprocess: bool = False
    ) -> dict[str, Any]:
        """Summary: Analyze one message and persist the result.

        Importance: Failures are caught here so callers always get a structured result.
        Alternatives: Let exceptions propagate to the caller.
        """

        if not force_reprocess and message.ai_status == AI_STATUS_COMPLETED and message.ai_analysis:
            return {"success": True, "skipped": True, "reason": "Already processed"}

        self._store.save_message(replace(message, ai_status=AI_STATUS_PROCESSING))
        raw_response: str | None = None
        try:
            request = AiMessageRequest.from_message(message)
            result = self._analyzer.analyze_emails([request.to_dict()])
            raw_response = "\n".join(result.raw_responses) or None
            if result.skipped:
                reason = result.skipped[0]
                raise AnalysisValidationError(
                    f"Email skipped: {reason['reason']} "
                    f"({reason['estimated_tokens']} > {reason['limit']} tokens)",
                    payload=reason,
                )
            if not result.records:
                raise AnalysisValidationError("AI response contained no analysis records")
            record = next(
                (item for item in result.records if str(item.get("id")) == request.id),
                result.records[0],
            )
            response = AiMessageResponse.from_dict(record)
        except Exception as exc:
            logger.exception("AI processing failed for message %s", message.id)
            if isinstance(exc, InvalidAiJson) and exc.raw:
                raw_response = exc.raw
            self._store.save_message(
                replace(
                    message,
                    ai_status=AI_STATUS_FAILED,
                    ai_error_message=str(exc),
                    ai_raw_response=raw_response,
                )
            )
            return {"success": False, "error": str(exc), "message_id": message.id}

        self._store.save_message(
            replace(
                message,
                ai_status=AI_STATUS_COMPLETED,
                ai_analysis=response.to_dict(),
                ai_processed_at=self._clock().isoformat(),
                ai_error_message=None,
                ai_raw_response=None,
                ai_prompt_tokens=result.meta["prompt_tokens"],
                ai_completion_tokens=result.meta["completion_tokens"],
            )
        )
        return {"success": True, "data": response.to_dict(), "meta": result.meta}

    def process_batch(
        self, messages: list[StoredMessage], force_reprocess: bool = False
    ) -> dict[str, Any]:
        """Summary: Process messages concurrently with per-message failure isolation.

        Importance: One bad message never aborts the rest of the batch.
        Alternatives: Process sequentially and stop at the first error.
        """

        to_process = [
            message
            for message in messages
            if force_reprocess
            or message.ai_status in (AI_STATUS_PENDING, AI_STATUS_FAILED)
            or not message.ai_analysis
        ]
        skipped = len(messages) - len(to_process)
        if not to_process:
            return {"success": True, "processed": 0, "skipped": skipped, "failed": 0, "errors": {}}

        workers = min(self._max_workers, len(to_process))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(
                executor.map(
                    lambda message: self.process_single_message(message, force_reprocess=True),
                    to_process,
                )
            )

        errors = {
            str(message.id): outcome["error"]
            for message, outcome in zip(to_process, outcomes)
            if not outcome["success"]
        }
        processed = len(to_process) - len(errors)
        logger.info("AI batch finished: processed=%s failed=%s skipped=%s", processed, len(errors), skipped)
        return {
            "success": True,
            "processed": processed,
            "skipped": skipped,
            "failed": len(errors),
            "errors": errors,
        }


class MessageSyncService:
    """Summary: Fetches every configured channel and queues new messages for analysis.

    Importance: A failing channel is logged and reported without stopping the others.
    Alternatives: Sync one channel per scheduled job.
    """

    def __init__(
        self,
        store: SqliteStore,
        providers: list[EmailProvider],
        user_id: int | None = None,
        fetch_limit: int = 25,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._providers = providers
        self._user_id = user_id
        self._fetch_limit = fetch_limit
        self._clock = clock

    def sync_all_channels(self) -> dict[str, Any]:
        channels = [self.sync_channel(provider) for provider in self._providers]
        successful = sum(1 for channel in channels if channel["success"])
        return {
            "total": len(channels),
            "successful": successful,
            "failed": len(channels) - successful,
            "new_messages": sum(channel["new_messages"] for channel in channels),
            "channels": channels,
        }

    def sync_channel(self, provider: EmailProvider) -> dict[str, Any]:
        """Summary: Fetch one channel and record a sync log entry.

        Importance: Each run leaves a completed or failed log row.
        Alternatives: Log sync runs to files only.
        """

        log_id = self._store.start_sync_log(provider.channel, self._clock(), user_id=self._user_id)
        try:
            messages = provider.fetch_recent(self._fetch_limit)
            new_ids = self._store.save_messages(messages, user_id=self._user_id)
        except Exception as exc:
            logger.exception("Sync failed for channel %s", provider.channel)
            self._store.fail_sync_log(log_id, self._clock(), str(exc))
            return {
                "channel": provider.channel,
                "success": False,
                "fetched": 0,
                "new_messages": 0,
                "error": str(exc),
            }
        self._store.complete_sync_log(log_id, self._clock(), len(messages), len(new_ids))
        logger.info(
            "Synced channel %s: fetched=%s new=%s", provider.channel, len(messages), len(new_ids)
        )
        return {
            "channel": provider.channel,
            "success": True,
            "fetched": len(messages),
            "new_messages": len(new_ids),
        }


@dataclass(frozen=True)
class AiAuditService:
    """Summary: Provides access to AI audit logs.

    Importance: Enables review of prompts, models, latency and token use.
    Alternatives: Use raw database queries or log files.
    """

    store: SqliteStore
    user_id: int | None = None

    def list_requests(self, limit: int = 20) -> list[dict[str, str | int]]:
        requests = self.store.list_ai_requests(limit, user_id=self.user_id)
        return [
            {
                "id": request.id,
                "provider": request.provider,
                "model": request.model,
                "purpose": request.purpose,
                "timestamp": request.timestamp,
            }
            for request in requests
        ]

    def list_responses(self, limit: int = 20) -> list[dict[str, str | int]]:
        responses = self.store.list_ai_responses(limit, user_id=self.user_id)
        return [
            {
                "id": response.id,
                "request_id": response.request_id,
                "latency_ms": response.latency_ms,
                "token_estimate": response.token_estimate,
            }
            for response in responses
        ]


def message_summary(message: StoredMessage) -> dict[str, Any]:
    """Render a stored message for CLI and API listings."""

    analysis = message.ai_analysis or {}
    return {
        "id": message.id,
        "channel": message.channel,
        "subject": message.subject,
        "sender": message.sender,
        "timestamp": message.timestamp,
        "ai_status": message.ai_status,
        "priority_level": (analysis.get("recommendation") or {}).get("priority_level"),
        "ai_error_message": message.ai_error_message,
        "ai_processed_at": message.ai_processed_at,
    }


def sync_log_summary(log: StoredSyncLog) -> dict[str, Any]:
    return {
        "id": log.id,
        "channel": log.channel,
        "status": log.status,
        "started_at": log.started_at,
        "completed_at": log.completed_at,
        "messages_fetched": log.messages_fetched,
        "new_messages": log.new_messages,
        "error_message": log.error_message,
    }


def dump_analysis(message: StoredMessage) -> str:
    return json.dumps(message.ai_analysis or {}, indent=2, ensure_ascii=False)
