"""Summary: Routes model calls across rate-limited adapters.

Importance: Picks a model with enough daily budget, falls back on failure, and reports usage.
Alternatives: Pin a single model and fail when its quota runs out.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from mailrouter.adapters import ModelAdapter
from mailrouter.errors import AllProvidersExhausted, LimitExceeded, ProviderError
from mailrouter.models import ModelResponse
from mailrouter.tokens import TokenEstimate, TokenEstimator


logger = logging.getLogger(__name__)

STRATEGY_PREDICTIVE = "predictive"
STRATEGY_FALLBACK = "fallback"
STRATEGY_SINGLE = "single"
STRATEGIES = (STRATEGY_PREDICTIVE, STRATEGY_FALLBACK, STRATEGY_SINGLE)


@dataclass(frozen=True)
class RouterConfig:
    """Summary: Routing strategy settings.

    Importance: Passed in explicitly so tests can drive the router with fake fleets.
    Alternatives: Read module-level settings inside the router.
    """

    strategy: str = STRATEGY_PREDICTIVE
    primary_model: str | None = None
    fallback_delay_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            raise ValueError(f"Unknown routing strategy: {self.strategy}")


@dataclass(frozen=True)
class RoutedResponse:
    """A model response together with the estimate used to route it."""

    response: ModelResponse
    estimate: TokenEstimate
    attempts: tuple[dict[str, Any], ...] = ()


class ModelRouterService:
    """Summary: Selects and calls adapters under daily token budgets.

    Importance: Central point for model choice, fallback, and usage reporting.
    Alternatives: Let each caller pick a model directly.
    """

    def __init__(
        self,
        adapters: Sequence[ModelAdapter],
        estimator: TokenEstimator,
        config: RouterConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._adapters = list(adapters)
        self._estimator = estimator
        self._config = config or RouterConfig()
        self._sleep = sleep

    @property
    def adapters(self) -> list[ModelAdapter]:
        return list(self._adapters)

    def route(self, system_prompt: str, user_prompt: str) -> RoutedResponse:
        """Summary: Dispatch one prompt pair using the configured strategy.

        Importance: Guarantees a best-effort successful call across the fleet.
        Alternatives: Retry the same model with backoff.
        """

        estimate = self._estimator.estimate_request(system_prompt, user_prompt)
        logger.info(
            "Token estimate: prompt=%s completion=%s total=%s",
            estimate.prompt_tokens,
            estimate.completion_tokens,
            estimate.total_tokens,
        )
        if self._config.strategy == STRATEGY_SINGLE:
            return self._route_single(system_prompt, user_prompt, estimate)
        if self._config.strategy == STRATEGY_FALLBACK:
            return self._call_with_fallback(system_prompt, user_prompt, estimate, self._adapters, [])
        return self._route_predictive(system_prompt, user_prompt, estimate)

    def select_adapter(self, estimated_tokens: int) -> ModelAdapter:
        """Summary: Pick the first adapter in priority order that can cover the estimate.

        Importance: Ties resolve by configured order, so selection is deterministic.
        Alternatives: Prefer the adapter with the most remaining tokens.
        """

        for adapter in self._adapters:
            if self._can_handle(adapter, estimated_tokens):
                logger.info(
                    "Selected adapter %s (estimated=%s, remaining=%s)",
                    adapter.name,
                    estimated_tokens,
                    adapter.remaining_tokens(),
                )
                return adapter
        logger.critical("No available AI models for %s estimated tokens", estimated_tokens)
        raise AllProvidersExhausted(
            "No available AI models with sufficient tokens",
            attempts=[
                {"model": adapter.name, "error": "insufficient budget"} for adapter in self._adapters
            ],
        )

    def get_usage_stats(self) -> dict[str, Any]:
        """Summary: Report per-model usage and an aggregate summary.

        Importance: Read-only view for dashboards and the CLI; never mutates counters.
        Alternatives: Expose raw cache entries.
        """

        models: list[dict[str, Any]] = []
        total_used = 0
        total_limit = 0
        for adapter in self._adapters:
            used = adapter.used_tokens()
            limit = adapter.daily_token_limit
            total_used += used
            if limit is None:
                available = None
                percentage = 0.0
            else:
                total_limit += limit
                available = max(0, limit - used)
                percentage = round(used / limit * 100, 2) if limit > 0 else 0.0
            models.append(
                {
                    "model": adapter.name,
                    "provider": adapter.provider,
                    "used": used,
                    "limit": limit,
                    "available": available,
                    "percentage": percentage,
                    "status": usage_status(used, limit),
                }
            )
        bounded_used = sum(
            entry["used"] for entry in models if entry["limit"] is not None
        )
        return {
            "models": models,
            "summary": {
                "total_used": total_used,
                "total_limit": total_limit,
                "total_available": max(0, total_limit - bounded_used),
                "overall_percentage": round(bounded_used / total_limit * 100, 2)
                if total_limit > 0
                else 0.0,
            },
        }

    def _route_predictive(
        self, system_prompt: str, user_prompt: str, estimate: TokenEstimate
    ) -> RoutedResponse:
        adapter = self.select_adapter(estimate.total_tokens)
        try:
            response = adapter.call(system_prompt, user_prompt)
        except (LimitExceeded, ProviderError) as exc:
            self._log_failure(adapter, exc)
            attempts = [{"model": adapter.name, "error": str(exc)}]
            remaining = [candidate for candidate in self._adapters if candidate is not adapter]
            return self._call_with_fallback(
                system_prompt, user_prompt, estimate, remaining, attempts
            )
        self._log_success(adapter, response, estimate)
        return RoutedResponse(response=response, estimate=estimate)

    def _route_single(
        self, system_prompt: str, user_prompt: str, estimate: TokenEstimate
    ) -> RoutedResponse:
        name = self._config.primary_model
        adapter = next((candidate for candidate in self._adapters if candidate.name == name), None)
        if adapter is None:
            raise AllProvidersExhausted(f"Configured model {name} is not in the adapter list")
        if not adapter.is_available():
            raise AllProvidersExhausted(
                f"Configured model {name} is over its daily limit",
                attempts=[{"model": name, "error": "daily limit exceeded"}],
            )
        try:
            response = adapter.call(system_prompt, user_prompt)
        except (LimitExceeded, ProviderError) as exc:
            self._log_failure(adapter, exc)
            raise AllProvidersExhausted(
                f"Configured model {name} failed: {exc}",
                attempts=[{"model": name, "error": str(exc)}],
            ) from exc
        self._log_success(adapter, response, estimate)
        return RoutedResponse(response=response, estimate=estimate)

    def _call_with_fallback(
        self,
        system_prompt: str,
        user_prompt: str,
        estimate: TokenEstimate,
        candidates: Sequence[ModelAdapter],
        attempts: list[dict[str, Any]],
    ) -> RoutedResponse:
        """Summary: Try adapters in order until one succeeds.

        Importance: Unavailable adapters are skipped without a call; each attempt waits first.
        Alternatives: Fire all adapters in parallel and keep the fastest answer.
        """

        for adapter in candidates:
            if not adapter.is_available():
                continue
            if attempts and self._config.fallback_delay_seconds > 0:
                logger.info(
                    "Attempting fallback %s after %ss", adapter.name, self._config.fallback_delay_seconds
                )
                self._sleep(self._config.fallback_delay_seconds)
            try:
                response = adapter.call(system_prompt, user_prompt)
            except (LimitExceeded, ProviderError) as exc:
                self._log_failure(adapter, exc)
                attempts.append({"model": adapter.name, "error": str(exc)})
                continue
            self._log_success(adapter, response, estimate)
            return RoutedResponse(response=response, estimate=estimate, attempts=tuple(attempts))
        logger.critical("All AI models exhausted after %s attempt(s)", len(attempts))
        raise AllProvidersExhausted("All AI models exhausted", attempts=attempts)

    def _can_handle(self, adapter: ModelAdapter, estimated_tokens: int) -> bool:
        if not adapter.is_available():
            return False
        remaining = adapter.remaining_tokens()
        return remaining is None or remaining >= estimated_tokens

    def _log_success(
        self, adapter: ModelAdapter, response: ModelResponse, estimate: TokenEstimate
    ) -> None:
        logger.info(
            "Call to %s/%s succeeded in %sms (estimated=%s, actual=%s)",
            adapter.provider,
            adapter.name,
            response.latency_ms,
            estimate.total_tokens,
            response.total_tokens,
        )

    def _log_failure(self, adapter: ModelAdapter, exc: Exception) -> None:
        if isinstance(exc, ProviderError):
            logger.warning(
                "Adapter %s failed (status=%s): %s %s", adapter.name, exc.status_code, exc, exc.body
            )
        else:
            logger.warning("Adapter %s unavailable: %s", adapter.name, exc)


def usage_status(used: int, limit: int | None) -> str:
    """Summary: Classify a model's daily usage level.

    Importance: Gives operators a quick read on which models are close to their caps.
    Alternatives: Report raw percentages only.
    """

    if limit is None:
        return "paid"
    if limit <= 0:
        return "exhausted"
    percentage = used / limit * 100
    if percentage >= 100:
        return "exhausted"
    if percentage >= 80:
        return "low"
    if percentage >= 50:
        return "medium"
    return "healthy"
