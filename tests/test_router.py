"""Summary: Tests for model routing, fallback and usage statistics.

Importance: Routing must respect budgets and never call adapters it skipped.
Alternatives: Test routing against live providers.
"""

from __future__ import annotations

import pytest

from mailrouter.adapters import BaseModelAdapter
from mailrouter.errors import AllProvidersExhausted, ProviderError
from mailrouter.models import AdapterDescriptor, ModelResponse
from mailrouter.router import ModelRouterService, RouterConfig, usage_status
from mailrouter.storage.cache_store import MemoryCacheStore
from mailrouter.tokens import TokenEstimator
from mailrouter.usage import UsageTracker


class FakeAdapter(BaseModelAdapter):
    """Adapter that records calls and optionally fails."""

    def __init__(
        self, name: str, usage: UsageTracker, limit: int | None = 10_000, fail: bool = False
    ) -> None:
        super().__init__(
            AdapterDescriptor(name=name, provider="fake", daily_token_limit=limit, max_output_tokens=100),
            usage,
        )
        self.calls = 0
        self.fail = fail

    def _invoke(self, system_prompt: str, user_prompt: str) -> ModelResponse:
        self.calls += 1
        if self.fail:
            raise ProviderError(f"{self.name} is down", status_code=503, body="unavailable")
        return ModelResponse(
            model=self.name,
            provider="fake",
            content="{\"emails\": []}",
            prompt_tokens=30,
            completion_tokens=20,
            total_tokens=50,
            latency_ms=1,
        )


ESTIMATOR = TokenEstimator(max_completion_tokens=100)


def _fleet(*specs: tuple[str, int | None, bool]) -> tuple[UsageTracker, list[FakeAdapter]]:
    usage = UsageTracker(MemoryCacheStore())
    return usage, [FakeAdapter(name, usage, limit=limit, fail=fail) for name, limit, fail in specs]


def test_predictive_picks_first_adapter_with_budget() -> None:
    """Summary: Verify adapters without enough remaining tokens are skipped uncalled.

    Importance: Predictive routing avoids spending calls on models that would exceed their cap.
    Alternatives: Try every adapter in order.
    """

    usage, adapters = _fleet(("a", 1000, False), ("b", 1000, False), ("c", 1000, False))
    usage.track("fake", "a", 990)
    usage.track("fake", "b", 950)
    router = ModelRouterService(adapters, ESTIMATOR)
    routed = router.route("system", "user")
    assert routed.response.model == "c"
    assert [adapter.calls for adapter in adapters] == [0, 0, 1]
    assert adapters[2].used_tokens() == 50


def test_predictive_falls_back_after_provider_error() -> None:
    slept: list[float] = []
    _, adapters = _fleet(("a", 1000, True), ("b", 1000, True), ("c", 1000, False))
    router = ModelRouterService(
        adapters, ESTIMATOR, RouterConfig(fallback_delay_seconds=10), sleep=slept.append
    )
    routed = router.route("system", "user")
    assert routed.response.model == "c"
    assert [attempt["model"] for attempt in routed.attempts] == ["a", "b"]
    assert slept == [10, 10]
    assert adapters[0].used_tokens() == 0


def test_exhaustion_raises_without_calling_adapters() -> None:
    usage, adapters = _fleet(("a", 100, False), ("b", 100, False))
    router = ModelRouterService(adapters, ESTIMATOR)
    with pytest.raises(AllProvidersExhausted):
        router.route("system", "x" * 4000)
    assert [adapter.calls for adapter in adapters] == [0, 0]


def test_all_failures_raise_exhausted_with_attempts() -> None:
    _, adapters = _fleet(("a", 1000, True), ("b", 1000, True))
    router = ModelRouterService(adapters, ESTIMATOR, sleep=lambda seconds: None)
    with pytest.raises(AllProvidersExhausted) as excinfo:
        router.route("system", "user")
    assert [attempt["model"] for attempt in excinfo.value.attempts] == ["a", "b"]


def test_fallback_strategy_skips_unavailable_adapters() -> None:
    usage, adapters = _fleet(("a", 100, False), ("b", 1000, False))
    usage.track("fake", "a", 100)
    router = ModelRouterService(
        adapters, ESTIMATOR, RouterConfig(strategy="fallback"), sleep=lambda seconds: None
    )
    routed = router.route("system", "user")
    assert routed.response.model == "b"
    assert adapters[0].calls == 0


def test_single_strategy_uses_primary_model_only() -> None:
    _, adapters = _fleet(("a", 1000, False), ("b", 1000, False))
    router = ModelRouterService(adapters, ESTIMATOR, RouterConfig(strategy="single", primary_model="b"))
    assert router.route("system", "user").response.model == "b"
    assert adapters[0].calls == 0


def test_single_strategy_failure_does_not_fall_back() -> None:
    _, adapters = _fleet(("a", 1000, True), ("b", 1000, False))
    router = ModelRouterService(adapters, ESTIMATOR, RouterConfig(strategy="single", primary_model="a"))
    with pytest.raises(AllProvidersExhausted):
        router.route("system", "user")
    assert adapters[1].calls == 0


def test_router_config_rejects_unknown_strategy() -> None:
    with pytest.raises(ValueError):
        RouterConfig(strategy="random")


def test_usage_stats_report_and_do_not_mutate() -> None:
    """Summary: Verify usage stats aggregate per-model counters read-only.

    Importance: Dashboards poll stats frequently and must not change counters.
    Alternatives: Compute stats from audit logs.
    """

    usage, adapters = _fleet(("a", 1000, False), ("b", 1000, False), ("paid", None, False))
    usage.track("fake", "a", 850)
    usage.track("fake", "b", 100)
    usage.track("fake", "paid", 70)
    router = ModelRouterService(adapters, ESTIMATOR)
    stats = router.get_usage_stats()
    assert router.get_usage_stats() == stats
    by_model = {entry["model"]: entry for entry in stats["models"]}
    assert by_model["a"]["status"] == "low"
    assert by_model["a"]["percentage"] == 85.0
    assert by_model["b"]["available"] == 900
    assert by_model["paid"]["status"] == "paid"
    assert by_model["paid"]["available"] is None
    assert stats["summary"] == {
        "total_used": 1020,
        "total_limit": 2000,
        "total_available": 1050,
        "overall_percentage": 47.5,
    }


@pytest.mark.parametrize(
    ("used", "limit", "status"),
    [
        (0, 1000, "healthy"),
        (499, 1000, "healthy"),
        (500, 1000, "medium"),
        (799, 1000, "medium"),
        (800, 1000, "low"),
        (999, 1000, "low"),
        (1000, 1000, "exhausted"),
        (5, None, "paid"),
    ],
)
def test_usage_status_thresholds(used: int, limit: int | None, status: str) -> None:
    assert usage_status(used, limit) == status
