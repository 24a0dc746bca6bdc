"""Summary: Tests for daily usage counters.

Importance: Adapter availability and usage stats read these counters.
Alternatives: Verify counters only through the router.
"""

from __future__ import annotations

from datetime import datetime

from mailrouter.storage.cache_store import MemoryCacheStore
from mailrouter.usage import UsageTracker


def test_key_includes_provider_model_and_day(clock) -> None:
    tracker = UsageTracker(MemoryCacheStore(clock=clock), clock=clock)
    day = datetime.fromtimestamp(clock()).strftime("%Y-%m-%d")
    assert tracker.key("groq", "llama-3.1-8b-instant") == f"ai_tokens_groq_llama-3.1-8b-instant_{day}"


def test_track_and_remaining(clock) -> None:
    """Summary: Verify tracking reduces remaining budget and flips availability.

    Importance: An adapter at its limit must report unavailable.
    Alternatives: Compute availability from provider headers.
    """

    tracker = UsageTracker(MemoryCacheStore(clock=clock), clock=clock)
    assert tracker.remaining("groq", "m", 1000) == 1000
    assert tracker.track("groq", "m", 600) == 600
    assert tracker.remaining("groq", "m", 1000) == 400
    assert tracker.is_available("groq", "m", 1000)
    tracker.track("groq", "m", 500)
    assert tracker.remaining("groq", "m", 1000) == 0
    assert not tracker.is_available("groq", "m", 1000)


def test_unbounded_limit_is_always_available(clock) -> None:
    tracker = UsageTracker(MemoryCacheStore(clock=clock), clock=clock)
    tracker.track("openai", "gpt-4o-mini", 10_000_000)
    assert tracker.remaining("openai", "gpt-4o-mini", None) is None
    assert tracker.is_available("openai", "gpt-4o-mini", None)


def test_zero_tokens_are_not_tracked(clock) -> None:
    cache = MemoryCacheStore(clock=clock)
    tracker = UsageTracker(cache, clock=clock)
    assert tracker.track("groq", "m", 0) == 0
    assert not cache.has(tracker.key("groq", "m"))


def test_counters_reset_on_the_next_day(clock) -> None:
    cache = MemoryCacheStore(clock=clock)
    tracker = UsageTracker(cache, clock=clock)
    tracker.track("groq", "m", 100)
    clock.advance(24 * 3600)
    assert tracker.used("groq", "m") == 0
