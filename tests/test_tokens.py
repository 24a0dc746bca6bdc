"""Summary: Tests for token estimation.

Importance: Routing decisions depend on conservative, deterministic estimates.
Alternatives: Compare against a real tokenizer.
"""

from __future__ import annotations

from mailrouter.tokens import TokenEstimator


def test_estimate_empty_text_is_zero() -> None:
    assert TokenEstimator().estimate("") == 0


def test_estimate_applies_ceiling_then_buffer() -> None:
    """Summary: Verify the buffer is applied to the rounded-up base estimate.

    Importance: 40 characters must be exactly 12 tokens, not 12.000000000000002 rounded up to 13.
    Alternatives: Use floating point multiplication.
    """

    estimator = TokenEstimator()
    assert estimator.estimate("a" * 40) == 12
    assert estimator.estimate("a" * 41) == 14
    assert estimator.estimate("abc") == 2


def test_estimate_uses_dense_ratio_for_cyrillic_and_diacritics() -> None:
    estimator = TokenEstimator()
    assert estimator.estimate("Привет мир") == 5
    assert estimator.estimate("Hvala, šaljem") == 8
    assert estimator.estimate("Hvala, saljem") == 5


def test_estimate_request_reserves_completion_tokens() -> None:
    estimator = TokenEstimator(max_completion_tokens=2500)
    estimate = estimator.estimate_request("a" * 40, "b" * 80)
    assert estimate.prompt_tokens == 12 + 24
    assert estimate.completion_tokens == 2500
    assert estimate.total_tokens == 2536


def test_estimate_request_override_completion() -> None:
    estimate = TokenEstimator().estimate_request("", "", max_completion_tokens=100)
    assert estimate.prompt_tokens == 0
    assert estimate.total_tokens == 100
