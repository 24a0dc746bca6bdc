"""Summary: Tests for analysis record validation.

Importance: Invalid model output must be rejected before it reaches storage.
Alternatives: Clamp or coerce invalid values.
"""

from __future__ import annotations

from typing import Any

import pytest

from mailrouter.dtos import AiMessageResponse, validate_analysis
from mailrouter.errors import AnalysisValidationError


def _record(**overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": "1",
        "sender": "ana@acme.io",
        "subject": "Project",
        "classification": {"primary_category": "business_inquiry", "confidence_score": 0.8},
        "sentiment": {"urgency_score": 5, "business_potential": 7, "tone": "professional"},
        "recommendation": {"priority_level": "high", "text": "Reply"},
        "action_steps": [{"type": "RESPOND", "timeline": "ova_nedelja"}],
        "summary": "Project request",
    }
    record.update(overrides)
    return record


def test_valid_record_round_trips() -> None:
    response = AiMessageResponse.from_dict(_record())
    assert response.id == "1"
    assert response.to_dict()["recommendation"]["priority_level"] == "high"


@pytest.mark.parametrize("score", [0, 1, 0.5])
def test_confidence_bounds_are_inclusive(score: float) -> None:
    validate_analysis(_record(classification={"confidence_score": score}))


@pytest.mark.parametrize("score", [-0.01, 1.01, "0.5", True])
def test_confidence_out_of_range_is_rejected(score: Any) -> None:
    with pytest.raises(AnalysisValidationError):
        validate_analysis(_record(classification={"confidence_score": score}))


@pytest.mark.parametrize("field", ["urgency_score", "business_potential"])
@pytest.mark.parametrize("value", [1, 10])
def test_sentiment_score_bounds_are_inclusive(field: str, value: int) -> None:
    validate_analysis(_record(sentiment={field: value}))
    assert AiMessageResponse.from_dict(_record(sentiment={field: value})).to_dict()["sentiment"][field] == value


@pytest.mark.parametrize("field", ["urgency_score", "business_potential"])
@pytest.mark.parametrize("value", [0, 11])
def test_sentiment_scores_must_be_between_one_and_ten(field: str, value: int) -> None:
    with pytest.raises(AnalysisValidationError):
        validate_analysis(_record(sentiment={field: value}))


def test_unknown_priority_level_is_rejected() -> None:
    """Summary: Verify priority levels outside low/medium/high are rejected.

    Importance: Downstream filters rely on the fixed priority vocabulary.
    Alternatives: Map unknown values to medium.
    """

    with pytest.raises(AnalysisValidationError) as excinfo:
        validate_analysis(_record(recommendation={"priority_level": "critical"}))
    assert excinfo.value.payload["id"] == "1"


def test_unknown_timeline_is_rejected() -> None:
    with pytest.raises(AnalysisValidationError):
        validate_analysis(_record(action_steps=[{"type": "TODO", "timeline": "someday"}]))


@pytest.mark.parametrize("field", ["id", "sender", "subject"])
def test_required_fields_must_be_present(field: str) -> None:
    with pytest.raises(AnalysisValidationError):
        validate_analysis(_record(**{field: "  "}))


def test_non_object_record_is_rejected() -> None:
    with pytest.raises(AnalysisValidationError):
        validate_analysis(["not", "a", "record"])
