"""Summary: Tests for AI response normalization.

Importance: Model output arrives in many shapes and must become a flat record list.
Alternatives: Require a strict schema and reject everything else.
"""

from __future__ import annotations

import json

import pytest

from mailrouter.errors import InvalidAiJson
from mailrouter.normalizer import AiResponseNormalizer, ResponseShape, extract_json_text


@pytest.fixture
def normalizer() -> AiResponseNormalizer:
    return AiResponseNormalizer()


def test_single_object_with_id(normalizer: AiResponseNormalizer) -> None:
    result = normalizer.classify(json.dumps({"id": "1", "summary": "ok", "emails": [{"id": "x"}]}))
    assert result.shape is ResponseShape.SINGLE_OBJECT
    assert [record["id"] for record in result.records] == ["1"]


def test_bare_array_drops_non_objects(normalizer: AiResponseNormalizer) -> None:
    result = normalizer.classify(json.dumps([{"id": "1"}, "noise", {"id": "2"}]))
    assert result.shape is ResponseShape.BARE_ARRAY
    assert [record["id"] for record in result.records] == ["1", "2"]


def test_wrapper_keys_are_accumulated_in_order(normalizer: AiResponseNormalizer) -> None:
    """Summary: Verify every named wrapper contributes records, emails first.

    Importance: Models sometimes split answers across several wrapper keys.
    Alternatives: Stop at the first wrapper key found.
    """

    content = json.dumps({"data": [{"id": "d1"}], "emails": [{"id": "e1"}], "meta": [1, 2]})
    result = normalizer.classify(content)
    assert result.shape is ResponseShape.WRAPPER_ARRAY
    assert [record["id"] for record in result.records] == ["e1", "d1"]
    assert result.wrapper_keys == ("emails", "data")


def test_single_unknown_array_value_is_used(normalizer: AiResponseNormalizer) -> None:
    result = normalizer.classify(json.dumps({"analysis": [{"id": "1"}], "count": 1}))
    assert result.shape is ResponseShape.SINGLE_ARRAY_VALUE
    assert result.wrapper_keys == ("analysis",)


def test_multiple_unknown_arrays_are_unrecognized(normalizer: AiResponseNormalizer) -> None:
    content = json.dumps({"tags": [{"id": "1"}], "links": [{"id": "2"}]})
    assert normalizer.classify(content).shape is ResponseShape.UNRECOGNIZED
    assert normalizer.normalize(content) == []


def test_empty_wrapper_falls_through_to_unrecognized(normalizer: AiResponseNormalizer) -> None:
    assert normalizer.normalize(json.dumps({"emails": []})) == []


def test_markdown_fences_are_stripped(normalizer: AiResponseNormalizer) -> None:
    content = "```json\n{\"emails\": [{\"id\": \"1\"}]}\n```"
    assert normalizer.normalize(content) == [{"id": "1"}]


def test_prose_around_json_is_ignored(normalizer: AiResponseNormalizer) -> None:
    content = "Here is the analysis you asked for:\n[{\"id\": \"1\"}]\nLet me know if you need more."
    assert normalizer.normalize(content) == [{"id": "1"}]


def test_invalid_json_raises_with_raw_text(normalizer: AiResponseNormalizer) -> None:
    with pytest.raises(InvalidAiJson) as excinfo:
        normalizer.normalize("I could not analyze these emails.")
    assert excinfo.value.raw == "I could not analyze these emails."
    assert str(excinfo.value).startswith("Invalid JSON from AI")


def test_extract_json_text_slices_outermost_brackets() -> None:
    assert extract_json_text("prefix {\"a\": [1]} suffix") == "{\"a\": [1]}"
    assert extract_json_text("no json here") == "no json here"


FIRST = {"id": "1", "sender": "ana@acme.io", "subject": "Project"}
SECOND = {"id": "2", "sender": "marko@acme.io", "subject": "Invoice"}

SHAPES = {
    "single_object": (FIRST, [FIRST]),
    "bare_array": ([FIRST, SECOND], [FIRST, SECOND]),
    "emails": ({"emails": [FIRST, SECOND]}, [FIRST, SECOND]),
    "data": ({"data": [FIRST, SECOND]}, [FIRST, SECOND]),
    "results": ({"results": [FIRST, SECOND]}, [FIRST, SECOND]),
    "items": ({"items": [FIRST, SECOND]}, [FIRST, SECOND]),
    "emails_and_items": ({"items": [SECOND], "emails": [FIRST], "total": 2}, [FIRST, SECOND]),
    "single_unknown_array": ({"analysis": [FIRST, SECOND], "model": "x"}, [FIRST, SECOND]),
}

FRAMINGS = {
    "plain": lambda text: text,
    "json_fence": lambda text: f"```json\n{text}\n```",
    "prose": lambda text: f"Here is the analysis you asked for:\n{text}\nLet me know if anything is unclear.",
    "prose_and_fence": lambda text: f"Sure, here it is.\n```json\n{text}\n```\nAnything else?",
}


@pytest.mark.parametrize("framing", sorted(FRAMINGS))
@pytest.mark.parametrize("shape", sorted(SHAPES))
def test_every_shape_flattens_identically_in_every_framing(
    normalizer: AiResponseNormalizer, shape: str, framing: str
) -> None:
    """Summary: Verify each response shape yields the same records however it is wrapped.

    Importance: Fences and commentary around the JSON must not change the extracted records.
    Alternatives: Accept only bare JSON output.
    """

    payload, expected = SHAPES[shape]
    content = FRAMINGS[framing](json.dumps(payload, indent=2))
    assert normalizer.normalize(content) == expected
