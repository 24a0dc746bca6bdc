"""Summary: Coerces raw model output into a list of analysis records.

Importance: Model output is not schema-guaranteed; this recovers JSON from fences, prose and wrappers.
Alternatives: Use provider structured-output modes and reject anything else.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from mailrouter.errors import InvalidAiJson


logger = logging.getLogger(__name__)

WRAPPER_KEYS = ("emails", "data", "results", "items")

_FENCE_OPEN = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_ANY = re.compile(r"```\s*")


class ResponseShape(enum.Enum):
    SINGLE_OBJECT = "single_object"
    BARE_ARRAY = "bare_array"
    WRAPPER_ARRAY = "wrapper_array"
    SINGLE_ARRAY_VALUE = "single_array_value"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class NormalizedResponse:
    """Records extracted from a response and the shape they were found in."""

    shape: ResponseShape
    records: list[dict[str, Any]] = field(default_factory=list)
    wrapper_keys: tuple[str, ...] = ()


Matcher = Callable[[Any], NormalizedResponse | None]


class AiResponseNormalizer:
    """Summary: Tries an ordered set of shape matchers over parsed model output.

    Importance: Recognition order is fixed so metadata arrays are never mistaken for the payload.
    Alternatives: Nested conditionals over the parsed value.
    """

    def __init__(self, wrapper_keys: tuple[str, ...] = WRAPPER_KEYS) -> None:
        self._wrapper_keys = wrapper_keys
        self._matchers: tuple[Matcher, ...] = (
            self._match_single_object,
            self._match_bare_array,
            self._match_wrapper_keys,
            self._match_single_array_value,
        )

    def normalize(self, content: str) -> list[dict[str, Any]]:
        """Summary: Return the analysis records found in raw model text.

        Importance: Unrecognized but valid JSON yields an empty list instead of an error.
        Alternatives: Raise on every unexpected shape.
        """

        return self.classify(content).records

    def classify(self, content: str) -> NormalizedResponse:
        parsed = parse_json_payload(content)
        for matcher in self._matchers:
            result = matcher(parsed)
            if result is not None:
                return result
        logger.warning("AI response JSON had no recognizable records")
        return NormalizedResponse(shape=ResponseShape.UNRECOGNIZED)

    def _match_single_object(self, parsed: Any) -> NormalizedResponse | None:
        if isinstance(parsed, dict) and "id" in parsed:
            return NormalizedResponse(shape=ResponseShape.SINGLE_OBJECT, records=[parsed])
        return None

    def _match_bare_array(self, parsed: Any) -> NormalizedResponse | None:
        if isinstance(parsed, list):
            return NormalizedResponse(shape=ResponseShape.BARE_ARRAY, records=_dict_items(parsed))
        return None

    def _match_wrapper_keys(self, parsed: Any) -> NormalizedResponse | None:
        if not isinstance(parsed, dict):
            return None
        records: list[dict[str, Any]] = []
        matched: list[str] = []
        for key in self._wrapper_keys:
            value = parsed.get(key)
            if isinstance(value, list):
                matched.append(key)
                records.extend(_dict_items(value))
        if not records:
            return None
        return NormalizedResponse(
            shape=ResponseShape.WRAPPER_ARRAY, records=records, wrapper_keys=tuple(matched)
        )

    def _match_single_array_value(self, parsed: Any) -> NormalizedResponse | None:
        if not isinstance(parsed, dict):
            return None
        arrays = [(key, value) for key, value in parsed.items() if isinstance(value, list)]
        if len(arrays) != 1:
            return None
        key, value = arrays[0]
        records = _dict_items(value)
        if not records:
            return None
        return NormalizedResponse(
            shape=ResponseShape.SINGLE_ARRAY_VALUE, records=records, wrapper_keys=(key,)
        )


def parse_json_payload(content: str) -> Any:
    """Summary: Parse JSON from model text, tolerating fences and surrounding prose.

    Importance: Models often wrap JSON in markdown or add commentary around it.
    Alternatives: Ask the model to retry until it returns bare JSON.
    """

    cleaned = _FENCE_ANY.sub("", _FENCE_OPEN.sub("", content)).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    candidate = extract_json_text(cleaned)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise InvalidAiJson(f"Invalid JSON from AI: {exc.msg}", raw=content) from exc


def extract_json_text(content: str) -> str:
    """Slice from the first opening bracket to the last matching closer."""

    starts = [index for index in (content.find("["), content.find("{")) if index >= 0]
    if not starts:
        return content
    start = min(starts)
    closer = "]" if content[start] == "[" else "}"
    end = content.rfind(closer)
    if end <= start:
        return content
    return content[start : end + 1]


def _dict_items(values: list[Any]) -> list[dict[str, Any]]:
    return [item for item in values if isinstance(item, dict)]
