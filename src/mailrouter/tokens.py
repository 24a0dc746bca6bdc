"""Summary: Token estimation for prompts sent to model providers.

Importance: Lets the router pick a model with enough daily budget before calling it.
Alternatives: Use provider token counters or tiktoken.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass


_DENSE_SCRIPT_PATTERN = re.compile("[Ѐ-ӿčćžšđČĆŽŠĐ]")


@dataclass(frozen=True)
class TokenEstimate:
    """Summary: Estimated token cost of one model call.

    Importance: Separates prompt size from the reserved completion budget.
    Alternatives: Track only a single total.
    """

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass(frozen=True)
class TokenEstimator:
    """Summary: Estimates tokens from character length with a safety buffer.

    Importance: Keeps estimates conservative so routing rarely overshoots a budget.
    Alternatives: Tokenize with the exact model vocabulary.
    """

    chars_per_token: float = 4
    safety_buffer_percentage: int = 20
    max_completion_tokens: int = 2500
    dense_chars_per_token: float = 2.5

    def estimate(self, text: str) -> int:
        """Summary: Estimate the token count of a text.

        Importance: Pure function used for routing and per-email limits.
        Alternatives: Count words instead of characters.
        """

        if not text:
            return 0
        ratio = self.dense_chars_per_token if _DENSE_SCRIPT_PATTERN.search(text) else self.chars_per_token
        base = math.ceil(len(text) / ratio)
        return (base * (100 + self.safety_buffer_percentage) + 99) // 100

    def estimate_request(
        self, system_prompt: str, user_prompt: str, max_completion_tokens: int | None = None
    ) -> TokenEstimate:
        """Summary: Estimate the full cost of a chat completion call.

        Importance: Reserves room for the completion, not just the prompt.
        Alternatives: Ignore completion tokens and accept overshoot.
        """

        completion = (
            self.max_completion_tokens if max_completion_tokens is None else max_completion_tokens
        )
        prompt_tokens = self.estimate(system_prompt) + self.estimate(user_prompt)
        return TokenEstimate(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion,
            total_tokens=prompt_tokens + completion,
        )
