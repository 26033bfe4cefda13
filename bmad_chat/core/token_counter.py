"""
Token counting and estimation.

Exact counts come from the backend; estimates are used only when a streamed
turn does not report usage.
"""

import math
from dataclasses import dataclass
from typing import Iterable


# Roughly four characters per token for English text
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Raw token usage reported by (or estimated for) a completion."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a text from its length."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_usage(prompt_texts: Iterable[str], completion_text: str) -> TokenUsage:
    """Estimate usage for a turn from the prompt messages and the reply."""
    return TokenUsage(
        prompt_tokens=sum(estimate_tokens(text) for text in prompt_texts),
        completion_tokens=estimate_tokens(completion_text),
    )
