"""
Token counting and usage estimation.

Holds the token usage reported by the LLM API and a rough estimator used
when the API does not report real figures.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TokenUsage:
    """Token usage for a single LLM call.

    Immutable once recorded. ``total_tokens`` is carried as reported by the
    API; use ``from_counts`` when only prompt and completion are known.
    """
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    def __post_init__(self):
        """Validate token counts are non-negative."""
        if self.prompt_tokens < 0:
            raise ValueError("prompt_tokens cannot be negative")
        if self.completion_tokens < 0:
            raise ValueError("completion_tokens cannot be negative")
        if self.total_tokens < 0:
            raise ValueError("total_tokens cannot be negative")

    @classmethod
    def from_counts(cls, prompt_tokens: int, completion_tokens: int) -> "TokenUsage":
        """Build usage with total_tokens derived from the two counts."""
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens
        )

    @classmethod
    def empty(cls) -> "TokenUsage":
        """Usage of a call that consumed no tokens (fallbacks, failures)."""
        return cls(prompt_tokens=0, completion_tokens=0, total_tokens=0)

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate the token count of a text.

    Roughly four characters per token (English); CJK text packs somewhat
    more per character, so this undercounts it slightly. Not exact.

    Args:
        text: Text to estimate

    Returns:
        0 for empty text, otherwise max(1, round(len(text) / 4)) rounding half up
    """
    if not text:
        return 0
    return max(1, (len(text) + 2) // 4)


def estimate_prompt_tokens(prompt: str, user_content: Optional[str] = None) -> int:
    """Estimate prompt tokens for a prompt plus optional user content."""
    return estimate_tokens(prompt) + estimate_tokens(user_content)
