"""
Parsing of JSON returned by the LLM.

The model is asked for JSON but sometimes wraps it in prose or code fences.
Parsing tries the whole text first and, only if that fails, the first
balanced ``{...}`` object inside it.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .token_counter import TokenUsage


class LLMResponseParseError(ValueError):
    """Raised when an LLM response holds no usable JSON object.

    ``usage`` carries the tokens the provider billed for the unusable
    response, when known.
    """

    def __init__(self, message: str, usage: Optional[TokenUsage] = None):
        super().__init__(message)
        self.usage = usage


class ParseStrategy(Enum):
    """Which attempt produced the parsed object."""
    DIRECT = "direct"
    EXTRACTED = "extracted"


@dataclass(frozen=True)
class ParseResult:
    """Either a parsed JSON object or the reason parsing failed."""
    data: Optional[Dict[str, Any]] = None
    strategy: Optional[ParseStrategy] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None

    def unwrap(self) -> Dict[str, Any]:
        """Return the parsed object.

        Raises:
            LLMResponseParseError: If parsing failed
        """
        if self.data is None:
            raise LLMResponseParseError(f"Failed to parse JSON from AI response: {self.error}")
        return self.data


def find_balanced_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` substring, or None.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def parse_llm_json(raw: Optional[str]) -> ParseResult:
    """Parse an LLM response into a JSON object.

    Args:
        raw: Raw completion text

    Returns:
        ParseResult tagged with the strategy that succeeded, or with an error
    """
    text = (raw or "").strip()
    if not text:
        return ParseResult(error="empty response")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        primary_error = str(exc)
    else:
        if isinstance(data, dict):
            return ParseResult(data=data, strategy=ParseStrategy.DIRECT)
        primary_error = f"expected a JSON object, got {type(data).__name__}"

    candidate = find_balanced_object(text)
    if candidate is None:
        return ParseResult(error=primary_error)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return ParseResult(error=f"{primary_error}; extracted object invalid: {exc}")
    if not isinstance(data, dict):
        return ParseResult(error=primary_error)
    return ParseResult(data=data, strategy=ParseStrategy.EXTRACTED)
