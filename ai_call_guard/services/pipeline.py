"""
Guarded LLM call pipeline.

Composes cache, circuit breaker, retry, error classification, fallback and
usage tracking around one chat-completion call. Every service function
goes through ``run_guarded_call``.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from ..core.errors import AIError, classify_error, should_fallback
from ..core.response_parser import LLMResponseParseError, parse_llm_json
from ..core.retry import with_retry
from ..core.token_counter import TokenUsage, estimate_prompt_tokens, estimate_tokens
from .context import AIContext

logger = logging.getLogger(__name__)

R = TypeVar("R")

_CJK_PATTERN = re.compile(r"[\u4e00-\u9fa5]")


@dataclass(frozen=True)
class ResultMeta:
    """How a service result was produced."""
    usage: TokenUsage = field(default_factory=TokenUsage.empty)
    cached: bool = False
    used_fallback: bool = False
    error: Optional[AIError] = None

    def to_dict(self) -> dict:
        return {
            "usage": self.usage.to_dict(),
            "cached": self.cached,
            "used_fallback": self.used_fallback,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class LLMRequest:
    """A single chat-completion request."""
    system: str
    prompt: str
    temperature: float
    max_tokens: int

    @property
    def messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.prompt},
        ]


def detect_language(text: str, threshold: int = 20) -> str:
    """'zh' when the text holds more than ``threshold`` CJK characters, else 'en'."""
    return "zh" if len(_CJK_PATTERN.findall(text or "")) > threshold else "en"


def truncate_text(text: str, max_length: int) -> str:
    """Cut at the last word boundary so the result, '...' included, fits ``max_length``."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length - 3]
    last_space = truncated.rfind(" ")
    return truncated[:last_space if last_space > 0 else max_length - 3] + "..."


def _retryable(error: Exception) -> bool:
    return classify_error(error).retryable


def _billed_usage(error: Optional[AIError]) -> TokenUsage:
    """Tokens spent on a failed AI call; only unusable responses were billed."""
    original = error.original_error if error else None
    if isinstance(original, LLMResponseParseError) and original.usage is not None:
        return original.usage
    return TokenUsage.empty()


async def run_guarded_call(
    ctx: AIContext,
    service: str,
    operation: str,
    cache_key: str,
    request: LLMRequest,
    parse: Callable[[Dict[str, Any]], R],
    fallback: Callable[[], R],
    use_cache: bool = True,
    user_id: Optional[str] = None
) -> R:
    """Serve a request from cache, the LLM, or the rule-based fallback.

    ``parse`` and ``fallback`` return result dataclasses carrying a
    ``meta: ResultMeta`` field; the pipeline fills it in.

    Args:
        ctx: Shared client, caches, ledger and breakers
        service: Service name for cache, breaker and ledger
        operation: Operation name for the ledger
        cache_key: Key built from the normalized request inputs
        request: The chat-completion request
        parse: Builds the result from the parsed JSON object
        fallback: Deterministic rule-based result with the same contract
        use_cache: Whether to read and write the cache
        user_id: Attributed in the usage ledger

    Returns:
        The result; fallback results are returned but never cached

    Raises:
        The original error when it is not eligible for fallback
        (authentication, quota, unknown)
    """
    computed = False

    async def ai_call() -> Tuple[R, TokenUsage]:
        completion = await ctx.client.complete(
            request.messages,
            temperature=request.temperature,
            max_tokens=request.max_tokens
        )
        usage = completion.usage or TokenUsage.from_counts(
            estimate_prompt_tokens(request.prompt, request.system),
            estimate_tokens(completion.content)
        )
        try:
            data = parse(parse_llm_json(completion.content).unwrap())
        except LLMResponseParseError as exc:
            raise LLMResponseParseError(str(exc), usage=usage) from exc
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            # Valid JSON in the wrong shape, e.g. a string where a number belongs
            raise LLMResponseParseError(
                f"Failed to parse AI response: unexpected {type(exc).__name__}",
                usage=usage
            ) from exc
        return data, usage

    def fallback_call() -> Tuple[R, TokenUsage]:
        logger.warning("[%s] AI failed, using rule-based fallback", service)
        return fallback(), TokenUsage.empty()

    async def compute() -> R:
        nonlocal computed
        computed = True
        breaker = ctx.breaker_for(service)
        options = ctx.retry_options_for(service).with_overrides(retry_if=_retryable)

        try:
            outcome = await breaker.execute(
                lambda: with_retry(ai_call, options, sleep=ctx.sleep),
                fallback_call,
                should_fallback=should_fallback
            )
        except Exception:
            ctx.tracker.track_usage(service, operation, TokenUsage.empty(), user_id=user_id, success=False)
            raise

        data, usage = outcome.data
        if outcome.used_fallback:
            usage = _billed_usage(outcome.error)
            if not outcome.circuit_open:
                ctx.tracker.track_usage(service, operation, usage, user_id=user_id, success=False)
        elif usage.total_tokens > 0:
            record = ctx.tracker.track_usage(service, operation, usage, user_id=user_id, success=True)
            logger.info(
                "%s.%s - tokens: %d, cost: $%.6f",
                service, operation, usage.total_tokens, record.cost.total_cost
            )

        return replace(data, meta=ResultMeta(
            usage=usage,
            cached=False,
            used_fallback=outcome.used_fallback,
            error=outcome.error
        ))

    if not use_cache:
        return await compute()

    cache = ctx.cache_for(service)
    result = await cache.get_or_compute(
        cache_key,
        compute,
        should_cache=lambda r: not r.meta.used_fallback
    )
    # Joiners of an in-flight fallback share an uncached result
    if computed or result.meta.used_fallback:
        return result

    logger.info("[%s] Using cached result", service)
    return replace(result, meta=replace(result.meta, cached=True))
