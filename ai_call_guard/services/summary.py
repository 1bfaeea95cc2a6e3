"""
Article summaries in several lengths.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.loader import SUMMARY_SERVICE
from ..core.cache import generate_cache_key
from .context import AIContext
from .pipeline import LLMRequest, ResultMeta, detect_language, run_guarded_call

logger = logging.getLogger(__name__)

SUMMARY_LENGTHS = ("short", "medium", "long")
MAX_CONTENT_CHARS = 2000
BATCH_SIZE = 3

SYSTEM_PROMPT = "You are an expert content summarization assistant. Respond in valid JSON."

SUMMARY_PROMPT_EN = """Summarize the article below in {lengths} versions.
Short: under 80 characters. Medium: under 200. Long: under 400.
Return JSON: {{"summaries": [{{"type": "short|medium|long", "text": "", "key_points": []}}],
"main_topic": "", "entities": [], "language": "{language}"}}

Article:
{content}"""

SUMMARY_PROMPT_ZH = """请用{lengths}几种长度总结下面的文章。
短：80字以内；中：200字以内；长：400字以内。
返回 JSON：{{"summaries": [{{"type": "short|medium|long", "text": "", "key_points": []}}],
"main_topic": "", "entities": [], "language": "{language}"}}

文章：
{content}"""

_SENTENCE_SPLIT = re.compile(r"[.!?。！？]")

# Sentences and character limit per summary length
_FALLBACK_SHAPES = {
    "short": (1, 80),
    "medium": (3, 200),
    "long": (7, 400),
}


@dataclass(frozen=True)
class Summary:
    type: str
    text: str
    char_count: int
    key_points: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SummaryResult:
    summaries: List[Summary]
    main_topic: str
    entities: List[str]
    language: str
    meta: ResultMeta = field(default_factory=ResultMeta)


def _normalize_lengths(lengths: Optional[Sequence[str]]) -> List[str]:
    if not lengths:
        return list(SUMMARY_LENGTHS)
    unknown = set(lengths) - set(SUMMARY_LENGTHS)
    if unknown:
        raise ValueError(f"Unknown summary lengths: {sorted(unknown)}")
    return sorted(set(lengths), key=SUMMARY_LENGTHS.index)


def fallback_summaries(content: str, lengths: Sequence[str]) -> List[Summary]:
    """Summaries made of the leading sentences, truncated per length."""
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(content) if s.strip()]

    summaries = []
    for length in lengths:
        count, limit = _FALLBACK_SHAPES[length]
        if sentences:
            text = ". ".join(sentences[:count]).strip()[:limit]
        else:
            text = content.strip()[:limit]
        summaries.append(Summary(type=length, text=text, char_count=len(text)))
    return summaries


def _parse_summary(data: Dict[str, Any], lengths: Sequence[str], language: str) -> SummaryResult:
    summaries = []
    for raw in data.get("summaries") or []:
        if not isinstance(raw, dict) or raw.get("type") not in lengths:
            continue
        text = str(raw.get("text") or "")
        summaries.append(Summary(
            type=raw["type"],
            text=text,
            char_count=int(raw.get("char_count") or len(text)),
            key_points=list(raw.get("key_points") or [])
        ))

    return SummaryResult(
        summaries=summaries,
        main_topic=str(data.get("main_topic") or ""),
        entities=list(data.get("entities") or []),
        language=str(data.get("language") or language)
    )


async def generate_summary(
    ctx: AIContext,
    content: str,
    language: Optional[str] = None,
    lengths: Optional[Sequence[str]] = None,
    use_cache: bool = True,
    user_id: Optional[str] = None
) -> SummaryResult:
    """Summarize an article in the requested lengths.

    Args:
        ctx: Shared AI context
        content: Article text; only the first 2000 characters reach the model
        language: 'en' or 'zh', detected from the content when omitted
        lengths: Any of 'short', 'medium', 'long'; all three by default
        use_cache: Whether to read and write the summary cache
        user_id: Attributed in the usage ledger

    Raises:
        ValueError: If content is empty or a length is unknown
    """
    if not content or not content.strip():
        raise ValueError("content is required and cannot be empty")

    language = language or detect_language(content)
    lengths = _normalize_lengths(lengths)

    template = SUMMARY_PROMPT_ZH if language == "zh" else SUMMARY_PROMPT_EN
    request = LLMRequest(
        system=SYSTEM_PROMPT,
        prompt=template.format(
            content=content[:MAX_CONTENT_CHARS],
            language=language,
            lengths=", ".join(lengths)
        ),
        temperature=0.5,
        max_tokens=1200
    )

    return await run_guarded_call(
        ctx,
        service=SUMMARY_SERVICE,
        operation="generate",
        cache_key=generate_cache_key(SUMMARY_SERVICE, {"content": content, "language": language, "lengths": lengths}),
        request=request,
        parse=lambda data: _parse_summary(data, lengths, language),
        fallback=lambda: SummaryResult(
            summaries=fallback_summaries(content, lengths),
            main_topic="Summary generated using fallback method",
            entities=[],
            language=language
        ),
        use_cache=use_cache,
        user_id=user_id
    )


async def generate_batch_summaries(
    ctx: AIContext,
    items: Sequence[Dict[str, Any]]
) -> Dict[str, SummaryResult]:
    """Summarize many articles, a few at a time.

    Args:
        items: Mappings with 'id', 'content' and optional 'language'

    Returns:
        Results by id; articles whose summary failed are left out
    """
    results: Dict[str, SummaryResult] = {}
    for start in range(0, len(items), BATCH_SIZE):
        batch = items[start:start + BATCH_SIZE]
        outcomes = await asyncio.gather(
            *(generate_summary(ctx, item["content"], language=item.get("language")) for item in batch),
            return_exceptions=True
        )
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Summary for %s failed: %s", item["id"], outcome)
                continue
            results[item["id"]] = outcome
    return results
