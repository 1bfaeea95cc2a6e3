"""
SEO title suggestions built around the top keywords of an article.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.loader import SEO_TITLE_SERVICE
from ..core.cache import generate_cache_key
from .context import AIContext
from .keyword_cluster import Keyword
from .pipeline import LLMRequest, ResultMeta, detect_language, run_guarded_call, truncate_text

TOP_KEYWORDS = 3
MAX_TITLE_CHARS = 60
MAX_SUMMARY_CHARS = 2000
CTR_LEVELS = ("high", "medium", "low")

SYSTEM_PROMPT = "You are an expert SEO specialist. Respond in valid JSON."

TITLE_PROMPT_EN = """Write 3 SEO titles for the news summary below.
Requirements: 50-60 characters; include the top keywords naturally; use a
number or a power word (Latest, Breaking, Top) where it fits; no clickbait.
Keywords: {keywords}
Summary: {summary}
Return JSON: {{"titles": [{{"text": "", "reasoning": "", "keywords_used": [],
"estimated_ctr": "high|medium|low"}}]}}"""

TITLE_PROMPT_ZH = """基于以下关键词和新闻摘要，生成3个SEO标题。
要求：中文建议 25-30 个字；自然包含关键词；可使用数字或强化词；避免标题党。
关键词：{keywords}
新闻摘要：{summary}
返回 JSON：{{"titles": [{{"text": "", "reasoning": "", "keywords_used": [],
"estimated_ctr": "high|medium|low"}}]}}"""

_DIGIT = re.compile(r"\d")


@dataclass(frozen=True)
class SEOTitle:
    text: str
    reasoning: str = ""
    keywords_used: List[str] = field(default_factory=list)
    estimated_ctr: str = "medium"
    score: int = 0


@dataclass(frozen=True)
class SEOTitleResult:
    titles: List[SEOTitle]
    meta: ResultMeta = field(default_factory=ResultMeta)


def score_title(title: str, keywords: Sequence[Keyword]) -> int:
    """Score a title from 0 to 100.

    30 points for 50-60 characters (20 for 40-69), 25 per top keyword it
    contains, 10 for a digit.
    """
    if not title:
        return 0

    score = 0
    if 50 <= len(title) <= 60:
        score += 30
    elif 40 <= len(title) < 70:
        score += 20

    lowered = title.lower()
    score += 25 * sum(1 for k in keywords[:TOP_KEYWORDS] if k.word.lower() in lowered)

    if _DIGIT.search(title):
        score += 10
    return min(score, 100)


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:]


def fallback_titles(keywords: Sequence[Keyword]) -> List[SEOTitle]:
    """Keyword-templated titles, at most three."""
    top = [_capitalize(k.word) for k in keywords[:TOP_KEYWORDS]]
    primary = top[0]

    texts = [f"Latest {primary} News: Key Developments and Analysis"]
    if len(top) >= 2:
        texts.append(f"{primary} and {top[1]}: What You Need to Know")
    texts.append(f"How {primary} Is Shaping the Industry")

    titles = []
    for text in texts[:3]:
        text = truncate_text(text, MAX_TITLE_CHARS)
        lowered = text.lower()
        titles.append(SEOTitle(
            text=text,
            keywords_used=[k.word for k in keywords[:TOP_KEYWORDS] if k.word.lower() in lowered],
            score=score_title(text, keywords)
        ))
    return titles


def _parse_titles(data: Dict[str, Any], keywords: Sequence[Keyword]) -> SEOTitleResult:
    titles = []
    for raw in data.get("titles") or []:
        text = str(raw.get("text") or raw.get("title") or "").strip()
        if not text:
            continue
        ctr = raw.get("estimated_ctr")
        titles.append(SEOTitle(
            text=text,
            reasoning=str(raw.get("reasoning") or raw.get("explanation") or ""),
            keywords_used=[str(word) for word in raw.get("keywords_used") or []],
            estimated_ctr=ctr if ctr in CTR_LEVELS else "medium",
            score=score_title(text, keywords)
        ))
    return SEOTitleResult(titles=titles)


async def generate_seo_titles(
    ctx: AIContext,
    keywords: Sequence[Keyword],
    summary: str = "",
    language: Optional[str] = None,
    use_cache: bool = True,
    user_id: Optional[str] = None
) -> SEOTitleResult:
    """Suggest SEO titles for an article.

    Only the first three keywords are used; pass them most important first.
    Every title, from the model or the fallback, is scored with
    ``score_title``.

    Args:
        ctx: Shared AI context
        keywords: Article keywords, most important first
        summary: Article summary the titles should reflect
        language: 'en' or 'zh', detected from the summary when omitted
        use_cache: Whether to read and write the title cache
        user_id: Attributed in the usage ledger

    Raises:
        ValueError: If no keywords are given
    """
    if not keywords:
        raise ValueError("Keywords list is empty")

    language = language or detect_language(summary)
    top_words = [k.word for k in keywords[:TOP_KEYWORDS]]
    template = TITLE_PROMPT_ZH if language == "zh" else TITLE_PROMPT_EN
    request = LLMRequest(
        system=SYSTEM_PROMPT,
        prompt=template.format(keywords=", ".join(top_words), summary=summary[:MAX_SUMMARY_CHARS]),
        temperature=0.7,
        max_tokens=800
    )

    return await run_guarded_call(
        ctx,
        service=SEO_TITLE_SERVICE,
        operation="generate",
        cache_key=generate_cache_key(
            SEO_TITLE_SERVICE,
            {"keywords": top_words, "summary": summary, "language": language}
        ),
        request=request,
        parse=lambda data: _parse_titles(data, keywords),
        fallback=lambda: SEOTitleResult(titles=fallback_titles(keywords)),
        use_cache=use_cache,
        user_id=user_id
    )
