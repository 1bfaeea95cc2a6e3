"""
Meta description suggestions for article pages.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.loader import META_DESCRIPTION_SERVICE
from ..core.cache import generate_cache_key
from .context import AIContext
from .keyword_cluster import Keyword
from .pipeline import LLMRequest, ResultMeta, detect_language, run_guarded_call, truncate_text

TOP_KEYWORDS = 3
MAX_DESCRIPTION_CHARS = 160
MAX_CONTENT_CHARS = 2000

CTA_PHRASES = (
    "Learn more",
    "Read more",
    "Discover insights",
    "Explore now",
    "Find out more",
    "Stay updated",
    "Get the latest",
)

SYSTEM_PROMPT = "You are an expert SEO copywriter. Respond in valid JSON."

META_PROMPT_EN = """Write 3 meta descriptions for the article below.
Requirements: 150-160 characters (aim for 155); include the top keywords
naturally; end with a clear call to action such as "Learn more"; describe the
article's value without keyword stuffing.
Keywords: {keywords}
Article: {content}
Return JSON: {{"descriptions": [{{"text": "", "keywords_count": 0, "has_cta": true,
"tone": "informative|urgent|neutral"}}]}}"""

META_PROMPT_ZH = """基于以下关键词和文章内容，生成3个Meta描述。
要求：150-160字符；自然植入关键词；包含明确的行动号召；避免堆砌关键词。
关键词：{keywords}
文章内容：{content}
返回 JSON：{{"descriptions": [{{"text": "", "keywords_count": 0, "has_cta": true,
"tone": "informative|urgent|neutral"}}]}}"""


@dataclass(frozen=True)
class MetaDescription:
    text: str
    keywords_count: int = 0
    has_cta: bool = False
    tone: str = "informative"
    score: int = 0


@dataclass(frozen=True)
class MetaDescriptionResult:
    descriptions: List[MetaDescription]
    meta: ResultMeta = field(default_factory=ResultMeta)


def _has_cta(text: str) -> bool:
    lowered = text.lower()
    return any(phrase.lower() in lowered for phrase in CTA_PHRASES)


def _keyword_hits(text: str, keywords: Sequence[Keyword]) -> int:
    lowered = text.lower()
    return sum(1 for k in keywords[:TOP_KEYWORDS] if k.word.lower() in lowered)


def score_description(description: str, keywords: Sequence[Keyword]) -> int:
    """Score a meta description from 0 to 100.

    Length (30 for 150-160 characters, 20 for 120-169, else 10), 20 per
    top keyword, 15 for a call to action and 10 for sentence punctuation.
    """
    if 150 <= len(description) <= 160:
        score = 30
    elif 120 <= len(description) < 170:
        score = 20
    else:
        score = 10

    score += 20 * _keyword_hits(description, keywords)
    if _has_cta(description):
        score += 15
    if "." in description or "!" in description:
        score += 10
    return min(score, 100)


def _describe(text: str, keywords: Sequence[Keyword], tone: str = "informative") -> MetaDescription:
    return MetaDescription(
        text=text,
        keywords_count=_keyword_hits(text, keywords),
        has_cta=_has_cta(text),
        tone=tone,
        score=score_description(text, keywords)
    )


def fallback_descriptions(content: str, keywords: Sequence[Keyword]) -> List[MetaDescription]:
    """Descriptions built from the opening of the content, at most three."""
    text = " ".join(content.split())
    top = [k.word for k in keywords[:TOP_KEYWORDS]]
    opening = truncate_text(text, 100).strip()

    texts = []
    if top:
        texts.append(f"{opening} Key topics: {', '.join(top)}. Learn more.")
        texts.append(f"Discover insights on {top[0]}. {opening} Read more.")
        texts.append(f"What's happening with {top[0]}? {truncate_text(text, 90)} Find out more here.")
    else:
        texts.append(f"{opening} Learn more.")
        texts.append(f"{truncate_text(text, 140)} Read more.")

    return [_describe(truncate_text(t, MAX_DESCRIPTION_CHARS), keywords) for t in texts[:3]]


def _parse_descriptions(data: Dict[str, Any], keywords: Sequence[Keyword]) -> MetaDescriptionResult:
    descriptions = []
    for raw in data.get("descriptions") or []:
        text = str(raw.get("text") or "").strip()
        if not text:
            continue
        descriptions.append(MetaDescription(
            text=text,
            keywords_count=int(raw.get("keywords_count") or 0),
            has_cta=bool(raw.get("has_cta")),
            tone=str(raw.get("tone") or "informative"),
            score=score_description(text, keywords)
        ))
    return MetaDescriptionResult(descriptions=descriptions)


async def generate_meta_descriptions(
    ctx: AIContext,
    content: str,
    keywords: Sequence[Keyword] = (),
    language: Optional[str] = None,
    use_cache: bool = True,
    user_id: Optional[str] = None
) -> MetaDescriptionResult:
    """Suggest meta descriptions for an article.

    Args:
        ctx: Shared AI context
        content: Article text; only the first 2000 characters reach the model
        keywords: Article keywords, most important first; the top three are used
        language: 'en' or 'zh', detected from the content when omitted
        use_cache: Whether to read and write the description cache
        user_id: Attributed in the usage ledger

    Raises:
        ValueError: If content is empty
    """
    if not content or not content.strip():
        raise ValueError("content is required and cannot be empty")

    language = language or detect_language(content)
    top_words = [k.word for k in keywords[:TOP_KEYWORDS]]
    template = META_PROMPT_ZH if language == "zh" else META_PROMPT_EN
    request = LLMRequest(
        system=SYSTEM_PROMPT,
        prompt=template.format(keywords=", ".join(top_words), content=content[:MAX_CONTENT_CHARS]),
        temperature=0.6,
        max_tokens=800
    )

    return await run_guarded_call(
        ctx,
        service=META_DESCRIPTION_SERVICE,
        operation="generate",
        cache_key=generate_cache_key(
            META_DESCRIPTION_SERVICE,
            {"content": content, "keywords": top_words, "language": language}
        ),
        request=request,
        parse=lambda data: _parse_descriptions(data, keywords),
        fallback=lambda: MetaDescriptionResult(descriptions=fallback_descriptions(content, keywords)),
        use_cache=use_cache,
        user_id=user_id
    )
