"""
Sentiment analysis of news content.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.loader import SENTIMENT_SERVICE
from ..core.cache import generate_cache_key
from .context import AIContext
from .pipeline import LLMRequest, ResultMeta, detect_language, run_guarded_call

logger = logging.getLogger(__name__)

SENTIMENTS = ("positive", "neutral", "negative")
INTENSITIES = ("strong", "moderate", "mild")
MAX_CONTENT_CHARS = 2000
BATCH_SIZE = 3

SYSTEM_PROMPT = "You are an expert sentiment analysis assistant. Respond in valid JSON."

SENTIMENT_PROMPT_EN = """Analyze the sentiment of the text below.
Return JSON: {{"sentiment": "positive|neutral|negative", "confidence": 0.0,
"scores": {{"positive": 0.0, "neutral": 0.0, "negative": 0.0}}, "keywords": [],
"reasoning": "", "intensity": "strong|moderate|mild",
"aspects": [{{"aspect": "", "sentiment": "", "confidence": 0.0}}]}}
Answer in {language}.

Text:
{content}"""

SENTIMENT_PROMPT_ZH = """分析下面文本的情感倾向。
返回 JSON：{{"sentiment": "positive|neutral|negative", "confidence": 0.0,
"scores": {{"positive": 0.0, "neutral": 0.0, "negative": 0.0}}, "keywords": [],
"reasoning": "", "intensity": "strong|moderate|mild",
"aspects": [{{"aspect": "", "sentiment": "", "confidence": 0.0}}]}}
使用语言：{language}

文本：
{content}"""

POSITIVE_KEYWORDS = (
    "good", "great", "excellent", "success", "win", "gain", "improve", "growth", "positive",
    "好", "优秀", "成功", "增长", "提升", "积极",
)

NEGATIVE_KEYWORDS = (
    "bad", "poor", "fail", "loss", "decline", "crisis", "problem", "negative",
    "坏", "差", "失败", "下降", "危机", "问题", "消极",
)


@dataclass(frozen=True)
class SentimentScores:
    positive: float
    neutral: float
    negative: float


@dataclass(frozen=True)
class AspectSentiment:
    aspect: str
    sentiment: str
    confidence: float


@dataclass(frozen=True)
class SentimentResult:
    sentiment: str
    confidence: float
    scores: SentimentScores
    keywords: List[str]
    reasoning: str
    intensity: str
    aspects: List[AspectSentiment] = field(default_factory=list)
    meta: ResultMeta = field(default_factory=ResultMeta)


def _intensity(diff: int) -> str:
    if diff >= 3:
        return "strong"
    if diff >= 2:
        return "moderate"
    return "mild"


def fallback_sentiment(content: str) -> SentimentResult:
    """Polarity by counting which positive and negative keywords occur."""
    text = content.lower()
    positive_count = sum(1 for keyword in POSITIVE_KEYWORDS if keyword in text)
    negative_count = sum(1 for keyword in NEGATIVE_KEYWORDS if keyword in text)

    diff = abs(positive_count - negative_count)
    if positive_count > negative_count:
        sentiment = "positive"
    elif negative_count > positive_count:
        sentiment = "negative"
    else:
        sentiment = "neutral"
    intensity = _intensity(diff) if sentiment != "neutral" else "mild"

    total = positive_count + negative_count + 1  # +1 keeps neutral non-zero
    return SentimentResult(
        sentiment=sentiment,
        confidence=min((diff + 1) / (total + 1), 0.9),
        scores=SentimentScores(
            positive=positive_count / total,
            neutral=1 / total,
            negative=negative_count / total
        ),
        keywords=[],
        reasoning="Sentiment analyzed using rule-based fallback method",
        intensity=intensity
    )


def _parse_sentiment(data: Dict[str, Any]) -> SentimentResult:
    sentiment = data.get("sentiment")
    if sentiment not in SENTIMENTS:
        sentiment = "neutral"
    intensity = data.get("intensity")
    if intensity not in INTENSITIES:
        intensity = "moderate"

    raw_scores = data.get("scores") if isinstance(data.get("scores"), dict) else {}
    scores = SentimentScores(
        positive=float(raw_scores.get("positive", 0.33)),
        neutral=float(raw_scores.get("neutral", 0.34)),
        negative=float(raw_scores.get("negative", 0.33))
    )

    aspects = [
        AspectSentiment(
            aspect=str(raw.get("aspect", "")),
            sentiment=str(raw.get("sentiment", "neutral")),
            confidence=float(raw.get("confidence", 0.5))
        )
        for raw in data.get("aspects") or []
        if isinstance(raw, dict)
    ]

    return SentimentResult(
        sentiment=sentiment,
        confidence=float(data.get("confidence") or 0.5),
        scores=scores,
        keywords=list(data.get("keywords") or []),
        reasoning=str(data.get("reasoning") or ""),
        intensity=intensity,
        aspects=aspects
    )


async def analyze_sentiment(
    ctx: AIContext,
    content: str,
    language: Optional[str] = None,
    use_cache: bool = True,
    user_id: Optional[str] = None
) -> SentimentResult:
    """Classify the sentiment of a text.

    Raises:
        ValueError: If content is empty
    """
    if not content or not content.strip():
        raise ValueError("content is required and cannot be empty")

    language = language or detect_language(content)
    template = SENTIMENT_PROMPT_ZH if language == "zh" else SENTIMENT_PROMPT_EN
    request = LLMRequest(
        system=SYSTEM_PROMPT,
        prompt=template.format(content=content[:MAX_CONTENT_CHARS], language=language),
        temperature=0.3,
        max_tokens=800
    )

    return await run_guarded_call(
        ctx,
        service=SENTIMENT_SERVICE,
        operation="analyze",
        cache_key=generate_cache_key(SENTIMENT_SERVICE, {"content": content, "language": language}),
        request=request,
        parse=_parse_sentiment,
        fallback=lambda: fallback_sentiment(content),
        use_cache=use_cache,
        user_id=user_id
    )


async def analyze_batch_sentiment(
    ctx: AIContext,
    items: Sequence[Dict[str, Any]]
) -> Dict[str, SentimentResult]:
    """Analyze many texts, a few at a time; failed items are left out."""
    results: Dict[str, SentimentResult] = {}
    for start in range(0, len(items), BATCH_SIZE):
        batch = items[start:start + BATCH_SIZE]
        outcomes = await asyncio.gather(
            *(analyze_sentiment(ctx, item["content"], language=item.get("language")) for item in batch),
            return_exceptions=True
        )
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Sentiment for %s failed: %s", item["id"], outcome)
                continue
            results[item["id"]] = outcome
    return results
