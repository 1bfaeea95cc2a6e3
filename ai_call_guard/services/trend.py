"""
Trend analysis over a set of news items.

Uses the tight retry preset: the calling HTTP layer allows only a few
seconds end to end, so one attempt is made before falling back.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.loader import TREND_SERVICE
from ..core.cache import generate_cache_key
from .context import AIContext
from .pipeline import LLMRequest, ResultMeta, detect_language, run_guarded_call

MIN_ITEMS = 3
MAX_PROMPT_ITEMS = 20
REDUCED_PROMPT_ITEMS = 15
SUMMARY_SNIPPET_CHARS = 80
TIME_RANGES = ("day", "week", "month")

SYSTEM_PROMPT = "You are an expert trend analyst and data scientist. Respond in valid JSON."

TREND_PROMPT_EN = """Analyze trends in the news below for the past {time_range}, focus: {focus_area}.
{news_items}
Return JSON: {{"trending_topics": [{{"id": "", "topic": "", "topic_en": "", "description": "",
"prediction": "rising|stable|declining", "growth_rate": 0.0, "confidence": 0.0,
"related_news_count": 0, "first_seen": "", "peak_date": "", "keywords": [],
"sentiment": "positive|neutral|negative", "impact_score": 0.0, "category": ""}}],
"emerging_topics": [{{"topic": "", "first_appeared": "", "initial_mentions": 0,
"potential": "high|medium|low", "reasoning": ""}}],
"insights": {{"summary": "", "key_findings": [], "recommendations": [], "risk_alerts": []}},
"topic_network": {{"connections": [{{"from": "", "to": "",
"relationship": "causes|related_to|opposes", "strength": 0.0}}]}},
"time_analysis": {{"current_period": "", "most_active_day": "", "trend_velocity": "fast|moderate|slow"}}}}
Answer in {language}."""

TREND_PROMPT_ZH = """分析下面新闻在过去一个{time_range}内的趋势，关注领域：{focus_area}。
{news_items}
返回 JSON：{{"trending_topics": [{{"id": "", "topic": "", "topic_en": "", "description": "",
"prediction": "rising|stable|declining", "growth_rate": 0.0, "confidence": 0.0,
"related_news_count": 0, "first_seen": "", "peak_date": "", "keywords": [],
"sentiment": "positive|neutral|negative", "impact_score": 0.0, "category": ""}}],
"emerging_topics": [{{"topic": "", "first_appeared": "", "initial_mentions": 0,
"potential": "high|medium|low", "reasoning": ""}}],
"insights": {{"summary": "", "key_findings": [], "recommendations": [], "risk_alerts": []}},
"topic_network": {{"connections": [{{"from": "", "to": "",
"relationship": "causes|related_to|opposes", "strength": 0.0}}]}},
"time_analysis": {{"current_period": "", "most_active_day": "", "trend_velocity": "fast|moderate|slow"}}}}
使用语言：{language}"""


@dataclass(frozen=True)
class NewsItem:
    id: str
    title: str
    summary: str = ""
    publish_date: str = ""


@dataclass(frozen=True)
class TrendingTopic:
    id: str
    topic: str
    topic_en: str
    description: str
    prediction: str
    growth_rate: float
    confidence: float
    related_news_count: int
    first_seen: str
    keywords: List[str]
    sentiment: str
    impact_score: float
    category: str
    peak_date: Optional[str] = None


@dataclass(frozen=True)
class EmergingTopic:
    topic: str
    first_appeared: str
    initial_mentions: int
    potential: str
    reasoning: str


@dataclass(frozen=True)
class TrendInsights:
    summary: str
    key_findings: List[str]
    recommendations: List[str]
    risk_alerts: List[str]


@dataclass(frozen=True)
class TopicConnection:
    source: str
    target: str
    relationship: str
    strength: float


@dataclass(frozen=True)
class TimeAnalysis:
    current_period: str
    most_active_day: str
    trend_velocity: str


@dataclass(frozen=True)
class TrendAnalysisResult:
    trending_topics: List[TrendingTopic]
    emerging_topics: List[EmergingTopic]
    insights: TrendInsights
    connections: List[TopicConnection]
    time_analysis: TimeAnalysis
    meta: ResultMeta = field(default_factory=ResultMeta)


@dataclass(frozen=True)
class TrendStats:
    total_topics: int
    rising_topics: int
    declining_topics: int
    emerging_topics: int
    average_growth_rate: float
    high_impact_topics: int


def _newest_first(items: Sequence[NewsItem]) -> List[NewsItem]:
    return sorted(items, key=lambda item: item.publish_date, reverse=True)


def fallback_trends(news_items: Sequence[NewsItem]) -> TrendAnalysisResult:
    """Top five title words longer than three characters, ranked by count."""
    ordered = _newest_first(news_items)
    counts = Counter(
        word
        for item in ordered
        for word in item.title.lower().split()
        if len(word) > 3
    )
    latest = ordered[0].publish_date if ordered else ""

    topics = [
        TrendingTopic(
            id=f"topic_{i + 1}",
            topic=word.capitalize(),
            topic_en=word.capitalize(),
            description=f"Topic based on keyword: {word}",
            prediction="stable",
            growth_rate=0.0,
            confidence=0.5,
            related_news_count=count,
            first_seen=latest,
            keywords=[word],
            sentiment="neutral",
            impact_score=count / len(ordered),
            category="general"
        )
        for i, (word, count) in enumerate(counts.most_common(5))
    ]

    return TrendAnalysisResult(
        trending_topics=topics,
        emerging_topics=[],
        insights=TrendInsights(
            summary="Trend analysis using rule-based fallback method",
            key_findings=[f"Analyzed {len(ordered)} news articles", f"Found {len(topics)} topics"],
            recommendations=["Collect more data for better analysis"],
            risk_alerts=[]
        ),
        connections=[],
        time_analysis=TimeAnalysis(current_period="N/A", most_active_day=latest, trend_velocity="moderate")
    )


def _parse_topic(raw: Dict[str, Any], index: int) -> TrendingTopic:
    topic = str(raw.get("topic") or f"Topic {index + 1}")
    return TrendingTopic(
        id=str(raw.get("id") or f"topic_{index + 1}"),
        topic=topic,
        topic_en=str(raw.get("topic_en") or topic),
        description=str(raw.get("description") or ""),
        prediction=str(raw.get("prediction") or "stable"),
        growth_rate=float(raw.get("growth_rate") or 0.0),
        confidence=float(raw.get("confidence") or 0.5),
        related_news_count=int(raw.get("related_news_count") or 0),
        first_seen=str(raw.get("first_seen") or ""),
        keywords=list(raw.get("keywords") or []),
        sentiment=str(raw.get("sentiment") or "neutral"),
        impact_score=float(raw.get("impact_score") or 0.0),
        category=str(raw.get("category") or "general"),
        peak_date=raw.get("peak_date") or None
    )


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _parse_trends(data: Dict[str, Any]) -> TrendAnalysisResult:
    topics = [
        _parse_topic(raw, i)
        for i, raw in enumerate(data.get("trending_topics") or [])
        if isinstance(raw, dict)
    ]
    emerging = [
        EmergingTopic(
            topic=str(raw.get("topic", "")),
            first_appeared=str(raw.get("first_appeared", "")),
            initial_mentions=int(raw.get("initial_mentions") or 0),
            potential=str(raw.get("potential") or "medium"),
            reasoning=str(raw.get("reasoning") or "")
        )
        for raw in data.get("emerging_topics") or []
        if isinstance(raw, dict)
    ]

    insights = _as_dict(data.get("insights"))
    network = _as_dict(data.get("topic_network"))
    timing = _as_dict(data.get("time_analysis"))

    return TrendAnalysisResult(
        trending_topics=topics,
        emerging_topics=emerging,
        insights=TrendInsights(
            summary=str(insights.get("summary") or ""),
            key_findings=list(insights.get("key_findings") or []),
            recommendations=list(insights.get("recommendations") or []),
            risk_alerts=list(insights.get("risk_alerts") or [])
        ),
        connections=[
            TopicConnection(
                source=str(raw.get("from", "")),
                target=str(raw.get("to", "")),
                relationship=str(raw.get("relationship") or "related_to"),
                strength=float(raw.get("strength") or 0.0)
            )
            for raw in network.get("connections") or []
            if isinstance(raw, dict)
        ],
        time_analysis=TimeAnalysis(
            current_period=str(timing.get("current_period") or "N/A"),
            most_active_day=str(timing.get("most_active_day") or "N/A"),
            trend_velocity=str(timing.get("trend_velocity") or "moderate")
        )
    )


def _format_news(items: Sequence[NewsItem]) -> str:
    limit = REDUCED_PROMPT_ITEMS if len(items) > MAX_PROMPT_ITEMS else len(items)
    return "\n".join(
        f"{i + 1}. [{item.publish_date}] {item.title} - {item.summary[:SUMMARY_SNIPPET_CHARS]}"
        for i, item in enumerate(items[:limit])
    )


async def analyze_trends(
    ctx: AIContext,
    news_items: Sequence[NewsItem],
    time_range: str = "week",
    focus_area: str = "all",
    language: Optional[str] = None,
    use_cache: bool = True,
    user_id: Optional[str] = None
) -> TrendAnalysisResult:
    """Find trending and emerging topics across news items.

    Args:
        ctx: Shared AI context
        news_items: At least three items; the newest are sent to the model
        time_range: 'day', 'week' or 'month'
        focus_area: Free-form focus hint, 'all' by default
        language: 'en' or 'zh', detected from titles and summaries when omitted
        use_cache: Whether to read and write the trend cache
        user_id: Attributed in the usage ledger

    Raises:
        ValueError: If fewer than three items are given or time_range is unknown
    """
    if not news_items:
        raise ValueError("News items list is empty")
    if len(news_items) < MIN_ITEMS:
        raise ValueError(f"At least {MIN_ITEMS} news items are required for trend analysis")
    if time_range not in TIME_RANGES:
        raise ValueError(f"time_range must be one of {TIME_RANGES}, got '{time_range}'")

    text = " ".join(f"{item.title} {item.summary}" for item in news_items)
    language = language or detect_language(text, threshold=50)

    ordered = _newest_first(news_items)
    template = TREND_PROMPT_ZH if language == "zh" else TREND_PROMPT_EN
    request = LLMRequest(
        system=SYSTEM_PROMPT,
        prompt=template.format(
            news_items=_format_news(ordered),
            time_range=time_range,
            focus_area=focus_area,
            language=language
        ),
        temperature=0.7,
        max_tokens=1500
    )

    cache_key = generate_cache_key(TREND_SERVICE, {
        "ids": sorted(item.id for item in news_items),
        "time_range": time_range,
        "focus_area": focus_area,
        "language": language,
    })

    return await run_guarded_call(
        ctx,
        service=TREND_SERVICE,
        operation="analyze",
        cache_key=cache_key,
        request=request,
        parse=_parse_trends,
        fallback=lambda: fallback_trends(news_items),
        use_cache=use_cache,
        user_id=user_id
    )


def get_trend_stats(result: TrendAnalysisResult) -> TrendStats:
    topics = result.trending_topics
    return TrendStats(
        total_topics=len(topics),
        rising_topics=sum(1 for t in topics if t.prediction == "rising"),
        declining_topics=sum(1 for t in topics if t.prediction == "declining"),
        emerging_topics=len(result.emerging_topics),
        average_growth_rate=round(sum(t.growth_rate for t in topics) / (len(topics) or 1), 3),
        high_impact_topics=sum(1 for t in topics if t.impact_score > 0.7)
    )
