"""
Topic clustering of extracted keywords.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config.loader import CLUSTER_SERVICE
from ..core.cache import generate_cache_key
from .context import AIContext
from .pipeline import LLMRequest, ResultMeta, detect_language, run_guarded_call

MAX_PROMPT_KEYWORDS = 50
MIN_KEYWORDS = 3
RELATIONSHIPS = ("related", "opposed", "contains")

SYSTEM_PROMPT = "You are an expert in NLP and topic modeling. Respond in valid JSON."

CLUSTER_PROMPT_EN = """Group the keywords below into {num_clusters} semantic clusters.
Keywords: {keywords}
Return JSON: {{"clusters": [{{"id": "", "theme": "", "theme_en": "",
"keywords": [{{"word": "", "frequency": 0, "tfidf": 0.0, "relevance_to_theme": 0.0}}],
"size": 0, "cohesion_score": 0.0, "description": ""}}],
"insights": {{"main_topics": [], "topic_relationships": [{{"from": "", "to": "",
"relationship": "related|opposed|contains", "strength": 0.0}}], "summary": ""}},
"quality_metrics": {{"avg_cohesion": 0.0, "separation_score": 0.0, "coverage": 0.0}}}}
Answer in {language}."""

CLUSTER_PROMPT_ZH = """将下面的关键词分成 {num_clusters} 个语义主题簇。
关键词：{keywords}
返回 JSON：{{"clusters": [{{"id": "", "theme": "", "theme_en": "",
"keywords": [{{"word": "", "frequency": 0, "tfidf": 0.0, "relevance_to_theme": 0.0}}],
"size": 0, "cohesion_score": 0.0, "description": ""}}],
"insights": {{"main_topics": [], "topic_relationships": [{{"from": "", "to": "",
"relationship": "related|opposed|contains", "strength": 0.0}}], "summary": ""}},
"quality_metrics": {{"avg_cohesion": 0.0, "separation_score": 0.0, "coverage": 0.0}}}}
使用语言：{language}"""


@dataclass(frozen=True)
class Keyword:
    """A keyword with its corpus frequency and TF-IDF weight."""
    word: str
    frequency: int = 0
    tfidf: float = 0.0


@dataclass(frozen=True)
class ClusterKeyword:
    word: str
    frequency: int = 0
    tfidf: float = 0.0
    relevance_to_theme: float = 0.5


@dataclass(frozen=True)
class KeywordCluster:
    id: str
    theme: str
    theme_en: str
    keywords: List[ClusterKeyword]
    size: int
    cohesion_score: float
    description: str


@dataclass(frozen=True)
class TopicRelationship:
    source: str
    target: str
    relationship: str
    strength: float


@dataclass(frozen=True)
class ClusterInsights:
    main_topics: List[str]
    topic_relationships: List[TopicRelationship]
    summary: str


@dataclass(frozen=True)
class QualityMetrics:
    avg_cohesion: float
    separation_score: float
    coverage: float


@dataclass(frozen=True)
class KeywordClusterResult:
    clusters: List[KeywordCluster]
    insights: ClusterInsights
    quality_metrics: QualityMetrics
    meta: ResultMeta = field(default_factory=ResultMeta)


@dataclass(frozen=True)
class ClusterStats:
    total_keywords: int
    average_cluster_size: float
    largest_cluster: Optional[KeywordCluster]
    smallest_cluster: Optional[KeywordCluster]


def default_num_clusters(keyword_count: int) -> int:
    """One cluster per five keywords, between 3 and 8."""
    return min(max(3, math.ceil(keyword_count / 5)), 8)


def fallback_clusters(keywords: Sequence[Keyword], num_clusters: int) -> KeywordClusterResult:
    """Equal-sized groups of keywords in descending TF-IDF order."""
    ranked = sorted(keywords, key=lambda k: k.tfidf, reverse=True)
    group_size = math.ceil(len(ranked) / num_clusters)

    clusters = []
    for i in range(num_clusters):
        group = ranked[i * group_size:(i + 1) * group_size]
        if not group:
            break
        clusters.append(KeywordCluster(
            id=f"cluster_{i + 1}",
            theme=f"Topic {i + 1}",
            theme_en=f"Topic {i + 1}",
            keywords=[ClusterKeyword(k.word, k.frequency, k.tfidf) for k in group],
            size=len(group),
            cohesion_score=0.5,
            description=f"Cluster {i + 1} based on keyword importance"
        ))

    return KeywordClusterResult(
        clusters=clusters,
        insights=ClusterInsights(
            main_topics=[c.theme for c in clusters],
            topic_relationships=[],
            summary="Keywords clustered using rule-based fallback method"
        ),
        quality_metrics=QualityMetrics(avg_cohesion=0.5, separation_score=0.5, coverage=1.0)
    )


def _parse_cluster(raw: Dict[str, Any], index: int) -> KeywordCluster:
    keywords = [
        ClusterKeyword(
            word=str(kw.get("word", "")),
            frequency=int(kw.get("frequency") or 0),
            tfidf=float(kw.get("tfidf") or 0.0),
            relevance_to_theme=float(kw.get("relevance_to_theme") or 0.5)
        )
        for kw in raw.get("keywords") or []
        if isinstance(kw, dict)
    ]
    theme = str(raw.get("theme") or "Unnamed Theme")
    return KeywordCluster(
        id=str(raw.get("id") or f"cluster_{index + 1}"),
        theme=theme,
        theme_en=str(raw.get("theme_en") or theme),
        keywords=keywords,
        size=int(raw.get("size") or len(keywords)),
        cohesion_score=float(raw.get("cohesion_score") or 0.5),
        description=str(raw.get("description") or "")
    )


def _parse_clusters(data: Dict[str, Any]) -> KeywordClusterResult:
    clusters = [
        _parse_cluster(raw, i)
        for i, raw in enumerate(data.get("clusters") or [])
        if isinstance(raw, dict)
    ]

    insights = data.get("insights") if isinstance(data.get("insights"), dict) else {}
    relationships = []
    for raw in insights.get("topic_relationships") or []:
        if not isinstance(raw, dict):
            continue
        relationship = raw.get("relationship")
        relationships.append(TopicRelationship(
            source=str(raw.get("from", "")),
            target=str(raw.get("to", "")),
            relationship=relationship if relationship in RELATIONSHIPS else "related",
            strength=float(raw.get("strength") or 0.0)
        ))

    metrics = data.get("quality_metrics") if isinstance(data.get("quality_metrics"), dict) else {}
    return KeywordClusterResult(
        clusters=clusters,
        insights=ClusterInsights(
            main_topics=list(insights.get("main_topics") or [c.theme for c in clusters]),
            topic_relationships=relationships,
            summary=str(insights.get("summary") or "Keywords clustered by semantic similarity")
        ),
        quality_metrics=QualityMetrics(
            avg_cohesion=float(metrics.get("avg_cohesion") or 0.5),
            separation_score=float(metrics.get("separation_score") or 0.5),
            coverage=float(metrics.get("coverage") or 1.0)
        )
    )


async def cluster_keywords(
    ctx: AIContext,
    keywords: Sequence[Keyword],
    num_clusters: Optional[int] = None,
    language: Optional[str] = None,
    use_cache: bool = True,
    user_id: Optional[str] = None
) -> KeywordClusterResult:
    """Group keywords into semantic topic clusters.

    Only the 50 highest-weighted keywords are sent to the model.

    Raises:
        ValueError: If fewer than 3 keywords are given or num_clusters < 1
    """
    if not keywords:
        raise ValueError("Keywords list is empty")
    if len(keywords) < MIN_KEYWORDS:
        raise ValueError(f"At least {MIN_KEYWORDS} keywords are required for clustering")
    if num_clusters is not None and num_clusters < 1:
        raise ValueError("num_clusters must be >= 1")

    num_clusters = num_clusters or default_num_clusters(len(keywords))
    language = language or detect_language(" ".join(k.word for k in keywords), threshold=10)

    top = sorted(keywords, key=lambda k: k.tfidf, reverse=True)[:MAX_PROMPT_KEYWORDS]
    keyword_list = ", ".join(f"{k.word} (freq: {k.frequency}, tfidf: {k.tfidf:.2f})" for k in top)
    template = CLUSTER_PROMPT_ZH if language == "zh" else CLUSTER_PROMPT_EN
    request = LLMRequest(
        system=SYSTEM_PROMPT,
        prompt=template.format(keywords=keyword_list, num_clusters=num_clusters, language=language),
        temperature=0.6,
        max_tokens=1500
    )

    cache_key = generate_cache_key(CLUSTER_SERVICE, {
        "keywords": sorted(k.word for k in keywords),
        "num_clusters": num_clusters,
        "language": language,
    })

    return await run_guarded_call(
        ctx,
        service=CLUSTER_SERVICE,
        operation="cluster",
        cache_key=cache_key,
        request=request,
        parse=_parse_clusters,
        fallback=lambda: fallback_clusters(keywords, num_clusters),
        use_cache=use_cache,
        user_id=user_id
    )


def get_cluster_stats(result: KeywordClusterResult) -> ClusterStats:
    clusters = result.clusters
    total = sum(c.size for c in clusters)
    return ClusterStats(
        total_keywords=total,
        average_cluster_size=round(total / len(clusters), 2) if clusters else 0.0,
        largest_cluster=max(clusters, key=lambda c: c.size, default=None),
        smallest_cluster=min(clusters, key=lambda c: c.size, default=None)
    )
