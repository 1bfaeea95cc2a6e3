"""
Guarded AI services.

Each service function takes an AIContext and routes one LLM call through
cache, circuit breaker, retry and rule-based fallback.
"""

from .context import AIContext
from .keyword_cluster import Keyword, cluster_keywords, get_cluster_stats
from .meta_description import generate_meta_descriptions
from .pipeline import ResultMeta, detect_language
from .seo_title import generate_seo_titles, score_title
from .sentiment import analyze_batch_sentiment, analyze_sentiment
from .summary import generate_batch_summaries, generate_summary
from .trend import NewsItem, analyze_trends, get_trend_stats

__all__ = [
    "AIContext",
    "Keyword",
    "NewsItem",
    "ResultMeta",
    "analyze_batch_sentiment",
    "analyze_sentiment",
    "analyze_trends",
    "cluster_keywords",
    "detect_language",
    "generate_batch_summaries",
    "generate_meta_descriptions",
    "generate_seo_titles",
    "generate_summary",
    "get_cluster_stats",
    "get_trend_stats",
    "score_title",
]
