"""
End-to-end tests for the guarded AI services.

The chat-completion client is a scripted fake; retry sleeps are recorded
instead of waited on.
"""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from ai_call_guard.config.loader import (
    CLUSTER_SERVICE,
    SENTIMENT_SERVICE,
    SUMMARY_SERVICE,
    TREND_SERVICE
)
from ai_call_guard.core.cost_tracker import CostTracker
from ai_call_guard.core.errors import AIErrorKind
from ai_call_guard.core.token_counter import TokenUsage
from ai_call_guard.sdk.deepseek_client import Completion
from ai_call_guard.services import (
    AIContext,
    Keyword,
    NewsItem,
    analyze_batch_sentiment,
    analyze_sentiment,
    analyze_trends,
    cluster_keywords,
    detect_language,
    generate_batch_summaries,
    generate_meta_descriptions,
    generate_seo_titles,
    generate_summary,
    get_cluster_stats,
    get_trend_stats,
    score_title
)
from ai_call_guard.services.keyword_cluster import default_num_clusters, fallback_clusters
from ai_call_guard.services.meta_description import fallback_descriptions, score_description
from ai_call_guard.services.pipeline import truncate_text
from ai_call_guard.services.seo_title import fallback_titles
from ai_call_guard.services.sentiment import fallback_sentiment
from ai_call_guard.services.summary import fallback_summaries
from ai_call_guard.services.trend import fallback_trends

SUMMARY_JSON = json.dumps({
    "summaries": [
        {"type": "short", "text": "Rates rise.", "key_points": ["rates"]},
        {"type": "medium", "text": "The central bank raised rates.", "key_points": []},
        {"type": "long", "text": "The central bank raised rates by a quarter point.", "key_points": []},
    ],
    "main_topic": "Monetary policy",
    "entities": ["Central Bank"],
    "language": "en",
})

SENTIMENT_JSON = json.dumps({
    "sentiment": "positive",
    "confidence": 0.9,
    "scores": {"positive": 0.8, "neutral": 0.15, "negative": 0.05},
    "keywords": ["growth"],
    "reasoning": "Upbeat earnings",
    "intensity": "strong",
    "aspects": [{"aspect": "earnings", "sentiment": "positive", "confidence": 0.9}],
})

ARTICLE = "The central bank raised rates. Markets reacted calmly. Analysts expect more hikes."


class FakeClient:
    """Chat-completion client answering from a script.

    Each scripted step is either a string (returned as content) or an
    exception (raised). The last step repeats once the script runs out.
    """

    model = "deepseek-chat"

    def __init__(self, *steps, usage=TokenUsage.from_counts(100, 50)):
        self.steps = list(steps)
        self.usage = usage
        self.calls = []

    async def complete(self, messages, temperature=None, max_tokens=None, model=None):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        step = self.steps[min(len(self.calls), len(self.steps)) - 1]
        await asyncio.sleep(0)
        if isinstance(step, BaseException):
            raise step
        return Completion(content=step, usage=self.usage)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_context(client, clock=None):
    return AIContext(
        client=client,
        tracker=CostTracker(tz=timezone.utc),
        clock=clock or FakeClock(),
        sleep=RecordingSleep()
    )


def keywords(count=6):
    return [Keyword(word=f"word{i}", frequency=10 - i, tfidf=1.0 - i * 0.1) for i in range(count)]


def news(count=3):
    return [
        NewsItem(id=f"n{i}", title=f"Market rally continues day {i}", summary="Stocks up", publish_date=f"2024-03-1{i}")
        for i in range(count)
    ]


class TestLanguageDetection:
    """Test CJK-count language detection."""

    def test_english(self):
        assert detect_language("Plain English text") == "en"

    def test_chinese_above_threshold(self):
        assert detect_language("中" * 21) == "zh"
        assert detect_language("中" * 20) == "en"

    def test_custom_threshold(self):
        assert detect_language("中" * 11, threshold=10) == "zh"


class TestGuardedPipeline:
    """Cache, tracking, fallback and propagation through a service."""

    def test_identical_calls_hit_cache(self):
        """Three identical requests make one AI call and one ledger record."""
        client = FakeClient(SUMMARY_JSON)
        ctx = make_context(client)

        async def run():
            return [await generate_summary(ctx, ARTICLE) for _ in range(3)]

        first, second, third = asyncio.run(run())

        assert len(client.calls) == 1
        assert ctx.tracker.record_count == 1
        assert first.meta.cached is False
        assert second.meta.cached is True
        assert third.meta.cached is True
        assert second.summaries == first.summaries

        stats = ctx.cache_for(SUMMARY_SERVICE).stats()
        assert stats.hits == 2
        assert stats.hit_rate == pytest.approx(2 / 3)

    def test_success_is_tracked(self):
        client = FakeClient(SUMMARY_JSON)
        ctx = make_context(client)

        result = asyncio.run(generate_summary(ctx, ARTICLE, user_id="u1"))

        assert result.main_topic == "Monetary policy"
        assert [s.type for s in result.summaries] == ["short", "medium", "long"]
        assert result.meta.usage.total_tokens == 150
        record = ctx.tracker.get_recent_records(1)[0]
        assert record.success is True
        assert record.service == SUMMARY_SERVICE
        assert record.user_id == "u1"

    def test_concurrent_identical_calls_share_one_ai_call(self):
        client = FakeClient(SUMMARY_JSON)
        ctx = make_context(client)

        async def run():
            return await asyncio.gather(*(generate_summary(ctx, ARTICLE) for _ in range(3)))

        results = asyncio.run(run())
        assert len(client.calls) == 1
        assert sum(1 for r in results if not r.meta.cached) == 1

    def test_use_cache_false_always_calls(self):
        client = FakeClient(SUMMARY_JSON)
        ctx = make_context(client)

        async def run():
            for _ in range(2):
                await generate_summary(ctx, ARTICLE, use_cache=False)

        asyncio.run(run())
        assert len(client.calls) == 2
        assert ctx.cache_for(SUMMARY_SERVICE).size == 0

    def test_rate_limit_retries_then_falls_back(self):
        client = FakeClient(Exception("Rate limit exceeded"))
        ctx = make_context(client)

        result = asyncio.run(generate_summary(ctx, ARTICLE))

        assert len(client.calls) == 3
        assert ctx.sleep.delays == [1.0, 2.0]
        assert result.meta.used_fallback is True
        assert result.meta.error.kind == AIErrorKind.RATE_LIMITED
        assert result.main_topic == "Summary generated using fallback method"

        record = ctx.tracker.get_recent_records(1)[0]
        assert record.success is False
        assert record.tokens.total_tokens == 0

    def test_fallback_is_not_cached(self):
        client = FakeClient(Exception("Rate limit exceeded"), Exception("Rate limit exceeded"),
                            Exception("Rate limit exceeded"), SUMMARY_JSON)
        ctx = make_context(client)

        async def run():
            first = await generate_summary(ctx, ARTICLE)
            second = await generate_summary(ctx, ARTICLE)
            return first, second

        first, second = asyncio.run(run())
        assert first.meta.used_fallback is True
        assert second.meta.used_fallback is False
        assert second.meta.cached is False

    def test_auth_error_propagates_without_retry(self):
        client = FakeClient(Exception("Invalid API key"))
        ctx = make_context(client)

        with pytest.raises(Exception, match="Invalid API key"):
            asyncio.run(generate_summary(ctx, ARTICLE))

        assert len(client.calls) == 1
        assert ctx.sleep.delays == []
        assert ctx.tracker.get_recent_records(1)[0].success is False
        assert ctx.cache_for(SUMMARY_SERVICE).size == 0

    def test_unparseable_response_falls_back_without_retry(self):
        client = FakeClient("Sorry, I can't help with that.")
        ctx = make_context(client)

        result = asyncio.run(analyze_sentiment(ctx, "Great growth this quarter"))

        assert len(client.calls) == 1
        assert result.meta.used_fallback is True
        assert result.meta.error.kind == AIErrorKind.PARSE_ERROR

    def test_wrongly_typed_field_falls_back(self):
        """Valid JSON with a string where a number belongs is a parse failure."""
        client = FakeClient(json.dumps({"trending_topics": [{"topic": "AI", "growth_rate": "15%"}]}))
        ctx = make_context(client)

        result = asyncio.run(analyze_trends(ctx, news()))

        assert len(client.calls) == 1
        assert result.meta.used_fallback is True
        assert result.meta.error.kind == AIErrorKind.PARSE_ERROR
        assert ctx.cache_for(TREND_SERVICE).size == 0

    def test_unusable_response_is_billed_as_failure(self):
        client = FakeClient("Sorry, I can't help with that.", usage=TokenUsage.from_counts(100, 50))
        ctx = make_context(client)

        result = asyncio.run(analyze_sentiment(ctx, "Great growth this quarter"))

        assert result.meta.used_fallback is True
        assert result.meta.usage.total_tokens == 150
        record = ctx.tracker.get_recent_records(1)[0]
        assert record.success is False
        assert record.tokens.total_tokens == 150
        assert record.cost.total_cost > 0
        assert ctx.check_budget().daily_usage == pytest.approx(record.cost.total_cost)

    def test_missing_usage_is_estimated(self):
        client = FakeClient(SENTIMENT_JSON, usage=None)
        ctx = make_context(client)

        result = asyncio.run(analyze_sentiment(ctx, "Great growth this quarter"))

        assert result.meta.usage.prompt_tokens > 0
        assert result.meta.usage.completion_tokens > 0
        assert ctx.tracker.record_count == 1

    def test_open_circuit_skips_ai_and_tracking(self):
        clock = FakeClock()
        client = FakeClient(Exception("Connection error."))
        ctx = make_context(client, clock=clock)

        async def run(count):
            for i in range(count):
                await analyze_sentiment(ctx, f"text {i}")

        # The breaker counts one failure per request, not per retry attempt
        asyncio.run(run(5))
        assert ctx.breaker_for(SENTIMENT_SERVICE).status().is_open is True
        calls_before = len(client.calls)
        records_before = ctx.tracker.record_count

        result = asyncio.run(analyze_sentiment(ctx, "another text"))
        assert len(client.calls) == calls_before
        assert ctx.tracker.record_count == records_before
        assert result.meta.used_fallback is True
        assert result.meta.error is None

    def test_reset_and_cleanup(self):
        client = FakeClient(SUMMARY_JSON)
        ctx = make_context(client)
        asyncio.run(generate_summary(ctx, ARTICLE))

        assert ctx.cleanup() == 0
        ctx.reset()
        assert ctx.tracker.record_count == 0
        assert ctx.cache_for(SUMMARY_SERVICE).size == 0

    def test_snapshot(self):
        client = FakeClient(SUMMARY_JSON)
        ctx = make_context(client)
        asyncio.run(generate_summary(ctx, ARTICLE))

        snapshot = ctx.snapshot()
        assert snapshot["usage"]["total_calls"] == 1
        assert snapshot["cache"][SUMMARY_SERVICE]["size"] == 1
        assert snapshot["budget"]["daily_exceeded"] is False
        assert snapshot["circuit_breakers"][SUMMARY_SERVICE]["is_open"] is False
        assert len(snapshot["recent_records"]) == 1


class TestSummaryService:
    """Test summary inputs, fallback and batching."""

    def test_empty_content_rejected(self):
        ctx = make_context(FakeClient(SUMMARY_JSON))
        with pytest.raises(ValueError, match="content is required"):
            asyncio.run(generate_summary(ctx, "   "))

    def test_unknown_length_rejected(self):
        ctx = make_context(FakeClient(SUMMARY_JSON))
        with pytest.raises(ValueError, match="Unknown summary lengths"):
            asyncio.run(generate_summary(ctx, ARTICLE, lengths=["tiny"]))

    def test_length_order_does_not_change_key(self):
        client = FakeClient(SUMMARY_JSON)
        ctx = make_context(client)

        async def run():
            await generate_summary(ctx, ARTICLE, lengths=["long", "short"])
            return await generate_summary(ctx, ARTICLE, lengths=["short", "long"])

        result = asyncio.run(run())
        assert len(client.calls) == 1
        assert [s.type for s in result.summaries] == ["short", "long"]

    def test_prompt_settings(self):
        client = FakeClient(SUMMARY_JSON)
        asyncio.run(generate_summary(make_context(client), "x" * 5000))

        call = client.calls[0]
        assert call["temperature"] == 0.5
        assert call["max_tokens"] == 1200
        assert "x" * 2001 not in call["messages"][1]["content"]

    def test_fallback_summaries(self):
        summaries = fallback_summaries("One. Two. Three. Four.", ["short", "medium"])
        assert summaries[0].text == "One"
        assert summaries[1].text == "One. Two. Three"
        assert summaries[1].char_count == len("One. Two. Three")

    def test_batch_omits_failures(self):
        client = FakeClient(SUMMARY_JSON)
        ctx = make_context(client)
        items = [{"id": "a", "content": ARTICLE}, {"id": "b", "content": ""}, {"id": "c", "content": ARTICLE + " More."}]

        results = asyncio.run(generate_batch_summaries(ctx, items))
        assert set(results) == {"a", "c"}


class TestSentimentService:
    """Test sentiment parsing and fallback."""

    def test_ai_result(self):
        client = FakeClient(SENTIMENT_JSON)
        result = asyncio.run(analyze_sentiment(make_context(client), "Great growth"))

        assert result.sentiment == "positive"
        assert result.intensity == "strong"
        assert result.aspects[0].aspect == "earnings"
        assert client.calls[0]["temperature"] == 0.3
        assert client.calls[0]["max_tokens"] == 800

    def test_invalid_label_becomes_neutral(self):
        client = FakeClient(json.dumps({"sentiment": "ecstatic"}))
        result = asyncio.run(analyze_sentiment(make_context(client), "Great growth"))
        assert result.sentiment == "neutral"

    def test_fallback_positive(self):
        result = fallback_sentiment("Great success and strong growth, a big win")
        assert result.sentiment == "positive"
        assert result.intensity == "strong"
        assert result.confidence <= 0.9
        assert result.scores.positive > result.scores.negative

    def test_fallback_neutral(self):
        result = fallback_sentiment("The meeting is on Tuesday")
        assert result.sentiment == "neutral"
        assert result.scores.neutral == 1.0
        assert result.confidence == 0.5

    def test_fallback_negative_chinese(self):
        result = fallback_sentiment("市场出现危机，业绩下降")
        assert result.sentiment == "negative"
        assert result.intensity == "moderate"

    def test_batch(self):
        client = FakeClient(SENTIMENT_JSON)
        items = [{"id": str(i), "content": f"text {i}"} for i in range(4)]
        results = asyncio.run(analyze_batch_sentiment(make_context(client), items))
        assert set(results) == {"0", "1", "2", "3"}


class TestKeywordClusterService:
    """Test clustering validation, fallback and stats."""

    def test_too_few_keywords(self):
        ctx = make_context(FakeClient("{}"))
        with pytest.raises(ValueError, match="At least 3 keywords"):
            asyncio.run(cluster_keywords(ctx, keywords(2)))

    def test_empty_keywords(self):
        ctx = make_context(FakeClient("{}"))
        with pytest.raises(ValueError, match="empty"):
            asyncio.run(cluster_keywords(ctx, []))

    def test_default_num_clusters(self):
        assert default_num_clusters(3) == 3
        assert default_num_clusters(20) == 4
        assert default_num_clusters(100) == 8

    def test_keyword_order_does_not_change_key(self):
        client = FakeClient(json.dumps({"clusters": [{"theme": "Words", "keywords": [{"word": "word0"}]}]}))
        ctx = make_context(client)

        async def run():
            await cluster_keywords(ctx, keywords())
            return await cluster_keywords(ctx, list(reversed(keywords())))

        result = asyncio.run(run())
        assert len(client.calls) == 1
        assert result.meta.cached is True
        assert result.clusters[0].id == "cluster_1"
        assert result.clusters[0].size == 1

    def test_prompt_limited_to_top_fifty(self):
        client = FakeClient("{}")
        many = [Keyword(word=f"kw{i:03d}", frequency=1, tfidf=i / 100) for i in range(60)]
        asyncio.run(cluster_keywords(make_context(client), many))

        prompt = client.calls[0]["messages"][1]["content"]
        assert "kw059" in prompt
        assert "kw009 " not in prompt
        assert client.calls[0]["temperature"] == 0.6

    def test_fallback_groups_by_tfidf(self):
        result = fallback_clusters(keywords(7), 3)

        assert [c.size for c in result.clusters] == [3, 3, 1]
        assert result.clusters[0].keywords[0].word == "word0"
        assert all(c.cohesion_score == 0.5 for c in result.clusters)

    def test_fallback_through_service(self):
        client = FakeClient(Exception("timeout"))
        result = asyncio.run(cluster_keywords(make_context(client), keywords(6), num_clusters=2))
        assert result.meta.used_fallback is True
        assert [c.id for c in result.clusters] == ["cluster_1", "cluster_2"]

    def test_stats(self):
        stats = get_cluster_stats(fallback_clusters(keywords(7), 3))
        assert stats.total_keywords == 7
        assert stats.average_cluster_size == 2.33
        assert stats.largest_cluster.size == 3
        assert stats.smallest_cluster.size == 1


class TestTrendService:
    """Test trend validation, fallback and stats."""

    def test_too_few_items(self):
        ctx = make_context(FakeClient("{}"))
        with pytest.raises(ValueError, match="At least 3 news items"):
            asyncio.run(analyze_trends(ctx, news(2)))

    def test_unknown_time_range(self):
        ctx = make_context(FakeClient("{}"))
        with pytest.raises(ValueError, match="time_range"):
            asyncio.run(analyze_trends(ctx, news(), time_range="decade"))

    def test_single_attempt_before_fallback(self):
        client = FakeClient(Exception("Connection error."))
        ctx = make_context(client)

        result = asyncio.run(analyze_trends(ctx, news()))

        assert len(client.calls) == 1
        assert ctx.sleep.delays == []
        assert result.meta.used_fallback is True
        assert ctx.tracker.get_service_stats(TREND_SERVICE).failed_calls == 1

    def test_newest_items_first_in_prompt(self):
        client = FakeClient("{}")
        asyncio.run(analyze_trends(make_context(client), news()))

        prompt = client.calls[0]["messages"][1]["content"]
        assert prompt.index("2024-03-12") < prompt.index("2024-03-10")
        assert client.calls[0]["temperature"] == 0.7

    def test_prompt_reduced_for_large_sets(self):
        client = FakeClient("{}")
        items = [NewsItem(id=str(i), title=f"t{i}", publish_date=f"2024-01-{i + 1:02d}") for i in range(25)]
        asyncio.run(analyze_trends(make_context(client), items))

        prompt = client.calls[0]["messages"][1]["content"]
        assert "15. [" in prompt
        assert "16. [" not in prompt

    def test_item_order_does_not_change_key(self):
        client = FakeClient("{}")
        ctx = make_context(client)

        async def run():
            await analyze_trends(ctx, news())
            return await analyze_trends(ctx, list(reversed(news())))

        assert asyncio.run(run()).meta.cached is True
        assert len(client.calls) == 1

    def test_fallback_word_frequency(self):
        result = fallback_trends(news())

        top = result.trending_topics[0]
        assert top.topic in ("Market", "Rally", "Continues")
        assert top.related_news_count == 3
        assert top.impact_score == 1.0
        assert top.first_seen == "2024-03-12"
        assert all(len(t.keywords[0]) > 3 for t in result.trending_topics)

    def test_stats(self):
        stats = get_trend_stats(fallback_trends(news()))
        assert stats.total_topics == 3
        assert stats.rising_topics == 0
        assert stats.average_growth_rate == 0.0
        assert stats.high_impact_topics == 3


SEO_KEYWORDS = [Keyword(word="python"), Keyword(word="rust"), Keyword(word="go"), Keyword(word="zig")]


class TestSeoTitleService:
    """Test title generation, scoring and fallback."""

    def test_score_length_keywords_and_digit(self):
        assert score_title("Top 5 python and rust tips for building faster web apps", SEO_KEYWORDS) == 90
        assert score_title("Python tips", SEO_KEYWORDS) == 25
        assert score_title("", SEO_KEYWORDS) == 0

    def test_score_is_capped(self):
        assert score_title("Top 5 python, rust and go tips for building faster apps", SEO_KEYWORDS) == 100

    def test_only_top_three_keywords_score(self):
        assert score_title("Zig tips", SEO_KEYWORDS) == 0

    def test_ai_titles_are_scored(self):
        client = FakeClient(json.dumps({"titles": [
            {"title": "Top 5 python and rust tips for building faster web apps", "estimated_ctr": "viral"},
            {"text": ""},
        ]}))

        result = asyncio.run(generate_seo_titles(make_context(client), SEO_KEYWORDS, "Language tips"))

        assert len(result.titles) == 1
        assert result.titles[0].estimated_ctr == "medium"
        assert result.titles[0].score == 90
        assert client.calls[0]["temperature"] == 0.7
        prompt = client.calls[0]["messages"][1]["content"]
        assert "python, rust, go" in prompt
        assert "zig" not in prompt

    def test_empty_keywords_rejected(self):
        ctx = make_context(FakeClient("{}"))
        with pytest.raises(ValueError, match="Keywords list is empty"):
            asyncio.run(generate_seo_titles(ctx, []))

    def test_fallback_templates(self):
        titles = fallback_titles(keywords(6))

        assert [t.text for t in titles] == [
            "Latest Word0 News: Key Developments and Analysis",
            "Word0 and Word1: What You Need to Know",
            "How Word0 Is Shaping the Industry",
        ]
        assert [t.score for t in titles] == [55, 60, 35]
        assert titles[1].keywords_used == ["word0", "word1"]

    def test_single_keyword_fallback(self):
        titles = fallback_titles([Keyword(word="markets")])
        assert len(titles) == 2
        assert all(len(t.text) <= 60 for t in titles)

    def test_fallback_through_service(self):
        client = FakeClient(Exception("Connection error."))
        result = asyncio.run(generate_seo_titles(make_context(client), keywords(3), "summary"))

        assert result.meta.used_fallback is True
        assert len(result.titles) == 3


class TestMetaDescriptionService:
    """Test description generation, scoring and fallback."""

    def test_truncate_text_at_word_boundary(self):
        assert truncate_text("short", 10) == "short"
        assert truncate_text("alpha beta gamma delta", 15) == "alpha beta..."
        assert truncate_text("abcdefghijklmnop", 10) == "abcdefg..."

    def test_score(self):
        assert score_description("Rates rise. Learn more.", [Keyword(word="rates")]) == 55
        assert score_description("x" * 155, []) == 30

    def test_fallback_descriptions(self):
        descriptions = fallback_descriptions(ARTICLE, [Keyword(word="rates"), Keyword(word="bank")])

        assert len(descriptions) == 3
        assert all(len(d.text) <= 160 for d in descriptions)
        assert descriptions[0].text.endswith("Key topics: rates, bank. Learn more.")
        assert descriptions[0].keywords_count == 2
        assert all(d.has_cta for d in descriptions)

    def test_fallback_without_keywords(self):
        descriptions = fallback_descriptions("x " * 200, [])
        assert len(descriptions) == 2
        assert all(len(d.text) <= 160 for d in descriptions)

    def test_ai_descriptions(self):
        client = FakeClient(json.dumps({"descriptions": [
            {"text": "Rates rise. Learn more.", "keywords_count": 1, "has_cta": True, "tone": "urgent"},
        ]}))

        result = asyncio.run(generate_meta_descriptions(make_context(client), ARTICLE, [Keyword(word="rates")]))

        description = result.descriptions[0]
        assert description.tone == "urgent"
        assert description.has_cta is True
        assert description.score == 55
        assert client.calls[0]["temperature"] == 0.6
        assert client.calls[0]["max_tokens"] == 800

    def test_wrongly_typed_count_falls_back(self):
        client = FakeClient(json.dumps({"descriptions": [{"text": "Rates rise.", "keywords_count": "many"}]}))

        result = asyncio.run(generate_meta_descriptions(make_context(client), ARTICLE, [Keyword(word="rates")]))

        assert result.meta.used_fallback is True
        assert result.meta.error.kind == AIErrorKind.PARSE_ERROR
        assert len(result.descriptions) == 3

    def test_empty_content_rejected(self):
        ctx = make_context(FakeClient("{}"))
        with pytest.raises(ValueError, match="content is required"):
            asyncio.run(generate_meta_descriptions(ctx, " "))


class TestServiceNames:
    """Caches and breakers are keyed by service name."""

    def test_each_service_has_its_own_cache(self):
        client = FakeClient("{}")
        ctx = make_context(client)

        async def run():
            await analyze_sentiment(ctx, "text")
            await cluster_keywords(ctx, keywords())

        asyncio.run(run())
        assert ctx.cache_for(SENTIMENT_SERVICE).size == 1
        assert ctx.cache_for(CLUSTER_SERVICE).size == 1
        assert ctx.cache_for(SENTIMENT_SERVICE).config.ttl_seconds == 21600
