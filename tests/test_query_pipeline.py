"""Tests for query_pipeline.py — classify, generate, check and track one question."""

import pytest

from query_classifier import QueryIntent
from query_pipeline import QueryPipeline
from query_tracker import ResponseSource


def _generator(text, source="VERIFIED_STATS", **extra):
    seen = []

    def generate(understanding):
        seen.append(understanding)
        return {"text": text, "source": source, "citations": ["nba.com"], "latency_ms": 85, **extra}

    generate.seen = seen
    return generate


@pytest.fixture
def make_pipeline(classifier, tracker, registry):
    def _make(generate):
        return QueryPipeline(generate, classifier=classifier, tracker=tracker, registry=registry)
    return _make


class TestQueryPipeline:
    def test_happy_path_tracks_record(self, make_pipeline, tracker):
        generate = _generator("Haaland has 21 league goals this season.")
        result = make_pipeline(generate).run("How many goals has Haaland scored this season?", user_id="u1")

        assert result["answer"].startswith("Haaland")
        assert result["mismatch"]["has_mismatch"] is False
        assert generate.seen[0]["intent"] is QueryIntent.PLAYER_STATS
        assert generate.seen[0]["entities"] == ["haaland"]

        tracker.flush(timeout=5)
        record = tracker.get_record(result["query_id"])
        assert record.detected_intent is QueryIntent.PLAYER_STATS
        assert record.matched_pattern_id == "player_stats.how_many"
        assert record.was_llm_classified is False
        assert record.response_source is ResponseSource.VERIFIED_STATS
        assert record.latency_ms == 85
        assert record.citations == ["nba.com"]
        assert record.response_length == len(result["answer"])
        assert record.user_id == "u1"
        assert record.category == "PLAYER_STATS"

    def test_mismatch_recorded(self, make_pipeline, tracker):
        generate = _generator("The Warriors have the best defensive rating in the West.")
        result = make_pipeline(generate).run("How is the Lakers' defense this season?")

        assert result["mismatch"]["has_mismatch"] is True
        tracker.flush(timeout=5)
        record = tracker.get_record(result["query_id"])
        assert record.entity_mismatch is True
        assert record.mismatch_details == "Query mentioned [lakers] but response was about [warriors]"

    def test_fallback_classified_question(self, make_pipeline, tracker, stub_fallback):
        result = make_pipeline(_generator("Derby week is always tense.", source="LLM")).run(
            "what's the vibe around the derby this week")
        assert result["understanding"]["was_llm_classified"] is True
        tracker.flush(timeout=5)
        record = tracker.get_record(result["query_id"])
        assert record.was_llm_classified is True
        assert record.intent_confidence == 0.72

    def test_cache_source_marks_cache_hit(self, make_pipeline, tracker):
        result = make_pipeline(_generator("Celtics lead the East.", source="CACHE")).run("nba standings")
        tracker.flush(timeout=5)
        assert tracker.get_record(result["query_id"]).cache_hit is True

    def test_unknown_source_recorded_as_hybrid(self, make_pipeline, tracker):
        result = make_pipeline(_generator("Celtics lead the East.", source="RUMOR_MILL")).run("nba standings")
        assert result["source"] == "HYBRID"

    def test_context_hints(self, make_pipeline, tracker):
        result = make_pipeline(_generator("Celtics lead the East.")).run(
            "nba standings", context={"sport": "basketball", "league": "NBA", "category": "tables"})
        tracker.flush(timeout=5)
        record = tracker.get_record(result["query_id"])
        assert (record.sport, record.league, record.category) == ("basketball", "NBA", "tables")

    def test_generator_errors_propagate(self, make_pipeline):
        def broken(understanding):
            raise RuntimeError("generation failed")

        with pytest.raises(RuntimeError):
            make_pipeline(broken).run("nba standings")
