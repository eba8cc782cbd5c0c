"""Tests for intelligence/pattern_suggester.py — regex suggestions from fallback queries."""

import re

import pytest

from config import Config
from intelligence.pattern_suggester import PatternSuggester, build_suggestions
from query_tracker import QueryRecord

COMPARISON_QUERIES = [
    "compare saka and foden, who has better stats",
    "compare tatum with booker better stats",
    "better stats overall: compare kane versus haaland",
    "stats compare messi ronaldo better",
]


def _track_all(tracker, queries, **kwargs):
    for q in queries:
        tracker.track_query(QueryRecord(raw_query=q, **kwargs))
    assert tracker.flush(timeout=10)


@pytest.fixture
def suggester(db_path):
    return PatternSuggester(db_path)


class TestSuggestPatterns:
    def test_shared_words_become_alternation(self, suggester, tracker):
        _track_all(tracker, COMPARISON_QUERIES, detected_intent="PLAYER_COMPARISON", intent_confidence=0.7)

        suggestions = suggester.suggest_patterns("PLAYER_COMPARISON")
        assert suggestions

        alternation = suggestions[0]
        m = re.fullmatch(r"\\b\((.+)\)\\b", alternation)
        assert m is not None
        assert set(m.group(1).split("|")) == {"compare", "better", "stats"}

    def test_suffix_rule_per_word(self, suggester, tracker):
        _track_all(tracker, COMPARISON_QUERIES, detected_intent="PLAYER_COMPARISON", intent_confidence=0.7)
        suggestions = suggester.suggest_patterns("PLAYER_COMPARISON")
        assert len(suggestions) == 4
        assert r"\bcompare\b.*\b(stats|game|match|score|prediction)\b" in suggestions

    def test_suggestions_compile_and_match(self, suggester, tracker):
        _track_all(tracker, COMPARISON_QUERIES, detected_intent="PLAYER_COMPARISON", intent_confidence=0.7)
        for pattern in suggester.suggest_patterns("PLAYER_COMPARISON"):
            assert re.search(pattern, "compare better stats this game")

    def test_below_minimum_sample(self, suggester, tracker):
        _track_all(tracker, COMPARISON_QUERIES[:2], detected_intent="PLAYER_COMPARISON", intent_confidence=0.7)
        assert suggester.suggest_patterns("PLAYER_COMPARISON") == []

    def test_only_fallback_queries_count(self, suggester, tracker):
        _track_all(tracker, COMPARISON_QUERIES, detected_intent="PLAYER_COMPARISON", intent_confidence=1.0,
                   matched_pattern_id="player_comparison.compare")
        assert suggester.suggest_patterns("PLAYER_COMPARISON") == []

    def test_other_intents_ignored(self, suggester, tracker):
        _track_all(tracker, COMPARISON_QUERIES, detected_intent="FORM_CHECK", intent_confidence=0.7)
        assert suggester.suggest_patterns("PLAYER_COMPARISON") == []

    def test_no_history(self, suggester):
        assert suggester.suggest_patterns("STANDINGS") == []

    def test_no_common_words(self, suggester, tracker):
        _track_all(tracker, ["alpha bravo", "charlie delta", "echo foxtrot", "golf hotel", "india juliet"],
                   detected_intent="GENERAL_INFO", intent_confidence=0.7)
        assert suggester.suggest_patterns("GENERAL_INFO") == []


class TestBuildSuggestions:
    def test_single_word_has_no_alternation(self):
        assert build_suggestions(["derby"], Config.LEARNING_THRESHOLDS) == [
            r"\bderby\b.*\b(stats|game|match|score|prediction)\b"
        ]

    def test_words_escaped(self):
        suggestions = build_suggestions(["o.k", "fine"], Config.LEARNING_THRESHOLDS)
        assert suggestions[0] == r"\b(o\.k|fine)\b"
