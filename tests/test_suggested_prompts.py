"""Tests for suggested_prompts.py — popular questions plus a static pool, TTL cached."""

from query_tracker import QueryRecord
from suggested_prompts import MAX_PROMPTS, STATIC_PROMPTS, SuggestedPrompts


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _ask(tracker, question, times=1, **kwargs):
    kwargs.setdefault("matched_pattern_id", "match_result.who_won")
    for _ in range(times):
        tracker.track_query(QueryRecord(raw_query=question, **kwargs))
    assert tracker.flush(timeout=5)


class TestSuggestedPrompts:
    def test_static_pool_when_no_history(self, db_path):
        prompts = SuggestedPrompts(db_path).get()
        assert len(prompts) == MAX_PROMPTS
        assert set(prompts) <= set(STATIC_PROMPTS)

    def test_most_asked_first(self, tracker, db_path):
        _ask(tracker, "Who won the Celtics game?", times=2)
        _ask(tracker, "Who won the Lakers game?", times=3)
        prompts = SuggestedPrompts(db_path).get()
        assert prompts[:2] == ["Who won the Lakers game?", "Who won the Celtics game?"]
        assert len(prompts) == MAX_PROMPTS

    def test_excludes_fallback_and_downvoted(self, tracker, db_path):
        _ask(tracker, "vibes around the derby", matched_pattern_id=None)
        _ask(tracker, "Who won the derby?", feedback_rating=1)
        _ask(tracker, "Who won at Anfield?", entity_mismatch=True, mismatch_details="d")
        prompts = SuggestedPrompts(db_path).get()
        assert set(prompts) <= set(STATIC_PROMPTS)

    def test_no_duplicates_with_static_pool(self, tracker, db_path):
        _ask(tracker, "how many goals has haaland scored this season?", matched_pattern_id="player_stats.how_many")
        prompts = SuggestedPrompts(db_path).get()
        lowered = [p.lower() for p in prompts]
        assert lowered.count("how many goals has haaland scored this season?") == 1

    def test_cached_until_ttl(self, tracker, db_path):
        clock = FakeClock()
        prompts = SuggestedPrompts(db_path, ttl_seconds=900, clock=clock)
        before = prompts.get()
        _ask(tracker, "Who won the Lakers game?", times=3)
        assert prompts.get() == before
        clock.now += 901
        assert prompts.get()[0] == "Who won the Lakers game?"

    def test_invalidate(self, tracker, db_path):
        prompts = SuggestedPrompts(db_path, ttl_seconds=900)
        prompts.get()
        _ask(tracker, "Who won the Lakers game?")
        prompts.invalidate()
        assert prompts.get()[0] == "Who won the Lakers game?"
