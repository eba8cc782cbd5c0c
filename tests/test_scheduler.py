"""Tests for intelligence/scheduler.py and the intelligence_events audit trail."""

import json
import sqlite3
import time

import pytest

from db import get_db
from intelligence.db import get_events, init_query_tables, log_event
from intelligence.scheduler import LearningScheduler
from query_tracker import QueryRecord


def _gap(tracker, n=10):
    for i in range(n):
        tracker.track_query(QueryRecord(raw_query=f"vibes {i}", detected_intent="FORM_CHECK", intent_confidence=0.9))
    assert tracker.flush(timeout=10)


class TestLearningScheduler:
    def test_run_once_records_events(self, db_path, tracker):
        _gap(tracker)
        insights = LearningScheduler(db_path=db_path).run_once()
        assert len(insights) == 1

        learning = get_events('learning', db_path=db_path)
        assert len(learning) == 1
        assert learning[0]['event_type'] == 'PATTERN_GAP'
        assert learning[0]['severity'] == 'warning'
        assert json.loads(learning[0]['details'])['occurrences'] == 10
        assert get_events('scheduler', db_path=db_path)[0]['event_type'] == 'learning_complete'

    def test_high_priority_logged_as_warning(self, db_path, tracker, caplog):
        _gap(tracker)
        LearningScheduler(db_path=db_path).run_once()
        assert any(r.levelname == 'WARNING' and 'PATTERN_GAP' in r.message for r in caplog.records)

    def test_empty_history(self, db_path):
        assert LearningScheduler(db_path=db_path).run_once() == []

    def test_start_and_stop(self, db_path):
        scheduler = LearningScheduler(db_path=db_path, interval=3600)
        scheduler.start()
        assert scheduler.running
        scheduler.start()  # no second thread
        deadline = time.time() + 5
        while time.time() < deadline and not get_events('scheduler', db_path=db_path, limit=10):
            time.sleep(0.05)
        scheduler.stop()
        assert not scheduler.running
        types = [e['event_type'] for e in get_events('scheduler', db_path=db_path, limit=10)]
        assert 'started' in types
        assert 'stopped' in types


class TestSchema:
    def test_init_is_idempotent(self, db_path):
        init_query_tables(db_path)
        init_query_tables(db_path)

    def test_check_constraints(self, db_path):
        with pytest.raises(sqlite3.IntegrityError):
            with get_db(db_path) as conn:
                conn.execute('''
                    INSERT INTO query_records (id, raw_query, normalized_query, query_hash, created_at,
                                               feedback_rating, was_llm_classified)
                    VALUES ('x', 'q', 'q', 'h', '2026-01-01', 3, 1)
                ''')

    def test_pattern_or_fallback_constraint(self, db_path):
        with pytest.raises(sqlite3.IntegrityError):
            with get_db(db_path) as conn:
                conn.execute('''
                    INSERT INTO query_records (id, raw_query, normalized_query, query_hash, created_at)
                    VALUES ('x', 'q', 'q', 'h', '2026-01-01')
                ''')

    def test_log_event_never_raises(self, tmp_path):
        log_event('scheduler', 'error', 'no table here', 'error', db_path=str(tmp_path / 'empty.db'))
