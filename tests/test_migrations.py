"""Tests for the Alembic migration of the query store."""

import argparse
import os
import sqlite3

from alembic import command
from alembic.config import Config as AlembicConfig

from query_tracker import COLUMNS, QueryRecord, QueryTracker

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _alembic_config(db_file):
    # No ini file: keeps alembic's fileConfig from resetting the test loggers
    cfg = AlembicConfig(cmd_opts=argparse.Namespace(x=[f"db={db_file}"]))
    cfg.set_main_option("script_location", os.path.join(ROOT, "alembic"))
    return cfg


def _tables(db_file):
    conn = sqlite3.connect(str(db_file))
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        columns = [r[1] for r in conn.execute("PRAGMA table_info(query_records)").fetchall()]
    finally:
        conn.close()
    return {r[0] for r in rows}, columns


class TestMigration:
    def test_upgrade_creates_query_store(self, tmp_path):
        db_file = tmp_path / "migrated.db"
        command.upgrade(_alembic_config(db_file), "head")

        tables, columns = _tables(db_file)
        assert {"query_records", "intelligence_events"} <= tables
        assert set(columns) == set(COLUMNS)

    def test_tracker_writes_to_migrated_store(self, tmp_path):
        db_file = tmp_path / "migrated.db"
        command.upgrade(_alembic_config(db_file), "head")

        tracker = QueryTracker(str(db_file), workers=1, max_retries=1, retry_backoff=0)
        query_id = tracker.track_query(QueryRecord(raw_query="nba standings", matched_pattern_id="standings.keywords"))
        assert tracker.flush(timeout=5)
        assert tracker.record_feedback(query_id, 5) is True
        assert tracker.get_record(query_id).feedback_rating == 5
        tracker.shutdown()

    def test_downgrade_drops_tables(self, tmp_path):
        db_file = tmp_path / "migrated.db"
        cfg = _alembic_config(db_file)
        command.upgrade(cfg, "head")
        command.downgrade(cfg, "base")

        tables, _ = _tables(db_file)
        assert "query_records" not in tables
        assert "intelligence_events" not in tables
