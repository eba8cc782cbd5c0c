"""
Query Intelligence — Database layer
=====================================
init_query_tables(), log_event(), utc_now()

Schema for query_records (one row per classified query) and
intelligence_events (audit trail of learning runs). The same constraints are
enforced on QueryRecord construction; the CHECKs here guard direct writes.
"""

import logging
from datetime import datetime, timedelta, timezone

from db import get_db

logger = logging.getLogger(__name__)

RESPONSE_SOURCES = ('CACHE', 'VERIFIED_STATS', 'EXTERNAL_SEARCH', 'OWN_PREDICTION', 'LLM', 'HYBRID')


def utc_now() -> str:
    """Current time as fixed-width UTC ISO text (sorts lexicographically)."""
    return datetime.now(timezone.utc).isoformat(timespec='microseconds')


def utc_since(days: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat(timespec='microseconds')


def init_query_tables(db_path=None):
    """Create the query intelligence tables and indexes (idempotent)."""
    with get_db(db_path) as conn:
        _create_query_tables(conn)
    logger.info("Query intelligence tables initialized")


def _create_query_tables(conn):
    cursor = conn.cursor()
    sources = ', '.join(f"'{s}'" for s in RESPONSE_SOURCES)

    cursor.execute(f'''
        CREATE TABLE IF NOT EXISTS query_records (
            id TEXT PRIMARY KEY,
            raw_query TEXT NOT NULL,
            normalized_query TEXT NOT NULL,
            query_hash TEXT NOT NULL,
            created_at TEXT NOT NULL,

            detected_intent TEXT,
            intent_confidence REAL
                CHECK (intent_confidence IS NULL OR (intent_confidence >= 0 AND intent_confidence <= 1)),
            matched_pattern_id TEXT,
            was_llm_classified BOOLEAN NOT NULL DEFAULT FALSE,
            entities_detected TEXT,

            category TEXT,
            sport TEXT,
            team TEXT,
            league TEXT,

            response_source TEXT CHECK (response_source IS NULL OR response_source IN ({sources})),
            cache_hit BOOLEAN NOT NULL DEFAULT FALSE,
            latency_ms INTEGER CHECK (latency_ms IS NULL OR latency_ms >= 0),
            citations TEXT,
            response_length INTEGER,

            entity_mismatch BOOLEAN NOT NULL DEFAULT FALSE,
            mismatch_details TEXT,
            feedback_rating INTEGER CHECK (feedback_rating IS NULL OR feedback_rating IN (1, 5)),
            feedback_comment TEXT,
            feedback_at TEXT,

            user_id TEXT,

            CHECK (was_llm_classified OR matched_pattern_id IS NOT NULL),
            CHECK (NOT entity_mismatch OR mismatch_details IS NOT NULL)
        )
    ''')

    cursor.execute('CREATE INDEX IF NOT EXISTS idx_query_records_created ON query_records(created_at)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_query_records_hash ON query_records(query_hash)')
    cursor.execute('''
        CREATE INDEX IF NOT EXISTS idx_query_records_intent
        ON query_records(detected_intent, was_llm_classified)
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS intelligence_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subsystem TEXT NOT NULL,
            event_type TEXT NOT NULL,
            details TEXT,
            severity TEXT DEFAULT 'info',
            timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')


def log_event(subsystem: str, event_type: str, details: str = None, severity: str = 'info',
              db_path=None):
    """Log an intelligence event for audit trail."""
    try:
        with get_db(db_path) as conn:
            conn.execute('''
                INSERT INTO intelligence_events (subsystem, event_type, details, severity)
                VALUES (?, ?, ?, ?)
            ''', (subsystem, event_type, details, severity))
    except Exception as e:
        logger.error(f"Failed to log event: {e}")


def get_events(subsystem: str = None, limit: int = 50, db_path=None):
    """Most recent intelligence events, newest first."""
    with get_db(db_path) as conn:
        if subsystem:
            rows = conn.execute('''
                SELECT id, subsystem, event_type, details, severity, timestamp
                FROM intelligence_events WHERE subsystem = ?
                ORDER BY id DESC LIMIT ?
            ''', (subsystem, limit)).fetchall()
        else:
            rows = conn.execute('''
                SELECT id, subsystem, event_type, details, severity, timestamp
                FROM intelligence_events ORDER BY id DESC LIMIT ?
            ''', (limit,)).fetchall()
    return [{k: row[k] for k in row.keys()} for row in rows]
