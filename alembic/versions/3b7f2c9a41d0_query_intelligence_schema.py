"""Query intelligence schema.

Sources:
  - intelligence/db.py    (query_records, intelligence_events)

Revision ID: 3b7f2c9a41d0
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "3b7f2c9a41d0"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

RESPONSE_SOURCES = ("CACHE", "VERIFIED_STATS", "EXTERNAL_SEARCH", "OWN_PREDICTION", "LLM", "HYBRID")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _auto_pk():
    return sa.Column("id", sa.Integer, primary_key=True, autoincrement=True)


def _ts_default():
    """CURRENT_TIMESTAMP default usable on both dialects."""
    return sa.text("CURRENT_TIMESTAMP")


def _flag(name):
    return sa.Column(name, sa.Boolean, nullable=False, server_default=sa.false())


# ---------------------------------------------------------------------------
# upgrade
# ---------------------------------------------------------------------------

def upgrade() -> None:
    sources = ", ".join(f"'{s}'" for s in RESPONSE_SOURCES)

    op.create_table(
        "query_records",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("raw_query", sa.Text, nullable=False),
        sa.Column("normalized_query", sa.Text, nullable=False),
        sa.Column("query_hash", sa.Text, nullable=False),
        sa.Column("created_at", sa.Text, nullable=False),
        # classification
        sa.Column("detected_intent", sa.Text),
        sa.Column("intent_confidence", sa.Float),
        sa.Column("matched_pattern_id", sa.Text),
        _flag("was_llm_classified"),
        sa.Column("entities_detected", sa.Text),
        # context
        sa.Column("category", sa.Text),
        sa.Column("sport", sa.Text),
        sa.Column("team", sa.Text),
        sa.Column("league", sa.Text),
        # response linkage
        sa.Column("response_source", sa.Text),
        _flag("cache_hit"),
        sa.Column("latency_ms", sa.Integer),
        sa.Column("citations", sa.Text),
        sa.Column("response_length", sa.Integer),
        # quality / feedback
        _flag("entity_mismatch"),
        sa.Column("mismatch_details", sa.Text),
        sa.Column("feedback_rating", sa.Integer),
        sa.Column("feedback_comment", sa.Text),
        sa.Column("feedback_at", sa.Text),
        sa.Column("user_id", sa.Text),
        sa.CheckConstraint(
            "intent_confidence IS NULL OR (intent_confidence >= 0 AND intent_confidence <= 1)",
            name="ck_query_records_confidence",
        ),
        sa.CheckConstraint(
            f"response_source IS NULL OR response_source IN ({sources})",
            name="ck_query_records_source",
        ),
        sa.CheckConstraint("latency_ms IS NULL OR latency_ms >= 0", name="ck_query_records_latency"),
        sa.CheckConstraint(
            "feedback_rating IS NULL OR feedback_rating IN (1, 5)",
            name="ck_query_records_rating",
        ),
        sa.CheckConstraint(
            "was_llm_classified OR matched_pattern_id IS NOT NULL",
            name="ck_query_records_fallback",
        ),
        sa.CheckConstraint(
            "NOT entity_mismatch OR mismatch_details IS NOT NULL",
            name="ck_query_records_mismatch",
        ),
    )
    op.create_index("idx_query_records_created", "query_records", ["created_at"])
    op.create_index("idx_query_records_hash", "query_records", ["query_hash"])
    op.create_index("idx_query_records_intent", "query_records", ["detected_intent", "was_llm_classified"])

    op.create_table(
        "intelligence_events",
        _auto_pk(),
        sa.Column("subsystem", sa.Text, nullable=False),
        sa.Column("event_type", sa.Text, nullable=False),
        sa.Column("details", sa.Text),
        sa.Column("severity", sa.Text, server_default="info"),
        sa.Column("timestamp", sa.TIMESTAMP, server_default=_ts_default()),
    )


# ---------------------------------------------------------------------------
# downgrade
# ---------------------------------------------------------------------------

def downgrade() -> None:
    op.drop_table("intelligence_events")
    op.drop_index("idx_query_records_intent", table_name="query_records")
    op.drop_index("idx_query_records_hash", table_name="query_records")
    op.drop_index("idx_query_records_created", table_name="query_records")
    op.drop_table("query_records")
