"""
Query Intelligence Package
============================
Re-exports the public names so that:
    from intelligence import generate_learning_insights
    from intelligence import LearningScheduler
work without knowing the module layout.
"""

import logging

logger = logging.getLogger(__name__)

# ── Foundation ──────────────────────────────────────────────────────────────
from intelligence.db import (
    RESPONSE_SOURCES,
    init_query_tables,
    log_event,
    get_events,
    utc_now,
    utc_since,
)

# ── Learning ────────────────────────────────────────────────────────────────
from intelligence.insights import (
    InsightGenerator,
    InsightType,
    LearningInsight,
    Priority,
    generate_learning_insights,
    get_query_stats,
)
from intelligence.pattern_suggester import PatternSuggester, suggest_patterns

# ── Scheduler ───────────────────────────────────────────────────────────────
from intelligence.scheduler import LearningScheduler
