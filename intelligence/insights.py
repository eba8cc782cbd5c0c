"""
Query Intelligence — Learning insights
========================================
Mines recent query history for systemic classifier weaknesses:
pattern gaps, entity misses, low confidence, negative feedback.

Insights are derived on every run and never persisted. All predicates are
computed in one pass over one windowed query.
"""

import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, List, Optional

from config import Config, LearningThresholds
from db import get_db
from intelligence.db import utc_since

logger = logging.getLogger(__name__)


class InsightType(str, Enum):
    PATTERN_GAP = 'PATTERN_GAP'
    ENTITY_MISS = 'ENTITY_MISS'
    INTENT_CONFUSION = 'INTENT_CONFUSION'
    LOW_CONFIDENCE = 'LOW_CONFIDENCE'


class Priority(str, Enum):
    HIGH = 'HIGH'
    MEDIUM = 'MEDIUM'
    LOW = 'LOW'


_PRIORITY_ORDER = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


@dataclass
class LearningInsight:
    type: InsightType
    description: str
    query_example: Optional[str]
    occurrences: int
    priority: Priority

    def to_dict(self) -> Dict:
        d = asdict(self)
        d['type'] = self.type.value
        d['priority'] = self.priority.value
        return d


class InsightGenerator:
    """Read-only analytics over query_records."""

    def __init__(self, db_path=None, thresholds: Optional[LearningThresholds] = None):
        self.db_path = db_path
        self.thresholds = thresholds or Config.LEARNING_THRESHOLDS

    def generate_learning_insights(self, window_days: Optional[int] = None) -> List[LearningInsight]:
        """Insights for the last window_days, sorted HIGH → MEDIUM → LOW."""
        t = self.thresholds
        if window_days is None:
            window_days = t.window_days

        with get_db(self.db_path) as conn:
            rows = conn.execute('''
                SELECT raw_query, detected_intent, intent_confidence,
                       was_llm_classified, entity_mismatch, feedback_rating
                FROM query_records
                WHERE created_at >= ?
                ORDER BY created_at DESC
            ''', (utc_since(window_days),)).fetchall()

        fallback_by_intent = OrderedDict()   # intent -> [count, most recent example]
        mismatch_count, mismatch_example = 0, None
        low_conf_count, low_conf_example = 0, None
        negative_count, negative_example = 0, None

        for row in rows:
            query = row['raw_query']
            if row['was_llm_classified']:
                intent = row['detected_intent'] or 'UNKNOWN'
                group = fallback_by_intent.setdefault(intent, [0, query])
                group[0] += 1
            if row['entity_mismatch']:
                mismatch_count += 1
                mismatch_example = mismatch_example or query
            confidence = row['intent_confidence']
            if confidence is not None and confidence < t.low_confidence:
                low_conf_count += 1
                low_conf_example = low_conf_example or query
            if row['feedback_rating'] == 1:
                negative_count += 1
                negative_example = negative_example or query

        insights = []

        gaps = sorted(fallback_by_intent.items(), key=lambda kv: -kv[1][0])
        for intent, (count, example) in gaps:
            if count < t.pattern_gap_min:
                continue
            if count >= t.pattern_gap_high:
                priority = Priority.HIGH
            elif count >= t.pattern_gap_medium:
                priority = Priority.MEDIUM
            else:
                priority = Priority.LOW
            insights.append(LearningInsight(
                type=InsightType.PATTERN_GAP,
                description=f'{count} queries for "{intent}" needed LLM fallback - missing patterns',
                query_example=example,
                occurrences=count,
                priority=priority,
            ))

        if mismatch_count >= t.entity_miss_min:
            insights.append(LearningInsight(
                type=InsightType.ENTITY_MISS,
                description=f"{mismatch_count} queries had entity mismatches (asked about X, answered about Y)",
                query_example=mismatch_example,
                occurrences=mismatch_count,
                priority=Priority.HIGH,
            ))

        if low_conf_count >= t.low_confidence_min:
            insights.append(LearningInsight(
                type=InsightType.LOW_CONFIDENCE,
                description=(f"{low_conf_count} queries classified with low confidence "
                             f"(<{t.low_confidence:.0%})"),
                query_example=low_conf_example,
                occurrences=low_conf_count,
                priority=Priority.HIGH if low_conf_count >= t.low_confidence_high else Priority.MEDIUM,
            ))

        # Negative feedback has no dedicated type; it points at missing or wrong patterns
        if negative_count >= t.negative_feedback_min:
            insights.append(LearningInsight(
                type=InsightType.PATTERN_GAP,
                description=f"{negative_count} queries received negative feedback - review and improve",
                query_example=negative_example,
                occurrences=negative_count,
                priority=Priority.HIGH,
            ))

        insights.sort(key=lambda i: _PRIORITY_ORDER[i.priority])
        logger.info(f"Generated {len(insights)} learning insights from {len(rows)} queries ({window_days}d)")
        return insights

    def get_query_stats(self) -> Dict:
        """Dashboard counters. Empty history yields zeros."""
        with get_db(self.db_path) as conn:
            agg = conn.execute('''
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END) AS last_24h,
                    SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END) AS last_7d,
                    AVG(intent_confidence) AS avg_confidence,
                    SUM(CASE WHEN feedback_rating = 5 THEN 1 ELSE 0 END) AS feedback_positive,
                    SUM(CASE WHEN feedback_rating = 1 THEN 1 ELSE 0 END) AS feedback_negative,
                    SUM(CASE WHEN entity_mismatch THEN 1 ELSE 0 END) AS mismatch_count,
                    SUM(CASE WHEN was_llm_classified THEN 1 ELSE 0 END) AS fallback_count,
                    SUM(CASE WHEN cache_hit THEN 1 ELSE 0 END) AS cache_hit_count
                FROM query_records
            ''', (utc_since(1), utc_since(7))).fetchone()

            categories = conn.execute('''
                SELECT category, COUNT(*) AS count
                FROM query_records
                WHERE category IS NOT NULL
                GROUP BY category
                ORDER BY count DESC, category
                LIMIT 10
            ''').fetchall()

            recent = conn.execute('''
                SELECT id, raw_query, detected_intent, intent_confidence,
                       was_llm_classified, feedback_rating, created_at
                FROM query_records
                ORDER BY created_at DESC
                LIMIT 20
            ''').fetchall()

        total = agg['total'] or 0
        fallback_count = agg['fallback_count'] or 0
        cache_hit_count = agg['cache_hit_count'] or 0

        return {
            'total_queries': total,
            'last_24h': agg['last_24h'] or 0,
            'last_7d': agg['last_7d'] or 0,
            'avg_confidence': round(float(agg['avg_confidence']), 4) if agg['avg_confidence'] is not None else 0.0,
            'feedback_positive': agg['feedback_positive'] or 0,
            'feedback_negative': agg['feedback_negative'] or 0,
            'mismatch_count': agg['mismatch_count'] or 0,
            'llm_fallback_rate': round(fallback_count / total, 4) if total else 0.0,
            'cache_hit_rate': round(cache_hit_count / total, 4) if total else 0.0,
            'top_categories': [{'category': r['category'], 'count': r['count']} for r in categories],
            'recent_queries': [{
                'id': r['id'],
                'query': r['raw_query'],
                'intent': r['detected_intent'],
                'confidence': r['intent_confidence'],
                'was_llm_classified': bool(r['was_llm_classified']),
                'feedback_rating': r['feedback_rating'],
                'created_at': r['created_at'],
            } for r in recent],
        }


def generate_learning_insights(window_days: Optional[int] = None, db_path=None) -> List[LearningInsight]:
    return InsightGenerator(db_path).generate_learning_insights(window_days)


def get_query_stats(db_path=None) -> Dict:
    return InsightGenerator(db_path).get_query_stats()
