"""
Suggested prompts for the chat UI.

Up to MAX_PROMPTS questions: the most asked recent questions that a pattern
recognized and nobody rated down first, then a rotating static pool.
The list is rebuilt at most once per Config.PROMPTS_CACHE_TTL seconds.
"""

import logging
from datetime import date
from typing import List

from cache import ExpiringValue
from config import Config
from db import get_db
from intelligence.db import utc_since
from query_classifier import normalize_query

logger = logging.getLogger(__name__)

MAX_PROMPTS = 6

STATIC_PROMPTS = [
    "Who is the starting goalkeeper for Real Madrid?",
    "What's the latest injury news for Arsenal?",
    "When do Liverpool play next in the Premier League?",
    "Who's top of the Serie A table?",
    "How many goals has Haaland scored this season?",
    "What are the current NBA standings?",
    "Who leads the NFL in passing yards?",
    "Who leads the MVP race in the NBA?",
    "Which teams are in the Champions League knockouts?",
    "Who's on a hot streak in the NHL right now?",
    "Who are the top scorers in La Liga this season?",
    "What matches are happening this weekend?",
]


class SuggestedPrompts:
    def __init__(self, db_path=None, ttl_seconds=None, window_days=7, clock=None):
        self.db_path = db_path
        self.window_days = window_days
        ttl = ttl_seconds if ttl_seconds is not None else Config.PROMPTS_CACHE_TTL
        kwargs = {'clock': clock} if clock is not None else {}
        self._value = ExpiringValue(self.build, ttl, name='suggested_prompts', **kwargs)

    def get(self) -> List[str]:
        return list(self._value.get())

    def invalidate(self):
        self._value.invalidate()

    def popular_queries(self, limit: int = MAX_PROMPTS) -> List[str]:
        with get_db(self.db_path) as conn:
            rows = conn.execute('''
                SELECT normalized_query, MAX(raw_query) AS raw_query, COUNT(*) AS asked,
                       MAX(created_at) AS last_asked
                FROM query_records
                WHERE created_at >= ?
                  AND was_llm_classified = ?
                  AND entity_mismatch = ?
                  AND (feedback_rating IS NULL OR feedback_rating = 5)
                GROUP BY normalized_query
                ORDER BY asked DESC, last_asked DESC
                LIMIT ?
            ''', (utc_since(self.window_days), False, False, limit)).fetchall()
        return [r['raw_query'].strip() for r in rows]

    def build(self) -> List[str]:
        prompts = []
        seen = set()

        def add(prompt):
            key = normalize_query(prompt).rstrip('?.! ')
            if prompt and key not in seen and len(prompts) < MAX_PROMPTS:
                seen.add(key)
                prompts.append(prompt)

        try:
            for prompt in self.popular_queries():
                add(prompt)
        except Exception as e:
            logger.warning(f"Could not load popular queries for prompts: {e}")

        # Rotate the static pool daily
        offset = date.today().toordinal() % len(STATIC_PROMPTS)
        for prompt in STATIC_PROMPTS[offset:] + STATIC_PROMPTS[:offset]:
            add(prompt)

        logger.info(f"Built {len(prompts)} suggested prompts")
        return prompts
