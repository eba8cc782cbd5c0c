"""
Query Intelligence — Pattern suggestions
==========================================
Proposes new intent patterns from queries the fallback classifier had to
handle. Words shared by a large share of those queries are likely the
missing pattern's keywords.

Suggestions are Python `re` syntax, matched against normalized (lowercased)
query text, and are meant for a human to review before adding to
data/intent_patterns.json.
"""

import logging
import re
from collections import Counter
from typing import List, Optional

from config import Config, LearningThresholds
from db import get_db
from query_classifier import QueryIntent

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+")


def _frequent_words(queries: List[str], t: LearningThresholds) -> List[str]:
    """Words in at least suggestion_doc_frequency of the queries, most common first."""
    doc_freq = Counter()
    first_seen = {}
    for query in queries:
        words = [w for w in _WORD_RE.findall(query.lower()) if len(w) >= t.suggestion_min_word_length]
        for w in dict.fromkeys(words):
            doc_freq[w] += 1
            first_seen.setdefault(w, len(first_seen))

    cutoff = t.suggestion_doc_frequency * len(queries)
    frequent = [w for w, n in doc_freq.items() if n >= cutoff]
    frequent.sort(key=lambda w: (-doc_freq[w], first_seen[w]))
    return frequent[:t.suggestion_max_words]


def build_suggestions(words: List[str], t: LearningThresholds) -> List[str]:
    suggestions = []
    escaped = [re.escape(w) for w in words]
    if len(escaped) >= 2:
        suggestions.append(r'\b(' + '|'.join(escaped) + r')\b')
    suffix = '|'.join(re.escape(s) for s in t.suggestion_suffix_terms)
    for w in escaped:
        suggestions.append(r'\b' + w + r'\b.*\b(' + suffix + r')\b')
    return suggestions


class PatternSuggester:
    def __init__(self, db_path=None, thresholds: Optional[LearningThresholds] = None):
        self.db_path = db_path
        self.thresholds = thresholds or Config.LEARNING_THRESHOLDS

    def suggest_patterns(self, intent) -> List[str]:
        """Candidate regexes for an intent, or [] when there is too little evidence."""
        t = self.thresholds
        intent = QueryIntent.parse(intent)

        with get_db(self.db_path) as conn:
            rows = conn.execute('''
                SELECT normalized_query FROM query_records
                WHERE detected_intent = ? AND was_llm_classified = ?
                ORDER BY created_at DESC
                LIMIT ?
            ''', (intent.value, True, t.suggestion_sample_size)).fetchall()

        queries = [r['normalized_query'] for r in rows]
        if len(queries) < t.suggestion_min_sample:
            logger.debug(f"Only {len(queries)} fallback queries for {intent.value}, no suggestions")
            return []

        words = _frequent_words(queries, t)
        suggestions = build_suggestions(words, t)
        logger.info(f"Suggested {len(suggestions)} patterns for {intent.value} from {len(queries)} queries: {words}")
        return suggestions


def suggest_patterns(intent, db_path=None) -> List[str]:
    return PatternSuggester(db_path).suggest_patterns(intent)
