"""
Query Tracker
Persists every classified query with its outcome metadata, and accepts
feedback and mismatch reports after the fact.

Writes are fire-and-forget: track_query() returns the record id immediately
and the INSERT runs on a small thread pool, retried on failure. Inserts are
idempotent by id, so a retried write never duplicates a record.
"""

import atexit
import json
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from config import Config
from db import get_db
from errors import InvalidFeedbackError, InvalidQueryRecord, PersistenceFailure
from intelligence.db import utc_now, utc_since
from query_classifier import QueryIntent, normalize_query, query_hash

logger = logging.getLogger(__name__)

VALID_RATINGS = (1, 5)


class ResponseSource(str, Enum):
    CACHE = 'CACHE'
    VERIFIED_STATS = 'VERIFIED_STATS'
    EXTERNAL_SEARCH = 'EXTERNAL_SEARCH'
    OWN_PREDICTION = 'OWN_PREDICTION'
    LLM = 'LLM'
    HYBRID = 'HYBRID'


COLUMNS = (
    'id', 'raw_query', 'normalized_query', 'query_hash', 'created_at',
    'detected_intent', 'intent_confidence', 'matched_pattern_id', 'was_llm_classified',
    'entities_detected', 'category', 'sport', 'team', 'league',
    'response_source', 'cache_hit', 'latency_ms', 'citations', 'response_length',
    'entity_mismatch', 'mismatch_details', 'feedback_rating', 'feedback_comment', 'feedback_at',
    'user_id',
)


@dataclass
class QueryRecord:
    """One classified query and what happened to it."""

    raw_query: str
    normalized_query: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None

    detected_intent: Optional[QueryIntent] = None
    intent_confidence: Optional[float] = None
    matched_pattern_id: Optional[str] = None
    was_llm_classified: bool = False
    entities_detected: List[str] = field(default_factory=list)

    category: Optional[str] = None
    sport: Optional[str] = None
    team: Optional[str] = None
    league: Optional[str] = None

    response_source: Optional[ResponseSource] = None
    cache_hit: bool = False
    latency_ms: Optional[int] = None
    citations: List[str] = field(default_factory=list)
    response_length: Optional[int] = None

    entity_mismatch: bool = False
    mismatch_details: Optional[str] = None
    feedback_rating: Optional[int] = None
    feedback_comment: Optional[str] = None
    feedback_at: Optional[str] = None

    user_id: Optional[str] = None

    def __post_init__(self):
        if self.normalized_query is None:
            self.normalized_query = normalize_query(self.raw_query)
        if self.created_at is None:
            self.created_at = utc_now()
        if self.detected_intent is not None:
            self.detected_intent = QueryIntent.parse(self.detected_intent)
        if self.response_source is not None:
            try:
                self.response_source = ResponseSource(self.response_source)
            except ValueError:
                raise InvalidQueryRecord(f"Unknown response_source '{self.response_source}'")

        if self.intent_confidence is not None and not 0.0 <= self.intent_confidence <= 1.0:
            raise InvalidQueryRecord(f"intent_confidence {self.intent_confidence} outside [0, 1]")
        if self.feedback_rating is not None and self.feedback_rating not in VALID_RATINGS:
            raise InvalidQueryRecord(f"feedback_rating {self.feedback_rating} not in {VALID_RATINGS}")
        if self.latency_ms is not None and self.latency_ms < 0:
            raise InvalidQueryRecord(f"latency_ms {self.latency_ms} is negative")
        if self.entity_mismatch and not self.mismatch_details:
            raise InvalidQueryRecord("entity_mismatch requires mismatch_details")

        # A matched pattern decided, otherwise the fallback did
        self.was_llm_classified = self.matched_pattern_id is None

        self.entities_detected = sorted(set(self.entities_detected or []))

    @property
    def query_hash(self) -> str:
        return query_hash(self.normalized_query)

    @classmethod
    def from_classification(cls, raw_query: str, classification: Dict, **kwargs) -> 'QueryRecord':
        """Build a record from classify_query() output plus response metadata."""
        return cls(
            raw_query=raw_query,
            normalized_query=classification.get('normalized_query'),
            detected_intent=classification.get('intent'),
            intent_confidence=classification.get('confidence'),
            matched_pattern_id=classification.get('matched_pattern_id'),
            was_llm_classified=classification.get('was_llm_classified', False),
            entities_detected=classification.get('entities') or [],
            **kwargs,
        )

    def to_row(self) -> tuple:
        return (
            self.id, self.raw_query, self.normalized_query, self.query_hash, self.created_at,
            self.detected_intent.value if self.detected_intent else None,
            self.intent_confidence, self.matched_pattern_id, bool(self.was_llm_classified),
            json.dumps(self.entities_detected),
            self.category, self.sport, self.team, self.league,
            self.response_source.value if self.response_source else None,
            bool(self.cache_hit), self.latency_ms, json.dumps(self.citations or []),
            self.response_length,
            bool(self.entity_mismatch), self.mismatch_details,
            self.feedback_rating, self.feedback_comment, self.feedback_at,
            self.user_id,
        )

    @classmethod
    def from_row(cls, row) -> 'QueryRecord':
        return cls(
            id=row['id'],
            raw_query=row['raw_query'],
            normalized_query=row['normalized_query'],
            created_at=row['created_at'],
            detected_intent=row['detected_intent'],
            intent_confidence=row['intent_confidence'],
            matched_pattern_id=row['matched_pattern_id'],
            was_llm_classified=bool(row['was_llm_classified']),
            entities_detected=json.loads(row['entities_detected']) if row['entities_detected'] else [],
            category=row['category'],
            sport=row['sport'],
            team=row['team'],
            league=row['league'],
            response_source=row['response_source'],
            cache_hit=bool(row['cache_hit']),
            latency_ms=row['latency_ms'],
            citations=json.loads(row['citations']) if row['citations'] else [],
            response_length=row['response_length'],
            entity_mismatch=bool(row['entity_mismatch']),
            mismatch_details=row['mismatch_details'],
            feedback_rating=row['feedback_rating'],
            feedback_comment=row['feedback_comment'],
            feedback_at=row['feedback_at'],
            user_id=row['user_id'],
        )

    def to_dict(self) -> Dict:
        d = dict(zip(COLUMNS, self.to_row()))
        d['entities_detected'] = list(self.entities_detected)
        d['citations'] = list(self.citations)
        return d


_INSERT_SQL = (
    f"INSERT INTO query_records ({', '.join(COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in COLUMNS)}) "
    "ON CONFLICT (id) DO NOTHING"
)

# Columns that can change after a record is queued
_LATE_COLUMNS = ('entity_mismatch', 'mismatch_details', 'feedback_rating', 'feedback_comment', 'feedback_at')

_LATE_UPDATE_SQL = (
    f"UPDATE query_records SET {', '.join(f'{c} = ?' for c in _LATE_COLUMNS)} "
    "WHERE id = ?"
)


def _late_values(record: 'QueryRecord') -> tuple:
    return (bool(record.entity_mismatch), record.mismatch_details,
            record.feedback_rating, record.feedback_comment, record.feedback_at)


class QueryTracker:
    """
    Persistence boundary for query records.

    Records stay in memory by id until their row is committed, so feedback and
    mismatch reports for an id track_query() just returned are never lost.

    Args:
        db_path: SQLite path (ignored on PostgreSQL); defaults to db.QUERIES_DB
        workers: background writer threads
        max_retries: attempts per write before giving up
        retry_backoff: seconds; attempt n sleeps n * retry_backoff
    """

    def __init__(self, db_path=None, workers=None, max_retries=None, retry_backoff=None):
        self.db_path = db_path
        self.max_retries = max(1, max_retries if max_retries is not None else Config.TRACKING_MAX_RETRIES)
        self.retry_backoff = retry_backoff if retry_backoff is not None else Config.TRACKING_RETRY_BACKOFF
        self._executor = ThreadPoolExecutor(
            max_workers=workers or Config.TRACKING_WORKERS,
            thread_name_prefix='query-tracker',
        )
        self._pending = set()
        self._queued: Dict[str, QueryRecord] = {}
        self._lock = threading.Lock()
        self.failed_writes = 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def track_query(self, record: QueryRecord) -> str:
        """Queue a record for persistence and return its id without waiting."""
        if not record.id:
            record.id = uuid.uuid4().hex
        with self._lock:
            self._queued[record.id] = record
            future = self._executor.submit(self._write, record)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return record.id

    def _discard(self, future):
        with self._lock:
            self._pending.discard(future)

    def _execute(self, sql: str, params: tuple):
        """Run one statement, retrying with backoff. Returns the last error, or None on success."""
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                with get_db(self.db_path) as conn:
                    conn.execute(sql, params)
                return None
            except Exception as e:
                last_error = e
                logger.warning(f"Tracking write failed (attempt {attempt}/{self.max_retries}): {e}")
                if attempt < self.max_retries:
                    time.sleep(self.retry_backoff * attempt)
        return last_error

    def _write(self, record: QueryRecord):
        with self._lock:
            row = record.to_row()
            written = _late_values(record)
        error = self._execute(_INSERT_SQL, row)

        # Feedback or a mismatch may land on the queued record while it is written
        while error is None:
            with self._lock:
                late = _late_values(record)
                if late == written:
                    self._queued.pop(record.id, None)
                    return True
            written = late
            error = self._execute(_LATE_UPDATE_SQL, late + (record.id,))

        failure = PersistenceFailure(f"Dropped query record {record.id} after {self.max_retries} attempts: {error}")
        with self._lock:
            self._queued.pop(record.id, None)
            self.failed_writes += 1
        logger.error(str(failure))
        return False

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued writes. Returns False if some are still pending at timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self):
        self._executor.shutdown(wait=True)

    @staticmethod
    def _feedback_changes(current_rating, current_comment, rating, comment) -> Optional[Dict]:
        """
        Columns to update for new feedback, or None when nothing changes.

        Repeating the stored rating keeps feedback_at; only a new non-empty
        comment is written.
        """
        if current_rating == rating:
            if comment is None or comment == current_comment:
                return None
            return {'feedback_comment': comment}
        return {'feedback_rating': rating, 'feedback_comment': comment, 'feedback_at': utc_now()}

    def record_feedback(self, query_id: str, rating: int, comment: Optional[str] = None) -> bool:
        """
        Attach a thumbs up (5) or thumbs down (1) to a record.

        Raises InvalidFeedbackError for any other rating, before touching the store.
        Returns False if the record does not exist.
        """
        if isinstance(rating, bool) or rating not in VALID_RATINGS:
            raise InvalidFeedbackError(f"rating must be one of {VALID_RATINGS}, got {rating!r}")

        with self._lock:
            queued = self._queued.get(query_id)
            if queued is not None:
                changes = self._feedback_changes(queued.feedback_rating, queued.feedback_comment, rating, comment)
                for column, value in (changes or {}).items():
                    setattr(queued, column, value)
                logger.info(f"Feedback recorded for queued {query_id}: rating={rating}")
                return True

        with get_db(self.db_path) as conn:
            row = conn.execute(
                'SELECT feedback_rating, feedback_comment FROM query_records WHERE id = ?',
                (query_id,)
            ).fetchone()
            if row is None:
                logger.info(f"Feedback for unknown query {query_id}")
                return False
            changes = self._feedback_changes(row['feedback_rating'], row['feedback_comment'], rating, comment)
            if changes is None:
                return True
            assignments = ', '.join(f'{column} = ?' for column in changes)
            conn.execute(f'UPDATE query_records SET {assignments} WHERE id = ?',
                         tuple(changes.values()) + (query_id,))

        logger.info(f"Feedback recorded for {query_id}: rating={rating}")
        return True

    def _queued_by_hash(self, ref: str) -> Optional[QueryRecord]:
        matches = [r for r in self._queued.values() if r.query_hash == ref]
        return max(matches, key=lambda r: r.created_at) if matches else None

    def record_mismatch(self, query_ref: str, details: str) -> bool:
        """
        Flag a record as an entity mismatch.

        query_ref is a record id, or a query hash (the most recent record with
        that hash is flagged). Returns False for empty details or unknown refs.
        """
        if not details or not query_ref:
            return False

        with self._lock:
            queued = self._queued.get(query_ref)
            if queued is not None:
                queued.entity_mismatch, queued.mismatch_details = True, details
                return True

        with get_db(self.db_path) as conn:
            row = conn.execute('SELECT id FROM query_records WHERE id = ?', (query_ref,)).fetchone()
            if row is None:
                with self._lock:
                    queued = self._queued_by_hash(query_ref)
                    if queued is not None:
                        queued.entity_mismatch, queued.mismatch_details = True, details
                        return True
                row = conn.execute('''
                    SELECT id FROM query_records
                    WHERE query_hash = ?
                    ORDER BY created_at DESC LIMIT 1
                ''', (query_ref,)).fetchone()
            if row is None:
                logger.info(f"Mismatch report for unknown query {query_ref}")
                return False
            conn.execute('''
                UPDATE query_records
                SET entity_mismatch = ?, mismatch_details = ?
                WHERE id = ?
            ''', (True, details, row['id']))
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, query_id: str) -> Optional[QueryRecord]:
        with get_db(self.db_path) as conn:
            row = conn.execute('SELECT * FROM query_records WHERE id = ?', (query_id,)).fetchone()
        return QueryRecord.from_row(row) if row else None

    def get_queries_needing_attention(self, limit: int = 50, window_days: Optional[int] = None) -> List[Dict]:
        """
        Recent records worth a human look: negative feedback, entity mismatch,
        low-confidence fallback classification, or a suspiciously short answer.
        """
        thresholds = Config.LEARNING_THRESHOLDS
        if window_days is None:
            window_days = thresholds.window_days

        with get_db(self.db_path) as conn:
            rows = conn.execute('''
                SELECT * FROM query_records
                WHERE created_at >= ?
                  AND (feedback_rating = 1
                       OR entity_mismatch = ?
                       OR (was_llm_classified = ? AND intent_confidence < ?)
                       OR (response_length IS NOT NULL AND response_length < ?))
                ORDER BY created_at DESC
                LIMIT ?
            ''', (utc_since(window_days), True, True, thresholds.attention_confidence,
                  thresholds.attention_min_response_length, limit)).fetchall()

        results = []
        for row in rows:
            record = QueryRecord.from_row(row)
            reasons = []
            if record.feedback_rating == 1:
                reasons.append('negative_feedback')
            if record.entity_mismatch:
                reasons.append('entity_mismatch')
            if (record.was_llm_classified and record.intent_confidence is not None
                    and record.intent_confidence < thresholds.attention_confidence):
                reasons.append('low_confidence')
            if record.response_length is not None and record.response_length < thresholds.attention_min_response_length:
                reasons.append('short_response')
            item = record.to_dict()
            item['reasons'] = reasons
            results.append(item)
        return results


# ---------------------------------------------------------------------------
# Process-wide tracker
# ---------------------------------------------------------------------------

_tracker = None
_tracker_lock = threading.Lock()


def get_tracker() -> QueryTracker:
    global _tracker
    if _tracker is None:
        with _tracker_lock:
            if _tracker is None:
                _tracker = QueryTracker()
                atexit.register(_tracker.shutdown)
    return _tracker


def track_query(record: QueryRecord) -> str:
    return get_tracker().track_query(record)


def record_feedback(query_id: str, rating: int, comment: Optional[str] = None) -> bool:
    return get_tracker().record_feedback(query_id, rating, comment)


def record_mismatch(query_ref: str, details: str) -> bool:
    return get_tracker().record_mismatch(query_ref, details)
