"""
Intent classifier for SportBot queries.

Deterministic regex patterns (data/intent_patterns.json) are tried first, in
priority order; the first match wins with confidence 1.0. Queries no pattern
recognizes go to a probabilistic fallback (GPT-4o-mini by default), bounded by
a timeout. A failed or slow fallback degrades to UNKNOWN instead of raising.
"""
import hashlib
import json
import logging
import math
import re
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from config import Config
from errors import ClassificationFallbackFailure

logger = logging.getLogger(__name__)


class QueryIntent(str, Enum):
    PLAYER_STATS = 'PLAYER_STATS'
    TEAM_STATS = 'TEAM_STATS'
    PLAYER_COMPARISON = 'PLAYER_COMPARISON'
    MATCH_PREDICTION = 'MATCH_PREDICTION'
    MATCH_RESULT = 'MATCH_RESULT'
    STANDINGS = 'STANDINGS'
    LINEUP = 'LINEUP'
    INJURY_NEWS = 'INJURY_NEWS'
    TRANSFER_NEWS = 'TRANSFER_NEWS'
    HEAD_TO_HEAD = 'HEAD_TO_HEAD'
    FORM_CHECK = 'FORM_CHECK'
    BETTING_ANALYSIS = 'BETTING_ANALYSIS'
    SCHEDULE = 'SCHEDULE'
    GENERAL_INFO = 'GENERAL_INFO'
    OUR_ANALYSIS = 'OUR_ANALYSIS'
    UNKNOWN = 'UNKNOWN'

    @classmethod
    def parse(cls, value) -> 'QueryIntent':
        """Map a name (any case) to an intent; anything unrecognized is UNKNOWN."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN


def normalize_query(text: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    if not text:
        return ''
    return re.sub(r'\s+', ' ', text.strip().lower())


def query_hash(normalized: str) -> str:
    """Stable 16-char key for a normalized question."""
    return hashlib.md5(normalized.encode('utf-8')).hexdigest()[:16]


@dataclass(frozen=True)
class IntentPattern:
    id: str
    intent: QueryIntent
    priority: int
    regex: 're.Pattern'

    def matches(self, normalized_query: str) -> bool:
        return self.regex.search(normalized_query) is not None


def load_patterns(path: Optional[str] = None) -> List[IntentPattern]:
    """
    Load intent patterns from JSON and return them sorted by priority
    (highest first). Entries keep file order within a priority.

    Each entry: {"id": ..., "intent": ..., "priority": int, "pattern": regex}
    """
    path = path or Config.INTENT_PATTERNS_PATH
    with open(path, 'r', encoding='utf-8') as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise ValueError(f"Intent pattern file {path} must contain a JSON list")

    patterns = []
    seen_ids = set()
    for entry in entries:
        pattern_id = entry['id']
        if pattern_id in seen_ids:
            raise ValueError(f"Duplicate intent pattern id '{pattern_id}' in {path}")
        seen_ids.add(pattern_id)
        intent = QueryIntent.parse(entry['intent'])
        if intent is QueryIntent.UNKNOWN:
            raise ValueError(f"Pattern '{pattern_id}' has unknown intent '{entry['intent']}'")
        patterns.append(IntentPattern(
            id=pattern_id,
            intent=intent,
            priority=int(entry.get('priority', 0)),
            regex=re.compile(entry['pattern']),
        ))

    # sorted() is stable, so ties keep file order
    patterns = sorted(patterns, key=lambda p: -p.priority)
    logger.info(f"Loaded {len(patterns)} intent patterns from {path}")
    return patterns


def _confidence(value) -> float:
    """Fallback confidence as a float in [0, 1]; NaN, inf and non-numbers are failures."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        raise ClassificationFallbackFailure(f"non-numeric confidence: {value!r}")
    if not math.isfinite(confidence):
        raise ClassificationFallbackFailure(f"non-finite confidence: {value!r}")
    return max(0.0, min(1.0, confidence))


class IntentClassifier:
    """
    Pattern-first intent classifier.

    Args:
        patterns: IntentPattern list, already in priority order
        fallback: callable(text) -> {"intent": str, "confidence": float}, or None
        timeout: seconds to wait for the fallback before giving up
        cache: optional ClassificationCache for successful fallback results
    """

    def __init__(self, patterns: List[IntentPattern],
                 fallback: Optional[Callable[[str], Dict]] = None,
                 timeout: Optional[float] = None,
                 cache=None,
                 max_workers: int = 4):
        self.patterns = tuple(patterns)
        self.fallback = fallback
        self.timeout = timeout if timeout is not None else Config.LLM_CLASSIFY_TIMEOUT
        self.cache = cache
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix='intent-fallback')

    def match_pattern(self, normalized_query: str) -> Optional[IntentPattern]:
        for pattern in self.patterns:
            if pattern.matches(normalized_query):
                return pattern
        return None

    def classify(self, normalized_query: str) -> Dict:
        """
        Returns:
            Dict with intent (QueryIntent), confidence (float in [0,1]),
            matched_pattern_id (str or None), was_llm_classified (bool)
        """
        pattern = self.match_pattern(normalized_query)
        if pattern is not None:
            return {
                'intent': pattern.intent,
                'confidence': 1.0,
                'matched_pattern_id': pattern.id,
                'was_llm_classified': False,
            }

        try:
            result = self._fallback_classify(normalized_query)
        except ClassificationFallbackFailure as e:
            logger.warning(f"Fallback classification failed, using UNKNOWN: {e}")
            result = {'intent': QueryIntent.UNKNOWN, 'confidence': 0.0}

        return {
            'intent': result['intent'],
            'confidence': result['confidence'],
            'matched_pattern_id': None,
            'was_llm_classified': True,
        }

    def _fallback_classify(self, normalized_query: str) -> Dict:
        if self.fallback is None:
            raise ClassificationFallbackFailure("no fallback classifier configured")

        if self.cache is not None:
            cached = self.cache.get(normalized_query)
            if cached is not None:
                try:
                    return {'intent': QueryIntent.parse(cached.get('intent')),
                            'confidence': _confidence(cached.get('confidence', 0.0))}
                except (AttributeError, ClassificationFallbackFailure) as e:
                    logger.warning(f"Ignoring bad cached classification: {e}")

        future = self._executor.submit(self.fallback, normalized_query)
        try:
            raw = future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            raise ClassificationFallbackFailure(f"timed out after {self.timeout}s")
        except ClassificationFallbackFailure:
            raise
        except Exception as e:
            raise ClassificationFallbackFailure(str(e)) from e

        if not isinstance(raw, dict):
            raise ClassificationFallbackFailure(f"unexpected fallback result: {raw!r}")
        confidence = _confidence(raw.get('confidence', 0.0))
        result = {'intent': QueryIntent.parse(raw.get('intent')), 'confidence': confidence}

        if self.cache is not None:
            self.cache.set(normalized_query, {'intent': result['intent'].value,
                                              'confidence': confidence})
        return result

    def shutdown(self):
        self._executor.shutdown(wait=False)


CLASSIFIER_PROMPT = """You are the query classifier for SportBot, a sports information assistant. Classify the user's question into exactly ONE intent.

Intents:
- PLAYER_STATS: a player's numbers (goals, points, averages)
- TEAM_STATS: a team's numbers or record
- PLAYER_COMPARISON: comparing two or more players
- MATCH_PREDICTION: who will win an upcoming game
- MATCH_RESULT: the score or outcome of a finished game
- STANDINGS: league table, rankings, playoff picture
- LINEUP: starting lineups, who is playing
- INJURY_NEWS: injuries, availability
- TRANSFER_NEWS: transfers, trades, signings
- HEAD_TO_HEAD: history between two teams
- FORM_CHECK: recent form, streaks
- BETTING_ANALYSIS: odds, spreads, bets
- SCHEDULE: when a game is played
- GENERAL_INFO: other sports facts
- OUR_ANALYSIS: questions about SportBot's own predictions or track record
- UNKNOWN: not a sports question, or impossible to tell

Respond with ONLY a JSON object, nothing else:
{{"intent": "ONE_OF_THE_ABOVE", "confidence": 0.0 to 1.0}}

User query: "{query}"
"""


class OpenAIFallbackClassifier:
    """Fallback contract implementation backed by the OpenAI chat API."""

    def __init__(self, openai_client=None, model: Optional[str] = None):
        self._client = openai_client
        self.model = model or Config.CLASSIFIER_MODEL

    @property
    def client(self):
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=Config.OPENAI_API_KEY,
                                  timeout=Config.LLM_CLASSIFY_TIMEOUT, max_retries=0)
        return self._client

    def __call__(self, text: str) -> Dict:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "user", "content": CLASSIFIER_PROMPT.format(query=text)}
            ],
            max_tokens=60,
            temperature=0.0,
            response_format={"type": "json_object"},
        )
        result_text = (response.choices[0].message.content or '').strip()

        json_match = re.search(r'\{[\s\S]*\}', result_text)
        if not json_match:
            raise ClassificationFallbackFailure(f"no JSON in classifier reply: {result_text[:80]}")
        try:
            parsed = json.loads(json_match.group())
        except json.JSONDecodeError as e:
            raise ClassificationFallbackFailure(f"bad JSON from classifier: {e}") from e

        intent = QueryIntent.parse(parsed.get('intent'))
        confidence = parsed.get('confidence', 0.5)
        logger.debug(f"LLM classified '{text[:50]}' as {intent.value} ({confidence})")
        return {'intent': intent.value, 'confidence': confidence}


_default_classifier = None
_classifier_lock = threading.Lock()


def get_default_classifier() -> IntentClassifier:
    """Process-wide classifier: patterns from Config, OpenAI fallback, shared cache."""
    global _default_classifier
    if _default_classifier is None:
        with _classifier_lock:
            if _default_classifier is None:
                from cache import ClassificationCache
                fallback = OpenAIFallbackClassifier() if Config.OPENAI_API_KEY else None
                if fallback is None:
                    logger.warning("OPENAI_API_KEY not set, unmatched queries classify as UNKNOWN")
                _default_classifier = IntentClassifier(
                    load_patterns(),
                    fallback=fallback,
                    cache=ClassificationCache(),
                )
    return _default_classifier


def classify_query(text: str, classifier: Optional[IntentClassifier] = None,
                   registry=None) -> Dict:
    """
    Understand a raw user question: normalize, classify, extract entities.

    Returns the classifier's dict plus 'normalized_query' and 'entities'
    (sorted list).
    """
    from entity_extractor import extract_entities

    classifier = classifier or get_default_classifier()
    normalized = normalize_query(text)
    result = classifier.classify(normalized)
    result['normalized_query'] = normalized
    result['entities'] = sorted(extract_entities(normalized, registry=registry))
    return result
