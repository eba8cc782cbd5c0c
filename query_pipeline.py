"""
Query pipeline for SportBot.
Glues the query intelligence pieces around the answer generator:
classify → generate → mismatch check → track.

The generator is an injected callable:
    generate(understanding) -> {"text": str, "source": str, "citations": [...],
                                "latency_ms": int, "cache_hit": bool (optional)}
"""

import logging
import time
from typing import Callable, Dict, Optional

from mismatch_detector import detect_mismatch
from query_classifier import IntentClassifier, classify_query
from query_tracker import QueryRecord, QueryTracker, ResponseSource, get_tracker
from tracing import Trace

logger = logging.getLogger(__name__)


class QueryPipeline:
    def __init__(self, generate: Callable[[Dict], Dict],
                 classifier: Optional[IntentClassifier] = None,
                 tracker: Optional[QueryTracker] = None,
                 registry=None):
        self.generate = generate
        self.classifier = classifier
        self.tracker = tracker
        self.registry = registry

    def run(self, question: str, user_id: Optional[str] = None, context: Optional[Dict] = None) -> Dict:
        """
        Answer one question and record what happened.

        Args:
            question: raw user text
            user_id: optional owner of the query
            context: optional {category, sport, team, league} hints from the UI

        Returns:
            Dict with query_id, answer, source, citations, understanding,
            mismatch and trace_id
        """
        context = context or {}
        trace = Trace(question=question, user_id=user_id)
        start = time.time()

        understanding = classify_query(question, classifier=self.classifier, registry=self.registry)
        trace.step("classify",
                   intent=understanding['intent'],
                   confidence=understanding['confidence'],
                   pattern=understanding['matched_pattern_id'],
                   entities=understanding['entities'])

        response = self.generate(understanding)
        text = response.get('text') or ''
        trace.step("generate", source=response.get('source'), length=len(text))

        mismatch = detect_mismatch(question, text, registry=self.registry)
        trace.step("mismatch_check", has_mismatch=mismatch['has_mismatch'])

        source = response.get('source')
        try:
            source = ResponseSource(source) if source else None
        except ValueError:
            logger.warning(f"Unknown response source '{source}', recording as HYBRID")
            source = ResponseSource.HYBRID

        latency_ms = response.get('latency_ms')
        if latency_ms is None:
            latency_ms = round((time.time() - start) * 1000)

        record = QueryRecord.from_classification(
            question, understanding,
            category=context.get('category') or response.get('category') or understanding['intent'].value,
            sport=context.get('sport'),
            team=context.get('team'),
            league=context.get('league'),
            response_source=source,
            cache_hit=bool(response.get('cache_hit', source is ResponseSource.CACHE)),
            latency_ms=max(0, int(latency_ms)),
            citations=list(response.get('citations') or []),
            response_length=len(text),
            entity_mismatch=mismatch['has_mismatch'],
            mismatch_details=mismatch['details'],
            user_id=user_id,
        )
        tracker = self.tracker or get_tracker()
        query_id = tracker.track_query(record)
        trace.step("track", query_id=query_id)

        trace.finish(intent=understanding['intent'], source=source)
        return {
            'query_id': query_id,
            'answer': text,
            'source': source.value if source else None,
            'citations': record.citations,
            'understanding': understanding,
            'mismatch': mismatch,
            'trace_id': trace.trace_id,
        }
