"""
Per-query traces for the SportBot pipeline.

Every question gets a short trace_id. Each pipeline step (classify, generate,
mismatch_check, track) is timed, and finish() writes one DONE line with the
intent and answer source plus the full record at DEBUG, all on the
sportbot.trace logger (routed to traces.log by logging_config).

    trace = Trace(question, user_id=user_id)
    trace.step("classify", intent=QueryIntent.PLAYER_STATS, pattern="player_stats.how_many")
    ...
    trace.finish(intent=QueryIntent.PLAYER_STATS, source="VERIFIED_STATS")
"""

import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

logger = logging.getLogger("sportbot.trace")

MAX_QUESTION_CHARS = 200


class Trace:
    """Timing and metadata for one question through the pipeline."""

    def __init__(self, question: str, user_id: Optional[str] = None):
        self.trace_id = uuid.uuid4().hex[:12]
        self.question = question[:MAX_QUESTION_CHARS]
        self.user_id = user_id
        self.steps = []
        self._started = time.perf_counter()
        self._last = self._started

        logger.info(f"[{self.trace_id}] START | q=\"{self.question[:80]}\" | user={user_id}")

    def _ms_since(self, mark: float) -> int:
        return round((time.perf_counter() - mark) * 1000)

    def step(self, name: str, **fields):
        now = time.perf_counter()
        step = {
            "name": name,
            "elapsed_ms": round((now - self._last) * 1000),
            "total_ms": round((now - self._started) * 1000),
        }
        if fields:
            step["data"] = {k: _safe_serialize(v) for k, v in fields.items()}
        self.steps.append(step)
        self._last = now

        logger.debug(f"[{self.trace_id}] {name} ({step['elapsed_ms']}ms){_format_fields(step.get('data'))}")

    def finish(self, **outcome) -> Dict:
        """Log the DONE line and the full record; returns the record."""
        total_ms = self._ms_since(self._started)
        outcome = {k: _safe_serialize(v) for k, v in outcome.items()}
        record = {
            "trace_id": self.trace_id,
            "question": self.question,
            "user_id": self.user_id,
            "total_ms": total_ms,
            "step_count": len(self.steps),
            "steps": self.steps,
            "outcome": outcome,
        }

        path = " → ".join(s["name"] for s in self.steps)
        logger.info(
            f"[{self.trace_id}] DONE {total_ms}ms | "
            f"intent={outcome.get('intent', '?')} source={outcome.get('source', '?')} | {path}"
        )
        logger.debug(f"[{self.trace_id}] TRACE_RECORD: {json.dumps(record, default=str)}")
        return record


def _format_fields(data: Optional[Dict]) -> str:
    if not data:
        return ""
    return " | " + " ".join(f"{k}={v}" for k, v in data.items())


def _safe_serialize(value: Any) -> Any:
    """Truncate long strings and summarize big collections for log lines."""
    if isinstance(getattr(value, 'value', None), str):
        return value.value  # QueryIntent, ResponseSource
    if isinstance(value, str):
        return value[:MAX_QUESTION_CHARS]
    if isinstance(value, (list, tuple)):
        return f"[{len(value)} items]" if len(value) > 5 else value
    if isinstance(value, dict):
        return f"{{{len(value)} keys}}" if len(value) > 5 else value
    if isinstance(value, (int, float, bool, type(None))):
        return value
    return str(value)[:100]
