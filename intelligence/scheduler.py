"""
Query Intelligence — Background Scheduler
===========================================
Periodically regenerates learning insights and records them in the
intelligence_events audit trail.
"""

import json
import logging
import threading

from config import Config
from intelligence.db import log_event
from intelligence.insights import InsightGenerator, Priority

logger = logging.getLogger(__name__)


class LearningScheduler:
    """Runs the learning pass every `interval` seconds on a daemon thread."""

    def __init__(self, generator: InsightGenerator = None, interval: int = None, db_path=None):
        self.db_path = db_path
        self.generator = generator or InsightGenerator(db_path)
        self.interval = interval if interval is not None else Config.SCHEDULER_INTERVAL
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the background learning scheduler."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name='learning-scheduler', daemon=True)
        self._thread.start()
        log_event('scheduler', 'started', db_path=self.db_path)
        logger.info(f"Learning scheduler started (every {self.interval}s)")

    def stop(self, timeout: float = 5.0):
        """Stop the scheduler."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        log_event('scheduler', 'stopped', db_path=self.db_path)

    def _run_loop(self):
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")
                log_event('scheduler', 'error', str(e), 'error', db_path=self.db_path)
            self._stop.wait(self.interval)

    def run_once(self):
        """One learning pass: generate insights, audit each, surface HIGH ones."""
        insights = self.generator.generate_learning_insights()
        for insight in insights:
            severity = 'warning' if insight.priority is Priority.HIGH else 'info'
            log_event('learning', insight.type.value, json.dumps(insight.to_dict()), severity,
                      db_path=self.db_path)
            if insight.priority is Priority.HIGH:
                logger.warning(f"Learning insight [{insight.type.value}]: {insight.description}")
        log_event('scheduler', 'learning_complete', f"{len(insights)} insights", db_path=self.db_path)
        return insights
