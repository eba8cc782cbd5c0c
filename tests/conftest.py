"""
Pytest configuration and shared fixtures for SportBot query intelligence tests.
"""

import os
import sys
import tempfile

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables before importing project modules
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="sportbot-test-")
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATA_DIR", _TEST_DATA_DIR)
os.environ.setdefault("LOG_DIR", _TEST_DATA_DIR)
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("DATABASE_URL", None)
os.environ.pop("REDIS_URL", None)
os.environ.pop("SENTRY_DSN", None)

from config import Config  # noqa: E402
from entity_extractor import EntityRegistry  # noqa: E402
from intelligence.db import init_query_tables  # noqa: E402
from query_classifier import IntentClassifier, load_patterns  # noqa: E402
from query_tracker import QueryRecord, QueryTracker  # noqa: E402


class StubFallback:
    """Fallback classifier returning a fixed answer and counting calls."""

    def __init__(self, intent="GENERAL_INFO", confidence=0.72, error=None, delay=0.0):
        self.intent = intent
        self.confidence = confidence
        self.error = error
        self.delay = delay
        self.calls = []

    def __call__(self, text):
        self.calls.append(text)
        if self.delay:
            import time
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {"intent": self.intent, "confidence": self.confidence}


@pytest.fixture(scope="session")
def registry():
    return EntityRegistry.from_file(Config.LEXICONS_PATH)


@pytest.fixture(scope="session")
def patterns():
    return load_patterns(Config.INTENT_PATTERNS_PATH)


@pytest.fixture
def stub_fallback():
    return StubFallback()


@pytest.fixture
def classifier(patterns, stub_fallback):
    clf = IntentClassifier(patterns, fallback=stub_fallback, timeout=2.0)
    yield clf
    clf.shutdown()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "queries.db")
    init_query_tables(path)
    return path


@pytest.fixture
def tracker(db_path):
    t = QueryTracker(db_path, workers=1, max_retries=2, retry_backoff=0)
    yield t
    t.shutdown()


@pytest.fixture
def add_record(tracker):
    """Persist a record synchronously and return its id."""

    def _add(raw_query="who won the game last night", **kwargs):
        record = QueryRecord(raw_query=raw_query, **kwargs)
        query_id = tracker.track_query(record)
        assert tracker.flush(timeout=5)
        return query_id

    return _add


@pytest.fixture
def app(db_path, classifier, tracker, registry):
    from app import create_app
    return create_app(db_path=db_path, classifier=classifier, tracker=tracker,
                      registry=registry, start_scheduler=False, prompts_ttl=60)


@pytest.fixture
def client(app):
    return app.test_client()
