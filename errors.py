"""Exception types shared by the classifier, tracker and learning modules."""


class QueryIntelligenceError(Exception):
    """Base class for query intelligence errors."""


class InvalidQueryRecord(QueryIntelligenceError, ValueError):
    """A QueryRecord violates one of its field invariants."""


class InvalidFeedbackError(QueryIntelligenceError, ValueError):
    """Feedback rating outside {1, 5}; rejected before any write."""


class ClassificationFallbackFailure(QueryIntelligenceError):
    """The probabilistic fallback classifier failed or timed out."""


class PersistenceFailure(QueryIntelligenceError):
    """A tracking write could not be persisted after all retries."""
