"""
Entity mismatch detection: did the answer talk about what the user asked?

Compares the teams/players named in the question with those named in the
generated answer. "man city" in the question and "city" in the answer count
as the same entity (substring match in either direction).
"""
import logging
from typing import Dict, Iterable, Optional, Set

from entity_extractor import extract_entities

logger = logging.getLogger(__name__)


def _overlaps(query_entities: Iterable[str], response_entities: Iterable[str]) -> bool:
    response_entities = list(response_entities)
    for q in query_entities:
        for r in response_entities:
            if q in r or r in q:
                return True
    return False


def format_mismatch_details(query_entities: Set[str], response_entities: Set[str]) -> str:
    return (f"Query mentioned [{', '.join(sorted(query_entities))}] "
            f"but response was about [{', '.join(sorted(response_entities))}]")


def detect_mismatch(query: str, response: str, registry=None) -> Dict:
    """
    Returns:
        Dict with has_mismatch (bool), details (str or None),
        query_entities and response_entities (sorted lists)
    """
    query_entities = extract_entities(query or '', registry=registry)
    response_entities = extract_entities(response or '', registry=registry)

    has_mismatch = False
    details: Optional[str] = None
    if query_entities and response_entities and not _overlaps(query_entities, response_entities):
        has_mismatch = True
        details = format_mismatch_details(query_entities, response_entities)
        logger.info(f"Entity mismatch: {details}")

    return {
        'has_mismatch': has_mismatch,
        'details': details,
        'query_entities': sorted(query_entities),
        'response_entities': sorted(response_entities),
    }
