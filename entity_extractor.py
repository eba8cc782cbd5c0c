"""
Entity extraction for sports queries and answers.

Known teams and players live in per-domain lexicons (data/lexicons.json).
Each domain is wrapped in an EntityMatcher and registered by name in an
EntityRegistry, so adding a team, player or whole sport is a data change.
"""

import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from config import Config

logger = logging.getLogger(__name__)


class EntityMatcher(ABC):
    """Capability: find the entities of one domain in a piece of text."""

    @abstractmethod
    def matches(self, text: str) -> Set[str]:
        """Return the lowercased entity names found in text."""


class LexiconMatcher(EntityMatcher):
    """Word-boundary matcher over a fixed list of terms."""

    def __init__(self, terms: Iterable[str]):
        cleaned = {t.strip().lower() for t in terms if t and t.strip()}
        self.terms = frozenset(cleaned)
        if not cleaned:
            self._pattern = None
            return
        # Longest first so "man city" wins over "man", "trail blazers" over "blazers"
        ordered = sorted(cleaned, key=lambda t: (-len(t), t))
        alternation = '|'.join(r'\s+'.join(re.escape(w) for w in t.split()) for t in ordered)
        self._pattern = re.compile(r'(?<![\w-])(' + alternation + r')(?![\w-])')

    def matches(self, text: str) -> Set[str]:
        if not text or self._pattern is None:
            return set()
        found = set()
        for m in self._pattern.finditer(text.lower()):
            found.add(re.sub(r'\s+', ' ', m.group(1)))
        return found

    def __repr__(self):
        return f"LexiconMatcher({len(self.terms)} terms)"


class EntityRegistry:
    """Mapping of domain name → EntityMatcher."""

    def __init__(self, matchers: Optional[Dict[str, EntityMatcher]] = None):
        self._matchers: Dict[str, EntityMatcher] = dict(matchers or {})

    def register(self, domain: str, matcher: EntityMatcher):
        if not isinstance(matcher, EntityMatcher):
            raise TypeError(f"Matcher for '{domain}' must be an EntityMatcher")
        self._matchers[domain] = matcher

    def unregister(self, domain: str):
        self._matchers.pop(domain, None)

    def domains(self) -> List[str]:
        return sorted(self._matchers)

    def extract(self, text: str) -> Set[str]:
        """Union of every domain's matches, deduplicated."""
        entities = set()
        if not text:
            return entities
        for matcher in self._matchers.values():
            entities |= matcher.matches(text)
        return entities

    def extract_by_domain(self, text: str) -> Dict[str, Set[str]]:
        """Matches grouped by domain (domains with no hits omitted)."""
        result = {}
        for domain, matcher in self._matchers.items():
            hits = matcher.matches(text)
            if hits:
                result[domain] = hits
        return result

    @classmethod
    def from_lexicons(cls, lexicons: Dict[str, Iterable[str]]) -> 'EntityRegistry':
        registry = cls()
        for domain, terms in lexicons.items():
            registry.register(domain, LexiconMatcher(terms))
        return registry

    @classmethod
    def from_file(cls, path: str) -> 'EntityRegistry':
        """Load a registry from a JSON file of {domain: [terms...]}."""
        with open(path, 'r', encoding='utf-8') as f:
            lexicons = json.load(f)
        if not isinstance(lexicons, dict):
            raise ValueError(f"Lexicon file {path} must contain a JSON object")
        registry = cls.from_lexicons(lexicons)
        logger.info(f"Loaded {len(lexicons)} entity lexicons from {path}")
        return registry


_default_registry = None
_registry_lock = threading.Lock()


def get_default_registry() -> EntityRegistry:
    """Registry built from Config.LEXICONS_PATH, loaded once per process."""
    global _default_registry
    if _default_registry is None:
        with _registry_lock:
            if _default_registry is None:
                _default_registry = EntityRegistry.from_file(Config.LEXICONS_PATH)
    return _default_registry


def extract_entities(text: str, registry: Optional[EntityRegistry] = None) -> Set[str]:
    """Extract known team and player names from text."""
    if registry is None:
        registry = get_default_registry()
    return registry.extract(text)
