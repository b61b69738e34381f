"""Query parsing: entity extraction against a known vocabulary plus intent keywords."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from typing import Protocol

from expert_match.types import ParsedQuery, QueryIntent

_INTENT_KEYWORDS: list[tuple[QueryIntent, tuple[str, ...]]] = [
    (QueryIntent.RFP_RESPONSE, ("rfp", "proposal", "tender", "bid")),
    (QueryIntent.TEAM_FORMATION, ("team", "squad", "staff", "staffing")),
]


class QueryParser(Protocol):
    def parse(self, text: str) -> ParsedQuery:
        """Extract intent and entities from a raw query."""


class VocabularyQueryParser:
    """Matches whole terms from the expert vocabulary inside the query text.

    `vocabulary` is called on every parse, so terms added to the store later
    are recognized without rebuilding the parser.
    """

    def __init__(self, vocabulary: Callable[[], Mapping[str, Iterable[str]]]) -> None:
        self._vocabulary = vocabulary

    def parse(self, text: str) -> ParsedQuery:
        lowered = text.lower()
        vocabulary = self._vocabulary()
        found = {
            category: frozenset(
                term for term in vocabulary.get(category, ()) if _contains_term(lowered, term)
            )
            for category in ("skills", "technologies", "domains", "customers")
        }
        technologies = found["technologies"]
        skills = found["skills"] - technologies
        return ParsedQuery(
            text=text.strip(),
            intent=_detect_intent(lowered, skills | technologies, found["domains"]),
            skills=skills,
            technologies=technologies,
            domains=found["domains"],
            customers=found["customers"],
        )


def _detect_intent(lowered: str, skill_terms: frozenset[str], domains: frozenset[str]) -> QueryIntent:
    for intent, keywords in _INTENT_KEYWORDS:
        if any(_contains_term(lowered, keyword) for keyword in keywords):
            return intent
    if domains and not skill_terms:
        return QueryIntent.DOMAIN_INQUIRY
    return QueryIntent.EXPERT_SEARCH


def _contains_term(lowered_text: str, term: str) -> bool:
    needle = term.strip().lower()
    if not needle:
        return False
    return re.search(rf"(?<![\w]){re.escape(needle)}(?![\w])", lowered_text) is not None
