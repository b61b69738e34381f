"""Retrieval source contracts and the searchers built on top of them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from expert_match.config import GRAPH_SOURCE, KEYWORD_SOURCE, VECTOR_SOURCE
from expert_match.errors import EmbeddingUnavailableError
from expert_match.types import ParsedQuery, SourceResult


@dataclass(slots=True)
class VectorHit:
    expert_id: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


class EmbeddingService(Protocol):
    def embed(self, text: str) -> list[float]:
        """Embed one text."""


class VectorSearch(Protocol):
    """Similarity search over embedded expert profiles."""

    def search(
        self, embedding: list[float], max_results: int, min_similarity: float
    ) -> list[VectorHit]:
        """Return hits ordered by descending similarity."""


class GraphSearch(Protocol):
    """Relationship traversal over experts, projects, technologies and customers."""

    def by_technology(self, technology: str, max_results: int) -> list[str]:
        """Experts who worked with the technology."""

    def by_technologies(self, technologies: list[str], max_results: int) -> list[str]:
        """Experts who worked with all of the technologies."""

    def by_domain(self, domain: str, max_results: int) -> list[str]:
        """Experts with project experience in the domain."""

    def by_customer(self, customer: str, max_results: int) -> list[str]:
        """Experts who worked for the customer."""


class KeywordSearch(Protocol):
    """Full-text search over expert profiles."""

    def by_keywords(self, keywords: list[str], max_results: int) -> list[str]:
        """Experts ordered by keyword relevance."""

    def by_technologies(self, technologies: list[str], max_results: int) -> list[str]:
        """Experts ordered by technology-name relevance."""


class SourceSearcher(Protocol):
    """One independently failing retrieval source."""

    name: str

    def search(
        self,
        parsed_query: ParsedQuery,
        max_results: int,
        *,
        min_similarity: float | None = None,
    ) -> SourceResult:
        """Return ordered expert ids; similarity-based sources honor `min_similarity`."""


class VectorSourceSearcher:
    """Embeds the query and keeps hits at or above a similarity threshold."""

    name = VECTOR_SOURCE

    def __init__(
        self,
        vector_search: VectorSearch,
        embedding_service: EmbeddingService,
        *,
        min_similarity: float = 0.7,
    ) -> None:
        self.vector_search = vector_search
        self.embedding_service = embedding_service
        self.min_similarity = min_similarity

    def search(
        self,
        parsed_query: ParsedQuery,
        max_results: int,
        *,
        min_similarity: float | None = None,
    ) -> SourceResult:
        threshold = self.min_similarity if min_similarity is None else min_similarity
        try:
            embedding = self.embedding_service.embed(query_embedding_text(parsed_query))
        except Exception as exc:
            raise EmbeddingUnavailableError(f"embedding failed: {exc}") from exc

        hits = self.vector_search.search(embedding, max_results, threshold)
        ids: list[str] = []
        scores: dict[str, float] = {}
        for hit in hits:
            if hit.similarity < threshold or hit.expert_id in scores:
                continue
            ids.append(hit.expert_id)
            scores[hit.expert_id] = max(0.0, min(1.0, hit.similarity))
        return SourceResult(source=self.name, expert_ids=ids[:max_results], scores=scores)


class GraphSourceSearcher:
    """Combines technology, skill, domain and customer traversals."""

    name = GRAPH_SOURCE

    def __init__(self, graph_search: GraphSearch) -> None:
        self.graph_search = graph_search

    def search(
        self,
        parsed_query: ParsedQuery,
        max_results: int,
        *,
        min_similarity: float | None = None,
    ) -> SourceResult:
        found: list[str] = []
        technologies = sorted(parsed_query.technologies)
        if len(technologies) == 1:
            found.extend(self.graph_search.by_technology(technologies[0], max_results))
        elif technologies:
            found.extend(self.graph_search.by_technologies(technologies, max_results))

        for skill in sorted(parsed_query.skills):
            found.extend(self.graph_search.by_technology(skill, max_results))
        for domain in sorted(parsed_query.domains):
            found.extend(self.graph_search.by_domain(domain, max_results))
        for customer in sorted(parsed_query.customers):
            found.extend(self.graph_search.by_customer(customer, max_results))

        return SourceResult(source=self.name, expert_ids=_dedupe(found)[:max_results])


class KeywordSourceSearcher:
    name = KEYWORD_SOURCE

    def __init__(self, keyword_search: KeywordSearch) -> None:
        self.keyword_search = keyword_search

    def search(
        self,
        parsed_query: ParsedQuery,
        max_results: int,
        *,
        min_similarity: float | None = None,
    ) -> SourceResult:
        keywords = sorted(parsed_query.skills | parsed_query.technologies)
        if not keywords:
            return SourceResult.empty(self.name)
        found = self.keyword_search.by_keywords(keywords, max_results)
        return SourceResult(source=self.name, expert_ids=_dedupe(found)[:max_results])


def query_embedding_text(parsed_query: ParsedQuery) -> str:
    parts = [parsed_query.text.strip()]
    parts.extend(sorted(parsed_query.terms()))
    return " ".join(part for part in parts if part)


def _dedupe(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for expert_id in ids:
        if expert_id not in seen:
            seen.add(expert_id)
            ordered.append(expert_id)
    return ordered
