"""In-memory expert store with vector, graph and keyword views."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from expert_match.embedding import Embedder, cosine_similarity
from expert_match.retrieval.sources import VectorHit
from expert_match.types import ExpertContext, ProjectExperience


@dataclass(slots=True)
class _StoredExpert:
    expert: ExpertContext
    embedding: list[float]
    terms: frozenset[str]


class InMemoryExpertStore:
    """Deterministic expert store used for tests and local prototyping.

    It doubles as the enrichment source: `load_expert_details` returns the
    stored records for retrieved ids.
    """

    def __init__(self, embedder: Embedder) -> None:
        self.embedder = embedder
        self._store: dict[str, _StoredExpert] = {}

    def upsert(self, experts: list[ExpertContext]) -> None:
        embeddings = self.embedder.embed_many([profile_text(expert) for expert in experts])
        for expert, embedding in zip(experts, embeddings, strict=True):
            self._store[expert.expert_id] = _StoredExpert(
                expert=expert,
                embedding=embedding,
                terms=frozenset(_normalize(term) for term in _profile_terms(expert)),
            )

    def __len__(self) -> int:
        return len(self._store)

    def load_expert_details(self, expert_ids: list[str]) -> list[ExpertContext]:
        return [self._store[expert_id].expert for expert_id in expert_ids if expert_id in self._store]

    def vocabulary(self) -> dict[str, set[str]]:
        """Known terms by category, used by the query parser."""
        vocabulary: dict[str, set[str]] = {
            "skills": set(),
            "technologies": set(),
            "domains": set(),
            "customers": set(),
        }
        for record in self._store.values():
            vocabulary["skills"].update(record.expert.skills)
            for project in record.expert.projects:
                vocabulary["technologies"].update(project.technologies)
                if project.industry:
                    vocabulary["domains"].add(project.industry)
                if project.customer:
                    vocabulary["customers"].add(project.customer)
        return vocabulary

    def records(self) -> list[_StoredExpert]:
        return list(self._store.values())


class InMemoryVectorSearch:
    def __init__(self, store: InMemoryExpertStore) -> None:
        self.store = store

    def search(
        self, embedding: list[float], max_results: int, min_similarity: float
    ) -> list[VectorHit]:
        hits = [
            VectorHit(
                expert_id=record.expert.expert_id,
                similarity=cosine_similarity(embedding, record.embedding),
            )
            for record in self.store.records()
        ]
        ranked = sorted(
            (hit for hit in hits if hit.similarity >= min_similarity),
            key=lambda hit: hit.similarity,
            reverse=True,
        )
        return ranked[:max_results]


class InMemoryGraphSearch:
    """Traverses expert -> project -> technology/customer/industry relations."""

    def __init__(self, store: InMemoryExpertStore) -> None:
        self.store = store

    def by_technology(self, technology: str, max_results: int) -> list[str]:
        wanted = _normalize(technology)
        scored = []
        for record in self.store.records():
            expert = record.expert
            count = sum(
                1
                for project in expert.projects
                if wanted in {_normalize(tech) for tech in project.technologies}
            )
            if wanted in {_normalize(skill) for skill in expert.skills}:
                count += 1
            if count:
                scored.append((expert.expert_id, count))
        return _ranked(scored, max_results)

    def by_technologies(self, technologies: list[str], max_results: int) -> list[str]:
        wanted = {_normalize(tech) for tech in technologies}
        scored = []
        for record in self.store.records():
            expert = record.expert
            known = {_normalize(skill) for skill in expert.skills}
            for project in expert.projects:
                known.update(_normalize(tech) for tech in project.technologies)
            if wanted <= known:
                scored.append((expert.expert_id, len(expert.projects)))
        return _ranked(scored, max_results)

    def by_domain(self, domain: str, max_results: int) -> list[str]:
        wanted = _normalize(domain)
        return self._by_project_field(lambda project: _normalize(project.industry) == wanted, max_results)

    def by_customer(self, customer: str, max_results: int) -> list[str]:
        wanted = _normalize(customer)
        return self._by_project_field(lambda project: _normalize(project.customer) == wanted, max_results)

    def _by_project_field(
        self, predicate: Callable[[ProjectExperience], bool], max_results: int
    ) -> list[str]:
        scored = []
        for record in self.store.records():
            count = sum(1 for project in record.expert.projects if predicate(project))
            if count:
                scored.append((record.expert.expert_id, count))
        return _ranked(scored, max_results)


class InMemoryKeywordSearch:
    def __init__(self, store: InMemoryExpertStore) -> None:
        self.store = store

    def by_keywords(self, keywords: list[str], max_results: int) -> list[str]:
        wanted = {_normalize(keyword) for keyword in keywords if keyword.strip()}
        if not wanted:
            return []
        scored = []
        for record in self.store.records():
            overlap = len(wanted & record.terms)
            if overlap:
                scored.append((record.expert.expert_id, overlap))
        return _ranked(scored, max_results)

    def by_technologies(self, technologies: list[str], max_results: int) -> list[str]:
        return self.by_keywords(technologies, max_results)


def profile_text(expert: ExpertContext) -> str:
    parts = [expert.name, expert.seniority, *expert.skills]
    for project in expert.projects:
        parts.extend([project.name, project.role, project.customer, project.industry])
        parts.extend(project.technologies)
    return " ".join(part for part in parts if part)


def _profile_terms(expert: ExpertContext) -> list[str]:
    terms = list(expert.skills)
    for project in expert.projects:
        terms.extend(project.technologies)
        terms.extend(value for value in (project.customer, project.industry) if value)
    terms.extend(profile_text(expert).split())
    return terms


def _ranked(scored: list[tuple[str, int]], max_results: int) -> list[str]:
    # sorted() is stable, so equal counts keep insertion order.
    ordered = sorted(scored, key=lambda item: item[1], reverse=True)
    return [expert_id for expert_id, _ in ordered[:max_results]]


def _normalize(term: str) -> str:
    return term.strip().lower()
