"""Shared domain models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from expert_match.obs.tracing import ExecutionTrace
    from expert_match.reasoning.models import QueryClassification


class QueryIntent(str, Enum):
    EXPERT_SEARCH = "EXPERT_SEARCH"
    TEAM_FORMATION = "TEAM_FORMATION"
    RFP_RESPONSE = "RFP_RESPONSE"
    DOMAIN_INQUIRY = "DOMAIN_INQUIRY"


class ReasoningPattern(str, Enum):
    PLAIN = "PLAIN"
    CASCADE = "CASCADE"
    CYCLE = "CYCLE"


@dataclass(slots=True, frozen=True)
class ParsedQuery:
    """A query after entity and intent extraction."""

    text: str
    intent: QueryIntent = QueryIntent.EXPERT_SEARCH
    skills: frozenset[str] = frozenset()
    technologies: frozenset[str] = frozenset()
    domains: frozenset[str] = frozenset()
    customers: frozenset[str] = frozenset()

    def is_empty(self) -> bool:
        return not self.text.strip() and not self.terms()

    def terms(self) -> frozenset[str]:
        return self.skills | self.technologies | self.domains | self.customers

    def with_intent(self, intent: QueryIntent) -> ParsedQuery:
        return replace(self, intent=intent)

    def expanded(
        self,
        *,
        skills: set[str] | frozenset[str] = frozenset(),
        technologies: set[str] | frozenset[str] = frozenset(),
        domains: set[str] | frozenset[str] = frozenset(),
    ) -> ParsedQuery:
        return replace(
            self,
            skills=self.skills | frozenset(skills),
            technologies=self.technologies | frozenset(technologies),
            domains=self.domains | frozenset(domains),
        )


@dataclass(slots=True)
class SourceResult:
    """Ordered expert ids returned by one retrieval source."""

    source: str
    expert_ids: list[str] = field(default_factory=list)
    scores: dict[str, float] | None = None

    @classmethod
    def empty(cls, source: str) -> SourceResult:
        return cls(source=source)


@dataclass(slots=True)
class RetrievalResult:
    """Fused ranking: every id has a score and scores never increase by rank."""

    expert_ids: list[str]
    relevance_scores: dict[str, float]

    @classmethod
    def empty(cls) -> RetrievalResult:
        return cls(expert_ids=[], relevance_scores={})

    def __len__(self) -> int:
        return len(self.expert_ids)

    def score_of(self, expert_id: str) -> float:
        return self.relevance_scores.get(expert_id, 0.0)

    def top(self, limit: int) -> RetrievalResult:
        ids = self.expert_ids[:limit]
        return RetrievalResult(
            expert_ids=ids,
            relevance_scores={expert_id: self.relevance_scores[expert_id] for expert_id in ids},
        )


@dataclass(slots=True)
class ProjectExperience:
    project_id: str
    name: str
    role: str = ""
    technologies: list[str] = field(default_factory=list)
    customer: str = ""
    industry: str = ""


@dataclass(slots=True)
class ExpertContext:
    """An expert record attached to a retrieved id."""

    expert_id: str
    name: str
    email: str = ""
    seniority: str = ""
    skills: list[str] = field(default_factory=list)
    projects: list[ProjectExperience] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def technologies(self) -> list[str]:
        seen: list[str] = []
        for project in self.projects:
            for tech in project.technologies:
                if tech not in seen:
                    seen.append(tech)
        return seen


@dataclass(slots=True)
class ConversationMessage:
    id: str
    chat_id: str
    role: str
    content: str
    sequence_number: int = 0
    message_type: str = "message"
    tokens_used: int | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class QueryOptions:
    """Per-request switches; `None` values fall back to configuration."""

    max_results: int | None = None
    min_similarity: float | None = None
    rerank: bool = False
    deep_research: bool = False
    use_routing_pattern: bool = False
    use_cascade_pattern: bool = False
    use_cycle_pattern: bool = False
    include_execution_trace: bool = True
    fusion_weights: dict[str, float] | None = None
    timeout_seconds: float | None = None


@dataclass(slots=True)
class QueryRequest:
    query: str
    chat_id: str | None = None
    options: QueryOptions = field(default_factory=QueryOptions)


@dataclass(slots=True)
class ExpertMatch:
    expert: ExpertContext
    relevance_score: float
    rank: int


@dataclass(slots=True)
class Source:
    type: str
    id: str
    name: str
    relevance_score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Entity:
    type: str
    name: str


@dataclass(slots=True)
class MatchSummary:
    total: int = 0
    perfect: int = 0
    good: int = 0
    partial: int = 0

    @classmethod
    def from_scores(cls, scores: list[float]) -> MatchSummary:
        summary = cls(total=len(scores))
        for score in scores:
            if score >= 0.9:
                summary.perfect += 1
            elif score >= 0.7:
                summary.good += 1
            else:
                summary.partial += 1
        return summary


@dataclass(slots=True)
class ProgressEvent:
    stage: str
    message: str


@dataclass(slots=True)
class QueryResponse:
    answer: str
    ranked_experts: list[ExpertMatch]
    sources: list[Source]
    entities: list[Entity]
    summary: MatchSummary
    confidence: float
    pattern: ReasoningPattern
    processing_time_ms: float
    classification: QueryClassification | None = None
    execution_trace: ExecutionTrace | None = None
    query_id: str = field(default_factory=lambda: str(uuid.uuid4()))
