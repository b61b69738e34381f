"""Structured output schemas for LLM calls."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from expert_match.types import QueryIntent


class QueryClassification(BaseModel):
    """Routing output. Confidence is informational and never gates anything."""

    intent: QueryIntent
    confidence: int = Field(ge=0, le=100)
    reasoning: str = ""
    extracted_requirements: dict[str, Any] = Field(default_factory=dict)


class SkillMatchAnalysis(BaseModel):
    must_have_match_score: int = Field(ge=0, le=10)
    nice_to_have_match_score: int = Field(ge=0, le=10)
    missing_skills: list[str] = Field(default_factory=list)
    strength_skills: list[str] = Field(default_factory=list)


class ExperienceAssessment(BaseModel):
    relevant_projects_count: int = Field(default=0, ge=0)
    domain_experience_years: float = Field(default=0.0, ge=0.0)
    customer_industry_match: bool = False
    seniority_match: bool = False


class RecommendationType(str, Enum):
    STRONGLY_RECOMMEND = "STRONGLY_RECOMMEND"
    RECOMMEND = "RECOMMEND"
    CONDITIONAL = "CONDITIONAL"
    NOT_RECOMMEND = "NOT_RECOMMEND"


class Recommendation(BaseModel):
    recommendation_type: RecommendationType
    confidence: int = Field(ge=0, le=100)
    rationale: str = ""


class ExpertEvaluation(BaseModel):
    """Evaluation whose field order fixes the reasoning chain.

    The model fills the summary first, then the skill analysis, then the
    experience assessment, and only then commits to a recommendation.
    """

    expert_id: str
    expert_summary: str
    skill_match_analysis: SkillMatchAnalysis
    experience_assessment: ExperienceAssessment
    recommendation: Recommendation


class ExpertEvaluationList(BaseModel):
    evaluations: list[ExpertEvaluation] = Field(default_factory=list)


class CycleCritique(BaseModel):
    has_gaps: bool
    gaps: list[str] = Field(default_factory=list)
    feedback: str = ""


class SynthesizedAnswer(BaseModel):
    answer: str


class GapAnalysis(BaseModel):
    missing_skills: list[str] = Field(default_factory=list)
    missing_technologies: list[str] = Field(default_factory=list)
    missing_domains: list[str] = Field(default_factory=list)
    ambiguities: list[str] = Field(default_factory=list)
    needs_expansion: bool = False
    rationale: str = ""

    def gap_terms(self) -> set[str]:
        return {
            term.strip()
            for term in [*self.missing_skills, *self.missing_technologies, *self.missing_domains]
            if term.strip()
        }


class HistorySummary(BaseModel):
    summary: str


class RankedExpert(BaseModel):
    expert_id: str
    relevance: float = Field(ge=0.0, le=1.0)


class RerankResult(BaseModel):
    ranking: list[RankedExpert] = Field(default_factory=list)
