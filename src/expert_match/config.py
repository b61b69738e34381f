"""Configuration models for the expert matching pipeline."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

VECTOR_SOURCE = "vector"
GRAPH_SOURCE = "graph"
KEYWORD_SOURCE = "keyword"


class RetrievalConfig(BaseModel):
    """Configures multi-source fan-out, timeouts and weighted fusion."""

    max_results: int = Field(default=10, ge=1)
    source_max_results: int = Field(default=20, ge=1)
    vector_min_similarity: float = Field(default=0.7, ge=0.0, le=1.0)
    source_timeout_seconds: float = Field(default=5.0, gt=0.0)
    source_timeouts_seconds: dict[str, float] = Field(default_factory=dict)
    default_weights: dict[str, float] = Field(default_factory=dict)
    vector_required: bool = False

    @field_validator("default_weights")
    @classmethod
    def _weights_in_range(cls, value: dict[str, float]) -> dict[str, float]:
        for source, weight in value.items():
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"weight for {source!r} must be within [0, 1]")
        return value

    def timeout_for(self, source: str) -> float:
        return self.source_timeouts_seconds.get(source, self.source_timeout_seconds)


class ReasoningConfig(BaseModel):
    """Configures which reasoning patterns may run and their bounds."""

    routing_enabled: bool = True
    cascade_enabled: bool = True
    cycle_enabled: bool = True
    cycle_max_iterations: int = Field(default=3, ge=1)
    answer_max_experts: int = Field(default=10, ge=1)


class DeepResearchConfig(BaseModel):
    """Configures the iterative gap-analysis loop."""

    max_iterations: int = Field(default=3, ge=0)
    iteration_decay: float = Field(default=0.5, gt=0.0, lt=1.0)
    gap_analysis_top_experts: int = Field(default=5, ge=1)


class HistoryConfig(BaseModel):
    """Configures token-budgeted conversation history."""

    max_tokens: int = Field(default=2000, ge=1)
    chars_per_token: float = Field(default=4.0, gt=0.0)
    message_overhead_tokens: int = Field(default=4, ge=0)
    max_summary_tokens: int = Field(default=500, ge=1)
    min_summary_tokens: int = Field(default=24, ge=1)
    fetch_limit: int = Field(default=50, ge=1)


class PipelineConfig(BaseModel):
    """Aggregate configuration for one pipeline instance."""

    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    reasoning: ReasoningConfig = Field(default_factory=ReasoningConfig)
    deep_research: DeepResearchConfig = Field(default_factory=DeepResearchConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    history_contains_current_query: bool = False
