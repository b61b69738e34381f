"""Optional LLM reranking of the fused expert list."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from expert_match.deadline import Deadline
from expert_match.obs.tracing import ExecutionTracer
from expert_match.reasoning.completion import StructuredCompleter
from expert_match.reasoning.models import RerankResult
from expert_match.reasoning.prompts import RERANK_PROMPT, format_experts
from expert_match.types import ExpertContext, ParsedQuery, RetrievalResult


class ExpertEnricher(Protocol):
    def load_expert_details(self, expert_ids: list[str]) -> list[ExpertContext]:
        """Return expert records for the ids, in the given order, skipping unknown ids."""


class Reranker(ABC):
    """Reranker interface used after score fusion."""

    @abstractmethod
    def rerank(
        self,
        parsed_query: ParsedQuery,
        result: RetrievalResult,
        *,
        tracer: ExecutionTracer,
        deadline: Deadline | None = None,
    ) -> RetrievalResult:
        """Return the result in the final ranking order."""


class StructuredCompletionReranker(Reranker):
    """Asks the LLM for per-expert relevance and reorders by it.

    Ids the model does not know are ignored, ids it leaves out follow in fused
    order, and scores are clamped so they never increase down the list.
    """

    def __init__(self, completer: StructuredCompleter, enricher: ExpertEnricher) -> None:
        self.completer = completer
        self.enricher = enricher

    def rerank(
        self,
        parsed_query: ParsedQuery,
        result: RetrievalResult,
        *,
        tracer: ExecutionTracer,
        deadline: Deadline | None = None,
    ) -> RetrievalResult:
        if len(result) < 2:
            return result

        with tracer.step("Semantic Reranking", "StructuredCompletionReranker", "rerank") as step:
            experts = self.enricher.load_expert_details(result.expert_ids)
            messages = RERANK_PROMPT.format_messages(
                query=parsed_query.text,
                experts=format_experts(experts, result.relevance_scores),
            )
            completion = self.completer.complete(messages, RerankResult, deadline=deadline)
            reranked = merge_ranking(result, [(item.expert_id, item.relevance) for item in completion.value.ranking])

            step.input_summary = f"candidates={len(result)}"
            step.output_summary = f"top={reranked.expert_ids[:3]}"
            step.llm_model = completion.model
            step.token_usage = completion.token_usage
        return reranked


def merge_ranking(result: RetrievalResult, ranking: list[tuple[str, float]]) -> RetrievalResult:
    ordered: list[str] = []
    scores: dict[str, float] = {}
    ceiling = 1.0
    for expert_id, relevance in ranking:
        if expert_id not in result.relevance_scores or expert_id in scores:
            continue
        ceiling = min(ceiling, max(0.0, relevance))
        ordered.append(expert_id)
        scores[expert_id] = ceiling
    for expert_id in result.expert_ids:
        if expert_id in scores:
            continue
        ceiling = min(ceiling, result.relevance_scores[expert_id])
        ordered.append(expert_id)
        scores[expert_id] = ceiling
    return RetrievalResult(expert_ids=ordered, relevance_scores=scores)
