"""Iterative deep research: retrieve, analyze gaps, expand, re-retrieve."""

from __future__ import annotations

import logging

from expert_match.config import DeepResearchConfig
from expert_match.deadline import Deadline
from expert_match.errors import DeadlineExceededError
from expert_match.obs.tracing import ExecutionTracer
from expert_match.reasoning.completion import StructuredCompleter
from expert_match.reasoning.models import GapAnalysis
from expert_match.reasoning.prompts import (
    GAP_ANALYSIS_PROMPT,
    format_experts,
    format_requirements,
)
from expert_match.retrieval.fusion import FusionAccumulator, resolve_weights
from expert_match.retrieval.rerank import ExpertEnricher
from expert_match.retrieval.retriever import HybridRetriever
from expert_match.types import ParsedQuery, QueryRequest, RetrievalResult

logger = logging.getLogger(__name__)


class DeepResearcher:
    """Bounded gap-driven retrieval expansion.

    Round `i` (baseline is round 0) is fused with weight factor `decay ** i`
    into one accumulator, so earlier rounds dominate and later rounds mostly
    add candidates. The loop stops when the model reports no gaps, when the
    gaps add no new terms, or after `max_iterations` expansions. A failed gap
    analysis ends the loop with the last computed result.
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        completer: StructuredCompleter,
        enricher: ExpertEnricher | None = None,
        config: DeepResearchConfig | None = None,
    ) -> None:
        self.retriever = retriever
        self.completer = completer
        self.enricher = enricher
        self.config = config or DeepResearchConfig()

    def perform_deep_research(
        self,
        request: QueryRequest,
        parsed_query: ParsedQuery,
        *,
        tracer: ExecutionTracer | None = None,
        deadline: Deadline | None = None,
    ) -> RetrievalResult:
        options = request.options
        tracer = tracer or ExecutionTracer()
        weights = resolve_weights(self.retriever.config.default_weights, options.fusion_weights)
        if parsed_query.is_empty():
            tracer.skip_step("Deep Research", "empty query")
            return RetrievalResult.empty()
        limit = self.retriever.result_limit(options)

        accumulator = FusionAccumulator()
        accumulator.add(
            self.retriever.search_sources(parsed_query, options, tracer=tracer, deadline=deadline),
            weights,
        )
        result = accumulator.result(limit)
        logger.info("deep research baseline: %d experts", len(result))

        current_query = parsed_query
        for iteration in range(1, self.config.max_iterations + 1):
            if deadline is not None:
                deadline.check()
            try:
                gaps = self._analyze_gaps(current_query, result, tracer, deadline)
            except DeadlineExceededError:
                raise
            except Exception as exc:
                logger.warning("gap analysis failed, returning last result: %s", exc)
                break

            if not gaps.needs_expansion:
                break
            new_terms = {
                term for term in gaps.gap_terms() if term.lower() not in _lowered(current_query)
            }
            if not new_terms:
                tracer.skip_step("Query Expansion", "gap terms already covered")
                break

            current_query = current_query.expanded(
                skills=_pick(gaps.missing_skills, new_terms),
                technologies=_pick(gaps.missing_technologies, new_terms),
                domains=_pick(gaps.missing_domains, new_terms),
            )
            logger.info("deep research round %d expands with %s", iteration, sorted(new_terms))
            accumulator.add(
                self.retriever.search_sources(current_query, options, tracer=tracer, deadline=deadline),
                weights,
                factor=self.config.iteration_decay**iteration,
            )
            result = accumulator.result(limit)

        return self.retriever.rerank_if_requested(
            parsed_query, result, options, tracer=tracer, deadline=deadline
        )

    def _analyze_gaps(
        self,
        parsed_query: ParsedQuery,
        result: RetrievalResult,
        tracer: ExecutionTracer,
        deadline: Deadline | None,
    ) -> GapAnalysis:
        with tracer.step("Gap Analysis", "DeepResearcher", "analyze_gaps") as step:
            top = result.top(self.config.gap_analysis_top_experts)
            if self.enricher is not None:
                experts = format_experts(
                    self.enricher.load_expert_details(top.expert_ids), top.relevance_scores
                )
            else:
                experts = "\n".join(
                    f"[{expert_id}] relevance={top.relevance_scores[expert_id]:.2f}"
                    for expert_id in top.expert_ids
                ) or "(no experts retrieved)"
            messages = GAP_ANALYSIS_PROMPT.format_messages(
                query=parsed_query.text,
                requirements=format_requirements(parsed_query),
                experts=experts,
            )
            completion = self.completer.complete(messages, GapAnalysis, deadline=deadline)
            step.input_summary = f"experts={len(top)}"
            step.output_summary = (
                f"needs_expansion={completion.value.needs_expansion} "
                f"gaps={sorted(completion.value.gap_terms())}"
            )
            step.llm_model = completion.model
            step.token_usage = completion.token_usage
        return completion.value


def _lowered(parsed_query: ParsedQuery) -> set[str]:
    return {term.lower() for term in parsed_query.terms()}


def _pick(candidates: list[str], allowed: set[str]) -> set[str]:
    return {term.strip() for term in candidates if term.strip() in allowed}
