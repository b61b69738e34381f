"""Selects and runs the reasoning pattern for one request."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from expert_match.config import ReasoningConfig
from expert_match.deadline import Deadline
from expert_match.errors import PatternCombinationError
from expert_match.obs.tracing import ExecutionTracer
from expert_match.reasoning.cascade import CascadeEvaluator, format_evaluation
from expert_match.reasoning.completion import StructuredCompleter
from expert_match.reasoning.cycle import CycleEvaluator
from expert_match.reasoning.models import ExpertEvaluation, QueryClassification, SynthesizedAnswer
from expert_match.reasoning.prompts import (
    ANSWER_PROMPT,
    answer_instructions,
    format_experts,
    format_history,
    format_requirements,
)
from expert_match.reasoning.routing import QueryRouter
from expert_match.types import (
    ConversationMessage,
    ExpertContext,
    ParsedQuery,
    QueryOptions,
    ReasoningPattern,
)

logger = logging.getLogger(__name__)

NO_EXPERTS_ANSWER = "No matching experts were found for this request."


def validate_pattern_combination(use_cascade: bool, use_cycle: bool) -> None:
    if use_cascade and use_cycle:
        raise PatternCombinationError(
            "Cascade and Cycle patterns are mutually exclusive: "
            "Cascade evaluates exactly one expert, Cycle evaluates several. "
            "Enable at most one of them."
        )


@dataclass(slots=True)
class ReasoningOutcome:
    answer: str
    pattern: ReasoningPattern
    evaluations: list[ExpertEvaluation] = field(default_factory=list)


class ReasoningController:
    """Routing / Cascade / Cycle / Plain control of structured LLM calls.

    Pattern preconditions that do not hold degrade to PLAIN with a SKIPPED
    trace step. Failures of the answer-producing call are re-raised.
    """

    def __init__(
        self,
        completer: StructuredCompleter,
        config: ReasoningConfig | None = None,
    ) -> None:
        self.completer = completer
        self.config = config or ReasoningConfig()
        self.router = QueryRouter(completer)
        self.cascade = CascadeEvaluator(completer)
        self.cycle = CycleEvaluator(completer, max_iterations=self.config.cycle_max_iterations)

    def classify(
        self,
        query: str,
        *,
        use_cascade: bool = False,
        use_cycle: bool = False,
        tracer: ExecutionTracer | None = None,
        deadline: Deadline | None = None,
    ) -> QueryClassification | None:
        validate_pattern_combination(use_cascade, use_cycle)
        tracer = tracer or ExecutionTracer()
        if not self.config.routing_enabled:
            tracer.skip_step("Query Routing", "routing pattern is disabled")
            return None
        return self.router.classify(query, tracer=tracer, deadline=deadline)

    def select_pattern(
        self,
        options: QueryOptions,
        expert_count: int,
        tracer: ExecutionTracer,
    ) -> ReasoningPattern:
        validate_pattern_combination(options.use_cascade_pattern, options.use_cycle_pattern)
        if options.use_cascade_pattern:
            reason = None
            if not self.config.cascade_enabled:
                reason = "cascade pattern is disabled"
            elif expert_count != 1:
                reason = f"cascade requires exactly one expert, got {expert_count}"
            if reason is None:
                return ReasoningPattern.CASCADE
            tracer.skip_step("Cascade Evaluation", reason)
            logger.info("falling back to plain generation: %s", reason)
        elif options.use_cycle_pattern:
            reason = None
            if not self.config.cycle_enabled:
                reason = "cycle pattern is disabled"
            elif expert_count <= 1:
                reason = f"cycle requires more than one expert, got {expert_count}"
            if reason is None:
                return ReasoningPattern.CYCLE
            tracer.skip_step("Cycle Evaluation", reason)
            logger.info("falling back to plain generation: %s", reason)
        return ReasoningPattern.PLAIN

    def generate_answer(
        self,
        parsed_query: ParsedQuery,
        experts: list[ExpertContext],
        history: list[ConversationMessage],
        options: QueryOptions,
        *,
        scores: dict[str, float] | None = None,
        tracer: ExecutionTracer | None = None,
        deadline: Deadline | None = None,
    ) -> ReasoningOutcome:
        tracer = tracer or ExecutionTracer()
        pattern = self.select_pattern(options, len(experts), tracer)

        if pattern is ReasoningPattern.CASCADE:
            evaluation = self.cascade.evaluate(
                parsed_query, experts[0], history, tracer=tracer, deadline=deadline
            )
            return ReasoningOutcome(
                answer=format_evaluation(evaluation, experts[0]),
                pattern=pattern,
                evaluations=[evaluation],
            )

        if pattern is ReasoningPattern.CYCLE:
            evaluations = self.cycle.evaluate(
                parsed_query, experts, history, tracer=tracer, deadline=deadline
            )
            by_id = {expert.expert_id: expert for expert in experts}
            sections = [
                format_evaluation(evaluation, by_id.get(evaluation.expert_id))
                for evaluation in evaluations
            ]
            return ReasoningOutcome(
                answer="\n\n".join(sections) or NO_EXPERTS_ANSWER,
                pattern=pattern,
                evaluations=evaluations,
            )

        return ReasoningOutcome(
            answer=self._plain_answer(parsed_query, experts, history, scores, tracer, deadline),
            pattern=ReasoningPattern.PLAIN,
        )

    def _plain_answer(
        self,
        parsed_query: ParsedQuery,
        experts: list[ExpertContext],
        history: list[ConversationMessage],
        scores: dict[str, float] | None,
        tracer: ExecutionTracer,
        deadline: Deadline | None,
    ) -> str:
        if not experts:
            tracer.skip_step("Answer Generation", "no experts to describe")
            return NO_EXPERTS_ANSWER

        shown = experts[: self.config.answer_max_experts]
        with tracer.step("Answer Generation", "ReasoningController", "generate_answer") as step:
            completion = self.completer.complete(
                ANSWER_PROMPT.format_messages(
                    instructions=answer_instructions(parsed_query.intent),
                    query=parsed_query.text,
                    requirements=format_requirements(parsed_query),
                    history=format_history(history),
                    experts=format_experts(shown, scores),
                ),
                SynthesizedAnswer,
                deadline=deadline,
            )
            step.input_summary = f"experts={len(shown)} history={len(history)}"
            step.output_summary = completion.value.answer[:120]
            step.llm_model = completion.model
            step.token_usage = completion.token_usage
        return completion.value.answer
