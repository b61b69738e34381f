"""Cycle pattern: generate, critique and regenerate evaluations for many experts."""

from __future__ import annotations

import logging

from expert_match.deadline import Deadline
from expert_match.obs.tracing import ExecutionTracer
from expert_match.reasoning.completion import StructuredCompleter
from expert_match.reasoning.models import CycleCritique, ExpertEvaluation, ExpertEvaluationList
from expert_match.reasoning.prompts import (
    CYCLE_CRITIQUE_PROMPT,
    CYCLE_GENERATE_PROMPT,
    format_experts,
    format_history,
    format_requirements,
)
from expert_match.types import ConversationMessage, ExpertContext, ParsedQuery

logger = logging.getLogger(__name__)


class CycleEvaluator:
    """Bounded self-critique loop.

    The iteration cap is fixed for the whole run. The last draft is never
    critiqued, so a run costs at most `2 * max_iterations - 1` calls.
    """

    def __init__(self, completer: StructuredCompleter, *, max_iterations: int = 3) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.completer = completer
        self.max_iterations = max_iterations

    def evaluate(
        self,
        parsed_query: ParsedQuery,
        experts: list[ExpertContext],
        history: list[ConversationMessage],
        *,
        tracer: ExecutionTracer,
        deadline: Deadline | None = None,
    ) -> list[ExpertEvaluation]:
        known_ids = {expert.expert_id for expert in experts}
        expert_block = format_experts(experts)
        feedback = "(none)"
        evaluations: list[ExpertEvaluation] = []

        for iteration in range(1, self.max_iterations + 1):
            with tracer.step(f"Cycle Generation {iteration}", "CycleEvaluator", "generate") as step:
                completion = self.completer.complete(
                    CYCLE_GENERATE_PROMPT.format_messages(
                        query=parsed_query.text,
                        requirements=format_requirements(parsed_query),
                        history=format_history(history),
                        experts=expert_block,
                        feedback=feedback,
                    ),
                    ExpertEvaluationList,
                    deadline=deadline,
                )
                evaluations = [
                    evaluation
                    for evaluation in completion.value.evaluations
                    if evaluation.expert_id in known_ids
                ]
                step.input_summary = f"experts={len(experts)} iteration={iteration}"
                step.output_summary = f"evaluations={len(evaluations)}"
                step.llm_model = completion.model
                step.token_usage = completion.token_usage

            if iteration == self.max_iterations:
                break

            critique = self._critique(parsed_query, expert_block, evaluations, iteration, tracer, deadline)
            if not critique.has_gaps:
                break
            feedback = "\n".join([critique.feedback, *(f"- {gap}" for gap in critique.gaps)]).strip()
            logger.info("cycle iteration %d flagged %d gaps", iteration, len(critique.gaps))

        return evaluations

    def _critique(
        self,
        parsed_query: ParsedQuery,
        expert_block: str,
        evaluations: list[ExpertEvaluation],
        iteration: int,
        tracer: ExecutionTracer,
        deadline: Deadline | None,
    ) -> CycleCritique:
        draft = ExpertEvaluationList(evaluations=evaluations).model_dump_json(indent=2)
        with tracer.step(f"Cycle Critique {iteration}", "CycleEvaluator", "critique") as step:
            completion = self.completer.complete(
                CYCLE_CRITIQUE_PROMPT.format_messages(
                    query=parsed_query.text,
                    experts=expert_block,
                    draft=draft,
                ),
                CycleCritique,
                deadline=deadline,
            )
            step.input_summary = f"evaluations={len(evaluations)}"
            step.output_summary = (
                f"has_gaps={completion.value.has_gaps} gaps={len(completion.value.gaps)}"
            )
            step.llm_model = completion.model
            step.token_usage = completion.token_usage
        return completion.value
