"""Cascade pattern: one schema-ordered evaluation of a single expert."""

from __future__ import annotations

from expert_match.deadline import Deadline
from expert_match.obs.tracing import ExecutionTracer
from expert_match.reasoning.completion import StructuredCompleter
from expert_match.reasoning.models import ExpertEvaluation
from expert_match.reasoning.prompts import (
    CASCADE_PROMPT,
    format_experts,
    format_history,
    format_requirements,
)
from expert_match.types import ConversationMessage, ExpertContext, ParsedQuery


class CascadeEvaluator:
    def __init__(self, completer: StructuredCompleter) -> None:
        self.completer = completer

    def evaluate(
        self,
        parsed_query: ParsedQuery,
        expert: ExpertContext,
        history: list[ConversationMessage],
        *,
        tracer: ExecutionTracer,
        deadline: Deadline | None = None,
    ) -> ExpertEvaluation:
        with tracer.step("Cascade Evaluation", "CascadeEvaluator", "evaluate") as step:
            messages = CASCADE_PROMPT.format_messages(
                query=parsed_query.text,
                requirements=format_requirements(parsed_query),
                history=format_history(history),
                experts=format_experts([expert]),
            )
            completion = self.completer.complete(messages, ExpertEvaluation, deadline=deadline)
            evaluation = completion.value
            if evaluation.expert_id != expert.expert_id:
                evaluation = evaluation.model_copy(update={"expert_id": expert.expert_id})
            step.input_summary = f"expert={expert.expert_id}"
            step.output_summary = (
                f"recommendation={evaluation.recommendation.recommendation_type.value}"
            )
            step.llm_model = completion.model
            step.token_usage = completion.token_usage
        return evaluation


def format_evaluation(evaluation: ExpertEvaluation, expert: ExpertContext | None = None) -> str:
    """Render one evaluation as markdown."""
    title = expert.name if expert is not None else evaluation.expert_id
    skills = evaluation.skill_match_analysis
    experience = evaluation.experience_assessment
    recommendation = evaluation.recommendation
    lines = [
        f"### {title}",
        "",
        evaluation.expert_summary,
        "",
        "**Skill match**",
        f"- Must-have: {skills.must_have_match_score}/10",
        f"- Nice-to-have: {skills.nice_to_have_match_score}/10",
    ]
    if skills.strength_skills:
        lines.append(f"- Strengths: {', '.join(skills.strength_skills)}")
    if skills.missing_skills:
        lines.append(f"- Missing: {', '.join(skills.missing_skills)}")
    lines.extend(
        [
            "",
            "**Experience**",
            f"- Relevant projects: {experience.relevant_projects_count}",
            f"- Domain experience: {experience.domain_experience_years:g} years",
            f"- Customer industry match: {'yes' if experience.customer_industry_match else 'no'}",
            f"- Seniority match: {'yes' if experience.seniority_match else 'no'}",
            "",
            f"**Recommendation:** {recommendation.recommendation_type.value.replace('_', ' ').title()} "
            f"({recommendation.confidence}% confidence)",
        ]
    )
    if recommendation.rationale:
        lines.append(recommendation.rationale)
    return "\n".join(lines)
