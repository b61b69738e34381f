"""Routing pattern: classify the request before retrieval."""

from __future__ import annotations

from expert_match.deadline import Deadline
from expert_match.obs.tracing import ExecutionTracer
from expert_match.reasoning.completion import StructuredCompleter
from expert_match.reasoning.models import QueryClassification
from expert_match.reasoning.prompts import ROUTING_PROMPT


class QueryRouter:
    def __init__(self, completer: StructuredCompleter) -> None:
        self.completer = completer

    def classify(
        self,
        query: str,
        *,
        tracer: ExecutionTracer,
        deadline: Deadline | None = None,
    ) -> QueryClassification:
        with tracer.step("Query Routing", "QueryRouter", "classify") as step:
            completion = self.completer.complete(
                ROUTING_PROMPT.format_messages(query=query),
                QueryClassification,
                deadline=deadline,
            )
            classification = completion.value
            step.input_summary = query[:120]
            step.output_summary = (
                f"intent={classification.intent.value} confidence={classification.confidence}"
            )
            step.llm_model = completion.model
            step.token_usage = completion.token_usage
        return classification
