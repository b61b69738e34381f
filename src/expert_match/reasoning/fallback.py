"""Deterministic structured completer for environments without an LLM."""

from __future__ import annotations

import re
from typing import Any

from langchain_core.messages import BaseMessage
from pydantic import BaseModel

from expert_match.deadline import Deadline
from expert_match.errors import TransientLLMError
from expert_match.reasoning.completion import Completion
from expert_match.reasoning.models import (
    GapAnalysis,
    HistorySummary,
    RankedExpert,
    RerankResult,
    SynthesizedAnswer,
)

_EXPERT_HEADER = re.compile(
    r"^\[(?P<eid>[^\]]+)\]\s+(?P<name>.+?)(?:\s+\((?P<seniority>[^)]+)\))?"
    r"(?:\s+relevance=(?P<score>[0-9.]+))?$",
    flags=re.MULTILINE,
)
_SUMMARY_CHARS = 400


class DeterministicCompleter:
    """Answers from the expert records rendered into the prompt.

    Keeps the `StructuredCompleter` contract so the pipeline runs offline when
    `OPENAI_API_KEY` is not configured. Gap analysis never asks for expansion
    and schemas that need real judgement (routing, cascade, cycle) raise
    `TransientLLMError`, which the pipeline treats like an unavailable model.
    """

    model_name = "deterministic"

    def complete(
        self,
        messages: list[BaseMessage],
        schema: type[Any],
        *,
        deadline: Deadline | None = None,
    ) -> Completion[Any]:
        if deadline is not None:
            deadline.check()
        prompt = "\n".join(_text(message) for message in messages)
        value = self._build(prompt, schema)
        return Completion(value=value, model=self.model_name, token_usage=None)

    def _build(self, prompt: str, schema: type[Any]) -> BaseModel:
        headers = list(_EXPERT_HEADER.finditer(prompt))
        if schema is SynthesizedAnswer:
            return SynthesizedAnswer(answer=_build_answer(headers))
        if schema is RerankResult:
            return RerankResult(
                ranking=[
                    RankedExpert(
                        expert_id=match.group("eid"),
                        relevance=min(1.0, float(match.group("score") or 0.0)),
                    )
                    for match in headers
                ]
            )
        if schema is GapAnalysis:
            return GapAnalysis(needs_expansion=False, rationale="no model available for gap analysis")
        if schema is HistorySummary:
            transcript = prompt.split("\n", 1)[-1].strip()
            return HistorySummary(summary=transcript[-_SUMMARY_CHARS:])
        raise TransientLLMError(f"no language model configured for {schema.__name__}")


def _build_answer(headers: list[re.Match[str]]) -> str:
    if not headers:
        return "No matching experts were found for this request."
    lines = ["Top matching experts:"]
    for idx, match in enumerate(headers[:5], start=1):
        line = f"{idx}. {match.group('name').strip()} [{match.group('eid')}]"
        if match.group("seniority"):
            line += f", {match.group('seniority')}"
        if match.group("score"):
            line += f", relevance {float(match.group('score')):.2f}"
        lines.append(line)
    return "\n".join(lines)


def _text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    return " ".join(str(item) for item in content)
