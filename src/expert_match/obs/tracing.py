"""Step-level execution tracing with timing and token accounting."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

_SUMMARY_LIMIT = 320


class StepStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass(slots=True, frozen=True)
class TokenUsage:
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None

    @staticmethod
    def combine(a: TokenUsage | None, b: TokenUsage | None) -> TokenUsage | None:
        """Sum two usages; a missing side is treated as absent, not as zero."""
        a, b = _reported(a), _reported(b)
        if a is None:
            return b
        if b is None:
            return a
        return TokenUsage(
            input_tokens=_add(a.input_tokens, b.input_tokens),
            output_tokens=_add(a.output_tokens, b.output_tokens),
            total_tokens=_add(a.total_tokens, b.total_tokens),
        )


def _reported(usage: TokenUsage | None) -> TokenUsage | None:
    if usage is None or (
        usage.input_tokens is None and usage.output_tokens is None and usage.total_tokens is None
    ):
        return None
    return usage


def _add(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


@dataclass(slots=True)
class ExecutionStep:
    name: str
    service: str
    method: str
    status: StepStatus
    duration_ms: float
    input_summary: str = ""
    output_summary: str = ""
    llm_model: str | None = None
    token_usage: TokenUsage | None = None


@dataclass(slots=True)
class ExecutionTrace:
    steps: list[ExecutionStep]
    total_duration_ms: float
    total_token_usage: TokenUsage | None = None

    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def find(self, name: str) -> list[ExecutionStep]:
        return [step for step in self.steps if step.name == name]


@dataclass(slots=True, eq=False)
class StepHandle:
    """An open step; pass it back to `end_step` when steps overlap."""

    name: str
    service: str
    method: str
    started_at: float = field(default_factory=time.perf_counter)
    input_summary: str = ""
    output_summary: str = ""
    llm_model: str | None = None
    token_usage: TokenUsage | None = None


class ExecutionTracer:
    """Records the steps of one request in completion order.

    Steps are closed either through the handle returned by `start_step`, or,
    without a handle, by pairing with the most recently started step that is
    still open.
    """

    def __init__(self) -> None:
        self._started_at = time.perf_counter()
        self._open: list[StepHandle] = []
        self._steps: list[ExecutionStep] = []

    def start_step(self, name: str, service: str, method: str) -> StepHandle:
        handle = StepHandle(name=name, service=service, method=method)
        self._open.append(handle)
        return handle

    def end_step(
        self,
        input_summary: str = "",
        output_summary: str = "",
        *,
        handle: StepHandle | None = None,
    ) -> None:
        self._close(handle, StepStatus.SUCCESS, input_summary, output_summary)

    def end_step_with_llm(
        self,
        input_summary: str,
        output_summary: str,
        model: str | None,
        token_usage: TokenUsage | None,
        *,
        handle: StepHandle | None = None,
    ) -> None:
        self._close(
            handle,
            StepStatus.SUCCESS,
            input_summary,
            output_summary,
            model=model,
            token_usage=token_usage,
        )

    def fail_step(self, error: BaseException | str, *, handle: StepHandle | None = None) -> None:
        self._close(handle, StepStatus.FAILED, output_summary=f"error: {error}")

    def skip_step(self, name: str, reason: str) -> None:
        self._steps.append(
            ExecutionStep(
                name=name,
                service="",
                method="",
                status=StepStatus.SKIPPED,
                duration_ms=0.0,
                output_summary=_truncate(reason),
            )
        )

    @contextmanager
    def step(self, name: str, service: str, method: str) -> Iterator[StepHandle]:
        """Open a step for the block; fail it and re-raise on error."""
        handle = self.start_step(name, service, method)
        try:
            yield handle
        except BaseException as exc:
            if handle in self._open:
                self.fail_step(exc, handle=handle)
            raise
        if handle in self._open:
            self._close(
                handle,
                StepStatus.SUCCESS,
                handle.input_summary,
                handle.output_summary,
                model=handle.llm_model,
                token_usage=handle.token_usage,
            )

    def active_steps(self) -> list[str]:
        return [handle.name for handle in self._open]

    def build_trace(self) -> ExecutionTrace:
        total_usage: TokenUsage | None = None
        for step in self._steps:
            total_usage = TokenUsage.combine(total_usage, step.token_usage)
        return ExecutionTrace(
            steps=list(self._steps),
            total_duration_ms=(time.perf_counter() - self._started_at) * 1000.0,
            total_token_usage=total_usage,
        )

    def _close(
        self,
        handle: StepHandle | None,
        status: StepStatus,
        input_summary: str = "",
        output_summary: str = "",
        *,
        model: str | None = None,
        token_usage: TokenUsage | None = None,
    ) -> None:
        if handle is None:
            if not self._open:
                logger.warning("end of step requested with no active step")
                return
            handle = self._open.pop()
        elif handle in self._open:
            self._open.remove(handle)
        else:
            logger.warning("step %s was already closed", handle.name)
            return

        self._steps.append(
            ExecutionStep(
                name=handle.name,
                service=handle.service,
                method=handle.method,
                status=status,
                duration_ms=(time.perf_counter() - handle.started_at) * 1000.0,
                input_summary=_truncate(input_summary),
                output_summary=_truncate(output_summary),
                llm_model=model,
                token_usage=token_usage,
            )
        )


class Timer:
    """Simple context timer used by the pipeline."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def _truncate(text: str) -> str:
    return text if len(text) <= _SUMMARY_LIMIT else text[: _SUMMARY_LIMIT - 3] + "..."
