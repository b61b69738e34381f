"""Typed failures raised by the matching pipeline."""

from __future__ import annotations


class ExpertMatchError(Exception):
    """Base error carrying a stable code and a retry hint."""

    error_code = "EXPERT_MATCH_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code
        if retryable is not None:
            self.retryable = retryable


class PatternCombinationError(ExpertMatchError, ValueError):
    error_code = "INVALID_SGR_COMBINATION"


class RetrievalError(ExpertMatchError):
    """Retrieval could not produce a usable result at all."""

    error_code = "RETRIEVAL_ERROR"
    retryable = True


class EmbeddingUnavailableError(ExpertMatchError):
    error_code = "EMBEDDING_UNAVAILABLE"
    retryable = True


class TransientLLMError(ExpertMatchError):
    error_code = "LLM_TRANSIENT"
    retryable = True


class NonTransientLLMError(ExpertMatchError):
    """The model answered, but the answer does not fit the requested schema."""

    error_code = "LLM_NON_TRANSIENT"


class DeadlineExceededError(ExpertMatchError):
    error_code = "DEADLINE_EXCEEDED"
    retryable = True
