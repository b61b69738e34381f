"""Structured completion over LangChain chat models."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from langchain_core.exceptions import OutputParserException
from langchain_core.messages import BaseMessage, HumanMessage
from langchain_core.output_parsers import PydanticOutputParser
from pydantic import BaseModel

from expert_match.deadline import Deadline
from expert_match.errors import (
    DeadlineExceededError,
    NonTransientLLMError,
    TransientLLMError,
)
from expert_match.obs.tracing import TokenUsage

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass(slots=True)
class Completion(Generic[T]):
    value: T
    model: str | None = None
    token_usage: TokenUsage | None = None


class StructuredCompleter(Protocol):
    """Returns a schema-validated value for a chat prompt."""

    def complete(
        self,
        messages: list[BaseMessage],
        schema: type[T],
        *,
        deadline: Deadline | None = None,
    ) -> Completion[T]:
        """Raise TransientLLMError, NonTransientLLMError or DeadlineExceededError on failure."""


class LangChainStructuredCompleter:
    """Adapts any LangChain chat model to `StructuredCompleter`.

    Format instructions from `PydanticOutputParser` are appended to the
    prompt; replies are parsed (markdown fences tolerated) and validated
    against the schema.
    """

    def __init__(self, llm: Any, *, model_name: str | None = None) -> None:
        self.llm = llm
        self.model_name = model_name or getattr(llm, "model_name", None) or getattr(llm, "model", None)

    def complete(
        self,
        messages: list[BaseMessage],
        schema: type[T],
        *,
        deadline: Deadline | None = None,
    ) -> Completion[T]:
        parser = PydanticOutputParser(pydantic_object=schema)
        prompt = [*messages, HumanMessage(content=parser.get_format_instructions())]
        reply = self._invoke(prompt, deadline)

        text = _message_text(reply)
        try:
            value = parser.parse(text)
        except OutputParserException as exc:
            logger.debug("rejected %s reply: %s", schema.__name__, text[:200])
            raise NonTransientLLMError(
                f"reply does not match {schema.__name__}: {exc}"
            ) from exc

        return Completion(
            value=value,
            model=self._reply_model(reply),
            token_usage=_usage_from_reply(reply),
        )

    def _invoke(self, prompt: list[BaseMessage], deadline: Deadline | None) -> Any:
        if deadline is None:
            try:
                return self.llm.invoke(prompt)
            except Exception as exc:
                raise TransientLLMError(f"LLM call failed: {exc}") from exc

        deadline.check()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm")
        try:
            future = executor.submit(self.llm.invoke, prompt)
            try:
                return deadline.wait(future)
            except DeadlineExceededError:
                future.cancel()
                raise
            except FutureTimeoutError as exc:
                raise TransientLLMError("LLM call timed out") from exc
            except Exception as exc:
                raise TransientLLMError(f"LLM call failed: {exc}") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _reply_model(self, reply: Any) -> str | None:
        metadata = getattr(reply, "response_metadata", None) or {}
        return metadata.get("model_name") or self.model_name


def _message_text(reply: Any) -> str:
    content = getattr(reply, "content", reply)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)


def _usage_from_reply(reply: Any) -> TokenUsage | None:
    usage = getattr(reply, "usage_metadata", None)
    if not usage:
        return None
    return TokenUsage(
        input_tokens=usage.get("input_tokens"),
        output_tokens=usage.get("output_tokens"),
        total_tokens=usage.get("total_tokens"),
    )
