"""Token-budgeted conversation history with a summary of older turns."""

from __future__ import annotations

import logging

from expert_match.config import HistoryConfig
from expert_match.deadline import Deadline
from expert_match.errors import DeadlineExceededError
from expert_match.history.memory import HistoryRepository
from expert_match.history.tokens import TokenEstimator
from expert_match.obs.tracing import ExecutionTracer
from expert_match.reasoning.completion import StructuredCompleter
from expert_match.reasoning.models import HistorySummary
from expert_match.reasoning.prompts import SUMMARY_PROMPT, format_history
from expert_match.types import ConversationMessage

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "[Previous conversation summary] "
FALLBACK_SUMMARY = "Previous conversation about expert matching."


class ConversationHistoryCompressor:
    """Keeps the newest messages that fit the budget and summarizes the rest.

    The returned list is chronological. When older messages were dropped it
    starts with exactly one `role="system"` summary message, and the
    estimated tokens of the whole list never exceed `max_tokens`.
    """

    def __init__(
        self,
        repository: HistoryRepository,
        completer: StructuredCompleter,
        config: HistoryConfig | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.repository = repository
        self.completer = completer
        self.config = config or HistoryConfig()
        self.estimator = estimator or TokenEstimator(
            self.config.chars_per_token, self.config.message_overhead_tokens
        )

    def get_optimized_history(
        self,
        chat_id: str | None,
        exclude_current_query: bool,
        tracer: ExecutionTracer | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> list[ConversationMessage]:
        if not chat_id:
            return []
        tracer = tracer or ExecutionTracer()

        newest_first = self.repository.get_recent(chat_id, self.config.fetch_limit)
        if exclude_current_query and newest_first:
            newest_first = newest_first[1:]
        if not newest_first:
            return []

        budget = self.config.max_tokens
        retained: list[ConversationMessage] = []
        used = 0
        for message in newest_first:
            cost = self.estimator.message_tokens(message)
            if used + cost > budget:
                break
            retained.append(message)
            used += cost
        older = newest_first[len(retained) :]

        if not older:
            return list(reversed(retained))

        min_room = min(self.config.min_summary_tokens, budget)
        while retained and budget - used < min_room:
            evicted = retained.pop()
            used -= self.estimator.message_tokens(evicted)
            older.insert(0, evicted)

        summary_budget = min(budget - used, self.config.max_summary_tokens)
        if summary_budget <= self.estimator.message_overhead_tokens:
            tracer.skip_step("History Summarization", "token budget too small for a summary")
            return list(reversed(retained))
        chronological_older = list(reversed(older))
        summary_text = self._summarize(chronological_older, summary_budget, tracer, deadline)
        content = self.estimator.truncate_message_content(SUMMARY_PREFIX + summary_text, summary_budget)
        summary = ConversationMessage(
            id=f"summary-{chat_id}-{chronological_older[-1].sequence_number}",
            chat_id=chat_id,
            role="system",
            content=content,
            sequence_number=chronological_older[0].sequence_number,
            message_type="summary",
        )
        summary.tokens_used = self.estimator.message_tokens(summary)

        logger.info(
            "history for chat %s: kept %d messages, summarized %d",
            chat_id,
            len(retained),
            len(older),
        )
        return [summary, *reversed(retained)]

    def _summarize(
        self,
        messages: list[ConversationMessage],
        max_tokens: int,
        tracer: ExecutionTracer,
        deadline: Deadline | None,
    ) -> str:
        max_words = max(1, int(max_tokens * 0.75))
        try:
            with tracer.step(
                "History Summarization", "ConversationHistoryCompressor", "summarize"
            ) as step:
                completion = self.completer.complete(
                    SUMMARY_PROMPT.format_messages(
                        transcript=format_history(messages), max_words=max_words
                    ),
                    HistorySummary,
                    deadline=deadline,
                )
                step.input_summary = f"messages={len(messages)}"
                step.output_summary = completion.value.summary[:120]
                step.llm_model = completion.model
                step.token_usage = completion.token_usage
        except DeadlineExceededError:
            raise
        except Exception as exc:
            logger.warning("history summarization failed, using fallback summary: %s", exc)
            return FALLBACK_SUMMARY
        return completion.value.summary.strip() or FALLBACK_SUMMARY
