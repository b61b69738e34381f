from expert_match.config import HistoryConfig
from expert_match.errors import TransientLLMError
from expert_match.history.compressor import (
    FALLBACK_SUMMARY,
    SUMMARY_PREFIX,
    ConversationHistoryCompressor,
)
from expert_match.history.memory import InMemoryHistoryRepository
from expert_match.history.tokens import TokenEstimator
from expert_match.obs.tracing import ExecutionTracer, StepStatus
from expert_match.reasoning.completion import Completion
from expert_match.reasoning.models import HistorySummary

# ceil(144 / 4) + 4 overhead = 40 estimated tokens per message.
_FORTY_TOKEN_TEXT = "x" * 144


class SummaryCompleter:
    def __init__(self, summary: str | Exception) -> None:
        self.summary = summary
        self.calls = 0

    def complete(self, messages, schema, *, deadline=None):
        assert schema is HistorySummary
        self.calls += 1
        if isinstance(self.summary, Exception):
            raise self.summary
        return Completion(value=HistorySummary(summary=self.summary), model="fake-model")


def _repository(count: int, chat_id: str = "chat-1") -> InMemoryHistoryRepository:
    repository = InMemoryHistoryRepository()
    for idx in range(count):
        role = "user" if idx % 2 == 0 else "assistant"
        repository.append(chat_id, role, f"{idx:04d}" + _FORTY_TOKEN_TEXT[4:])
    return repository


def test_long_history_keeps_recent_messages_and_one_summary() -> None:
    config = HistoryConfig(max_tokens=500)
    estimator = TokenEstimator()
    compressor = ConversationHistoryCompressor(
        _repository(50), SummaryCompleter("User asked for Java experts in banking."), config
    )

    history = compressor.get_optimized_history("chat-1", exclude_current_query=False)

    summaries = [message for message in history if message.message_type == "summary"]
    retained = [message for message in history if message.message_type != "summary"]
    assert len(summaries) == 1
    assert history[0] is summaries[0]
    assert history[0].role == "system"
    assert history[0].content.startswith(SUMMARY_PREFIX)
    assert 11 <= len(retained) <= 12
    assert retained[-1].sequence_number == 50
    assert [m.sequence_number for m in retained] == sorted(m.sequence_number for m in retained)
    assert estimator.total(history) <= 500


def test_history_budget_holds_for_small_budgets() -> None:
    for budget in (30, 45, 90, 130, 333):
        compressor = ConversationHistoryCompressor(
            _repository(20), SummaryCompleter("s" * 5000), HistoryConfig(max_tokens=budget)
        )
        history = compressor.get_optimized_history("chat-1", exclude_current_query=False)
        assert TokenEstimator().total(history) <= budget


def test_short_history_is_returned_unchanged_in_order() -> None:
    completer = SummaryCompleter("unused")
    compressor = ConversationHistoryCompressor(_repository(4), completer)

    history = compressor.get_optimized_history("chat-1", exclude_current_query=False)

    assert [message.sequence_number for message in history] == [1, 2, 3, 4]
    assert completer.calls == 0


def test_exclude_current_query_drops_newest_message() -> None:
    compressor = ConversationHistoryCompressor(_repository(4), SummaryCompleter("unused"))

    history = compressor.get_optimized_history("chat-1", exclude_current_query=True)

    assert [message.sequence_number for message in history] == [1, 2, 3]


def test_summarization_failure_uses_fallback_summary() -> None:
    tracer = ExecutionTracer()
    compressor = ConversationHistoryCompressor(
        _repository(50), SummaryCompleter(TransientLLMError("rate limited")), HistoryConfig(max_tokens=500)
    )

    history = compressor.get_optimized_history("chat-1", False, tracer)

    assert history[0].content == SUMMARY_PREFIX + FALLBACK_SUMMARY
    assert tracer.build_trace().find("History Summarization")[0].status is StepStatus.FAILED


def test_unknown_or_missing_chat_gives_empty_history() -> None:
    compressor = ConversationHistoryCompressor(InMemoryHistoryRepository(), SummaryCompleter("unused"))

    assert compressor.get_optimized_history(None, False) == []
    assert compressor.get_optimized_history("nobody", False) == []


def test_token_estimator_uses_four_chars_per_token() -> None:
    estimator = TokenEstimator(chars_per_token=4.0, message_overhead_tokens=0)

    assert estimator.count("") == 0
    assert estimator.count("abcd") == 1
    assert estimator.count("abcde") == 2
    assert estimator.truncate_message_content("a" * 100, 5) == "a" * 17 + "..."
