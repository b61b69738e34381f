import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel, GenericFakeChatModel
from langchain_core.messages import AIMessage

from expert_match.deadline import Deadline
from expert_match.errors import DeadlineExceededError, NonTransientLLMError, TransientLLMError
from expert_match.obs.tracing import TokenUsage
from expert_match.reasoning.completion import LangChainStructuredCompleter
from expert_match.reasoning.models import QueryClassification
from expert_match.reasoning.prompts import ROUTING_PROMPT
from expert_match.types import QueryIntent

MESSAGES = ROUTING_PROMPT.format_messages(query="We need a team for a banking RFP")


class ExplodingChatModel:
    def invoke(self, messages):
        raise ConnectionError("provider unreachable")


def test_parses_fenced_json_reply_into_schema() -> None:
    llm = FakeListChatModel(
        responses=[
            '```json\n{"intent": "RFP_RESPONSE", "confidence": 82, "reasoning": "mentions RFP", '
            '"extracted_requirements": {"domain": "banking"}}\n```'
        ]
    )

    completion = LangChainStructuredCompleter(llm, model_name="fake-list").complete(
        MESSAGES, QueryClassification
    )

    assert completion.value.intent is QueryIntent.RFP_RESPONSE
    assert completion.value.confidence == 82
    assert completion.model == "fake-list"
    assert completion.token_usage is None


def test_reads_token_usage_from_reply_metadata() -> None:
    reply = AIMessage(
        content='{"intent": "EXPERT_SEARCH", "confidence": 60}',
        usage_metadata={"input_tokens": 120, "output_tokens": 18, "total_tokens": 138},
    )
    llm = GenericFakeChatModel(messages=iter([reply]))

    completion = LangChainStructuredCompleter(llm).complete(MESSAGES, QueryClassification, deadline=Deadline(5.0))

    assert completion.value.intent is QueryIntent.EXPERT_SEARCH
    assert completion.token_usage == TokenUsage(120, 18, 138)


def test_reply_outside_schema_is_non_transient() -> None:
    llm = FakeListChatModel(responses=['{"intent": "EXPERT_SEARCH", "confidence": 250}'])

    with pytest.raises(NonTransientLLMError) as excinfo:
        LangChainStructuredCompleter(llm).complete(MESSAGES, QueryClassification)

    assert not excinfo.value.retryable


def test_unparseable_reply_is_non_transient() -> None:
    llm = FakeListChatModel(responses=["I think this is about RFPs."])

    with pytest.raises(NonTransientLLMError):
        LangChainStructuredCompleter(llm).complete(MESSAGES, QueryClassification)


def test_call_failure_is_transient() -> None:
    with pytest.raises(TransientLLMError) as excinfo:
        LangChainStructuredCompleter(ExplodingChatModel()).complete(MESSAGES, QueryClassification)

    assert excinfo.value.retryable


def test_cancelled_deadline_stops_before_calling_model() -> None:
    deadline = Deadline(5.0)
    deadline.cancel()

    with pytest.raises(DeadlineExceededError):
        LangChainStructuredCompleter(ExplodingChatModel()).complete(
            MESSAGES, QueryClassification, deadline=deadline
        )
