import pytest

from expert_match.obs.tracing import ExecutionTracer, StepStatus, TokenUsage


def test_end_step_closes_most_recently_started_step() -> None:
    tracer = ExecutionTracer()
    tracer.start_step("A", "ServiceA", "run")
    tracer.start_step("B", "ServiceB", "run")

    tracer.end_step("in", "out")

    assert tracer.active_steps() == ["A"]
    trace = tracer.build_trace()
    assert trace.step_names() == ["B"]
    assert trace.steps[0].status is StepStatus.SUCCESS


def test_explicit_handles_close_the_named_step() -> None:
    tracer = ExecutionTracer()
    first = tracer.start_step("Vector Search", "VectorSourceSearcher", "search")
    tracer.start_step("Graph Search", "GraphSourceSearcher", "search")

    tracer.end_step("q", "experts=2", handle=first)

    assert tracer.active_steps() == ["Graph Search"]
    assert tracer.build_trace().steps[0].name == "Vector Search"


def test_end_step_without_active_step_is_ignored() -> None:
    tracer = ExecutionTracer()

    tracer.end_step("in", "out")

    assert tracer.build_trace().steps == []


def test_failed_and_skipped_steps_are_recorded() -> None:
    tracer = ExecutionTracer()
    tracer.start_step("Graph Search", "GraphSourceSearcher", "search")
    tracer.fail_step(RuntimeError("graph down"))
    tracer.skip_step("Cascade Evaluation", "cascade requires exactly one expert, got 3")

    statuses = [(step.name, step.status) for step in tracer.build_trace().steps]

    assert statuses == [
        ("Graph Search", StepStatus.FAILED),
        ("Cascade Evaluation", StepStatus.SKIPPED),
    ]
    assert "graph down" in tracer.build_trace().steps[0].output_summary


def test_step_context_manager_fails_and_reraises() -> None:
    tracer = ExecutionTracer()

    with pytest.raises(ValueError):
        with tracer.step("Answer Generation", "ReasoningController", "generate_answer"):
            raise ValueError("bad output")

    trace = tracer.build_trace()
    assert trace.steps[0].status is StepStatus.FAILED
    assert tracer.active_steps() == []


def test_build_trace_sums_token_usage_of_llm_steps() -> None:
    tracer = ExecutionTracer()
    tracer.start_step("Query Routing", "QueryRouter", "classify")
    tracer.end_step_with_llm("q", "intent", "gpt-test", TokenUsage(10, 5, 15))
    tracer.start_step("Query Parsing", "Parser", "parse")
    tracer.end_step("q", "parsed")
    with tracer.step("Answer Generation", "ReasoningController", "generate_answer") as step:
        step.llm_model = "gpt-test"
        step.token_usage = TokenUsage(input_tokens=20, output_tokens=None, total_tokens=None)

    trace = tracer.build_trace()

    assert trace.total_token_usage == TokenUsage(30, 5, 15)
    assert trace.total_duration_ms >= 0.0
    assert trace.steps[0].llm_model == "gpt-test"


def test_trace_without_llm_steps_has_no_token_usage() -> None:
    tracer = ExecutionTracer()
    tracer.start_step("Query Parsing", "Parser", "parse")
    tracer.end_step("q", "parsed")

    assert tracer.build_trace().total_token_usage is None


def test_token_usage_combine_treats_missing_as_absent() -> None:
    assert TokenUsage.combine(None, None) is None
    assert TokenUsage.combine(TokenUsage(1, None, None), None) == TokenUsage(1, None, None)
    assert TokenUsage.combine(TokenUsage(1, None, 3), TokenUsage(2, None, None)) == TokenUsage(3, None, 3)


def test_usage_with_no_reported_counts_leaves_total_unset() -> None:
    tracer = ExecutionTracer()
    tracer.start_step("Answer Generation", "ReasoningController", "generate_answer")
    tracer.end_step_with_llm("q", "answer", "gpt-test", TokenUsage(None, None, None))

    assert tracer.build_trace().total_token_usage is None
    assert TokenUsage.combine(TokenUsage(), TokenUsage(4, 2, 6)) == TokenUsage(4, 2, 6)
