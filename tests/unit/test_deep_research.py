from expert_match.config import DeepResearchConfig
from expert_match.errors import TransientLLMError
from expert_match.obs.tracing import ExecutionTracer, StepStatus
from expert_match.reasoning.completion import Completion
from expert_match.reasoning.models import GapAnalysis
from expert_match.retrieval.deep_research import DeepResearcher
from expert_match.retrieval.retriever import HybridRetriever
from expert_match.types import ParsedQuery, QueryOptions, QueryRequest, SourceResult


class TermEchoSearcher:
    """Returns one expert per query term so expansions add new candidates."""

    name = "keyword"

    def __init__(self) -> None:
        self.queries: list[ParsedQuery] = []

    def search(self, parsed_query: ParsedQuery, max_results: int, *, min_similarity=None) -> SourceResult:
        self.queries.append(parsed_query)
        ids = [f"expert-{term.lower()}" for term in sorted(parsed_query.terms())]
        return SourceResult(source=self.name, expert_ids=ids[:max_results])


class GapCompleter:
    def __init__(self, analyses: list[GapAnalysis | Exception]) -> None:
        self.analyses = analyses
        self.calls = 0

    def complete(self, messages, schema, *, deadline=None):
        assert schema is GapAnalysis
        item = self.analyses[min(self.calls, len(self.analyses) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return Completion(value=item, model="fake-model")


class AlwaysNewGapCompleter:
    """Reports a fresh missing skill on every call."""

    def __init__(self) -> None:
        self.calls = 0

    def complete(self, messages, schema, *, deadline=None):
        self.calls += 1
        return Completion(
            value=GapAnalysis(missing_skills=[f"Skill{self.calls}"], needs_expansion=True),
            model="fake-model",
        )


REQUEST = QueryRequest(query="Java experts", options=QueryOptions(deep_research=True))
QUERY = ParsedQuery(text="Java experts", technologies=frozenset({"Java"}))


def test_loop_terminates_at_max_iterations_when_gaps_never_close() -> None:
    searcher = TermEchoSearcher()
    completer = AlwaysNewGapCompleter()
    researcher = DeepResearcher(
        HybridRetriever([searcher]), completer, config=DeepResearchConfig(max_iterations=3)
    )

    result = researcher.perform_deep_research(REQUEST, QUERY)

    assert completer.calls == 3
    assert len(searcher.queries) == 4
    assert result.expert_ids[0] == "expert-java"
    assert {"expert-skill1", "expert-skill2", "expert-skill3"} <= set(result.expert_ids)


def test_expansion_rounds_are_decayed_below_baseline() -> None:
    searcher = TermEchoSearcher()
    completer = GapCompleter(
        [GapAnalysis(missing_skills=["Kafka"], needs_expansion=True), GapAnalysis(needs_expansion=False)]
    )
    researcher = DeepResearcher(HybridRetriever([searcher]), completer)

    result = researcher.perform_deep_research(REQUEST, QUERY)

    assert "Kafka" in searcher.queries[1].skills
    assert "Java" in searcher.queries[1].technologies
    assert result.expert_ids[0] == "expert-java"
    assert result.relevance_scores["expert-java"] > result.relevance_scores["expert-kafka"]
    assert completer.calls == 2


def test_no_gaps_stops_after_baseline() -> None:
    searcher = TermEchoSearcher()
    completer = GapCompleter([GapAnalysis(needs_expansion=False)])

    DeepResearcher(HybridRetriever([searcher]), completer).perform_deep_research(REQUEST, QUERY)

    assert len(searcher.queries) == 1
    assert completer.calls == 1


def test_repeated_gap_terms_stop_the_loop() -> None:
    searcher = TermEchoSearcher()
    completer = GapCompleter([GapAnalysis(missing_technologies=["java"], needs_expansion=True)])
    tracer = ExecutionTracer()

    DeepResearcher(HybridRetriever([searcher]), completer).perform_deep_research(
        REQUEST, QUERY, tracer=tracer
    )

    assert len(searcher.queries) == 1
    assert tracer.build_trace().find("Query Expansion")[0].status is StepStatus.SKIPPED


def test_gap_analysis_failure_returns_last_result() -> None:
    searcher = TermEchoSearcher()
    completer = GapCompleter(
        [GapAnalysis(missing_skills=["Kafka"], needs_expansion=True), TransientLLMError("overloaded")]
    )
    tracer = ExecutionTracer()

    result = DeepResearcher(HybridRetriever([searcher]), completer).perform_deep_research(
        REQUEST, QUERY, tracer=tracer
    )

    assert result.expert_ids == ["expert-java", "expert-kafka"]
    statuses = [step.status for step in tracer.build_trace().find("Gap Analysis")]
    assert statuses == [StepStatus.SUCCESS, StepStatus.FAILED]


def test_empty_query_skips_sources_and_gap_analysis() -> None:
    searcher = TermEchoSearcher()
    completer = AlwaysNewGapCompleter()
    tracer = ExecutionTracer()

    result = DeepResearcher(HybridRetriever([searcher]), completer).perform_deep_research(
        QueryRequest(query="   ", options=QueryOptions(deep_research=True)),
        ParsedQuery(text=""),
        tracer=tracer,
    )

    assert result.expert_ids == []
    assert searcher.queries == []
    assert completer.calls == 0
    assert tracer.build_trace().find("Deep Research")[0].status is StepStatus.SKIPPED
