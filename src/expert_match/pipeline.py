"""End-to-end query processing: history, parsing, retrieval, reasoning."""

from __future__ import annotations

import logging
from collections.abc import Callable

from expert_match.config import PipelineConfig
from expert_match.deadline import Deadline
from expert_match.errors import DeadlineExceededError
from expert_match.history.compressor import ConversationHistoryCompressor
from expert_match.obs.tracing import ExecutionTracer, Timer
from expert_match.parsing import QueryParser
from expert_match.reasoning.controller import ReasoningController, validate_pattern_combination
from expert_match.reasoning.models import QueryClassification
from expert_match.retrieval.deep_research import DeepResearcher
from expert_match.retrieval.rerank import ExpertEnricher
from expert_match.retrieval.retriever import HybridRetriever
from expert_match.types import (
    ConversationMessage,
    Entity,
    ExpertContext,
    ExpertMatch,
    MatchSummary,
    ParsedQuery,
    ProgressEvent,
    QueryRequest,
    QueryResponse,
    RetrievalResult,
    Source,
)

logger = logging.getLogger(__name__)

PROJECT_SCORE_FACTOR = 0.9


class ExpertMatchPipeline:
    """Composes the matching stages for one request at a time.

    Collaborators are passed in explicitly; the pipeline holds no per-request
    state, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        *,
        parser: QueryParser,
        retriever: HybridRetriever,
        enricher: ExpertEnricher,
        controller: ReasoningController,
        history: ConversationHistoryCompressor | None = None,
        deep_researcher: DeepResearcher | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self.parser = parser
        self.retriever = retriever
        self.enricher = enricher
        self.controller = controller
        self.history = history
        self.deep_researcher = deep_researcher
        self.config = config or PipelineConfig()
        self._observer: Callable[[ProgressEvent], None] | None = None

    def set_observer(self, observer: Callable[[ProgressEvent], None] | None) -> None:
        """Set an optional callback invoked after each pipeline stage."""
        self._observer = observer

    def process_query(self, request: QueryRequest) -> QueryResponse:
        options = request.options
        validate_pattern_combination(options.use_cascade_pattern, options.use_cycle_pattern)

        tracer = ExecutionTracer()
        deadline = Deadline(options.timeout_seconds or self.config.request_timeout_seconds)
        try:
            with Timer() as timer:
                history = self._load_history(request, tracer, deadline)
                parsed = self._parse(request.query, tracer)

                classification: QueryClassification | None = None
                if options.use_routing_pattern:
                    classification = self._route(request, tracer, deadline)
                    if classification is not None:
                        parsed = parsed.with_intent(classification.intent)

                result = self._retrieve(request, parsed, tracer, deadline)
                experts = self._enrich(result, tracer)

                deadline.check()
                outcome = self.controller.generate_answer(
                    parsed,
                    experts,
                    history,
                    options,
                    scores=result.relevance_scores,
                    tracer=tracer,
                    deadline=deadline,
                )
                self._emit("answer", f"generated with {outcome.pattern.value} pattern")
        except BaseException:
            deadline.cancel()
            raise

        ranked = [
            ExpertMatch(expert=expert, relevance_score=result.score_of(expert.expert_id), rank=rank)
            for rank, expert in enumerate(experts, start=1)
        ]
        scores = [match.relevance_score for match in ranked]
        logger.info(
            "query processed in %.1fms: %d experts, pattern=%s",
            timer.elapsed_ms,
            len(ranked),
            outcome.pattern.value,
        )
        return QueryResponse(
            answer=outcome.answer,
            ranked_experts=ranked,
            sources=_build_sources(ranked),
            entities=_build_entities(parsed),
            summary=MatchSummary.from_scores(scores),
            confidence=sum(scores) / len(scores) if scores else 0.0,
            pattern=outcome.pattern,
            processing_time_ms=timer.elapsed_ms,
            classification=classification,
            execution_trace=tracer.build_trace() if options.include_execution_trace else None,
        )

    def _load_history(
        self, request: QueryRequest, tracer: ExecutionTracer, deadline: Deadline
    ) -> list[ConversationMessage]:
        if self.history is None or not request.chat_id:
            return []
        with tracer.step("Conversation History", "ConversationHistoryCompressor", "get_optimized_history") as step:
            history = self.history.get_optimized_history(
                request.chat_id,
                self.config.history_contains_current_query,
                tracer,
                deadline=deadline,
            )
            step.input_summary = f"chat={request.chat_id}"
            step.output_summary = f"messages={len(history)}"
        self._emit("history", f"loaded {len(history)} messages")
        return history

    def _parse(self, query: str, tracer: ExecutionTracer) -> ParsedQuery:
        with tracer.step("Query Parsing", type(self.parser).__name__, "parse") as step:
            parsed = self.parser.parse(query)
            step.input_summary = query[:120]
            step.output_summary = f"intent={parsed.intent.value} terms={sorted(parsed.terms())}"
        self._emit("parse", f"intent {parsed.intent.value}")
        return parsed

    def _route(
        self, request: QueryRequest, tracer: ExecutionTracer, deadline: Deadline
    ) -> QueryClassification | None:
        options = request.options
        try:
            classification = self.controller.classify(
                request.query,
                use_cascade=options.use_cascade_pattern,
                use_cycle=options.use_cycle_pattern,
                tracer=tracer,
                deadline=deadline,
            )
        except DeadlineExceededError:
            raise
        except Exception as exc:
            logger.warning("routing failed, keeping parsed intent: %s", exc)
            return None
        if classification is not None:
            self._emit("routing", f"classified as {classification.intent.value}")
        return classification

    def _retrieve(
        self,
        request: QueryRequest,
        parsed: ParsedQuery,
        tracer: ExecutionTracer,
        deadline: Deadline,
    ) -> RetrievalResult:
        if request.options.deep_research and self.deep_researcher is not None:
            result = self.deep_researcher.perform_deep_research(
                request, parsed, tracer=tracer, deadline=deadline
            )
        else:
            if request.options.deep_research:
                tracer.skip_step("Deep Research", "no deep researcher configured")
            result = self.retriever.retrieve(parsed, request.options, tracer=tracer, deadline=deadline)
        self._emit("retrieval", f"{len(result)} experts")
        return result

    def _enrich(self, result: RetrievalResult, tracer: ExecutionTracer) -> list[ExpertContext]:
        if not result.expert_ids:
            return []
        with tracer.step("Expert Enrichment", type(self.enricher).__name__, "load_expert_details") as step:
            experts = self.enricher.load_expert_details(result.expert_ids)
            step.input_summary = f"ids={len(result.expert_ids)}"
            step.output_summary = f"experts={len(experts)}"
        self._emit("enrichment", f"{len(experts)} expert records")
        return experts

    def _emit(self, stage: str, message: str) -> None:
        if self._observer is not None:
            self._observer(ProgressEvent(stage=stage, message=message))


def _build_sources(ranked: list[ExpertMatch]) -> list[Source]:
    sources: list[Source] = []
    for match in ranked:
        expert = match.expert
        sources.append(
            Source(
                type="expert",
                id=expert.expert_id,
                name=expert.name,
                relevance_score=match.relevance_score,
                metadata={"email": expert.email, "seniority": expert.seniority},
            )
        )
        for project in expert.projects:
            sources.append(
                Source(
                    type="project",
                    id=project.project_id,
                    name=project.name,
                    relevance_score=match.relevance_score * PROJECT_SCORE_FACTOR,
                    metadata={"expert_id": expert.expert_id, "customer": project.customer},
                )
            )
    return sources


def _build_entities(parsed: ParsedQuery) -> list[Entity]:
    entities: list[Entity] = []
    for entity_type, names in (
        ("skill", parsed.skills),
        ("technology", parsed.technologies),
        ("domain", parsed.domains),
        ("customer", parsed.customers),
    ):
        entities.extend(Entity(type=entity_type, name=name) for name in sorted(names))
    return entities
