"""FastAPI entrypoint for expert ingest, matching and retrieval endpoints."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from expert_match.config import PipelineConfig, RetrievalConfig
from expert_match.embedding import HashingEmbedder
from expert_match.errors import ExpertMatchError, PatternCombinationError
from expert_match.history.compressor import ConversationHistoryCompressor
from expert_match.history.memory import InMemoryHistoryRepository
from expert_match.obs.tracing import ExecutionTracer
from expert_match.parsing import VocabularyQueryParser
from expert_match.pipeline import ExpertMatchPipeline
from expert_match.reasoning.completion import LangChainStructuredCompleter, StructuredCompleter
from expert_match.reasoning.controller import ReasoningController
from expert_match.reasoning.fallback import DeterministicCompleter
from expert_match.retrieval.deep_research import DeepResearcher
from expert_match.retrieval.memory import (
    InMemoryExpertStore,
    InMemoryGraphSearch,
    InMemoryKeywordSearch,
    InMemoryVectorSearch,
)
from expert_match.retrieval.rerank import StructuredCompletionReranker
from expert_match.retrieval.retriever import HybridRetriever
from expert_match.retrieval.sources import (
    GraphSourceSearcher,
    KeywordSourceSearcher,
    VectorSourceSearcher,
)
from expert_match.types import (
    ExpertContext,
    ProjectExperience,
    QueryOptions,
    QueryRequest,
)

logging.basicConfig(
    level=os.getenv("EXPERT_MATCH_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


class ProjectPayload(BaseModel):
    project_id: str
    name: str
    role: str = ""
    technologies: list[str] = Field(default_factory=list)
    customer: str = ""
    industry: str = ""


class ExpertPayload(BaseModel):
    expert_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    email: str = ""
    seniority: str = ""
    skills: list[str] = Field(default_factory=list)
    projects: list[ProjectPayload] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestExpertsRequest(BaseModel):
    experts: list[ExpertPayload] = Field(min_length=1)


class OptionsPayload(BaseModel):
    max_results: int | None = Field(default=None, ge=1, le=100)
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)
    rerank: bool = False
    deep_research: bool = False
    use_routing_pattern: bool = False
    use_cascade_pattern: bool = False
    use_cycle_pattern: bool = False
    include_execution_trace: bool = True
    fusion_weights: dict[str, float] | None = None
    timeout_seconds: float | None = Field(default=None, gt=0.0)


class QueryPayload(BaseModel):
    query: str = Field(min_length=1)
    chat_id: str | None = None
    options: OptionsPayload = Field(default_factory=OptionsPayload)


app = FastAPI(title="Expert Match", version="0.1.0")

_config = PipelineConfig(
    request_timeout_seconds=float(os.getenv("EXPERT_MATCH_REQUEST_TIMEOUT", "30")),
    # The hashing embedder yields low cosine scores, so its threshold is relaxed.
    retrieval=RetrievalConfig(vector_min_similarity=0.1),
)
_embedder = HashingEmbedder()
_store = InMemoryExpertStore(_embedder)
_history_repository = InMemoryHistoryRepository()

_llm = _create_llm()
_completer: StructuredCompleter = (
    LangChainStructuredCompleter(_llm) if _llm is not None else DeterministicCompleter()
)

_retriever = HybridRetriever(
    [
        VectorSourceSearcher(InMemoryVectorSearch(_store), _embedder),
        GraphSourceSearcher(InMemoryGraphSearch(_store)),
        KeywordSourceSearcher(InMemoryKeywordSearch(_store)),
    ],
    _config.retrieval,
    reranker=StructuredCompletionReranker(_completer, _store),
)
_pipeline = ExpertMatchPipeline(
    parser=VocabularyQueryParser(_store.vocabulary),
    retriever=_retriever,
    enricher=_store,
    controller=ReasoningController(_completer, _config.reasoning),
    history=ConversationHistoryCompressor(_history_repository, _completer, _config.history),
    deep_researcher=DeepResearcher(_retriever, _completer, _store, _config.deep_research),
    config=_config,
)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "completer_mode": "langchain" if _llm is not None else "deterministic",
        "expert_count": len(_store),
    }


@app.post("/experts")
def ingest_experts(request: IngestExpertsRequest) -> dict[str, Any]:
    experts = [
        ExpertContext(
            expert_id=item.expert_id,
            name=item.name,
            email=item.email,
            seniority=item.seniority,
            skills=list(item.skills),
            projects=[ProjectExperience(**project.model_dump()) for project in item.projects],
            metadata=dict(item.metadata),
        )
        for item in request.experts
    ]
    _store.upsert(experts)
    return {"experts_indexed": len(experts), "expert_ids": [e.expert_id for e in experts]}


@app.post("/query")
def query(request: QueryPayload) -> dict[str, Any]:
    query_request = QueryRequest(
        query=request.query,
        chat_id=request.chat_id,
        options=QueryOptions(**request.options.model_dump()),
    )
    try:
        response = _pipeline.process_query(query_request)
    except Exception as exc:
        raise _to_http_error(exc) from exc

    if request.chat_id:
        _history_repository.append(request.chat_id, "user", request.query)
        _history_repository.append(request.chat_id, "assistant", response.answer)

    payload = asdict(response)
    if response.classification is not None:
        payload["classification"] = response.classification.model_dump(mode="json")
    return payload


@app.post("/retrieve")
def retrieve(request: QueryPayload) -> dict[str, Any]:
    options = QueryOptions(**request.options.model_dump())
    tracer = ExecutionTracer()
    parsed = _pipeline.parser.parse(request.query)
    try:
        result = _retriever.retrieve(parsed, options, tracer=tracer)
    except Exception as exc:
        raise _to_http_error(exc) from exc
    return {
        "items": [
            {"expert_id": expert_id, "relevance_score": result.relevance_scores[expert_id]}
            for expert_id in result.expert_ids
        ],
        "execution_trace": asdict(tracer.build_trace()),
    }


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, PatternCombinationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, ExpertMatchError):
        status = 503 if exc.retryable else 502
        return HTTPException(
            status_code=status, detail={"error_code": exc.error_code, "message": str(exc)}
        )
    logger.exception("unexpected failure")
    return HTTPException(status_code=500, detail=str(exc))
