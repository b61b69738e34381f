"""Hybrid retriever: concurrent source fan-out followed by weighted fusion."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from expert_match.config import RetrievalConfig
from expert_match.deadline import Deadline
from expert_match.errors import (
    DeadlineExceededError,
    EmbeddingUnavailableError,
    RetrievalError,
)
from expert_match.obs.tracing import ExecutionTracer, StepHandle
from expert_match.retrieval.fusion import WeightedScoreFusion, resolve_weights
from expert_match.retrieval.rerank import Reranker
from expert_match.retrieval.sources import SourceSearcher
from expert_match.types import ParsedQuery, QueryOptions, RetrievalResult, SourceResult

logger = logging.getLogger(__name__)


class HybridRetriever:
    """Runs every source concurrently and fuses whatever comes back.

    Each source fails on its own: an error or a per-source timeout yields an
    empty result for that source and a FAILED trace step. Only the request
    deadline, or a mandatory vector search losing its embeddings, aborts the
    whole retrieval.
    """

    def __init__(
        self,
        searchers: list[SourceSearcher],
        config: RetrievalConfig | None = None,
        reranker: Reranker | None = None,
    ) -> None:
        self.searchers = searchers
        self.config = config or RetrievalConfig()
        self.reranker = reranker
        self.fusion = WeightedScoreFusion(self.config)

    def result_limit(self, options: QueryOptions) -> int:
        return options.max_results or self.config.max_results

    def similarity_threshold(self, options: QueryOptions) -> float:
        if options.min_similarity is not None:
            return options.min_similarity
        return self.config.vector_min_similarity

    def retrieve(
        self,
        parsed_query: ParsedQuery,
        options: QueryOptions | None = None,
        *,
        tracer: ExecutionTracer | None = None,
        deadline: Deadline | None = None,
    ) -> RetrievalResult:
        options = options or QueryOptions()
        tracer = tracer or ExecutionTracer()
        weights = resolve_weights(self.config.default_weights, options.fusion_weights)

        source_results = self.search_sources(parsed_query, options, tracer=tracer, deadline=deadline)
        if not source_results:
            return RetrievalResult.empty()

        handle = tracer.start_step("Result Fusion", "WeightedScoreFusion", "fuse")
        fused = self.fusion.fuse(
            source_results, weights=weights, max_results=self.result_limit(options)
        )
        tracer.end_step(
            ", ".join(f"{result.source}={len(result.expert_ids)}" for result in source_results),
            f"experts={len(fused)}",
            handle=handle,
        )
        return self.rerank_if_requested(parsed_query, fused, options, tracer=tracer, deadline=deadline)

    def search_sources(
        self,
        parsed_query: ParsedQuery,
        options: QueryOptions,
        *,
        tracer: ExecutionTracer,
        deadline: Deadline | None = None,
    ) -> list[SourceResult]:
        if parsed_query.is_empty():
            tracer.skip_step("Hybrid Retrieval", "empty query")
            return []

        deadline = deadline or Deadline()
        deadline.check()
        max_results = max(self.config.source_max_results, self.result_limit(options))
        threshold = self.similarity_threshold(options)
        input_summary = _query_summary(parsed_query)

        executor = ThreadPoolExecutor(
            max_workers=max(1, len(self.searchers)), thread_name_prefix="retrieval"
        )
        pending: list[tuple[SourceSearcher, StepHandle, Future[SourceResult], float]] = []
        try:
            for searcher in self.searchers:
                handle = tracer.start_step(
                    f"{searcher.name.title()} Search", type(searcher).__name__, "search"
                )
                future = executor.submit(
                    searcher.search, parsed_query, max_results, min_similarity=threshold
                )
                pending.append((searcher, handle, future, time.monotonic()))

            results: list[SourceResult] = []
            for index, (searcher, handle, future, submitted_at) in enumerate(pending):
                try:
                    results.append(
                        self._collect(
                            searcher, handle, future, submitted_at, tracer, deadline, input_summary
                        )
                    )
                except (DeadlineExceededError, RetrievalError) as exc:
                    for _, open_handle, open_future, _ in pending[index + 1 :]:
                        open_future.cancel()
                        tracer.fail_step(exc, handle=open_handle)
                    raise
            return results
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def rerank_if_requested(
        self,
        parsed_query: ParsedQuery,
        result: RetrievalResult,
        options: QueryOptions,
        *,
        tracer: ExecutionTracer,
        deadline: Deadline | None = None,
    ) -> RetrievalResult:
        if not options.rerank or self.reranker is None or len(result) < 2:
            return result
        try:
            return self.reranker.rerank(parsed_query, result, tracer=tracer, deadline=deadline)
        except DeadlineExceededError:
            raise
        except Exception as exc:
            logger.warning("reranking failed, keeping fused order: %s", exc)
            return result

    def _collect(
        self,
        searcher: SourceSearcher,
        handle: StepHandle,
        future: Future[SourceResult],
        submitted_at: float,
        tracer: ExecutionTracer,
        deadline: Deadline,
        input_summary: str,
    ) -> SourceResult:
        source_timeout = self.config.timeout_for(searcher.name)
        left = source_timeout - (time.monotonic() - submitted_at)
        try:
            result = deadline.wait(future, max(left, 0.0))
        except FutureTimeoutError:
            future.cancel()
            logger.warning("%s search timed out after %.2fs", searcher.name, source_timeout)
            tracer.fail_step(f"timed out after {source_timeout:.2f}s", handle=handle)
            return SourceResult.empty(searcher.name)
        except DeadlineExceededError as exc:
            tracer.fail_step(exc, handle=handle)
            raise
        except EmbeddingUnavailableError as exc:
            tracer.fail_step(exc, handle=handle)
            if self.config.vector_required:
                raise RetrievalError(
                    "vector search is mandatory but embeddings are unavailable"
                ) from exc
            logger.warning("%s search skipped: %s", searcher.name, exc)
            return SourceResult.empty(searcher.name)
        except Exception as exc:
            logger.warning("%s search failed: %s", searcher.name, exc)
            tracer.fail_step(exc, handle=handle)
            return SourceResult.empty(searcher.name)

        tracer.end_step(
            input_summary,
            f"experts={len(result.expert_ids)}",
            handle=handle,
        )
        return result


def _query_summary(parsed_query: ParsedQuery) -> str:
    terms = sorted(parsed_query.terms())
    return f"text={parsed_query.text[:80]!r} terms={terms}"
