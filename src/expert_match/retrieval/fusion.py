"""Weighted score fusion for multi-source retrieval results."""

from __future__ import annotations

from collections.abc import Mapping

from expert_match.config import RetrievalConfig
from expert_match.types import RetrievalResult, SourceResult

DEFAULT_WEIGHT = 1.0


def resolve_weights(
    defaults: Mapping[str, float] | None = None,
    overrides: Mapping[str, float] | None = None,
) -> dict[str, float]:
    """Merge request weights over configured defaults, validating the range."""
    weights = dict(defaults or {})
    weights.update(overrides or {})
    for source, weight in weights.items():
        if not 0.0 <= weight <= 1.0:
            raise ValueError(f"fusion weight for {source!r} must be within [0, 1], got {weight}")
    return weights


class FusionAccumulator:
    """Sums weighted per-source contributions across one or more rounds.

    A source with native scores contributes `weight * score`; any other source
    contributes `weight * (N - position) / N`. Reported relevance is the sum
    divided by the total weight fused so far, which keeps it within [0, 1]
    without changing the order.
    """

    def __init__(self) -> None:
        self._scores: dict[str, float] = {}
        self._total_weight = 0.0

    def add(
        self,
        source_results: list[SourceResult],
        weights: Mapping[str, float] | None = None,
        *,
        factor: float = 1.0,
    ) -> None:
        weights = weights or {}
        for result in source_results:
            weight = weights.get(result.source, DEFAULT_WEIGHT)
            if not 0.0 <= weight <= 1.0:
                raise ValueError(
                    f"fusion weight for {result.source!r} must be within [0, 1], got {weight}"
                )
            ids = _dedupe(result.expert_ids)
            if not ids:
                continue
            effective = weight * factor
            self._total_weight += effective
            size = len(ids)
            for position, expert_id in enumerate(ids):
                if result.scores is not None and expert_id in result.scores:
                    contribution = effective * result.scores[expert_id]
                else:
                    contribution = effective * (size - position) / size
                self._scores[expert_id] = self._scores.get(expert_id, 0.0) + contribution

    def __len__(self) -> int:
        return len(self._scores)

    def result(self, max_results: int | None = None) -> RetrievalResult:
        if not self._scores:
            return RetrievalResult.empty()
        # Stable sort: equal scores keep first-contribution order.
        ranked = sorted(self._scores.items(), key=lambda item: item[1], reverse=True)
        if max_results is not None:
            ranked = ranked[:max_results]
        normalizer = self._total_weight if self._total_weight > 0 else 1.0
        return RetrievalResult(
            expert_ids=[expert_id for expert_id, _ in ranked],
            relevance_scores={
                expert_id: max(0.0, min(1.0, score / normalizer)) for expert_id, score in ranked
            },
        )


class WeightedScoreFusion:
    """Fuses one round of source results into a single ranking."""

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def fuse(
        self,
        source_results: list[SourceResult],
        *,
        weights: Mapping[str, float] | None = None,
        max_results: int | None = None,
    ) -> RetrievalResult:
        accumulator = FusionAccumulator()
        accumulator.add(source_results, resolve_weights(self.config.default_weights, weights))
        return accumulator.result(max_results or self.config.max_results)


def _dedupe(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for expert_id in ids:
        if expert_id not in seen:
            seen.add(expert_id)
            ordered.append(expert_id)
    return ordered
