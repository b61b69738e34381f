import pytest

from expert_match.config import RetrievalConfig
from expert_match.retrieval.fusion import FusionAccumulator, WeightedScoreFusion, resolve_weights
from expert_match.types import SourceResult


def _example_results() -> list[SourceResult]:
    return [
        SourceResult(source="vector", expert_ids=["E1", "E2"], scores={"E1": 0.9, "E2": 0.6}),
        SourceResult(source="graph", expert_ids=["E2", "E3"]),
        SourceResult(source="keyword", expert_ids=["E1"]),
    ]


def test_equal_weights_rank_two_source_hits_above_single_source_hits() -> None:
    result = WeightedScoreFusion().fuse(_example_results())

    assert result.expert_ids == ["E1", "E2", "E3"]
    assert result.relevance_scores["E1"] == pytest.approx(1.9 / 3)
    assert result.relevance_scores["E2"] == pytest.approx(1.6 / 3)
    assert result.relevance_scores["E3"] == pytest.approx(0.5 / 3)


def test_fusion_is_deterministic_across_calls() -> None:
    fusion = WeightedScoreFusion()
    weights = {"vector": 0.7, "graph": 0.5, "keyword": 0.3}

    first = fusion.fuse(_example_results(), weights=weights)
    for _ in range(5):
        again = fusion.fuse(_example_results(), weights=weights)
        assert again.expert_ids == first.expert_ids
        assert again.relevance_scores == first.relevance_scores


def test_ties_keep_first_contribution_order() -> None:
    result = WeightedScoreFusion().fuse(
        [
            SourceResult(source="graph", expert_ids=["A"]),
            SourceResult(source="keyword", expert_ids=["B"]),
        ]
    )

    assert result.expert_ids == ["A", "B"]
    assert result.relevance_scores["A"] == result.relevance_scores["B"]


def test_raising_weight_never_lowers_rank_of_single_source_expert() -> None:
    results = [
        SourceResult(source="vector", expert_ids=["E1", "E2"], scores={"E1": 0.9, "E2": 0.8}),
        SourceResult(source="graph", expert_ids=["E2", "E3"]),
        SourceResult(source="keyword", expert_ids=["E1", "E4"]),
    ]
    fusion = WeightedScoreFusion()

    previous_rank = None
    for graph_weight in (0.0, 0.2, 0.4, 0.6, 0.8, 1.0):
        fused = fusion.fuse(results, weights={"graph": graph_weight})
        rank = fused.expert_ids.index("E3")
        if previous_rank is not None:
            assert rank <= previous_rank
        previous_rank = rank


def test_scores_are_bounded_and_non_increasing() -> None:
    result = WeightedScoreFusion().fuse(_example_results(), weights={"vector": 1.0, "graph": 0.8, "keyword": 0.6})
    scores = [result.relevance_scores[expert_id] for expert_id in result.expert_ids]

    assert all(0.0 <= score <= 1.0 for score in scores)
    assert scores == sorted(scores, reverse=True)


def test_duplicates_within_a_source_count_once() -> None:
    result = WeightedScoreFusion().fuse(
        [SourceResult(source="graph", expert_ids=["E1", "E1", "E2"])]
    )

    assert result.expert_ids == ["E1", "E2"]
    assert result.relevance_scores["E1"] == pytest.approx(1.0)
    assert result.relevance_scores["E2"] == pytest.approx(0.5)


def test_results_are_truncated_to_max_results() -> None:
    result = WeightedScoreFusion(RetrievalConfig(max_results=2)).fuse(_example_results())

    assert result.expert_ids == ["E1", "E2"]


def test_empty_sources_give_empty_result() -> None:
    result = WeightedScoreFusion().fuse(
        [SourceResult.empty("vector"), SourceResult.empty("graph")]
    )

    assert result.expert_ids == []
    assert result.relevance_scores == {}


def test_weights_outside_unit_interval_are_rejected() -> None:
    with pytest.raises(ValueError):
        resolve_weights({"vector": 1.0}, {"graph": 1.5})
    with pytest.raises(ValueError):
        WeightedScoreFusion().fuse(_example_results(), weights={"keyword": -0.1})


def test_accumulator_decays_later_rounds() -> None:
    accumulator = FusionAccumulator()
    accumulator.add([SourceResult(source="graph", expert_ids=["E1"])])
    accumulator.add([SourceResult(source="graph", expert_ids=["E2"])], factor=0.5)

    result = accumulator.result()

    assert result.expert_ids == ["E1", "E2"]
    assert result.relevance_scores["E1"] == pytest.approx(1.0 / 1.5)
    assert result.relevance_scores["E2"] == pytest.approx(0.5 / 1.5)
