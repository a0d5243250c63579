"""Tests for Borda aggregation and self-preference detection."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from deliberation.review import PeerRanking
from deliberation.voting import BordaScheme, RankAggregator

MAPPING = {"LA": "m-a", "LB": "m-b", "LC": "m-c", "LD": "m-d"}


def ranking(judge, *labels):
    return PeerRanking(judge, tuple(labels))


def test_linear_scores():
    rankings = [
        ranking("m-a", "LA", "LB", "LC", "LD"),
        ranking("m-b", "LB", "LA", "LC", "LD"),
        ranking("m-c", "LA", "LC", "LB", "LD"),
    ]
    result = RankAggregator().aggregate(rankings, MAPPING)

    assert result.weights == {"m-a": 11, "m-b": 9, "m-c": 7, "m-d": 3}
    assert result.ordered_model_ids() == ["m-a", "m-b", "m-c", "m-d"]
    assert result.num_judges == 3
    assert result.total_points == 3 * 10


def test_zero_based_scheme():
    rankings = [ranking("m-a", "LA", "LB", "LC", "LD")]
    result = RankAggregator(BordaScheme.ZERO_BASED).aggregate(rankings, MAPPING)
    assert result.weights == {"m-a": 3, "m-b": 2, "m-c": 1, "m-d": 0}


def test_four_judges_four_entries_zero_based_total():
    rankings = [ranking(j, "LA", "LB", "LC", "LD") for j in MAPPING.values()]
    result = RankAggregator(BordaScheme.ZERO_BASED).aggregate(rankings, MAPPING)
    assert result.total_points == 4 * (4 * (4 - 1) // 2)


def test_ties_break_by_model_id():
    rankings = [
        ranking("m-a", "LB", "LA", "LC", "LD"),
        ranking("m-b", "LA", "LB", "LC", "LD"),
    ]
    result = RankAggregator().aggregate(rankings, MAPPING)
    assert result.weights["m-a"] == result.weights["m-b"]
    assert result.ordered_model_ids()[:2] == ["m-a", "m-b"]


def test_invalid_rankings_are_excluded():
    rankings = [
        ranking("m-a", "LA", "LB", "LC", "LD"),
        ranking("m-b", "LA", "LA", "LC", "LD"),
        ranking("m-c", "LA", "LB", "LC", "LX"),
    ]
    result = RankAggregator().aggregate(rankings, MAPPING)
    assert result.num_judges == 1
    assert result.excluded_judges == ["m-b", "m-c"]
    assert result.total_points == 10


def test_self_preference_is_flagged_without_changing_points():
    honest = [
        ranking("m-b", "LB", "LA", "LC", "LD"),
        ranking("m-c", "LB", "LA", "LC", "LD"),
    ]
    self_first = ranking("m-a", "LA", "LB", "LC", "LD")
    self_second = ranking("m-a", "LB", "LA", "LC", "LD")

    flagged = RankAggregator().aggregate(honest + [self_first], MAPPING)
    unflagged = RankAggregator().aggregate(honest + [self_second], MAPPING)

    by_model = {m.model_id: m for m in flagged.scored_models}
    assert by_model["m-a"].self_preference_flag
    assert by_model["m-a"].borda_score == 4 + 3 + 3
    assert not {m.model_id: m for m in unflagged.scored_models}["m-a"].self_preference_flag
    # m-b also ranked itself first in both cases.
    assert by_model["m-b"].self_preference_flag


def test_bias_report_compares_self_and_peer_positions():
    rankings = [
        ranking("m-a", "LA", "LB", "LC", "LD"),
        ranking("m-b", "LB", "LC", "LD", "LA"),
        ranking("m-c", "LB", "LC", "LA", "LD"),
    ]
    result = RankAggregator().aggregate(rankings, MAPPING)
    entry = next(b for b in result.bias_report if b.model_id == "m-a")

    assert entry.self_position == 0
    assert entry.peer_mean_position == pytest.approx(2.5)
    assert entry.self_advantage == pytest.approx(2.5)
    assert entry.ranked_self_first
    # m-d never judged, so it has no bias entry.
    assert "m-d" not in {b.model_id for b in result.bias_report}


def test_aggregation_does_not_mutate_inputs():
    rankings = [ranking("m-a", "LA", "LB", "LC", "LD")]
    mapping = dict(MAPPING)
    RankAggregator().aggregate(rankings, mapping)
    assert mapping == MAPPING
    assert rankings[0].ordered_labels == ("LA", "LB", "LC", "LD")


@st.composite
def ballots(draw):
    n = draw(st.integers(min_value=3, max_value=8))
    labels = [f"L{i}" for i in range(n)]
    mapping = {label: f"model-{i}" for i, label in enumerate(labels)}
    judges = draw(st.lists(st.sampled_from(list(mapping.values())), min_size=1, max_size=n, unique=True))
    rankings = [PeerRanking(j, tuple(draw(st.permutations(labels)))) for j in judges]
    return rankings, mapping


@settings(max_examples=100, deadline=None)
@given(ballots(), st.sampled_from(list(BordaScheme)))
def test_points_are_conserved(ballot, scheme):
    rankings, mapping = ballot
    result = RankAggregator(scheme).aggregate(rankings, mapping)
    n = len(mapping)
    assert result.total_points == len(rankings) * scheme.total_per_judge(n)
    assert len(result.scored_models) == n


@settings(max_examples=50, deadline=None)
@given(ballots())
def test_aggregation_is_deterministic_and_order_independent(ballot):
    rankings, mapping = ballot
    first = RankAggregator().aggregate(rankings, mapping)
    again = RankAggregator().aggregate(list(reversed(rankings)), mapping)
    assert first.to_json() == again.to_json()
    scores = [m.borda_score for m in first.scored_models]
    assert scores == sorted(scores, reverse=True)
