from __future__ import annotations

import json
import logging
import math
import random
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from parlayedge.correlation import (
    CorrelationMatrix,
    CorrelationRecord,
    build_correlation_matrix,
    calculate_correlated_probability,
    cholesky_decomposition,
    classify_leg_pair,
    correlation_severity,
    factor_correlation_matrix,
    format_correlation_impact,
    generate_correlated_uniform,
    load_correlation_data,
    lookup_correlation,
)
from parlayedge.models import LegInput
from parlayedge.parametric import MarketKind


def test_classification_precedence(make_leg) -> None:
    points = make_leg(market=MarketKind.POINTS, game_id="g1", team="BOS")
    assists = make_leg(market=MarketKind.ASSISTS, subject="jayson tatum ", game_id="g1")
    teammate = make_leg(subject="Jaylen Brown", game_id="g1", team="BOS")
    same_team = make_leg(subject="Jaylen Brown", game_id="g2", team="bos")
    other = make_leg(subject="Nikola Jokic", game_id="g3", team="DEN")

    assert classify_leg_pair(points, assists) == "same_player"
    assert classify_leg_pair(points, teammate) == "same_game"
    assert classify_leg_pair(points, same_team) == "same_team"
    assert classify_leg_pair(points, other) == "cross_game"


def test_team_markets_are_never_same_player(make_leg) -> None:
    spread = make_leg(market=MarketKind.SPREADS, subject="Celtics")
    total = make_leg(market=MarketKind.TOTALS, subject="Celtics")
    assert classify_leg_pair(spread, total) == "cross_game"


def test_missing_game_ids_do_not_match(make_leg) -> None:
    first = make_leg(subject="A")
    second = make_leg(subject="B")
    assert first.game_id is None and second.game_id is None
    assert classify_leg_pair(first, second) == "cross_game"


def test_lookup_uses_literature_defaults() -> None:
    lookup = lookup_correlation(MarketKind.ASSISTS, MarketKind.POINTS, "same_player")
    assert lookup.correlation == pytest.approx(0.35)
    assert lookup.is_estimated
    assert lookup.confidence == "estimated"

    game = lookup_correlation("totals", "spreads", "same_game")
    assert game.correlation == pytest.approx(0.15)


def test_lookup_same_player_defaults_are_floored() -> None:
    lookup = lookup_correlation(MarketKind.POINTS, MarketKind.REBOUNDS, "same_player")
    assert lookup.correlation == pytest.approx(0.30)


def test_lookup_falls_back_to_type_constants() -> None:
    assert lookup_correlation(
        MarketKind.HITS, MarketKind.GOALS, "same_team"
    ).correlation == pytest.approx(0.15)
    assert lookup_correlation(
        MarketKind.HITS, MarketKind.GOALS, "cross_game"
    ).correlation == pytest.approx(0.05)
    assert lookup_correlation(
        MarketKind.SPREADS, MarketKind.TOTALS, "same_team"
    ).correlation == pytest.approx(0.15)


@pytest.mark.parametrize(
    ("sample_size", "confidence"),
    [(150, "high"), (50, "medium"), (5, "low")],
)
def test_lookup_prefers_history(sample_size: int, confidence: str) -> None:
    records = [
        CorrelationRecord(
            sport="NBA",
            market_1="player_assists",
            market_2="player_points",
            correlation_type="same_player",
            coefficient=0.42,
            sample_size=sample_size,
        )
    ]
    lookup = lookup_correlation(MarketKind.POINTS, MarketKind.ASSISTS, "same_player", records)
    assert lookup.correlation == pytest.approx(0.42)
    assert not lookup.is_estimated
    assert lookup.confidence == confidence


def test_lookup_sport_filter() -> None:
    records = [
        CorrelationRecord("NFL", "spreads", "totals", "same_game", 0.5, 200),
    ]
    assert lookup_correlation(
        "spreads", "totals", "same_game", records, sport="NBA"
    ).correlation == pytest.approx(0.15)
    assert lookup_correlation(
        "spreads", "totals", "same_game", records, sport="nfl"
    ).correlation == pytest.approx(0.5)


def test_same_player_matrix(make_leg) -> None:
    legs = [
        make_leg(market=MarketKind.POINTS),
        make_leg(market=MarketKind.REBOUNDS),
        make_leg(market=MarketKind.ASSISTS),
    ]
    matrix = build_correlation_matrix(legs)
    assert {item.correlation_type for item in matrix.correlations} == {"same_player"}
    for i in range(3):
        assert matrix.matrix[i][i] == 1.0
        for j in range(3):
            assert matrix.matrix[i][j] == matrix.matrix[j][i]
            if i != j:
                assert matrix.matrix[i][j] >= 0.30
    assert matrix.has_high_correlation
    assert matrix.max_correlation == pytest.approx(0.35)


def test_small_matrices(make_leg) -> None:
    single = build_correlation_matrix([make_leg()])
    assert single.matrix == [[1.0]]
    assert single.correlations == []
    assert not single.has_high_correlation

    empty = build_correlation_matrix([])
    assert empty.matrix == []
    assert empty.avg_correlation == 0.0


@settings(max_examples=25, deadline=None)
@given(
    st.lists(
        st.tuples(
            st.sampled_from(list(MarketKind)),
            st.sampled_from(["A", "B", "C"]),
            st.sampled_from([None, "g1", "g2"]),
            st.sampled_from([None, "T1", "T2"]),
        ),
        max_size=7,
    )
)
def test_matrix_is_symmetric_with_unit_diagonal(rows) -> None:
    legs = [
        LegInput(
            id=str(index),
            market=market,
            subject=subject,
            line=10.5,
            side="over",
            american_odds=-110,
            game_id=game_id,
            team=team,
        )
        for index, (market, subject, game_id, team) in enumerate(rows)
    ]
    matrix = build_correlation_matrix(legs)
    n = len(legs)
    assert matrix.leg_count == n
    assert len(matrix.correlations) == n * (n - 1) // 2
    for i in range(n):
        assert matrix.matrix[i][i] == 1.0
        for j in range(n):
            assert matrix.matrix[i][j] == matrix.matrix[j][i]


def test_cholesky_reconstructs_matrix() -> None:
    lower = cholesky_decomposition([[1.0, 0.5], [0.5, 1.0]])
    assert lower[0] == pytest.approx([1.0, 0.0])
    assert lower[1] == pytest.approx([0.5, math.sqrt(0.75)])


def test_cholesky_regularises_non_positive_definite(
    caplog: pytest.LogCaptureFixture,
) -> None:
    matrix = [[1.0, 0.9, 0.9], [0.9, 1.0, -0.9], [0.9, -0.9, 1.0]]
    with caplog.at_level(logging.WARNING, logger="parlayedge.correlation"):
        factor = factor_correlation_matrix(matrix)
    assert factor.regularized == (2,)
    assert factor.was_regularized
    assert factor.lower[2][2] == pytest.approx(math.sqrt(0.001))
    assert "not positive definite" in caplog.text


def test_correlated_uniforms_are_reproducible() -> None:
    lower = cholesky_decomposition([[1.0, 0.6], [0.6, 1.0]])
    first = generate_correlated_uniform(lower, random.Random(3))
    second = generate_correlated_uniform(lower, random.Random(3))
    assert first == second
    assert all(0.0 <= value <= 1.0 for value in first)


def test_correlated_probability_skips_weak_correlation() -> None:
    matrix = CorrelationMatrix.identity(2)
    result = calculate_correlated_probability([0.6, 0.5], matrix)
    assert result.correlated_probability == pytest.approx(0.3)
    assert result.probability_ratio == 1.0
    assert result.correlation_impact == 0.0


def test_correlated_probability_rewards_positive_dependence(make_leg) -> None:
    matrix = build_correlation_matrix(
        [make_leg(market=MarketKind.POINTS), make_leg(market=MarketKind.ASSISTS)]
    )
    result = calculate_correlated_probability(
        [0.5, 0.5], matrix, simulations=20_000, rng=random.Random(11)
    )
    assert result.independent_probability == pytest.approx(0.25)
    assert result.correlated_probability > 0.27
    assert result.probability_ratio > 1.0
    assert result.correlation_impact > 0.0


def test_impact_formatting() -> None:
    assert format_correlation_impact(0.05) == "No significant impact"
    assert format_correlation_impact(1.234) == "+1.23% more likely to hit"
    assert format_correlation_impact(-2.5) == "-2.50% less likely to hit"


@pytest.mark.parametrize(
    ("average", "severity"),
    [(0.05, "none"), (0.2, "low"), (0.3, "medium"), (0.6, "high")],
)
def test_severity(average: float, severity: str) -> None:
    assert correlation_severity(average) == severity


def test_load_correlation_data_yaml(tmp_path: Path) -> None:
    source = tmp_path / "correlations.yaml"
    source.write_text(
        """
correlations:
  - sport: NBA
    market_1: player_points
    market_2: player_assists
    correlation_type: same_player
    coefficient: 0.4
    sample_size: 120
"""
    )
    records = load_correlation_data(source)
    assert records == [
        CorrelationRecord("NBA", "player_points", "player_assists", "same_player", 0.4, 120)
    ]


def test_load_correlation_data_json(tmp_path: Path) -> None:
    source = tmp_path / "correlations.json"
    source.write_text(
        json.dumps(
            [
                {
                    "market_1": "spreads",
                    "market_2": "totals",
                    "correlation_type": "same_game",
                    "coefficient": 0.1,
                }
            ]
        )
    )
    (record,) = load_correlation_data(source)
    assert record.sample_size == 0
    assert record.sport == ""


def test_load_correlation_data_rejects_bad_rows(tmp_path: Path) -> None:
    source = tmp_path / "bad.yaml"
    source.write_text("- market_1: spreads\n  correlation_type: same_game\n")
    with pytest.raises(TypeError, match="missing fields"):
        load_correlation_data(source)

    source.write_text(
        "- {market_1: a, market_2: b, correlation_type: same_game, coefficient: 1.5}\n"
    )
    with pytest.raises(ValueError, match="outside"):
        load_correlation_data(source)

    with pytest.raises(FileNotFoundError):
        load_correlation_data(tmp_path / "missing.yaml")
