from __future__ import annotations

import random

import pytest

from parlayedge.hybrid import (
    HybridSimulationConfig,
    HybridSimulator,
    SimulationTally,
    batch_screen_candidates,
    estimate_expected_value,
    quick_hybrid_analysis,
    run_hybrid_simulation,
    simulate_joint_outcomes,
)
from parlayedge.parametric import ContextualFactors, MarketKind
from parlayedge.staking import KellyCriterion


def test_independent_two_leg_parlay_converges(rng: random.Random) -> None:
    tally = simulate_joint_outcomes([0.6, 0.5], iterations=50_000, rng=rng)
    assert tally.independent_win_rate == pytest.approx(0.30, abs=0.01)
    assert tally.correlated_win_rate == pytest.approx(0.30, abs=0.01)
    assert tally.hit_rate(0) == pytest.approx(0.6, abs=0.01)
    assert tally.hit_rate(1) == pytest.approx(0.5, abs=0.01)


def test_simulation_without_legs_or_iterations() -> None:
    assert simulate_joint_outcomes([], iterations=100).iterations == 0
    empty = simulate_joint_outcomes([0.5], iterations=0)
    assert empty.leg_hits == (0,)
    assert empty.correlated_win_rate == 0.0


def test_tallies_merge_in_any_order() -> None:
    a = SimulationTally(10, 3, 2, (6, 5))
    b = SimulationTally(20, 7, 5, (11, 9))
    c = SimulationTally(5, 1, 1, (2, 3))
    assert (a + b) + c == a + (b + c)
    assert a + b == b + a
    assert a + SimulationTally.empty(2) == a
    merged = a + b + c
    assert merged.iterations == 35
    assert merged.leg_hits == (19, 17)
    with pytest.raises(ValueError):
        a + SimulationTally(1, 0, 0, (1,))


def test_batched_simulation_matches_counts(rng: random.Random) -> None:
    batches = [simulate_joint_outcomes([0.7, 0.4], iterations=2_000, rng=rng) for _ in range(3)]
    merged = batches[0] + batches[1] + batches[2]
    assert merged.iterations == 6_000
    assert merged.correlated_wins == sum(batch.correlated_wins for batch in batches)


def test_estimated_expected_value_follows_juice(make_leg) -> None:
    assert estimate_expected_value(make_leg(line=20.0, american_odds=-110)) == pytest.approx(19.0)
    assert estimate_expected_value(make_leg(line=20.0, american_odds=120)) == pytest.approx(21.0)
    assert estimate_expected_value(
        make_leg(line=20.0, side="under", american_odds=-110)
    ) == pytest.approx(21.0)
    assert estimate_expected_value(
        make_leg(line=20.0, side="under", american_odds=120)
    ) == pytest.approx(19.0)


def test_empty_simulation_result() -> None:
    result = run_hybrid_simulation([])
    assert result.recommendation == "skip"
    assert result.hybrid_win_rate == 0.0
    assert result.leg_results == []
    assert result.iterations == 50_000

    zero = run_hybrid_simulation([], HybridSimulationConfig(iterations=0))
    assert zero.iterations == 0


def test_zero_iterations_is_neutral(make_leg) -> None:
    result = run_hybrid_simulation([make_leg()], HybridSimulationConfig(iterations=0))
    assert result.recommendation == "skip"
    assert result.confidence_level == 0.0


def test_hybrid_blending(make_leg) -> None:
    legs = [
        make_leg(expected_value=26.0, game_id="g1"),
        make_leg(
            market=MarketKind.REBOUNDS,
            subject="Jaylen Brown",
            line=6.5,
            expected_value=7.5,
            game_id="g1",
        ),
    ]
    config = HybridSimulationConfig(iterations=5_000, seed=5)
    result = run_hybrid_simulation(legs, config)

    assert result.hybrid_win_rate == pytest.approx(
        0.4 * result.independent_win_rate + 0.6 * result.correlated_win_rate
    )
    for leg_result in result.leg_results:
        assert leg_result.hybrid_probability == pytest.approx(
            0.4 * leg_result.parametric_probability + 0.6 * leg_result.monte_carlo_hit_rate
        )
        assert leg_result.correlation_impact == pytest.approx(
            leg_result.monte_carlo_hit_rate - leg_result.parametric_probability
        )
    assert result.correlations_applied
    assert result.parametric_weight == pytest.approx(0.4)
    assert 0.0 < result.confidence_level <= 0.95


def test_seeded_runs_are_reproducible(make_leg) -> None:
    legs = [make_leg(expected_value=25.0), make_leg(market=MarketKind.ASSISTS, line=5.5)]
    config = HybridSimulationConfig(iterations=3_000, seed=99)
    first = run_hybrid_simulation(legs, config)
    second = run_hybrid_simulation(legs, config)
    assert first.hybrid_win_rate == second.hybrid_win_rate
    assert first.leg_results[1].monte_carlo_hit_rate == second.leg_results[1].monte_carlo_hit_rate


def test_injected_generator_is_used(make_leg) -> None:
    legs = [make_leg(expected_value=25.0)]
    config = HybridSimulationConfig(iterations=1_000)
    first = HybridSimulator(config, random.Random(1)).run(legs)
    second = HybridSimulator(config, random.Random(1)).run(legs)
    assert first.correlated_win_rate == second.correlated_win_rate


def test_context_is_applied_once(make_leg) -> None:
    leg = make_leg(expected_value=20.0, context=ContextualFactors(rest_days=0))
    result = run_hybrid_simulation([leg], HybridSimulationConfig(iterations=200, seed=1))
    assert result.leg_results[0].adjusted_expected_value == pytest.approx(19.0)


def test_correlations_disabled(make_leg) -> None:
    legs = [make_leg(expected_value=25.0), make_leg(market=MarketKind.ASSISTS, line=5.5)]
    result = run_hybrid_simulation(
        legs, HybridSimulationConfig(iterations=1_000, use_correlations=False, seed=3)
    )
    assert not result.correlations_applied
    assert all(leg.correlation_impact == 0.0 for leg in result.leg_results)


def test_risk_metrics_are_consistent(make_leg) -> None:
    legs = [make_leg(expected_value=30.0), make_leg(subject="Jaylen Brown", expected_value=30.0)]
    result = run_hybrid_simulation(legs, HybridSimulationConfig(iterations=5_000, seed=8))
    total_odds = (1 + 100 / 110) ** 2
    p = result.hybrid_win_rate
    assert result.expected_value == pytest.approx(p * (total_odds - 1) - (1 - p))
    assert result.variance == pytest.approx(p * (1 - p) * (total_odds - 1) ** 2)
    assert result.overall_edge == pytest.approx(p - 1 / total_odds)
    assert result.kelly_fraction == pytest.approx(KellyCriterion.fraction(p, total_odds))
    assert result.kelly_fraction > 0.0
    assert result.recommendation in {"strong_bet", "value_bet"}


def test_negative_edge_is_faded(make_leg) -> None:
    legs = [
        make_leg(expected_value=15.0),
        make_leg(subject="Jaylen Brown", expected_value=15.0),
    ]
    result = run_hybrid_simulation(legs, HybridSimulationConfig(iterations=2_000, seed=4))
    assert result.recommendation == "fade"
    assert result.kelly_fraction == 0.0


def test_batch_screening(make_leg) -> None:
    strong = make_leg(id="strong", expected_value=30.0)
    weak = make_leg(id="weak", expected_value=15.0)
    neutral = make_leg(id="neutral", expected_value=22.5)
    result = batch_screen_candidates([strong, weak, neutral])
    assert result.total_candidates == 3
    assert [leg.id for leg in result.strong_picks] == ["strong"]
    assert [leg.id for leg in result.passed_screen] == ["strong"]
    assert [leg.id for leg in result.avoided] == ["weak"]
    assert set(result.screening_details) == {"strong", "weak", "neutral"}


def test_quick_analysis(make_leg) -> None:
    legs = [
        make_leg(expected_value=30.0, game_id="g1"),
        make_leg(subject="Jaylen Brown", expected_value=30.0, game_id="g1"),
    ]
    result = quick_hybrid_analysis(legs)
    assert "Same-game correlation detected (+5% boost)" in result.key_insights
    assert "2 leg(s) with strong edge (5%+)" in result.key_insights
    assert result.recommendation == "Strong value - consider betting"


def test_same_game_boost_stays_a_probability(make_leg) -> None:
    legs = [
        make_leg(expected_value=40.0, line=10.5, game_id="g1"),
        make_leg(subject="Jaylen Brown", expected_value=40.0, line=10.5, game_id="g1"),
    ]
    result = quick_hybrid_analysis(legs)
    assert "Same-game correlation detected (+5% boost)" in result.key_insights
    assert result.win_probability <= 0.99
    assert result.edge == pytest.approx(0.99 - 1 / (1 + 100 / 110) ** 2)


def test_zero_expected_value_is_priced_as_given(make_leg) -> None:
    result = quick_hybrid_analysis([make_leg(expected_value=0.0)])
    assert result.win_probability == pytest.approx(0.01)
    assert "1 leg(s) with negative edge" in result.key_insights


def test_quick_analysis_ignores_missing_game_ids(make_leg) -> None:
    legs = [make_leg(expected_value=22.5), make_leg(subject="Jaylen Brown", expected_value=22.5)]
    result = quick_hybrid_analysis(legs)
    assert not any("Same-game" in insight for insight in result.key_insights)
    assert result.win_probability == pytest.approx(0.25, abs=1e-6)


def test_quick_analysis_flags_large_parlays(make_leg) -> None:
    legs = [make_leg(subject=f"Player {index}", expected_value=15.0) for index in range(4)]
    result = quick_hybrid_analysis(legs)
    assert "High variance: 4+ leg parlay" in result.key_insights
    assert "4 leg(s) with negative edge" in result.key_insights
    assert result.recommendation == "Negative edge - consider fading"


def test_quick_analysis_without_legs() -> None:
    result = quick_hybrid_analysis([])
    assert result.recommendation == "No legs provided"
    assert result.win_probability == 0.0


def test_simulation_accepts_market_names(make_leg) -> None:
    legs = [
        make_leg(market="player_points", expected_value=25.0),
        make_leg(market="player_assists", line=5.5, expected_value=6.0),
    ]
    result = run_hybrid_simulation(legs, HybridSimulationConfig(iterations=500, seed=11))
    assert result.correlations_applied
    assert len(result.leg_results) == 2
