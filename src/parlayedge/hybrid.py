"""Hybrid parametric / Monte Carlo parlay simulation.

Every leg is first priced with the closed-form models in
:mod:`parlayedge.parametric`.  Those probabilities then drive a Monte Carlo
run in which correlated uniforms (Gaussian copula) and independent uniforms
are drawn side by side.  The parametric and simulated estimates are blended
with configurable weights to produce the final win rate and risk metrics.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import random
from typing import Dict, List, Literal, Sequence, Tuple

from .correlation import (
    CorrelationMatrix,
    CorrelationRecord,
    build_correlation_matrix,
    factor_correlation_matrix,
    generate_correlated_uniform,
)
from .models import LegInput
from .parametric import (
    ScreeningResult,
    american_to_implied_probability,
    apply_contextual_adjustments,
    calculate_prop_probability,
    screen_prop_candidate,
)
from .staking import KellyCriterion
from .utils import PROBABILITY_CEILING, parlay_decimal_odds

logger = logging.getLogger(__name__)

BetRecommendation = Literal["strong_bet", "value_bet", "skip", "fade"]

JUICE_THRESHOLD = 0.52


@dataclasses.dataclass(slots=True)
class HybridSimulationConfig:
    iterations: int = 50_000
    use_correlations: bool = True
    parametric_weight: float = 0.4
    monte_carlo_weight: float = 0.6
    min_edge_threshold: float = 0.0
    correlation_data: Sequence[CorrelationRecord] = ()
    sport: str | None = None
    seed: int | None = None


@dataclasses.dataclass(slots=True)
class LegSimulationResult:
    leg_id: str
    parametric_probability: float
    monte_carlo_hit_rate: float
    hybrid_probability: float
    screening: ScreeningResult
    adjusted_expected_value: float
    correlation_impact: float


@dataclasses.dataclass(slots=True)
class HybridSimulationResult:
    independent_win_rate: float
    correlated_win_rate: float
    hybrid_win_rate: float
    expected_value: float
    leg_results: List[LegSimulationResult]
    variance: float
    sharpe_ratio: float
    kelly_fraction: float
    overall_edge: float
    recommendation: BetRecommendation
    confidence_level: float
    iterations: int
    correlations_applied: bool
    parametric_weight: float
    regularized_legs: Tuple[int, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class SimulationTally:
    """Raw counts from a batch of joint draws.

    Tallies from independent batches can be added together in any order.
    """

    iterations: int
    correlated_wins: int
    independent_wins: int
    leg_hits: Tuple[int, ...]

    def __add__(self, other: "SimulationTally") -> "SimulationTally":
        if not isinstance(other, SimulationTally):
            return NotImplemented
        if self.iterations == 0:
            return other
        if other.iterations == 0:
            return self
        if len(self.leg_hits) != len(other.leg_hits):
            raise ValueError("Cannot merge tallies for different leg counts")
        return SimulationTally(
            iterations=self.iterations + other.iterations,
            correlated_wins=self.correlated_wins + other.correlated_wins,
            independent_wins=self.independent_wins + other.independent_wins,
            leg_hits=tuple(a + b for a, b in zip(self.leg_hits, other.leg_hits)),
        )

    @classmethod
    def empty(cls, leg_count: int = 0) -> "SimulationTally":
        return cls(0, 0, 0, tuple(0 for _ in range(leg_count)))

    @property
    def correlated_win_rate(self) -> float:
        return self.correlated_wins / self.iterations if self.iterations else 0.0

    @property
    def independent_win_rate(self) -> float:
        return self.independent_wins / self.iterations if self.iterations else 0.0

    def hit_rate(self, index: int) -> float:
        return self.leg_hits[index] / self.iterations if self.iterations else 0.0


@dataclasses.dataclass(frozen=True, slots=True)
class BatchScreeningResult:
    total_candidates: int
    passed_screen: List[LegInput]
    strong_picks: List[LegInput]
    avoided: List[LegInput]
    screening_details: Dict[str, ScreeningResult]


@dataclasses.dataclass(frozen=True, slots=True)
class QuickAnalysisResult:
    win_probability: float
    edge: float
    recommendation: str
    key_insights: List[str]


def _identity(size: int) -> List[List[float]]:
    return [[1.0 if i == j else 0.0 for j in range(size)] for i in range(size)]


def simulate_joint_outcomes(
    leg_probabilities: Sequence[float],
    lower: Sequence[Sequence[float]] | None = None,
    iterations: int = 50_000,
    rng: random.Random | None = None,
) -> SimulationTally:
    """Draw correlated and independent outcomes for every leg.

    A leg hits when its uniform draw is at or below its probability.  Per-leg
    hit counts are taken from the correlated draws.
    """

    n = len(leg_probabilities)
    if n == 0 or iterations <= 0:
        return SimulationTally.empty(n)
    generator = rng if rng is not None else random.Random()
    factor = lower if lower is not None else _identity(n)
    correlated_wins = 0
    independent_wins = 0
    leg_hits = [0] * n
    for _ in range(iterations):
        correlated = generate_correlated_uniform(factor, generator)
        all_correlated = True
        all_independent = True
        for j, probability in enumerate(leg_probabilities):
            if correlated[j] > probability:
                all_correlated = False
            else:
                leg_hits[j] += 1
            if generator.random() > probability:
                all_independent = False
        if all_correlated:
            correlated_wins += 1
        if all_independent:
            independent_wins += 1
    return SimulationTally(
        iterations=iterations,
        correlated_wins=correlated_wins,
        independent_wins=independent_wins,
        leg_hits=tuple(leg_hits),
    )


def estimate_expected_value(leg: LegInput) -> float:
    """Infer a projection from the price when none was supplied.

    A juiced side (implied probability above 52%) suggests the line sits on
    the favourable side of the true mean.
    """

    implied = american_to_implied_probability(leg.american_odds)
    juiced = implied > JUICE_THRESHOLD
    if leg.side == "over":
        return leg.line * (0.95 if juiced else 1.05)
    return leg.line * (1.05 if juiced else 0.95)


def _base_expected_value(leg: LegInput) -> float:
    # A supplied 0.0 is a real projection and is priced as given.
    if leg.expected_value is not None:
        return leg.expected_value
    return estimate_expected_value(leg)


def _screen_leg(leg: LegInput, min_edge: float) -> Tuple[float, ScreeningResult]:
    implied = american_to_implied_probability(leg.american_odds)
    adjusted = apply_contextual_adjustments(_base_expected_value(leg), leg.context)
    screening = screen_prop_candidate(
        leg.market, adjusted, leg.line, leg.side, implied, min_edge
    )
    return adjusted, screening


def _recommendation(edge: float, confidence: float) -> BetRecommendation:
    if edge >= 0.08 and confidence >= 0.7:
        return "strong_bet"
    if edge >= 0.03:
        return "value_bet"
    if edge <= -0.05:
        return "fade"
    return "skip"


class HybridSimulator:
    """Run blended parlay simulations with an owned random generator."""

    def __init__(
        self,
        config: HybridSimulationConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or HybridSimulationConfig()
        self._rng = rng if rng is not None else random.Random(self.config.seed)

    def _empty_result(self) -> HybridSimulationResult:
        return HybridSimulationResult(
            independent_win_rate=0.0,
            correlated_win_rate=0.0,
            hybrid_win_rate=0.0,
            expected_value=0.0,
            leg_results=[],
            variance=0.0,
            sharpe_ratio=0.0,
            kelly_fraction=0.0,
            overall_edge=0.0,
            recommendation="skip",
            confidence_level=0.0,
            iterations=self.config.iterations,
            correlations_applied=self.config.use_correlations,
            parametric_weight=self.config.parametric_weight,
        )

    def correlation_matrix(self, legs: Sequence[LegInput]) -> CorrelationMatrix:
        if self.config.use_correlations and len(legs) > 1:
            return build_correlation_matrix(
                legs, self.config.correlation_data, sport=self.config.sport
            )
        return CorrelationMatrix.identity(len(legs))

    def run(self, legs: Sequence[LegInput]) -> HybridSimulationResult:
        config = self.config
        if not legs or config.iterations <= 0:
            return self._empty_result()

        screened = [_screen_leg(leg, config.min_edge_threshold) for leg in legs]
        probabilities = [screening.parametric_probability for _, screening in screened]

        matrix = self.correlation_matrix(legs)
        factor = factor_correlation_matrix(matrix.matrix)
        tally = simulate_joint_outcomes(
            probabilities, factor.lower, config.iterations, self._rng
        )

        leg_results: List[LegSimulationResult] = []
        for index, (leg, (adjusted, screening)) in enumerate(zip(legs, screened)):
            hit_rate = tally.hit_rate(index)
            parametric = screening.parametric_probability
            leg_results.append(
                LegSimulationResult(
                    leg_id=leg.id,
                    parametric_probability=parametric,
                    monte_carlo_hit_rate=hit_rate,
                    hybrid_probability=config.parametric_weight * parametric
                    + config.monte_carlo_weight * hit_rate,
                    screening=screening,
                    adjusted_expected_value=adjusted,
                    correlation_impact=(
                        hit_rate - parametric if config.use_correlations else 0.0
                    ),
                )
            )

        independent = tally.independent_win_rate
        correlated = tally.correlated_win_rate
        hybrid = (
            config.parametric_weight * independent
            + config.monte_carlo_weight * correlated
        )

        total_odds = parlay_decimal_odds(leg.american_odds for leg in legs)
        payout = total_odds - 1.0
        expected_value = hybrid * payout - (1.0 - hybrid)
        variance = hybrid * (1.0 - hybrid) * payout**2
        std_dev = math.sqrt(variance)
        sharpe = expected_value / std_dev if std_dev > 0 else 0.0
        kelly = KellyCriterion.fraction(hybrid, total_odds)
        edge = hybrid - 1.0 / total_odds
        confidence = min(
            0.95, 0.5 + config.iterations / 100_000 + 1.0 / (1.0 + variance)
        )

        logger.debug(
            "Simulated %d legs over %d iterations: independent %.4f, "
            "correlated %.4f, hybrid %.4f",
            len(legs),
            config.iterations,
            independent,
            correlated,
            hybrid,
        )
        return HybridSimulationResult(
            independent_win_rate=independent,
            correlated_win_rate=correlated,
            hybrid_win_rate=hybrid,
            expected_value=expected_value,
            leg_results=leg_results,
            variance=variance,
            sharpe_ratio=sharpe,
            kelly_fraction=kelly,
            overall_edge=edge,
            recommendation=_recommendation(edge, confidence),
            confidence_level=confidence,
            iterations=config.iterations,
            correlations_applied=config.use_correlations,
            parametric_weight=config.parametric_weight,
            regularized_legs=factor.regularized,
        )


def run_hybrid_simulation(
    legs: Sequence[LegInput],
    config: HybridSimulationConfig | None = None,
    rng: random.Random | None = None,
) -> HybridSimulationResult:
    return HybridSimulator(config, rng).run(legs)


def batch_screen_candidates(
    candidates: Sequence[LegInput], min_edge: float = 0.03
) -> BatchScreeningResult:
    """Parametric screen of many candidates without any simulation."""

    passed: List[LegInput] = []
    strong: List[LegInput] = []
    avoided: List[LegInput] = []
    details: Dict[str, ScreeningResult] = {}
    for candidate in candidates:
        _, screening = _screen_leg(candidate, min_edge)
        details[candidate.id] = screening
        if screening.recommendation == "strong_pick":
            strong.append(candidate)
            passed.append(candidate)
        elif screening.passed_screen:
            passed.append(candidate)
        elif screening.recommendation == "avoid":
            avoided.append(candidate)
    return BatchScreeningResult(
        total_candidates=len(candidates),
        passed_screen=passed,
        strong_picks=strong,
        avoided=avoided,
        screening_details=details,
    )


def _shares_game(legs: Sequence[LegInput]) -> bool:
    seen: set[str] = set()
    for leg in legs:
        if leg.game_id is None:
            continue
        if leg.game_id in seen:
            return True
        seen.add(leg.game_id)
    return False


def quick_hybrid_analysis(legs: Sequence[LegInput]) -> QuickAnalysisResult:
    if not legs:
        return QuickAnalysisResult(
            win_probability=0.0,
            edge=0.0,
            recommendation="No legs provided",
            key_insights=[],
        )

    insights: List[str] = []
    combined = 1.0
    strong_legs = 0
    weak_legs = 0
    for leg in legs:
        implied = american_to_implied_probability(leg.american_odds)
        result = calculate_prop_probability(
            leg.market, _base_expected_value(leg), leg.line, leg.side
        )
        combined *= result.probability
        leg_edge = result.probability - implied
        if leg_edge >= 0.05:
            strong_legs += 1
        elif leg_edge <= -0.03:
            weak_legs += 1

    if _shares_game(legs):
        combined = min(combined * 1.05, PROBABILITY_CEILING)
        insights.append("Same-game correlation detected (+5% boost)")

    edge = combined - 1.0 / parlay_decimal_odds(leg.american_odds for leg in legs)
    if strong_legs:
        insights.append(f"{strong_legs} leg(s) with strong edge (5%+)")
    if weak_legs:
        insights.append(f"{weak_legs} leg(s) with negative edge")
    if len(legs) >= 4:
        insights.append("High variance: 4+ leg parlay")

    if edge >= 0.08:
        recommendation = "Strong value - consider betting"
    elif edge >= 0.03:
        recommendation = "Slight edge - proceed with caution"
    elif edge <= -0.05:
        recommendation = "Negative edge - consider fading"
    else:
        recommendation = "Near fair odds - skip or reduce stake"

    return QuickAnalysisResult(
        win_probability=combined,
        edge=edge,
        recommendation=recommendation,
        key_insights=insights,
    )


__all__ = [
    "BatchScreeningResult",
    "BetRecommendation",
    "HybridSimulationConfig",
    "HybridSimulationResult",
    "HybridSimulator",
    "LegSimulationResult",
    "QuickAnalysisResult",
    "SimulationTally",
    "batch_screen_candidates",
    "estimate_expected_value",
    "quick_hybrid_analysis",
    "run_hybrid_simulation",
    "simulate_joint_outcomes",
]
