"""Multi-source projection aggregation and line optimisation."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
import math
from typing import Dict, List, Literal, Sequence, Tuple

from .parametric import (
    DistributionLiteral,
    MarketKind,
    SideLiteral,
    inverse_normal_cdf,
    normal_over_under,
    poisson_over_under,
)
from .utils import clamp

logger = logging.getLogger(__name__)

LineAction = Literal["adjust", "skip", "keep"]

ALTERNATIVE_TARGETS: Tuple[float, ...] = (0.55, 0.60, 0.65, 0.70)
MIN_STD_DEV_RATIO = 0.15
CONFIDENCE_Z_SCORE = 1.96
_BISECTION_ITERATIONS = 50
_BISECTION_PROBABILITY_TOLERANCE = 0.01
_BISECTION_LINE_TOLERANCE = 0.25


@dataclasses.dataclass(frozen=True, slots=True)
class ProjectionSource:
    source: str
    value: float
    confidence: float
    sample_size: int
    recency: float

    @property
    def weight(self) -> float:
        """Raw aggregation weight before normalisation."""

        sample_weight = math.log(self.sample_size + 1) / math.log(100)
        recency_weight = 0.5 + 0.5 * self.recency
        return self.confidence * sample_weight * recency_weight


@dataclasses.dataclass(frozen=True, slots=True)
class AggregatedProjection:
    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0
    confidence: float = 0.0
    distribution: DistributionLiteral = "normal"
    weighted_mean: float = 0.0
    variance: float = 0.0
    sources: Tuple[ProjectionSource, ...] = ()

    @classmethod
    def from_moments(
        cls,
        mean: float,
        std_dev: float,
        distribution: DistributionLiteral | None = None,
    ) -> "AggregatedProjection":
        return cls(
            mean=mean,
            median=mean,
            std_dev=std_dev,
            confidence=1.0,
            distribution=distribution or ("poisson" if mean < 10 else "normal"),
            weighted_mean=mean,
            variance=std_dev**2,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class LineRecommendation:
    original_line: float
    original_probability: float
    suggested_line: float
    suggested_probability: float
    probability_gain: float
    odds_impact: str
    action: LineAction
    reasoning: str


@dataclasses.dataclass(frozen=True, slots=True)
class OptimizationResult:
    subject: str
    market: str
    projection: AggregatedProjection
    current_line: float
    side: SideLiteral
    current_probability: float
    recommendation: LineRecommendation
    alternative_lines: List[LineRecommendation]
    confidence_interval: Tuple[float, float]
    last_updated: dt.datetime


@dataclasses.dataclass(frozen=True, slots=True)
class ParlayLegProjection:
    """A parlay leg described by its projection sources rather than a price."""

    subject: str
    market: str
    sources: Tuple[ProjectionSource, ...]
    line: float
    side: SideLiteral
    odds: int = -110


@dataclasses.dataclass(frozen=True, slots=True)
class ParlayLegOptimization:
    leg_index: int
    subject: str
    market: str
    original_probability: float
    optimized_probability: float
    original_line: float
    optimized_line: float
    action: LineAction


@dataclasses.dataclass(frozen=True, slots=True)
class ParlayOptimizationResult:
    original_parlay_probability: float
    optimized_parlay_probability: float
    probability_improvement: float
    legs: List[ParlayLegOptimization]
    recommendations: List[str]


@dataclasses.dataclass(frozen=True, slots=True)
class ProjectionChange:
    subject: str
    market: str
    previous_projection: float
    new_projection: float
    change_percent: float
    previous_probability: float
    new_probability: float
    is_significant: bool
    reason: str


def _market_label(market: MarketKind | str) -> str:
    return market.value if isinstance(market, MarketKind) else str(market)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _median(values: Sequence[float]) -> float:
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2.0


def aggregate_projections(sources: Sequence[ProjectionSource]) -> AggregatedProjection:
    """Blend projections, weighting by confidence, sample size and recency.

    When every source carries zero weight the sources are averaged with equal
    weights instead.
    """

    if not sources:
        return AggregatedProjection()

    weights = [source.weight for source in sources]
    total_weight = sum(weights)
    if total_weight > 0:
        normalised = [weight / total_weight for weight in weights]
    else:
        logger.debug("All projection weights are zero; using equal weights")
        normalised = [1.0 / len(sources)] * len(sources)

    values = [source.value for source in sources]
    weighted_mean = sum(value * weight for value, weight in zip(values, normalised))
    variance = sum(
        weight * (value - weighted_mean) ** 2 for value, weight in zip(values, normalised)
    )
    std_dev = max(math.sqrt(variance), weighted_mean * MIN_STD_DEV_RATIO)
    return AggregatedProjection(
        mean=sum(values) / len(values),
        median=_median(values),
        std_dev=std_dev,
        confidence=sum(source.confidence for source in sources) / len(sources),
        distribution="poisson" if weighted_mean < 10 else "normal",
        weighted_mean=weighted_mean,
        variance=variance,
        sources=tuple(sources),
    )


# ---------------------------------------------------------------------------
# Probability and line solving
# ---------------------------------------------------------------------------


def calculate_probability_at_line(
    projection: AggregatedProjection, line: float, side: SideLiteral
) -> float:
    if projection.distribution == "poisson":
        return poisson_over_under(projection.weighted_mean, line, side)
    return normal_over_under(projection.weighted_mean, projection.std_dev, line, side)


def _round_half(value: float) -> float:
    return math.floor(value * 2.0 + 0.5) / 2.0


def find_optimal_line(
    projection: AggregatedProjection, target_probability: float, side: SideLiteral
) -> float:
    """Line at which ``side`` wins with ``target_probability``.

    Normal projections are inverted analytically.  Poisson projections are
    bisected over ``[0, 3 * mean]`` and rounded to the nearest half point.
    """

    target = clamp(target_probability, 0.01, 0.99)
    if projection.distribution == "normal":
        tail = 1.0 - target if side == "over" else target
        return projection.weighted_mean + inverse_normal_cdf(tail) * projection.std_dev

    low = 0.0
    high = projection.weighted_mean * 3.0
    for _ in range(_BISECTION_ITERATIONS):
        mid = (low + high) / 2.0
        probability = calculate_probability_at_line(projection, mid, side)
        if abs(probability - target) < _BISECTION_PROBABILITY_TOLERANCE:
            return _round_half(mid)
        # Over probability falls as the line rises; under probability rises.
        if (probability > target) == (side == "over"):
            low = mid
        else:
            high = mid
        if high - low < _BISECTION_LINE_TOLERANCE:
            break
    return _round_half((low + high) / 2.0)


def _format_odds(odds: int) -> str:
    return f"+{odds}" if odds > 0 else str(odds)


def generate_line_recommendation(
    projection: AggregatedProjection,
    current_line: float,
    side: SideLiteral,
    target_probability: float = 0.6,
    current_odds: int = -110,
) -> LineRecommendation:
    current_probability = calculate_probability_at_line(projection, current_line, side)
    suggested_line = find_optimal_line(projection, target_probability, side)
    suggested_probability = calculate_probability_at_line(projection, suggested_line, side)

    gain = suggested_probability - current_probability
    new_odds = current_odds - int(round(gain * 400))
    odds_impact = f"{_format_odds(current_odds)} -> {_format_odds(new_odds)}"

    shift = abs(suggested_line - current_line)
    target_pct = int(round(target_probability * 100))
    action: LineAction
    if current_probability >= target_probability - 0.02:
        action = "keep"
        reasoning = f"Current line already meets {target_pct}% target"
    elif shift > 5:
        action = "skip"
        reasoning = f"Line adjustment too large ({shift:.1f} points) - skip this prop"
    else:
        action = "adjust"
        direction = "down" if side == "over" else "up"
        reasoning = f"Adjust {direction} {shift:.1f} points to reach {target_pct}%"

    return LineRecommendation(
        original_line=current_line,
        original_probability=current_probability,
        suggested_line=suggested_line,
        suggested_probability=suggested_probability,
        probability_gain=gain,
        odds_impact=odds_impact,
        action=action,
        reasoning=reasoning,
    )


def generate_alternative_lines(
    projection: AggregatedProjection,
    current_line: float,
    side: SideLiteral,
    current_odds: int = -110,
) -> List[LineRecommendation]:
    """Ladder of alternative lines, best probability gain first."""

    unique: Dict[float, LineRecommendation] = {}
    for target in ALTERNATIVE_TARGETS:
        recommendation = generate_line_recommendation(
            projection, current_line, side, target, current_odds
        )
        if abs(recommendation.suggested_line - current_line) < 0.5:
            continue
        existing = unique.get(recommendation.suggested_line)
        if existing is None or existing.probability_gain < recommendation.probability_gain:
            unique[recommendation.suggested_line] = recommendation
    return sorted(unique.values(), key=lambda item: item.probability_gain, reverse=True)


def optimize_player_prop(
    subject: str,
    market: MarketKind | str,
    sources: Sequence[ProjectionSource],
    current_line: float,
    side: SideLiteral,
    target_probability: float = 0.6,
    current_odds: int = -110,
) -> OptimizationResult:
    projection = aggregate_projections(sources)
    spread = CONFIDENCE_Z_SCORE * projection.std_dev
    return OptimizationResult(
        subject=subject,
        market=_market_label(market),
        projection=projection,
        current_line=current_line,
        side=side,
        current_probability=calculate_probability_at_line(projection, current_line, side),
        recommendation=generate_line_recommendation(
            projection, current_line, side, target_probability, current_odds
        ),
        alternative_lines=generate_alternative_lines(
            projection, current_line, side, current_odds
        ),
        confidence_interval=(
            projection.weighted_mean - spread,
            projection.weighted_mean + spread,
        ),
        last_updated=dt.datetime.now(dt.timezone.utc),
    )


def optimize_parlay(
    legs: Sequence[ParlayLegProjection], target_leg_probability: float = 0.6
) -> ParlayOptimizationResult:
    """Re-line every leg towards ``target_leg_probability``.

    Legs whose recommendation is ``skip`` or ``keep`` contribute their current
    probability to the optimised parlay.
    """

    optimized_legs: List[ParlayLegOptimization] = []
    recommendations: List[str] = []
    original_probability = 1.0
    optimized_probability = 1.0
    for index, leg in enumerate(legs):
        result = optimize_player_prop(
            leg.subject,
            leg.market,
            leg.sources,
            leg.line,
            leg.side,
            target_leg_probability,
            leg.odds,
        )
        recommendation = result.recommendation
        optimized_legs.append(
            ParlayLegOptimization(
                leg_index=index,
                subject=leg.subject,
                market=result.market,
                original_probability=result.current_probability,
                optimized_probability=recommendation.suggested_probability,
                original_line=leg.line,
                optimized_line=recommendation.suggested_line,
                action=recommendation.action,
            )
        )
        original_probability *= result.current_probability
        if recommendation.action == "adjust":
            recommendations.append(
                f"{leg.subject} {result.market}: {leg.side.upper()} {leg.line:g} -> "
                f"{recommendation.suggested_line:g} "
                f"(+{int(round(recommendation.probability_gain * 100))}%)"
            )
            optimized_probability *= recommendation.suggested_probability
        else:
            if recommendation.action == "skip":
                recommendations.append(
                    f"Consider removing {leg.subject} {result.market} - "
                    "no viable alternative line"
                )
            optimized_probability *= result.current_probability

    return ParlayOptimizationResult(
        original_parlay_probability=original_probability,
        optimized_parlay_probability=optimized_probability,
        probability_improvement=optimized_probability - original_probability,
        legs=optimized_legs,
        recommendations=recommendations,
    )


def detect_projection_change(
    subject: str,
    market: MarketKind | str,
    previous_sources: Sequence[ProjectionSource],
    new_sources: Sequence[ProjectionSource],
    line: float,
    side: SideLiteral,
    significant_threshold: float = 0.05,
) -> ProjectionChange | None:
    """Compare two projection snapshots; ``None`` when nothing material moved."""

    previous = aggregate_projections(previous_sources)
    current = aggregate_projections(new_sources)
    previous_probability = calculate_probability_at_line(previous, line, side)
    new_probability = calculate_probability_at_line(current, line, side)

    previous_mean = previous.weighted_mean
    new_mean = current.weighted_mean
    change_percent = (
        (new_mean - previous_mean) / previous_mean * 100.0 if previous_mean > 0 else 0.0
    )
    is_significant = abs(new_probability - previous_probability) >= significant_threshold
    if not is_significant and abs(change_percent) < 5:
        return None

    if len(new_sources) > len(previous_sources):
        reason = "New data source added"
    elif abs(change_percent) > 10:
        trend = "upward" if change_percent > 0 else "downward"
        reason = f"Strong {trend} trend in recent data"
    else:
        reason = "Projection updated with latest data"

    return ProjectionChange(
        subject=subject,
        market=_market_label(market),
        previous_projection=previous_mean,
        new_projection=new_mean,
        change_percent=change_percent,
        previous_probability=previous_probability,
        new_probability=new_probability,
        is_significant=is_significant,
        reason=reason,
    )


__all__ = [
    "AggregatedProjection",
    "LineRecommendation",
    "OptimizationResult",
    "ParlayLegOptimization",
    "ParlayLegProjection",
    "ParlayOptimizationResult",
    "ProjectionChange",
    "ProjectionSource",
    "aggregate_projections",
    "calculate_probability_at_line",
    "detect_projection_change",
    "find_optimal_line",
    "generate_alternative_lines",
    "generate_line_recommendation",
    "optimize_parlay",
    "optimize_player_prop",
]
