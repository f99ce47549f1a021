"""Closed-form probability models for single betting legs.

Poisson models cover low-count discrete markets (threes, goals, touchdowns)
while Normal models cover high-volume statistics and spreads.  Everything in
this module is a pure function of its arguments so it can be used freely from
screening code paths that must stay cheap.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import math
from typing import Literal

from .utils import (
    american_to_decimal,
    clamp,
    clamp_probability,
    implied_probability_from_american,
    implied_probability_to_american,
)

logger = logging.getLogger(__name__)

SideLiteral = Literal["over", "under"]
DistributionLiteral = Literal["poisson", "normal"]
ScreeningRecommendation = Literal["strong_pick", "consider", "avoid", "neutral"]

FAIR_IMPLIED_PROBABILITY = 0.524
POISSON_MEAN_THRESHOLD = 10.0

# log(n!) for n in [0, 170]; larger arguments fall back to lgamma.
_LOG_FACTORIAL_TABLE: tuple[float, ...] = tuple(math.lgamma(n + 1.0) for n in range(171))


# ---------------------------------------------------------------------------
# Market kinds
# ---------------------------------------------------------------------------


class MarketKind(str, enum.Enum):
    """Market categories understood by the probability core."""

    POINTS = "player_points"
    REBOUNDS = "player_rebounds"
    ASSISTS = "player_assists"
    THREES = "player_threes"
    BLOCKS = "player_blocks"
    STEALS = "player_steals"
    TURNOVERS = "player_turnovers"
    PRA = "player_pra"
    PASSING_YARDS = "player_passing_yards"
    PASSING_TDS = "player_passing_tds"
    RUSHING_YARDS = "player_rushing_yards"
    RUSHING_TDS = "player_rushing_tds"
    RECEIVING_YARDS = "player_receiving_yards"
    RECEIVING_TDS = "player_receiving_tds"
    RECEPTIONS = "player_receptions"
    SHOTS = "player_shots"
    GOALS = "player_goals"
    HOCKEY_ASSISTS = "player_assists_nhl"
    HOCKEY_POINTS = "player_points_nhl"
    HITS = "player_hits"
    TOTAL_BASES = "player_total_bases"
    HOME_RUNS = "player_home_runs"
    PITCHER_STRIKEOUTS = "player_strikeouts_pitcher"
    SPREADS = "spreads"
    TOTALS = "totals"
    MONEYLINE = "moneyline"
    TEAM_TOTALS = "team_totals"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: "MarketKind | str") -> "MarketKind":
        if isinstance(value, MarketKind):
            return value
        normalised = str(value).strip().lower()
        try:
            return cls(normalised)
        except ValueError:
            raise ValueError(f"Unknown market kind: {value!r}") from None

    @property
    def is_player_prop(self) -> bool:
        return self.value.startswith("player_")

    @property
    def is_discrete(self) -> bool:
        """Whether the market counts rare events best modelled as Poisson."""

        return self in _POISSON_MARKETS

    @property
    def std_multiplier(self) -> float:
        return _STD_DEV_MULTIPLIERS.get(self, DEFAULT_STD_MULTIPLIER)


DEFAULT_STD_MULTIPLIER = 0.40

_STD_DEV_MULTIPLIERS: dict[MarketKind, float] = {
    MarketKind.POINTS: 0.35,
    MarketKind.REBOUNDS: 0.40,
    MarketKind.ASSISTS: 0.45,
    MarketKind.THREES: 0.55,
    MarketKind.BLOCKS: 0.60,
    MarketKind.STEALS: 0.60,
    MarketKind.TURNOVERS: 0.50,
    MarketKind.PRA: 0.30,
    MarketKind.PASSING_YARDS: 0.30,
    MarketKind.RUSHING_YARDS: 0.45,
    MarketKind.RECEIVING_YARDS: 0.50,
    MarketKind.PASSING_TDS: 0.60,
    MarketKind.RECEPTIONS: 0.40,
    MarketKind.SHOTS: 0.40,
    MarketKind.GOALS: 0.70,
    MarketKind.HOCKEY_ASSISTS: 0.65,
    MarketKind.HOCKEY_POINTS: 0.55,
    MarketKind.HITS: 0.50,
    MarketKind.TOTAL_BASES: 0.45,
    MarketKind.PITCHER_STRIKEOUTS: 0.30,
}

_POISSON_MARKETS = frozenset(
    {
        MarketKind.THREES,
        MarketKind.BLOCKS,
        MarketKind.STEALS,
        MarketKind.TURNOVERS,
        MarketKind.GOALS,
        MarketKind.PASSING_TDS,
        MarketKind.RUSHING_TDS,
        MarketKind.RECEIVING_TDS,
        MarketKind.HITS,
        MarketKind.HOME_RUNS,
    }
)


# ---------------------------------------------------------------------------
# Poisson models
# ---------------------------------------------------------------------------


def _log_factorial(n: int) -> float:
    if n < len(_LOG_FACTORIAL_TABLE):
        return _LOG_FACTORIAL_TABLE[n]
    return math.lgamma(n + 1.0)


def poisson_pmf(lam: float, k: float) -> float:
    """Return ``P(X = k)`` for ``X ~ Poisson(lam)``.

    A non-positive mean is the point mass at zero.
    """

    if k < 0:
        return 0.0
    count = int(math.floor(k))
    if lam <= 0.0:
        return 1.0 if count == 0 else 0.0
    return math.exp(count * math.log(lam) - lam - _log_factorial(count))


def poisson_cdf(lam: float, k: float) -> float:
    """Return ``P(X <= floor(k))`` for ``X ~ Poisson(lam)``."""

    if k < 0:
        return 0.0
    if lam <= 0.0:
        return 1.0
    upper = int(math.floor(k))
    term = math.exp(-lam)
    cumulative = term
    for i in range(1, upper + 1):
        term *= lam / i
        cumulative += term
    return min(cumulative, 1.0)


def poisson_over_under(expected: float, line: float, side: SideLiteral) -> float:
    """Probability of clearing ``line`` when the statistic is Poisson.

    Half-point lines cannot push.  On whole lines the push outcome
    ``X == line`` is excluded from both sides, matching sportsbook grading.
    """

    is_half_point = line % 1 != 0
    if side == "over":
        threshold = math.floor(line) if is_half_point else line
        return 1.0 - poisson_cdf(expected, threshold)
    if is_half_point:
        return poisson_cdf(expected, math.floor(line))
    return poisson_cdf(expected, line - 1)


# ---------------------------------------------------------------------------
# Normal models
# ---------------------------------------------------------------------------


def _erf(x: float) -> float:
    # Abramowitz & Stegun 7.1.26, max error 1.5e-7.
    a1 = 0.254829592
    a2 = -0.284496736
    a3 = 1.421413741
    a4 = -1.453152027
    a5 = 1.061405429
    p = 0.3275911
    if x == 0:
        return 0.0
    sign = -1.0 if x < 0 else 1.0
    x = abs(x)
    t = 1.0 / (1.0 + p * x)
    y = 1.0 - ((((a5 * t + a4) * t + a3) * t + a2) * t + a1) * t * math.exp(-x * x)
    return sign * y


def normal_cdf(z: float) -> float:
    """Standard normal CDF ``Phi(z)``."""

    return 0.5 * (1.0 + _erf(z / math.sqrt(2.0)))


def normal_cdf_with_params(x: float, mean: float, std_dev: float) -> float:
    if std_dev <= 0.0:
        return 1.0 if x >= mean else 0.0
    return normal_cdf((x - mean) / std_dev)


_ACKLAM_A = (
    -3.969683028665376e1,
    2.209460984245205e2,
    -2.759285104469687e2,
    1.383577518672690e2,
    -3.066479806614716e1,
    2.506628277459239e0,
)
_ACKLAM_B = (
    -5.447609879822406e1,
    1.615858368580409e2,
    -1.556989798598866e2,
    6.680131188771972e1,
    -1.328068155288572e1,
)
_ACKLAM_C = (
    -7.784894002430293e-3,
    -3.223964580411365e-1,
    -2.400758277161838e0,
    -2.549732539343734e0,
    4.374664141464968e0,
    2.938163982698783e0,
)
_ACKLAM_D = (
    7.784695709041462e-3,
    3.224671290700398e-1,
    2.445134137142996e0,
    3.754408661907416e0,
)
_P_LOW = 0.02425


def inverse_normal_cdf(probability: float) -> float:
    """Inverse of the standard normal CDF (probit) via a rational approximation."""

    if probability <= 0.0:
        return -math.inf
    if probability >= 1.0:
        return math.inf
    if probability == 0.5:
        return 0.0
    a, b, c, d = _ACKLAM_A, _ACKLAM_B, _ACKLAM_C, _ACKLAM_D
    if probability < _P_LOW:
        q = math.sqrt(-2.0 * math.log(probability))
        return (((((c[0] * q + c[1]) * q + c[2]) * q + c[3]) * q + c[4]) * q + c[5]) / (
            (((d[0] * q + d[1]) * q + d[2]) * q + d[3]) * q + 1.0
        )
    if probability <= 1.0 - _P_LOW:
        q = probability - 0.5
        r = q * q
        return (
            (((((a[0] * r + a[1]) * r + a[2]) * r + a[3]) * r + a[4]) * r + a[5]) * q
        ) / (((((b[0] * r + b[1]) * r + b[2]) * r + b[3]) * r + b[4]) * r + 1.0)
    q = math.sqrt(-2.0 * math.log(1.0 - probability))
    return -(((((c[0] * q + c[1]) * q + c[2]) * q + c[3]) * q + c[4]) * q + c[5]) / (
        (((d[0] * q + d[1]) * q + d[2]) * q + d[3]) * q + 1.0
    )


def normal_over_under(
    expected: float, std_dev: float, line: float, side: SideLiteral
) -> float:
    """Probability of clearing ``line`` for a Normal statistic.

    A non-positive ``std_dev`` collapses the distribution onto ``expected``:
    the outcome is then certain one way or the other rather than ``NaN``.
    """

    if std_dev <= 0.0:
        if side == "over":
            return 1.0 if expected > line else 0.0
        return 1.0 if expected < line else 0.0
    z_score = (line - expected) / std_dev
    if side == "over":
        return 1.0 - normal_cdf(z_score)
    return normal_cdf(z_score)


# ---------------------------------------------------------------------------
# Player prop model
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class ParametricResult:
    probability: float
    confidence: float
    model: DistributionLiteral
    expected_value: float
    edge: float


def select_distribution(market: MarketKind | str, expected: float) -> DistributionLiteral:
    """Poisson for discrete markets and small expectations, Normal otherwise."""

    kind = MarketKind.coerce(market)
    if kind.is_discrete or expected < POISSON_MEAN_THRESHOLD:
        return "poisson"
    return "normal"


def calculate_prop_probability(
    market: MarketKind | str,
    expected: float,
    line: float,
    side: SideLiteral,
    custom_std_dev: float | None = None,
) -> ParametricResult:
    kind = MarketKind.coerce(market)
    distribution = select_distribution(kind, expected)
    if custom_std_dev is not None and custom_std_dev <= 0.0:
        logger.warning(
            "Rejecting non-positive std dev %.4f for %s; treating %.2f as certain",
            custom_std_dev,
            kind.value,
            expected,
        )
        std_dev = 0.0
    elif custom_std_dev is not None:
        std_dev = custom_std_dev
    else:
        std_dev = expected * kind.std_multiplier

    if distribution == "poisson":
        probability = poisson_over_under(expected, line, side)
    else:
        probability = normal_over_under(expected, std_dev, line, side)

    edge = probability - FAIR_IMPLIED_PROBABILITY
    confidence = clamp(0.5 + abs(edge) * 2.0, 0.3, 0.95)
    return ParametricResult(
        probability=clamp_probability(probability),
        confidence=confidence,
        model=distribution,
        expected_value=expected,
        edge=edge,
    )


# ---------------------------------------------------------------------------
# Game totals model
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class GameTotalsInput:
    home_expected_score: float
    away_expected_score: float
    total_line: float
    spread_line: float | None = None
    home_std_dev: float | None = None
    away_std_dev: float | None = None
    correlation: float = 0.3


@dataclasses.dataclass(frozen=True, slots=True)
class GameTotalsResult:
    over_probability: float
    under_probability: float
    home_ml_probability: float
    away_ml_probability: float
    expected_total: float
    expected_spread: float
    home_cover_probability: float | None = None
    away_cover_probability: float | None = None


def calculate_game_probabilities(game: GameTotalsInput) -> GameTotalsResult:
    """Price totals, moneylines and spreads from correlated team scores.

    Scores are treated as bivariate normal.  The spread is expressed as
    ``away - home`` so a negative expectation means the home side is favoured.
    """

    home_sd = (
        game.home_std_dev
        if game.home_std_dev is not None
        else game.home_expected_score * 0.15
    )
    away_sd = (
        game.away_std_dev
        if game.away_std_dev is not None
        else game.away_expected_score * 0.15
    )
    expected_total = game.home_expected_score + game.away_expected_score
    expected_spread = game.away_expected_score - game.home_expected_score
    covariance = game.correlation * home_sd * away_sd
    total_sd = math.sqrt(max(0.0, home_sd**2 + away_sd**2 + 2.0 * covariance))
    spread_sd = math.sqrt(max(0.0, home_sd**2 + away_sd**2 - 2.0 * covariance))

    over = normal_over_under(expected_total, total_sd, game.total_line, "over")
    home_ml = normal_cdf_with_params(0.0, expected_spread, spread_sd)
    home_cover: float | None = None
    away_cover: float | None = None
    if game.spread_line is not None:
        home_cover = normal_cdf_with_params(game.spread_line, expected_spread, spread_sd)
        away_cover = 1.0 - home_cover
    return GameTotalsResult(
        over_probability=over,
        under_probability=1.0 - over,
        home_ml_probability=home_ml,
        away_ml_probability=1.0 - home_ml,
        expected_total=expected_total,
        expected_spread=expected_spread,
        home_cover_probability=home_cover,
        away_cover_probability=away_cover,
    )


# ---------------------------------------------------------------------------
# Contextual adjustments
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class ContextualFactors:
    """Situational inputs that nudge a baseline expectation up or down."""

    rest_days: int | None = None
    travel_miles: float | None = None
    is_back_to_back: bool | None = None
    is_home: bool | None = None
    altitude: float | None = None
    temperature: float | None = None
    wind_speed: float | None = None
    injury_impact: float | None = None
    recent_form: float | None = None
    defense_rating: float | None = None
    pace_adjustment: float | None = None


def contextual_multiplier(factors: ContextualFactors) -> float:
    """Combined multiplier for ``factors``; each term is applied independently."""

    multiplier = 1.0
    if factors.rest_days is not None:
        if factors.rest_days == 0:
            multiplier *= 0.95
        elif factors.rest_days >= 3:
            multiplier *= 1.02
    if factors.travel_miles is not None and factors.travel_miles > 1000:
        multiplier *= 1.0 - factors.travel_miles / 50_000.0
    if factors.is_home is True:
        multiplier *= 1.03
    elif factors.is_home is False:
        multiplier *= 0.97
    if factors.altitude is not None and factors.altitude > 5000:
        multiplier *= 1.0 + (factors.altitude - 5000.0) / 50_000.0
    if factors.wind_speed is not None and factors.wind_speed > 15:
        multiplier *= 1.0 - (factors.wind_speed - 15.0) / 100.0
    if factors.injury_impact is not None:
        multiplier *= 1.0 + factors.injury_impact
    if factors.recent_form is not None:
        multiplier *= factors.recent_form
    if factors.defense_rating is not None and factors.defense_rating > 0:
        multiplier *= 1.0 / factors.defense_rating
    if factors.pace_adjustment is not None:
        multiplier *= factors.pace_adjustment
    return multiplier


def apply_contextual_adjustments(
    base_expected: float, factors: ContextualFactors | None
) -> float:
    if factors is None:
        return base_expected
    return base_expected * contextual_multiplier(factors)


# ---------------------------------------------------------------------------
# Screening
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class ScreeningResult:
    passed_screen: bool
    parametric_probability: float
    edge_estimate: float
    confidence: float
    model: DistributionLiteral
    recommendation: ScreeningRecommendation


def screen_prop_candidate(
    market: MarketKind | str,
    expected: float,
    line: float,
    side: SideLiteral,
    implied_probability: float,
    min_edge: float = 0.03,
    context: ContextualFactors | None = None,
) -> ScreeningResult:
    """Cheap parametric screen used to discard candidates before simulation."""

    adjusted = apply_contextual_adjustments(expected, context)
    result = calculate_prop_probability(market, adjusted, line, side)
    edge = result.probability - implied_probability

    recommendation: ScreeningRecommendation
    if edge >= 0.08 and result.confidence >= 0.6:
        recommendation = "strong_pick"
    elif edge >= min_edge and result.confidence >= 0.5:
        recommendation = "consider"
    elif edge <= -0.05:
        recommendation = "avoid"
    else:
        recommendation = "neutral"

    return ScreeningResult(
        passed_screen=edge >= min_edge,
        parametric_probability=result.probability,
        edge_estimate=edge,
        confidence=result.confidence,
        model=result.model,
        recommendation=recommendation,
    )


# ---------------------------------------------------------------------------
# American odds
# ---------------------------------------------------------------------------


def american_to_implied_probability(odds: int | float) -> float:
    return implied_probability_from_american(odds)


def calculate_fair_odds(true_probability: float) -> int:
    """American price with no vig for ``true_probability``."""

    return implied_probability_to_american(true_probability)


def calculate_expected_value(
    true_probability: float, american_odds: int | float, stake: float = 100.0
) -> float:
    """Expected profit of ``stake`` at ``american_odds``."""

    potential_profit = stake * (american_to_decimal(american_odds) - 1.0)
    return true_probability * potential_profit - (1.0 - true_probability) * stake


__all__ = [
    "ContextualFactors",
    "DistributionLiteral",
    "FAIR_IMPLIED_PROBABILITY",
    "GameTotalsInput",
    "GameTotalsResult",
    "MarketKind",
    "ParametricResult",
    "ScreeningResult",
    "SideLiteral",
    "american_to_implied_probability",
    "apply_contextual_adjustments",
    "calculate_expected_value",
    "calculate_fair_odds",
    "calculate_game_probabilities",
    "calculate_prop_probability",
    "contextual_multiplier",
    "implied_probability_to_american",
    "inverse_normal_cdf",
    "normal_cdf",
    "normal_cdf_with_params",
    "normal_over_under",
    "poisson_cdf",
    "poisson_over_under",
    "poisson_pmf",
    "screen_prop_candidate",
    "select_distribution",
]
