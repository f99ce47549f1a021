"""Command line interface for the parlay probability engine."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence, Tuple

import yaml

from .configuration import (
    DEFAULT_CONFIG_PATH,
    ConfigurationError,
    EngineConfig,
    create_simulation_config,
    load_engine_config,
    validate_engine_config,
)
from .correlation import load_correlation_data
from .hybrid import batch_screen_candidates, quick_hybrid_analysis, run_hybrid_simulation
from .logging import configure_logging
from .models import LegInput, leg_from_mapping
from .projections import (
    ParlayLegProjection,
    ProjectionSource,
    detect_projection_change,
    optimize_parlay,
)
from .staking import calculate_kelly, calculate_parlay_kelly, calculate_variance
from .utils import american_to_decimal, normalise_american_odds

logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True)
class CommandContext:
    """Runtime objects shared across command handlers."""

    config: EngineConfig
    config_path: str | None


class CommandHandler(Protocol):
    def __call__(self, context: CommandContext, args: argparse.Namespace) -> None:
        """Execute a command."""


@dataclasses.dataclass(slots=True)
class Subcommand:
    """Container describing a CLI sub-command."""

    name: str
    help: str
    configure: Callable[[argparse.ArgumentParser], None]
    handler: CommandHandler
    validates_config: bool

    def add_to_parser(
        self,
        subparsers,
        parent: argparse.ArgumentParser,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser(self.name, parents=[parent], help=self.help)
        self.configure(parser)
        parser.set_defaults(
            handler=self.handler,
            command=self.name,
            validates_config=self.validates_config,
        )
        return parser


class SubcommandApp:
    """Registry that wires handlers into an :class:`argparse` parser."""

    def __init__(self, description: str | None = None) -> None:
        self._commands: list[Subcommand] = []
        self._description = description

    def command(
        self,
        name: str,
        *,
        help: str,
        configure: Callable[[argparse.ArgumentParser], None],
        validates_config: bool = True,
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Register ``handler`` as a sub-command with configuration callback."""

        def _decorator(handler: CommandHandler) -> CommandHandler:
            self._commands.append(
                Subcommand(
                    name=name,
                    help=help,
                    configure=configure,
                    handler=handler,
                    validates_config=validates_config,
                )
            )
            return handler

        return _decorator

    @property
    def commands(self) -> Sequence[Subcommand]:
        return tuple(self._commands)

    def build_parser(self) -> argparse.ArgumentParser:
        parent = argparse.ArgumentParser(add_help=False)
        parent.add_argument("--config", dest="config_file")
        parent.add_argument("--environment", dest="config_environment")
        parent.add_argument(
            "--log-level",
            default="WARNING",
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        )

        parser = argparse.ArgumentParser(description=self._description)
        subparsers = parser.add_subparsers(dest="command", required=True)
        for command in self._commands:
            command.add_to_parser(subparsers, parent)
        return parser


APP = SubcommandApp(description=__doc__)


# ---------------------------------------------------------------------------
# Input decoding
# ---------------------------------------------------------------------------


def _read_document(path: str) -> Any:
    source = Path(path)
    if not source.exists():
        raise SystemExit(f"Input file not found: {source}")
    text = source.read_text(encoding="utf-8")
    try:
        if source.suffix.lower() == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SystemExit(f"Could not parse {source}: {exc}") from exc


def _entries(document: Any, key: str) -> List[Mapping[str, Any]]:
    if isinstance(document, Mapping):
        document = document.get(key, [])
    if not isinstance(document, list):
        raise SystemExit(f"Expected a list of {key} or a mapping with a '{key}' key")
    return document


def _read_legs(path: str) -> List[LegInput]:
    try:
        return [
            leg_from_mapping(entry, index=index)
            for index, entry in enumerate(_entries(_read_document(path), "legs"))
        ]
    except (TypeError, ValueError) as exc:
        raise SystemExit(f"Invalid leg definition: {exc}") from exc


def _projection_leg(payload: Mapping[str, Any], default_odds: int) -> ParlayLegProjection:
    sources = tuple(
        ProjectionSource(
            source=str(item.get("source", f"source-{index}")),
            value=float(item["value"]),
            confidence=float(item.get("confidence", 1.0)),
            sample_size=int(item.get("sample_size", 0)),
            recency=float(item.get("recency", 1.0)),
        )
        for index, item in enumerate(payload.get("sources") or [])
    )
    side = str(payload["side"]).strip().lower()
    if side not in ("over", "under"):
        raise ValueError(f"invalid side {side!r}")
    return ParlayLegProjection(
        subject=str(payload["subject"]),
        market=str(payload["market"]),
        sources=sources,
        line=float(payload["line"]),
        side=side,  # type: ignore[arg-type]
        odds=int(payload.get("odds", default_odds)),
    )


def _read_projection_legs(path: str, default_odds: int) -> List[ParlayLegProjection]:
    try:
        return [
            _projection_leg(entry, default_odds)
            for entry in _entries(_read_document(path), "legs")
        ]
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise SystemExit(f"Invalid projection definition: {exc}") from exc


def _parlay_leg(value: str) -> Tuple[float, int]:
    """Parse ``PROBABILITY:ODDS`` such as ``0.58:-110``."""

    probability, separator, odds = value.partition(":")
    if not separator:
        raise argparse.ArgumentTypeError(f"expected PROBABILITY:ODDS, got {value!r}")
    try:
        return float(probability), normalise_american_odds(odds)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid parlay leg {value!r}: {exc}") from exc


def _emit(payload: Any) -> None:
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        payload = dataclasses.asdict(payload)
    print(json.dumps(payload, indent=2, default=str))


# ---------------------------------------------------------------------------
# Parser configuration
# ---------------------------------------------------------------------------


def _configure_legs_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("legs", help="YAML or JSON file describing the parlay legs")


def _configure_simulate_parser(parser: argparse.ArgumentParser) -> None:
    _configure_legs_parser(parser)
    parser.add_argument("--iterations", type=int)
    parser.add_argument("--seed", type=int)
    parser.add_argument("--correlations", dest="correlation_file")
    parser.add_argument(
        "--no-correlations",
        action="store_true",
        help="Simulate legs as independent events.",
    )


def _configure_screen_parser(parser: argparse.ArgumentParser) -> None:
    _configure_legs_parser(parser)
    parser.add_argument("--min-edge", type=float)


def _configure_optimize_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("projections", help="YAML or JSON file of projected legs")
    parser.add_argument("--target", type=float)


def _configure_kelly_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--probability", type=float, required=True)
    parser.add_argument("--odds", type=int, required=True, help="American odds")
    parser.add_argument("--bankroll", type=float)
    parser.add_argument("--multiplier", type=float)


def _configure_parlay_kelly_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--leg",
        dest="legs",
        action="append",
        type=_parlay_leg,
        required=True,
        metavar="PROBABILITY:ODDS",
        help="Win probability and American odds of one leg; repeat per leg.",
    )
    parser.add_argument("--bankroll", type=float)
    parser.add_argument("--multiplier", type=float)


def _configure_changes_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("previous", help="Earlier projection file")
    parser.add_argument("current", help="Latest projection file")
    parser.add_argument("--threshold", type=float)


def _configure_validate_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--warnings-as-errors",
        action="store_true",
        help="Fail validation when configuration warnings are encountered.",
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@APP.command(
    "validate-config",
    help="Validate engine configuration",
    configure=_configure_validate_parser,
    validates_config=False,
)
def _cmd_validate_config(context: CommandContext, args: argparse.Namespace) -> None:
    config = context.config
    try:
        warnings = validate_engine_config(config, base_path=context.config_path)
    except ConfigurationError as exc:
        print("Configuration invalid:")
        for line in str(exc).splitlines():
            text = line if line.startswith("-") else f"- {line}"
            print(text)
        raise SystemExit(1) from exc

    print(f"Configuration '{config.environment}' is valid.")
    if warnings:
        print("Warnings:")
        for message in warnings:
            print(f"- {message}")
        if getattr(args, "warnings_as_errors", False):
            raise SystemExit(2)


@APP.command(
    "simulate",
    help="Run the hybrid Monte Carlo simulation for a parlay",
    configure=_configure_simulate_parser,
)
def _cmd_simulate(context: CommandContext, args: argparse.Namespace) -> None:
    legs = _read_legs(args.legs)
    try:
        correlation_data = (
            load_correlation_data(args.correlation_file) if args.correlation_file else None
        )
    except (FileNotFoundError, TypeError, ValueError) as exc:
        raise SystemExit(f"Invalid correlation data: {exc}") from exc
    sim_config = create_simulation_config(
        context.config,
        base_path=context.config_path,
        correlation_data=correlation_data,
    )
    if args.iterations is not None:
        sim_config.iterations = args.iterations
    if args.seed is not None:
        sim_config.seed = args.seed
    if args.no_correlations:
        sim_config.use_correlations = False
    result = run_hybrid_simulation(legs, sim_config)
    if result.regularized_legs:
        logger.warning(
            "Correlation matrix required regularisation at rows %s",
            list(result.regularized_legs),
        )
    _emit(result)


@APP.command(
    "quick",
    help="Quick parametric analysis without simulation",
    configure=_configure_legs_parser,
)
def _cmd_quick(context: CommandContext, args: argparse.Namespace) -> None:
    _emit(quick_hybrid_analysis(_read_legs(args.legs)))


@APP.command(
    "screen",
    help="Screen candidate legs with parametric models",
    configure=_configure_screen_parser,
)
def _cmd_screen(context: CommandContext, args: argparse.Namespace) -> None:
    min_edge = args.min_edge if args.min_edge is not None else context.config.screening.min_edge
    result = batch_screen_candidates(_read_legs(args.legs), min_edge)
    _emit(
        {
            "total_candidates": result.total_candidates,
            "passed_screen": [leg.id for leg in result.passed_screen],
            "strong_picks": [leg.id for leg in result.strong_picks],
            "avoided": [leg.id for leg in result.avoided],
            "screening_details": {
                leg_id: dataclasses.asdict(screening)
                for leg_id, screening in result.screening_details.items()
            },
        }
    )


@APP.command(
    "optimize",
    help="Suggest alternative lines for projected legs",
    configure=_configure_optimize_parser,
)
def _cmd_optimize(context: CommandContext, args: argparse.Namespace) -> None:
    projections = context.config.projections
    target = args.target if args.target is not None else projections.target_probability
    legs = _read_projection_legs(args.projections, projections.default_odds)
    _emit(optimize_parlay(legs, target))


@APP.command(
    "kelly",
    help="Size a single bet with fractional Kelly",
    configure=_configure_kelly_parser,
)
def _cmd_kelly(context: CommandContext, args: argparse.Namespace) -> None:
    staking = context.config.staking
    bankroll = args.bankroll if args.bankroll is not None else staking.bankroll
    multiplier = args.multiplier if args.multiplier is not None else staking.kelly_multiplier
    try:
        decimal_odds = american_to_decimal(args.odds)
        result = calculate_kelly(
            args.probability,
            decimal_odds,
            bankroll,
            multiplier,
            staking.max_bet_percent,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    variance = calculate_variance(
        args.probability, result.recommended_stake, decimal_odds, bankroll
    )
    payload: Dict[str, Any] = {
        "kelly": dataclasses.asdict(result),
        "variance": dataclasses.asdict(variance),
    }
    _emit(payload)


@APP.command(
    "parlay-kelly",
    help="Size a parlay with correlation-discounted Kelly",
    configure=_configure_parlay_kelly_parser,
)
def _cmd_parlay_kelly(context: CommandContext, args: argparse.Namespace) -> None:
    staking = context.config.staking
    bankroll = args.bankroll if args.bankroll is not None else staking.bankroll
    multiplier = args.multiplier if args.multiplier is not None else staking.kelly_multiplier
    try:
        legs = [(probability, american_to_decimal(odds)) for probability, odds in args.legs]
        result = calculate_parlay_kelly(
            legs,
            bankroll,
            multiplier,
            correlation_factor=staking.parlay_correlation_factor,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    _emit(result)


@APP.command(
    "changes",
    help="Report material moves between two projection snapshots",
    configure=_configure_changes_parser,
)
def _cmd_changes(context: CommandContext, args: argparse.Namespace) -> None:
    projections = context.config.projections
    threshold = args.threshold if args.threshold is not None else projections.change_threshold
    previous = {
        (leg.subject, leg.market): leg
        for leg in _read_projection_legs(args.previous, projections.default_odds)
    }
    changes = []
    for leg in _read_projection_legs(args.current, projections.default_odds):
        earlier = previous.get((leg.subject, leg.market))
        if earlier is None:
            logger.debug("No earlier projection for %s %s", leg.subject, leg.market)
            continue
        change = detect_projection_change(
            leg.subject,
            leg.market,
            earlier.sources,
            leg.sources,
            leg.line,
            leg.side,
            significant_threshold=threshold,
        )
        if change is not None:
            changes.append(dataclasses.asdict(change))
    _emit(changes)


def _build_parser() -> argparse.ArgumentParser:
    return APP.build_parser()


def _dispatch(args: argparse.Namespace) -> None:
    try:
        config = load_engine_config(
            base_path=args.config_file,
            environment=args.config_environment,
        )
    except (FileNotFoundError, TypeError, ValueError) as exc:
        raise SystemExit(f"Could not load configuration: {exc}") from exc
    config_path = args.config_file
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = str(DEFAULT_CONFIG_PATH)
    context = CommandContext(config=config, config_path=config_path)
    if getattr(args, "validates_config", True):
        try:
            warnings = validate_engine_config(config, base_path=context.config_path)
        except ConfigurationError as exc:
            raise SystemExit(str(exc)) from exc
        for message in warnings:
            logger.warning("[config-warning] %s", message)
    handler: CommandHandler = args.handler
    handler(context, args)


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    _dispatch(args)


__all__ = ["APP", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
