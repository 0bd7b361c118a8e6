"""Command-line interface for the lending engine (read-only queries)."""
from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal

from .config import load_config
from .errors import LendingError
from .fixed_point import HEALTHY_SENTINEL, format_percentage, format_units
from .logging_setup import configure_logging
from .models import AccountHealth, LendingRate, ProtocolComparison, UserPositions
from .services import LendingManager

SCORE_PLACES = Decimal("0.0001")


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="lending-engine",
        description="Multi-protocol lending rates, positions and risk",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    rates = sub.add_parser("rates", help="Compare one asset's rates across protocols")
    rates.add_argument("asset", help="Asset symbol or address")

    all_rates = sub.add_parser("all-rates", help="List rates for every supported asset")
    all_rates.add_argument("asset", nargs="?", default=None, help="Limit to one asset")

    positions = sub.add_parser("positions", help="List a user's positions")
    positions.add_argument("user", help="Account address")

    health = sub.add_parser("health", help="Portfolio health across protocols")
    health.add_argument("user", help="Account address")

    return parser


def _fmt_hf(health_factor: int) -> str:
    if health_factor == HEALTHY_SENTINEL:
        return "∞"
    return format_units(health_factor, 18, places=4)


def _fmt_usd(value: int) -> str:
    return f"${format_units(value, 18, places=2)}"


def _rate_line(rate: LendingRate) -> str:
    return (
        f"  {rate.protocol:<14} {rate.asset:<8} "
        f"supply {format_percentage(rate.supply_apy):>9}  "
        f"borrow {format_percentage(rate.borrow_apy):>9}  "
        f"util {format_percentage(rate.utilization * 100):>8}"
    )


def format_rates(rates: tuple[LendingRate, ...]) -> str:
    return "\n".join(_rate_line(r) for r in rates)


def format_comparison(comparison: ProtocolComparison) -> str:
    lines = [f"{comparison.asset} rates"]
    lines.extend(_rate_line(r) for r in comparison.rates)
    lines.append(
        f"Best supply: {comparison.best_supply_protocol} "
        f"({format_percentage(comparison.best_supply_apy)})"
    )
    lines.append(
        f"Best borrow: {comparison.best_borrow_protocol} "
        f"({format_percentage(comparison.best_borrow_apy)})"
    )
    lines.append(f"Market risk: {comparison.risk_level.value}")
    lines.append(comparison.recommendation)
    return "\n".join(lines)


def format_positions(result: UserPositions) -> str:
    lines = [f"Positions for {result.user}"]
    if not result.positions:
        lines.append("  (none)")
    for p in result.positions:
        apy = format_percentage(p.apy) if p.apy is not None else "n/a"
        lines.append(
            f"  {p.id:<32} {p.amount:>28}  apy {apy:>9}  "
            f"hf {_fmt_hf(p.health_factor)}  risk {p.liquidation_risk.value}"
        )
    for f in result.failures:
        where = f"{f.protocol}/{f.asset}" if f.asset else f.protocol
        lines.append(f"  ! {where} unavailable: {f.error.message}")
    return "\n".join(lines)


def format_health(health: AccountHealth) -> str:
    lines = [
        f"Account health for {health.user}",
        f"  Collateral: {_fmt_usd(health.total_collateral)}",
        f"  Debt: {_fmt_usd(health.total_debt)}",
        f"  Available to borrow: {_fmt_usd(health.available_borrows)}",
        f"  Health factor: {_fmt_hf(health.health_factor)} ({health.liquidation_risk.value})",
        f"  Health score: {health.health_score.quantize(SCORE_PLACES)}",
    ]
    for p in health.protocols:
        lines.append(
            f"  - {p.protocol}: hf {_fmt_hf(p.health_factor)} "
            f"collateral {_fmt_usd(p.total_collateral)} debt {_fmt_usd(p.total_debt)} "
            f"safe borrow {_fmt_usd(p.safe_borrow_capacity)}"
        )
    for f in health.failures:
        lines.append(f"  ! {f.protocol} unavailable: {f.error.message}")
    return "\n".join(lines)


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command; returns the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    manager = LendingManager.from_config(config)

    if args.command == "rates":
        result = await manager.get_current_rates(args.asset)
        render = format_comparison
    elif args.command == "all-rates":
        result = await manager.get_all_rates(args.asset)
        render = format_rates
    elif args.command == "positions":
        result = await manager.get_user_positions(args.user)
        render = format_positions
    elif args.command == "health":
        result = await manager.get_account_health(args.user)
        render = format_health
    else:
        build_parser().print_help()
        return 1

    if not result.ok:
        _print_error(result.error)
        return 2
    print(render(result.value))
    return 0


def _print_error(error: LendingError) -> None:
    code = f" [{error.code}]" if error.code else ""
    print(f"Error ({error.kind.value}){code}: {error.message}", file=sys.stderr)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))
