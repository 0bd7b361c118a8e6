"""Risk engine — pure functions over WAD/RAY integers."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .fixed_point import HEALTHY_SENTINEL, RAY, WAD, ratio
from .models import LiquidationRisk

CRITICAL_THRESHOLD = WAD
HIGH_THRESHOLD = 11 * WAD // 10
MEDIUM_THRESHOLD = 13 * WAD // 10

DEFAULT_TARGET_HEALTH_FACTOR = 3 * WAD // 2

HIGH_UTILIZATION = Decimal("0.9")
MEDIUM_UTILIZATION = Decimal("0.7")


@dataclass(frozen=True)
class HealthScoreWeights:
    health_factor: Decimal = Decimal("0.5")
    utilization: Decimal = Decimal("0.3")
    diversification: Decimal = Decimal("0.2")

    def __post_init__(self) -> None:
        for name in ("health_factor", "utilization", "diversification"):
            if getattr(self, name) < 0:
                raise ValueError(f"Health score weight '{name}' must be non-negative")


def calculate_liquidation_risk(health_factor: int) -> LiquidationRisk:
    """Step function at 1.0 / 1.1 / 1.3 (WAD)."""
    if health_factor < CRITICAL_THRESHOLD:
        return LiquidationRisk.CRITICAL
    if health_factor < HIGH_THRESHOLD:
        return LiquidationRisk.HIGH
    if health_factor < MEDIUM_THRESHOLD:
        return LiquidationRisk.MEDIUM
    return LiquidationRisk.LOW


def calculate_optimal_borrow_amount(
    collateral_value: int,
    collateral_factor: int,
    current_borrow_value: int,
    target_health_factor: int = DEFAULT_TARGET_HEALTH_FACTOR,
) -> int:
    """Largest additional borrow (WAD USD) keeping the health factor at target.

    ``(current + result) * target <= collateral * factor`` holds up to
    truncation, since every step rounds down.
    """
    if target_health_factor <= 0:
        raise ValueError("target_health_factor must be positive")
    max_borrow = collateral_value * collateral_factor // WAD
    safe_max_borrow = max_borrow * WAD // target_health_factor
    return max(0, safe_max_borrow - current_borrow_value)


def calculate_health_factor(weighted_collateral: int, total_debt: int) -> int:
    """``weighted_collateral / total_debt`` in WAD; sentinel when debt is zero."""
    if total_debt <= 0:
        return HEALTHY_SENTINEL
    return weighted_collateral * WAD // total_debt


def health_factor_after_borrow(
    total_collateral: int,
    liquidation_threshold: int,
    total_debt: int,
    additional_debt: int,
) -> int:
    """Projected health factor after adding ``additional_debt`` (all WAD)."""
    weighted = total_collateral * liquidation_threshold // WAD
    return calculate_health_factor(weighted, total_debt + additional_debt)


def calculate_position_health_score(
    health_factor: int,
    utilization_rate: int,
    diversification_score: Decimal,
    weights: HealthScoreWeights | None = None,
) -> Decimal:
    """Weighted composite in ``[0, 1]``.

    Args:
        health_factor: WAD health factor.
        utilization_rate: RAY fraction of borrowing power in use.
        diversification_score: Fraction in ``[0, 1]``.
        weights: Term weights, defaulting to 0.5 / 0.3 / 0.2.
    """
    weights = weights or HealthScoreWeights()
    hf_term = ratio(min(health_factor, 100 * WAD), WAD)
    util_term = Decimal(1) - ratio(utilization_rate, RAY)
    div_term = min(max(Decimal(diversification_score), Decimal(0)), Decimal(1))

    score = (
        hf_term * weights.health_factor
        + util_term * weights.utilization
        + div_term * weights.diversification
    )
    return min(max(score, Decimal(0)), Decimal(1))


def assess_utilization_risk(max_utilization: Decimal) -> LiquidationRisk:
    """Coarse market tier from the highest observed utilization fraction."""
    if max_utilization > HIGH_UTILIZATION:
        return LiquidationRisk.HIGH
    if max_utilization > MEDIUM_UTILIZATION:
        return LiquidationRisk.MEDIUM
    return LiquidationRisk.LOW
