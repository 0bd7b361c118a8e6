"""Data models — all frozen (immutable).

Scales: rates and utilization are RAY, health factor / factors / USD values
are WAD, token amounts are in the asset's native decimals.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Union

from .errors import LendingError
from .fixed_point import HEALTHY_SENTINEL, WAD

MAX_AMOUNT = "max"

# Native-unit integer, or "max" for withdraw/repay.
Amount = Union[int, Literal["max"]]


class OperationKind(str, enum.Enum):
    SUPPLY = "supply"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"


class PositionType(str, enum.Enum):
    SUPPLY = "supply"
    BORROW = "borrow"


class InterestRateMode(enum.IntEnum):
    STABLE = 1
    VARIABLE = 2


class LiquidationRisk(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetDescriptor:
    """Static description of a market, loaded once from configuration."""

    symbol: str
    address: str
    decimals: int
    receipt_token: str = ""
    stable_debt_token: str = ""
    variable_debt_token: str = ""
    oracle: str = ""
    collateral_factor: int | None = None
    liquidation_threshold: int | None = None
    is_native: bool = False


class AssetRegistry:
    """Immutable lookup of supported assets by symbol or address."""

    def __init__(self, assets: tuple[AssetDescriptor, ...] | list[AssetDescriptor]) -> None:
        self._assets = tuple(assets)
        self._by_symbol = {a.symbol: a for a in self._assets}
        self._by_symbol_lower = {a.symbol.lower(): a for a in self._assets}
        self._by_address: dict[str, AssetDescriptor] = {}
        for a in self._assets:
            for addr in (a.address, a.receipt_token):
                if addr:
                    self._by_address[addr.lower()] = a

    def __iter__(self):
        return iter(self._assets)

    def __len__(self) -> int:
        return len(self._assets)

    @property
    def assets(self) -> tuple[AssetDescriptor, ...]:
        return self._assets

    def get(self, key: str) -> AssetDescriptor | None:
        if key in self._by_symbol:
            return self._by_symbol[key]
        lowered = key.lower()
        if lowered.startswith("0x"):
            return self._by_address.get(lowered)
        return self._by_symbol_lower.get(lowered)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReserveSnapshot:
    protocol: str
    asset: str
    supply_rate: int
    variable_borrow_rate: int
    stable_borrow_rate: int
    utilization_rate: int
    total_supplied: int
    total_borrowed: int
    available_liquidity: int
    last_update: datetime

    @property
    def borrow_rate(self) -> int:
        return self.variable_borrow_rate


@dataclass(frozen=True)
class UserAccountSnapshot:
    protocol: str
    user: str
    total_collateral: int
    total_debt: int
    available_borrows: int
    liquidation_threshold: int
    ltv: int
    health_factor: int


@dataclass(frozen=True)
class UserReserveSnapshot:
    protocol: str
    user: str
    asset: str
    supplied: int
    stable_debt: int
    variable_debt: int
    supply_rate: int = 0
    stable_borrow_rate: int = 0
    collateral_enabled: bool = False

    @property
    def total_debt(self) -> int:
        return self.stable_debt + self.variable_debt


@dataclass(frozen=True)
class HealthFactorData:
    health_factor: int
    total_collateral: int
    total_debt: int
    liquidation_threshold: int

    @property
    def is_healthy(self) -> bool:
        return self.health_factor > WAD

    @property
    def can_be_liquidated(self) -> bool:
        return self.health_factor < WAD

    @property
    def has_debt(self) -> bool:
        return self.health_factor != HEALTHY_SENTINEL


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TxReceipt:
    tx_ref: str
    resource_cost: int
    status: bool
    block_number: int | None = None


@dataclass(frozen=True)
class LendingTransaction:
    kind: OperationKind
    protocol: str
    asset: str
    amount: int
    user: str
    tx_ref: str
    resource_cost: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    effective_rate: int | None = None


# ---------------------------------------------------------------------------
# Operation parameters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SupplyParams:
    asset: str
    amount: int
    on_behalf_of: str | None = None
    referral_code: int = 0


@dataclass(frozen=True)
class WithdrawParams:
    asset: str
    amount: Amount
    to: str | None = None


@dataclass(frozen=True)
class BorrowParams:
    asset: str
    amount: int
    interest_rate_mode: InterestRateMode = InterestRateMode.VARIABLE
    on_behalf_of: str | None = None
    referral_code: int = 0


@dataclass(frozen=True)
class RepayParams:
    asset: str
    amount: Amount
    interest_rate_mode: InterestRateMode = InterestRateMode.VARIABLE
    on_behalf_of: str | None = None


@dataclass(frozen=True)
class LendingParams:
    """Manager-level request; ``protocol`` is a registered name or ``auto``."""

    asset: str
    amount: Amount
    protocol: str = "auto"
    user: str | None = None
    interest_rate_mode: InterestRateMode = InterestRateMode.VARIABLE
    on_behalf_of: str | None = None


# ---------------------------------------------------------------------------
# Manager views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LendingRate:
    protocol: str
    asset: str
    supply_apy: Decimal
    borrow_apy: Decimal
    utilization: Decimal
    total_supplied: int
    total_borrowed: int
    available_liquidity: int
    last_update: datetime


@dataclass(frozen=True)
class ProtocolComparison:
    asset: str
    best_supply_protocol: str
    best_supply_apy: Decimal
    best_borrow_protocol: str
    best_borrow_apy: Decimal
    rate_advantage: Decimal
    risk_level: LiquidationRisk
    recommendation: str
    rates: tuple[LendingRate, ...] = ()


@dataclass(frozen=True)
class LendingPosition:
    id: str
    protocol: str
    asset: str
    type: PositionType
    amount: int
    apy: Decimal | None
    health_factor: int
    liquidation_risk: LiquidationRisk
    timestamp: datetime


@dataclass(frozen=True)
class ProtocolFailure:
    protocol: str
    error: LendingError
    asset: str | None = None


@dataclass(frozen=True)
class UserPositions:
    user: str
    positions: tuple[LendingPosition, ...] = ()
    failures: tuple[ProtocolFailure, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class ProtocolHealth:
    protocol: str
    health_factor: int
    total_collateral: int
    total_debt: int
    available_borrows: int
    liquidation_risk: LiquidationRisk
    safe_borrow_capacity: int = 0


@dataclass(frozen=True)
class AccountHealth:
    user: str
    total_collateral: int
    total_debt: int
    available_borrows: int
    health_factor: int
    liquidation_risk: LiquidationRisk
    health_score: Decimal = Decimal(0)
    protocols: tuple[ProtocolHealth, ...] = ()
    failures: tuple[ProtocolFailure, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.failures
