"""Pure parsing functions for pool (Aave V3 style) contract data — no I/O."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from ...fixed_point import RAY, bps_to_wad, scale
from ...models import ReserveSnapshot, UserAccountSnapshot, UserReserveSnapshot

# Contract signatures. Outputs follow the Aave V3 Pool / PoolDataProvider ABIs.
GET_USER_ACCOUNT_DATA = (
    "getUserAccountData(address)(uint256,uint256,uint256,uint256,uint256,uint256)"
)
GET_USER_RESERVE_DATA = (
    "getUserReserveData(address,address)"
    "(uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint40,bool)"
)
GET_RESERVE_DATA = (
    "getReserveData(address)"
    "(uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint40)"
)
GET_RESERVE_CONFIGURATION = (
    "getReserveConfigurationData(address)"
    "(uint256,uint256,uint256,uint256,uint256,bool,bool,bool,bool,bool)"
)
GET_RESERVE_CAPS = "getReserveCaps(address)(uint256,uint256)"
GET_PAUSED = "getPaused(address)(bool)"
GET_ASSET_PRICE = "getAssetPrice(address)(uint256)"

SUPPLY = "supply(address,uint256,address,uint16)"
WITHDRAW = "withdraw(address,uint256,address)(uint256)"
BORROW = "borrow(address,uint256,uint256,uint16,address)"
REPAY = "repay(address,uint256,uint256,address)(uint256)"


@dataclass(frozen=True)
class ReserveConfiguration:
    decimals: int
    ltv: int
    liquidation_threshold: int
    usage_as_collateral_enabled: bool
    borrowing_enabled: bool
    stable_borrow_enabled: bool
    is_active: bool
    is_frozen: bool
    is_paused: bool = False
    # Whole-token caps; zero means uncapped.
    borrow_cap: int = 0
    supply_cap: int = 0


def base_to_wad(value: int, base_decimals: int) -> int:
    """Oracle base-currency amount (USD, 8 decimals on Aave V3) → WAD."""
    return scale(value, base_decimals, 18)


def parse_account_data(
    raw: Sequence[Any], protocol: str, user: str, base_decimals: int = 8
) -> UserAccountSnapshot:
    """Parse ``Pool.getUserAccountData``.

    Totals arrive in base currency units, threshold and LTV in basis points;
    the health factor is already WAD (``type(uint256).max`` with no debt).
    """
    collateral, debt, available, threshold_bps, ltv_bps, health_factor = raw
    return UserAccountSnapshot(
        protocol=protocol,
        user=user,
        total_collateral=base_to_wad(collateral, base_decimals),
        total_debt=base_to_wad(debt, base_decimals),
        available_borrows=base_to_wad(available, base_decimals),
        liquidation_threshold=bps_to_wad(threshold_bps),
        ltv=bps_to_wad(ltv_bps),
        health_factor=health_factor,
    )


def parse_user_reserve(
    raw: Sequence[Any], protocol: str, user: str, asset: str
) -> UserReserveSnapshot:
    (
        a_token_balance,
        stable_debt,
        variable_debt,
        _principal_stable,
        _scaled_variable,
        stable_rate,
        liquidity_rate,
        _stable_updated,
        collateral_enabled,
    ) = raw
    return UserReserveSnapshot(
        protocol=protocol,
        user=user,
        asset=asset,
        supplied=a_token_balance,
        stable_debt=stable_debt,
        variable_debt=variable_debt,
        supply_rate=liquidity_rate,
        stable_borrow_rate=stable_rate,
        collateral_enabled=bool(collateral_enabled),
    )


def utilization(total_debt: int, total_supplied: int) -> int:
    """Borrowed share of supplied liquidity, RAY."""
    if total_supplied <= 0:
        return 0
    return min(total_debt * RAY // total_supplied, RAY)


def parse_reserve(raw: Sequence[Any], protocol: str, asset: str) -> ReserveSnapshot:
    (
        _unbacked,
        _accrued_to_treasury,
        total_a_token,
        total_stable_debt,
        total_variable_debt,
        liquidity_rate,
        variable_borrow_rate,
        stable_borrow_rate,
        _avg_stable_rate,
        _liquidity_index,
        _variable_index,
        last_update,
    ) = raw
    total_debt = total_stable_debt + total_variable_debt
    return ReserveSnapshot(
        protocol=protocol,
        asset=asset,
        supply_rate=liquidity_rate,
        variable_borrow_rate=variable_borrow_rate,
        stable_borrow_rate=stable_borrow_rate,
        utilization_rate=utilization(total_debt, total_a_token),
        total_supplied=total_a_token,
        total_borrowed=total_debt,
        available_liquidity=max(total_a_token - total_debt, 0),
        last_update=datetime.fromtimestamp(last_update, tz=timezone.utc),
    )


def parse_reserve_configuration(
    raw: Sequence[Any], paused: bool = False, caps: Sequence[int] = (0, 0)
) -> ReserveConfiguration:
    (
        decimals,
        ltv_bps,
        threshold_bps,
        _bonus,
        _reserve_factor,
        collateral_enabled,
        borrowing_enabled,
        stable_enabled,
        is_active,
        is_frozen,
    ) = raw
    borrow_cap, supply_cap = caps
    return ReserveConfiguration(
        decimals=int(decimals),
        ltv=bps_to_wad(ltv_bps),
        liquidation_threshold=bps_to_wad(threshold_bps),
        usage_as_collateral_enabled=bool(collateral_enabled),
        borrowing_enabled=bool(borrowing_enabled),
        stable_borrow_enabled=bool(stable_enabled),
        is_active=bool(is_active),
        is_frozen=bool(is_frozen),
        is_paused=bool(paused),
        borrow_cap=int(borrow_cap),
        supply_cap=int(supply_cap),
    )


def cap_in_units(cap: int, decimals: int) -> int:
    """Whole-token cap → native units (0 stays 0 = uncapped)."""
    return cap * 10**decimals


def value_in_wad(amount: int, decimals: int, price: int, price_decimals: int) -> int:
    """USD value (WAD) of ``amount`` native units at an oracle price."""
    return amount * scale(price, price_decimals, 18) // 10**decimals

