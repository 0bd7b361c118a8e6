"""Pure parsing functions for comptroller/cToken market data — no I/O.

cToken balances convert to underlying via the market exchange rate:

    underlying = cTokens * exchangeRateMantissa / 1e18

Oracle prices are scaled so that ``underlying * price / 1e18`` is USD in WAD.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from ...errors import COMPTROLLER_ERROR_CODES, ErrorKind, LendingError
from ...fixed_point import RAY, WAD, per_period_to_annual_ray, wad_div
from ...models import ReserveSnapshot
from ...risk import calculate_health_factor

# cToken
GET_ACCOUNT_SNAPSHOT = "getAccountSnapshot(address)(uint256,uint256,uint256,uint256)"
SUPPLY_RATE_PER_BLOCK = "supplyRatePerBlock()(uint256)"
BORROW_RATE_PER_BLOCK = "borrowRatePerBlock()(uint256)"
TOTAL_BORROWS = "totalBorrows()(uint256)"
TOTAL_RESERVES = "totalReserves()(uint256)"
GET_CASH = "getCash()(uint256)"
BORROW_BALANCE_CURRENT = "borrowBalanceCurrent(address)(uint256)"

MINT = "mint(uint256)(uint256)"
MINT_NATIVE = "mint()"
REDEEM = "redeem(uint256)(uint256)"
REDEEM_UNDERLYING = "redeemUnderlying(uint256)(uint256)"
BORROW = "borrow(uint256)(uint256)"
REPAY_BORROW = "repayBorrow(uint256)(uint256)"
REPAY_BORROW_NATIVE = "repayBorrow()"
REPAY_BORROW_BEHALF = "repayBorrowBehalf(address,uint256)(uint256)"

# Comptroller
GET_ASSETS_IN = "getAssetsIn(address)(address[])"
GET_HYPOTHETICAL_LIQUIDITY = (
    "getHypotheticalAccountLiquidity(address,address,uint256,uint256)(uint256,uint256,uint256)"
)
MARKETS = "markets(address)(bool,uint256)"
BORROW_CAPS = "borrowCaps(address)(uint256)"
SUPPLY_CAPS = "supplyCaps(address)(uint256)"
BORROW_GUARDIAN_PAUSED = "borrowGuardianPaused(address)(bool)"
MINT_GUARDIAN_PAUSED = "mintGuardianPaused(address)(bool)"
ENTER_MARKETS = "enterMarkets(address[])(uint256[])"
EXIT_MARKET = "exitMarket(address)(uint256)"

# Oracle
GET_UNDERLYING_PRICE = "getUnderlyingPrice(address)(uint256)"


@dataclass(frozen=True)
class AccountSnapshot:
    c_token_balance: int
    borrow_balance: int
    exchange_rate: int

    @property
    def supplied(self) -> int:
        return underlying_from_ctokens(self.c_token_balance, self.exchange_rate)


@dataclass(frozen=True)
class MarketPosition:
    """One market's contribution to an account, USD values in WAD."""

    symbol: str
    supplied_value: int
    borrowed_value: int
    collateral_factor: int
    liquidation_threshold: int
    entered: bool


@dataclass(frozen=True)
class AccountTotals:
    total_collateral: int
    total_debt: int
    borrow_power: int
    weighted_collateral: int

    @property
    def health_factor(self) -> int:
        return calculate_health_factor(self.weighted_collateral, self.total_debt)

    @property
    def available_borrows(self) -> int:
        return max(self.borrow_power - self.total_debt, 0)

    @property
    def liquidation_threshold(self) -> int:
        if self.total_collateral == 0:
            return 0
        return wad_div(self.weighted_collateral, self.total_collateral)

    @property
    def ltv(self) -> int:
        if self.total_collateral == 0:
            return 0
        return wad_div(self.borrow_power, self.total_collateral)


def check_error_code(code: int, context: str) -> None:
    """Comptroller-family calls report failure as a nonzero first output."""
    if code != 0:
        raise LendingError(
            COMPTROLLER_ERROR_CODES.get(str(code), ErrorKind.PROTOCOL_REJECTION),
            f"{context} returned comptroller error {code}",
            code=str(code),
        )


def parse_account_snapshot(raw: Sequence[int], context: str = "getAccountSnapshot") -> AccountSnapshot:
    error, c_tokens, borrows, exchange_rate = raw
    check_error_code(error, context)
    return AccountSnapshot(c_token_balance=c_tokens, borrow_balance=borrows, exchange_rate=exchange_rate)


def underlying_from_ctokens(c_tokens: int, exchange_rate: int) -> int:
    return c_tokens * exchange_rate // WAD


def usd_value(amount: int, price: int) -> int:
    """Native units at an oracle price → USD WAD."""
    return amount * price // WAD


def market_position(
    symbol: str,
    snapshot: AccountSnapshot,
    price: int,
    collateral_factor: int,
    liquidation_threshold: int,
    entered: bool,
) -> MarketPosition:
    return MarketPosition(
        symbol=symbol,
        supplied_value=usd_value(snapshot.supplied, price),
        borrowed_value=usd_value(snapshot.borrow_balance, price),
        collateral_factor=collateral_factor,
        liquidation_threshold=liquidation_threshold,
        entered=entered,
    )


def aggregate_positions(positions: Sequence[MarketPosition]) -> AccountTotals:
    """Sum per-market values; only entered markets count as collateral."""
    collateral = debt = power = weighted = 0
    for pos in positions:
        debt += pos.borrowed_value
        if pos.entered:
            collateral += pos.supplied_value
            power += pos.supplied_value * pos.collateral_factor // WAD
            weighted += pos.supplied_value * pos.liquidation_threshold // WAD
    return AccountTotals(
        total_collateral=collateral,
        total_debt=debt,
        borrow_power=power,
        weighted_collateral=weighted,
    )


def parse_liquidity(raw: Sequence[int], context: str) -> tuple[int, int]:
    """``(error, liquidity, shortfall)`` → ``(liquidity, shortfall)``."""
    error, liquidity, shortfall = raw
    check_error_code(error, context)
    return liquidity, shortfall


def parse_reserve(
    protocol: str,
    asset: str,
    cash: int,
    total_borrows: int,
    total_reserves: int,
    supply_rate_per_block: int,
    borrow_rate_per_block: int,
    blocks_per_year: int,
    now: datetime | None = None,
) -> ReserveSnapshot:
    total_supplied = max(cash + total_borrows - total_reserves, 0)
    utilization = 0
    if total_supplied > 0:
        utilization = min(total_borrows * RAY // total_supplied, RAY)
    return ReserveSnapshot(
        protocol=protocol,
        asset=asset,
        supply_rate=per_period_to_annual_ray(supply_rate_per_block, blocks_per_year),
        variable_borrow_rate=per_period_to_annual_ray(borrow_rate_per_block, blocks_per_year),
        stable_borrow_rate=0,
        utilization_rate=utilization,
        total_supplied=total_supplied,
        total_borrowed=total_borrows,
        available_liquidity=cash,
        last_update=now or datetime.now(timezone.utc),
    )


def normalize_addresses(addresses: Sequence[Any]) -> frozenset[str]:
    return frozenset(str(a).lower() for a in addresses)
