"""Unit tests for comptroller/cToken parsing — pure functions, no I/O."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from lending_engine.errors import ErrorKind, LendingError
from lending_engine.fixed_point import HEALTHY_SENTINEL, RAY, WAD
from lending_engine.protocols.comptroller.parser import (
    AccountTotals,
    MarketPosition,
    aggregate_positions,
    check_error_code,
    market_position,
    normalize_addresses,
    parse_account_snapshot,
    parse_liquidity,
    parse_reserve,
    underlying_from_ctokens,
    usd_value,
)


class TestErrorCodes:
    def test_zero_is_success(self) -> None:
        check_error_code(0, "getAccountLiquidity")

    @pytest.mark.parametrize(
        ("code", "kind"),
        [
            (4, ErrorKind.INSUFFICIENT_COLLATERAL),
            (9, ErrorKind.ASSET_NOT_SUPPORTED),
            (13, ErrorKind.PRICE_ORACLE_ERROR),
        ],
    )
    def test_known_code_uses_table_kind(self, code: int, kind: ErrorKind) -> None:
        with pytest.raises(LendingError) as exc_info:
            check_error_code(code, "getAccountSnapshot")
        assert exc_info.value.kind == kind
        assert exc_info.value.code == str(code)
        assert f"comptroller error {code}" in exc_info.value.message

    def test_unknown_code_is_rejection(self) -> None:
        with pytest.raises(LendingError) as exc_info:
            check_error_code(14, "getAccountLiquidity")
        assert exc_info.value.kind == ErrorKind.PROTOCOL_REJECTION
        assert exc_info.value.code == "14"


class TestSnapshots:
    def test_exchange_rate_conversion(self) -> None:
        snapshot = parse_account_snapshot((0, 5_000 * 10**8, 10**6, 2 * 10**16))
        assert snapshot.c_token_balance == 5_000 * 10**8
        assert snapshot.borrow_balance == 10**6
        assert snapshot.supplied == 10_000 * 10**6

    def test_error_code_rejected(self) -> None:
        with pytest.raises(LendingError):
            parse_account_snapshot((3, 0, 0, 0))

    def test_underlying_truncates(self) -> None:
        assert underlying_from_ctokens(1, WAD - 1) == 0

    def test_usd_value(self) -> None:
        # USDC prices carry 30 decimals so that 6-decimal amounts land in WAD.
        assert usd_value(10_000 * 10**6, 10**30) == 10_000 * WAD


class TestAggregation:
    def test_only_entered_markets_count_as_collateral(self) -> None:
        entered = MarketPosition("USDC", 10_000 * WAD, 0, 80 * WAD // 100, 85 * WAD // 100, True)
        idle = MarketPosition("SEI", 5_000 * WAD, 1_000 * WAD, 75 * WAD // 100, 85 * WAD // 100, False)
        totals = aggregate_positions([entered, idle])
        assert totals.total_collateral == 10_000 * WAD
        assert totals.total_debt == 1_000 * WAD
        assert totals.borrow_power == 8_000 * WAD
        assert totals.weighted_collateral == 8_500 * WAD
        assert totals.health_factor == 85 * WAD // 10
        assert totals.available_borrows == 7_000 * WAD
        assert totals.liquidation_threshold == 85 * WAD // 100
        assert totals.ltv == 80 * WAD // 100

    def test_market_position_values(self) -> None:
        snapshot = parse_account_snapshot((0, 100 * 10**8, 50 * WAD, 10**28))
        pos = market_position("SEI", snapshot, WAD // 2, 3 * WAD // 4, 85 * WAD // 100, True)
        assert pos.supplied_value == 50 * WAD
        assert pos.borrowed_value == 25 * WAD
        assert pos.entered

    def test_empty_account(self) -> None:
        totals = AccountTotals(0, 0, 0, 0)
        assert totals.health_factor == HEALTHY_SENTINEL
        assert totals.liquidation_threshold == 0
        assert totals.ltv == 0
        assert totals.available_borrows == 0

    def test_debt_above_power_leaves_nothing_available(self) -> None:
        assert AccountTotals(100 * WAD, 90 * WAD, 80 * WAD, 85 * WAD).available_borrows == 0


class TestLiquidity:
    def test_parse(self) -> None:
        assert parse_liquidity((0, 500, 0), "getAccountLiquidity") == (500, 0)

    def test_error(self) -> None:
        with pytest.raises(LendingError) as exc_info:
            parse_liquidity((13, 0, 0), "getHypotheticalAccountLiquidity")
        assert exc_info.value.kind == ErrorKind.PRICE_ORACLE_ERROR


class TestParseReserve:
    def test_annualized_rates_and_totals(self) -> None:
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        reserve = parse_reserve(
            "takara",
            "USDC",
            cash=500,
            total_borrows=400,
            total_reserves=100,
            supply_rate_per_block=10**9,
            borrow_rate_per_block=2 * 10**9,
            blocks_per_year=10_512_000,
            now=now,
        )
        assert reserve.total_supplied == 800
        assert reserve.total_borrowed == 400
        assert reserve.available_liquidity == 500
        assert reserve.utilization_rate == RAY // 2
        assert reserve.supply_rate == 10**9 * 10_512_000 * 10**9
        assert reserve.variable_borrow_rate == 2 * 10**9 * 10_512_000 * 10**9
        assert reserve.stable_borrow_rate == 0
        assert reserve.last_update == now

    def test_empty_market(self) -> None:
        reserve = parse_reserve("takara", "USDC", 0, 0, 0, 0, 0, 10_512_000)
        assert reserve.utilization_rate == 0
        assert reserve.last_update.tzinfo is timezone.utc


def test_normalize_addresses() -> None:
    assert normalize_addresses(["0xAB", "0xcd"]) == frozenset({"0xab", "0xcd"})
