"""Unit tests for pool (Aave V3 style) parsing — pure functions, no I/O."""
from __future__ import annotations

from datetime import datetime, timezone

from lending_engine.fixed_point import RAY, WAD
from lending_engine.protocols.pool.parser import (
    cap_in_units,
    parse_account_data,
    parse_reserve,
    parse_reserve_configuration,
    parse_user_reserve,
    utilization,
    value_in_wad,
)

USER = "0x" + "ab" * 20


class TestParseAccountData:
    def test_base_currency_and_bps_scaled_to_wad(self) -> None:
        raw = (10_000 * 10**8, 2_000 * 10**8, 5_000 * 10**8, 8500, 8000, 425 * 10**16)
        account = parse_account_data(raw, "yei", USER)
        assert account.protocol == "yei"
        assert account.total_collateral == 10_000 * WAD
        assert account.total_debt == 2_000 * WAD
        assert account.available_borrows == 5_000 * WAD
        assert account.liquidation_threshold == 85 * WAD // 100
        assert account.ltv == 80 * WAD // 100
        assert account.health_factor == 425 * 10**16

    def test_custom_base_decimals(self) -> None:
        raw = (10**18, 0, 0, 0, 0, 2**256 - 1)
        assert parse_account_data(raw, "yei", USER, base_decimals=18).total_collateral == WAD


class TestParseUserReserve:
    def test_fields(self) -> None:
        raw = (1_000 * 10**6, 5 * 10**6, 200 * 10**6, 0, 0, 7 * RAY // 100, 3 * RAY // 100, 0, True)
        data = parse_user_reserve(raw, "yei", USER, "USDC")
        assert data.supplied == 1_000 * 10**6
        assert data.stable_debt == 5 * 10**6
        assert data.variable_debt == 200 * 10**6
        assert data.total_debt == 205 * 10**6
        assert data.supply_rate == 3 * RAY // 100
        assert data.stable_borrow_rate == 7 * RAY // 100
        assert data.collateral_enabled is True


class TestUtilization:
    def test_empty_reserve(self) -> None:
        assert utilization(0, 0) == 0

    def test_half(self) -> None:
        assert utilization(50, 100) == RAY // 2

    def test_capped_at_one(self) -> None:
        assert utilization(150, 100) == RAY


class TestParseReserve:
    def _raw(self, a_token: int, stable: int, variable: int) -> tuple[int, ...]:
        rates = (3 * RAY // 100, 5 * RAY // 100, 7 * RAY // 100)
        return (0, 0, a_token, stable, variable, *rates, 0, RAY, RAY, 1_700_000_000)

    def test_totals_and_rates(self) -> None:
        reserve = parse_reserve(self._raw(1000, 100, 400), "yei", "USDC")
        assert reserve.total_supplied == 1000
        assert reserve.total_borrowed == 500
        assert reserve.available_liquidity == 500
        assert reserve.utilization_rate == RAY // 2
        assert reserve.supply_rate == 3 * RAY // 100
        assert reserve.borrow_rate == 5 * RAY // 100
        assert reserve.stable_borrow_rate == 7 * RAY // 100
        assert reserve.last_update == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    def test_available_liquidity_never_negative(self) -> None:
        assert parse_reserve(self._raw(100, 0, 150), "yei", "USDC").available_liquidity == 0


class TestReserveConfiguration:
    def test_parse(self) -> None:
        raw = (6, 8000, 8500, 10500, 1000, True, True, False, True, False)
        cfg = parse_reserve_configuration(raw, paused=True, caps=(100, 200))
        assert cfg.decimals == 6
        assert cfg.ltv == 80 * WAD // 100
        assert cfg.liquidation_threshold == 85 * WAD // 100
        assert cfg.usage_as_collateral_enabled
        assert cfg.borrowing_enabled
        assert not cfg.stable_borrow_enabled
        assert cfg.is_active
        assert not cfg.is_frozen
        assert cfg.is_paused
        assert (cfg.borrow_cap, cfg.supply_cap) == (100, 200)

    def test_defaults(self) -> None:
        raw = (18, 0, 0, 0, 0, False, False, False, True, False)
        cfg = parse_reserve_configuration(raw)
        assert not cfg.is_paused
        assert cfg.borrow_cap == 0


class TestValueHelpers:
    def test_cap_in_units(self) -> None:
        assert cap_in_units(100, 6) == 100 * 10**6
        assert cap_in_units(0, 18) == 0

    def test_value_in_wad(self) -> None:
        assert value_in_wad(100 * 10**6, 6, 10**8, 8) == 100 * WAD
        assert value_in_wad(WAD // 2, 18, 2 * 10**8, 8) == WAD
