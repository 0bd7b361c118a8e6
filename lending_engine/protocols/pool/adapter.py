"""Pool protocol adapter — Aave V3 style rebasing-receipt markets."""
from __future__ import annotations

import asyncio
import logging

from ...errors import POOL_ERROR_CODES, ErrorKind
from ...fixed_point import MAX_UINT256, WAD
from ...models import (
    MAX_AMOUNT,
    AssetDescriptor,
    BorrowParams,
    InterestRateMode,
    LendingTransaction,
    OperationKind,
    RepayParams,
    ReserveSnapshot,
    SupplyParams,
    UserAccountSnapshot,
    UserReserveSnapshot,
    WithdrawParams,
)
from ...risk import health_factor_after_borrow
from ..base import BaseLendingAdapter
from . import parser

logger = logging.getLogger(__name__)


class PoolAdapter(BaseLendingAdapter):
    """Balances are read in underlying units and the pool reports the health factor."""

    CODE_TABLE = POOL_ERROR_CODES

    @property
    def _pool(self) -> str:
        return self._config.contracts["pool"]

    @property
    def _data_provider(self) -> str:
        return self._config.contracts["data_provider"]

    @property
    def _oracle(self) -> str:
        return self._config.contracts["oracle"]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _user_account_data(self, user: str) -> UserAccountSnapshot:
        raw = await self._client.read(self._pool, parser.GET_USER_ACCOUNT_DATA, [user])
        return parser.parse_account_data(
            raw, self.protocol_name, user, self._config.base_currency_decimals
        )

    async def _user_reserve_data(self, user: str, asset: AssetDescriptor) -> UserReserveSnapshot:
        raw = await self._client.read(
            self._data_provider, parser.GET_USER_RESERVE_DATA, [asset.address, user]
        )
        return parser.parse_user_reserve(raw, self.protocol_name, user, asset.symbol)

    async def _reserve_data(self, asset: AssetDescriptor) -> ReserveSnapshot:
        raw = await self._client.read(
            self._data_provider, parser.GET_RESERVE_DATA, [asset.address]
        )
        return parser.parse_reserve(raw, self.protocol_name, asset.symbol)

    async def _reserve_configuration(self, asset: AssetDescriptor) -> parser.ReserveConfiguration:
        raw, paused, caps = await asyncio.gather(
            self._client.read(self._data_provider, parser.GET_RESERVE_CONFIGURATION, [asset.address]),
            self._client.read(self._data_provider, parser.GET_PAUSED, [asset.address]),
            self._client.read(self._data_provider, parser.GET_RESERVE_CAPS, [asset.address]),
        )
        return parser.parse_reserve_configuration(raw, paused, caps)

    async def _price(self, asset: AssetDescriptor) -> int:
        price = await self._client.read(self._oracle, parser.GET_ASSET_PRICE, [asset.address])
        if price <= 0:
            raise self._error(
                ErrorKind.PRICE_ORACLE_ERROR, f"Oracle returned no price for {asset.symbol}"
            )
        return price

    async def _current_debt(self, user: str, asset: AssetDescriptor, params: RepayParams) -> int:
        reserve = await self._user_reserve_data(user, asset)
        if params.interest_rate_mode == InterestRateMode.STABLE:
            return reserve.stable_debt
        return reserve.variable_debt

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _check_market_open(self, asset: AssetDescriptor, cfg: parser.ReserveConfiguration) -> None:
        if not cfg.is_active:
            raise self._error(ErrorKind.MARKET_FROZEN, f"{asset.symbol} reserve is not active")
        if cfg.is_frozen:
            raise self._error(ErrorKind.MARKET_FROZEN, f"{asset.symbol} reserve is frozen")
        if cfg.is_paused:
            raise self._error(ErrorKind.MARKET_FROZEN, f"{asset.symbol} reserve is paused")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _supply(self, params: SupplyParams) -> LendingTransaction:
        asset = self._asset(params.asset)
        amount = self._validate_amount(params.amount)
        signer = self._require_signer()
        on_behalf_of = params.on_behalf_of or signer.address

        cfg, reserve = await asyncio.gather(
            self._reserve_configuration(asset), self._reserve_data(asset)
        )
        self._check_market_open(asset, cfg)
        cap = parser.cap_in_units(cfg.supply_cap, asset.decimals)
        if cap and reserve.total_supplied + amount > cap:
            raise self._error(
                ErrorKind.SUPPLY_CAP_EXCEEDED,
                f"Supplying {amount} {asset.symbol} would exceed the supply cap of {cfg.supply_cap}",
            )

        await self._ensure_allowance(signer.address, asset, self._pool, amount)
        receipt = await self._submit(
            self._pool, parser.SUPPLY, [asset.address, amount, on_behalf_of, params.referral_code]
        )
        return self._transaction(OperationKind.SUPPLY, asset, amount, signer.address, receipt)

    async def _withdraw(self, params: WithdrawParams) -> LendingTransaction:
        asset = self._asset(params.asset)
        requested = self._validate_amount(params.amount, allow_max=True)
        signer = self._require_signer()

        position, reserve = await asyncio.gather(
            self._user_reserve_data(signer.address, asset), self._reserve_data(asset)
        )
        if position.supplied == 0:
            raise self._error(ErrorKind.INVALID_AMOUNT, f"No {asset.symbol} supplied to withdraw")

        if requested == MAX_AMOUNT:
            # The pool treats uint256 max as "entire balance at execution time".
            amount, call_amount = position.supplied, MAX_UINT256
        else:
            if requested > position.supplied:
                raise self._error(
                    ErrorKind.INVALID_AMOUNT,
                    f"Withdraw of {requested} exceeds supplied balance {position.supplied}",
                )
            amount, call_amount = requested, requested

        if amount > reserve.available_liquidity:
            raise self._error(
                ErrorKind.INSUFFICIENT_LIQUIDITY,
                f"{asset.symbol} reserve holds only {reserve.available_liquidity} available",
            )

        receipt = await self._submit(
            self._pool, parser.WITHDRAW, [asset.address, call_amount, params.to or signer.address]
        )
        return self._transaction(OperationKind.WITHDRAW, asset, amount, signer.address, receipt)

    async def _borrow(self, params: BorrowParams) -> LendingTransaction:
        asset = self._asset(params.asset)
        amount = self._validate_amount(params.amount)
        signer = self._require_signer()
        on_behalf_of = params.on_behalf_of or signer.address

        cfg, reserve, account, price = await asyncio.gather(
            self._reserve_configuration(asset),
            self._reserve_data(asset),
            self._user_account_data(on_behalf_of),
            self._price(asset),
        )
        self._check_market_open(asset, cfg)
        if not cfg.borrowing_enabled:
            raise self._error(ErrorKind.BORROWING_DISABLED, f"Borrowing {asset.symbol} is disabled")
        if params.interest_rate_mode == InterestRateMode.STABLE and not cfg.stable_borrow_enabled:
            raise self._error(
                ErrorKind.BORROWING_DISABLED, f"Stable-rate borrowing of {asset.symbol} is disabled"
            )

        cap = parser.cap_in_units(cfg.borrow_cap, asset.decimals)
        if cap and reserve.total_borrowed + amount > cap:
            raise self._error(
                ErrorKind.BORROW_CAP_EXCEEDED,
                f"Borrowing {amount} {asset.symbol} would exceed the borrow cap of {cfg.borrow_cap}",
            )
        if amount > reserve.available_liquidity:
            raise self._error(
                ErrorKind.INSUFFICIENT_LIQUIDITY,
                f"{asset.symbol} reserve holds only {reserve.available_liquidity} available",
            )

        borrow_value = parser.value_in_wad(
            amount, asset.decimals, price, self._config.base_currency_decimals
        )
        projected = health_factor_after_borrow(
            account.total_collateral,
            account.liquidation_threshold,
            account.total_debt,
            borrow_value,
        )
        logger.debug("%s projected health factor after borrow: %d", self.protocol_name, projected)
        if projected <= WAD:
            raise self._error(
                ErrorKind.HEALTH_FACTOR_TOO_LOW,
                f"Borrowing {amount} {asset.symbol} would drop the health factor to {projected}",
            )
        if borrow_value > account.available_borrows:
            raise self._error(
                ErrorKind.INSUFFICIENT_COLLATERAL,
                f"Borrow value {borrow_value} exceeds available borrows {account.available_borrows}",
            )

        receipt = await self._submit(
            self._pool,
            parser.BORROW,
            [asset.address, amount, int(params.interest_rate_mode), params.referral_code, on_behalf_of],
        )
        rate = await self._rate_after_confirmation(
            "borrow", self._borrow_rate(asset, params.interest_rate_mode)
        )
        return self._transaction(
            OperationKind.BORROW, asset, amount, signer.address, receipt, effective_rate=rate
        )

    async def _borrow_rate(self, asset: AssetDescriptor, mode: InterestRateMode) -> int:
        after = await self._reserve_data(asset)
        if mode == InterestRateMode.STABLE:
            return after.stable_borrow_rate
        return after.variable_borrow_rate

    async def _repay(self, params: RepayParams) -> LendingTransaction:
        asset = self._asset(params.asset)
        requested = self._validate_amount(params.amount, allow_max=True)
        signer = self._require_signer()
        on_behalf_of = params.on_behalf_of or signer.address

        debt = await self._current_debt(on_behalf_of, asset, params)
        if debt == 0:
            raise self._error(ErrorKind.INVALID_AMOUNT, f"No {asset.symbol} debt to repay")

        if requested == MAX_AMOUNT:
            amount = self._buffered_repay(debt)
            await self._ensure_allowance(signer.address, asset, self._pool, amount)
            amount = await self._revalidate_repay(on_behalf_of, asset, params, amount)
            # No-op unless re-validation grew the amount. The pool pulls at most the debt.
            await self._ensure_allowance(signer.address, asset, self._pool, amount)
        else:
            amount = requested
            await self._ensure_allowance(signer.address, asset, self._pool, amount)

        receipt = await self._submit(
            self._pool,
            parser.REPAY,
            [asset.address, amount, int(params.interest_rate_mode), on_behalf_of],
        )
        return self._transaction(OperationKind.REPAY, asset, amount, signer.address, receipt)
