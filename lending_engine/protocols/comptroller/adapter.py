"""Comptroller protocol adapter — Compound style exchange-rate markets.

Balances are held in cToken units and the health factor is computed locally:
for every supported market the account snapshot and oracle price are read,
values are summed in USD (WAD), and markets the user has entered contribute
``supplied * liquidation_threshold`` to the numerator. Per-market reads run
concurrently; collateral factors are cached for ``market_cache_ttl`` seconds.
"""
from __future__ import annotations

import asyncio
import logging
import time

from ...config import ProtocolConfig, RiskConfig
from ...errors import COMPTROLLER_ERROR_CODES, ErrorKind
from ...fixed_point import MAX_UINT256, WAD, per_period_to_annual_ray
from ...interfaces.chain import ChainClient, Signer
from ...models import (
    MAX_AMOUNT,
    AssetDescriptor,
    BorrowParams,
    LendingTransaction,
    OperationKind,
    RepayParams,
    ReserveSnapshot,
    SupplyParams,
    TxReceipt,
    UserAccountSnapshot,
    UserReserveSnapshot,
    WithdrawParams,
)
from ...result import Result
from ...risk import calculate_health_factor
from ..base import BaseLendingAdapter
from . import parser

logger = logging.getLogger(__name__)


class ComptrollerAdapter(BaseLendingAdapter):
    CODE_TABLE = COMPTROLLER_ERROR_CODES
    REJECT_UNKNOWN_CODES = True

    def __init__(
        self,
        chain_client: ChainClient,
        config: ProtocolConfig,
        signer: Signer | None = None,
        risk: RiskConfig | None = None,
    ) -> None:
        super().__init__(chain_client, config, signer, risk)
        self._factor_cache: dict[str, tuple[float, int]] = {}

    @property
    def _comptroller(self) -> str:
        return self._config.contracts["comptroller"]

    @property
    def _oracle(self) -> str:
        return self._config.contracts["oracle"]

    # ------------------------------------------------------------------
    # Market reads
    # ------------------------------------------------------------------

    async def _snapshot(self, user: str, asset: AssetDescriptor) -> parser.AccountSnapshot:
        raw = await self._client.read(asset.receipt_token, parser.GET_ACCOUNT_SNAPSHOT, [user])
        return parser.parse_account_snapshot(raw, f"{asset.symbol} getAccountSnapshot")

    async def _price(self, asset: AssetDescriptor) -> int:
        return await self._client.read(
            self._oracle, parser.GET_UNDERLYING_PRICE, [asset.receipt_token]
        )

    async def _require_price(self, asset: AssetDescriptor) -> int:
        price = await self._price(asset)
        if price <= 0:
            raise self._error(
                ErrorKind.PRICE_ORACLE_ERROR, f"Oracle returned no price for {asset.symbol}"
            )
        return price

    async def _collateral_factor(self, asset: AssetDescriptor) -> int:
        if asset.collateral_factor is not None:
            return asset.collateral_factor

        hit = self._factor_cache.get(asset.symbol)
        if hit is not None and time.monotonic() - hit[0] < self._config.market_cache_ttl:
            return hit[1]

        listed, factor = await self._client.read(
            self._comptroller, parser.MARKETS, [asset.receipt_token]
        )
        if not listed:
            raise self._error(
                ErrorKind.ASSET_NOT_SUPPORTED, f"{asset.symbol} market is not listed"
            )
        self._factor_cache[asset.symbol] = (time.monotonic(), factor)
        return factor

    async def _entered_markets(self, user: str) -> frozenset[str]:
        assets_in = await self._client.read(self._comptroller, parser.GET_ASSETS_IN, [user])
        return parser.normalize_addresses(assets_in)

    async def _market_position(
        self, user: str, asset: AssetDescriptor, entered: frozenset[str]
    ) -> parser.MarketPosition:
        snapshot, price, factor = await asyncio.gather(
            self._snapshot(user, asset),
            self._price(asset),
            self._collateral_factor(asset),
        )
        if price <= 0 and (snapshot.c_token_balance or snapshot.borrow_balance):
            raise self._error(
                ErrorKind.PRICE_ORACLE_ERROR, f"Oracle returned no price for {asset.symbol}"
            )
        threshold = asset.liquidation_threshold if asset.liquidation_threshold is not None else factor
        return parser.market_position(
            asset.symbol,
            snapshot,
            price,
            factor,
            threshold,
            asset.receipt_token.lower() in entered,
        )

    async def _account_totals(self, user: str) -> parser.AccountTotals:
        entered = await self._entered_markets(user)
        positions = await asyncio.gather(
            *(self._market_position(user, asset, entered) for asset in self._assets)
        )
        return parser.aggregate_positions(positions)

    async def _hypothetical_shortfall(
        self, user: str, asset: AssetDescriptor, redeem_tokens: int, borrow_amount: int
    ) -> int:
        raw = await self._client.read(
            self._comptroller,
            parser.GET_HYPOTHETICAL_LIQUIDITY,
            [user, asset.receipt_token, redeem_tokens, borrow_amount],
        )
        _liquidity, shortfall = parser.parse_liquidity(raw, "getHypotheticalAccountLiquidity")
        return shortfall

    # ------------------------------------------------------------------
    # Adapter reads
    # ------------------------------------------------------------------

    async def _user_account_data(self, user: str) -> UserAccountSnapshot:
        totals = await self._account_totals(user)
        return UserAccountSnapshot(
            protocol=self.protocol_name,
            user=user,
            total_collateral=totals.total_collateral,
            total_debt=totals.total_debt,
            available_borrows=totals.available_borrows,
            liquidation_threshold=totals.liquidation_threshold,
            ltv=totals.ltv,
            health_factor=totals.health_factor,
        )

    async def _user_reserve_data(self, user: str, asset: AssetDescriptor) -> UserReserveSnapshot:
        snapshot, supply_rate, entered = await asyncio.gather(
            self._snapshot(user, asset),
            self._client.read(asset.receipt_token, parser.SUPPLY_RATE_PER_BLOCK),
            self._entered_markets(user),
        )
        return UserReserveSnapshot(
            protocol=self.protocol_name,
            user=user,
            asset=asset.symbol,
            supplied=snapshot.supplied,
            stable_debt=0,
            variable_debt=snapshot.borrow_balance,
            supply_rate=per_period_to_annual_ray(supply_rate, self._config.blocks_per_year),
            collateral_enabled=asset.receipt_token.lower() in entered,
        )

    async def _reserve_data(self, asset: AssetDescriptor) -> ReserveSnapshot:
        token = asset.receipt_token
        cash, borrows, reserves, supply_rate, borrow_rate = await asyncio.gather(
            self._client.read(token, parser.GET_CASH),
            self._client.read(token, parser.TOTAL_BORROWS),
            self._client.read(token, parser.TOTAL_RESERVES),
            self._client.read(token, parser.SUPPLY_RATE_PER_BLOCK),
            self._client.read(token, parser.BORROW_RATE_PER_BLOCK),
        )
        return parser.parse_reserve(
            self.protocol_name,
            asset.symbol,
            cash,
            borrows,
            reserves,
            supply_rate,
            borrow_rate,
            self._config.blocks_per_year,
        )

    async def _current_debt(self, user: str, asset: AssetDescriptor, params: RepayParams) -> int:
        return await self._client.read(asset.receipt_token, parser.BORROW_BALANCE_CURRENT, [user])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _supply(self, params: SupplyParams) -> LendingTransaction:
        asset = self._asset(params.asset)
        amount = self._validate_amount(params.amount)
        signer = self._require_signer()
        token = asset.receipt_token

        paused, cap, reserve, _factor = await asyncio.gather(
            self._client.read(self._comptroller, parser.MINT_GUARDIAN_PAUSED, [token]),
            self._client.read(self._comptroller, parser.SUPPLY_CAPS, [token]),
            self._reserve_data(asset),
            self._collateral_factor(asset),
        )
        if paused:
            raise self._error(ErrorKind.MARKET_FROZEN, f"Minting {asset.symbol} is paused")
        if cap and reserve.total_supplied + amount > cap:
            raise self._error(
                ErrorKind.SUPPLY_CAP_EXCEEDED,
                f"Supplying {amount} {asset.symbol} would exceed the supply cap of {cap}",
            )

        if asset.is_native:
            receipt = await self._submit(token, parser.MINT_NATIVE, [], value=amount)
        else:
            await self._ensure_allowance(signer.address, asset, token, amount)
            receipt = await self._submit(token, parser.MINT, [amount])
        return self._transaction(OperationKind.SUPPLY, asset, amount, signer.address, receipt)

    async def _withdraw(self, params: WithdrawParams) -> LendingTransaction:
        asset = self._asset(params.asset)
        requested = self._validate_amount(params.amount, allow_max=True)
        signer = self._require_signer()
        token = asset.receipt_token

        snapshot, cash = await asyncio.gather(
            self._snapshot(signer.address, asset),
            self._client.read(token, parser.GET_CASH),
        )
        supplied = snapshot.supplied
        if supplied == 0:
            raise self._error(ErrorKind.INVALID_AMOUNT, f"No {asset.symbol} supplied to withdraw")

        if requested == MAX_AMOUNT:
            amount, redeem_tokens = supplied, snapshot.c_token_balance
        else:
            if requested > supplied:
                raise self._error(
                    ErrorKind.INVALID_AMOUNT,
                    f"Withdraw of {requested} exceeds supplied balance {supplied}",
                )
            amount = requested
            redeem_tokens = requested * WAD // snapshot.exchange_rate

        if amount > cash:
            raise self._error(
                ErrorKind.INSUFFICIENT_LIQUIDITY,
                f"{asset.symbol} market holds only {cash} cash",
            )
        shortfall = await self._hypothetical_shortfall(signer.address, asset, redeem_tokens, 0)
        if shortfall > 0:
            raise self._error(
                ErrorKind.HEALTH_FACTOR_TOO_LOW,
                f"Withdrawing {amount} {asset.symbol} would leave a shortfall of {shortfall}",
            )

        if requested == MAX_AMOUNT:
            receipt = await self._submit(token, parser.REDEEM, [redeem_tokens])
        else:
            receipt = await self._submit(token, parser.REDEEM_UNDERLYING, [amount])
        return self._transaction(OperationKind.WITHDRAW, asset, amount, signer.address, receipt)

    async def _borrow(self, params: BorrowParams) -> LendingTransaction:
        asset = self._asset(params.asset)
        amount = self._validate_amount(params.amount)
        signer = self._require_signer()
        token = asset.receipt_token

        paused, cap, reserve, totals, price = await asyncio.gather(
            self._client.read(self._comptroller, parser.BORROW_GUARDIAN_PAUSED, [token]),
            self._client.read(self._comptroller, parser.BORROW_CAPS, [token]),
            self._reserve_data(asset),
            self._account_totals(signer.address),
            self._require_price(asset),
        )
        if paused:
            raise self._error(ErrorKind.BORROWING_DISABLED, f"Borrowing {asset.symbol} is paused")
        if cap and reserve.total_borrowed + amount > cap:
            raise self._error(
                ErrorKind.BORROW_CAP_EXCEEDED,
                f"Borrowing {amount} {asset.symbol} would exceed the borrow cap of {cap}",
            )
        if amount > reserve.available_liquidity:
            raise self._error(
                ErrorKind.INSUFFICIENT_LIQUIDITY,
                f"{asset.symbol} market holds only {reserve.available_liquidity} cash",
            )

        borrow_value = parser.usd_value(amount, price)
        projected = calculate_health_factor(
            totals.weighted_collateral, totals.total_debt + borrow_value
        )
        logger.debug("%s projected health factor after borrow: %d", self.protocol_name, projected)
        if projected <= WAD:
            raise self._error(
                ErrorKind.HEALTH_FACTOR_TOO_LOW,
                f"Borrowing {amount} {asset.symbol} would drop the health factor to {projected}",
            )
        if borrow_value > totals.available_borrows:
            raise self._error(
                ErrorKind.INSUFFICIENT_COLLATERAL,
                f"Borrow value {borrow_value} exceeds available borrows {totals.available_borrows}",
            )
        shortfall = await self._hypothetical_shortfall(signer.address, asset, 0, amount)
        if shortfall > 0:
            raise self._error(
                ErrorKind.INSUFFICIENT_COLLATERAL,
                f"Comptroller reports a shortfall of {shortfall} for this borrow",
            )

        receipt = await self._submit(token, parser.BORROW, [amount])
        rate = await self._rate_after_confirmation("borrow", self._annual_borrow_rate(token))
        return self._transaction(
            OperationKind.BORROW, asset, amount, signer.address, receipt, effective_rate=rate
        )

    async def _annual_borrow_rate(self, token: str) -> int:
        per_block = await self._client.read(token, parser.BORROW_RATE_PER_BLOCK)
        return per_period_to_annual_ray(per_block, self._config.blocks_per_year)

    async def _repay(self, params: RepayParams) -> LendingTransaction:
        asset = self._asset(params.asset)
        requested = self._validate_amount(params.amount, allow_max=True)
        signer = self._require_signer()
        borrower = params.on_behalf_of or signer.address
        token = asset.receipt_token

        debt = await self._current_debt(borrower, asset, params)
        if debt == 0:
            raise self._error(ErrorKind.INVALID_AMOUNT, f"No {asset.symbol} debt to repay")

        if requested == MAX_AMOUNT:
            if asset.is_native:
                # Native markets revert on overpayment, so send the freshest debt exactly.
                amount = await self._current_debt(borrower, asset, params)
                call_amount = amount
            else:
                amount = self._buffered_repay(debt)
                await self._ensure_allowance(signer.address, asset, token, amount)
                amount = await self._revalidate_repay(borrower, asset, params, amount)
                await self._ensure_allowance(signer.address, asset, token, amount)
                # uint256 max asks the market to repay the full balance at execution.
                call_amount = MAX_UINT256
        else:
            amount = call_amount = requested
            await self._ensure_allowance(signer.address, asset, token, amount)

        if asset.is_native:
            receipt = await self._submit(token, parser.REPAY_BORROW_NATIVE, [], value=call_amount)
        elif borrower.lower() != signer.address.lower():
            receipt = await self._submit(token, parser.REPAY_BORROW_BEHALF, [borrower, call_amount])
        else:
            receipt = await self._submit(token, parser.REPAY_BORROW, [call_amount])
        return self._transaction(OperationKind.REPAY, asset, amount, signer.address, receipt)

    # ------------------------------------------------------------------
    # Collateral membership
    # ------------------------------------------------------------------

    async def enter_markets(self, assets: list[str]) -> Result[TxReceipt]:
        """Enable the given assets as collateral."""
        return await self._run("enterMarkets", self._enter_markets(assets))

    async def exit_market(self, asset: str) -> Result[TxReceipt]:
        """Stop using ``asset`` as collateral; rejected if it would cause a shortfall."""
        return await self._run("exitMarket", self._exit_market(asset))

    async def _enter_markets(self, keys: list[str]) -> TxReceipt:
        if not keys:
            raise self._error(ErrorKind.INVALID_AMOUNT, "No markets given to enter")
        assets = [self._asset(k) for k in keys]
        self._require_signer()
        receipt = await self._submit(
            self._comptroller, parser.ENTER_MARKETS, [[a.receipt_token for a in assets]]
        )
        logger.info(
            "%s entered markets %s: %s",
            self.protocol_name,
            ", ".join(a.symbol for a in assets),
            receipt.tx_ref,
        )
        return receipt

    async def _exit_market(self, key: str) -> TxReceipt:
        asset = self._asset(key)
        signer = self._require_signer()
        snapshot = await self._snapshot(signer.address, asset)
        if snapshot.borrow_balance > 0:
            raise self._error(
                ErrorKind.PROTOCOL_REJECTION,
                f"Cannot exit {asset.symbol} while borrowing it",
                code="NONZERO_BORROW_BALANCE",
            )
        shortfall = await self._hypothetical_shortfall(
            signer.address, asset, snapshot.c_token_balance, 0
        )
        if shortfall > 0:
            raise self._error(
                ErrorKind.INSUFFICIENT_COLLATERAL,
                f"Exiting {asset.symbol} would leave a shortfall of {shortfall}",
            )
        receipt = await self._submit(self._comptroller, parser.EXIT_MARKET, [asset.receipt_token])
        logger.info("%s exited market %s: %s", self.protocol_name, asset.symbol, receipt.tx_ref)
        return receipt
