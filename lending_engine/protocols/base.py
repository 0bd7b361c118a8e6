"""Shared adapter plumbing — error boundary, validation, submission, caching."""
from __future__ import annotations

import logging
import time
from collections.abc import Awaitable
from typing import Any, ClassVar, TypeVar

from ..config import ProtocolConfig, RiskConfig
from ..errors import CodeTable, ErrorKind, LendingError, map_error
from ..fixed_point import BPS, MAX_UINT256
from ..interfaces.chain import ChainClient, Signer
from ..models import (
    MAX_AMOUNT,
    Amount,
    AssetDescriptor,
    AssetRegistry,
    BorrowParams,
    HealthFactorData,
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
from ..result import Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

ERC20_ALLOWANCE = "allowance(address,address)(uint256)"
ERC20_APPROVE = "approve(address,uint256)(bool)"


class BaseLendingAdapter:
    """Template for protocol adapters.

    Public methods wrap the protocol-specific ``_``-prefixed coroutines in
    :meth:`_run`, which converts every raised exception into a typed
    ``Result.failure``.
    """

    CODE_TABLE: ClassVar[CodeTable | None] = None
    REJECT_UNKNOWN_CODES: ClassVar[bool] = False

    def __init__(
        self,
        chain_client: ChainClient,
        config: ProtocolConfig,
        signer: Signer | None = None,
        risk: RiskConfig | None = None,
    ) -> None:
        self._client = chain_client
        self._config = config
        self._signer = signer
        self._risk = risk or RiskConfig()
        self._assets = AssetRegistry(config.assets)
        self._reserve_cache: dict[str, tuple[float, ReserveSnapshot]] = {}

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def protocol_name(self) -> str:
        return self._config.name

    @property
    def account_address(self) -> str | None:
        return self._signer.address if self._signer is not None else None

    def get_protocol_config(self) -> ProtocolConfig:
        return self._config

    def get_supported_assets(self) -> tuple[AssetDescriptor, ...]:
        return self._assets.assets

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def get_user_account_data(self, user: str) -> Result[UserAccountSnapshot]:
        return await self._run("getUserAccountData", self._user_account_data(user))

    async def get_user_reserve_data(self, user: str, asset: str) -> Result[UserReserveSnapshot]:
        return await self._run("getUserReserveData", self._lookup_user_reserve(user, asset))

    async def get_reserve_data(self, asset: str) -> Result[ReserveSnapshot]:
        return await self._run("getReserveData", self._cached_reserve(asset))

    async def get_health_factor(self, user: str) -> Result[HealthFactorData]:
        return await self._run("getHealthFactor", self._health_factor(user))

    async def supply(self, params: SupplyParams) -> Result[LendingTransaction]:
        return await self._run("supply", self._supply(params))

    async def withdraw(self, params: WithdrawParams) -> Result[LendingTransaction]:
        return await self._run("withdraw", self._withdraw(params))

    async def borrow(self, params: BorrowParams) -> Result[LendingTransaction]:
        return await self._run("borrow", self._borrow(params))

    async def repay(self, params: RepayParams) -> Result[LendingTransaction]:
        return await self._run("repay", self._repay(params))

    # ------------------------------------------------------------------
    # Protocol-specific hooks
    # ------------------------------------------------------------------

    async def _user_account_data(self, user: str) -> UserAccountSnapshot:
        raise NotImplementedError

    async def _user_reserve_data(self, user: str, asset: AssetDescriptor) -> UserReserveSnapshot:
        raise NotImplementedError

    async def _reserve_data(self, asset: AssetDescriptor) -> ReserveSnapshot:
        raise NotImplementedError

    async def _health_factor(self, user: str) -> HealthFactorData:
        account = await self._user_account_data(user)
        return HealthFactorData(
            health_factor=account.health_factor,
            total_collateral=account.total_collateral,
            total_debt=account.total_debt,
            liquidation_threshold=account.liquidation_threshold,
        )

    async def _current_debt(self, user: str, asset: AssetDescriptor, params: RepayParams) -> int:
        raise NotImplementedError

    async def _supply(self, params: SupplyParams) -> LendingTransaction:
        raise NotImplementedError

    async def _withdraw(self, params: WithdrawParams) -> LendingTransaction:
        raise NotImplementedError

    async def _borrow(self, params: BorrowParams) -> LendingTransaction:
        raise NotImplementedError

    async def _repay(self, params: RepayParams) -> LendingTransaction:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run(self, context: str, operation: Awaitable[T]) -> Result[T]:
        try:
            return Result.success(await operation)
        except Exception as exc:
            error = map_error(
                exc,
                context,
                self.CODE_TABLE,
                protocol=self.protocol_name,
                rejection_on_unknown_code=self.REJECT_UNKNOWN_CODES,
            )
            logger.warning(
                "%s %s failed [%s]: %s",
                self.protocol_name,
                context,
                error.kind.value,
                error.message,
            )
            return Result.failure(error)

    def _asset(self, key: str) -> AssetDescriptor:
        asset = self._assets.get(key)
        if asset is None:
            raise LendingError(
                ErrorKind.ASSET_NOT_SUPPORTED,
                f"Asset '{key}' is not supported by {self.protocol_name}",
                protocol=self.protocol_name,
            )
        return asset

    def _require_signer(self) -> Signer:
        if self._signer is None:
            raise LendingError(
                ErrorKind.CONTRACT_ERROR,
                f"{self.protocol_name} has no signer configured for write operations",
                code="NO_SIGNER",
                protocol=self.protocol_name,
            )
        return self._signer

    def _error(self, kind: ErrorKind, message: str, code: str | None = None) -> LendingError:
        return LendingError(kind, message, code=code, protocol=self.protocol_name)

    def _validate_amount(self, amount: Amount, allow_max: bool = False) -> Amount:
        if amount == MAX_AMOUNT:
            if allow_max:
                return MAX_AMOUNT
            raise self._error(ErrorKind.INVALID_AMOUNT, "'max' is only accepted for withdraw/repay")
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise self._error(
                ErrorKind.INVALID_AMOUNT, f"Amount must be an integer in native units, got {amount!r}"
            )
        if amount <= 0:
            raise self._error(ErrorKind.INVALID_AMOUNT, "Amount must be greater than zero")
        if amount > MAX_UINT256:
            raise self._error(ErrorKind.INVALID_AMOUNT, "Amount exceeds uint256")
        return amount

    def _buffered_repay(self, debt: int) -> int:
        """Debt plus the configured safety buffer for interest accrued before mining."""
        return debt * (BPS + self._risk.repay_buffer_bps) // BPS

    async def _revalidate_repay(
        self, user: str, asset: AssetDescriptor, params: RepayParams, amount: int
    ) -> int:
        """Re-read debt once right before submission; grow ``amount`` if it went stale."""
        debt = await self._current_debt(user, asset, params)
        if debt > amount:
            refreshed = self._buffered_repay(debt)
            logger.info(
                "%s repay of %s re-derived: debt %d outgrew %d, now %d",
                self.protocol_name,
                asset.symbol,
                debt,
                amount,
                refreshed,
            )
            return refreshed
        return amount

    async def _lookup_user_reserve(self, user: str, key: str) -> UserReserveSnapshot:
        return await self._user_reserve_data(user, self._asset(key))

    async def _cached_reserve(self, key: str) -> ReserveSnapshot:
        asset = self._asset(key)
        ttl = self._config.reserve_cache_ttl
        if ttl > 0:
            hit = self._reserve_cache.get(asset.symbol)
            if hit is not None and time.monotonic() - hit[0] < ttl:
                return hit[1]
        snapshot = await self._reserve_data(asset)
        if ttl > 0:
            self._reserve_cache[asset.symbol] = (time.monotonic(), snapshot)
        return snapshot

    async def _ensure_allowance(self, owner: str, asset: AssetDescriptor, spender: str, amount: int) -> None:
        if asset.is_native:
            return
        current = await self._client.read(asset.address, ERC20_ALLOWANCE, [owner, spender])
        if current >= amount:
            return
        logger.info("%s approving %d %s for %s", self.protocol_name, amount, asset.symbol, spender)
        await self._submit(asset.address, ERC20_APPROVE, [spender, amount])

    async def _submit(self, address: str, signature: str, args: list[Any], value: int = 0) -> TxReceipt:
        signer = self._require_signer()
        receipt = await self._client.submit(address, signature, args, signer, value=value)
        if not receipt.status:
            raise self._error(
                ErrorKind.CONTRACT_ERROR,
                f"Transaction {receipt.tx_ref} reverted ({signature.split('(')[0]})",
                code="REVERTED",
            )
        return receipt

    async def _rate_after_confirmation(self, context: str, read: Awaitable[int]) -> int | None:
        """Best-effort rate read once a write is already on-chain; ``None`` if it fails."""
        try:
            return await read
        except Exception as exc:
            error = map_error(exc, context, self.CODE_TABLE, protocol=self.protocol_name)
            logger.warning(
                "%s %s confirmed but rate read failed [%s]: %s",
                self.protocol_name,
                context,
                error.kind.value,
                error.message,
            )
            return None

    def _transaction(
        self,
        kind: OperationKind,
        asset: AssetDescriptor,
        amount: int,
        user: str,
        receipt: TxReceipt,
        effective_rate: int | None = None,
    ) -> LendingTransaction:
        logger.info(
            "%s %s %d %s confirmed: %s",
            self.protocol_name,
            kind.value,
            amount,
            asset.symbol,
            receipt.tx_ref,
        )
        return LendingTransaction(
            kind=kind,
            protocol=self.protocol_name,
            asset=asset.symbol,
            amount=amount,
            user=user,
            tx_ref=receipt.tx_ref,
            resource_cost=receipt.resource_cost,
            effective_rate=effective_rate,
        )
