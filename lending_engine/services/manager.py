"""Lending manager — cross-protocol rates, routing, positions and account health.

Reads fan out one task per protocol (and per asset where applicable). Each
adapter call is bounded by ``manager.request_timeout``; the aggregate as a whole
by ``manager.aggregate_timeout``, after which in-flight calls are cancelled and
reported as timed out. Rate queries drop failing protocols; position and
health queries report them in ``failures``.

Writes go to exactly one adapter and are never retried. Concurrent writes for
the same user, asset and protocol are not serialized here: callers that need
that guarantee must serialize them.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping, Sequence
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, TypeVar

from ..chains.evm import EvmClient
from ..config import AppConfig, ManagerConfig, RiskConfig
from ..errors import ErrorKind, LendingError
from ..fixed_point import RAY, WAD, format_percentage, rate_to_percentage, ratio
from ..interfaces.chain import Signer
from ..interfaces.protocol_adapter import LendingAdapter
from ..models import (
    AccountHealth,
    BorrowParams,
    LendingParams,
    LendingPosition,
    LendingRate,
    LendingTransaction,
    LiquidationRisk,
    PositionType,
    ProtocolComparison,
    ProtocolFailure,
    ProtocolHealth,
    RepayParams,
    ReserveSnapshot,
    SupplyParams,
    UserAccountSnapshot,
    UserPositions,
    UserReserveSnapshot,
    WithdrawParams,
)
from ..protocols import build_adapter
from ..result import Result
from ..risk import (
    assess_utilization_risk,
    calculate_health_factor,
    calculate_liquidation_risk,
    calculate_optimal_borrow_amount,
    calculate_position_health_score,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTO = "auto"

MINIMAL_SPREAD = Decimal("0.5")

MINIMAL_SPREAD_ADVICE = (
    "Rate differences are minimal. Consider other factors like gas costs and "
    "protocol reputation."
)
HIGH_UTILIZATION_ADVICE = (
    "High utilization detected. Consider more conservative protocols or lower amounts."
)


class LendingManager:
    """Aggregates every registered adapter behind one API.

    Adapters are consulted in registration order, which also breaks ties when
    two protocols quote the same rate.
    """

    def __init__(
        self,
        adapters: Mapping[str, LendingAdapter],
        config: ManagerConfig | None = None,
        risk: RiskConfig | None = None,
    ) -> None:
        self._adapters: dict[str, LendingAdapter] = dict(adapters)
        self._config = config or ManagerConfig()
        self._risk = risk or RiskConfig()

    @classmethod
    def from_config(cls, config: AppConfig, signer: Signer | None = None) -> LendingManager:
        """Build chain clients and adapters for every configured protocol."""
        clients = {name: EvmClient(chain_cfg) for name, chain_cfg in config.chains.items()}
        adapters: dict[str, LendingAdapter] = {}
        for name, proto_cfg in config.protocols.items():
            adapters[name] = build_adapter(clients[proto_cfg.chain], proto_cfg, signer, config.risk)
        logger.info("Lending manager ready with protocols: %s", ", ".join(adapters))
        return cls(adapters, config.manager, config.risk)

    @property
    def protocols(self) -> tuple[str, ...]:
        return tuple(self._adapters)

    def get_adapter(self, protocol: str) -> LendingAdapter | None:
        return self._adapters.get(protocol)

    # ------------------------------------------------------------------
    # Fan-out helpers
    # ------------------------------------------------------------------

    async def _bounded(self, protocol: str, call: Awaitable[Result[T]]) -> Result[T]:
        try:
            return await asyncio.wait_for(call, timeout=self._config.request_timeout)
        except asyncio.TimeoutError:
            return Result.failure(
                LendingError(
                    ErrorKind.NETWORK_ERROR,
                    f"{protocol} did not respond within {self._config.request_timeout}s",
                    code="TIMEOUT",
                    protocol=protocol,
                )
            )

    async def _fan_out(self, jobs: Sequence[tuple[Any, str, Awaitable[Result[Any]]]]) -> dict[Any, Result[Any]]:
        """Run ``(key, protocol, call)`` jobs concurrently under the aggregate deadline."""
        if not jobs:
            return {}
        tasks = {
            key: asyncio.ensure_future(self._bounded(protocol, call))
            for key, protocol, call in jobs
        }
        protocols = {key: protocol for key, protocol, _ in jobs}
        _done, pending = await asyncio.wait(
            tasks.values(), timeout=self._config.aggregate_timeout
        )
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Aggregate deadline hit; cancelled %d pending calls", len(pending))

        results: dict[Any, Result[Any]] = {}
        for key, task in tasks.items():
            if task in pending:
                results[key] = Result.failure(
                    LendingError(
                        ErrorKind.NETWORK_ERROR,
                        f"{protocols[key]} cancelled at the {self._config.aggregate_timeout}s aggregate deadline",
                        code="TIMEOUT",
                        protocol=protocols[key],
                    )
                )
            else:
                results[key] = task.result()
        return results

    @staticmethod
    def _all_failed(what: str, failures: Sequence[LendingError]) -> LendingError:
        detail = "; ".join(f"{e.protocol or '?'}: {e.message}" for e in failures)
        return LendingError(
            ErrorKind.ALL_PROTOCOLS_FAILED,
            f"All protocols failed for {what}" + (f" ({detail})" if detail else ""),
        )

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    @staticmethod
    def _to_rate(snapshot: ReserveSnapshot) -> LendingRate:
        return LendingRate(
            protocol=snapshot.protocol,
            asset=snapshot.asset,
            supply_apy=rate_to_percentage(snapshot.supply_rate),
            borrow_apy=rate_to_percentage(snapshot.variable_borrow_rate),
            utilization=ratio(snapshot.utilization_rate, RAY),
            total_supplied=snapshot.total_supplied,
            total_borrowed=snapshot.total_borrowed,
            available_liquidity=snapshot.available_liquidity,
            last_update=snapshot.last_update,
        )

    async def get_current_rates(self, asset: str) -> Result[ProtocolComparison]:
        """Compare one asset's rates across every protocol that answers."""
        results = await self._fan_out(
            [
                (name, name, adapter.get_reserve_data(asset))
                for name, adapter in self._adapters.items()
            ]
        )
        rates: list[LendingRate] = []
        failures: list[LendingError] = []
        for name in self._adapters:
            result = results[name]
            if result.ok:
                rates.append(self._to_rate(result.value))
            else:
                logger.info("Omitting %s from %s rates: %s", name, asset, result.error.message)
                failures.append(result.error)

        if not rates:
            return Result.failure(self._all_failed(f"asset {asset}", failures))
        return Result.success(self._compare(asset, rates))

    @staticmethod
    def _compare(asset: str, rates: Sequence[LendingRate]) -> ProtocolComparison:
        best_supply = rates[0]
        best_borrow = rates[0]
        for rate in rates[1:]:
            if rate.supply_apy > best_supply.supply_apy:
                best_supply = rate
            if rate.borrow_apy < best_borrow.borrow_apy:
                best_borrow = rate

        supply_apys = [r.supply_apy for r in rates]
        borrow_apys = [r.borrow_apy for r in rates]
        rate_advantage = max(
            max(supply_apys) - min(supply_apys),
            max(borrow_apys) - min(borrow_apys),
        )
        risk_level = assess_utilization_risk(max(r.utilization for r in rates))

        if rate_advantage < MINIMAL_SPREAD:
            recommendation = MINIMAL_SPREAD_ADVICE
        elif risk_level == LiquidationRisk.HIGH:
            recommendation = HIGH_UTILIZATION_ADVICE
        else:
            recommendation = (
                f"For supply: {best_supply.protocol} offers better rates. "
                f"For borrow: {best_borrow.protocol} offers better rates. "
                f"Rate advantage: {format_percentage(rate_advantage)}"
            )

        return ProtocolComparison(
            asset=asset,
            best_supply_protocol=best_supply.protocol,
            best_supply_apy=best_supply.supply_apy,
            best_borrow_protocol=best_borrow.protocol,
            best_borrow_apy=best_borrow.borrow_apy,
            rate_advantage=rate_advantage,
            risk_level=risk_level,
            recommendation=recommendation,
            rates=tuple(rates),
        )

    async def get_all_rates(self, asset: str | None = None) -> Result[tuple[LendingRate, ...]]:
        """Rates for one asset, or for every supported asset, across all protocols."""
        jobs = []
        for name, adapter in self._adapters.items():
            symbols = (
                [asset] if asset is not None else [a.symbol for a in adapter.get_supported_assets()]
            )
            for symbol in symbols:
                jobs.append(((name, symbol), name, adapter.get_reserve_data(symbol)))

        results = await self._fan_out(jobs)
        rates: list[LendingRate] = []
        failures: list[LendingError] = []
        for key, _protocol, _call in jobs:
            result = results[key]
            if result.ok:
                rates.append(self._to_rate(result.value))
            else:
                failures.append(result.error)

        if not rates:
            return Result.failure(self._all_failed(f"asset {asset or 'any'}", failures))
        return Result.success(tuple(rates))

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _explicit(self, protocol: str) -> Result[LendingAdapter]:
        adapter = self._adapters.get(protocol)
        if adapter is None:
            return Result.failure(
                LendingError(
                    ErrorKind.PROTOCOL_NOT_REGISTERED,
                    f"Protocol '{protocol}' is not registered "
                    f"(known: {', '.join(self._adapters) or 'none'})",
                    protocol=protocol,
                )
            )
        return Result.success(adapter)

    async def _route_by_rate(self, params: LendingParams, for_supply: bool) -> Result[LendingAdapter]:
        if params.protocol != AUTO:
            return self._explicit(params.protocol)
        comparison = await self.get_current_rates(params.asset)
        if not comparison.ok:
            return Result.failure(comparison.error)
        choice = (
            comparison.value.best_supply_protocol
            if for_supply
            else comparison.value.best_borrow_protocol
        )
        logger.info(
            "Auto-selected %s for %s %s", choice, "supply" if for_supply else "borrow", params.asset
        )
        return Result.success(self._adapters[choice])

    def _default_user(self) -> str | None:
        for adapter in self._adapters.values():
            if adapter.account_address:
                return adapter.account_address
        return None

    async def _route_by_position(
        self, params: LendingParams, user: str | None, debt: bool
    ) -> Result[LendingAdapter]:
        """Find the single protocol holding the user's supply (or debt) in ``asset``."""
        if params.protocol != AUTO:
            return self._explicit(params.protocol)
        if user is None:
            return Result.failure(
                LendingError(
                    ErrorKind.CONTRACT_ERROR,
                    "Cannot locate a position without a user address or signer",
                    code="NO_SIGNER",
                )
            )

        results = await self._fan_out(
            [
                (name, name, adapter.get_user_reserve_data(user, params.asset))
                for name, adapter in self._adapters.items()
            ]
        )
        holders: list[str] = []
        unknown: list[LendingError] = []
        for name in self._adapters:
            result = results[name]
            if not result.ok:
                if result.error.kind != ErrorKind.ASSET_NOT_SUPPORTED:
                    unknown.append(result.error)
                continue
            balance = result.value.total_debt if debt else result.value.supplied
            if balance > 0:
                holders.append(name)

        kind = "debt" if debt else "supply"
        if len(holders) == 1:
            if unknown:
                logger.warning(
                    "Routing %s %s to %s while %d protocols could not be checked",
                    kind,
                    params.asset,
                    holders[0],
                    len(unknown),
                )
            return Result.success(self._adapters[holders[0]])
        if len(holders) > 1:
            return Result.failure(
                LendingError(
                    ErrorKind.AMBIGUOUS_PROTOCOL,
                    f"{user} holds {params.asset} {kind} on {', '.join(holders)}; "
                    f"specify the protocol",
                )
            )
        if unknown:
            return Result.failure(unknown[0])
        return Result.failure(
            LendingError(
                ErrorKind.POSITION_NOT_FOUND,
                f"No {params.asset} {kind} position found for {user}",
            )
        )

    async def supply(self, params: LendingParams) -> Result[LendingTransaction]:
        target = await self._route_by_rate(params, for_supply=True)
        if not target.ok:
            return Result.failure(target.error)
        return await target.value.supply(
            SupplyParams(asset=params.asset, amount=params.amount, on_behalf_of=params.on_behalf_of)
        )

    async def borrow(self, params: LendingParams) -> Result[LendingTransaction]:
        target = await self._route_by_rate(params, for_supply=False)
        if not target.ok:
            return Result.failure(target.error)
        return await target.value.borrow(
            BorrowParams(
                asset=params.asset,
                amount=params.amount,
                interest_rate_mode=params.interest_rate_mode,
                on_behalf_of=params.on_behalf_of,
            )
        )

    async def withdraw(self, params: LendingParams) -> Result[LendingTransaction]:
        user = params.user or self._default_user()
        target = await self._route_by_position(params, user, debt=False)
        if not target.ok:
            return Result.failure(target.error)
        return await target.value.withdraw(WithdrawParams(asset=params.asset, amount=params.amount))

    async def repay(self, params: LendingParams) -> Result[LendingTransaction]:
        user = params.on_behalf_of or params.user or self._default_user()
        target = await self._route_by_position(params, user, debt=True)
        if not target.ok:
            return Result.failure(target.error)
        return await target.value.repay(
            RepayParams(
                asset=params.asset,
                amount=params.amount,
                interest_rate_mode=params.interest_rate_mode,
                on_behalf_of=params.on_behalf_of,
            )
        )

    # ------------------------------------------------------------------
    # Positions and health
    # ------------------------------------------------------------------

    async def get_user_positions(self, user: str) -> Result[UserPositions]:
        """One position per non-zero supply and debt, on every protocol and asset."""
        jobs: list[tuple[Any, str, Awaitable[Result[Any]]]] = []
        for name, adapter in self._adapters.items():
            jobs.append(((name, "account", None), name, adapter.get_user_account_data(user)))
            for asset in adapter.get_supported_assets():
                jobs.append(
                    ((name, "user", asset.symbol), name, adapter.get_user_reserve_data(user, asset.symbol))
                )
                jobs.append(
                    ((name, "reserve", asset.symbol), name, adapter.get_reserve_data(asset.symbol))
                )
        results = await self._fan_out(jobs)

        now = datetime.now(timezone.utc)
        positions: list[LendingPosition] = []
        failures: list[ProtocolFailure] = []
        answered = False

        for name, adapter in self._adapters.items():
            account = results[(name, "account", None)]
            if not account.ok:
                failures.append(ProtocolFailure(name, account.error))
                continue
            answered = True
            health_factor = account.value.health_factor
            risk = calculate_liquidation_risk(health_factor)

            for asset in adapter.get_supported_assets():
                symbol = asset.symbol
                user_reserve = results[(name, "user", symbol)]
                reserve = results[(name, "reserve", symbol)]
                if not user_reserve.ok:
                    failures.append(ProtocolFailure(name, user_reserve.error, symbol))
                    continue
                if not reserve.ok:
                    failures.append(ProtocolFailure(name, reserve.error, symbol))
                positions.extend(
                    self._positions_for(
                        user_reserve.value,
                        reserve.value if reserve.ok else None,
                        health_factor,
                        risk,
                        now,
                    )
                )

        if not answered and failures:
            return Result.failure(
                self._all_failed(f"positions of {user}", [f.error for f in failures])
            )
        return Result.success(UserPositions(user, tuple(positions), tuple(failures)))

    @staticmethod
    def _positions_for(
        data: UserReserveSnapshot,
        reserve: ReserveSnapshot | None,
        health_factor: int,
        risk: LiquidationRisk,
        now: datetime,
    ) -> list[LendingPosition]:
        found: list[LendingPosition] = []
        if data.supplied > 0:
            found.append(
                LendingPosition(
                    id=f"{data.protocol}-{data.asset}-{PositionType.SUPPLY.value}",
                    protocol=data.protocol,
                    asset=data.asset,
                    type=PositionType.SUPPLY,
                    amount=data.supplied,
                    apy=rate_to_percentage(data.supply_rate),
                    health_factor=health_factor,
                    liquidation_risk=risk,
                    timestamp=now,
                )
            )
        if data.total_debt > 0:
            if data.variable_debt > 0:
                apy = rate_to_percentage(reserve.variable_borrow_rate) if reserve else None
            else:
                apy = rate_to_percentage(data.stable_borrow_rate)
            found.append(
                LendingPosition(
                    id=f"{data.protocol}-{data.asset}-{PositionType.BORROW.value}",
                    protocol=data.protocol,
                    asset=data.asset,
                    type=PositionType.BORROW,
                    amount=data.total_debt,
                    apy=apy,
                    health_factor=health_factor,
                    liquidation_risk=risk,
                    timestamp=now,
                )
            )
        return found

    async def get_account_health(self, user: str) -> Result[AccountHealth]:
        """Portfolio health across every protocol, with a per-protocol breakdown."""
        results = await self._fan_out(
            [
                (name, name, adapter.get_user_account_data(user))
                for name, adapter in self._adapters.items()
            ]
        )
        accounts: list[UserAccountSnapshot] = []
        failures: list[ProtocolFailure] = []
        for name in self._adapters:
            result = results[name]
            if result.ok:
                accounts.append(result.value)
            else:
                failures.append(ProtocolFailure(name, result.error))

        if not accounts:
            return Result.failure(
                self._all_failed(f"account health of {user}", [f.error for f in failures])
            )

        total_collateral = sum(a.total_collateral for a in accounts)
        total_debt = sum(a.total_debt for a in accounts)
        available = sum(a.available_borrows for a in accounts)
        health_factor = calculate_health_factor(total_collateral, total_debt)

        breakdown = tuple(self._protocol_health(a) for a in accounts)
        return Result.success(
            AccountHealth(
                user=user,
                total_collateral=total_collateral,
                total_debt=total_debt,
                available_borrows=available,
                health_factor=health_factor,
                liquidation_risk=calculate_liquidation_risk(health_factor),
                health_score=self._health_score(accounts, health_factor),
                protocols=breakdown,
                failures=tuple(failures),
            )
        )

    def _protocol_health(self, account: UserAccountSnapshot) -> ProtocolHealth:
        return ProtocolHealth(
            protocol=account.protocol,
            health_factor=account.health_factor,
            total_collateral=account.total_collateral,
            total_debt=account.total_debt,
            available_borrows=account.available_borrows,
            liquidation_risk=calculate_liquidation_risk(account.health_factor),
            safe_borrow_capacity=calculate_optimal_borrow_amount(
                account.total_collateral,
                account.ltv,
                account.total_debt,
                self._risk.target_health_factor,
            ),
        )

    def _health_score(self, accounts: Sequence[UserAccountSnapshot], health_factor: int) -> Decimal:
        """Composite score; utilization is debt over borrowing power, diversification
        is one minus the Herfindahl index of collateral across protocols."""
        total_collateral = sum(a.total_collateral for a in accounts)
        total_debt = sum(a.total_debt for a in accounts)
        borrow_power = total_debt + sum(a.available_borrows for a in accounts)
        utilization = min(total_debt * RAY // borrow_power, RAY) if borrow_power else 0

        diversification = Decimal(0)
        if total_collateral > 0:
            concentration = sum(
                ratio(a.total_collateral, total_collateral) ** 2 for a in accounts
            )
            diversification = Decimal(1) - concentration

        return calculate_position_health_score(
            min(health_factor, 100 * WAD),
            utilization,
            diversification,
            self._risk.health_score_weights,
        )
