"""Protocol adapter — the shared contract every lending market implements."""
from typing import TYPE_CHECKING, Protocol

from ..models import (
    AssetDescriptor,
    BorrowParams,
    HealthFactorData,
    LendingTransaction,
    RepayParams,
    ReserveSnapshot,
    SupplyParams,
    UserAccountSnapshot,
    UserReserveSnapshot,
    WithdrawParams,
)
from ..result import Result

if TYPE_CHECKING:
    from ..config import ProtocolConfig


class LendingAdapter(Protocol):
    """Normalizes one on-chain money market into shared domain types."""

    @property
    def protocol_name(self) -> str: ...

    @property
    def account_address(self) -> str | None: ...

    def get_protocol_config(self) -> "ProtocolConfig": ...

    def get_supported_assets(self) -> tuple[AssetDescriptor, ...]: ...

    async def get_user_account_data(self, user: str) -> Result[UserAccountSnapshot]: ...

    async def get_user_reserve_data(
        self, user: str, asset: str
    ) -> Result[UserReserveSnapshot]: ...

    async def get_reserve_data(self, asset: str) -> Result[ReserveSnapshot]: ...

    async def get_health_factor(self, user: str) -> Result[HealthFactorData]: ...

    async def supply(self, params: SupplyParams) -> Result[LendingTransaction]: ...

    async def withdraw(self, params: WithdrawParams) -> Result[LendingTransaction]: ...

    async def borrow(self, params: BorrowParams) -> Result[LendingTransaction]: ...

    async def repay(self, params: RepayParams) -> Result[LendingTransaction]: ...
