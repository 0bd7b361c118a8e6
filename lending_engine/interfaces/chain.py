"""Chain client protocol — contract read/submit abstraction."""
from typing import Any, Protocol, Sequence

from ..models import TxReceipt


class Signer(Protocol):
    """Holds a key and signs fully-populated transactions."""

    @property
    def address(self) -> str: ...

    async def sign_transaction(self, tx: dict[str, Any]) -> str: ...


class ChainClient(Protocol):
    """Abstract interface for contract calls.

    ``signature`` uses the ``name(inputTypes)(outputTypes)`` form, e.g.
    ``balanceOf(address)(uint256)``.
    """

    async def read(self, address: str, signature: str, args: Sequence[Any] = ()) -> Any: ...

    async def submit(
        self,
        address: str,
        signature: str,
        args: Sequence[Any],
        signer: Signer,
        value: int = 0,
    ) -> TxReceipt: ...
