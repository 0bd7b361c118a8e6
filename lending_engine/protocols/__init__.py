"""Protocol adapters and the registry that binds protocol kinds to them."""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable

from ..config import ProtocolConfig, RiskConfig
from ..interfaces.chain import ChainClient, Signer
from .base import BaseLendingAdapter
from .comptroller import ComptrollerAdapter
from .pool import PoolAdapter

logger = logging.getLogger(__name__)


class ProtocolKind(str, enum.Enum):
    POOL = "pool"
    COMPTROLLER = "comptroller"


AdapterFactory = Callable[
    [ChainClient, ProtocolConfig, "Signer | None", "RiskConfig | None"], BaseLendingAdapter
]

# Registry of adapter factories keyed by protocol kind.
_PROTOCOL_FACTORIES: dict[ProtocolKind, AdapterFactory] = {
    ProtocolKind.POOL: lambda client, cfg, signer, risk: PoolAdapter(client, cfg, signer, risk),
    ProtocolKind.COMPTROLLER: lambda client, cfg, signer, risk: ComptrollerAdapter(
        client, cfg, signer, risk
    ),
}


def build_adapter(
    chain_client: ChainClient,
    config: ProtocolConfig,
    signer: Signer | None = None,
    risk: RiskConfig | None = None,
) -> BaseLendingAdapter:
    try:
        kind = ProtocolKind(config.kind)
    except ValueError:
        raise ValueError(f"No adapter for protocol kind '{config.kind}'") from None
    adapter = _PROTOCOL_FACTORIES[kind](chain_client, config, signer, risk)
    logger.debug("Built %s adapter for %s", kind.value, config.name)
    return adapter


__all__ = [
    "BaseLendingAdapter",
    "ComptrollerAdapter",
    "PoolAdapter",
    "ProtocolKind",
    "build_adapter",
]
