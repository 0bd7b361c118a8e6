"""Protocol interfaces for the lending engine."""
from .chain import ChainClient, Signer
from .protocol_adapter import LendingAdapter

__all__ = ["ChainClient", "LendingAdapter", "Signer"]
