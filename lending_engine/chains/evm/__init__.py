from .client import AllEndpointsFailedError, EvmClient, RpcError

__all__ = ["AllEndpointsFailedError", "EvmClient", "RpcError"]
