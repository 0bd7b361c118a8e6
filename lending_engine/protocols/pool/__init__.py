from .adapter import PoolAdapter

__all__ = ["PoolAdapter"]
