from .manager import LendingManager

__all__ = ["LendingManager"]
