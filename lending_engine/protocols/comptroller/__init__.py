from .adapter import ComptrollerAdapter

__all__ = ["ComptrollerAdapter"]
