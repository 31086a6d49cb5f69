"""
Core application engine for resolving manifest files.

The `Resolver` serves single files from the cache, fetching them when stale.
The `ResolveSession` coordinates many resolutions and the cache sweep.
"""

from .resolver import Resolution, Resolver
from .session import ResolveSession, SessionResult

__all__ = ["Resolution", "ResolveSession", "Resolver", "SessionResult"]
