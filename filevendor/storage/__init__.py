"""
Storage Layer.

This package handles all data persistence, including the configuration file,
the content cache and the record of cache entries in use.
"""

from .cache import CacheKey, FileCacheStore
from .config_manager import ConfigManager
from .validity import ValidCacheEntries

__all__ = ["CacheKey", "ConfigManager", "FileCacheStore", "ValidCacheEntries"]
