"""Build and source cache APIs."""

from .keys import CacheKey, cache_key
from .store import MARKER_NAME, CacheEntry, CacheStore

__all__ = ["MARKER_NAME", "CacheEntry", "CacheKey", "CacheStore", "cache_key"]
