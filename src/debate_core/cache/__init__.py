"""Dual-layer (in-memory + durable) cache."""

from debate_core.cache.backend import CacheBackend, CacheEntry, SqlCacheBackend
from debate_core.cache.layered import DEFAULT_TTL_HOURS, LayeredCache

__all__ = [
    "DEFAULT_TTL_HOURS",
    "CacheBackend",
    "CacheEntry",
    "LayeredCache",
    "SqlCacheBackend",
]
