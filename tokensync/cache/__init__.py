"""
Caching primitives: persistent snapshots, request coalescing and TTL policy.
"""
from .core import (
    CacheEntry,
    Document,
    Subscriber,
    SyncConfig,
    TokenState,
    TokenStatus,
    UpdateSource,
    DEFAULT_TTL_MS,
)
from .store import PersistentCache
from .coalescer import RequestCoalescer
from .ttl_policies import get_effective_ttl, get_effective_swr, normalize_ttl

__all__ = [
    # Core types
    "CacheEntry",
    "Document",
    "Subscriber",
    "SyncConfig",
    "TokenState",
    "TokenStatus",
    "UpdateSource",
    "DEFAULT_TTL_MS",
    # Storage
    "PersistentCache",
    # Coalescing
    "RequestCoalescer",
    # TTL policies
    "get_effective_ttl",
    "get_effective_swr",
    "normalize_ttl",
]
