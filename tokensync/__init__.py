"""
tokensync - client-side synchronization of remote JSON documents.

Fetches documents by opaque token with:
- Persistent last-known-good snapshots
- One in-flight request per token
- Stale-while-revalidate freshness
- Fan-out to any number of consumers
"""

from .cache import (
    CacheEntry,
    PersistentCache,
    RequestCoalescer,
    Subscriber,
    SyncConfig,
    TokenState,
    TokenStatus,
    UpdateSource,
)
from .controller import FreshnessController
from .engine import SyncEngine
from .errors import (
    SyncError,
    FetchError,
    FetchTimeout,
    HttpError,
    TransportError,
    StorageError,
    ConsumerCallbackError,
)
from .network import NetworkClient
from .registry import SubscriberRegistry

__version__ = "1.1.2"

__all__ = [
    # Engine
    "SyncEngine",
    "SyncConfig",
    # Components
    "PersistentCache",
    "NetworkClient",
    "RequestCoalescer",
    "FreshnessController",
    "SubscriberRegistry",
    # Types
    "CacheEntry",
    "Subscriber",
    "TokenState",
    "TokenStatus",
    "UpdateSource",
    # Errors
    "SyncError",
    "FetchError",
    "FetchTimeout",
    "HttpError",
    "TransportError",
    "StorageError",
    "ConsumerCallbackError",
]
