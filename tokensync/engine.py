"""
Synchronization engine: wires cache, network, coalescer, controller and
registry together for one independent instance.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set

import httpx

from config.settings import Settings, settings as default_settings

from .cache.core import (
    DEFAULT_TTL_MS,
    ConsumerCallback,
    Document,
    ErrorCallback,
    Subscriber,
    SyncConfig,
    TokenState,
    now_ms,
)
from .cache.coalescer import RequestCoalescer
from .cache.store import PersistentCache
from .controller import FreshnessController, UpdateCallback
from .network import NetworkClient
from .registry import SubscriberRegistry

logger = logging.getLogger("tokensync.engine")


class SyncEngine:
    """
    Main entry point with:
    - Persistent cache with an in-memory mirror
    - Request coalescing (one fetch per token at a time)
    - Stale-while-revalidate freshness control
    - Subscriber batching and fan-out

    All maps live on the instance, so several engines can run side by side.
    """

    def __init__(
        self,
        store: Optional[PersistentCache] = None,
        network: Optional[NetworkClient] = None,
        config: Optional[SyncConfig] = None,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the engine.

        Args:
            store: Persistent cache (in-memory SQLite if omitted)
            network: Network client (default endpoint if omitted)
            config: Shared mutable config, read at the start of every round
            default_ttl_ms: TTL for subscribers that do not give one
            clock: Unix-millisecond clock
        """
        self.config = config if config is not None else SyncConfig()
        self.store = store if store is not None else PersistentCache()
        self.network = network if network is not None else NetworkClient()
        self.coalescer = RequestCoalescer()
        self.controller = FreshnessController(
            self.store, self.coalescer, self.network, config=self.config, clock=clock
        )
        self.registry = SubscriberRegistry(
            self.controller, default_ttl_ms=default_ttl_ms, schedule=self._spawn
        )
        self._tasks: Set["asyncio.Task[Any]"] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        config: Optional[SyncConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "SyncEngine":
        """Build an engine from a Settings object (module settings by default)."""
        settings = settings or default_settings
        store = PersistentCache(
            settings.tokensync_cache_path, prefix=settings.tokensync_storage_prefix
        )
        network = NetworkClient(
            base_url=settings.tokensync_base_url,
            resource=settings.tokensync_resource,
            timeout_ms=settings.tokensync_timeout_ms,
            max_retries=settings.tokensync_max_retries,
            backoff_base_ms=settings.tokensync_backoff_base_ms,
            http_client=http_client,
        )
        return cls(
            store=store,
            network=network,
            config=config if config is not None else SyncConfig(swr=settings.tokensync_swr),
            default_ttl_ms=settings.tokensync_default_ttl_ms,
        )

    def _spawn(self, coro) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # Consumer-facing API

    def attach(
        self,
        token: str,
        callback: ConsumerCallback,
        ttl_ms: Optional[int] = None,
        swr: Optional[bool] = None,
        eager: bool = False,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscriber:
        """
        Register a consumer; see SubscriberRegistry.attach.

        eager=True must be called with a running event loop.
        """
        return self.registry.attach(
            token, callback, ttl_ms=ttl_ms, swr=swr, eager=eager, on_error=on_error
        )

    def detach(self, subscriber: Subscriber) -> None:
        self.registry.detach(subscriber)

    async def flush(self, token: str) -> None:
        """Synchronize a token for everything batched on it."""
        await self.registry.flush(token)

    def request_render(self, token: str) -> "asyncio.Task[Any]":
        """
        Schedule a flush from a non-async trigger (e.g. a visibility event).

        Must be called with a running event loop.
        """
        return self._spawn(self.registry.flush(token))

    async def synchronize(
        self,
        token: str,
        ttl_ms: Optional[int] = None,
        on_update: Optional[UpdateCallback] = None,
        swr: bool = False,
    ) -> None:
        """Run a single synchronization round directly on the controller."""
        ttl = ttl_ms if ttl_ms is not None else self.registry.default_ttl_ms
        await self.controller.synchronize(token, ttl, on_update, swr=swr)

    async def fetch(self, token: str) -> Document:
        """Manual fetch: coalesced and cached, but no subscriber delivery."""
        return await self.controller.fetch(token)

    def state(self, token: str) -> TokenState:
        return self.controller.state(token)

    def redeliver_all(self) -> int:
        """Replay current data to every attached consumer."""
        return self.registry.redeliver_all()

    # Lifecycle

    async def drain(self) -> None:
        """Wait for every scheduled flush, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Drain scheduled work and release the HTTP client and the database."""
        await self.drain()
        await self.network.aclose()
        self.store.close()

    async def __aenter__(self) -> "SyncEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "cache": self.store.get_stats(),
            "network": self.network.get_stats(),
            "coalescer": self.coalescer.get_stats(),
            "controller": self.controller.get_stats(),
            "registry": self.registry.get_stats(),
            "scheduled_flushes": len(self._tasks),
            "swr": self.config.swr,
        }
