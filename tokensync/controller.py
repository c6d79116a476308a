"""
Freshness controller: per-token state machine with stale-while-revalidate.

For each synchronization round the controller decides between serving the
persisted snapshot, joining a fetch another caller already started, or
fetching (and persisting) a new document.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from .cache.core import (
    CacheEntry,
    Document,
    SyncConfig,
    TokenState,
    UpdateSource,
    now_ms,
)
from .cache.coalescer import RequestCoalescer
from .cache.store import PersistentCache
from .network import NetworkClient

logger = logging.getLogger("tokensync.controller")

UpdateCallback = Callable[[Document, UpdateSource], Any]


class FreshnessController:
    """
    Owns TokenState for every token with active interest.

    States move Idle -> Pending -> Ready | Failed. Ready and Failed are not
    terminal: a later round goes back to Pending to revalidate or retry.
    """

    def __init__(
        self,
        store: PersistentCache,
        coalescer: RequestCoalescer,
        network: NetworkClient,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._coalescer = coalescer
        self._network = network
        self._config = config if config is not None else SyncConfig()
        self._clock = clock
        self._states: Dict[str, TokenState] = {}
        self._stats = {
            "cache_hits": 0,
            "joined_pending": 0,
            "network_fetches": 0,
            "revalidations": 0,
            "failures": 0,
            "absorbed_failures": 0,
        }

    @property
    def config(self) -> SyncConfig:
        return self._config

    def state(self, token: str) -> TokenState:
        """Current state of a token (Idle if never synchronized)."""
        return self._states.get(token, TokenState())

    def tokens(self) -> List[str]:
        return list(self._states.keys())

    def current_payload(self, token: str) -> Optional[Document]:
        """Ready payload for a token, falling back to its cached snapshot."""
        st = self._states.get(token)
        if st is not None and st.is_ready:
            return st.payload
        entry = self._store.read(token)
        return entry.payload if entry is not None else None

    def _set_state(self, token: str, state: TokenState) -> None:
        self._states[token] = state

    async def _fetch_and_store(self, token: str) -> Document:
        """Network fetch followed by a cache write; runs once per coalesced operation."""
        document = await self._network.fetch_document(token)
        self._store.write(token, CacheEntry(fetched_at=self._clock(), payload=document))
        return document

    async def _request(self, token: str) -> Document:
        return await self._coalescer.request_once(
            token, lambda: self._fetch_and_store(token)
        )

    async def fetch(self, token: str) -> Document:
        """
        Fetch a token's document outside of any subscriber round.

        Still coalesced with concurrent fetches and written to the cache.
        """
        return await self._request(token)

    async def synchronize(
        self,
        token: str,
        ttl_ms: int,
        on_update: Optional[UpdateCallback] = None,
        swr: bool = False,
    ) -> None:
        """
        Bring a token up to date and report every payload through on_update.

        Args:
            token: Token to synchronize
            ttl_ms: Maximum age of a cached snapshot that counts as fresh
            on_update: Called with (payload, UpdateSource) for each delivery
            swr: Revalidate over the network even when the snapshot is fresh

        Raises:
            FetchError: The fetch failed and no fresh snapshot was delivered
        """
        # Config is read per round so runtime changes apply to the next one
        swr = bool(swr or self._config.swr)

        entry = self._store.read(token)
        is_fresh = entry is not None and entry.is_fresh(ttl_ms, self._clock())

        if is_fresh:
            self._stats["cache_hits"] += 1
            self._set_state(token, TokenState.ready(entry.payload))
            logger.debug(f"CACHE HIT (fresh): {token} [age={entry.age_ms(self._clock())}ms]")
            if on_update is not None:
                on_update(entry.payload, UpdateSource.CACHE)
            if not swr:
                return

        pending = self._coalescer.in_flight(token)
        if self.state(token).is_pending and pending is not None:
            self._stats["joined_pending"] += 1
            logger.debug(f"Joining pending fetch for {token}")
            try:
                document = await self._coalescer.request_once(
                    token, lambda: self._fetch_and_store(token)
                )
            except Exception as e:
                # Retry below; concurrent waiters end up sharing one retry
                logger.info(f"Pending fetch for {token} failed ({e!r}), retrying")
            else:
                self._set_state(token, TokenState.ready(document))
                if on_update is not None:
                    on_update(document, UpdateSource.PENDING)
                return

        self._set_state(token, TokenState.pending())
        if is_fresh:
            self._stats["revalidations"] += 1
            logger.info(f"CACHE HIT (fresh, revalidating): {token}")
        else:
            self._stats["network_fetches"] += 1
            logger.info(f"CACHE MISS: {token}")

        try:
            document = await self._request(token)
        except Exception as e:
            self._set_state(token, TokenState.failed(e))
            self._stats["failures"] += 1
            if is_fresh:
                self._stats["absorbed_failures"] += 1
                logger.warning(f"Revalidation failed for {token}, keeping cached data: {e!r}")
                return
            raise

        self._set_state(token, TokenState.ready(document))
        if on_update is not None:
            on_update(
                document,
                UpdateSource.REVALIDATE if is_fresh else UpdateSource.NETWORK,
            )

    def get_stats(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for st in self._states.values():
            counts[st.status.value] = counts.get(st.status.value, 0) + 1
        return {"tokens": len(self._states), "states": counts, **self._stats}
