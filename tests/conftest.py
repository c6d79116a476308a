"""
Shared fixtures: a controllable clock, a fake network and engine builders.
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from tokensync.cache.core import SyncConfig
from tokensync.cache.store import PersistentCache
from tokensync.engine import SyncEngine


class FakeClock:
    """Unix-millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeNetwork:
    """
    Stand-in for NetworkClient that counts fetches.

    Set `gate` to an asyncio.Event to hold every fetch until it is set, and
    `error` to make fetches fail.
    """

    def __init__(self):
        self.calls: List[str] = []
        self.documents: Dict[str, Any] = {}
        self.error: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None
        self.max_concurrent = 0
        self._active = 0

    async def fetch_document(self, token, timeout_ms=None, max_retries=None):
        self.calls.append(token)
        self._active += 1
        self.max_concurrent = max(self.max_concurrent, self._active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.error is not None:
                raise self.error
            return self.documents.get(token, {"token": token, "version": len(self.calls)})
        finally:
            self._active -= 1

    async def aclose(self):
        pass

    def get_stats(self):
        return {"requests": len(self.calls)}


class Recorder:
    """Consumer callback that records every delivery and failure."""

    def __init__(self):
        self.updates: List[tuple] = []
        self.errors: List[BaseException] = []

    def __call__(self, payload, source):
        self.updates.append((payload, source))

    def on_error(self, error):
        self.errors.append(error)

    @property
    def sources(self):
        return [source.value for _, source in self.updates]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def store():
    cache = PersistentCache(prefix="test")
    yield cache
    cache.close()


@pytest.fixture
def config():
    return SyncConfig()


@pytest.fixture
def engine(store, network, config, clock):
    return SyncEngine(store=store, network=network, config=config, clock=clock)


@pytest.fixture
def recorder_factory():
    return Recorder
