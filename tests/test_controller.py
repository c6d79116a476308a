"""
Tests for the freshness controller state machine.
"""
import asyncio

import pytest

from tokensync.cache.coalescer import RequestCoalescer
from tokensync.cache.core import CacheEntry, SyncConfig, TokenStatus, UpdateSource
from tokensync.controller import FreshnessController
from tokensync.errors import HttpError, TransportError


@pytest.fixture
def controller(store, network, config, clock):
    return FreshnessController(store, RequestCoalescer(), network, config=config, clock=clock)


def seed(store, clock, token, age_ms, payload=None):
    store.write(token, CacheEntry(fetched_at=clock.now - age_ms, payload=payload or {"cached": True}))


class TestCacheFirst:
    """Fresh snapshots are served without touching the network."""

    @pytest.mark.asyncio
    async def test_fresh_cache_no_network(self, controller, store, network, clock, recorder_factory):
        seed(store, clock, "abc", age_ms=10_000)
        rec = recorder_factory()

        await controller.synchronize("abc", 60_000, rec, swr=False)

        assert rec.updates == [({"cached": True}, UpdateSource.CACHE)]
        assert network.calls == []
        assert controller.state("abc").status is TokenStatus.READY

    @pytest.mark.asyncio
    async def test_cache_delivery_happens_before_first_await(
        self, controller, store, network, clock, recorder_factory
    ):
        """The cached payload is delivered before the round first yields."""
        seed(store, clock, "abc", age_ms=10_000)
        network.gate = asyncio.Event()
        rec = recorder_factory()

        task = asyncio.ensure_future(controller.synchronize("abc", 60_000, rec, swr=True))
        await asyncio.sleep(0)
        assert rec.sources == ["cache"]
        network.gate.set()
        await task

    @pytest.mark.asyncio
    async def test_swr_revalidates(self, controller, store, network, clock, recorder_factory):
        seed(store, clock, "abc", age_ms=10_000)
        network.documents["abc"] = {"fresh": True}
        rec = recorder_factory()

        await controller.synchronize("abc", 60_000, rec, swr=True)

        assert rec.sources == ["cache", "network(revalidate)"]
        assert rec.updates[1][0] == {"fresh": True}
        assert network.calls == ["abc"]
        assert store.read("abc") == CacheEntry(fetched_at=clock.now, payload={"fresh": True})

    @pytest.mark.asyncio
    async def test_global_swr_is_read_each_round(
        self, controller, store, network, config, clock, recorder_factory
    ):
        seed(store, clock, "abc", age_ms=10_000)
        rec = recorder_factory()

        await controller.synchronize("abc", 60_000, rec)
        assert network.calls == []

        config.swr = True
        await controller.synchronize("abc", 60_000, rec)
        assert network.calls == ["abc"]


class TestNetworkPath:

    @pytest.mark.asyncio
    async def test_missing_cache_fetches_and_persists(
        self, controller, store, network, clock, recorder_factory
    ):
        network.documents["abc"] = {"v": 1}
        rec = recorder_factory()

        await controller.synchronize("abc", 60_000, rec)

        assert rec.updates == [({"v": 1}, UpdateSource.NETWORK)]
        assert store.read("abc").payload == {"v": 1}
        assert controller.state("abc").payload == {"v": 1}

    @pytest.mark.asyncio
    async def test_expired_cache_failure_propagates(
        self, controller, store, network, clock, recorder_factory
    ):
        """Stale data is never presented as fresh when the fetch fails."""
        seed(store, clock, "abc", age_ms=120_000)
        network.error = HttpError(500, token="abc")
        rec = recorder_factory()

        with pytest.raises(HttpError):
            await controller.synchronize("abc", 60_000, rec)

        assert rec.updates == []
        state = controller.state("abc")
        assert state.status is TokenStatus.FAILED
        assert isinstance(state.error, HttpError)

    @pytest.mark.asyncio
    async def test_swr_failure_absorbed(self, controller, store, network, clock, recorder_factory):
        seed(store, clock, "abc", age_ms=5_000)
        network.error = TransportError("down", token="abc")
        rec = recorder_factory()

        await controller.synchronize("abc", 60_000, rec, swr=True)

        assert rec.updates == [({"cached": True}, UpdateSource.CACHE)]
        assert controller.state("abc").status is TokenStatus.FAILED
        # The snapshot is untouched
        assert store.read("abc").payload == {"cached": True}

    @pytest.mark.asyncio
    async def test_failed_is_not_terminal(self, controller, network, recorder_factory):
        network.error = TransportError("down")
        with pytest.raises(TransportError):
            await controller.synchronize("abc", 60_000)

        network.error = None
        rec = recorder_factory()
        await controller.synchronize("abc", 60_000, rec)
        assert rec.sources == ["network"]
        assert controller.state("abc").is_ready


class TestConcurrentRounds:

    @pytest.mark.asyncio
    async def test_at_most_one_in_flight(self, controller, network, recorder_factory):
        network.gate = asyncio.Event()
        recorders = [recorder_factory() for _ in range(5)]

        tasks = [
            asyncio.ensure_future(controller.synchronize("abc", 60_000, rec))
            for rec in recorders
        ]
        await asyncio.sleep(0)
        assert controller.state("abc").status is TokenStatus.PENDING
        network.gate.set()
        await asyncio.gather(*tasks)

        assert network.calls == ["abc"]
        payloads = [rec.updates[0][0] for rec in recorders]
        assert all(p == payloads[0] for p in payloads)
        assert recorders[0].sources == ["network"]
        assert all(rec.sources == ["pending"] for rec in recorders[1:])

    @pytest.mark.asyncio
    async def test_concurrent_failure_joins_single_retry(self, controller, network):
        """Waiters on a failed fetch share one retry rather than one each."""
        network.gate = asyncio.Event()
        network.error = TransportError("down")

        tasks = [
            asyncio.ensure_future(controller.synchronize("abc", 60_000))
            for _ in range(4)
        ]
        await asyncio.sleep(0)
        network.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, TransportError) for r in results)
        assert len(network.calls) == 2
        assert network.max_concurrent == 1

    @pytest.mark.asyncio
    async def test_manual_fetch_writes_cache(self, controller, store, network, clock):
        network.documents["abc"] = {"manual": True}
        assert await controller.fetch("abc") == {"manual": True}
        assert store.read("abc") == CacheEntry(fetched_at=clock.now, payload={"manual": True})

    @pytest.mark.asyncio
    async def test_round_joins_manual_fetch(self, controller, network, recorder_factory):
        network.gate = asyncio.Event()
        fetch_task = asyncio.ensure_future(controller.fetch("abc"))
        await asyncio.sleep(0)

        rec = recorder_factory()
        round_task = asyncio.ensure_future(controller.synchronize("abc", 60_000, rec))
        await asyncio.sleep(0)
        network.gate.set()
        document = await fetch_task
        await round_task

        assert network.calls == ["abc"]
        assert rec.updates == [(document, UpdateSource.NETWORK)]


class TestCurrentPayload:

    def test_falls_back_to_cache(self, controller, store, clock):
        seed(store, clock, "abc", age_ms=999_999, payload={"old": True})
        assert controller.current_payload("abc") == {"old": True}
        assert controller.current_payload("missing") is None

    def test_idle_by_default(self, controller):
        assert controller.state("abc").status is TokenStatus.IDLE
        assert SyncConfig().swr is False
