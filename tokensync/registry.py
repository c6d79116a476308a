"""
Subscriber fan-out registry.

Consumers attach to tokens; a flush runs one synchronization round per token
for everything attached since the previous flush and delivers each result to
every consumer in that batch.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from .cache.core import (
    DEFAULT_TTL_MS,
    Document,
    ErrorCallback,
    ConsumerCallback,
    Subscriber,
    UpdateSource,
)
from .cache.ttl_policies import get_effective_ttl, get_effective_swr, normalize_ttl
from .controller import FreshnessController
from .errors import ConsumerCallbackError

logger = logging.getLogger("tokensync.registry")


class SubscriberRegistry:
    """
    Batches consumers per token and fans results out to them.

    Two collections are kept per token:
    - the pending batch, cleared by every flush
    - all attached subscribers, kept for redelivery until detached

    A consumer attaching while its token is Ready is served immediately from
    the controller state, with no batching and no network access.
    """

    def __init__(
        self,
        controller: FreshnessController,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        schedule: Optional[Callable[[Any], "asyncio.Future[Any]"]] = None,
    ):
        """
        Initialize the registry.

        Args:
            controller: Freshness controller that runs synchronization rounds
            default_ttl_ms: TTL for subscribers that do not give one
            schedule: Turns a flush coroutine into a running task (eager attach)
        """
        self._controller = controller
        self._default_ttl_ms = default_ttl_ms
        self._schedule = schedule or asyncio.ensure_future
        self._pending: Dict[str, List[Subscriber]] = defaultdict(list)
        self._attached: Dict[str, List[Subscriber]] = defaultdict(list)
        self._stats = {
            "flushes": 0,
            "deliveries": 0,
            "late_joins": 0,
            "consumer_errors": 0,
            "failed_rounds": 0,
        }

    @property
    def default_ttl_ms(self) -> int:
        return self._default_ttl_ms

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
        Register a consumer for a token.

        Args:
            token: Token to follow
            callback: Called with (payload, UpdateSource)
            ttl_ms: Freshness requirement in milliseconds
            swr: Ask for revalidation even when the snapshot is fresh
            eager: Flush right away instead of waiting for an external trigger.
                Needs a running event loop unless the token is already Ready.
            on_error: Called once when a round fails with no deliverable data

        Returns:
            The Subscriber handle (pass to detach)

        Raises:
            RuntimeError: eager was requested outside a running event loop
        """
        state = self._controller.state(token)
        if eager and not state.is_ready:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError(
                    f"attach({token!r}, eager=True) needs a running event loop; "
                    "attach without eager and await flush() instead"
                ) from None

        subscriber = Subscriber(
            token=token,
            callback=callback,
            ttl_ms=normalize_ttl(ttl_ms, self._default_ttl_ms),
            swr=bool(swr),
            on_error=on_error,
        )
        self._attached[token].append(subscriber)

        if state.is_ready:
            self._stats["late_joins"] += 1
            logger.debug(f"Late joiner for {token}, delivering current payload")
            self._deliver(subscriber, state.payload, UpdateSource.CACHE)
            return subscriber

        self._pending[token].append(subscriber)
        if eager:
            self._schedule(self.flush(token))
        return subscriber

    def detach(self, subscriber: Subscriber) -> None:
        """Forget a subscriber; it receives nothing further."""
        for collection in (self._pending, self._attached):
            batch = collection.get(subscriber.token)
            if batch and subscriber in batch:
                batch.remove(subscriber)
                if not batch:
                    del collection[subscriber.token]

    def pending(self, token: str) -> List[Subscriber]:
        """Subscribers waiting for the next flush of a token."""
        return list(self._pending.get(token, ()))

    def subscribers(self, token: str) -> List[Subscriber]:
        """All attached subscribers of a token."""
        return list(self._attached.get(token, ()))

    def tokens(self) -> List[str]:
        return list(self._attached.keys())

    async def flush(self, token: str) -> None:
        """
        Run one synchronization round for everything batched on a token.

        Failures are reported to each subscriber's on_error, never raised.
        """
        batch = self._pending.pop(token, [])
        if not batch:
            return

        self._stats["flushes"] += 1
        ttl_ms = get_effective_ttl(batch, self._default_ttl_ms)
        swr = get_effective_swr(batch, self._controller.config)
        logger.debug(
            f"Flushing {token}: {len(batch)} subscriber(s), ttl={ttl_ms}ms, swr={swr}"
        )

        def on_update(payload: Document, source: UpdateSource) -> None:
            for subscriber in batch:
                if self._is_attached(subscriber):
                    self._deliver(subscriber, payload, source)

        try:
            await self._controller.synchronize(token, ttl_ms, on_update, swr=swr)
        except Exception as e:
            self._stats["failed_rounds"] += 1
            logger.error(f"Synchronization failed for {token}: {e!r}")
            for subscriber in batch:
                if self._is_attached(subscriber):
                    self._fail(subscriber, e)

    def _is_attached(self, subscriber: Subscriber) -> bool:
        return subscriber in self._attached.get(subscriber.token, ())

    def _deliver(self, subscriber: Subscriber, payload: Document, source: UpdateSource) -> None:
        """
        Invoke one consumer; its failure never reaches other consumers.

        A raising consumer is logged and counted only. on_error stays reserved
        for rounds that end with no deliverable data.
        """
        try:
            subscriber.callback(payload, source)
            self._stats["deliveries"] += 1
        except Exception as e:
            self._stats["consumer_errors"] += 1
            logger.exception(str(ConsumerCallbackError(subscriber.token, e)))

    def _fail(self, subscriber: Subscriber, error: BaseException) -> None:
        if subscriber.on_error is None:
            return
        try:
            subscriber.on_error(error)
        except Exception:
            logger.exception(f"Error callback failed for {subscriber.token}")

    def redeliver_all(self) -> int:
        """
        Re-invoke every attached consumer with its token's current payload.

        Tokens with neither a Ready state nor a cached snapshot are skipped.

        Returns:
            Number of consumers invoked
        """
        invoked = 0
        for token, subscribers in list(self._attached.items()):
            payload = self._controller.current_payload(token)
            if payload is None:
                continue
            for subscriber in list(subscribers):
                self._deliver(subscriber, payload, UpdateSource.CACHE)
                invoked += 1
        return invoked

    def get_stats(self) -> Dict[str, Any]:
        return {
            "attached": sum(len(v) for v in self._attached.values()),
            "pending": sum(len(v) for v in self._pending.values()),
            **self._stats,
        }
