"""
Request coalescing to prevent duplicate network calls.

When several tasks ask for the same token at once, only one fetch is made
and every caller shares its result or its error.
"""
import asyncio
import logging
import time
from typing import Dict, Optional, Callable, Any, Awaitable
from dataclasses import dataclass, field

logger = logging.getLogger("tokensync.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress fetch for one token."""
    task: "asyncio.Task[Any]"
    started_at: float = field(default_factory=time.monotonic)
    waiter_count: int = 1


def _retrieve_exception(task: "asyncio.Task[Any]") -> None:
    # Every caller may have been cancelled before the fetch failed
    if not task.cancelled():
        task.exception()


class RequestCoalescer:
    """
    Ensures concurrent requests for the same token share one fetch.

    Pattern:
    - First request for a token starts the fetch as a task
    - Later requests for the same token await that task
    - The registration is dropped when the task settles, on every exit path

    Registration happens before the first await, so under a single event
    loop no two callers can both decide to start a fetch.

    Usage:
        coalescer = RequestCoalescer()
        document = await coalescer.request_once(
            "some-token",
            lambda: client.fetch_document("some-token"),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._started = 0
        self._joined = 0

    async def request_once(
        self,
        token: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Either join an existing in-flight fetch or start a new one.

        Args:
            token: Coalescing key
            fetch_fn: Coroutine factory called only if a fetch must start

        Returns:
            The fetched document (shared among all concurrent callers)

        Raises:
            Exception: Any error from fetch_fn is raised to every caller
        """
        in_flight = self._in_flight.get(token)
        if in_flight is not None:
            in_flight.waiter_count += 1
            self._joined += 1
            logger.debug(
                f"Coalescing request for {token} (waiters: {in_flight.waiter_count})"
            )
        else:
            task = asyncio.ensure_future(self._run(token, fetch_fn))
            task.add_done_callback(_retrieve_exception)
            in_flight = InFlightRequest(task=task)
            self._in_flight[token] = in_flight
            self._started += 1
            logger.debug(f"Initiating fetch for {token}")

        # A cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(in_flight.task)

    async def _run(self, token: str, fetch_fn: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await fetch_fn()
        except Exception as e:
            logger.warning(f"Fetch failed for {token}: {e!r}")
            raise
        finally:
            self._in_flight.pop(token, None)

    def in_flight(self, token: str) -> Optional["asyncio.Task[Any]"]:
        """The shared task for a token, if a fetch is outstanding."""
        in_flight = self._in_flight.get(token)
        return in_flight.task if in_flight is not None else None

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
            "started": self._started,
            "joined": self._joined,
        }
