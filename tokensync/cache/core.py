"""
Core synchronization data structures.
"""
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from enum import Enum

# Parsed JSON document; never inspected by the engine
Document = Any

DEFAULT_TTL_MS = 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in unix milliseconds."""
    return int(time.time() * 1000)


class TokenStatus(Enum):
    """Lifecycle of a token within the freshness controller."""
    IDLE = "idle"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class UpdateSource(Enum):
    """Where a delivered payload came from."""
    CACHE = "cache"                          # Fresh persisted snapshot
    PENDING = "pending"                      # Joined another caller's fetch
    NETWORK = "network"                      # Fetched because nothing fresh existed
    REVALIDATE = "network(revalidate)"       # SWR refresh behind a fresh snapshot


@dataclass(frozen=True)
class CacheEntry:
    """
    Last successfully fetched document for a token and when it arrived.
    """
    fetched_at: int  # unix ms
    payload: Document

    def age_ms(self, now: Optional[int] = None) -> int:
        """Milliseconds since the document was fetched."""
        return (now if now is not None else now_ms()) - self.fetched_at

    def is_fresh(self, ttl_ms: int, now: Optional[int] = None) -> bool:
        """Check if the document is younger than ttl_ms."""
        return self.age_ms(now) < ttl_ms

    def to_record(self) -> dict:
        """Serialize to the persisted {"t": ..., "d": ...} form."""
        return {"t": self.fetched_at, "d": self.payload}

    @classmethod
    def from_record(cls, record: Any) -> "CacheEntry":
        """
        Build an entry from a persisted record.

        Raises:
            ValueError: If the record does not have the expected shape
        """
        if not isinstance(record, dict) or "t" not in record or "d" not in record:
            raise ValueError("persisted record must contain 't' and 'd'")
        fetched_at = record["t"]
        if isinstance(fetched_at, bool) or not isinstance(fetched_at, (int, float)):
            raise ValueError(f"invalid timestamp: {fetched_at!r}")
        # json.loads accepts Infinity and NaN
        if not math.isfinite(fetched_at):
            raise ValueError(f"invalid timestamp: {fetched_at!r}")
        return cls(fetched_at=int(fetched_at), payload=record["d"])


@dataclass(frozen=True)
class TokenState:
    """Transient per-token status; re-derived from cache and in-flight work."""
    status: TokenStatus = TokenStatus.IDLE
    payload: Optional[Document] = None
    error: Optional[BaseException] = None

    @classmethod
    def pending(cls) -> "TokenState":
        return cls(status=TokenStatus.PENDING)

    @classmethod
    def ready(cls, payload: Document) -> "TokenState":
        return cls(status=TokenStatus.READY, payload=payload)

    @classmethod
    def failed(cls, error: BaseException) -> "TokenState":
        return cls(status=TokenStatus.FAILED, error=error)

    @property
    def is_ready(self) -> bool:
        return self.status is TokenStatus.READY

    @property
    def is_pending(self) -> bool:
        return self.status is TokenStatus.PENDING


ConsumerCallback = Callable[[Document, UpdateSource], Any]
ErrorCallback = Callable[[BaseException], Any]


@dataclass(eq=False)
class Subscriber:
    """
    A consumer's registered interest in a token.

    Identity-compared so the same callback can be attached more than once.
    """
    token: str
    callback: ConsumerCallback
    ttl_ms: int = DEFAULT_TTL_MS
    swr: bool = False
    on_error: Optional[ErrorCallback] = None
    attached_at: int = field(default_factory=now_ms)


@dataclass
class SyncConfig:
    """
    Shared, mutable engine configuration.

    Read at the start of every synchronization round, so changes take
    effect on the next round.
    """
    swr: bool = False
