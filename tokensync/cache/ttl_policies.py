"""
Freshness policy for a batch of subscribers.

Every subscriber in a synchronization round brings its own TTL and SWR
preference. The round must satisfy all of them at once:

- the shortest TTL wins, since no participant may be served older data
  than it asked for
- SWR is on if the shared config or any subscriber turns it on
"""
from typing import Any, Iterable, Optional

from .core import DEFAULT_TTL_MS, Subscriber, SyncConfig


def normalize_ttl(value: Any, default: int = DEFAULT_TTL_MS) -> int:
    """
    Coerce a user-supplied TTL to positive milliseconds.

    Missing, non-numeric, zero or negative values fall back to the default.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        ttl = int(value)
    except (ValueError, TypeError):
        return default
    return ttl if ttl > 0 else default


def get_effective_ttl(
    subscribers: Iterable[Subscriber],
    default: int = DEFAULT_TTL_MS,
) -> int:
    """
    Minimum TTL across a batch.

    Args:
        subscribers: Subscribers batched into one round
        default: TTL used when the batch is empty

    Returns:
        TTL in milliseconds
    """
    ttls = [normalize_ttl(s.ttl_ms, default) for s in subscribers]
    return min(ttls) if ttls else default


def get_effective_swr(
    subscribers: Iterable[Subscriber],
    config: Optional[SyncConfig] = None,
) -> bool:
    """Logical OR of the shared config flag and every subscriber override."""
    if config is not None and config.swr:
        return True
    return any(s.swr for s in subscribers)
