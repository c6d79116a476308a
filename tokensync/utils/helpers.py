"""
Utility helpers shared by the engine and the command line.
"""
import json
import logging
from typing import Any, Optional

from ..cache.core import CacheEntry, now_ms


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging for command-line use.

    Library code only creates named loggers; applications decide where the
    records go.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def format_document(document: Any) -> str:
    """Render a document as indented JSON for display."""
    return json.dumps(document, indent=2, ensure_ascii=False, default=str)


def describe_entry(entry: Optional[CacheEntry], now: Optional[int] = None) -> str:
    """
    One-line summary of a cache entry.

    Args:
        entry: Entry to describe, or None
        now: Reference time in unix ms (defaults to the current time)

    Returns:
        Human-readable summary
    """
    if entry is None:
        return "no cached entry"
    age_s = entry.age_ms(now if now is not None else now_ms()) / 1000
    return f"fetched_at={entry.fetched_at} age={age_s:.1f}s"
