"""Eviction policy for low-value memories.

A memory is evicted only when it is unimportant, stale and rarely used,
all three at once.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

from semantic_memory.config import Settings
from semantic_memory.models import MemoryEntry


def eviction_cutoff(now: datetime, settings: Settings) -> datetime:
    """Last-access time before which a memory counts as stale."""
    return now - timedelta(days=settings.optimize_cutoff_days)


def is_evictable(entry: MemoryEntry, cutoff: datetime, settings: Settings) -> bool:
    """True when importance, last access and access count are all below their limits."""
    last_accessed = entry.last_accessed or entry.created_at
    return (
        entry.importance < settings.optimize_importance_threshold
        and last_accessed < cutoff
        and entry.access_count < settings.optimize_access_threshold
    )


def select_evictions(
    entries: Iterable[MemoryEntry], now: datetime, settings: Settings
) -> list[str]:
    """Ids of every evictable entry, in table order."""
    cutoff = eviction_cutoff(now, settings)
    return [entry.id for entry in entries if is_evictable(entry, cutoff, settings)]
