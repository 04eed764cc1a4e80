"""Authoritative entry table plus secondary and semantic indexes.

Every entry is filed under the buckets implied by its fields: kind, each
tag, project, each ``type:name`` entity, each keyword and its day, week and
month of creation. Buckets de-duplicate ids, so re-filing an entry is a
no-op and rebuilding twice gives identical indexes.
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

import numpy as np

from semantic_memory.logging import get_logger
from semantic_memory.models import MemoryEntry, MemoryKind, SemanticCluster

log = get_logger("index")

BUCKET_NAMES = (
    "by_type",
    "by_tag",
    "by_project",
    "by_entity",
    "by_keyword",
    "by_day",
    "by_week",
    "by_month",
)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def day_key(moment: datetime | date) -> str:
    """``YYYY-MM-DD``."""
    if isinstance(moment, datetime):
        moment = _as_utc(moment).date()
    return moment.isoformat()


def week_key(moment: datetime | date) -> str:
    """``YYYY-W{ceil(day_of_month / 7)}``.

    Not an ISO week: numbering restarts every month, so the 3rd of January
    and the 3rd of March share ``W1`` of the same year.
    """
    if isinstance(moment, datetime):
        moment = _as_utc(moment).date()
    return f"{moment.year}-W{math.ceil(moment.day / 7)}"


def month_key(moment: datetime | date) -> str:
    """``YYYY-MM``."""
    if isinstance(moment, datetime):
        moment = _as_utc(moment).date()
    return f"{moment.year}-{moment.month:02d}"


def bucket_keys_for(entry: MemoryEntry) -> dict[str, list[str]]:
    """All bucket keys an entry must be filed under, per bucket kind."""
    metadata = entry.metadata
    return {
        "by_type": [entry.kind.value],
        "by_tag": list(entry.tags),
        "by_project": [metadata.project_id] if metadata.project_id else [],
        "by_entity": [entity.key for entity in metadata.entities],
        "by_keyword": list(metadata.keywords),
        "by_day": [day_key(entry.created_at)],
        "by_week": [week_key(entry.created_at)],
        "by_month": [month_key(entry.created_at)],
    }


@dataclass
class _Indexes:
    """One complete generation of secondary indexes."""

    by_type: dict[str, list[str]] = field(default_factory=dict)
    by_tag: dict[str, list[str]] = field(default_factory=dict)
    by_project: dict[str, list[str]] = field(default_factory=dict)
    by_entity: dict[str, list[str]] = field(default_factory=dict)
    by_keyword: dict[str, list[str]] = field(default_factory=dict)
    by_day: dict[str, list[str]] = field(default_factory=dict)
    by_week: dict[str, list[str]] = field(default_factory=dict)
    by_month: dict[str, list[str]] = field(default_factory=dict)
    recent: list[str] = field(default_factory=list)
    embeddings: dict[str, np.ndarray] = field(default_factory=dict)

    def file(
        self, entry: MemoryEntry, recent_limit: int, keys: dict[str, list[str]] | None = None
    ) -> None:
        for name, bucket_keys in (keys or bucket_keys_for(entry)).items():
            buckets: dict[str, list[str]] = getattr(self, name)
            for key in bucket_keys:
                bucket = buckets.setdefault(key, [])
                if entry.id not in bucket:
                    bucket.append(entry.id)

        if entry.id not in self.recent:
            self.recent.insert(0, entry.id)
            del self.recent[recent_limit:]

        if entry.embedding is not None:
            self.embeddings[entry.id] = entry.embedding


class IndexStore:
    """Entry table, secondary buckets and semantic index.

    Not thread-safe on its own; the manager serializes writers. A rebuild
    builds a complete new index generation and swaps it in with a single
    assignment, so readers see either the old or the new generation.
    """

    def __init__(self, recent_limit: int = 100, similarity_threshold: float = 0.7):
        self.recent_limit = recent_limit
        self.similarity_threshold = similarity_threshold
        self._entries: dict[str, MemoryEntry] = {}
        self._indexes = _Indexes()
        self.clusters: list[SemanticCluster] = []

    # ========== Entry table ==========

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._entries

    def __iter__(self) -> Iterator[MemoryEntry]:
        return iter(list(self._entries.values()))

    def get(self, memory_id: str) -> MemoryEntry | None:
        """Entry by id, or None (stale ids are not an error)."""
        return self._entries.get(memory_id)

    def entries(self) -> list[MemoryEntry]:
        """Snapshot of all entries in insertion order."""
        return list(self._entries.values())

    # ========== Mutation ==========

    def upsert(self, entry: MemoryEntry) -> None:
        """Put an entry in the table and file it under all of its buckets.

        Bucket keys are derived first; if that fails the table is untouched.
        """
        keys = bucket_keys_for(entry)
        self._entries[entry.id] = entry
        self._indexes.file(entry, self.recent_limit, keys)

    def remove_and_rebuild(self, memory_ids: list[str] | set[str]) -> list[str]:
        """Drop entries from the table, then regenerate every index.

        Returns:
            Ids that were actually present and removed.
        """
        removed = [mid for mid in memory_ids if self._entries.pop(mid, None) is not None]
        self.rebuild()
        return removed

    def rebuild(self) -> None:
        """Regenerate all secondary and semantic indexes from the table."""
        fresh = _Indexes()
        for entry in self._entries.values():
            fresh.file(entry, self.recent_limit)
        self._indexes = fresh

        live_clusters = []
        for cluster in self.clusters:
            members = [mid for mid in cluster.members if mid in self._entries]
            if members:
                cluster.members = members
                live_clusters.append(cluster)
        self.clusters = live_clusters

        log.debug(
            "Rebuilt indexes for {} entries ({} memberships)", len(self._entries), self.index_size()
        )

    def clear(self) -> None:
        """Drop every entry and index."""
        self._entries = {}
        self._indexes = _Indexes()
        self.clusters = []

    # ========== Bucket accessors ==========

    def _bucket(self, name: str, key: str) -> list[str]:
        buckets: dict[str, list[str]] = getattr(self._indexes, name)
        return list(buckets.get(key, []))

    def buckets(self, name: str) -> dict[str, list[str]]:
        """Copy of one bucket kind, e.g. ``buckets("by_tag")``."""
        if name not in BUCKET_NAMES:
            raise KeyError(f"Unknown bucket kind: {name}")
        return {key: list(ids) for key, ids in getattr(self._indexes, name).items()}

    def by_type(self, kind: MemoryKind | str) -> list[str]:
        return self._bucket("by_type", MemoryKind(kind).value)

    def by_tag(self, tag: str) -> list[str]:
        return self._bucket("by_tag", tag)

    def by_project(self, project_id: str) -> list[str]:
        return self._bucket("by_project", project_id)

    def by_entity(self, entity_type: str, name: str | None = None) -> list[str]:
        """Ids for an entity, given as ``type, name`` or a ``type:name`` key."""
        key = entity_type if name is None else f"{entity_type}:{name}"
        return self._bucket("by_entity", key)

    def by_keyword(self, keyword: str) -> list[str]:
        return self._bucket("by_keyword", keyword)

    def by_day(self, moment: datetime | date | str) -> list[str]:
        key = moment if isinstance(moment, str) else day_key(moment)
        return self._bucket("by_day", key)

    def by_week(self, moment: datetime | date | str) -> list[str]:
        key = moment if isinstance(moment, str) else week_key(moment)
        return self._bucket("by_week", key)

    def by_month(self, moment: datetime | date | str) -> list[str]:
        key = moment if isinstance(moment, str) else month_key(moment)
        return self._bucket("by_month", key)

    def recent(self, limit: int | None = None) -> list[str]:
        """Most recently inserted ids, newest first."""
        recent = self._indexes.recent
        return list(recent if limit is None else recent[:limit])

    # ========== Semantic index ==========

    def embedding_of(self, memory_id: str) -> np.ndarray | None:
        return self._indexes.embeddings.get(memory_id)

    def embeddings(self) -> dict[str, np.ndarray]:
        """Snapshot of id -> vector for every entry that has one."""
        return dict(self._indexes.embeddings)

    def index_size(self) -> int:
        """Total bucket memberships across all secondary indexes."""
        return sum(
            len(ids)
            for name in BUCKET_NAMES
            for ids in getattr(self._indexes, name).values()
        )
