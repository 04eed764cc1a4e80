"""Memory manager: the single entry point for ingestion, lookup and search.

One manager owns the entry table and its indexes. Construct it once at
startup (``create_manager``) and pass it to whatever needs it.

All index mutation and access bookkeeping happens under one reentrant
lock. Persistence calls run after the in-memory commit, outside the lock;
a failed durable write is raised to the caller and is not rolled back.
"""

from __future__ import annotations

import json
import threading
import uuid
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

import numpy as np

from semantic_memory.analysis import ContentAnalyzer, KeywordAnalyzer, merge_metadata
from semantic_memory.config import Settings, get_settings
from semantic_memory.embeddings import EmbeddingEngine
from semantic_memory.errors import PersistenceError, ValidationError
from semantic_memory.index import IndexStore
from semantic_memory.ingest import (
    code_analysis_to_memory,
    conversation_to_memory,
    research_to_memory,
)
from semantic_memory.logging import get_logger
from semantic_memory.models import (
    CodeContext,
    ConversationContext,
    MemoryEntry,
    MemoryKind,
    MemoryMetadata,
    MemoryQuery,
    MemorySearchResult,
    MemoryStats,
    RecentActivity,
    ResearchContext,
    SemanticCluster,
    utcnow,
)
from semantic_memory.optimization import select_evictions
from semantic_memory.persistence import (
    PersistenceBackend,
    create_persistence,
    export_entries,
    import_entries,
)
from semantic_memory.query import QueryEngine
from semantic_memory.relations import find_related

log = get_logger("manager")

CLUSTER_KEYWORDS = 5
MOST_ACCESSED_LIMIT = 10


def new_memory_id(now: datetime) -> str:
    """``memory-<epoch ms>-<random suffix>``."""
    return f"memory-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


class MemoryManager:
    """Semantic memory façade."""

    def __init__(
        self,
        settings: Settings | None = None,
        persistence: PersistenceBackend | None = None,
        analyzer: ContentAnalyzer | None = None,
        embedding_engine: EmbeddingEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self._persistence = persistence or create_persistence(self.settings)
        self._analyzer = analyzer or KeywordAnalyzer()
        self._embeddings = embedding_engine or EmbeddingEngine(self.settings)
        self._clock = clock
        self._lock = threading.RLock()
        self._index = IndexStore(
            recent_limit=self.settings.recent_limit,
            similarity_threshold=self.settings.similarity_threshold,
        )
        self._query = QueryEngine(self._index, self._embeddings, self.settings, clock=clock)
        self._activity = RecentActivity()
        self._last_optimized: datetime | None = None

    def __enter__(self) -> MemoryManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def index(self) -> IndexStore:
        return self._index

    @property
    def embeddings(self) -> EmbeddingEngine:
        return self._embeddings

    # ========== Validation ==========

    def _validate_kind(self, kind: MemoryKind | str) -> MemoryKind:
        try:
            return MemoryKind(kind)
        except ValueError:
            raise ValidationError(
                f"Invalid kind {kind!r}. Use: {[k.value for k in MemoryKind]}"
            ) from None

    def _validate_content(self, content: str) -> None:
        if not content or not content.strip():
            raise ValidationError("content cannot be empty")
        if len(content) > self.settings.max_content_length:
            raise ValidationError(
                f"content too long: {len(content)} chars "
                f"(max: {self.settings.max_content_length})"
            )

    def _validate_importance(self, importance: float) -> float:
        if not 0.0 <= importance <= 1.0:
            raise ValidationError(f"importance must be between 0 and 1, got {importance}")
        return float(importance)

    # ========== Lifecycle ==========

    def load(self) -> int:
        """Replace in-memory state with every persisted entry.

        Returns:
            Number of entries loaded (0 if persistence could not be read).
        """
        try:
            entries = self._persistence.get_all()
        except Exception as e:
            log.error("Failed to load memories: {}", e)
            return 0

        with self._lock:
            self._index.clear()
            for entry in entries:
                self._index.upsert(entry)
        log.info("Loaded {} memories", len(entries))
        return len(entries)

    def close(self) -> None:
        """Release the persistence backend."""
        self._persistence.close()

    # ========== Ingestion ==========

    def _enrich(self, content: str, overrides: dict[str, Any]) -> MemoryMetadata:
        try:
            analyzed = self._analyzer.analyze(content, overrides)
        except Exception as e:
            log.warning("Content analysis failed, using default metadata: {}", e)
            analyzed = None
        return merge_metadata(analyzed, overrides)

    def _persist(self, entry: MemoryEntry) -> None:
        try:
            self._persistence.put(entry)
        except Exception as e:
            log.error("Failed to persist memory {}: {}", entry.id, e)
            raise PersistenceError(f"Failed to persist memory {entry.id}: {e}", [entry.id]) from e

    def _persist_all(self, entries: list[MemoryEntry]) -> None:
        """Write every entry, then raise once listing the ids that failed."""
        failed = []
        for entry in entries:
            try:
                self._persistence.put(entry)
            except Exception as e:
                log.error("Failed to persist memory {}: {}", entry.id, e)
                failed.append(entry.id)
        if failed:
            raise PersistenceError(f"Failed to persist {len(failed)} memories", failed)

    def store(
        self,
        kind: MemoryKind | str,
        content: str,
        metadata: dict[str, Any] | None = None,
        importance: float | None = None,
    ) -> MemoryEntry:
        """Enrich, embed, relate, index and persist a new memory.

        Args:
            kind: Memory kind.
            content: Raw text; immutable once stored.
            metadata: Partial metadata overrides (MemoryMetadata field names).
            importance: Score in [0, 1]; defaults to ``settings.default_importance``.

        Returns:
            The stored entry.

        Raises:
            ValidationError: On bad kind, content, importance or metadata.
            PersistenceError: If the durable write failed. The entry is
                already indexed and stays queryable.
        """
        memory_kind = self._validate_kind(kind)
        self._validate_content(content)
        importance = self._validate_importance(
            self.settings.default_importance if importance is None else importance
        )
        overrides = dict(metadata or {})

        memory_metadata = self._enrich(content, overrides)
        embedding = self._embeddings.embed(content)
        now = self._clock()
        entry = MemoryEntry(
            id=new_memory_id(now),
            kind=memory_kind,
            content=content,
            metadata=memory_metadata,
            embedding=embedding,
            created_at=now,
            updated_at=now,
            access_count=0,
            last_accessed=now,
            importance=importance,
            tags=list(memory_metadata.keywords),
        )

        with self._lock:
            entry.related_entries = find_related(
                entry,
                self._index,
                max_related=self.settings.max_related,
                keyword_overlap=self.settings.related_keyword_overlap,
            )
            self._index.upsert(entry)
            linked = self._link_back(entry)
            self._activity.created += 1

        log.info("Stored memory: {} ({})", memory_kind.value, entry.id)
        self._persist_all([entry, *linked])
        return entry

    def _link_back(self, entry: MemoryEntry) -> list[MemoryEntry]:
        """Add the new entry to the relations of the entries it relates to.

        Only entries with room under ``max_related`` get the reciprocal link.
        """
        linked = []
        for related_id in entry.related_entries:
            other = self._index.get(related_id)
            if other is None or entry.id in other.related_entries:
                continue
            if len(other.related_entries) >= self.settings.max_related:
                continue
            other.related_entries.append(entry.id)
            linked.append(other)
        return linked

    def store_conversation(self, context: ConversationContext) -> MemoryEntry:
        """Store one conversation turn."""
        return self.store(*conversation_to_memory(context))

    def store_code_analysis(self, analysis: CodeContext) -> MemoryEntry:
        """Store the analysis of one source file."""
        return self.store(*code_analysis_to_memory(analysis))

    def store_research(self, research: ResearchContext) -> MemoryEntry:
        """Store a research synthesis."""
        return self.store(*research_to_memory(research))

    def revise(self, memory_id: str, content: str) -> MemoryEntry | None:
        """Store revised content as a new entry of the same kind.

        The original entry is left untouched. Returns None if it does not exist.
        """
        with self._lock:
            original = self._index.get(memory_id)
            if original is None:
                return None
            overrides = {
                "source": original.metadata.source,
                "project_id": original.metadata.project_id,
                "session_id": original.metadata.session_id,
                "user_id": original.metadata.user_id,
            }
            kind, importance = original.kind, original.importance
        return self.store(kind, content, overrides, importance)

    # ========== Lookup & search ==========

    def get(self, memory_id: str) -> MemoryEntry | None:
        """Get a memory by id, recording the access."""
        with self._lock:
            entry = self._index.get(memory_id)
            if entry is not None:
                entry.access_count += 1
                entry.last_accessed = self._clock()
                self._activity.accessed += 1
            return entry

    def search(self, query: MemoryQuery) -> list[MemorySearchResult]:
        """Run a query; each returned entry's access count rises by exactly one."""
        with self._lock:
            results = self._query.search(query)
            self._activity.accessed += len({r.entry.id for r in results})
        return results

    # ========== Mutation ==========

    def set_importance(self, memory_id: str, importance: float) -> MemoryEntry | None:
        """Explicitly change a memory's importance.

        Raises:
            PersistenceError: If the durable write failed (in-memory change kept).
        """
        importance = self._validate_importance(importance)
        with self._lock:
            entry = self._index.get(memory_id)
            if entry is None:
                return None
            entry.importance = importance
            entry.updated_at = self._clock()
            self._activity.updated += 1
        self._persist(entry)
        return entry

    def delete(self, memory_id: str) -> bool:
        """Delete one memory from the table, indexes and persistence.

        Raises:
            PersistenceError: If the durable delete failed.
        """
        with self._lock:
            removed = self._index.remove_and_rebuild([memory_id])
        if not removed:
            return False

        try:
            self._persistence.delete(memory_id)
        except Exception as e:
            log.error("Failed to delete persisted memory {}: {}", memory_id, e)
            raise PersistenceError(f"Failed to delete memory {memory_id}: {e}", [memory_id]) from e
        log.info("Deleted memory {}", memory_id)
        return True

    def optimize(self) -> list[str]:
        """Evict low-value memories and rebuild the indexes once.

        Returns:
            Ids removed.

        Raises:
            PersistenceError: If any durable delete failed; every delete is
                attempted first and the failed ids are attached.
        """
        log.info("Starting memory optimization...")
        with self._lock:
            now = self._clock()
            to_remove = select_evictions(self._index, now, self.settings)
            removed = self._index.remove_and_rebuild(to_remove)
            self._last_optimized = now

        failed = []
        for memory_id in removed:
            try:
                self._persistence.delete(memory_id)
            except Exception as e:
                log.error("Failed to delete persisted memory {}: {}", memory_id, e)
                failed.append(memory_id)

        log.info("Memory optimization complete. Removed {} entries.", len(removed))
        if failed:
            raise PersistenceError(
                f"Failed to delete {len(failed)} of {len(removed)} evicted memories", failed
            )
        return removed

    def recluster(
        self, k: int | None = None, rng: np.random.Generator | None = None
    ) -> list[SemanticCluster]:
        """Cluster the semantic index and store the clusters on it."""
        with self._lock:
            embeddings = self._index.embeddings()

        groups = self._embeddings.cluster(embeddings, k, rng=rng)

        with self._lock:
            clusters = []
            for i, (centroid, members) in enumerate(groups):
                live = [mid for mid in members if mid in self._index]
                if not live:
                    continue
                counts = Counter(
                    kw for mid in live for kw in self._index.get(mid).metadata.keywords
                )
                top = [kw for kw, _ in counts.most_common(CLUSTER_KEYWORDS)]
                clusters.append(
                    SemanticCluster(
                        id=f"cluster-{i}",
                        centroid=centroid,
                        members=live,
                        topic=top[0] if top else "",
                        keywords=top,
                    )
                )
            self._index.clusters = clusters
        log.info("Clustered {} embeddings into {} clusters", len(embeddings), len(clusters))
        return clusters

    def save(self, memory_ids: Iterable[str] | None = None) -> int:
        """Re-persist entries so access bookkeeping survives a restart.

        Args:
            memory_ids: Entries to write; all entries when None. Unknown ids are skipped.

        Raises:
            PersistenceError: If any write failed; all writes are attempted first.
        """
        with self._lock:
            if memory_ids is None:
                entries = self._index.entries()
            else:
                entries = [e for e in map(self._index.get, memory_ids) if e is not None]

        self._persist_all(entries)
        return len(entries)

    # ========== Stats & export ==========

    def stats(self) -> MemoryStats:
        """Statistics computed from the current table."""
        with self._lock:
            entries = self._index.entries()
            by_type = {kind: len(ids) for kind, ids in self._index.buckets("by_type").items()}
            most_accessed = sorted(entries, key=lambda e: e.access_count, reverse=True)
            return MemoryStats(
                total_entries=len(entries),
                entries_by_type=by_type,
                average_importance=(
                    sum(e.importance for e in entries) / len(entries) if entries else 0.0
                ),
                most_accessed_entries=[e.id for e in most_accessed[:MOST_ACCESSED_LIMIT]],
                recent_activity=RecentActivity(
                    created=self._activity.created,
                    accessed=self._activity.accessed,
                    updated=self._activity.updated,
                ),
                storage_size=sum(len(json.dumps(e.to_dict())) for e in entries),
                index_size=self._index.index_size(),
                last_optimized=self._last_optimized,
            )

    def export_json(self) -> str:
        """Export every memory as a JSON document."""
        with self._lock:
            entries = self._index.entries()
        return export_entries(entries)

    def import_json(self, data: str) -> int:
        """Import memories from an export, replacing entries with the same id.

        Raises:
            PersistenceError: On an unreadable document, or if any entry
                could not be persisted (all are indexed regardless).
        """
        entries = import_entries(data)
        with self._lock:
            replaced = [entry.id for entry in entries if entry.id in self._index]
            if replaced:
                self._index.remove_and_rebuild(replaced)
            for entry in entries:
                self._index.upsert(entry)

        log.info("Imported {} memories", len(entries))
        self._persist_all(entries)
        return len(entries)


def create_manager(settings: Settings | None = None, **kwargs: Any) -> MemoryManager:
    """Construct a manager and load persisted memories into it."""
    manager = MemoryManager(settings, **kwargs)
    manager.load()
    return manager
