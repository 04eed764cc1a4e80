"""Shared fixtures for semantic memory tests."""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from semantic_memory.config import Settings
from semantic_memory.manager import MemoryManager
from semantic_memory.models import (
    EntityType,
    ExtractedEntity,
    MemoryEntry,
    MemoryKind,
    MemoryMetadata,
)
from semantic_memory.persistence import InMemoryPersistence

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for time-dependent behaviour."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class NullAnalyzer:
    """Analyzer that extracts nothing, so metadata comes only from overrides."""

    def analyze(self, content, overrides):
        return MemoryMetadata()


def make_entry(
    memory_id: str,
    kind: MemoryKind = MemoryKind.CONTEXT,
    content: str = "",
    tags: list[str] | None = None,
    keywords: list[str] | None = None,
    entities: list[tuple[str, str]] | None = None,
    project_id: str | None = None,
    created_at: datetime = NOW,
    embedding: np.ndarray | None = None,
    importance: float = 0.5,
) -> MemoryEntry:
    """Build an entry directly, bypassing ingestion."""
    metadata = MemoryMetadata(
        project_id=project_id,
        keywords=list(keywords or []),
        entities=[
            ExtractedEntity(type=EntityType(etype), name=name) for etype, name in entities or []
        ],
    )
    return MemoryEntry(
        id=memory_id,
        kind=kind,
        content=content or f"content of {memory_id}",
        metadata=metadata,
        embedding=embedding,
        created_at=created_at,
        updated_at=created_at,
        last_accessed=created_at,
        importance=importance,
        tags=list(tags if tags is not None else keywords or []),
    )


@pytest.fixture
def settings():
    return Settings(persistence_backend="memory")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def manager(settings, persistence, clock):
    """Manager with in-memory persistence, no content analysis and a fake clock."""
    mgr = MemoryManager(settings, persistence=persistence, analyzer=NullAnalyzer(), clock=clock)
    yield mgr
    mgr.close()
