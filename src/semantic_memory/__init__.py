"""In-memory semantic retrieval engine."""

from semantic_memory.errors import PersistenceError, ValidationError
from semantic_memory.manager import MemoryManager, create_manager
from semantic_memory.models import (
    MatchType,
    MemoryEntry,
    MemoryKind,
    MemoryMetadata,
    MemoryQuery,
    MemorySearchResult,
    MemoryStats,
    TimeRange,
)

__all__ = [
    "MatchType",
    "MemoryEntry",
    "MemoryKind",
    "MemoryManager",
    "MemoryMetadata",
    "MemoryQuery",
    "MemorySearchResult",
    "MemoryStats",
    "PersistenceError",
    "TimeRange",
    "ValidationError",
    "create_manager",
]
