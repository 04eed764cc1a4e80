"""Data models for the semantic memory engine.

Entries, metadata and query/result shapes are plain dataclasses; enums are
``str`` subclasses so they serialize as their values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import numpy as np


class MemoryKind(str, Enum):
    """Kinds of memories."""

    CONVERSATION = "conversation"
    CODE_ANALYSIS = "code-analysis"
    DECISION = "decision"
    PATTERN = "pattern"
    CONTEXT = "context"
    RESEARCH = "research"


class MetadataSource(str, Enum):
    """Where the memory content came from."""

    CHAT = "chat"
    CODE = "code"
    FILE = "file"
    ANALYSIS = "analysis"
    RESEARCH = "research"
    USER_INPUT = "user-input"


class EntityType(str, Enum):
    """Types of extracted entities."""

    PERSON = "person"
    TECHNOLOGY = "technology"
    FRAMEWORK = "framework"
    DATABASE = "database"
    CONCEPT = "concept"
    FILE = "file"
    FUNCTION = "function"
    VARIABLE = "variable"
    API = "api"
    LIBRARY = "library"


class MatchType(str, Enum):
    """How a search result was matched."""

    EXACT = "exact"  # Text substring match
    SEMANTIC = "semantic"  # Embedding similarity above threshold
    RELATED = "related"  # Pulled in through relatedEntries
    TEMPORAL = "temporal"  # Filter-only query, no text


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_time(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class CodeReference:
    """A reference to a piece of code mentioned by a memory."""

    file_path: str
    language: str
    snippet: str = ""
    start_line: int | None = None
    end_line: int | None = None
    function_name: str | None = None
    class_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "language": self.language,
            "snippet": self.snippet,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "function_name": self.function_name,
            "class_name": self.class_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CodeReference:
        return cls(
            file_path=data["file_path"],
            language=data.get("language", ""),
            snippet=data.get("snippet", ""),
            start_line=data.get("start_line"),
            end_line=data.get("end_line"),
            function_name=data.get("function_name"),
            class_name=data.get("class_name"),
        )


@dataclass
class ExtractedEntity:
    """A typed entity found in memory content."""

    type: EntityType
    name: str
    context: str = ""
    confidence: float = 1.0

    def __post_init__(self) -> None:
        self.type = EntityType(self.type)

    @property
    def key(self) -> str:
        """Entity index key, ``type:name``."""
        return f"{self.type.value}:{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "context": self.context,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedEntity:
        return cls(
            type=EntityType(data["type"]),
            name=data["name"],
            context=data.get("context", ""),
            confidence=float(data.get("confidence", 1.0)),
        )


@dataclass
class MemoryMetadata:
    """Enrichment envelope attached to every memory."""

    source: MetadataSource = MetadataSource.USER_INPUT
    project_id: str | None = None
    session_id: str | None = None
    user_id: str | None = None
    file_references: list[str] = field(default_factory=list)
    code_references: list[CodeReference] = field(default_factory=list)
    entities: list[ExtractedEntity] = field(default_factory=list)
    summary: str = ""
    keywords: list[str] = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "project_id": self.project_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "file_references": list(self.file_references),
            "code_references": [ref.to_dict() for ref in self.code_references],
            "entities": [entity.to_dict() for entity in self.entities],
            "summary": self.summary,
            "keywords": list(self.keywords),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryMetadata:
        return cls(
            source=MetadataSource(data.get("source", MetadataSource.USER_INPUT.value)),
            project_id=data.get("project_id"),
            session_id=data.get("session_id"),
            user_id=data.get("user_id"),
            file_references=list(data.get("file_references", [])),
            code_references=[
                CodeReference.from_dict(ref) for ref in data.get("code_references", [])
            ],
            entities=[ExtractedEntity.from_dict(e) for e in data.get("entities", [])],
            summary=data.get("summary", ""),
            keywords=list(data.get("keywords", [])),
            confidence=float(data.get("confidence", 0.0)),
        )


@dataclass
class MemoryEntry:
    """A stored memory.

    Only ``access_count``/``last_accessed`` (and ``importance``/``updated_at``
    through an explicit update) change after creation. ``related_entries``
    are non-owning ids that may outlive the entries they point to.
    """

    id: str
    kind: MemoryKind
    content: str
    metadata: MemoryMetadata
    embedding: np.ndarray | None
    created_at: datetime
    updated_at: datetime
    access_count: int = 0
    last_accessed: datetime | None = None
    importance: float = 0.5
    tags: list[str] = field(default_factory=list)
    related_entries: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
            "embedding": None if self.embedding is None else self.embedding.tolist(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
            "importance": self.importance,
            "tags": list(self.tags),
            "related_entries": list(self.related_entries),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryEntry:
        embedding = data.get("embedding")
        created_at = _parse_time(data["created_at"])
        last_accessed = data.get("last_accessed")
        return cls(
            id=data["id"],
            kind=MemoryKind(data["kind"]),
            content=data["content"],
            metadata=MemoryMetadata.from_dict(data.get("metadata", {})),
            embedding=None if embedding is None else np.asarray(embedding, dtype=np.float32),
            created_at=created_at,
            updated_at=_parse_time(data.get("updated_at", created_at)),
            access_count=int(data.get("access_count", 0)),
            last_accessed=_parse_time(last_accessed) if last_accessed else None,
            importance=float(data.get("importance", 0.5)),
            tags=list(data.get("tags", [])),
            related_entries=list(data.get("related_entries", [])),
        )


@dataclass
class TimeRange:
    """Inclusive creation-time window."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        self.start = _parse_time(self.start)
        self.end = _parse_time(self.end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass
class MemoryQuery:
    """Search request. Every filter is optional."""

    text: str | None = None
    kind: MemoryKind | None = None
    tags: list[str] | None = None
    project_id: str | None = None
    time_range: TimeRange | None = None
    entities: list[str] | None = None
    keywords: list[str] | None = None
    min_importance: float | None = None
    max_results: int | None = None
    include_related: bool = False
    semantic_search: bool = False


@dataclass
class MemorySearchResult:
    """One ranked search hit."""

    entry: MemoryEntry
    score: float
    relevance: float
    match_type: MatchType
    highlights: list[str] = field(default_factory=list)

    @property
    def rank_score(self) -> float:
        """Score used for ordering: match score weighted by importance."""
        return self.score * self.entry.importance


@dataclass
class SemanticCluster:
    """A group of memories whose embeddings point the same way."""

    id: str
    centroid: np.ndarray
    members: list[str]
    topic: str = ""
    keywords: list[str] = field(default_factory=list)


@dataclass
class RecentActivity:
    """Activity counters since the engine started."""

    created: int = 0
    accessed: int = 0
    updated: int = 0


@dataclass
class MemoryStats:
    """Snapshot of engine statistics."""

    total_entries: int
    entries_by_type: dict[str, int]
    average_importance: float
    most_accessed_entries: list[str]
    recent_activity: RecentActivity
    storage_size: int
    index_size: int
    last_optimized: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "entries_by_type": dict(self.entries_by_type),
            "average_importance": self.average_importance,
            "most_accessed_entries": list(self.most_accessed_entries),
            "recent_activity": {
                "created": self.recent_activity.created,
                "accessed": self.recent_activity.accessed,
                "updated": self.recent_activity.updated,
            },
            "storage_size": self.storage_size,
            "index_size": self.index_size,
            "last_optimized": self.last_optimized.isoformat() if self.last_optimized else None,
        }


# ========== External record shapes (ingestion helpers) ==========


@dataclass
class FunctionInfo:
    """A function found by code analysis."""

    name: str
    purpose: str = ""


@dataclass
class ClassInfo:
    """A class found by code analysis."""

    name: str
    purpose: str = ""


@dataclass
class CodeContext:
    """Result of analysing one source file."""

    file_path: str
    language: str
    purpose: str
    framework: str | None = None
    dependencies: list[str] = field(default_factory=list)
    functions: list[FunctionInfo] = field(default_factory=list)
    classes: list[ClassInfo] = field(default_factory=list)


@dataclass
class ConversationContext:
    """One conversation turn with its extracted context."""

    chat_id: str
    role: str
    content: str
    intent: str = ""
    project_id: str | None = None
    entities: list[ExtractedEntity] = field(default_factory=list)
    code_context: list[CodeContext] = field(default_factory=list)
    file_paths: list[str] = field(default_factory=list)


@dataclass
class ResearchFinding:
    """A single finding from a research pass."""

    type: str  # fact, pattern, best-practice, anti-pattern, recommendation
    content: str
    confidence: float = 0.5


@dataclass
class ResearchContext:
    """A research synthesis over several findings."""

    query: str
    domain: str
    synthesis: str
    confidence: float
    findings: list[ResearchFinding] = field(default_factory=list)
