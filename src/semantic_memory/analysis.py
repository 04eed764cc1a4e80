"""Enrichment boundary: the content analyzer protocol and metadata merging.

The engine only consumes analyzer output. ``KeywordAnalyzer`` is a small
default collaborator so the engine is usable on its own; richer analyzers
plug in through ``ContentAnalyzer``.
"""

from __future__ import annotations

import re
from typing import Any, Protocol, runtime_checkable

from semantic_memory.embeddings import STOP_WORDS
from semantic_memory.errors import ValidationError
from semantic_memory.models import (
    CodeReference,
    EntityType,
    ExtractedEntity,
    MemoryMetadata,
    MetadataSource,
)

OVERRIDE_FIELDS = frozenset(MemoryMetadata.__dataclass_fields__)

SUMMARY_LENGTH = 200

_FILE_PATTERN = re.compile(
    r"\b[\w\-./]+\.(?:js|ts|jsx|tsx|py|java|cpp|c|h|php|rb|go|rs|swift|kt|dart|css|scss"
    r"|sass|less|html|xml|json|yaml|yml|md|txt|sql|sh|bat|ps1)\b",
    re.IGNORECASE,
)
_ALPHA = re.compile(r"^[a-zA-Z]+$")


@runtime_checkable
class ContentAnalyzer(Protocol):
    """Extracts structure (entities, keywords, summary) from raw content."""

    def analyze(self, content: str, overrides: dict[str, Any]) -> MemoryMetadata:
        """Return metadata extracted from ``content``."""
        ...


class KeywordAnalyzer:
    """Minimal analyzer: keywords, file references, summary and confidence."""

    def analyze(self, content: str, overrides: dict[str, Any]) -> MemoryMetadata:
        keywords = extract_keywords(content)
        files = list(dict.fromkeys(_FILE_PATTERN.findall(content)))
        entities = [
            ExtractedEntity(type=EntityType.FILE, name=path, context="", confidence=0.9)
            for path in files
        ]
        return MemoryMetadata(
            file_references=files,
            entities=entities,
            summary=summarize(content),
            keywords=keywords,
            confidence=estimate_confidence(content, len(entities), len(keywords)),
        )


def extract_keywords(content: str) -> list[str]:
    """Lower-cased alphabetic words longer than three characters, de-duplicated."""
    words = (
        w
        for w in content.lower().split()
        if len(w) > 3 and w not in STOP_WORDS and _ALPHA.match(w)
    )
    return list(dict.fromkeys(words))


def summarize(content: str, max_length: int = SUMMARY_LENGTH) -> str:
    """Leading slice of the content."""
    content = content.strip()
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


def estimate_confidence(content: str, entity_count: int, keyword_count: int) -> float:
    """Heuristic extraction confidence in [0, 1]."""
    confidence = 0.5
    if len(content) > 100:
        confidence += 0.1
    if len(content) > 500:
        confidence += 0.1
    confidence += min(entity_count * 0.05, 0.2)
    confidence += min(keyword_count * 0.02, 0.1)
    if "`" in content:
        confidence += 0.1
    return min(confidence, 1.0)


def _coerce_entities(values: list[Any]) -> list[ExtractedEntity]:
    return [v if isinstance(v, ExtractedEntity) else ExtractedEntity.from_dict(v) for v in values]


def _coerce_code_refs(values: list[Any]) -> list[CodeReference]:
    return [v if isinstance(v, CodeReference) else CodeReference.from_dict(v) for v in values]


def merge_metadata(
    analyzed: MemoryMetadata | None, overrides: dict[str, Any] | None
) -> MemoryMetadata:
    """Combine analyzer output with caller overrides.

    Override scalars win; override lists come first and analyzer lists are
    appended; keywords are de-duplicated keeping first occurrence. A missing
    analyzer result falls back to the metadata defaults.

    Raises:
        ValidationError: On unknown override fields or bad enum values.
    """
    analyzed = analyzed or MemoryMetadata()
    overrides = dict(overrides or {})
    unknown = set(overrides) - OVERRIDE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown metadata fields: {sorted(unknown)}")

    try:
        source = MetadataSource(overrides["source"]) if overrides.get("source") else analyzed.source
        entities = _coerce_entities(overrides.get("entities") or [])
        code_refs = _coerce_code_refs(overrides.get("code_references") or [])
    except (KeyError, ValueError) as e:
        raise ValidationError(f"Invalid metadata override: {e}") from e

    def scalar(name: str) -> Any:
        value = overrides.get(name)
        return getattr(analyzed, name) if value is None else value

    keywords = [*(overrides.get("keywords") or []), *analyzed.keywords]
    return MemoryMetadata(
        source=source,
        project_id=scalar("project_id"),
        session_id=scalar("session_id"),
        user_id=scalar("user_id"),
        file_references=[*(overrides.get("file_references") or []), *analyzed.file_references],
        code_references=[*code_refs, *analyzed.code_references],
        entities=[*entities, *analyzed.entities],
        summary=overrides.get("summary") or analyzed.summary,
        keywords=list(dict.fromkeys(k for k in keywords if k)),
        confidence=float(scalar("confidence")),
    )
