"""Relation discovery between a new memory and existing ones.

Relations are link discovery, not best-match retrieval: candidates are
taken in scan order and truncated, never ranked.
"""

from collections.abc import Iterable

from semantic_memory.models import MemoryEntry


def find_related(
    entry: MemoryEntry,
    existing: Iterable[MemoryEntry],
    max_related: int = 10,
    keyword_overlap: int = 2,
) -> list[str]:
    """Ids of existing memories related to ``entry``.

    Two passes: first every memory sharing an ``(entity type, name)`` pair,
    then every remaining memory sharing at least ``keyword_overlap``
    keywords. The result is the first ``max_related`` ids found.
    """
    candidates = [other for other in existing if other.id != entry.id]
    entity_pairs = {(e.type, e.name) for e in entry.metadata.entities}
    keywords = set(entry.metadata.keywords)

    related: list[str] = []
    seen: set[str] = set()

    if entity_pairs:
        for other in candidates:
            if any((e.type, e.name) in entity_pairs for e in other.metadata.entities):
                related.append(other.id)
                seen.add(other.id)

    if keywords:
        for other in candidates:
            if other.id in seen:
                continue
            if len(keywords.intersection(other.metadata.keywords)) >= keyword_overlap:
                related.append(other.id)
                seen.add(other.id)

    return related[:max_related]
