"""Query execution: text scoring, semantic scoring, filters, ranking and
relation expansion.

Every query is a full scan over the entry table; bucket indexes are never
used to prune candidates before scoring.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

from semantic_memory.config import Settings, get_settings
from semantic_memory.embeddings import EmbeddingEngine
from semantic_memory.index import IndexStore
from semantic_memory.logging import get_logger
from semantic_memory.models import (
    MatchType,
    MemoryEntry,
    MemoryQuery,
    MemorySearchResult,
    utcnow,
)

log = get_logger("query")

CONTENT_MATCH_SCORE = 1.0
METADATA_MATCH_SCORE = 0.5
TAG_MATCH_SCORE = 0.8


def _without_nulls(value: Any) -> Any:
    """Drop unset fields so their names are not matchable text."""
    if isinstance(value, dict):
        return {k: _without_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_without_nulls(v) for v in value]
    return value


def score_text(entry: MemoryEntry, terms: list[str]) -> tuple[float, list[str]]:
    """Substring-match score of ``terms`` against one entry.

    Each term scores for a content match and separately for a match in the
    serialized metadata (unset fields omitted); each tag containing any term
    scores once. The total is divided by the number of terms.

    Returns:
        (normalized score, highlighted terms and tags)
    """
    content = entry.content.lower()
    metadata = json.dumps(_without_nulls(entry.metadata.to_dict())).lower()

    score = 0.0
    highlights: list[str] = []
    for term in terms:
        if term in content:
            score += CONTENT_MATCH_SCORE
            highlights.append(term)
        if term in metadata:
            score += METADATA_MATCH_SCORE

    for tag in entry.tags:
        tag_lower = tag.lower()
        if any(term in tag_lower for term in terms):
            score += TAG_MATCH_SCORE
            highlights.append(tag)

    return score / len(terms), highlights


def matches_filters(entry: MemoryEntry, query: MemoryQuery) -> bool:
    """True when the entry passes every filter set on the query."""
    if query.kind is not None and entry.kind != query.kind:
        return False
    if query.tags and not any(tag in entry.tags for tag in query.tags):
        return False
    if query.project_id and entry.metadata.project_id != query.project_id:
        return False
    if query.time_range is not None and not query.time_range.contains(entry.created_at):
        return False
    if query.min_importance is not None and entry.importance < query.min_importance:
        return False
    if query.entities:
        names = {e.name for e in entry.metadata.entities}
        keys = {e.key for e in entry.metadata.entities}
        if not any(wanted in names or wanted in keys for wanted in query.entities):
            return False
    if query.keywords and not any(kw in entry.metadata.keywords for kw in query.keywords):
        return False
    return True


class QueryEngine:
    """Runs MemoryQuery objects against an IndexStore.

    Results that match both by text and by embedding appear twice, once
    per match type; access statistics are still bumped once per entry.
    """

    def __init__(
        self,
        index: IndexStore,
        embeddings: EmbeddingEngine,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.index = index
        self.embeddings = embeddings
        self.settings = settings or get_settings()
        self._clock = clock

    def search(self, query: MemoryQuery) -> list[MemorySearchResult]:
        """Score, merge, filter, rank, truncate, expand, then record access."""
        terms = query.text.lower().split() if query.text else []

        results: list[MemorySearchResult] = []
        if terms:
            results.extend(self._text_search(terms))
            if query.semantic_search:
                results.extend(self._semantic_search(query.text))
        else:
            results.extend(self._filter_only())

        results = [r for r in results if matches_filters(r.entry, query)]
        results.sort(key=lambda r: r.rank_score, reverse=True)
        results = results[: query.max_results or self.settings.default_max_results]

        if query.include_related:
            results.extend(self._expand_related(results))

        self._record_access(results)
        log.debug("Query {!r} returned {} results", query.text, len(results))
        return results

    def _text_search(self, terms: list[str]) -> list[MemorySearchResult]:
        results = []
        for entry in self.index:
            score, highlights = score_text(entry, terms)
            if score > 0:
                results.append(
                    MemorySearchResult(
                        entry=entry,
                        score=score,
                        relevance=score,
                        match_type=MatchType.EXACT,
                        highlights=highlights,
                    )
                )
        return results

    def _semantic_search(self, text: str) -> list[MemorySearchResult]:
        query_embedding = self.embeddings.embed(text)
        threshold = self.index.similarity_threshold
        results = []
        for memory_id, similarity in self.embeddings.find_similar(
            query_embedding, self.index.embeddings(), threshold
        ):
            entry = self.index.get(memory_id)
            if entry is None:
                continue
            results.append(
                MemorySearchResult(
                    entry=entry,
                    score=similarity,
                    relevance=similarity,
                    match_type=MatchType.SEMANTIC,
                )
            )
        return results

    def _filter_only(self) -> list[MemorySearchResult]:
        # Newest first so equal-importance ties favour recent memories
        return [
            MemorySearchResult(entry=entry, score=1.0, relevance=1.0, match_type=MatchType.TEMPORAL)
            for entry in reversed(self.index.entries())
        ]

    def _expand_related(self, results: list[MemorySearchResult]) -> list[MemorySearchResult]:
        factor = self.settings.related_score_factor
        seen = {r.entry.id for r in results}
        related = []
        for result in results:
            for related_id in result.entry.related_entries:
                if related_id in seen:
                    continue
                entry = self.index.get(related_id)
                if entry is None:
                    log.warning("Skipping stale related id {}", related_id)
                    continue
                related.append(
                    MemorySearchResult(
                        entry=entry,
                        score=result.score * factor,
                        relevance=result.relevance * factor,
                        match_type=MatchType.RELATED,
                    )
                )
                seen.add(related_id)
        return related

    def _record_access(self, results: list[MemorySearchResult]) -> None:
        now = self._clock()
        touched: set[str] = set()
        for result in results:
            if result.entry.id in touched:
                continue
            touched.add(result.entry.id)
            result.entry.access_count += 1
            result.entry.last_accessed = now
