"""CLI commands for semantic-memory.

Every command opens the configured store, loads it, runs, and closes it.
"""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import click

from semantic_memory.config import get_settings
from semantic_memory.errors import PersistenceError, ValidationError
from semantic_memory.logging import configure_logging
from semantic_memory.manager import MemoryManager, create_manager
from semantic_memory.models import MemoryEntry, MemoryKind, MemoryQuery, TimeRange

KIND_CHOICES = [k.value for k in MemoryKind]


def _open() -> MemoryManager:
    settings = get_settings()
    configure_logging(level=settings.log_level, log_format=settings.log_format)
    return create_manager(settings)


def _entry_summary(entry: MemoryEntry) -> dict:
    return {
        "id": entry.id,
        "kind": entry.kind.value,
        "content": entry.content,
        "importance": entry.importance,
        "tags": entry.tags,
        "related_entries": entry.related_entries,
        "access_count": entry.access_count,
        "created_at": entry.created_at.isoformat(),
    }


def _parse_date(value: str | None, end: bool = False) -> datetime | None:
    if value is None:
        return None
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"{value!r} is not an ISO date") from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if end and len(value) == 10:
        moment = moment.replace(hour=23, minute=59, second=59, microsecond=999999)
    return moment


@click.group()
@click.option("--json", "use_json", is_flag=True, help="Output in JSON format")
@click.pass_context
def cli(ctx: click.Context, use_json: bool) -> None:
    """CLI commands for semantic-memory."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = use_json


@cli.command("store")
@click.argument("content", required=False)
@click.option(
    "-k", "--kind", default="context", type=click.Choice(KIND_CHOICES), help="Memory kind"
)
@click.option("-i", "--importance", type=float, default=None, help="Importance (0-1)")
@click.option("-p", "--project", "project_id", help="Project identifier")
@click.option("--keyword", "keywords", multiple=True, help="Extra keywords (repeatable)")
@click.option(
    "-f", "--file", "filepath", type=click.Path(exists=True), help="Read content from file"
)
@click.pass_context
def store(
    ctx: click.Context,
    content: str | None,
    kind: str,
    importance: float | None,
    project_id: str | None,
    keywords: tuple[str, ...],
    filepath: str | None,
) -> None:
    """Store a memory (content from argument, file or stdin)."""
    use_json = ctx.obj["json"]
    if filepath:
        content = Path(filepath).read_text(encoding="utf-8")
    elif content is None:
        content = sys.stdin.read()

    overrides = {"project_id": project_id, "keywords": list(keywords)}
    manager = _open()
    try:
        entry = manager.store(kind, content, overrides, importance)
    except ValidationError as e:
        click.echo(f"Invalid input: {e}", err=True)
        raise SystemExit(1)
    except PersistenceError as e:
        click.echo(f"Stored in memory but not persisted: {e}", err=True)
        raise SystemExit(1)
    finally:
        manager.close()

    if use_json:
        click.echo(json.dumps({"success": True, "memory": _entry_summary(entry)}))
    else:
        click.echo(f"Stored {entry.kind.value} memory (id={entry.id})")
        if entry.related_entries:
            click.echo(f"Related: {', '.join(entry.related_entries)}")


@cli.command("get")
@click.argument("memory_id")
@click.pass_context
def get(ctx: click.Context, memory_id: str) -> None:
    """Show one memory."""
    use_json = ctx.obj["json"]
    manager = _open()
    try:
        entry = manager.get(memory_id)
        if entry is not None:
            manager.save([entry.id])
    except PersistenceError as e:
        click.echo(f"Access count not saved: {e}", err=True)
        raise SystemExit(1)
    finally:
        manager.close()

    if entry is None:
        click.echo(f"Memory not found: {memory_id}", err=True)
        raise SystemExit(1)
    if use_json:
        click.echo(json.dumps(_entry_summary(entry)))
    else:
        click.echo(f"[{entry.kind.value}] {entry.id} (importance={entry.importance:.2f})")
        click.echo(entry.content)
        if entry.tags:
            click.echo(f"Tags: {', '.join(entry.tags)}")


@cli.command("search")
@click.argument("text", required=False)
@click.option("-k", "--kind", type=click.Choice(KIND_CHOICES), help="Filter by kind")
@click.option("-t", "--tag", "tags", multiple=True, help="Filter by tag (any matches)")
@click.option("-p", "--project", "project_id", help="Filter by project")
@click.option("--entity", "entities", multiple=True, help="Filter by entity name or type:name")
@click.option("--keyword", "keywords", multiple=True, help="Filter by keyword")
@click.option("--since", help="Created on or after (ISO date)")
@click.option("--until", help="Created on or before (ISO date)")
@click.option("--min-importance", type=float, help="Minimum importance")
@click.option("-n", "--limit", type=int, help="Maximum results")
@click.option("--semantic/--no-semantic", default=False, help="Include embedding matches")
@click.option("--related/--no-related", default=False, help="Expand through related memories")
@click.pass_context
def search(
    ctx: click.Context,
    text: str | None,
    kind: str | None,
    tags: tuple[str, ...],
    project_id: str | None,
    entities: tuple[str, ...],
    keywords: tuple[str, ...],
    since: str | None,
    until: str | None,
    min_importance: float | None,
    limit: int | None,
    semantic: bool,
    related: bool,
) -> None:
    """Search memories by text and filters."""
    use_json = ctx.obj["json"]
    time_range = None
    if since or until:
        time_range = TimeRange(
            start=_parse_date(since) or datetime.min.replace(tzinfo=timezone.utc),
            end=_parse_date(until, end=True) or datetime.max.replace(tzinfo=timezone.utc),
        )

    query = MemoryQuery(
        text=text,
        kind=MemoryKind(kind) if kind else None,
        tags=list(tags) or None,
        project_id=project_id,
        time_range=time_range,
        entities=list(entities) or None,
        keywords=list(keywords) or None,
        min_importance=min_importance,
        max_results=limit,
        include_related=related,
        semantic_search=semantic,
    )

    manager = _open()
    try:
        results = manager.search(query)
        manager.save({r.entry.id for r in results})
    except PersistenceError as e:
        click.echo(f"Access counts not saved: {e}", err=True)
        raise SystemExit(1)
    finally:
        manager.close()

    if use_json:
        click.echo(
            json.dumps(
                [
                    {
                        "memory": _entry_summary(r.entry),
                        "score": r.score,
                        "match_type": r.match_type.value,
                        "highlights": r.highlights,
                    }
                    for r in results
                ]
            )
        )
        return

    if not results:
        click.echo("No memories found")
        return
    for r in results:
        click.echo(f"{r.score:.2f} [{r.match_type.value}] {r.entry.id}: {r.entry.content[:80]}")


@cli.command("stats")
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show memory statistics."""
    use_json = ctx.obj["json"]
    manager = _open()
    try:
        result = manager.stats().to_dict()
    finally:
        manager.close()

    if use_json:
        click.echo(json.dumps(result))
    else:
        click.echo(f"Total memories: {result['total_entries']}")
        for kind, count in sorted(result["entries_by_type"].items()):
            click.echo(f"  {kind}: {count}")
        click.echo(f"Average importance: {result['average_importance']:.2f}")
        click.echo(f"Index memberships: {result['index_size']}")


@cli.command("optimize")
@click.pass_context
def optimize(ctx: click.Context) -> None:
    """Evict unimportant, stale, rarely used memories."""
    use_json = ctx.obj["json"]
    manager = _open()
    try:
        removed = manager.optimize()
    except PersistenceError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        manager.close()

    if use_json:
        click.echo(json.dumps({"success": True, "removed": removed}))
    else:
        click.echo(f"Removed {len(removed)} memories")


@cli.command("delete")
@click.argument("memory_id")
@click.pass_context
def delete(ctx: click.Context, memory_id: str) -> None:
    """Delete one memory."""
    use_json = ctx.obj["json"]
    manager = _open()
    try:
        deleted = manager.delete(memory_id)
    except PersistenceError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        manager.close()

    if use_json:
        click.echo(json.dumps({"success": deleted, "id": memory_id}))
    elif deleted:
        click.echo(f"Deleted {memory_id}")
    else:
        click.echo(f"Memory not found: {memory_id}", err=True)
        raise SystemExit(1)


@cli.command("export")
@click.argument("output", type=click.Path(dir_okay=False), required=False)
def export(output: str | None) -> None:
    """Export all memories as JSON (to a file or stdout)."""
    manager = _open()
    try:
        data = manager.export_json()
    finally:
        manager.close()

    if output:
        Path(output).write_text(data, encoding="utf-8")
        click.echo(f"Exported to {output}")
    else:
        click.echo(data)


@cli.command("import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_(ctx: click.Context, source: str) -> None:
    """Import memories from a JSON export."""
    use_json = ctx.obj["json"]
    manager = _open()
    try:
        count = manager.import_json(Path(source).read_text(encoding="utf-8"))
    except PersistenceError as e:
        click.echo(f"Import error: {e}", err=True)
        raise SystemExit(1)
    finally:
        manager.close()

    if use_json:
        click.echo(json.dumps({"success": True, "imported": count}))
    else:
        click.echo(f"Imported {count} memories")


@cli.command("clusters")
@click.option("-k", "--count", type=int, default=None, help="Number of clusters")
@click.pass_context
def clusters(ctx: click.Context, count: int | None) -> None:
    """Group memories by embedding similarity."""
    use_json = ctx.obj["json"]
    manager = _open()
    try:
        groups = manager.recluster(count)
    finally:
        manager.close()

    if use_json:
        click.echo(
            json.dumps(
                [
                    {"id": c.id, "topic": c.topic, "keywords": c.keywords, "members": c.members}
                    for c in groups
                ]
            )
        )
    else:
        for c in groups:
            click.echo(f"{c.id} ({len(c.members)} memories): {c.topic or '-'}")


def main() -> int:
    """Main CLI entry point."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return 1
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1


if __name__ == "__main__":
    sys.exit(main())
