"""Tests for CLI commands."""

import json
from unittest.mock import patch

import pytest

from semantic_memory.cli import main


@pytest.fixture
def temp_db(tmp_path):
    """Point the CLI at a temporary database."""
    db_path = tmp_path / "test.db"
    with patch.dict("os.environ", {"SEMANTIC_MEMORY_DB_PATH": str(db_path)}):
        yield db_path


def run(capsys, *args):
    """Run the CLI in JSON mode and return (exit code, parsed stdout)."""
    with patch("sys.argv", ["semantic-memory", "--json", *args]):
        result = main()
    out = capsys.readouterr().out
    return result, json.loads(out) if out.strip() else None


def store(capsys, content, *options):
    result, payload = run(capsys, "store", content, *options)
    assert result == 0
    return payload["memory"]


class TestStoreCommand:
    """Tests for the store command."""

    def test_store(self, temp_db, capsys):
        """Should store a memory and create the database."""
        memory = store(capsys, "Use Postgres for billing", "-k", "decision", "-i", "0.9")
        assert memory["id"].startswith("memory-")
        assert memory["kind"] == "decision"
        assert memory["importance"] == 0.9
        assert temp_db.exists()

    def test_store_with_project_and_keywords(self, temp_db, capsys):
        """Should pass project and keywords through as metadata."""
        memory = store(capsys, "Retry with jitter", "-p", "infra", "--keyword", "backoff")
        assert "backoff" in memory["tags"]

    def test_store_from_file(self, temp_db, tmp_path, capsys):
        """Should read content from a file."""
        source = tmp_path / "note.md"
        source.write_text("Cache invalidation notes for the gateway")
        result, payload = run(capsys, "store", "-f", str(source))
        assert result == 0
        assert payload["memory"]["content"] == "Cache invalidation notes for the gateway"

    def test_invalid_importance(self, temp_db, capsys):
        """Should exit 1 for importance outside [0, 1]."""
        result, _ = run(capsys, "store", "text", "-i", "3")
        assert result == 1

    def test_invalid_kind(self, temp_db, capsys):
        """Should exit 1 for an unknown kind."""
        result, _ = run(capsys, "store", "text", "-k", "diary")
        assert result == 1

    def test_plain_output(self, temp_db, capsys):
        """Should print the new id in plain mode."""
        with patch("sys.argv", ["semantic-memory", "store", "Plain output check"]):
            assert main() == 0
        assert "Stored context memory" in capsys.readouterr().out


class TestGetCommand:
    """Tests for the get command."""

    def test_access_count_survives_restart(self, temp_db, capsys):
        """Should persist the access count across invocations."""
        memory = store(capsys, "Remember this")
        _, first = run(capsys, "get", memory["id"])
        _, second = run(capsys, "get", memory["id"])
        assert first["access_count"] == 1
        assert second["access_count"] == 2

    def test_missing(self, temp_db, capsys):
        """Should exit 1 for an unknown id."""
        result, _ = run(capsys, "get", "memory-0-missing")
        assert result == 1


class TestSearchCommand:
    """Tests for the search command."""

    def test_text_search(self, temp_db, capsys):
        """Should return exact matches and record access."""
        match = store(capsys, "Using react hooks for local state", "-k", "pattern")
        store(capsys, "Vue templates guide", "-k", "pattern")

        result, payload = run(capsys, "search", "react hooks")

        assert result == 0
        assert [r["memory"]["id"] for r in payload] == [match["id"]]
        assert payload[0]["match_type"] == "exact"
        assert payload[0]["memory"]["access_count"] == 1

    def test_filters(self, temp_db, capsys):
        """Should apply kind and project filters."""
        store(capsys, "Auth flow research", "-k", "research", "-p", "web")
        decision = store(capsys, "Auth flow decision", "-k", "decision", "-p", "web")
        _, payload = run(capsys, "search", "auth", "-k", "decision", "-p", "web")
        assert [r["memory"]["id"] for r in payload] == [decision["id"]]

    def test_filter_only(self, temp_db, capsys):
        """Should return temporal matches without query text."""
        store(capsys, "Auth flow research", "-k", "research")
        _, payload = run(capsys, "search", "-k", "research", "--since", "2000-01-01")
        assert [r["match_type"] for r in payload] == ["temporal"]

    def test_malformed_date_rejected(self, temp_db, capsys):
        """Should exit 1 with a usage error for a malformed date."""
        result, payload = run(capsys, "search", "--since", "yesterday")
        assert result == 1
        assert payload is None

    def test_limit(self, temp_db, capsys):
        """Should cap the number of results."""
        for i in range(3):
            store(capsys, f"shared topic {i}")
        _, payload = run(capsys, "search", "shared", "-n", "2")
        assert len(payload) == 2

    def test_no_results_plain(self, temp_db, capsys):
        """Should say so when nothing matches."""
        with patch("sys.argv", ["semantic-memory", "search", "zeppelin"]):
            assert main() == 0
        assert "No memories found" in capsys.readouterr().out


class TestMaintenanceCommands:
    """Tests for stats, optimize, delete and clusters."""

    def test_stats(self, temp_db, capsys):
        """Should report totals by kind."""
        store(capsys, "One", "-k", "decision")
        store(capsys, "Two", "-k", "pattern")
        result, payload = run(capsys, "stats")
        assert result == 0
        assert payload["total_entries"] == 2
        assert payload["entries_by_type"] == {"decision": 1, "pattern": 1}

    def test_optimize_keeps_fresh_memories(self, temp_db, capsys):
        """Should not evict recent memories."""
        store(capsys, "Fresh but unimportant", "-i", "0.1")
        result, payload = run(capsys, "optimize")
        assert result == 0
        assert payload["removed"] == []

    def test_delete(self, temp_db, capsys):
        """Should delete a memory."""
        memory = store(capsys, "Delete me")
        result, payload = run(capsys, "delete", memory["id"])
        assert result == 0
        assert payload == {"success": True, "id": memory["id"]}
        _, stats = run(capsys, "stats")
        assert stats["total_entries"] == 0

    def test_clusters(self, temp_db, capsys):
        """Should group memories into clusters."""
        store(capsys, "Postgres vacuum tuning")
        store(capsys, "React rendering hooks")
        result, payload = run(capsys, "clusters", "-k", "5")
        assert result == 0
        assert sorted(len(c["members"]) for c in payload) == [1, 1]


class TestExportImport:
    """Tests for export and import."""

    def test_export_then_import_elsewhere(self, temp_db, tmp_path, capsys):
        """Should import an export into another database."""
        memory = store(capsys, "Exported memory")
        export_path = tmp_path / "export.json"
        with patch("sys.argv", ["semantic-memory", "export", str(export_path)]):
            assert main() == 0
        capsys.readouterr()

        other_db = tmp_path / "other.db"
        with patch.dict("os.environ", {"SEMANTIC_MEMORY_DB_PATH": str(other_db)}):
            result, payload = run(capsys, "import", str(export_path))
            assert result == 0
            assert payload == {"success": True, "imported": 1}
            _, fetched = run(capsys, "get", memory["id"])
        assert fetched["content"] == "Exported memory"

    def test_import_invalid(self, temp_db, tmp_path, capsys):
        """Should exit 1 for an unreadable export."""
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        result, _ = run(capsys, "import", str(bad))
        assert result == 1
