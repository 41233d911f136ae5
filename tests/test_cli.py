"""Integration tests for CLI commands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from hybridgraph import __version__
from hybridgraph.cli import app
from hybridgraph.models import CallEdge, CorpusSnapshot, FileRecord, ImportEdge, SymbolKind, SymbolRecord

runner = CliRunner()


@pytest.fixture
def snapshot_file(temp_dir: Path) -> Path:
    """Extractor snapshot whose file paths point at real files in temp_dir."""
    src = temp_dir / "src"
    src.mkdir()
    auth = src / "auth.py"
    users = src / "users.py"
    auth.write_text("def login(): ...\ndef logout(): ...\n", encoding="utf-8")
    users.write_text("def fetchUser(): ...\n", encoding="utf-8")

    corpus = CorpusSnapshot(
        symbols=[
            SymbolRecord("login", SymbolKind.FUNCTION, str(auth), 1, "def login()"),
            SymbolRecord("logout", SymbolKind.FUNCTION, str(auth), 2, "def logout()"),
            SymbolRecord("fetchUser", SymbolKind.FUNCTION, str(users), 1, "def fetchUser()"),
        ],
        files=[FileRecord(str(auth), "python", 40, 2), FileRecord(str(users), "python", 20, 1)],
        imports=[ImportEdge(str(auth), str(users), ("fetchUser",))],
        calls=[CallEdge("login", "fetchUser", "fetchUser")],
    )
    path = temp_dir / "snapshot.json"
    path.write_text(json.dumps(corpus.to_dict()), encoding="utf-8")
    return path


@pytest.fixture
def indexed(snapshot_file: Path, temp_project_manager):
    result = runner.invoke(app, ["index", str(snapshot_file), "--name", "Auth"])
    assert result.exit_code == 0, result.stdout
    return snapshot_file


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"HybridGraph v{__version__}" in result.stdout


class TestIndexCommand:
    """Tests for 'hg index'."""

    def test_index_snapshot(self, snapshot_file: Path, temp_project_manager):
        result = runner.invoke(app, ["index", str(snapshot_file), "--name", "Auth"])

        assert result.exit_code == 0
        assert "Indexed" in result.stdout
        assert "Auth" in result.stdout
        assert "Symbols: 3 | Files: 2 | Calls: 1 | Embeddings: 0" in result.stdout
        assert temp_project_manager.get_current_project() == "Auth"

    def test_default_name_from_file(self, snapshot_file: Path, temp_project_manager):
        result = runner.invoke(app, ["index", str(snapshot_file)])
        assert result.exit_code == 0
        assert "snapshot" in temp_project_manager.list_projects()

    def test_hash_embeddings(self, snapshot_file: Path, temp_project_manager):
        result = runner.invoke(app, ["index", str(snapshot_file), "--hash-embeddings"])
        assert result.exit_code == 0
        assert "Embeddings: 5" in result.stdout

    def test_supplied_embeddings(self, snapshot_file: Path, temp_dir: Path, temp_project_manager):
        docs = temp_dir / "vectors.json"
        docs.write_text(json.dumps([
            {"id": "a", "vector": [1.0, 0.0], "metadata": {}},
            {"id": "b", "vector": [0.0, 1.0]},
        ]), encoding="utf-8")

        result = runner.invoke(app, ["index", str(snapshot_file), "--embeddings", str(docs)])
        assert result.exit_code == 0
        assert "Embeddings: 2" in result.stdout

    def test_nonexistent_snapshot(self, temp_project_manager):
        result = runner.invoke(app, ["index", "/nonexistent/snapshot.json"])
        assert result.exit_code != 0

    def test_malformed_snapshot(self, temp_dir: Path, temp_project_manager):
        bad = temp_dir / "bad.json"
        bad.write_text('{"symbols": [{"kind": "Function"}]}', encoding="utf-8")
        result = runner.invoke(app, ["index", str(bad)])
        assert result.exit_code != 0
        assert temp_project_manager.list_projects() == []


class TestSearchCommand:
    """Tests for 'hg search'."""

    def test_search_json(self, indexed):
        result = runner.invoke(app, ["search", "find login", "--json"])

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["results"][0]["symbol"] == "login"
        assert payload["fallback"] is False
        assert payload["intent"]["primaryAction"] == "find"

    def test_search_table(self, indexed):
        result = runner.invoke(app, ["search", "login"])
        assert result.exit_code == 0
        assert "login" in result.stdout

    def test_no_matches(self, indexed):
        result = runner.invoke(app, ["search", "zzzqqq"])
        assert result.exit_code == 0
        assert "No matches found." in result.stdout

    def test_search_without_project(self, temp_project_manager):
        result = runner.invoke(app, ["search", "login"])
        assert result.exit_code != 0

    def test_warns_when_stored_vectors_unused(self, snapshot_file: Path, temp_dir: Path, temp_project_manager):
        docs = temp_dir / "vectors.json"
        docs.write_text(json.dumps([{"id": "a", "vector": [1.0, 0.0]}]), encoding="utf-8")
        runner.invoke(app, ["index", str(snapshot_file), "--embeddings", str(docs)])

        result = runner.invoke(app, ["search", "login"])
        assert result.exit_code == 0
        assert "Stored vectors are not searched" in result.output

    def test_no_warning_with_hash_embedder(self, snapshot_file: Path, temp_project_manager):
        runner.invoke(app, ["index", str(snapshot_file), "--hash-embeddings"])
        result = runner.invoke(app, ["search", "login"])
        assert "Stored vectors" not in result.output

    def test_hash_embedder_restored(self, snapshot_file: Path, temp_project_manager):
        runner.invoke(app, ["index", str(snapshot_file), "--hash-embeddings"])
        result = runner.invoke(app, ["stats", "--json"])
        payload = json.loads(result.stdout)
        assert payload["retrieval"]["semantic_enabled"] is True
        assert payload["retrieval"]["semantic"]["total_documents"] == 5


class TestExplainAndStats:
    """Tests for 'hg explain' and 'hg stats'."""

    def test_explain(self, indexed):
        doc_id = f"{indexed.parent / 'src' / 'auth.py'}:1:login"
        result = runner.invoke(app, ["explain", doc_id, "find login"])
        assert result.exit_code == 0
        assert "BM25 Score Breakdown" in result.stdout
        assert "Hybrid Score" in result.stdout

    def test_stats_json(self, indexed):
        result = runner.invoke(app, ["stats", "--json"])
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["ready"] is True
        assert payload["corpus"]["symbols"] == 3
        assert payload["tracked_files"] == 2

    def test_stats_table(self, indexed):
        result = runner.invoke(app, ["stats"])
        assert result.exit_code == 0
        assert "Tracked files" in result.stdout


class TestChangesCommand:
    """Tests for 'hg changes'."""

    def test_no_changes(self, indexed):
        result = runner.invoke(app, ["changes"])
        assert result.exit_code == 0
        assert "No changes detected." in result.stdout

    def test_modified_and_deleted(self, indexed):
        auth = indexed.parent / "src" / "auth.py"
        users = indexed.parent / "src" / "users.py"
        auth.write_text("def login(): return 1\n", encoding="utf-8")
        users.unlink()

        result = runner.invoke(app, ["changes", "--json"])
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["modified"] == [str(auth)]
        assert payload["deleted"] == [str(users)]

    def test_new_file_under_root(self, indexed):
        root = indexed.parent / "src"
        (root / "session.py").write_text("x = 1\n", encoding="utf-8")

        result = runner.invoke(app, ["changes", "--root", str(root), "--json"])
        payload = json.loads(result.stdout)
        assert str((root / "session.py").resolve()) in payload["added"]


class TestProjectCommands:
    """Tests for project memory management."""

    def test_list_empty(self, temp_project_manager):
        result = runner.invoke(app, ["list-projects"])
        assert result.exit_code == 0
        assert "No projects" in result.stdout

    def test_list_marks_current(self, indexed):
        result = runner.invoke(app, ["list-projects"])
        assert "* Auth" in result.stdout

    def test_load_unload_current(self, indexed):
        assert runner.invoke(app, ["unload-project"]).exit_code == 0
        assert "No project loaded" in runner.invoke(app, ["current-project"]).stdout

        result = runner.invoke(app, ["load-project", "Auth"])
        assert result.exit_code == 0
        assert "Auth" in runner.invoke(app, ["current-project"]).stdout

    def test_load_missing_project(self, temp_project_manager):
        result = runner.invoke(app, ["load-project", "Nope"])
        assert result.exit_code != 0

    def test_delete_project(self, indexed, temp_project_manager):
        result = runner.invoke(app, ["delete-project", "Auth"])
        assert result.exit_code == 0
        assert temp_project_manager.list_projects() == []
        assert runner.invoke(app, ["delete-project", "Auth"]).exit_code != 0


class TestConfigCommands:
    """Tests for 'hg set-config' and 'hg show-config'."""

    def test_set_and_show(self, temp_project_manager):
        result = runner.invoke(app, ["set-config", "query.top_k", "5"])
        assert result.exit_code == 0
        assert "Set query.top_k = 5" in result.stdout

        shown = runner.invoke(app, ["show-config"])
        assert shown.exit_code == 0
        assert "top_k" in shown.stdout

    def test_bad_key(self, temp_project_manager):
        assert runner.invoke(app, ["set-config", "querytopk", "5"]).exit_code != 0
        assert runner.invoke(app, ["set-config", "query.colour", "blue"]).exit_code != 0
