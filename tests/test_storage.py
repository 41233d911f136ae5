"""Tests for storage layer (ProjectManager and IndexStore)."""

from pathlib import Path

import pytest

from hybridgraph.models import CorpusSnapshot, EmbeddedDocument, FileHashRecord, ImportEdge, SymbolKind
from hybridgraph.storage import IndexStore, ProjectManager


class TestProjectManager:
    """Tests for ProjectManager."""

    def test_create_project(self, temp_project_manager: ProjectManager):
        """Test creating a new project."""
        pm = temp_project_manager
        project_dir = pm.create_or_get_project("TestProject")

        assert project_dir.exists()
        assert project_dir.is_dir()
        assert "TestProject" in pm.list_projects()

    def test_list_projects(self, temp_project_manager: ProjectManager):
        """Test listing projects."""
        pm = temp_project_manager

        # Initially empty
        assert pm.list_projects() == []

        pm.create_or_get_project("Project2")
        pm.create_or_get_project("Project1")

        assert pm.list_projects() == ["Project1", "Project2"]

    def test_set_and_get_current_project(self, temp_project_manager: ProjectManager):
        """Test setting and getting current project."""
        pm = temp_project_manager
        pm.create_or_get_project("MyProject")

        pm.set_current_project("MyProject")
        assert pm.get_current_project() == "MyProject"

    def test_unload_project(self, temp_project_manager: ProjectManager):
        """Test unloading current project."""
        pm = temp_project_manager
        pm.set_current_project("MyProject")

        pm.unload_project()
        assert pm.get_current_project() is None

    def test_delete_project(self, temp_project_manager: ProjectManager):
        """Deleting the current project also unloads it."""
        pm = temp_project_manager
        project_dir = pm.create_or_get_project("ToDelete")
        with IndexStore(project_dir) as store:
            store.set_metadata({"source": "snapshot.json"})
        pm.set_current_project("ToDelete")

        assert pm.delete_project("ToDelete") is True
        assert "ToDelete" not in pm.list_projects()
        assert pm.get_current_project() is None

    def test_delete_nonexistent_project(self, temp_project_manager: ProjectManager):
        """Test deleting a project that doesn't exist."""
        assert temp_project_manager.delete_project("DoesNotExist") is False

    def test_corrupt_state_file(self, temp_project_manager: ProjectManager, temp_dir: Path):
        (temp_dir / "state.json").write_text("{not json", encoding="utf-8")
        assert temp_project_manager.get_current_project() is None


class TestIndexStore:
    """Tests for IndexStore."""

    def test_empty_store(self, temp_index_store: IndexStore):
        assert not temp_index_store.has_snapshot()
        assert temp_index_store.load_snapshot().is_empty
        assert temp_index_store.load_file_hashes() == {}
        assert temp_index_store.load_embeddings() == []
        assert temp_index_store.get_metadata() == {}

    def test_snapshot_round_trip_keeps_order(self, temp_index_store: IndexStore, auth_corpus, symbol_factory):
        corpus = CorpusSnapshot(
            symbols=auth_corpus.symbols + [symbol_factory("Session", "src/auth.py", 1, kind=SymbolKind.CLASS)],
            files=auth_corpus.files,
            imports=auth_corpus.imports + [ImportEdge("src/users.py", None, ("os",))],
            calls=auth_corpus.calls,
        )
        temp_index_store.save_snapshot(corpus)

        loaded = temp_index_store.load_snapshot()
        assert temp_index_store.has_snapshot()
        assert loaded == corpus
        assert [s.name for s in loaded.symbols] == ["login", "logout", "fetchUser", "Session"]
        assert loaded.symbols[3].kind == SymbolKind.CLASS
        assert loaded.imports[1].to_file is None

    def test_call_sources_round_trip(self, temp_index_store: IndexStore, auth_corpus):
        corpus = CorpusSnapshot(
            symbols=auth_corpus.symbols,
            files=auth_corpus.files,
            calls=auth_corpus.calls,
            call_sources={"src/auth.py": list(auth_corpus.calls)},
        )
        temp_index_store.save_snapshot(corpus)

        loaded = temp_index_store.load_snapshot()
        assert loaded.call_sources == {"src/auth.py": auth_corpus.calls}
        assert loaded == corpus

    def test_save_replaces_previous_snapshot(self, temp_index_store: IndexStore, auth_corpus, symbol_factory):
        temp_index_store.save_snapshot(auth_corpus)
        temp_index_store.save_snapshot(CorpusSnapshot(symbols=[symbol_factory("only")]))

        loaded = temp_index_store.load_snapshot()
        assert [s.name for s in loaded.symbols] == ["only"]
        assert loaded.files == []
        assert loaded.calls == []

    def test_file_hashes(self, temp_index_store: IndexStore):
        temp_index_store.save_file_hashes({"b.py": "2", "a.py": "1"})
        temp_index_store.save_file_hashes({"c.py": "3"})
        assert temp_index_store.load_file_hashes() == {"c.py": "3"}

    def test_hash_records(self, temp_index_store: IndexStore):
        temp_index_store.save_hash_records([FileHashRecord("z.py", "9"), FileHashRecord("m.py", "4")])
        assert temp_index_store.load_hash_records() == [FileHashRecord("m.py", "4"), FileHashRecord("z.py", "9")]
        assert temp_index_store.load_file_hashes() == {"m.py": "4", "z.py": "9"}

    def test_embeddings(self, temp_index_store: IndexStore):
        docs = [
            EmbeddedDocument("file:src/auth.py", [0.0, 1.0], {"type": "file"}),
            EmbeddedDocument("src/auth.py:10:login", [0.5, 0.5], {"symbol": "login"}),
        ]
        temp_index_store.save_embeddings(docs)

        loaded = temp_index_store.load_embeddings()
        assert [d.id for d in loaded] == ["file:src/auth.py", "src/auth.py:10:login"]
        assert loaded[1].vector == [0.5, 0.5]
        assert loaded[0].metadata == {"type": "file"}

    def test_clear(self, temp_index_store: IndexStore, auth_corpus):
        temp_index_store.save_snapshot(auth_corpus)
        temp_index_store.save_file_hashes({"a.py": "1"})
        temp_index_store.clear()
        assert not temp_index_store.has_snapshot()
        assert temp_index_store.load_file_hashes() == {}

    def test_metadata_and_reopen(self, temp_dir: Path, auth_corpus):
        project_dir = temp_dir / "reopen"
        project_dir.mkdir()
        with IndexStore(project_dir) as store:
            store.save_snapshot(auth_corpus)
            store.set_metadata({"embedder": "hash", "embedding_dim": 64})

        with IndexStore(project_dir) as store:
            assert store.load_snapshot() == auth_corpus
            assert store.get_metadata()["embedding_dim"] == 64
