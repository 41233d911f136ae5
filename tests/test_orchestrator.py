"""Tests for the query pipeline and index lifecycle."""

import threading

import pytest

from hybridgraph.config_manager import QuerySettings, Settings
from hybridgraph.embeddings import HashEmbeddingModel, build_embeddings
from hybridgraph.errors import HybridGraphError, IndexingCancelledError, IndexNotReadyError
from hybridgraph.incremental import ChangeDebouncer
from hybridgraph.orchestrator import Orchestrator


@pytest.fixture
def orchestrator(auth_corpus) -> Orchestrator:
    orch = Orchestrator()
    orch.index(auth_corpus)
    return orch


@pytest.fixture
def tracked(fake_hasher, fake_extractor, extraction_factory):
    """Orchestrator indexed from two fake files with hashes tracked."""
    fake_hasher.write("src/a.py", "v1")
    fake_hasher.write("src/b.py", "v1")
    fake_extractor.extractions["src/a.py"] = extraction_factory("src/a.py", ["parseConfig"], [("parseConfig", "loadFile")])
    fake_extractor.extractions["src/b.py"] = extraction_factory("src/b.py", ["loadFile"])
    orch = Orchestrator()
    report = orch.index_files(["src/a.py", "src/b.py"], fake_extractor, hasher=fake_hasher)
    return orch, report


class TestLifecycle:
    """Tests for readiness and index publication."""

    def test_query_before_index(self):
        orch = Orchestrator()
        assert not orch.is_ready()
        assert orch.corpus is None
        with pytest.raises(IndexNotReadyError):
            orch.query("find login")
        with pytest.raises(IndexNotReadyError):
            orch.index_embeddings([])
        with pytest.raises(IndexNotReadyError):
            orch.apply_changes(["a.py"])
        assert orch.get_stats() == {"ready": False, "tracked_files": 0}

    def test_not_ready_is_an_engine_error(self):
        with pytest.raises(HybridGraphError):
            Orchestrator().explain("x", "y")

    def test_index_embeds_with_injected_embedder(self, auth_corpus):
        orch = Orchestrator(embedder=HashEmbeddingModel(dim=16))
        orch.index(auth_corpus)
        ids = [d.id for d in orch.embeddings()]
        assert ids == [s.id for s in auth_corpus.symbols] + ["file:src/auth.py", "file:src/users.py"]

    def test_index_without_embedder_has_no_vectors(self, orchestrator):
        assert orchestrator.embeddings() == []
        assert orchestrator.is_ready()

    def test_index_embeddings_replaces_vectors(self, orchestrator, auth_corpus):
        orchestrator.index_embeddings(build_embeddings(auth_corpus, HashEmbeddingModel(dim=8)))
        assert len(orchestrator.embeddings()) == 5
        assert orchestrator.corpus is not None
        assert len(orchestrator.corpus.symbols) == 3

    def test_get_stats(self, orchestrator):
        stats = orchestrator.get_stats()
        assert stats["ready"] is True
        assert stats["corpus"] == {"symbols": 3, "files": 2, "imports": 1, "calls": 1}
        assert stats["graph"]["total_call_edges"] == 1
        assert stats["retrieval"]["semantic_enabled"] is False
        assert stats["tracked_files"] == 0


class TestQuery:
    """Tests for Orchestrator.query()."""

    def test_find_login(self, orchestrator):
        context = orchestrator.query("find login")

        assert not context.fallback
        assert context.intent.primary_action == "find"
        assert context.total_results == 1
        top = context.results[0]
        assert top.symbol == "login"
        assert top.file == "src/auth.py"
        assert top.line == 10
        assert top.explanation.matched_terms == ["login"]
        assert top.explanation.graph_relationships == ["login -> fetchUser"]
        assert top.explanation.semantic_score == 0.0

    def test_final_score_mixes_hybrid_and_graph(self, orchestrator):
        top = orchestrator.query("find login").results[0]
        hybrid = 0.4 * top.explanation.lexical_score
        assert top.relevance_score == pytest.approx(0.4 * hybrid + 0.6 * top.explanation.graph_score)
        assert 0.0 <= top.relevance_score <= 1.0

    def test_connectivity_breaks_text_tie(self, connectivity_corpus):
        orch = Orchestrator()
        orch.index(connectivity_corpus)

        results = orch.query("handler").results
        assert [r.symbol for r in results][:2] == ["alpha_handler", "beta_handler"]
        assert results[0].explanation.lexical_score == pytest.approx(results[1].explanation.lexical_score)
        assert results[0].explanation.graph_score > results[1].explanation.graph_score

    def test_deterministic_across_reindex(self, orchestrator, auth_corpus):
        """Re-indexing an identical corpus gives identical rankings and scores."""
        first = [(r.document_id, r.relevance_score) for r in orchestrator.query("src auth login").results]
        orchestrator.index(auth_corpus)
        second = [(r.document_id, r.relevance_score) for r in orchestrator.query("src auth login").results]
        assert first == second

    def test_empty_query(self, orchestrator):
        context = orchestrator.query("   ")
        assert context.results == []
        assert context.intent.primary_action == "find"

    def test_top_k(self, orchestrator):
        assert len(orchestrator.query("src", top_k=1).results) == 1

    def test_settings_top_k_and_relationships(self, auth_corpus):
        settings = Settings(query=QuerySettings(top_k=1, max_relationships=0))
        orch = Orchestrator(settings=settings)
        orch.index(auth_corpus)
        results = orch.query("src").results
        assert len(results) == 1
        assert results[0].explanation.graph_relationships == []

    def test_to_dict(self, orchestrator):
        payload = orchestrator.query("find login").to_dict()
        assert payload["query"] == "find login"
        assert payload["totalResults"] == 1
        assert payload["intent"]["entities"] == ["login"]
        assert payload["results"][0]["explanation"]["matchedTerms"] == ["login"]
        assert payload["fallback"] is False

    def test_with_embedder(self, auth_corpus):
        orch = Orchestrator(embedder=HashEmbeddingModel())
        orch.index(auth_corpus)
        results = orch.query("fetch user").results
        assert results
        assert all(0.0 <= r.relevance_score <= 1.0 for r in results)


class TestFallback:
    """Tests for Orchestrator.query_with_fallback()."""

    def test_no_index_returns_empty_fallback(self):
        context = Orchestrator().query_with_fallback("find login")
        assert context.fallback is True
        assert context.results == []

    def test_fuzzy_search_over_corpus(self, orchestrator, monkeypatch):
        def broken(text, top_k=None):
            raise HybridGraphError("index corrupted")

        monkeypatch.setattr(orchestrator, "query", broken)
        context = orchestrator.query_with_fallback("find login")

        assert context.fallback is True
        assert context.intent.primary_action == "search"
        assert context.intent.entities == ["login"]
        assert context.results[0].symbol == "login"
        assert context.results[0].relevance_score == pytest.approx(1.0)
        scores = [r.relevance_score for r in context.results]
        assert scores == sorted(scores, reverse=True)

    def test_healthy_query_is_not_fallback(self, orchestrator):
        assert orchestrator.query_with_fallback("find login").fallback is False


class TestIndexFiles:
    """Tests for extraction-driven indexing and incremental changes."""

    def test_index_files(self, tracked, fake_hasher):
        orch, report = tracked
        assert report.successful_files == 2
        assert [s.name for s in orch.corpus.symbols] == ["parseConfig", "loadFile"]
        assert orch.get_file_hashes() == {
            "src/a.py": fake_hasher.digest("src/a.py"),
            "src/b.py": fake_hasher.digest("src/b.py"),
        }
        assert orch.query("parseConfig").results[0].symbol == "parseConfig"

    def test_cancelled_index_keeps_previous_state(self, orchestrator, fake_hasher, fake_extractor):
        fake_hasher.write("src/x.py", "x")
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(IndexingCancelledError):
            orchestrator.index_files(["src/x.py"], fake_extractor, cancel=cancel, hasher=fake_hasher)
        assert len(orchestrator.corpus.symbols) == 3

    def test_apply_changes_reindexes(self, tracked, fake_hasher, fake_extractor, extraction_factory):
        orch, _ = tracked
        fake_hasher.write("src/b.py", "v2")
        fake_extractor.extractions["src/b.py"] = extraction_factory("src/b.py", ["readFile"])

        changes = orch.apply_changes(["src/a.py", "src/b.py"])

        assert changes.modified == ["src/b.py"]
        assert sorted(s.name for s in orch.corpus.symbols) == ["parseConfig", "readFile"]
        assert orch.query("readFile").results[0].symbol == "readFile"
        assert orch.get_file_hashes()["src/b.py"] == fake_hasher.digest("src/b.py")

    def test_no_changes_keeps_generation(self, tracked):
        orch, _ = tracked
        corpus = orch.corpus
        changes = orch.apply_changes(["src/a.py", "src/b.py"])
        assert changes.is_empty
        assert orch.corpus is corpus

    def test_errors_merged_into_change_set(self, tracked, fake_hasher, fake_extractor):
        orch, _ = tracked
        fake_hasher.write("src/a.py", "v2")
        fake_extractor.failing.add("src/a.py")
        changes = orch.apply_changes(["src/a.py", "src/b.py"])
        assert [(e.file, e.phase) for e in changes.errors] == [("src/a.py", "parsing")]

    def test_deleted_file_drops_carried_embeddings(self, tracked, fake_hasher):
        orch, _ = tracked
        orch.index_embeddings(build_embeddings(orch.corpus, HashEmbeddingModel(dim=8)))
        assert len(orch.embeddings()) == 4

        fake_hasher.remove("src/b.py")
        changes = orch.apply_changes(["src/a.py"])

        assert changes.deleted == ["src/b.py"]
        assert [d.id for d in orch.embeddings()] == ["src/a.py:1:parseConfig", "file:src/a.py"]

    def test_apply_changes_needs_updater(self, orchestrator):
        with pytest.raises(IndexNotReadyError):
            orchestrator.apply_changes(["src/auth.py"])

    def test_watch_flushes_into_apply_changes(self, tracked, fake_hasher, fake_extractor, extraction_factory):
        orch, _ = tracked
        debouncer = orch.watch(window=60)
        assert isinstance(debouncer, ChangeDebouncer)

        fake_hasher.write("src/c.py", "new")
        fake_extractor.extractions["src/c.py"] = extraction_factory("src/c.py", ["writeFile"])
        debouncer.notify(["src/c.py"])
        debouncer.notify(["src/c.py"])
        debouncer.flush()

        assert "writeFile" in [s.name for s in orch.corpus.symbols]


class TestExplain:
    """Tests for Orchestrator.explain()."""

    def test_combines_all_signals(self, orchestrator):
        text = orchestrator.explain("src/auth.py:10:login", "find login")
        assert "BM25 Score Breakdown" in text
        assert "Hybrid Score" in text
        assert "Graph login overall" in text

    def test_unknown_document(self, orchestrator):
        text = orchestrator.explain("nope", "find login")
        assert "Document nope not found" in text
