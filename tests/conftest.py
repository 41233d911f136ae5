"""Pytest configuration and fixtures for HybridGraph tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import pytest

from hybridgraph.hashing import digest_text
from hybridgraph.models import (
    CallEdge,
    CorpusSnapshot,
    FileExtraction,
    FileRecord,
    ImportEdge,
    SymbolKind,
    SymbolRecord,
)
from hybridgraph.storage import IndexStore, ProjectManager


class FakeHasher:
    """In-memory file system: path -> content."""

    def __init__(self, files: Optional[Dict[str, str]] = None) -> None:
        self.files: Dict[str, str] = dict(files or {})
        self.unreadable: set = set()

    def write(self, path: str, content: str) -> None:
        self.files[path] = content

    def remove(self, path: str) -> None:
        self.files.pop(path, None)

    def exists(self, path: str) -> bool:
        return path in self.files

    def digest(self, path: str) -> str:
        if path in self.unreadable or path not in self.files:
            raise OSError(f"cannot read {path}")
        return digest_text(self.files[path])

    def size(self, path: str) -> int:
        if path not in self.files:
            raise OSError(f"cannot stat {path}")
        return len(self.files[path].encode("utf-8"))


class FakeExtractor:
    """Extractor returning canned extractions and recording every call."""

    def __init__(self, extractions: Optional[Dict[str, FileExtraction]] = None) -> None:
        self.extractions: Dict[str, FileExtraction] = dict(extractions or {})
        self.failing: set = set()
        self.calls: List[str] = []

    def __call__(self, path: str) -> FileExtraction:
        self.calls.append(path)
        if path in self.failing:
            raise RuntimeError(f"syntax error in {path}")
        if path in self.extractions:
            return self.extractions[path]
        return FileExtraction(file=FileRecord(path=path, language="python"))


def make_symbol(name: str, file_path: str = "src/app.py", line: int = 1,
                kind: SymbolKind = SymbolKind.FUNCTION, signature: str = "") -> SymbolRecord:
    return SymbolRecord(name=name, kind=kind, file_path=file_path, line=line,
                        signature=signature or f"def {name}()")


def extraction(path: str, names: List[str], calls: Optional[List[tuple]] = None) -> FileExtraction:
    symbols = [make_symbol(n, path, i + 1) for i, n in enumerate(names)]
    return FileExtraction(
        file=FileRecord(path=path, language="python", size=100, symbol_count=len(symbols)),
        symbols=symbols,
        calls=[CallEdge(a, b, b) for a, b in (calls or [])],
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def symbol_factory() -> Callable[..., SymbolRecord]:
    return make_symbol


@pytest.fixture
def extraction_factory() -> Callable[..., FileExtraction]:
    return extraction


@pytest.fixture
def fake_hasher() -> FakeHasher:
    return FakeHasher()


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def auth_corpus() -> CorpusSnapshot:
    """Three symbols: login, logout, fetchUser."""
    return CorpusSnapshot(
        symbols=[
            make_symbol("login", "src/auth.py", 10),
            make_symbol("logout", "src/auth.py", 20),
            make_symbol("fetchUser", "src/users.py", 5),
        ],
        files=[
            FileRecord(path="src/auth.py", language="python", size=400, symbol_count=2),
            FileRecord(path="src/users.py", language="python", size=200, symbol_count=1),
        ],
        imports=[ImportEdge(from_file="src/auth.py", to_file="src/users.py", symbol_names=("fetchUser",))],
        calls=[CallEdge("login", "fetchUser", "fetchUser")],
    )


@pytest.fixture
def connectivity_corpus() -> CorpusSnapshot:
    """Two lexically identical handlers; only alpha_handler has callers.

    beta_handler comes first so a tie on text alone would rank it on top.
    """
    callers = [make_symbol(f"caller{i}", "src/c.py", i + 1) for i in range(10)]
    return CorpusSnapshot(
        symbols=[
            make_symbol("beta_handler", "src/a.py", 1),
            make_symbol("alpha_handler", "src/b.py", 1),
        ] + callers,
        files=[
            FileRecord(path="src/a.py", language="python", symbol_count=1),
            FileRecord(path="src/b.py", language="python", symbol_count=1),
            FileRecord(path="src/c.py", language="python", symbol_count=10),
        ],
        calls=[CallEdge(f"caller{i}", "alpha_handler", "alpha_handler") for i in range(10)],
    )


@pytest.fixture
def temp_project_manager(temp_dir: Path, monkeypatch) -> ProjectManager:
    """Create a ProjectManager with temporary storage."""
    memory_dir = temp_dir / "memory"
    state_file = temp_dir / "state.json"

    # Patch both config AND storage modules (storage imports at module load)
    monkeypatch.setattr("hybridgraph.config.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("hybridgraph.config.STATE_FILE", state_file)
    monkeypatch.setattr("hybridgraph.storage.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("hybridgraph.storage.STATE_FILE", state_file)
    monkeypatch.setattr("hybridgraph.config_manager.CONFIG_FILE", temp_dir / "config.toml")

    return ProjectManager()


@pytest.fixture
def temp_index_store(temp_dir: Path) -> Generator[IndexStore, None, None]:
    """Create an IndexStore with temporary storage."""
    project_dir = temp_dir / "test_project"
    project_dir.mkdir(parents=True, exist_ok=True)
    store = IndexStore(project_dir)
    yield store
    store.close()
