"""Persistence layer for per-project corpus snapshots.

Each project lives in its own directory under ``MEMORY_DIR`` with:

- ``index.db``: SQLite tables for symbols, files, imports, calls, file
  hashes and embeddings (vectors stored as JSON text);
- ``project.json``: free-form metadata (source, timestamps).

The engine itself keeps everything in memory; this store only round-trips
snapshots between CLI invocations.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import MEMORY_DIR, STATE_FILE, ensure_base_dirs
from .models import (
    CallEdge,
    CorpusSnapshot,
    EmbeddedDocument,
    FileHashRecord,
    FileRecord,
    ImportEdge,
    SymbolKind,
    SymbolRecord,
)

logger = logging.getLogger(__name__)


# ===================================================================
# ProjectManager  (manages directories / active project)
# ===================================================================

class ProjectManager:
    """Manage project memory directories and active project state."""

    def __init__(self) -> None:
        ensure_base_dirs()

    def list_projects(self) -> List[str]:
        if not MEMORY_DIR.exists():
            return []
        return sorted([p.name for p in MEMORY_DIR.iterdir() if p.is_dir()])

    def project_dir(self, project_name: str) -> Path:
        return MEMORY_DIR / project_name

    def create_or_get_project(self, project_name: str) -> Path:
        path = self.project_dir(project_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def set_current_project(self, project_name: str) -> None:
        ensure_base_dirs()
        STATE_FILE.write_text(
            json.dumps({"current_project": project_name}, indent=2),
            encoding="utf-8",
        )

    def get_current_project(self) -> Optional[str]:
        if not STATE_FILE.exists():
            return None
        try:
            payload = json.loads(STATE_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable state file %s", STATE_FILE)
            return None
        return payload.get("current_project")

    def unload_project(self) -> None:
        ensure_base_dirs()
        STATE_FILE.write_text(
            json.dumps({"current_project": None}, indent=2),
            encoding="utf-8",
        )

    def delete_project(self, project_name: str) -> bool:
        path = self.project_dir(project_name)
        if not path.exists():
            return False
        for child in sorted(path.glob("**/*"), reverse=True):
            if child.is_file():
                child.unlink()
            elif child.is_dir():
                child.rmdir()
        path.rmdir()
        if self.get_current_project() == project_name:
            self.unload_project()
        return True


# ===================================================================
# IndexStore  (SQLite)
# ===================================================================

class IndexStore:
    """SQLite store for one project's snapshot, hashes and embeddings.

    Saving replaces the previous contents of a table wholesale inside one
    transaction, mirroring the engine's copy-and-swap lifecycle.
    """

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = project_dir
        self.db_path = project_dir / "index.db"
        self.meta_path = project_dir / "project.json"
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS symbols (
                seq         INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol_id   TEXT NOT NULL,
                name        TEXT NOT NULL,
                kind        TEXT NOT NULL,
                file_path   TEXT NOT NULL,
                line        INTEGER NOT NULL,
                signature   TEXT NOT NULL,
                doc_comment TEXT
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS files (
                seq          INTEGER PRIMARY KEY AUTOINCREMENT,
                path         TEXT NOT NULL,
                language     TEXT NOT NULL,
                size         INTEGER NOT NULL,
                symbol_count INTEGER NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS imports (
                seq          INTEGER PRIMARY KEY AUTOINCREMENT,
                from_file    TEXT NOT NULL,
                to_file      TEXT,
                symbol_names TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS calls (
                seq         INTEGER PRIMARY KEY AUTOINCREMENT,
                caller      TEXT NOT NULL,
                callee      TEXT NOT NULL,
                symbol_name TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS call_sources (
                seq         INTEGER PRIMARY KEY AUTOINCREMENT,
                file_path   TEXT NOT NULL,
                caller      TEXT NOT NULL,
                callee      TEXT NOT NULL,
                symbol_name TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS file_hashes (
                path TEXT PRIMARY KEY,
                hash TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS embeddings (
                seq         INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id TEXT NOT NULL UNIQUE,
                vector      TEXT NOT NULL,
                metadata    TEXT
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_symbols_name ON symbols(name)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_symbols_file ON symbols(file_path)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_calls_caller ON calls(caller)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_calls_callee ON calls(callee)")
        self.conn.commit()

    # ------------------------------------------------------------------
    # Clear / metadata
    # ------------------------------------------------------------------

    def clear(self) -> None:
        with self.conn:
            for table in ("symbols", "files", "imports", "calls", "call_sources", "file_hashes", "embeddings"):
                self.conn.execute(f"DELETE FROM {table}")

    def set_metadata(self, payload: Dict[str, Any]) -> None:
        self.meta_path.write_text(
            json.dumps(payload, indent=2), encoding="utf-8",
        )

    def get_metadata(self) -> Dict[str, Any]:
        if not self.meta_path.exists():
            return {}
        try:
            return json.loads(self.meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def save_snapshot(self, corpus: CorpusSnapshot) -> None:
        with self.conn:
            cur = self.conn.cursor()
            for table in ("symbols", "files", "imports", "calls", "call_sources"):
                cur.execute(f"DELETE FROM {table}")
            cur.executemany(
                "INSERT INTO symbols (symbol_id, name, kind, file_path, line, signature, doc_comment) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (s.id, s.name, s.kind.value, s.file_path, s.line, s.signature, s.doc_comment)
                    for s in corpus.symbols
                ],
            )
            cur.executemany(
                "INSERT INTO files (path, language, size, symbol_count) VALUES (?, ?, ?, ?)",
                [(f.path, f.language, f.size, f.symbol_count) for f in corpus.files],
            )
            cur.executemany(
                "INSERT INTO imports (from_file, to_file, symbol_names) VALUES (?, ?, ?)",
                [(i.from_file, i.to_file, json.dumps(list(i.symbol_names))) for i in corpus.imports],
            )
            cur.executemany(
                "INSERT INTO calls (caller, callee, symbol_name) VALUES (?, ?, ?)",
                [(c.caller, c.callee, c.symbol_name) for c in corpus.calls],
            )
            cur.executemany(
                "INSERT INTO call_sources (file_path, caller, callee, symbol_name) VALUES (?, ?, ?, ?)",
                [
                    (path, c.caller, c.callee, c.symbol_name)
                    for path, edges in corpus.call_sources.items()
                    for c in edges
                ],
            )
        logger.info(
            "Saved snapshot to %s: %d symbols, %d files",
            self.db_path, len(corpus.symbols), len(corpus.files),
        )

    def load_snapshot(self) -> CorpusSnapshot:
        cur = self.conn.cursor()
        symbols = [
            SymbolRecord(
                name=row["name"],
                kind=SymbolKind.parse(row["kind"]),
                file_path=row["file_path"],
                line=row["line"],
                signature=row["signature"],
                doc_comment=row["doc_comment"],
            )
            for row in cur.execute("SELECT * FROM symbols ORDER BY seq").fetchall()
        ]
        files = [
            FileRecord(
                path=row["path"],
                language=row["language"],
                size=row["size"],
                symbol_count=row["symbol_count"],
            )
            for row in cur.execute("SELECT * FROM files ORDER BY seq").fetchall()
        ]
        imports = [
            ImportEdge(
                from_file=row["from_file"],
                to_file=row["to_file"],
                symbol_names=tuple(json.loads(row["symbol_names"])),
            )
            for row in cur.execute("SELECT * FROM imports ORDER BY seq").fetchall()
        ]
        calls = [
            CallEdge(caller=row["caller"], callee=row["callee"], symbol_name=row["symbol_name"])
            for row in cur.execute("SELECT * FROM calls ORDER BY seq").fetchall()
        ]
        call_sources: Dict[str, List[CallEdge]] = {}
        for row in cur.execute("SELECT * FROM call_sources ORDER BY seq").fetchall():
            call_sources.setdefault(row["file_path"], []).append(
                CallEdge(caller=row["caller"], callee=row["callee"], symbol_name=row["symbol_name"])
            )
        return CorpusSnapshot(
            symbols=symbols, files=files, imports=imports, calls=calls, call_sources=call_sources,
        )

    def has_snapshot(self) -> bool:
        row = self.conn.execute("SELECT COUNT(*) AS n FROM files").fetchone()
        symbols = self.conn.execute("SELECT COUNT(*) AS n FROM symbols").fetchone()
        return bool(row["n"] or symbols["n"])

    # ------------------------------------------------------------------
    # File hashes
    # ------------------------------------------------------------------

    def save_file_hashes(self, hashes: Dict[str, str]) -> None:
        self.save_hash_records([FileHashRecord(path=p, hash=h) for p, h in sorted(hashes.items())])

    def save_hash_records(self, records: List[FileHashRecord]) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM file_hashes")
            self.conn.executemany(
                "INSERT INTO file_hashes (path, hash) VALUES (?, ?)",
                [(r.path, r.hash) for r in records],
            )

    def load_hash_records(self) -> List[FileHashRecord]:
        rows = self.conn.execute("SELECT path, hash FROM file_hashes ORDER BY path").fetchall()
        return [FileHashRecord(path=row["path"], hash=row["hash"]) for row in rows]

    def load_file_hashes(self) -> Dict[str, str]:
        return {r.path: r.hash for r in self.load_hash_records()}

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def save_embeddings(self, documents: List[EmbeddedDocument]) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM embeddings")
            self.conn.executemany(
                "INSERT OR REPLACE INTO embeddings (document_id, vector, metadata) VALUES (?, ?, ?)",
                [(d.id, json.dumps(d.vector), json.dumps(d.metadata)) for d in documents],
            )

    def load_embeddings(self) -> List[EmbeddedDocument]:
        rows = self.conn.execute(
            "SELECT document_id, vector, metadata FROM embeddings ORDER BY seq"
        ).fetchall()
        return [
            EmbeddedDocument(
                id=row["document_id"],
                vector=json.loads(row["vector"]),
                metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            )
            for row in rows
        ]
