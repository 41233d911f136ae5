"""Typer-based CLI for HybridGraph code retrieval."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config_manager import load_settings, save_setting
from .embeddings import HashEmbeddingModel
from .errors import HybridGraphError
from .hashing import FileHasher
from .incremental import IncrementalUpdater
from .indexer import find_code_files
from .models import CorpusSnapshot, EmbeddedDocument
from .orchestrator import ContextAssembly, Orchestrator
from .storage import IndexStore, ProjectManager

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="HybridGraph: lexical + semantic + call-graph code search.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"HybridGraph v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log pipeline details to stderr."),
):
    """HybridGraph: rank code symbols by text, embeddings and graph structure."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
            force=True,
        )


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _project_name_from_path(snapshot_path: Path) -> str:
    return snapshot_path.resolve().stem.replace(" ", "_")


def _open_current_store(pm: ProjectManager) -> IndexStore:
    project = pm.get_current_project()
    if not project:
        raise typer.BadParameter("No project loaded. Use 'hg load-project <name>' or run 'hg index <snapshot>'.")
    project_dir = pm.project_dir(project)
    if not project_dir.exists():
        raise typer.BadParameter(f"Loaded project '{project}' does not exist in memory.")
    return IndexStore(project_dir)


def _read_json(path: Path, what: str):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Could not read {what} '{path}': {exc}")


def _load_orchestrator(store: IndexStore) -> Orchestrator:
    """Rebuild the in-memory indices of the stored project."""
    settings = load_settings()
    metadata = store.get_metadata()
    embedder = None
    if metadata.get("embedder") == "hash":
        embedder = HashEmbeddingModel(int(metadata.get("embedding_dim", settings.embedding_dim)))

    orchestrator = Orchestrator(embedder=embedder, settings=settings)
    if store.has_snapshot():
        orchestrator.index(store.load_snapshot(), embeddings=store.load_embeddings() or None)
    return orchestrator


def _score_color(score: float) -> str:
    if score >= 0.6:
        return "green"
    elif score >= 0.3:
        return "yellow"
    return "red"


def _render_results(assembly: ContextAssembly) -> Table:
    title = f"Results for '{assembly.query}'"
    if assembly.fallback:
        title += " (fuzzy fallback)"
    table = Table(title=title, show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Symbol", style="bold cyan")
    table.add_column("Type")
    table.add_column("Location")
    table.add_column("Score", justify="right")
    table.add_column("Lex", justify="right")
    table.add_column("Sem", justify="right")
    table.add_column("Graph", justify="right")

    for i, result in enumerate(assembly.results, start=1):
        exp = result.explanation
        color = _score_color(result.relevance_score)
        table.add_row(
            str(i),
            result.symbol or result.document_id,
            result.type,
            f"{result.file}:{result.line}",
            f"[{color}]{result.relevance_score:.3f}[/{color}]",
            f"{exp.lexical_score:.2f}",
            f"{exp.semantic_score:.2f}",
            f"{exp.graph_score:.2f}",
        )
    return table


# ------------------------------------------------------------------
# Indexing
# ------------------------------------------------------------------

@app.command("index")
def index_project(
    snapshot_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Corpus snapshot JSON from the extractor."),
    project_name: Optional[str] = typer.Option(None, "--name", "-n", help="Explicit memory name for project."),
    embeddings_path: Optional[Path] = typer.Option(
        None, "--embeddings", "-e", exists=True, dir_okay=False,
        help="JSON list of {id, vector, metadata} documents. Stored only: search has no "
        "embedder for queries, so ranking stays lexical plus graph.",
    ),
    hash_embeddings: bool = typer.Option(
        False, "--hash-embeddings", help="Embed documents with the built-in hash embedder.",
    ),
):
    """Index an extracted corpus snapshot into local project memory."""
    if embeddings_path is not None and hash_embeddings:
        raise typer.BadParameter("Use either --embeddings or --hash-embeddings, not both.")

    try:
        corpus = CorpusSnapshot.from_dict(_read_json(snapshot_path, "snapshot"))
    except (KeyError, TypeError, ValueError) as exc:
        raise typer.BadParameter(f"Malformed snapshot '{snapshot_path}': {exc}")

    documents = None
    if embeddings_path is not None:
        payload = _read_json(embeddings_path, "embeddings")
        try:
            documents = [EmbeddedDocument.from_dict(d) for d in payload]
        except (KeyError, TypeError, ValueError) as exc:
            raise typer.BadParameter(f"Malformed embeddings '{embeddings_path}': {exc}")

    settings = load_settings()
    embedder = HashEmbeddingModel(settings.embedding_dim) if hash_embeddings else None
    orchestrator = Orchestrator(embedder=embedder, settings=settings)
    try:
        orchestrator.index(corpus, embeddings=documents)
    except HybridGraphError as exc:
        err_console.print(f"[red]Indexing failed:[/red] {exc}")
        raise typer.Exit(code=1)

    pm = ProjectManager()
    resolved_path = snapshot_path.resolve()
    name = project_name or _project_name_from_path(resolved_path)
    store = IndexStore(pm.create_or_get_project(name))
    indexed = orchestrator.corpus
    store.save_snapshot(indexed)
    store.save_embeddings(orchestrator.embeddings())
    store.save_file_hashes(FileHasher().digest_many(p for p in indexed.file_paths() if Path(p).is_file()))

    metadata = {
        "project_name": name,
        "snapshot_path": str(resolved_path),
        "indexed_at": datetime.now().isoformat(),
    }
    if hash_embeddings:
        metadata.update({"embedder": "hash", "embedding_dim": settings.embedding_dim})
    store.set_metadata(metadata)

    pm.set_current_project(name)
    store.close()

    typer.echo(f"Indexed '{resolved_path}' as project '{name}'.")
    typer.echo(
        f"Symbols: {len(indexed.symbols)} | Files: {len(indexed.files)} | "
        f"Calls: {len(indexed.calls)} | Embeddings: {len(orchestrator.embeddings())}"
    )


@app.command("changes")
def changes(
    paths: Optional[List[Path]] = typer.Argument(None, help="Files to check against stored hashes."),
    root: Optional[Path] = typer.Option(None, "--root", "-r", exists=True, file_okay=False, help="Scan a source tree."),
    as_json: bool = typer.Option(False, "--json", help="Print the change set as JSON."),
):
    """Show files added, modified or deleted since the project was indexed."""
    pm = ProjectManager()
    store = _open_current_store(pm)
    hashes = store.load_file_hashes()
    store.close()

    candidates: List[str] = [str(p) for p in paths or []]
    if root is not None:
        candidates.extend(find_code_files(root.resolve()))
    if not candidates:
        candidates = list(hashes)

    change_set = IncrementalUpdater(None, initial_hashes=hashes).detect_changes(candidates)

    if as_json:
        typer.echo(json.dumps(change_set.to_dict(), indent=2))
        return
    if change_set.is_empty and not change_set.errors:
        typer.echo("No changes detected.")
        return

    table = Table(title="Changed files")
    table.add_column("Status", style="bold")
    table.add_column("Path")
    for label, color, items in (
        ("added", "green", change_set.added),
        ("modified", "yellow", change_set.modified),
        ("deleted", "red", change_set.deleted),
    ):
        for path in items:
            table.add_row(f"[{color}]{label}[/{color}]", path)
    for error in change_set.errors:
        table.add_row("[red]error[/red]", f"{error.file}: {error.error}")
    console.print(table)


# ------------------------------------------------------------------
# Querying
# ------------------------------------------------------------------

@app.command("search")
def search(
    query: str = typer.Argument(..., help="Natural-language or identifier query."),
    top_k: int = typer.Option(10, min=1, max=100, help="Maximum number of matches."),
    fallback: bool = typer.Option(True, "--fallback/--no-fallback", help="Use fuzzy search if ranking fails."),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON."),
):
    """Rank symbols of the loaded project for QUERY."""
    pm = ProjectManager()
    store = _open_current_store(pm)
    orchestrator = _load_orchestrator(store)
    store.close()

    if not as_json and orchestrator.embedder is None and orchestrator.embeddings():
        err_console.print("[yellow]Stored vectors are not searched without an embedder.[/yellow]")

    try:
        if fallback:
            assembly = orchestrator.query_with_fallback(query, top_k=top_k)
        else:
            assembly = orchestrator.query(query, top_k=top_k)
    except HybridGraphError as exc:
        err_console.print(f"[red]Search failed:[/red] {exc}")
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps(assembly.to_dict(), indent=2))
        return
    if not assembly.results:
        typer.echo("No matches found.")
        raise typer.Exit(code=0)
    console.print(_render_results(assembly))


@app.command("explain")
def explain(
    document_id: str = typer.Argument(..., help="Document id, e.g. 'src/auth.py:10:login'."),
    query: str = typer.Argument(..., help="Query to explain the score against."),
):
    """Break down how a document scores for a query."""
    pm = ProjectManager()
    store = _open_current_store(pm)
    orchestrator = _load_orchestrator(store)
    store.close()

    try:
        text = orchestrator.explain(document_id, query)
    except HybridGraphError as exc:
        err_console.print(f"[red]Explain failed:[/red] {exc}")
        raise typer.Exit(code=1)
    typer.echo(text)


@app.command("stats")
def stats(as_json: bool = typer.Option(False, "--json", help="Print statistics as JSON.")):
    """Show index statistics for the loaded project."""
    pm = ProjectManager()
    store = _open_current_store(pm)
    orchestrator = _load_orchestrator(store)
    tracked = len(store.load_file_hashes())
    store.close()

    data = orchestrator.get_stats()
    data["tracked_files"] = tracked
    if as_json:
        typer.echo(json.dumps(data, indent=2, default=str))
        return
    if not data["ready"]:
        typer.echo("Project has no indexed corpus.")
        return

    table = Table(title=f"Project '{pm.get_current_project()}'")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for key, value in data["corpus"].items():
        table.add_row(key.capitalize(), str(value))
    lexical = data["retrieval"]["lexical"]
    table.add_row("Unique terms", str(lexical["unique_terms"]))
    table.add_row("Avg doc length", f"{lexical['avg_doc_length']:.2f}")
    table.add_row("Embeddings", str(data["retrieval"]["semantic"]["total_documents"]))
    table.add_row("Semantic enabled", "yes" if data["retrieval"]["semantic_enabled"] else "no")
    table.add_row("Tracked files", str(tracked))
    console.print(table)

    top = data["graph"]["top_central_symbols"]
    if top:
        central = Table(title="Most central symbols")
        central.add_column("Symbol", style="cyan")
        central.add_column("Centrality", justify="right")
        for entry in top:
            central.add_row(entry["symbol"], f"{entry['centrality']:.3f}")
        console.print(central)


# ------------------------------------------------------------------
# Projects
# ------------------------------------------------------------------

@app.command("list-projects")
def list_projects():
    """List all persisted project memories."""
    pm = ProjectManager()
    projects = pm.list_projects()
    current = pm.get_current_project()

    if not projects:
        typer.echo("No projects indexed yet.")
        raise typer.Exit(code=0)

    for p in projects:
        marker = "*" if p == current else " "
        typer.echo(f"{marker} {p}")


@app.command("load-project")
def load_project(project_name: str = typer.Argument(..., help="Name of project memory to load.")):
    """Switch active project memory."""
    pm = ProjectManager()
    if project_name not in pm.list_projects():
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    pm.set_current_project(project_name)
    typer.echo(f"Loaded project '{project_name}'.")


@app.command("unload-project")
def unload_project():
    """Unload active project memory without deleting data."""
    pm = ProjectManager()
    pm.unload_project()
    typer.echo("Unloaded active project.")


@app.command("delete-project")
def delete_project(project_name: str = typer.Argument(..., help="Project memory to delete.")):
    """Delete persisted project memory."""
    pm = ProjectManager()
    deleted = pm.delete_project(project_name)
    if not deleted:
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    typer.echo(f"Deleted project '{project_name}'.")


@app.command("current-project")
def current_project():
    """Print active project memory name."""
    pm = ProjectManager()
    current = pm.get_current_project()
    typer.echo(current or "No project loaded")


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------

def _split_key(key: str) -> Tuple[str, str]:
    section, _, name = key.partition(".")
    if not name:
        raise typer.BadParameter("Key must look like 'section.name', e.g. 'query.graph_weight'.")
    return section, name


@app.command("show-config")
def show_config():
    """Print effective settings (defaults merged with config.toml)."""
    settings = load_settings()
    for section, values in settings.to_dict().items():
        table = Table(title=f"Section: {section}")
        table.add_column("Key", style="bold")
        table.add_column("Value", justify="right")
        for key, value in values.items():
            table.add_row(key, f"{value:.3f}" if isinstance(value, float) else str(value))
        console.print(table)


@app.command("set-config")
def set_config(
    key: str = typer.Argument(..., help="Setting as 'section.name'."),
    value: str = typer.Argument(..., help="New value."),
):
    """Persist one setting to config.toml."""
    section, name = _split_key(key)
    try:
        saved = save_setting(section, name, value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    if not saved:
        err_console.print("[red]Could not write config file.[/red]")
        raise typer.Exit(code=1)
    typer.echo(f"Set {section}.{name} = {value}")


if __name__ == "__main__":
    app()
