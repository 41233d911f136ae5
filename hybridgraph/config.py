"""Configuration paths and defaults for local HybridGraph storage."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("HYBRIDGRAPH_HOME", str(Path.home() / ".hybridgraph"))).expanduser()
MEMORY_DIR = BASE_DIR / "memory"
STATE_FILE = BASE_DIR / "state.json"

# Final ranking mix of hybrid retrieval and graph structure
HYBRID_WEIGHT = 0.4
GRAPH_WEIGHT = 0.6

DEFAULT_TOP_K = 20
MAX_RELATIONSHIPS = 5
DEBOUNCE_WINDOW = 2.0
POS_TAGGER = "heuristic"


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    MEMORY_DIR.mkdir(parents=True, exist_ok=True)
    BASE_DIR.mkdir(parents=True, exist_ok=True)
