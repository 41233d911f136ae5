"""Configuration manager for HybridGraph using TOML files.

``config.toml`` has four optional sections, each overriding a subset of the
built-in defaults::

    [retrieval]   lexical_weight, semantic_weight, rrf_k, retrieval_top_k,
                  final_top_k, relevance_floor, embedding_dim
    [graph]       symbol_affinity, import_proximity, call_graph_match,
                  reference_density, centrality
    [indexing]    batch_size, max_file_size, debounce_window
    [query]       hybrid_weight, graph_weight, top_k, max_relationships,
                  pos_tagger, fuzzy_threshold

Unknown keys are ignored with a warning; a broken file falls back to defaults.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Tuple

import toml

from . import config
from .config import BASE_DIR
from .embeddings import DEFAULT_EMBEDDING_DIM
from .fallback import FUZZY_THRESHOLD
from .graph_scorer import GraphWeights
from .incremental import DEFAULT_MAX_FILE_SIZE
from .indexer import DEFAULT_BATCH_SIZE
from .reranker import RerankerConfig
from .vector_index import RELEVANCE_FLOOR

logger = logging.getLogger(__name__)

CONFIG_FILE = BASE_DIR / "config.toml"

SECTIONS = ("retrieval", "graph", "indexing", "query")


@dataclass
class IndexingSettings:
    batch_size: int = DEFAULT_BATCH_SIZE
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    debounce_window: float = config.DEBOUNCE_WINDOW


@dataclass
class QuerySettings:
    hybrid_weight: float = config.HYBRID_WEIGHT
    graph_weight: float = config.GRAPH_WEIGHT
    top_k: int = config.DEFAULT_TOP_K
    max_relationships: int = config.MAX_RELATIONSHIPS
    pos_tagger: str = config.POS_TAGGER
    fuzzy_threshold: float = FUZZY_THRESHOLD


@dataclass
class Settings:
    """Effective engine settings after merging ``config.toml`` over defaults."""

    reranker: RerankerConfig = field(default_factory=RerankerConfig)
    graph: GraphWeights = field(default_factory=GraphWeights)
    indexing: IndexingSettings = field(default_factory=IndexingSettings)
    query: QuerySettings = field(default_factory=QuerySettings)
    relevance_floor: float = RELEVANCE_FLOOR
    embedding_dim: int = DEFAULT_EMBEDDING_DIM

    def combine_weights(self) -> Tuple[float, float]:
        """``(hybrid, graph)`` final-ranking weights renormalised to sum 1."""
        total = self.query.hybrid_weight + self.query.graph_weight
        if total <= 0:
            raise ValueError("Combine weights must sum to a positive value")
        return self.query.hybrid_weight / total, self.query.graph_weight / total

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        retrieval = asdict(self.reranker)
        retrieval["relevance_floor"] = self.relevance_floor
        retrieval["embedding_dim"] = self.embedding_dim
        return {
            "retrieval": retrieval,
            "graph": asdict(self.graph),
            "indexing": asdict(self.indexing),
            "query": asdict(self.query),
        }


# ------------------------------------------------------------------
# Raw TOML access
# ------------------------------------------------------------------

def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Could not read %s, using defaults: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(data: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w") as f:
            toml.dump(data, f)
        return True
    except OSError as exc:
        logger.error("Could not write %s: %s", CONFIG_FILE, exc)
        return False


# ------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------

def _merge(target: Any, section: str, values: Dict[str, Any]) -> Any:
    """Copy of dataclass *target* with the known keys of *values* applied."""
    known = {f.name: f for f in fields(target)}
    current = asdict(target)
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown setting [%s] %s", section, key)
            continue
        current[key] = _coerce(current[key], value, f"{section}.{key}")
    return type(target)(**current)


def _coerce(default: Any, value: Any, name: str) -> Any:
    if isinstance(default, str):
        return str(value)
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for {name}: {value!r}") from exc
    return value


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    """Build :class:`Settings` from a parsed config mapping."""
    settings = Settings()

    retrieval = dict(data.get("retrieval", {}))
    if "relevance_floor" in retrieval:
        settings.relevance_floor = _coerce(RELEVANCE_FLOOR, retrieval.pop("relevance_floor"), "retrieval.relevance_floor")
    if "embedding_dim" in retrieval:
        settings.embedding_dim = _coerce(DEFAULT_EMBEDDING_DIM, retrieval.pop("embedding_dim"), "retrieval.embedding_dim")
    settings.reranker = _merge(settings.reranker, "retrieval", retrieval).normalized()
    settings.graph = _merge(settings.graph, "graph", data.get("graph", {})).normalized()
    settings.indexing = _merge(settings.indexing, "indexing", data.get("indexing", {}))
    settings.query = _merge(settings.query, "query", data.get("query", {}))

    for section in data:
        if section not in SECTIONS:
            logger.debug("Ignoring config section [%s]", section)
    return settings


def load_settings() -> Settings:
    """Defaults merged with ``config.toml``, if present."""
    return settings_from_dict(load_full_config())


def save_setting(section: str, key: str, value: Any) -> bool:
    """Persist one ``[section] key = value`` entry, keeping other sections."""
    if section not in SECTIONS:
        raise ValueError(f"Unknown config section: {section}")
    defaults = Settings().to_dict()[section]
    if key not in defaults:
        raise ValueError(f"Unknown setting [{section}] {key}")
    data = load_full_config()
    data.setdefault(section, {})[key] = _coerce(defaults[key], value, f"{section}.{key}")
    # reject combinations that cannot be loaded back
    settings_from_dict(data)
    return _save_full_config(data)


def clear_settings() -> bool:
    """Remove all engine sections from the config file."""
    data = load_full_config()
    for section in SECTIONS:
        data.pop(section, None)
    return _save_full_config(data)
