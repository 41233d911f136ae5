"""HybridGraph: hybrid lexical, semantic and graph-aware code retrieval."""

__version__ = "0.1.0"
