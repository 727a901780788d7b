"""OpenContext: hierarchical document ingestion and two-phase retrieval."""

__version__ = "0.1.0"
