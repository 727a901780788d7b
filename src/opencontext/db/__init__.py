"""OpenContext storage layer."""

from opencontext.db.connection import Database
from opencontext.db.index_store import ChunkIndex
from opencontext.db.metadata_store import MetadataStore
from opencontext.db.migrations import INDEX_MIGRATIONS, METADATA_MIGRATIONS, run_migrations

__all__ = [
    "ChunkIndex",
    "Database",
    "INDEX_MIGRATIONS",
    "METADATA_MIGRATIONS",
    "MetadataStore",
    "run_migrations",
]
