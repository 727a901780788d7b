"""Wiring: build every OpenContext component from one configuration."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from opencontext.config import OpenContextConfig
from opencontext.db.connection import Database
from opencontext.db.index_store import ChunkIndex
from opencontext.db.metadata_store import MetadataStore
from opencontext.db.models import FileType
from opencontext.ingest.base import BaseExtractor
from opencontext.pipeline.executor import IngestionExecutor
from opencontext.pipeline.guard import DocumentGuard
from opencontext.pipeline.orchestrator import IngestionOrchestrator
from opencontext.pipeline.purge import DocumentPurger
from opencontext.rag.llm_client import Embedder, LiteLLMEmbedder, LiteLLMTokenizer, Tokenizer
from opencontext.rag.retriever import RetrievalService
from opencontext.service import DocumentService
from opencontext.storage import LocalObjectStore, ObjectStore


@dataclass
class AppContext:
    """Every long-lived component of a running OpenContext instance."""

    config: OpenContextConfig
    metadata: MetadataStore
    index: ChunkIndex
    storage: ObjectStore
    executor: IngestionExecutor
    orchestrator: IngestionOrchestrator
    documents: DocumentService
    retrieval: RetrievalService
    _connections: list[sqlite3.Connection] = field(default_factory=list, repr=False)

    def close(self, wait: bool = True) -> None:
        """Stop accepting jobs, let running ones finish, close the databases."""
        self.executor.shutdown(wait=wait)
        self.orchestrator.close()
        for conn in self._connections:
            conn.close()
        self._connections.clear()


def build_context(
    config: OpenContextConfig,
    *,
    base_dir: Path | None = None,
    embedder: Embedder | None = None,
    tokenizer: Tokenizer | None = None,
    storage: ObjectStore | None = None,
    extractors: dict[FileType, BaseExtractor] | None = None,
) -> AppContext:
    """Open both stores, run migrations and assemble the services.

    Args:
        config: Loaded configuration.
        base_dir: Directory ``storage.data_dir`` is resolved against (cwd if None).
        embedder, tokenizer, storage, extractors: Overrides for the defaults.
    """
    data_dir = Path(config.storage.data_dir)
    if base_dir is not None and not data_dir.is_absolute():
        data_dir = base_dir / data_dir

    metadata_conn = Database(data_dir / "metadata.db").connect()
    index_conn = Database(data_dir / "index.db", load_vec=True).connect()

    metadata = MetadataStore(metadata_conn)
    metadata.initialize()
    index = ChunkIndex(index_conn, config.embedding.model, config.embedding.dimensions)
    index.initialize()

    storage = storage if storage is not None else LocalObjectStore(data_dir / "objects")
    embedder = embedder or LiteLLMEmbedder(config.embedding.model, config.embedding.api_base)
    tokenizer = tokenizer or LiteLLMTokenizer(
        config.retrieval.tokenizer_model, config.retrieval.tokenizer_name
    )

    guard = DocumentGuard()
    executor = IngestionExecutor(config.ingestion.workers, config.ingestion.queue_capacity)
    orchestrator = IngestionOrchestrator(
        config, metadata, index, storage, embedder, extractors=extractors, guard=guard
    )
    purger = DocumentPurger(config.ingestion, metadata, index, storage)
    documents = DocumentService(
        config, metadata, index, storage, orchestrator, purger, executor, guard
    )
    retrieval = RetrievalService(config.retrieval, metadata, index, embedder, tokenizer)

    logger.debug(f"Context ready | data_dir={data_dir} model={config.embedding.model}")
    return AppContext(
        config=config,
        metadata=metadata,
        index=index,
        storage=storage,
        executor=executor,
        orchestrator=orchestrator,
        documents=documents,
        retrieval=retrieval,
        _connections=[metadata_conn, index_conn],
    )
