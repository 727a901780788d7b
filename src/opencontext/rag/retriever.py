"""Two-phase retrieval over COMPLETED documents.

Explore: BM25 (FTS5) + dense (sqlite-vec) channels fused via RRF, returning
lightweight results (title, snippet, score, breadcrumbs) and never full text.

    score(d) = 1 / (k + rank_dense) + 1 / (k + rank_bm25)   k = 60

A chunk missing from one channel is ranked just past that channel's last hit
plus k. Relevance scores are normalised to the best result (top = 1.0).

Focus: full text of one chunk, truncated to a token budget when needed.

Both phases only see documents whose status is COMPLETED at query time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from loguru import logger

from opencontext.config import RetrievalCfg
from opencontext.db.index_store import ChunkIndex
from opencontext.db.metadata_store import MetadataStore
from opencontext.db.models import IngestionStatus
from opencontext.errors import (
    ChunkNotFoundError,
    ConflictError,
    InfrastructureError,
    ValidationError,
)
from opencontext.rag.content import ContentResult, TokenInfo, truncate_to_token_budget
from opencontext.rag.llm_client import Embedder, Tokenizer

_NO_TITLE = "No Title"
# The vec channel filters by document after the KNN query, so it over-fetches.
_VEC_OVERSAMPLE = 4
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class SearchResult:
    """A lightweight explore hit.

    Attributes:
        chunk_id: Id usable with focus().
        title: Chunk title, or "No Title".
        snippet: Start of the chunk text, never the full text.
        relevance_score: RRF score relative to the best hit (top = 1.0).
        breadcrumbs: Heading titles from the root to the chunk's section.
    """

    chunk_id: str
    title: str
    snippet: str
    relevance_score: float
    breadcrumbs: list[str] = field(default_factory=list)


@dataclass
class ScoredChunk:
    """A chunk id with its RRF fusion score and per-channel ranks."""

    chunk_id: str
    rrf_score: float
    dense_rank: int | None = None
    bm25_rank: int | None = None


def make_snippet(content: str, max_length: int = 50) -> str:
    text = _WHITESPACE_RE.sub(" ", content).strip()
    return text if len(text) <= max_length else text[:max_length] + "..."


def _rrf_fuse(
    dense_results: list[tuple[str, float]],
    bm25_results: list[tuple[str, float]],
    top_k: int,
    k: int = 60,
) -> list[ScoredChunk]:
    """Combine dense and BM25 ranked lists via Reciprocal Rank Fusion."""
    dense_rank = {chunk_id: i + 1 for i, (chunk_id, _) in enumerate(dense_results)}
    bm25_rank = {chunk_id: i + 1 for i, (chunk_id, _) in enumerate(bm25_results)}
    n_dense = len(dense_results)
    n_bm25 = len(bm25_results)

    scored: list[ScoredChunk] = []
    for chunk_id in set(dense_rank) | set(bm25_rank):
        dr = dense_rank.get(chunk_id, n_dense + k)
        br = bm25_rank.get(chunk_id, n_bm25 + k)
        scored.append(
            ScoredChunk(
                chunk_id=chunk_id,
                rrf_score=1.0 / (k + dr) + 1.0 / (k + br),
                dense_rank=dense_rank.get(chunk_id),
                bm25_rank=bm25_rank.get(chunk_id),
            )
        )

    # ties broken by id so results are stable
    scored.sort(key=lambda s: (-s.rrf_score, s.chunk_id))
    return scored[:top_k]


class RetrievalService:
    """Explore and focus over the chunk index.

    Args:
        config: Retrieval section of the configuration.
        metadata: Source of document statuses.
        index: Chunk index to query.
        embedder: Embeds queries with the model used at ingestion.
        tokenizer: Counts tokens for focus budgets.
    """

    def __init__(
        self,
        config: RetrievalCfg,
        metadata: MetadataStore,
        index: ChunkIndex,
        embedder: Embedder,
        tokenizer: Tokenizer,
    ) -> None:
        self._cfg = config
        self._metadata = metadata
        self._index = index
        self._embedder = embedder
        self._tokenizer = tokenizer

    # ------------------------------------------------------------------
    # Explore
    # ------------------------------------------------------------------

    def explore(self, query: str, top_k: int | None = None) -> list[SearchResult]:
        """Return up to *top_k* lightweight results, best first.

        Raises:
            ValidationError: Empty query or top_k outside [1, max_top_k].
            InfrastructureError: The embedding model could not be reached.
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError("query must not be empty")
        top_k = self._cfg.default_top_k if top_k is None else top_k
        if not 1 <= top_k <= self._cfg.max_top_k:
            raise ValidationError(f"topK must be between 1 and {self._cfg.max_top_k}")

        visible = self._metadata.completed_document_ids()
        if not visible:
            return []

        pool = max(top_k, self._cfg.candidate_pool)
        query_embedding = self._embed_query(query)
        dense = self._index.search_vec(
            query_embedding, visible, limit=pool, candidate_pool=pool * _VEC_OVERSAMPLE
        )
        bm25 = self._index.search_fts(query, visible, limit=pool)
        fused = _rrf_fuse(dense, bm25, top_k=pool, k=self._cfg.rrf_k)

        contents = self._index.get_many(s.chunk_id for s in fused)
        # a document may have left COMPLETED while the query ran
        statuses = self._metadata.document_statuses(c.document_id for c in contents.values())
        hits = [
            s
            for s in fused
            if s.chunk_id in contents
            and statuses.get(contents[s.chunk_id].document_id) is IngestionStatus.COMPLETED
        ][:top_k]
        if not hits:
            return []

        best = hits[0].rrf_score
        results = [
            SearchResult(
                chunk_id=s.chunk_id,
                title=contents[s.chunk_id].title or _NO_TITLE,
                snippet=make_snippet(contents[s.chunk_id].content, self._cfg.snippet_max_length),
                relevance_score=s.rrf_score / best,
                breadcrumbs=contents[s.chunk_id].breadcrumbs,
            )
            for s in hits
        ]
        logger.debug(
            f"Explore | query_len={len(query)} dense={len(dense)} bm25={len(bm25)} "
            f"results={len(results)}"
        )
        return results

    def _embed_query(self, query: str) -> list[float]:
        try:
            return self._embedder.embed_batch([query])[0]
        except Exception as exc:
            logger.opt(exception=exc).error("Query embedding failed")
            raise InfrastructureError("Embedding service is not responding.") from exc

    # ------------------------------------------------------------------
    # Focus
    # ------------------------------------------------------------------

    def focus(self, chunk_id: str, max_tokens: int | None = None) -> ContentResult:
        """Return the chunk's full text, truncated to *max_tokens* if needed.

        Truncation is a successful result flagged with ``truncated=True``.

        Raises:
            ValidationError: Empty id or non-positive max_tokens.
            ChunkNotFoundError: Unknown id, or its document is not COMPLETED.
            ConflictError: The chunk's document is being deleted.
        """
        chunk_id = (chunk_id or "").strip()
        if not chunk_id:
            raise ValidationError("chunkId must not be empty")
        max_tokens = self._cfg.default_max_tokens if max_tokens is None else max_tokens
        if max_tokens < 1:
            raise ValidationError("maxTokens must be a positive integer")

        content = self._index.get_content(chunk_id)
        if content is None:
            raise ChunkNotFoundError(chunk_id)
        doc = self._metadata.get_document(content.document_id)
        if doc is not None and doc.status is IngestionStatus.DELETING:
            raise ConflictError(f"The document of chunk {chunk_id} is being deleted")
        if doc is None or doc.status is not IngestionStatus.COMPLETED:
            raise ChunkNotFoundError(chunk_id)

        text, tokens, truncated = truncate_to_token_budget(
            content.content, self._tokenizer, max_tokens
        )
        if truncated:
            logger.debug(f"Focus truncated | chunk_id={chunk_id} tokens={tokens} budget={max_tokens}")
        return ContentResult(
            chunk_id=chunk_id,
            content=text,
            token_info=TokenInfo(tokenizer=self._tokenizer.name, actual_tokens=tokens),
            truncated=truncated,
        )
