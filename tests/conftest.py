"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import math
import os
import re
import threading

import pytest

# Use litellm's bundled model cost map instead of fetching it over the network at import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from opencontext.config import (
    EmbeddingCfg,
    IngestionCfg,
    OpenContextConfig,
    StorageCfg,
)
from opencontext.context import build_context
from opencontext.db.connection import Database
from opencontext.db.index_store import ChunkIndex
from opencontext.db.metadata_store import MetadataStore

FAKE_MODEL = "test/fake-embed"
FAKE_DIMS = 16

_WORD_RE = re.compile(r"\w+")


def fake_vector(text: str, dims: int = FAKE_DIMS) -> list[float]:
    """Deterministic bag-of-words vector: texts sharing words end up close."""
    vec = [0.0] * dims
    for word in _WORD_RE.findall(text.lower()):
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % dims
        vec[bucket] += 1.0
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0:
        vec[0] = 1.0
        return vec
    return [v / norm for v in vec]


def make_pdf(lines: list[tuple[int, str]]) -> bytes:
    """Build a one-page PDF drawing each (font_size, text) on its own line."""
    y = 760
    ops = []
    for size, text in lines:
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        ops.append(f"BT /F1 {size} Tf 72 {y} Td ({escaped}) Tj ET")
        y -= size + 14
    stream = "\n".join(ops).encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 4 0 R >> >> /Contents 5 0 R >>",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1,
        xref,
    )
    return bytes(out)


class FakeEmbedder:
    """Embedder double. ``fail_times`` makes the next N calls raise."""

    model = FAKE_MODEL

    def __init__(self) -> None:
        self.calls = 0
        self.fail_times = 0
        self.error: Exception = ConnectionError("embedding service down")
        self._lock = threading.Lock()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        with self._lock:
            self.calls += 1
            if self.fail_times > 0:
                self.fail_times -= 1
                raise self.error
        return [fake_vector(t) for t in texts]


class WhitespaceTokenizer:
    """One token per whitespace-separated word."""

    name = "whitespace"

    def count(self, text: str) -> int:
        return len(text.split())


@pytest.fixture
def metadata_store(tmp_path):
    """MetadataStore on a file DB in tmp_path, closed after test."""
    conn = Database(tmp_path / "metadata.db").connect()
    store = MetadataStore(conn)
    store.initialize()
    yield store
    conn.close()


@pytest.fixture
def chunk_index(tmp_path):
    """ChunkIndex with sqlite-vec loaded, closed after test."""
    conn = Database(tmp_path / "index.db", load_vec=True).connect()
    index = ChunkIndex(conn, FAKE_MODEL)
    index.initialize()
    yield index
    conn.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def tokenizer():
    return WhitespaceTokenizer()


@pytest.fixture
def config(tmp_path):
    """Fast config: no backoff sleeps, short timeouts, data under tmp_path."""
    return OpenContextConfig(
        storage=StorageCfg(data_dir=str(tmp_path / "data")),
        embedding=EmbeddingCfg(model=FAKE_MODEL, batch_size=4),
        ingestion=IngestionCfg(
            workers=2,
            queue_capacity=4,
            max_retries=2,
            retry_min_wait=0.0,
            retry_max_wait=0.0,
            step_timeout_seconds=5.0,
        ),
    )


@pytest.fixture
def make_context(config, embedder, tokenizer):
    """Factory building an AppContext with test doubles; all closed after test."""
    built = []

    def _make(**overrides):
        kwargs = {"embedder": embedder, "tokenizer": tokenizer, **overrides}
        ctx = build_context(config, **kwargs)
        built.append(ctx)
        return ctx

    yield _make
    for ctx in built:
        ctx.close()


@pytest.fixture
def context(make_context):
    return make_context()


@pytest.fixture
def ingest(context):
    """Upload bytes and wait for the ingestion run; returns the refreshed document."""

    def _ingest(filename: str, data: bytes):
        doc = context.documents.upload(filename, data)
        assert context.executor.wait_idle(timeout=10)
        return context.documents.get(doc.id)

    return _ingest
