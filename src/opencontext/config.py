"""OpenContext configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (OPENCONTEXT_DATA_DIR, OPENCONTEXT_EMBEDDING_MODEL, ...)
  3. Per-project opencontext.yaml
  4. Global ~/.opencontext/config.yaml  (defaults only, no credentials)
  5. Hardcoded defaults

The admin API key is read from OPENCONTEXT_API_KEY only; config files must
never contain credentials. All YAML reads use yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".opencontext"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "opencontext.yaml"

API_KEY_ENV = "OPENCONTEXT_API_KEY"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s).
# Does NOT match legitimate keys like api_key_header, max_tokens, default_max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)$"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["storage", "embedding", "ingestion", "retrieval", "api", "logging"]
)

_GRANULARITIES = ("leaf", "merge")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StorageCfg:
    """Where documents, the metadata store and the chunk index live."""

    data_dir: str = ".opencontext"


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (opencontext.yaml: embedding:)."""

    model: str = "ollama/nomic-embed-text"
    api_base: str | None = None
    batch_size: int = 10
    # 0 = inferred from the first vector written to the index.
    dimensions: int = 0


@dataclass
class IngestionCfg:
    """Ingestion pipeline tunables (opencontext.yaml: ingestion:).

    Attributes:
        workers: Documents ingested in parallel.
        queue_capacity: Backlog size before submissions run on the caller.
        max_file_size_mb: Upload ceiling.
        granularity: 'leaf' (content elements become leaf chunks) or
            'merge' (content is folded into the nearest heading chunk).
        max_chunk_chars: Leaf content longer than this is split.
        chunk_overlap: Characters shared between consecutive split pieces.
        max_retries: Attempts per external call before the step fails.
        retry_min_wait: Lower bound of the exponential backoff, seconds.
        retry_max_wait: Upper bound of the exponential backoff, seconds.
        step_timeout_seconds: Upper bound for one external call.
    """

    workers: int = 2
    queue_capacity: int = 10
    max_file_size_mb: int = 100
    granularity: str = "leaf"
    max_chunk_chars: int = 1000
    chunk_overlap: int = 200
    max_retries: int = 3
    retry_min_wait: float = 2.0
    retry_max_wait: float = 30.0
    step_timeout_seconds: float = 120.0

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@dataclass
class RetrievalCfg:
    """Retrieval configuration (opencontext.yaml: retrieval:)."""

    default_top_k: int = 5
    max_top_k: int = 50
    default_max_tokens: int = 25_000
    rrf_k: int = 60
    candidate_pool: int = 50
    snippet_max_length: int = 50
    tokenizer_model: str = "gpt-4"
    tokenizer_name: str = "tiktoken-cl100k_base"


@dataclass
class ApiCfg:
    """HTTP server configuration (opencontext.yaml: api:)."""

    host: str = "127.0.0.1"
    port: int = 8080
    api_key_header: str = "X-API-KEY"


@dataclass
class LoggingCfg:
    level: str = "INFO"
    file: str | None = None


@dataclass
class OpenContextConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    api: ApiCfg = field(default_factory=ApiCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {API_KEY_ENV}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: OpenContextConfig) -> None:
    ing = cfg.ingestion
    if ing.workers < 1:
        raise ConfigError(f"ingestion.workers must be >= 1, got {ing.workers}")
    if ing.queue_capacity < 0:
        raise ConfigError(f"ingestion.queue_capacity must be >= 0, got {ing.queue_capacity}")
    if ing.granularity not in _GRANULARITIES:
        raise ConfigError(
            f"ingestion.granularity must be one of {', '.join(_GRANULARITIES)}, "
            f"got '{ing.granularity}'"
        )
    if not 0 <= ing.chunk_overlap < ing.max_chunk_chars:
        raise ConfigError("ingestion.chunk_overlap must be in [0, max_chunk_chars)")
    if ing.max_retries < 1:
        raise ConfigError("ingestion.max_retries must be >= 1")
    ret = cfg.retrieval
    if ret.default_max_tokens < 1:
        raise ConfigError("retrieval.default_max_tokens must be >= 1")
    if not 1 <= ret.default_top_k <= ret.max_top_k:
        raise ConfigError("retrieval.default_top_k must be in [1, max_top_k]")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> OpenContextConfig:
    """Build an *OpenContextConfig* from a merged raw YAML dict."""
    cfg = OpenContextConfig()

    if "storage" in data:
        s = data["storage"]
        cfg.storage = StorageCfg(data_dir=str(s.get("data_dir", cfg.storage.data_dir)))

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            api_base=e.get("api_base") or cfg.embedding.api_base,
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

    if "ingestion" in data:
        i = data["ingestion"]
        d = cfg.ingestion
        cfg.ingestion = IngestionCfg(
            workers=int(i.get("workers", d.workers)),
            queue_capacity=int(i.get("queue_capacity", d.queue_capacity)),
            max_file_size_mb=int(i.get("max_file_size_mb", d.max_file_size_mb)),
            granularity=str(i.get("granularity", d.granularity)),
            max_chunk_chars=int(i.get("max_chunk_chars", d.max_chunk_chars)),
            chunk_overlap=int(i.get("chunk_overlap", d.chunk_overlap)),
            max_retries=int(i.get("max_retries", d.max_retries)),
            retry_min_wait=float(i.get("retry_min_wait", d.retry_min_wait)),
            retry_max_wait=float(i.get("retry_max_wait", d.retry_max_wait)),
            step_timeout_seconds=float(i.get("step_timeout_seconds", d.step_timeout_seconds)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        d = cfg.retrieval
        cfg.retrieval = RetrievalCfg(
            default_top_k=int(r.get("default_top_k", d.default_top_k)),
            max_top_k=int(r.get("max_top_k", d.max_top_k)),
            default_max_tokens=int(r.get("default_max_tokens", d.default_max_tokens)),
            rrf_k=int(r.get("rrf_k", d.rrf_k)),
            candidate_pool=int(r.get("candidate_pool", d.candidate_pool)),
            snippet_max_length=int(r.get("snippet_max_length", d.snippet_max_length)),
            tokenizer_model=str(r.get("tokenizer_model", d.tokenizer_model)),
            tokenizer_name=str(r.get("tokenizer_name", d.tokenizer_name)),
        )

    if "api" in data:
        a = data["api"]
        cfg.api = ApiCfg(
            host=str(a.get("host", cfg.api.host)),
            port=int(a.get("port", cfg.api.port)),
            api_key_header=str(a.get("api_key_header", cfg.api.api_key_header)),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)).upper(),
            file=lg.get("file") or cfg.logging.file,
        )

    return cfg


def _apply_env_overrides(cfg: OpenContextConfig) -> OpenContextConfig:
    """Apply OPENCONTEXT_* environment variable overrides."""
    if data_dir := os.environ.get("OPENCONTEXT_DATA_DIR"):
        cfg.storage.data_dir = data_dir
    if model := os.environ.get("OPENCONTEXT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if api_base := os.environ.get("OPENCONTEXT_EMBEDDING_API_BASE"):
        cfg.embedding.api_base = api_base
    if workers := os.environ.get("OPENCONTEXT_WORKERS"):
        cfg.ingestion.workers = int(workers)
    if level := os.environ.get("OPENCONTEXT_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> OpenContextConfig:
    """Load and return a merged *OpenContextConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Raises:
        ConfigError: If a config file contains credential-like fields or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_project, project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def api_key_from_env() -> str | None:
    """Return the admin API key, or None when admin routes are disabled."""
    return os.environ.get(API_KEY_ENV) or None


def write_project_config(project_dir: Path) -> Path:
    """Create a commented ``opencontext.yaml`` in *project_dir* if missing."""
    target = project_dir / _PROJECT_CONFIG_NAME
    if not target.exists():
        target.write_text(
            "# OpenContext project configuration.\n"
            f"# NEVER store credentials here. Use: export {API_KEY_ENV}=...\n"
            "\n"
            "storage:\n"
            "  data_dir: .opencontext\n"
            "\n"
            "embedding:\n"
            "  model: ollama/nomic-embed-text\n"
            "\n"
            "ingestion:\n"
            "  workers: 2\n"
            "  queue_capacity: 10\n"
            "  granularity: leaf\n"
            "\n"
            "retrieval:\n"
            "  default_top_k: 5\n"
            "  default_max_tokens: 25000\n",
            encoding="utf-8",
        )
    return target
