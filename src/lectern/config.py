"""Lectern configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (LECTERN_EMBEDDING_MODEL, LECTERN_CHAT_MODEL,
                             LECTERN_DB_PATH, LECTERN_LOG_LEVEL)
  3. Per-project lectern.yaml
  4. Global ~/.lectern/config.yaml  (defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".lectern"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "lectern.yaml"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password, passwd, credential(s). Does not match max_tokens or max_chunk_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "storage",
        "embedding",
        "generation",
        "retrieval",
        "ingest",
        "scraper",
        "queue",
        "sessions",
        "logging",
    ]
)

MAX_EMBEDDING_BATCH = 2048


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
    """Where the database and uploaded blobs live (lectern.yaml: storage:)."""

    db_path: str = ".lectern.db"
    blob_dir: str = ".lectern-blobs"


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (lectern.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = MAX_EMBEDDING_BATCH
    num_retries: int = 3
    timeout: float = 30.0


@dataclass
class GenerationCfg:
    """Streaming chat generation configuration (lectern.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    temperature: float = 0.7
    max_context_chunks: int = 5
    max_tokens: int | None = None
    timeout: float = 120.0


@dataclass
class RetrievalCfg:
    """Search configuration (lectern.yaml: retrieval:).

    Attributes:
        over_fetch_factor: Nearest-neighbour candidates requested per result
            slot; tenant filtering runs after retrieval.
    """

    over_fetch_factor: int = 2


@dataclass
class IngestCfg:
    """Chunking and upload limits (lectern.yaml: ingest:)."""

    max_chunk_tokens: int = 800
    max_upload_mb: int = 100


@dataclass
class ScraperCfg:
    """Web acquisition politeness and safety settings (lectern.yaml: scraper:)."""

    user_agent: str = "Lectern Bot/1.0 (+https://github.com/lectern-rag/lectern)"
    timeout: float = 30.0
    parallelism: int = 2
    random_delay: float = 1.0
    allow_private_addresses: bool = False


@dataclass
class QueueCfg:
    """In-memory job queue sizing (lectern.yaml: queue:)."""

    buffer_size: int = 100
    workers: int = 3


@dataclass
class SessionsCfg:
    """Anonymous chat session lifetime (lectern.yaml: sessions:)."""

    ttl_hours: float = 24.0
    sweep_interval_seconds: float = 3600.0


@dataclass
class LoggingCfg:
    """Log level and format (lectern.yaml: logging:)."""

    level: str = "INFO"
    json: bool = True


@dataclass
class LecternConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    scraper: ScraperCfg = field(default_factory=ScraperCfg)
    queue: QueueCfg = field(default_factory=QueueCfg)
    sessions: SessionsCfg = field(default_factory=SessionsCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: LecternConfig) -> None:
    """Reject values the pipeline cannot run with."""
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if not 1 <= cfg.embedding.batch_size <= MAX_EMBEDDING_BATCH:
        raise ConfigError(
            f"embedding.batch_size must be between 1 and {MAX_EMBEDDING_BATCH}, "
            f"got {cfg.embedding.batch_size}"
        )
    if cfg.queue.buffer_size < 1 or cfg.queue.workers < 1:
        raise ConfigError("queue.buffer_size and queue.workers must both be >= 1")
    if cfg.retrieval.over_fetch_factor < 1:
        raise ConfigError("retrieval.over_fetch_factor must be >= 1")
    if cfg.ingest.max_chunk_tokens < 2:
        raise ConfigError("ingest.max_chunk_tokens must be >= 2")
    if cfg.scraper.parallelism < 1:
        raise ConfigError("scraper.parallelism must be >= 1")


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


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _cfg_from_dict(data: dict[str, Any]) -> LecternConfig:
    """Build a *LecternConfig* from a merged raw YAML dict."""
    cfg = LecternConfig()

    if "storage" in data:
        s = data["storage"]
        cfg.storage = StorageCfg(
            db_path=str(s.get("db_path", cfg.storage.db_path)),
            blob_dir=str(s.get("blob_dir", cfg.storage.blob_dir)),
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
            timeout=float(e.get("timeout", cfg.embedding.timeout)),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            max_context_chunks=int(
                g.get("max_context_chunks", cfg.generation.max_context_chunks)
            ),
            max_tokens=_optional_int(g.get("max_tokens", cfg.generation.max_tokens)),
            timeout=float(g.get("timeout", cfg.generation.timeout)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            over_fetch_factor=int(r.get("over_fetch_factor", cfg.retrieval.over_fetch_factor)),
        )

    if "ingest" in data:
        i = data["ingest"]
        cfg.ingest = IngestCfg(
            max_chunk_tokens=int(i.get("max_chunk_tokens", cfg.ingest.max_chunk_tokens)),
            max_upload_mb=int(i.get("max_upload_mb", cfg.ingest.max_upload_mb)),
        )

    if "scraper" in data:
        sc = data["scraper"]
        cfg.scraper = ScraperCfg(
            user_agent=str(sc.get("user_agent", cfg.scraper.user_agent)),
            timeout=float(sc.get("timeout", cfg.scraper.timeout)),
            parallelism=int(sc.get("parallelism", cfg.scraper.parallelism)),
            random_delay=float(sc.get("random_delay", cfg.scraper.random_delay)),
            allow_private_addresses=bool(
                sc.get("allow_private_addresses", cfg.scraper.allow_private_addresses)
            ),
        )

    if "queue" in data:
        q = data["queue"]
        cfg.queue = QueueCfg(
            buffer_size=int(q.get("buffer_size", cfg.queue.buffer_size)),
            workers=int(q.get("workers", cfg.queue.workers)),
        )

    if "sessions" in data:
        se = data["sessions"]
        cfg.sessions = SessionsCfg(
            ttl_hours=float(se.get("ttl_hours", cfg.sessions.ttl_hours)),
            sweep_interval_seconds=float(
                se.get("sweep_interval_seconds", cfg.sessions.sweep_interval_seconds)
            ),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)).upper(),
            json=bool(lg.get("json", cfg.logging.json)),
        )

    return cfg


def _apply_env_overrides(cfg: LecternConfig) -> LecternConfig:
    """Apply LECTERN_* environment variable overrides (layer 2)."""
    if model := os.environ.get("LECTERN_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("LECTERN_CHAT_MODEL"):
        cfg.generation.model = model
    if db_path := os.environ.get("LECTERN_DB_PATH"):
        cfg.storage.db_path = db_path
    if level := os.environ.get("LECTERN_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LecternConfig:
    """Load and return a merged *LecternConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *lectern.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            is out of range.
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
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg
