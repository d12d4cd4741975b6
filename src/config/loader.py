"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml : Static defaults checked into the repo
#   2. .env file          : Local developer overrides (not committed)
#   3. Environment vars   : Set at deploy time
#
# load_config() reads the YAML file first, then deep-merges the
# environment-based values from Settings on top.  build_pipeline_config()
# then turns the merged dict into the typed options each stage takes.
#
#   base      = {"chunking": {"max_tokens_per_chunk": 800}}
#   overrides = {"chunking": {"overlap_tokens": 40}}
#   result    = {"chunking": {"max_tokens_per_chunk": 800, "overlap_tokens": 40}}
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.config.settings import Settings
from src.utils.errors import ConfigurationError
from src.utils.retry import RetryPolicy

# Defaults used when config.yaml is absent or silent on a key.
_DEFAULTS: dict[str, Any] = {
    "chunking": {"max_tokens_per_chunk": 800, "overlap_tokens": 50},
    "embedding": {"concurrency": 5, "batch_size": 64},
    "retry": {"retries": 3, "backoff_base_ms": 500, "backoff_max_ms": 5000, "jitter": True},
    "retrieval": {"qa_match_count": 5, "chat_match_count": 4, "context_chars_per_match": 1200},
    "personas": {"sample_chunks": 5, "max_personas": 10},
    "idempotency": {"ttl_seconds": 3600, "max_keys": 10000},
}


@dataclass(frozen=True)
class PipelineConfig:
    """Typed view of the tunables every stage reads at construction time."""

    max_tokens_per_chunk: int = 800
    overlap_tokens: int = 50
    embedding_concurrency: int = 5
    embedding_batch_size: int = 64
    qa_match_count: int = 5
    chat_match_count: int = 4
    context_chars_per_match: int = 1200
    persona_sample_chunks: int = 5
    max_personas: int = 10
    idempotency_ttl_seconds: int = 3600
    idempotency_max_keys: int = 10000
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh ``Settings()`` is read when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config: dict[str, Any] = {}
    _deep_merge(config, _DEFAULTS)

    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(message=f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(message=f"{path} must contain a mapping at the top level")
        _deep_merge(config, yaml_config)

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "llm": {
            "chat_model": settings.openai_chat_model,
            "embedding_model": settings.openai_embedding_model,
            "available_providers": settings.get_available_llm_providers(),
        },
        "storage": {
            "bucket": settings.storage_bucket,
            "signed_url_ttl_seconds": settings.signed_url_ttl_seconds,
            "download_timeout_seconds": settings.download_timeout_seconds,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(config, env_overrides)
    return config


def build_pipeline_config(config: dict) -> PipelineConfig:
    """Convert the merged config dict into a :class:`PipelineConfig`."""
    try:
        chunking = config.get("chunking", {})
        embedding = config.get("embedding", {})
        retrieval = config.get("retrieval", {})
        personas = config.get("personas", {})
        idempotency = config.get("idempotency", {})
        return PipelineConfig(
            max_tokens_per_chunk=int(chunking.get("max_tokens_per_chunk", 800)),
            overlap_tokens=int(chunking.get("overlap_tokens", 50)),
            embedding_concurrency=int(embedding.get("concurrency", 5)),
            embedding_batch_size=int(embedding.get("batch_size", 64)),
            qa_match_count=int(retrieval.get("qa_match_count", 5)),
            chat_match_count=int(retrieval.get("chat_match_count", 4)),
            context_chars_per_match=int(retrieval.get("context_chars_per_match", 1200)),
            persona_sample_chunks=int(personas.get("sample_chunks", 5)),
            max_personas=int(personas.get("max_personas", 10)),
            idempotency_ttl_seconds=int(idempotency.get("ttl_seconds", 3600)),
            idempotency_max_keys=int(idempotency.get("max_keys", 10000)),
            retry_policy=RetryPolicy.from_config(config.get("retry")),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(message=f"Invalid pipeline configuration: {exc}") from exc


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        elif isinstance(value, dict):
            base[key] = {}
            _deep_merge(base[key], value)
        else:
            base[key] = value
