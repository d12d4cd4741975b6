"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# pydantic-settings reads configuration from two sources, in priority order:
#
#   1. **Environment variables** (e.g. OPENAI_API_KEY=sk-abc123) always win
#   2. **.env file** with key=value lines in the project root (local development)
#
# Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.  Defaults
# apply when neither source sets a value.
#
# Tunables that are not secrets (chunk sizes, retry counts, K values) live
# in config/config.yaml instead; see src/config/loader.py.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """storyshelf application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === LLM / embeddings ===
    # Empty string = "not configured".
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_chat_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    openai_timeout_seconds: float = 30.0

    # === Object storage + processing trigger (Supabase) ===
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    storage_bucket: str = "Books"
    signed_url_ttl_seconds: int = 60
    download_timeout_seconds: float = 120.0
    processing_function_name: str = "booksProcessor"
    trigger_timeout_seconds: float = 30.0
    # Bearer token the /process endpoint expects; empty disables the check.
    trigger_auth_token: str = ""

    # === Persistence ===
    database_path: str = "data/storyshelf.db"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "book_chunks"

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return the LLM provider names that have credentials configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai-compatible" if self.openai_base_url else "openai")
        return providers

    @property
    def storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)
