from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal

# Application settings using pydantic-settings for structured configuration

class Settings(BaseSettings):
    # --- App ---
    app_name: str = "College Counsel Retrieval"
    app_env: str = "development"          # e.g., development / staging / production
    debug: bool = True

    # --- Vector store ---
    # One JSON file per collection lives in this directory
    vector_store_dir: str = "data/vectorstore"
    default_collection: str = "default"

    # --- Embeddings ---
    # "hash" is the deterministic local fallback used when no model is available
    embedding_provider: Literal["hash", "sentence-transformers", "ollama"] = "hash"
    embedding_model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    # Dimensionality of the hash provider (MiniLM-L6-v2 is 384 as well)
    embedding_dim: int = 384
    ollama_host: str = "http://localhost:11434"

    # --- Search / ingestion tuning ---
    relevance_threshold: float = 0.6
    default_k: int = 5
    default_page_size: int = 10
    embedding_batch_size: int = 100
    embedding_timeout_s: float = 30.0
    persist_max_attempts: int = 3

    # pydantic v2 / pydantic-settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",     # auto-load from your .env
        case_sensitive=False,  # .env keys can be upper/lower
        extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    """Cache settings so we don’t re-parse .env on every request."""
    return Settings()
