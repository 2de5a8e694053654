"""Runtime settings, read from ``SCOUT_*`` environment variables or ``.env``."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Remote description / embedding service
    description_service_url: str = "http://127.0.0.1:3000"
    describe_endpoint: str = "/api/suggest-ai-tags"
    embeddings_endpoint: str = "/api/embeddings"
    remote_semantic_similarity: bool = False  # compare descriptions locally by default

    # Photo service (archive / restore side effects)
    photo_service_url: str = "http://127.0.0.1:3000/api"

    request_timeout: float = 30.0

    # Local feature extractor (CLIP)
    model_name: str = "ViT-B-32"
    pretrained: str = "openai"
    device: Optional[str] = None  # auto-detected when unset
    max_concurrent_extractions: int = 3
    feature_similarity_threshold: float = 0.90
    embedding_cache_dir: Optional[Path] = None  # in-memory cache only when unset

    # Hashing
    hash_batch_size: int = 3
    perceptual_hash_max_distance: int = 5

    # Orchestrator
    similarity_threshold: float = 0.6
    confidence_threshold: float = 0.85
    fallback_sample_size: int = 15
    fallback_similarity_threshold: float = 0.7

    # Suggestion store
    undo_depth: int = 5
    preferences_file: Path = Path(".cache/curation_preferences.json")

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="SCOUT_",
        env_file=".env",
        extra="ignore",
        protected_namespaces=("settings_",),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings instance."""
    return Settings()
