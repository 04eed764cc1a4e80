"""Configuration settings for the semantic memory engine."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Semantic memory configuration."""

    # Persistence
    db_path: Path = Field(
        default=Path.home() / ".semantic-memory" / "memory.db",
        description="Path to SQLite database",
    )
    persistence_backend: str = Field(
        default="sqlite",
        description="Persistence backend: 'sqlite' (durable) or 'memory' (ephemeral)",
    )

    # Embeddings
    embedding_dim: int = Field(default=384, description="Embedding dimension")
    embedding_cache_size: int = Field(
        default=1000, description="Maximum cached embeddings (keyed by content hash)"
    )

    # Semantic index
    similarity_threshold: float = Field(
        default=0.7, description="Minimum cosine similarity for semantic matches"
    )
    cluster_count: int = Field(default=5, description="Default number of clusters")
    cluster_max_iterations: int = Field(
        default=100, description="Iteration cap for centroid clustering"
    )
    cluster_convergence: float = Field(
        default=0.99, description="Centroid similarity at which clustering has converged"
    )

    # Indexing
    recent_limit: int = Field(default=100, description="Size of the recent-insertions list")

    # Relations
    max_related: int = Field(default=10, description="Maximum related entries per memory")
    related_keyword_overlap: int = Field(
        default=2, description="Shared keywords needed to relate two memories"
    )

    # Query
    default_max_results: int = Field(default=20, description="Default result cap")
    related_score_factor: float = Field(
        default=0.7, description="Score multiplier for relation-expanded results"
    )

    # Optimization (all three conditions must hold for eviction)
    optimize_cutoff_days: int = Field(
        default=30, description="Days without access before a memory may be evicted"
    )
    optimize_importance_threshold: float = Field(
        default=0.3, description="Memories below this importance may be evicted"
    )
    optimize_access_threshold: int = Field(
        default=3, description="Memories accessed fewer times than this may be evicted"
    )

    # Input limits
    default_importance: float = Field(default=0.5, description="Importance when unspecified")
    max_content_length: int = Field(
        default=100_000, description="Maximum content length for memories"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(
        default="pretty", description="Log format: 'pretty' (human-readable) or 'json' (structured)"
    )

    model_config = {"env_prefix": "SEMANTIC_MEMORY_"}


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()


def ensure_data_dir(settings: Settings) -> None:
    """Ensure data directory exists."""
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
