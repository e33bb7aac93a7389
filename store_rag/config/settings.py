"""
Service settings and configuration management.

Settings for the store knowledge pipeline are declared with Pydantic Settings so
every tunable (lock TTL, search weights, job timeouts, connector paging caps)
can be overridden from the environment or a local ``.env`` file.
"""

from pathlib import Path
from typing import Annotated, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================================================
    # API KEYS
    # ============================================================================

    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for embedding generation"
    )

    pinecone_api_key: Optional[str] = Field(
        default=None,
        description="Pinecone API key for vector database operations"
    )

    # ============================================================================
    # VECTOR DATABASE CONFIGURATION
    # ============================================================================

    vector_backend: str = Field(
        default="pinecone",
        description="Vector store backend (pinecone or memory)"
    )

    pinecone_index_name: str = Field(
        default="store-knowledge",
        description="Name of the Pinecone index"
    )

    vector_dimensions: int = Field(
        default=1536,
        description="Vector dimensions (must match embedding model)"
    )

    upsert_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Vectors per upsert request"
    )

    # ============================================================================
    # EMBEDDING CONFIGURATION
    # ============================================================================

    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI embedding model name"
    )

    embedding_batch_size: int = Field(
        default=100,
        ge=1,
        le=2048,
        description="Maximum texts per embedding request"
    )

    embedding_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per embedding batch before giving up"
    )

    embedding_retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial backoff delay for embedding retries (seconds)"
    )

    # ============================================================================
    # PROCESSING CONFIGURATION
    # ============================================================================

    chunk_size: int = Field(
        default=1000,
        ge=100,
        le=8000,
        description="Maximum chunk size in characters"
    )

    chunk_overlap: int = Field(
        default=200,
        ge=0,
        le=2000,
        description="Overlap between consecutive chunks in characters"
    )

    max_concurrent_requests: int = Field(
        default=6,
        ge=1,
        le=100,
        description="Maximum concurrent data types indexed per run"
    )

    # ============================================================================
    # CONNECTOR CONFIGURATION
    # ============================================================================

    commerce_api_base_url: str = Field(
        default="https://api.tiendanube.com/v1",
        description="Commerce platform REST API base URL"
    )

    commerce_user_agent: str = Field(
        default="StoreKnowledgeRAG (support@store-rag.dev)",
        description="User-Agent sent to the commerce platform"
    )

    commerce_request_timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Per-request timeout for commerce API calls (seconds)"
    )

    commerce_requests_per_second: float = Field(
        default=2.0,
        gt=0.0,
        description="Rate limit for commerce API calls"
    )

    products_page_size: int = Field(
        default=200,
        ge=1,
        le=200,
        description="Products requested per page"
    )

    default_page_size: int = Field(
        default=100,
        ge=1,
        le=200,
        description="Orders/customers requested per page"
    )

    max_pages: int = Field(
        default=50,
        ge=1,
        description="Safety cap on pages fetched per connector run"
    )

    locale_precedence: Annotated[List[str], NoDecode] = Field(
        default=["es", "en", "pt"],
        description="Locale precedence for multi-language fields"
    )

    localized_fallback: str = Field(
        default="Sin nombre",
        description="Literal used when no locale yields text"
    )

    # ============================================================================
    # LOCK CONFIGURATION
    # ============================================================================

    lock_ttl_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Age after which a deletion lock is considered stale"
    )

    lock_poll_interval: float = Field(
        default=0.1,
        gt=0.0,
        description="Polling interval while waiting for a lock to clear"
    )

    lock_wait_timeout: float = Field(
        default=5.0,
        ge=0.0,
        description="Default wait for an unlock before forcing it"
    )

    # ============================================================================
    # SEARCH CONFIGURATION
    # ============================================================================

    semantic_search_weight: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Weight for semantic similarity in hybrid search"
    )

    keyword_search_weight: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Weight for keyword overlap in hybrid search"
    )

    default_search_results: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Default number of search results"
    )

    max_search_results: int = Field(
        default=50,
        ge=1,
        le=200,
        description="Maximum number of search results"
    )

    default_score_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Default minimum final score"
    )

    search_lock_wait_timeout: float = Field(
        default=2.0,
        ge=0.0,
        description="How long a search waits for a deletion lock to clear"
    )

    # ============================================================================
    # JOB CONFIGURATION
    # ============================================================================

    max_concurrent_jobs: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Jobs executed concurrently"
    )

    job_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries before a job becomes terminally failed"
    )

    job_retry_base_delay: float = Field(
        default=5.0,
        ge=0.0,
        description="Base backoff between job retries (seconds)"
    )

    index_job_timeout: float = Field(
        default=600.0,
        gt=0.0,
        description="Hard timeout for full_index and cleanup_sync attempts"
    )

    delete_step_timeout: float = Field(
        default=45.0,
        gt=0.0,
        description="Hard timeout for each delete sub-step"
    )

    job_history_limit: int = Field(
        default=1000,
        ge=1,
        description="Finished jobs kept in memory; the latest jobs per store are always kept"
    )

    # ============================================================================
    # SYNC STATUS CONFIGURATION
    # ============================================================================

    initial_sync_grace_minutes: float = Field(
        default=5.0,
        ge=0.0,
        description="Minutes after store creation reported as syncing"
    )

    stale_sync_minutes: float = Field(
        default=60.0,
        gt=0.0,
        description="Minutes after which a store needs a new sync"
    )

    # ============================================================================
    # SERVER CONFIGURATION
    # ============================================================================

    host: str = Field(
        default="0.0.0.0",
        description="Server host address"
    )

    port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="Server port number"
    )

    allowed_origins: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000"],
        description="CORS allowed origins"
    )

    api_prefix: str = Field(
        default="/api/v1",
        description="API route prefix"
    )

    # ============================================================================
    # LOGGING CONFIGURATION
    # ============================================================================

    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)"
    )

    log_file: Optional[str] = Field(
        default=None,
        description="Log file path (optional)"
    )

    # ============================================================================
    # DEVELOPMENT SETTINGS
    # ============================================================================

    environment: str = Field(
        default="development",
        description="Environment (development, staging, production)"
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )

    # ============================================================================
    # COMPUTED PROPERTIES
    # ============================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent.parent

    # ============================================================================
    # VALIDATORS
    # ============================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        valid_formats = ["json", "text"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        valid_envs = ["development", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of: {valid_envs}")
        return v.lower()

    @field_validator("vector_backend")
    @classmethod
    def validate_vector_backend(cls, v):
        """Only Pinecone and the in-process store are wired up."""
        valid_backends = ["pinecone", "memory"]
        if v.lower() not in valid_backends:
            raise ValueError(f"Vector backend must be one of: {valid_backends}")
        return v.lower()

    @field_validator("allowed_origins", "locale_precedence", mode="before")
    @classmethod
    def validate_lists(cls, v):
        """Parse comma-separated strings into lists."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance for dependency injection."""
    return settings
