"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    PROJECT_NAME: str = "Dossier Migration API"

    # Staging database
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "dossier_migration"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_COMMAND_TIMEOUT_SECONDS: int = 120
    SQL_ECHO: bool = False

    # Checkpoint bookkeeping runs on its own engine; empty means same database
    CHECKPOINT_DATABASE_URL_OVERRIDE: str = ""

    # Redis / Celery
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # Content repository (source and destination)
    ALFRESCO_BASE_URL: str = "http://localhost:8080"
    ALFRESCO_USERNAME: str = "admin"
    ALFRESCO_PASSWORD: str = "admin"
    ALFRESCO_TIMEOUT_SECONDS: float = 60.0
    ALFRESCO_RETRY_COUNT: int = 3

    # Client data API (empty base URL disables enrichment)
    CLIENT_API_BASE_URL: str = ""
    CLIENT_API_TIMEOUT_SECONDS: float = 30.0
    CLIENT_API_RETRY_COUNT: int = 3
    CLIENT_API_MAX_CONCURRENT_REQUESTS: int = 10
    CLIENT_API_CACHE_TTL_SECONDS: int = 3600

    # Deposit offer API (empty base URL disables offer matching)
    OFFER_API_BASE_URL: str = ""
    OFFER_API_TIMEOUT_SECONDS: float = 30.0
    OFFER_API_RETRY_COUNT: int = 3

    # Migration roots
    ROOT_DISCOVERY_FOLDER_ID: str = ""
    ROOT_DESTINATION_FOLDER_ID: str = ""
    FOLDER_NAME_FILTER: str = "-"

    # Batch processing
    BATCH_SIZE: int = 100
    MAX_DEGREE_OF_PARALLELISM: int = 5
    IDLE_DELAY_MS: int = 1000
    BREAK_EMPTY_RESULTS: int = 3
    DELAY_BETWEEN_BATCHES_MS: int = 0
    STUCK_ITEMS_TIMEOUT_MINUTES: int = 30
    DOCUMENT_PAGE_SIZE: int = 100

    # Folder preparation
    FOLDER_PREPARATION_MAX_PARALLELISM: int = 50
    FOLDER_PREPARATION_CHECKPOINT_INTERVAL: int = 1000
    LOCK_STRIPE_COUNT: int = 1024

    # Move
    MOVE_BATCH_SIZE: int = 100
    MOVE_MAX_DEGREE_OF_PARALLELISM: int = 5
    MAX_DOCUMENT_RETRIES: int = 3

    # Document search (migration by document type)
    MIGRATION_BY_DOCUMENT: bool = False
    DOC_SEARCH_BATCH_SIZE: int = 100
    DOC_SEARCH_DOC_TYPES: list[str] = []
    DOC_SEARCH_FOLDER_TYPES: list[str] = []
    DOC_SEARCH_USE_DATE_FILTER: bool = False
    DOC_SEARCH_DATE_FROM: Optional[str] = None
    DOC_SEARCH_DATE_TO: Optional[str] = None
    MAX_DOCUMENTS_TO_PROCESS: Optional[int] = None

    # KDP document update (after the move)
    KDP_DOC_TYPES: list[str] = ["00824", "00099"]
    KDP_ANCESTOR_FOLDER_ID: str = ""
    KDP_PAGE_SIZE: int = 1000
    KDP_BATCH_SIZE: int = 500
    KDP_MAX_DEGREE_OF_PARALLELISM: int = 5
    KDP_DELAY_BETWEEN_BATCHES_MS: int = 500

    # Global error tracker
    MAX_TIMEOUTS_BEFORE_STOP: int = 10
    MAX_RETRY_FAILURES_BEFORE_STOP: int = 50
    MAX_TOTAL_ERRORS_BEFORE_STOP: int = 100

    # Business rules
    ENABLE_RETENTION_POLICY_RULE: bool = False
    ACTIVE_SENTINEL_CODES: list[str] = ["00099"]
    ENABLE_TYPE_TRANSFORMATION: bool = True
    CLEANUP_INCOMPLETE_ON_START: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost"]

    @property
    def DATABASE_URL(self) -> str:
        """Async PostgreSQL database URL for SQLAlchemy."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def CHECKPOINT_DATABASE_URL(self) -> str:
        """Database URL used for phase checkpoint bookkeeping."""
        return self.CHECKPOINT_DATABASE_URL_OVERRIDE or self.DATABASE_URL


settings = Settings()
