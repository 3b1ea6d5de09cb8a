from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
    )

    # Core
    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    database_url: str = Field("sqlite:///./relay_worker.db", alias="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")

    # Object storage (S3 / MinIO)
    object_storage_backend: str = Field("s3", alias="OBJECT_STORAGE_BACKEND")  # s3|memory
    s3_endpoint: str | None = Field(None, alias="S3_ENDPOINT")
    s3_bucket: str = Field("relay-media", alias="S3_BUCKET")
    aws_region: str = Field("us-east-1", alias="AWS_REGION")
    aws_access_key_id: str | None = Field(None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str | None = Field(None, alias="AWS_SECRET_ACCESS_KEY")
    storage_delete_batch_size: int = Field(1000, alias="STORAGE_DELETE_BATCH_SIZE")

    # External classifier (optional)
    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    openai_base_url: str = Field("https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    openai_model: str = Field("gpt-4-turbo-preview", alias="OPENAI_MODEL")
    classifier_timeout_seconds: float = Field(20.0, alias="CLASSIFIER_TIMEOUT_SECONDS")

    # Job orchestration
    job_max_retries: int = Field(3, alias="JOB_MAX_RETRIES")
    job_backoff_max_seconds: int = Field(600, alias="JOB_BACKOFF_MAX_SECONDS")
    retention_cron: str = Field("0 3 * * *", alias="RETENTION_CRON")
    dedupe_scan_cron: str = Field("0 */6 * * *", alias="DEDUPE_SCAN_CRON")

    # Classification / dedup policy
    eligible_interaction_types: str = Field("bug,feedback", alias="ELIGIBLE_INTERACTION_TYPES")
    dedupe_candidate_window_days: int = Field(30, alias="DEDUPE_CANDIDATE_WINDOW_DAYS")
    dedupe_candidate_limit: int = Field(100, alias="DEDUPE_CANDIDATE_LIMIT")
    dedupe_scan_window_days: int = Field(7, alias="DEDUPE_SCAN_WINDOW_DAYS")
    dedupe_scan_limit: int = Field(50, alias="DEDUPE_SCAN_LIMIT")
    similarity_floor: float = Field(0.5, alias="SIMILARITY_FLOOR")
    similarity_top_k: int = Field(5, alias="SIMILARITY_TOP_K")
    heuristic_match_threshold: float = Field(0.8, alias="HEURISTIC_MATCH_THRESHOLD")
    external_match_threshold: float = Field(0.7, alias="EXTERNAL_MATCH_THRESHOLD")
    max_labels: int = Field(5, alias="MAX_LABELS")

    # Replay sanitization
    replay_processing_lease_minutes: int = Field(15, alias="REPLAY_PROCESSING_LEASE_MINUTES")

    # Retention
    retention_interaction_batch: int = Field(1000, alias="RETENTION_INTERACTION_BATCH")
    retention_session_batch: int = Field(1000, alias="RETENTION_SESSION_BATCH")
    retention_replay_batch: int = Field(500, alias="RETENTION_REPLAY_BATCH")
    retention_max_batches: int = Field(10, alias="RETENTION_MAX_BATCHES")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings():
    """Clear cached settings (useful in tests when env vars change)."""
    get_settings.cache_clear()


def parse_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]
