"""Configuration management for the image pipeline."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    ENV: str = "local"
    SERVICE_NAME: str = "imagepipe"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Backing services
    REGION: str = "europe-west1"
    TABLE_NAME: str = "Images"
    DLQ_URL: str = "dead-letter-queue"  # Dead-letter target address
    STREAM_FAILURE_QUEUE: str = "stream-failures"
    DELIVERY_FAILURE_QUEUE: str = "delivery-failures"  # Exhausted direct deliveries

    # Object store collaborator
    OBJECT_STORE_BACKEND: str = "local"  # "local" or "gcs"
    OBJECT_STORE_PATH: str = "data/buckets"
    GCP_PROJECT_ID: str = ""
    STORAGE_ENDPOINT: str = ""  # Override for emulators

    # Mailer collaborator
    MAILER_BACKEND: str = "log"  # "log" or "http"
    MAILER_URL: str = ""
    MAILER_TIMEOUT: int = 3
    SOURCE_EMAIL: str = "pipeline@example.com"
    DESTINATION_EMAIL: str = "owner@example.com"

    # Validation policy for unsupported files: "dead_letter" or "retry"
    VALIDATION_POLICY: str = "dead_letter"
    ALLOWED_EXTENSIONS: str = "jpeg,png"

    # Queue-fed consumers
    QUEUE_BATCH_SIZE: int = 5
    QUEUE_MAX_WAIT_SECONDS: float = 10.0
    REDRIVE_THRESHOLD: int = 3
    CONSUMER_TIMEOUT_SECONDS: float = 15.0

    # Direct topic subscribers, retried in place
    DIRECT_DELIVERY_ATTEMPTS: int = 3
    DIRECT_RETRY_WAIT_SECONDS: float = 1.0

    # Change stream consumer
    STREAM_BATCH_SIZE: int = 5
    STREAM_RETRY_ATTEMPTS: int = 2
    STREAM_BISECT_ON_ERROR: bool = True
    STREAM_RETENTION: int | None = None  # Max records retained, None = unbounded
    STREAM_POLL_SECONDS: float = 1.0

    @property
    def allowed_extensions(self) -> frozenset[str]:
        """Parse ALLOWED_EXTENSIONS into a normalized set."""
        return frozenset(
            ext.strip().lower().lstrip(".")
            for ext in self.ALLOWED_EXTENSIONS.split(",")
            if ext.strip()
        )


# Singleton settings instance
settings = Settings()
