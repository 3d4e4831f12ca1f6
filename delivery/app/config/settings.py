from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    broker_host: str = Field("localhost", validation_alias="BROKER_HOST")
    broker_port: int = Field(5672, ge=1, le=65535, validation_alias="BROKER_PORT")
    broker_vhost: str = Field("/", validation_alias="BROKER_VHOST")
    broker_user: str = Field("guest", validation_alias="BROKER_USER")
    broker_password: str = Field("guest", validation_alias="BROKER_PASSWORD")

    queue_name: str = Field("engine", min_length=1, max_length=255, validation_alias="QUEUE_NAME")
    queue_backend: str = Field("rabbitmq", validation_alias="QUEUE_BACKEND")
    prefetch_count: int = Field(1, ge=1, validation_alias="PREFETCH_COUNT")

    # Highest iteration a requeued task may carry (one attempt per second for a day).
    retry_limit: int = Field(86400, ge=0, validation_alias="RETRY_LIMIT")
    requeue_delay_ms: int = Field(0, ge=0, validation_alias="REQUEUE_DELAY_MS")
    requeue_exchange: str = Field("", validation_alias="REQUEUE_EXCHANGE")

    initial_backoff_seconds: float = Field(1.0, ge=0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, ge=0, validation_alias="MAX_BACKOFF_SECONDS")
    max_connection_attempts: int = Field(10, ge=1, validation_alias="MAX_CONNECTION_ATTEMPTS")
    backoff_multiplier: float = Field(2.0, ge=1, validation_alias="BACKOFF_MULTIPLIER")

    target_scheme: str = Field("http", validation_alias="TARGET_SCHEME")
    target_host: str = Field("hostname", validation_alias="TARGET_HOST")
    target_path: str = Field("/query/path", validation_alias="TARGET_PATH")
    delivery_connect_timeout_seconds: float = Field(5.0, gt=0, validation_alias="DELIVERY_CONNECT_TIMEOUT_SECONDS")
    delivery_read_timeout_seconds: float = Field(15.0, gt=0, validation_alias="DELIVERY_READ_TIMEOUT_SECONDS")

    app_name: str = Field("Engine delivery", validation_alias="APP_NAME")
    app_version: str = Field("1.0", validation_alias="APP_VERSION")

    log_file: str = Field("log/app.log", validation_alias="LOG_FILE")
    log_max_file_size_mb: float = Field(10, gt=0, validation_alias="LOG_MAX_FILE_SIZE_MB")
    log_max_files: int = Field(5, ge=1, validation_alias="LOG_MAX_FILES")
    log_trace_level: int = Field(10, ge=0, validation_alias="LOG_TRACE_LEVEL")
    log_levels: int = Field(0, ge=0, validation_alias="LOG_LEVELS")
    log_categories: list[str] = Field(default_factory=list, validation_alias="LOG_CATEGORIES")
    log_except_categories: list[str] = Field(default_factory=list, validation_alias="LOG_EXCEPT_CATEGORIES")
    log_flush_interval: int = Field(1, ge=1, validation_alias="LOG_FLUSH_INTERVAL")
    log_file_mode: int | None = Field(None, validation_alias="LOG_FILE_MODE")
    log_dir_mode: int = Field(0o775, validation_alias="LOG_DIR_MODE")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_to_stderr: bool = Field(False, validation_alias="LOG_TO_STDERR")

    @field_validator("queue_backend")
    @classmethod
    def _normalize_backend(cls, value: str) -> str:
        backend = value.strip().lower()
        if backend not in ("rabbitmq", "inmemory"):
            raise ValueError(f"Unsupported queue backend: {value}")
        return backend

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def target_url(self) -> str:
        scheme = self.target_scheme.rstrip("/").rstrip(":")
        host = self.target_host.rstrip("/")
        path = self.target_path.lstrip("/")
        return f"{scheme}://{host}/{path}"

    @property
    def user_agent(self) -> str:
        return f"{self.app_name}/{self.app_version}"

    @property
    def log_max_file_size_bytes(self) -> int:
        return int(self.log_max_file_size_mb * 1024 * 1024)
