"""
Centralized Configuration for Poem Translator
=============================================
All configuration values in one place, configurable via environment variables.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


def _get_bool_env(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_optional_bool_env(key: str) -> Optional[bool]:
    """Get boolean from environment variable, or None when unset/unparseable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return None


def _get_int_env(key: str, default: int) -> int:
    """Get integer from environment variable."""
    try:
        return int(os.environ.get(key, default))
    except (ValueError, TypeError):
        return default


def _get_float_env(key: str, default: float) -> float:
    """Get float from environment variable."""
    try:
        return float(os.environ.get(key, default))
    except (ValueError, TypeError):
        return default


def get_app_dir() -> str:
    """Directory holding databases, logs and uploads."""
    default_dir = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    return os.environ.get('POEM_TRANSLATOR_APP_DIR', default_dir)


@dataclass
class ServerConfig:
    """Flask server configuration."""
    host: str = field(default_factory=lambda: os.environ.get("POEM_TRANSLATOR_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _get_int_env("POEM_TRANSLATOR_PORT", 5001))
    debug: bool = field(default_factory=lambda: _get_bool_env("POEM_TRANSLATOR_DEBUG", False))
    secret_key: str = field(default_factory=lambda: os.environ.get("SECRET_KEY", "dev-key-change-in-production"))

    # CORS settings
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5001",
        "http://127.0.0.1:5001"
    ])


@dataclass
class ProviderConfig:
    """Generation provider (Ollama-compatible HTTP API) configuration."""
    base_url: str = field(default_factory=lambda: os.environ.get("PROVIDER_BASE_URL", "http://localhost:11434"))
    api_key: str = field(default_factory=lambda: os.environ.get("PROVIDER_API_KEY", ""))
    require_api_key: bool = field(default_factory=lambda: _get_bool_env("PROVIDER_REQUIRE_API_KEY", False))
    default_model: str = field(default_factory=lambda: os.environ.get("TRANSLATOR_MODEL", "llama3.1:8b"))
    fallback_model: str = field(default_factory=lambda: os.environ.get("FALLBACK_MODEL", "llama3.2:3b"))

    # Timeouts (seconds). The request timeout bounds a single unit call.
    connect_timeout: int = field(default_factory=lambda: _get_int_env("PROVIDER_CONNECT_TIMEOUT", 10))
    request_timeout: int = field(default_factory=lambda: _get_int_env("PROVIDER_REQUEST_TIMEOUT", 30))
    health_check_timeout: int = field(default_factory=lambda: _get_int_env("PROVIDER_HEALTH_TIMEOUT", 5))

    # Generation parameters
    temperature: float = field(default_factory=lambda: _get_float_env("PROVIDER_TEMPERATURE", 0.7))
    top_p: float = field(default_factory=lambda: _get_float_env("PROVIDER_TOP_P", 0.9))


@dataclass
class SchedulerConfig:
    """Tick scheduler configuration."""
    # "line" or "stanza"
    granularity: str = field(default_factory=lambda: os.environ.get("UNIT_GRANULARITY", "line"))
    concurrency: int = field(default_factory=lambda: _get_int_env("TICK_CONCURRENCY", 4))
    # Units started per tick; 0 means the concurrency bound
    max_units_per_tick: int = field(default_factory=lambda: _get_int_env("MAX_UNITS_PER_TICK", 0))

    # Time budgets (milliseconds)
    ui_tick_budget_ms: int = field(default_factory=lambda: _get_int_env("UI_TICK_BUDGET_MS", 500))
    worker_tick_budget_ms: int = field(default_factory=lambda: _get_int_env("WORKER_TICK_BUDGET_MS", 10000))

    # 0 means retries are unbounded
    max_retries_per_unit: int = field(default_factory=lambda: _get_int_env("MAX_RETRIES_PER_UNIT", 0))
    stale_processing_seconds: int = field(default_factory=lambda: _get_int_env("STALE_PROCESSING_SECONDS", 120))
    # Hard ceiling on one dispatched unit, covering its fallback requests
    unit_call_timeout_seconds: float = field(default_factory=lambda: _get_float_env("UNIT_CALL_TIMEOUT_SECONDS", 90.0))
    worker_poll_interval: float = field(default_factory=lambda: _get_float_env("WORKER_POLL_INTERVAL", 2.0))


@dataclass
class BackoffConfig:
    """Retry backoff configuration."""
    base_delay_ms: int = field(default_factory=lambda: _get_int_env("BACKOFF_BASE_DELAY_MS", 2000))
    max_delay_ms: int = field(default_factory=lambda: _get_int_env("BACKOFF_MAX_DELAY_MS", 30000))


@dataclass
class RateLimitConfig:
    """Per-user dequeue rate limit configuration."""
    limit: int = field(default_factory=lambda: _get_int_env("RATE_LIMIT_UNITS", 10))
    window_seconds: int = field(default_factory=lambda: _get_int_env("RATE_LIMIT_WINDOW_SECONDS", 60))
    feature: str = field(default_factory=lambda: os.environ.get("RATE_LIMIT_FEATURE", "translate"))
    # "sqlite" or "memory"
    backend: str = field(default_factory=lambda: os.environ.get("RATE_LIMIT_BACKEND", "sqlite"))
    # None means: derive from the environment (open outside production)
    fail_open: Optional[bool] = field(default_factory=lambda: _get_optional_bool_env("RATE_LIMIT_FAIL_OPEN"))


@dataclass
class CacheConfig:
    """Cache configuration."""
    enabled: bool = field(default_factory=lambda: _get_bool_env("CACHE_ENABLED", True))
    ttl_seconds: int = field(default_factory=lambda: _get_int_env("CACHE_TTL_SECONDS", 3600))
    cleanup_interval_hours: int = field(default_factory=lambda: _get_int_env("CACHE_CLEANUP_HOURS", 24))
    max_age_days: int = field(default_factory=lambda: _get_int_env("CACHE_MAX_AGE_DAYS", 30))


@dataclass
class NotificationConfig:
    """Best-effort outbound notifications."""
    url: str = field(default_factory=lambda: os.environ.get("NOTIFY_URL", ""))
    timeout_seconds: float = field(default_factory=lambda: _get_float_env("NOTIFY_TIMEOUT_SECONDS", 5.0))


@dataclass
class DatabaseConfig:
    """SQLite configuration."""
    timeout: float = field(default_factory=lambda: _get_float_env("DB_TIMEOUT", 30.0))


@dataclass
class FileConfig:
    """Poem upload configuration."""
    max_file_size_kb: int = field(default_factory=lambda: _get_int_env("MAX_FILE_SIZE_KB", 256))
    allowed_extensions: tuple = field(default_factory=lambda: (".txt",))
    max_poem_lines: int = field(default_factory=lambda: _get_int_env("MAX_POEM_LINES", 500))

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_kb * 1024


@dataclass
class LoggingConfig:
    """Logging configuration."""
    verbose_debug: bool = field(default_factory=lambda: _get_bool_env("VERBOSE_DEBUG", False))
    log_buffer_size: int = field(default_factory=lambda: _get_int_env("LOG_BUFFER_SIZE", 500))
    log_file_max_bytes: int = field(default_factory=lambda: _get_int_env("LOG_FILE_MAX_BYTES", 10 * 1024 * 1024))
    log_file_backup_count: int = field(default_factory=lambda: _get_int_env("LOG_FILE_BACKUP_COUNT", 5))


@dataclass
class PathConfig:
    """Path configuration."""
    app_dir: str = field(default_factory=get_app_dir)

    @property
    def log_folder(self) -> Path:
        return Path(self.app_dir) / 'logs'

    @property
    def db_path(self) -> str:
        return os.path.join(self.app_dir, 'jobs.db')

    @property
    def cache_db_path(self) -> str:
        return os.path.join(self.app_dir, 'cache.db')

    @property
    def rate_limit_db_path(self) -> str:
        return os.path.join(self.app_dir, 'ratelimit.db')


@dataclass
class Config:
    """Main application configuration container."""
    environment: str = field(default_factory=lambda: os.environ.get("POEM_TRANSLATOR_ENV", "development"))
    server: ServerConfig = field(default_factory=ServerConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    file: FileConfig = field(default_factory=FileConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    paths: PathConfig = field(default_factory=PathConfig)

    def __post_init__(self):
        """Create necessary directories after initialization."""
        self._create_directories()
        self._validate()

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def rate_limit_fails_open(self) -> bool:
        """Failure policy when the rate-limit counter store is unreachable."""
        if self.rate_limit.fail_open is not None:
            return self.rate_limit.fail_open
        return not self.is_production

    def _create_directories(self):
        """Create necessary directories."""
        os.makedirs(self.paths.log_folder, exist_ok=True)

    def _validate(self):
        """Validate configuration values."""
        if self.scheduler.granularity not in ("line", "stanza"):
            raise ValueError("granularity must be 'line' or 'stanza'")
        if self.scheduler.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.scheduler.max_units_per_tick < 0:
            raise ValueError("max_units_per_tick must not be negative")
        if self.backoff.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be positive")
        if self.backoff.max_delay_ms < self.backoff.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if self.rate_limit.limit < 1:
            raise ValueError("rate limit must be at least 1")
        if self.rate_limit.window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        if self.rate_limit.backend not in ("sqlite", "memory"):
            raise ValueError("rate limit backend must be 'sqlite' or 'memory'")


# Global configuration instance
config = Config()
