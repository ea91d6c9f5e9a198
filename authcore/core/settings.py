"""Application settings loaded from environment variables."""

from datetime import timedelta

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ACCESS_TOKEN_TTL_MINUTES_DEFAULT = 15
REFRESH_TOKEN_TTL_MINUTES_DEFAULT = 60
KEY_LIFETIME_DAYS_DEFAULT = 90
ROTATION_THRESHOLD_DEFAULT = 0.75
RATE_LIMIT_MAX_ATTEMPTS_DEFAULT = 5
RATE_LIMIT_WINDOW_MINUTES_DEFAULT = 15
RATE_LIMIT_GRACE_MINUTES_DEFAULT = 5
LOCKOUT_THRESHOLD_DEFAULT = 5
LOCKOUT_DURATION_MINUTES_DEFAULT = 30
SWEEP_INTERVAL_SECONDS_DEFAULT = 1800
ROTATION_CHECK_INTERVAL_SECONDS_DEFAULT = 3600
FAILURE_BACKOFF_SECONDS_DEFAULT = 300
DB_POOL_SIZE_DEFAULT = 5
DB_MAX_OVERFLOW_DEFAULT = 10
DB_PORT_DEFAULT = 5432


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_DB_")

    url: str = ""
    host: str = "localhost"
    port: int = DB_PORT_DEFAULT
    user: str = "authcore"
    password: str = "authcore"
    database: str = "authcore"
    pool_size: int = DB_POOL_SIZE_DEFAULT
    max_overflow: int = DB_MAX_OVERFLOW_DEFAULT

    @property
    def async_url(self) -> str:
        """Build async PostgreSQL connection URL unless overridden."""
        if self.url:
            return self.url
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class TokenSettings(BaseSettings):
    """Issuer, audience and lifetimes for access and refresh tokens."""

    model_config = SettingsConfigDict(env_prefix="AUTH_TOKEN_")

    issuer: str = "http://localhost:8000"
    audience: str = "authcore-clients"
    access_token_ttl_minutes: float = ACCESS_TOKEN_TTL_MINUTES_DEFAULT
    refresh_token_ttl_minutes: float = REFRESH_TOKEN_TTL_MINUTES_DEFAULT
    development_private_key: str = ""

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_ttl_minutes)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(minutes=self.refresh_token_ttl_minutes)


class KeySettings(BaseSettings):
    """Signing key storage and rotation policy."""

    model_config = SettingsConfigDict(env_prefix="AUTH_KEYS_")

    backend: str = "database"
    encryption_key: str = ""
    storage_path: str = "./keys"
    lifetime_days: float = KEY_LIFETIME_DAYS_DEFAULT
    rotation_threshold: float = ROTATION_THRESHOLD_DEFAULT

    @property
    def lifetime(self) -> timedelta:
        return timedelta(days=self.lifetime_days)


class RateLimitSettings(BaseSettings):
    """Per-identity login attempt throttling."""

    model_config = SettingsConfigDict(env_prefix="AUTH_RATE_")

    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS_DEFAULT
    window_minutes: float = RATE_LIMIT_WINDOW_MINUTES_DEFAULT
    grace_minutes: float = RATE_LIMIT_GRACE_MINUTES_DEFAULT
    backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    @property
    def entry_ttl(self) -> timedelta:
        """Cache entries outlive the window slightly so pruning stays lazy."""
        return timedelta(minutes=self.window_minutes + self.grace_minutes)


class LockoutSettings(BaseSettings):
    """Durable account lockout after repeated credential failures."""

    model_config = SettingsConfigDict(env_prefix="AUTH_LOCKOUT_")

    threshold: int = LOCKOUT_THRESHOLD_DEFAULT
    duration_minutes: float = LOCKOUT_DURATION_MINUTES_DEFAULT

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)


class MaintenanceSettings(BaseSettings):
    """Intervals for the background sweep and rotation jobs."""

    model_config = SettingsConfigDict(env_prefix="AUTH_MAINTENANCE_")

    enabled: bool = True
    sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS_DEFAULT
    rotation_check_interval_seconds: float = ROTATION_CHECK_INTERVAL_SECONDS_DEFAULT
    failure_backoff_seconds: float = FAILURE_BACKOFF_SECONDS_DEFAULT


class LogSettings(BaseSettings):
    """structlog output and audit sink selection."""

    model_config = SettingsConfigDict(env_prefix="AUTH_LOG_")

    level: str = "INFO"
    json_output: bool = True
    dev_mode: bool = False
    audit_sink: str = "log"


class AdminSettings(BaseSettings):
    """Internal bearer token protecting the admin routes."""

    model_config = SettingsConfigDict(env_prefix="AUTH_ADMIN_")

    internal_token: str = ""
    cors_origins: str = ""

    def get_cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        if not self.cors_origins:
            return []
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


class ServiceSettings(BaseModel):
    """Every settings group the service is assembled from."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    tokens: TokenSettings = Field(default_factory=TokenSettings)
    keys: KeySettings = Field(default_factory=KeySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    lockout: LockoutSettings = Field(default_factory=LockoutSettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    admin: AdminSettings = Field(default_factory=AdminSettings)
