"""Pool settings using pydantic-settings.

Settings are loaded from environment variables (or a ``.env`` file). There are
no built-in credentials: the endpoint, username and password must be supplied
by the deployment.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pgsource.database.exceptions import ConfigurationError

IsolationLevel = Literal[
    "read_uncommitted",
    "read_committed",
    "repeatable_read",
    "serializable",
]


class PoolSettings(BaseSettings):
    """Connection pool settings.

    Environment variables:
        PGSOURCE_DB_ENDPOINT: host[:port]/database (required)
        PGSOURCE_DB_USERNAME: Database user (required)
        PGSOURCE_DB_PASSWORD: Database password (required)
        PGSOURCE_DB_PREPARED_STATEMENT_CACHE_ENABLED: Cache prepared statements (default: true)
        PGSOURCE_DB_PREPARED_STATEMENT_CACHE_SIZE: Statements cached per connection (default: 250)
        PGSOURCE_DB_PREPARED_STATEMENT_CACHE_SQL_LIMIT: Longest cacheable SQL text (default: 2048)
        PGSOURCE_DB_POOL_MIN_CONNECTIONS: Connections opened at startup (default: 1)
        PGSOURCE_DB_POOL_MAX_CONNECTIONS: Maximum leased connections (default: 10)
        PGSOURCE_DB_ACQUIRE_TIMEOUT_SECONDS: Wait for a free connection (default: 30)
        PGSOURCE_DB_CONNECT_TIMEOUT_SECONDS: libpq connect timeout (default: 10)
        PGSOURCE_DB_AUTOCOMMIT: Autocommit mode for leased connections (default: false)
        PGSOURCE_DB_ISOLATION_LEVEL: Transaction isolation level (default: server default)
        PGSOURCE_DB_APPLICATION_NAME: Reported to the server (default: pgsource)
    """

    model_config = SettingsConfigDict(
        env_prefix="PGSOURCE_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    endpoint: str = Field(default="", description="host[:port]/database")
    username: str = Field(default="", description="Database username")
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Database password",
    )
    prepared_statement_cache_enabled: bool = Field(
        default=True,
        description="Cache server-side prepared statements per connection",
    )
    prepared_statement_cache_size: int = Field(
        default=250,
        description="Maximum prepared statements cached per connection",
        ge=0,
        le=10_000,
    )
    prepared_statement_cache_sql_limit: int = Field(
        default=2048,
        description="Maximum SQL length eligible for the statement cache",
        ge=1,
        le=1_000_000,
    )
    pool_min_connections: int = Field(
        default=1,
        description="Minimum connections in pool",
        ge=1,
        le=100,
    )
    pool_max_connections: int = Field(
        default=10,
        description="Maximum connections in pool",
        ge=1,
        le=100,
    )
    acquire_timeout_seconds: float = Field(
        default=30.0,
        description="How long get_connection() waits for a free connection",
        gt=0,
        le=3600,
    )
    connect_timeout_seconds: int = Field(
        default=10,
        description="libpq connect_timeout for new physical connections",
        ge=1,
        le=600,
    )
    autocommit: bool = Field(default=False, description="Autocommit mode")
    isolation_level: IsolationLevel | None = Field(
        default=None,
        description="Transaction isolation level, None keeps the server default",
    )
    application_name: str = Field(
        default="pgsource",
        description="application_name reported to the server",
    )

    @model_validator(mode="after")
    def validate_pool_settings(self) -> "PoolSettings":
        """Validate pool max >= min."""
        if self.pool_max_connections < self.pool_min_connections:
            raise ValueError(
                f"pool_max_connections ({self.pool_max_connections}) must be >= "
                f"pool_min_connections ({self.pool_min_connections})"
            )
        return self

    @property
    def statement_cache_active(self) -> bool:
        """True when prepared statements should be cached."""
        return (
            self.prepared_statement_cache_enabled
            and self.prepared_statement_cache_size > 0
        )

    @property
    def connection_string(self) -> str:
        """Generate a connection string (without password for logging)."""
        return f"postgresql://{self.username}@{self.endpoint}"


def load_pool_settings(**overrides) -> PoolSettings:
    """Load pool settings from the environment.

    Raises:
        ConfigurationError: If an environment value fails validation.
    """
    try:
        return PoolSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid pool settings: {e}") from e


@lru_cache
def get_pool_settings() -> PoolSettings:
    """Get cached pool settings.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return load_pool_settings()
