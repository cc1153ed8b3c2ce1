"""Application settings loaded from environment variables.

Hey future me - every group reads its own ARTSHELF_<GROUP>_ prefix, so
ARTSHELF_DATABASE_URL and ARTSHELF_SCANNER_BATCH_SIZE both work without a
custom env mapping layer. Settings() aggregates the groups; use get_settings()
in app code (cached) and construct Settings(...) directly in tests.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DiscoverySource(str, Enum):
    """Where candidate metadata files come from."""

    LOCAL = "local"
    REMOTE = "remote"


# Hey future me - this is the answer to "remote scanner died, what now?". The old code silently
# fell back to a local glob, which is WRONG when the remote root and the local root differ (you
# import a different library than you asked for). Default is FAIL; FALLBACK_LOCAL must be chosen
# explicitly and is reported in ScanResult.errors so the caller sees it happened.
class RemoteFailurePolicy(str, Enum):
    """What to do when remote discovery exhausts its retries."""

    FAIL = "fail"
    FALLBACK_LOCAL = "fallback_local"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="ARTSHELF_DATABASE_", extra="ignore")

    url: str = "sqlite+aiosqlite:///./artshelf.db"
    echo: bool = False
    pool_pre_ping: bool = True
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600
    # Bulk writes of a few hundred rows plus their images can be slow on cold disks
    batch_transaction_timeout: float = 30.0


class ScannerSettings(BaseSettings):
    """Settings for the artwork ingestion pipeline."""

    model_config = SettingsConfigDict(env_prefix="ARTSHELF_SCANNER_", extra="ignore")

    batch_size: int = Field(default=100, ge=1)
    max_depth: int = Field(default=4, ge=1)

    discovery_source: DiscoverySource = DiscoverySource.LOCAL
    remote_discovery_url: str | None = None
    remote_timeout: float = 30.0
    remote_max_attempts: int = Field(default=3, ge=1)
    remote_initial_delay: float = 1.0
    remote_max_delay: float = 5.0
    remote_failure_policy: RemoteFailurePolicy = RemoteFailurePolicy.FAIL

    progress_min_interval: float = 0.25
    # Delete imageless artworks and unreferenced artists/tags once the batches are done
    cleanup_orphans: bool = True

    @field_validator("remote_discovery_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value:
            return value.rstrip("/")
        return value


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="ARTSHELF_", extra="ignore")

    log_level: str = "INFO"
    json_logs: bool = False


class Settings(BaseSettings):
    """Top-level settings object passed to services and workers."""

    model_config = SettingsConfigDict(env_prefix="ARTSHELF_", extra="ignore")

    app_name: str = "artshelf"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    scanner: ScannerSettings = Field(default_factory=ScannerSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    def validate_scanner(self) -> None:
        """Check scanner settings that depend on each other.

        Raises:
            ConfigurationError: If remote discovery is selected without an endpoint
        """
        from artshelf.domain.exceptions import ConfigurationError

        if (
            self.scanner.discovery_source == DiscoverySource.REMOTE
            and not self.scanner.remote_discovery_url
        ):
            raise ConfigurationError(
                "Remote discovery selected but ARTSHELF_SCANNER_REMOTE_DISCOVERY_URL is not set"
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
