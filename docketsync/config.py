"""
Service configuration.

Settings are read from the environment once, at startup, into an immutable
model that is passed explicitly to the gateway, reconciler and scheduler.
"""

import os
from enum import StrEnum
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field

from docketsync.exceptions import ConfigError

SERVICE_NAME = "docketsync"
SERVICE_VERSION = "0.1.0"

DEFAULT_STORE_CODE = "BLRAK"
DEFAULT_POLL_INTERVAL_MINUTES = 30
DEFAULT_MAX_WORKERS = 4
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_DB_NAME = "docketsync"

_TRUTHY = {"1", "true", "yes", "on"}


class Environment(StrEnum):
    """Courier environment selector"""

    TEST = "test"
    PRODUCTION = "production"


class CourierConfig(BaseModel):
    """Outbound courier API configuration"""

    model_config = ConfigDict(frozen=True)

    endpoint: str = Field(description="Base URL of the courier API")
    token: str = Field(description="API token")
    store_code: str = Field(
        default=DEFAULT_STORE_CODE, description="Registered store code"
    )
    timeout_seconds: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS, description="Per-request timeout"
    )


class Settings(BaseModel):
    """Immutable service settings"""

    model_config = ConfigDict(frozen=True)

    environment: Environment = Field(default=Environment.TEST)
    courier: CourierConfig
    poll_interval_minutes: int = Field(default=DEFAULT_POLL_INTERVAL_MINUTES, ge=1)
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, ge=1)
    scheduler_enabled: bool = Field(default=True)
    database_url: str | None = Field(default=None)
    instance_connection_name: str | None = Field(
        default=None, description="Cloud SQL instance (project:region:instance)"
    )
    db_name: str = Field(default=DEFAULT_DB_NAME)
    db_user: str | None = Field(
        default=None, description="Database user (service account email for IAM auth)"
    )

    @property
    def database_configured(self) -> bool:
        return bool(self.database_url or self.instance_connection_name)


def _int_from(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def load_settings(
    env: Mapping[str, str] | None = None, *, strict: bool = False
) -> Settings:
    """
    Build Settings from environment variables.

    Courier endpoint and token are chosen by DOCKETSYNC_ENV: the
    SEQUEL247_TEST_* pair for "test", SEQUEL247_PROD_* for "production".

    Args:
        env: Mapping to read from (defaults to os.environ)
        strict: Raise ConfigError if the courier endpoint or token is missing

    Returns:
        Frozen Settings instance

    Raises:
        ConfigError: On invalid values, or missing courier config when strict
    """
    env = os.environ if env is None else env

    raw_env = env.get("DOCKETSYNC_ENV", Environment.TEST.value).strip().lower()
    if raw_env in ("prod", "production"):
        environment = Environment.PRODUCTION
    elif raw_env in ("test", "dev", "development", ""):
        environment = Environment.TEST
    else:
        raise ConfigError(f"DOCKETSYNC_ENV must be 'test' or 'production', got {raw_env!r}")

    prefix = "SEQUEL247_PROD" if environment is Environment.PRODUCTION else "SEQUEL247_TEST"
    endpoint = env.get(f"{prefix}_ENDPOINT", "").rstrip("/")
    token = env.get(f"{prefix}_TOKEN", "")

    if strict:
        missing = [
            name
            for name, value in ((f"{prefix}_ENDPOINT", endpoint), (f"{prefix}_TOKEN", token))
            if not value
        ]
        if missing:
            raise ConfigError(
                f"Missing required environment variable(s): {', '.join(missing)}"
            )

    timeout_raw = env.get("SEQUEL247_TIMEOUT_SECONDS")
    try:
        timeout = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        raise ConfigError(
            f"SEQUEL247_TIMEOUT_SECONDS must be a number, got {timeout_raw!r}"
        )

    courier = CourierConfig(
        endpoint=endpoint,
        token=token,
        store_code=env.get("SEQUEL247_STORE_CODE") or DEFAULT_STORE_CODE,
        timeout_seconds=timeout,
    )

    return Settings(
        environment=environment,
        courier=courier,
        poll_interval_minutes=_int_from(
            env, "DOCKETSYNC_POLL_INTERVAL_MINUTES", DEFAULT_POLL_INTERVAL_MINUTES
        ),
        max_workers=_int_from(env, "DOCKETSYNC_MAX_WORKERS", DEFAULT_MAX_WORKERS),
        scheduler_enabled=env.get("DOCKETSYNC_SCHEDULER_ENABLED", "true").strip().lower()
        in _TRUTHY,
        database_url=env.get("DATABASE_URL") or None,
        instance_connection_name=env.get("INSTANCE_CONNECTION_NAME") or None,
        db_name=env.get("DB_NAME") or DEFAULT_DB_NAME,
        db_user=env.get("DB_USER") or None,
    )
