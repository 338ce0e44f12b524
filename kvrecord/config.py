"""
Runtime settings for the record mapper.

Settings come from the environment (optionally seeded from a .env file via
python-dotenv) and can be overridden with keyword arguments.
"""
import os
import logging
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "KVRECORD_"
# every component logger is a child of this one
LOGGER_PREFIX = "kvrecord"

class MapperSettings(BaseModel):
    """Configuration shared by the store backends and the lock coordinator."""
    store_url: str = Field(default="memory://", description="memory:// or an SQLAlchemy database URL")
    lock_timeout: float = Field(default=30.0, gt=0, description="Seconds to wait for a cross-type lock")
    lock_expiry: float = Field(
        default=60.0, gt=0,
        description="Lease length of a held lock in seconds; leases are not renewed, so this must exceed the longest locked block",
    )
    lock_poll_interval: float = Field(default=0.05, gt=0, description="Seconds between lock attempts")
    log_level: str = Field(default="WARNING")

    model_config = ConfigDict(frozen=True)

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level


def load_settings(env_file: Optional[str] = None, **overrides: Any) -> MapperSettings:
    """
    Build settings from the environment.

    Args:
        env_file: Optional path to a .env file; the default lookup is used if omitted
        **overrides: Explicit values that win over the environment

    Returns:
        A validated, immutable MapperSettings
    """
    load_dotenv(env_file)
    values: Dict[str, Any] = {}
    for name in MapperSettings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None and raw != "":
            values[name] = raw
    values.update(overrides)
    return MapperSettings(**values)


def configure_logging(settings: Union[MapperSettings, str]) -> None:
    """Apply the configured level to the kvrecord loggers."""
    level = settings if isinstance(settings, str) else settings.log_level
    logging.getLogger(LOGGER_PREFIX).setLevel(level.upper())
