"""Engine settings.

Sources, first match wins:
  1. Constructor arguments
  2. Environment variables  (PRERENDER__CACHE__CAPACITY=500)
  3. prerender.yaml         (searched in cwd, then the platform config dir)
  4. Hardcoded defaults

The config file is optional: all fields have sensible defaults. Values set on
an individual ``Route`` take precedence over the defaults defined here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, PositiveInt
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from prerender.models.route import FallbackMode, Revalidate

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("prerender")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "artifacts.db")


def _find_config_file() -> str | None:
    """First existing prerender.yaml, or None when running on defaults."""
    search_path = [
        Path("prerender.yaml"),
        Path(platformdirs.user_config_dir("prerender")) / "prerender.yaml",
    ]
    for path in search_path:
        if path.exists():
            return str(path)
    return None


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    revalidate_seconds: Revalidate = 60
    generation_timeout_ms: PositiveInt = 10_000
    capacity: PositiveInt | None = None  # None = unbounded
    persist: bool = False
    db_path: str = _DEFAULT_DB_PATH
    prewarm_concurrency: PositiveInt = 4
    record_max_age_days: PositiveInt | None = 30  # None = keep durable records forever
    cleanup_interval_hours: PositiveInt = 6


class RoutingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fallback_mode: FallbackMode = FallbackMode.BLOCKING_GENERATE
    max_redirects: int = Field(default=5, ge=0)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: PRERENDER__CACHE__CAPACITY=500
        env_prefix="PRERENDER__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
        extra="forbid",
    )

    cache: CacheSettings = CacheSettings()
    routing: RoutingSettings = RoutingSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # No dotenv or secrets-dir support.
        return (init_settings, env_settings, YamlConfigSettingsSource(settings_cls))
