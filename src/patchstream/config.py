"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (PATCHSTREAM__CACHE__TTL_DAYS=3)
  2. patchstream.yaml       (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("patchstream")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "generation_cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first patchstream.yaml found, or None."""
    candidates = [
        Path("patchstream.yaml"),
        Path(platformdirs.user_config_dir("patchstream")) / "patchstream.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class GeneratorSettings(BaseModel):
    url: str = "http://localhost:54321/functions/v1/generate-website"
    timeout_seconds: float = 120.0


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl_days: int = 7
    max_entries: int = 20
    db_path: str = _DEFAULT_DB_PATH
    max_value_bytes: int = 5 * 1024 * 1024


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: PATCHSTREAM__CACHE__MAX_ENTRIES=50
        env_prefix="PATCHSTREAM__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    generator: GeneratorSettings = GeneratorSettings()
    cache: CacheSettings = CacheSettings()
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
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
