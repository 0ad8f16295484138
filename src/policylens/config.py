"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (POLICYLENS__INFERENCE__API_TOKEN=...)
  2. policylens.yaml        (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional: all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("policylens")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first policylens.yaml found, or None."""
    candidates = [
        Path("policylens.yaml"),
        Path(platformdirs.user_config_dir("policylens")) / "policylens.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8787
    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])
    max_body_bytes: int = 10 * 1024
    require_extension_header: bool = True


class FetcherSettings(BaseModel):
    timeout_seconds: float = 10.0
    max_redirects: int = 3
    user_agent: str = "PolicyLens/1.0 (+https://github.com/policylens/policylens)"


class AnalysisSettings(BaseModel):
    max_chunk_size: int = 2000
    min_chunk_size: int = 50
    max_sampled_chunks: int = 3
    key_points_cap: int = 10
    red_flags_cap: int = 5
    recommendations_cap: int = 5


class InferenceSettings(BaseModel):
    provider: Literal["workers_ai", "openai"] = "workers_ai"
    base_url: str = "https://api.cloudflare.com/client/v4"
    account_id: str = ""
    api_token: str = ""
    model: str = "@cf/meta/llama-3.3-70b-instruct-fp8-fast"
    max_tokens: int = 4096
    summary_max_tokens: int = 500
    temperature: float = 0.1
    timeout_seconds: float = 30.0


class CacheSettings(BaseModel):
    backend: Literal["sqlite", "memory"] = "sqlite"
    db_path: str = _DEFAULT_DB_PATH
    partition: str = "global-cache"
    ttl_minutes: int = Field(default=30, gt=0)
    cleanup_interval_minutes: int = 60
    cleanup_max_age_minutes: int = 30


class RateLimitSettings(BaseModel):
    window_seconds: float = Field(default=60.0, gt=0)
    max_requests: int = Field(default=10, gt=0)
    sweep_probability: float = 0.01


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: POLICYLENS__SERVER__PORT=9090
        env_prefix="POLICYLENS__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    fetcher: FetcherSettings = FetcherSettings()
    analysis: AnalysisSettings = AnalysisSettings()
    inference: InferenceSettings = InferenceSettings()
    cache: CacheSettings = CacheSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
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
