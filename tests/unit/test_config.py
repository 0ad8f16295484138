"""Unit tests for configuration loading and platform-aware defaults."""

from __future__ import annotations

from typing import TYPE_CHECKING

import platformdirs
import pytest
from pydantic import ValidationError

from policylens.config import (
    _DEFAULT_DATA_DIR,
    _DEFAULT_DB_PATH,
    CacheSettings,
    RateLimitSettings,
    Settings,
)

if TYPE_CHECKING:
    from pathlib import Path


class TestPlatformDefaults:
    """Verify config defaults use platformdirs instead of hardcoded Unix paths."""

    def test_default_data_dir_matches_platformdirs(self) -> None:
        expected = platformdirs.user_data_dir("policylens")
        assert expected == _DEFAULT_DATA_DIR

    def test_default_db_path_under_data_dir(self) -> None:
        assert _DEFAULT_DB_PATH.startswith(_DEFAULT_DATA_DIR)
        assert _DEFAULT_DB_PATH.endswith("cache.db")

    def test_cache_settings_uses_platform_default(self) -> None:
        assert CacheSettings().db_path == _DEFAULT_DB_PATH


class TestDefaults:
    def test_operational_defaults(self) -> None:
        settings = Settings()
        assert settings.server.max_body_bytes == 10 * 1024
        assert settings.server.require_extension_header is True
        assert settings.fetcher.timeout_seconds == 10
        assert settings.fetcher.max_redirects == 3
        assert settings.analysis.max_chunk_size == 2000
        assert settings.analysis.min_chunk_size == 50
        assert settings.analysis.max_sampled_chunks == 3
        assert settings.cache.ttl_minutes == 30
        assert settings.cache.partition == "global-cache"
        assert settings.rate_limit.max_requests == 10
        assert settings.rate_limit.window_seconds == 60


class TestEnvironmentOverrides:
    def test_nested_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POLICYLENS__SERVER__PORT", "9090")
        monkeypatch.setenv("POLICYLENS__INFERENCE__PROVIDER", "openai")
        monkeypatch.setenv("POLICYLENS__RATE_LIMIT__MAX_REQUESTS", "3")

        settings = Settings()
        assert settings.server.port == 9090
        assert settings.inference.provider == "openai"
        assert settings.rate_limit.max_requests == 3

    def test_init_args_beat_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POLICYLENS__CACHE__TTL_MINUTES", "5")
        settings = Settings(cache=CacheSettings(ttl_minutes=45))
        assert settings.cache.ttl_minutes == 45


class TestYamlFile:
    def test_yaml_file_is_read(self, tmp_path: Path) -> None:
        config = tmp_path / "policylens.yaml"
        config.write_text("cache:\n  ttl_minutes: 12\nlogging:\n  format: text\n", encoding="utf-8")

        class FileSettings(Settings):
            model_config = {**Settings.model_config, "yaml_file": str(config)}

        settings = FileSettings()
        assert settings.cache.ttl_minutes == 12
        assert settings.logging.format == "text"

    def test_env_beats_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config = tmp_path / "policylens.yaml"
        config.write_text("cache:\n  ttl_minutes: 12\n", encoding="utf-8")
        monkeypatch.setenv("POLICYLENS__CACHE__TTL_MINUTES", "7")

        class FileSettings(Settings):
            model_config = {**Settings.model_config, "yaml_file": str(config)}

        assert FileSettings().cache.ttl_minutes == 7


class TestBounds:
    @pytest.mark.parametrize("ttl", [0, -5])
    def test_non_positive_ttl_rejected(self, ttl: int) -> None:
        with pytest.raises(ValidationError):
            CacheSettings(ttl_minutes=ttl)

    @pytest.mark.parametrize(
        "overrides", [{"window_seconds": 0}, {"max_requests": 0}, {"max_requests": -1}]
    )
    def test_non_positive_rate_limit_rejected(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            RateLimitSettings(**overrides)

    def test_non_positive_ttl_from_env_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POLICYLENS__CACHE__TTL_MINUTES", "0")
        with pytest.raises(ValidationError):
            Settings()
