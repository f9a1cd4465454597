"""Tests for netpipe.config: XDG paths, atomic writes, precedence."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from netpipe.config import (
    atomic_write,
    get_cache_dir,
    get_config_dir,
    load_global_config,
    resolve_config,
    save_global_config,
)
from netpipe.exceptions import ConfigError
from netpipe.models import CacheConfig, GlobalConfig, RequestConfig, RetryConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_json(path: Path, data: Any) -> None:
    """Write a dict as JSON to *path*, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


# ---------------------------------------------------------------------------
# XDG path resolution
# ---------------------------------------------------------------------------


class TestXDGPathsLinux:
    """XDG paths on Linux (the default XDG platform)."""

    def test_config_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("netpipe.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_config_dir()
        assert result == tmp_path / ".config" / "netpipe"
        assert result.is_dir()

    def test_config_dir_xdg_custom(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        custom = tmp_path / "custom_config"
        monkeypatch.setattr("netpipe.config._is_xdg_platform", lambda: True)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(custom))

        assert get_config_dir() == custom / "netpipe"

    def test_cache_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("netpipe.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_cache_dir()
        assert result == tmp_path / ".cache" / "netpipe"
        assert result.is_dir()

    def test_cache_dir_xdg_custom(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("netpipe.config._is_xdg_platform", lambda: True)
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xc"))

        assert get_cache_dir() == tmp_path / "xc" / "netpipe"


class TestXDGPathsFallback:
    """Paths on macOS and Windows."""

    def test_config_dir_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("netpipe.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        assert get_config_dir() == tmp_path / ".netpipe"

    def test_cache_dir_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("netpipe.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_cache_dir()
        assert result == tmp_path / ".netpipe" / "cache"
        assert result.is_dir()


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:
    def test_creates_file_with_content(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        atomic_write(target, "hello world")
        assert target.read_text(encoding="utf-8") == "hello world"

    def test_overwrites_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        target.write_text("old content", encoding="utf-8")
        atomic_write(target, "new content")
        assert target.read_text(encoding="utf-8") == "new content"

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "test.txt"
        atomic_write(target, "deep write")
        assert target.read_text(encoding="utf-8") == "deep write"

    def test_no_temp_files_left_on_success(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        atomic_write(target, "content")
        assert list(tmp_path.iterdir()) == [target]

    def test_failure_keeps_original(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        target.write_text("original", encoding="utf-8")
        with patch("netpipe.config.os.fsync", side_effect=OSError("disk error")):
            with pytest.raises(OSError, match="disk error"):
                atomic_write(target, "will fail")
        assert target.read_text(encoding="utf-8") == "original"
        assert [f for f in tmp_path.iterdir() if ".tmp" in f.name] == []

    def test_unicode_content(self, tmp_path: Path) -> None:
        target = tmp_path / "unicode.txt"
        content = "Hello 世界 éàüñ"
        atomic_write(target, content)
        assert target.read_text(encoding="utf-8") == content


# ---------------------------------------------------------------------------
# Global config
# ---------------------------------------------------------------------------


class TestGlobalConfig:
    def test_load_returns_defaults_when_missing(self, isolated_config: Path) -> None:
        cfg = load_global_config()
        assert cfg == GlobalConfig()
        assert cfg.request.timeout == 10.0
        assert cfg.retry.max_retries == 3
        assert cfg.cache.name == "temporary"
        assert cfg.cache.capacity == 50
        assert cfg.cache.ttl_seconds == 43200

    def test_save_and_load_roundtrip(self, isolated_config: Path) -> None:
        original = GlobalConfig(
            request=RequestConfig(timeout=3.0, max_workers=8),
            retry=RetryConfig(max_retries=1, retry_statuses=[429]),
            cache=CacheConfig(name="api", capacity=10, persist=False),
        )
        save_global_config(original)
        assert load_global_config() == original

    def test_saved_config_location(self, isolated_config: Path) -> None:
        save_global_config(GlobalConfig())
        path = isolated_config / "config" / "netpipe" / "config.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert set(data) == {"request", "retry", "cache", "output"}

    def test_load_invalid_json_raises_config_error(self, isolated_config: Path) -> None:
        path = isolated_config / "config" / "netpipe" / "config.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{invalid json!!!", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid global config"):
            load_global_config()

    def test_load_invalid_schema_raises_config_error(self, isolated_config: Path) -> None:
        _write_json(
            isolated_config / "config" / "netpipe" / "config.json",
            {"cache": {"capacity": 0}},
        )
        with pytest.raises(ConfigError, match="Invalid global config"):
            load_global_config()


# ---------------------------------------------------------------------------
# Precedence resolution
# ---------------------------------------------------------------------------


class TestResolveConfig:
    """explicit > env > file > defaults."""

    @pytest.fixture(autouse=True)
    def _isolate(self, isolated_config: Path) -> None:
        self.config_path = isolated_config / "config" / "netpipe" / "config.json"

    def test_defaults(self) -> None:
        assert resolve_config() == GlobalConfig()

    def test_file_overrides_defaults(self) -> None:
        _write_json(self.config_path, {"request": {"timeout": 30}, "cache": {"name": "file"}})
        cfg = resolve_config()
        assert cfg.request.timeout == 30
        assert cfg.cache.name == "file"

    def test_env_overrides_file(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_json(self.config_path, {"request": {"timeout": 30}, "retry": {"max_retries": 5}})
        monkeypatch.setenv("NETPIPE_TIMEOUT", "2.5")
        monkeypatch.setenv("NETPIPE_MAX_RETRIES", "0")
        monkeypatch.setenv("NETPIPE_CACHE_NAME", "envcache")
        monkeypatch.setenv("NETPIPE_VERBOSE", "yes")
        cfg = resolve_config()
        assert cfg.request.timeout == 2.5
        assert cfg.retry.max_retries == 0
        assert cfg.cache.name == "envcache"
        assert cfg.output.verbose is True

    def test_explicit_overrides_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NETPIPE_TIMEOUT", "2.5")
        monkeypatch.setenv("NETPIPE_VERBOSE", "1")
        cfg = resolve_config(timeout=7.0, max_retries=9, cache_name="explicit", verbose=False)
        assert cfg.request.timeout == 7.0
        assert cfg.retry.max_retries == 9
        assert cfg.cache.name == "explicit"
        assert cfg.output.verbose is False

    def test_falsy_verbose_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_json(self.config_path, {"output": {"verbose": True}})
        monkeypatch.setenv("NETPIPE_VERBOSE", "off")
        assert resolve_config().output.verbose is False

    def test_bad_env_number_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NETPIPE_MAX_RETRIES", "many")
        with pytest.raises(ConfigError, match="NETPIPE_MAX_RETRIES"):
            resolve_config()
