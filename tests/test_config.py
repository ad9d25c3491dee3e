"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from sprout.config import (
    NIXOS_CACHE_KEY,
    NIXOS_CACHE_URL,
    Settings,
    get_settings,
    print_settings_json,
)


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert settings.config_dir.name == "sprout"
        assert settings.toolchain_image == "nixos/nix:latest"
        assert settings.nix_build_binary == "nix-build"
        assert settings.substituters == [NIXOS_CACHE_URL]
        assert settings.trusted_public_keys == [NIXOS_CACHE_KEY]
        assert settings.container_memory_bytes == 4294967296
        assert settings.container_cpu_shares == 1024
        assert settings.compose_command == ["docker", "compose"]
        assert settings.agent_binary is None
        assert settings.log_level == "INFO"

    def test_settings_from_env(self, tmp_path: Path) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "SPROUT_CONFIG_DIR": str(tmp_path),
                "SPROUT_LOG_LEVEL": "DEBUG",
                "SPROUT_BUILD_TIMEOUT": "120",
                "SPROUT_TOOLCHAIN_IMAGE": "nixos/nix:2.24.0",
            },
        ):
            settings = Settings()
            assert settings.config_dir == tmp_path
            assert settings.log_level == "DEBUG"
            assert settings.build_timeout == 120
            assert settings.toolchain_image == "nixos/nix:2.24.0"

    def test_xdg_config_home_respected(self, tmp_path: Path) -> None:
        """Default config_dir lives under XDG_CONFIG_HOME when set."""
        if os.name == "nt":
            pytest.skip("XDG_CONFIG_HOME is not used on Windows")
        env = {"XDG_CONFIG_HOME": str(tmp_path)}
        with patch.dict(os.environ, env):
            os.environ.pop("SPROUT_CONFIG_DIR", None)
            settings = Settings()
        assert settings.config_dir == tmp_path / "sprout"

    def test_derived_directories(self, tmp_path: Path) -> None:
        """Cache, store and lock dirs derive from config_dir."""
        settings = Settings(config_dir=tmp_path)
        assert settings.cache_root == tmp_path
        assert settings.nix_cache_dir == tmp_path / "cache"
        assert settings.nix_store_dir == tmp_path / "nix-store"
        assert settings.lock_dir == tmp_path / ".locks"

    def test_build_timeout_minimum(self) -> None:
        """Build timeout below one minute is rejected."""
        with pytest.raises(ValidationError):
            Settings(build_timeout=10)

    def test_container_memory_minimum(self) -> None:
        """Container memory below 512 MiB is rejected."""
        with pytest.raises(ValidationError):
            Settings(container_memory_bytes=1024)


class TestNixConfig:
    """Test NIX_CONFIG rendering."""

    def test_local_nix_config(self) -> None:
        config = Settings().nix_config()
        lines = config.splitlines()
        assert "cores = 0" in lines
        assert "max-jobs = auto" in lines
        assert f"substituters = {NIXOS_CACHE_URL}" in lines
        assert f"trusted-public-keys = {NIXOS_CACHE_KEY}" in lines
        assert not any(line.startswith("filter-syscalls") for line in lines)

    def test_container_nix_config_disables_syscall_filter(self) -> None:
        config = Settings().nix_config(filter_syscalls=False)
        assert "filter-syscalls = false" in config.splitlines()

    def test_multiple_substituters_space_separated(self) -> None:
        settings = Settings(substituters=["https://a.example", "https://b.example"])
        assert "substituters = https://a.example https://b.example" in settings.nix_config()


class TestGetSettings:
    """Test get_settings function."""

    def test_returns_settings_instance(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_returns_valid_json(self) -> None:
        """print_settings_json should return valid JSON."""
        output = print_settings_json()
        data = json.loads(output)
        assert "config_dir" in data
        assert "toolchain_image" in data
        assert "build_timeout" in data

    def test_uses_provided_settings(self, tmp_path: Path) -> None:
        """print_settings_json should use provided settings."""
        settings = Settings(config_dir=tmp_path, lock_timeout=5)
        data = json.loads(print_settings_json(settings))
        assert data["config_dir"] == str(tmp_path)
        assert data["lock_timeout"] == 5
