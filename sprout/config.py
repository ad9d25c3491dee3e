"""Configuration settings for sprout.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

These are tool settings (where caches live, which toolchain image to run).
The per-image description lives in sprout.yaml, see sprout.sproutfile.
"""

import os
import tempfile
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

NIXOS_CACHE_URL = "https://cache.nixos.org"
NIXOS_CACHE_KEY = "cache.nixos.org-1:6NCHdD59X431o0gWypbMrAURkbJ16ZPMQFGspcDShjY="


def _default_config_dir() -> Path:
    """Return the per-user sprout configuration folder."""
    if os.name == "nt":
        base = os.environ.get("APPDATA")
    else:
        base = os.environ.get("XDG_CONFIG_HOME")
    if not base:
        base = str(Path.home() / ".config")
    return Path(base) / "sprout"


def _default_staging_dir() -> Path:
    """Return the default staging directory for image archives."""
    return Path(tempfile.gettempdir()) / "sprout-images"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the SPROUT_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="SPROUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    config_dir: Path = Field(
        default_factory=_default_config_dir,
        description="Root directory for persistent Nix cache and store",
    )
    staging_dir: Path = Field(
        default_factory=_default_staging_dir,
        description="Directory where exported image archives are staged",
    )
    workspace_root: Path = Field(
        default_factory=Path.home,
        description="Parent of containerized build workspaces (must be shared with the container runtime)",
    )
    agent_binary: Path | None = Field(
        default=None,
        description="Companion agent binary embedded when autodiscovery is enabled",
    )

    # Toolchain
    nix_build_binary: str = Field(
        default="nix-build",
        description="Name of the local nix-build executable",
    )
    toolchain_image: str = Field(
        default="nixos/nix:latest",
        description="Container image used for containerized builds",
    )
    substituters: list[str] = Field(
        default_factory=lambda: [NIXOS_CACHE_URL],
        description="Binary caches passed to nix-build",
    )
    trusted_public_keys: list[str] = Field(
        default_factory=lambda: [NIXOS_CACHE_KEY],
        description="Public keys trusted for the binary caches",
    )
    compose_command: list[str] = Field(
        default_factory=lambda: ["docker", "compose"],
        description="Command prefix used to build compose services",
    )

    # Container resources
    container_memory_bytes: int = Field(
        default=4 * 1024 * 1024 * 1024,
        ge=512 * 1024 * 1024,
        description="Memory ceiling for the build container",
    )
    container_cpu_shares: int = Field(
        default=1024,
        ge=2,
        description="Relative CPU weight for the build container",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Wall-clock timeout for one grow invocation",
    )
    lock_timeout: int = Field(
        default=600,
        ge=0,
        description="Timeout waiting for the shared Nix store lock",
    )

    @property
    def cache_root(self) -> Path:
        """Directory holding state shared across containerized builds."""
        return self.config_dir

    @property
    def nix_cache_dir(self) -> Path:
        """Host directory mounted as the container's Nix binary cache."""
        return self.cache_root / "cache"

    @property
    def nix_store_dir(self) -> Path:
        """Host directory mounted at /nix inside the build container."""
        return self.cache_root / "nix-store"

    @property
    def lock_dir(self) -> Path:
        """Directory for lock files guarding the shared directories."""
        return self.cache_root / ".locks"

    def nix_config(self, *, filter_syscalls: bool | None = None) -> str:
        """Render the NIX_CONFIG value passed to nix-build."""
        lines = [
            "cores = 0",
            "max-jobs = auto",
            f"substituters = {' '.join(self.substituters)}",
            f"trusted-public-keys = {' '.join(self.trusted_public_keys)}",
        ]
        if filter_syscalls is not None:
            lines.append(f"filter-syscalls = {'true' if filter_syscalls else 'false'}")
        return "\n".join(lines)


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "NIXOS_CACHE_KEY",
    "NIXOS_CACHE_URL",
    "Settings",
    "get_settings",
    "print_settings_json",
]
