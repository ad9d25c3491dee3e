"""Build backend interface and selection.

Two interchangeable backends run nix-build against the rendered input:
- LocalBackend: the host's nix-build
- ContainerizedBackend: nix-build inside a nixos/nix container

Selection order:
1. SPROUT_DISABLE_LOCAL_NIX set to any non-empty value -> containerized
2. nix-build found on PATH -> local
3. otherwise -> containerized
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from sprout.config import Settings, get_settings
from sprout.display import RollingDisplay
from sprout.types import BackendKind, BuildResult, ResolvedImage

logger = logging.getLogger(__name__)

DISABLE_LOCAL_ENV = "SPROUT_DISABLE_LOCAL_NIX"
NIX_STORE_PREFIX = "/nix/store/"
NIX_BUILD_FLAGS = ["--cores", "0", "--max-jobs", "auto", "--no-link"]


def nix_build_command(nix_build: str, build_input: str) -> list[str]:
    """Compose the nix-build invocation shared by both backends."""
    return [nix_build, *NIX_BUILD_FLAGS, build_input]


class BuildBackend(ABC):
    """Executes a rendered build input and reports the artifact path."""

    kind: BackendKind

    def __init__(
        self,
        settings: Settings | None = None,
        display: RollingDisplay | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.display = display or RollingDisplay()

    @abstractmethod
    def execute(
        self,
        build_input: Path,
        images: Sequence[ResolvedImage] = (),
        *,
        timeout: float | None = None,
        extra_files: Sequence[Path] = (),
    ) -> BuildResult:
        """Run the build.

        Args:
            build_input: Rendered Nix expression on the host.
            images: Embedded images whose archives the input references.
            timeout: Seconds left before the invocation deadline.
            extra_files: Other host files the input references.

        Returns:
            BuildResult with the backend-reported store path.

        Raises:
            BuildError: If nix-build fails or times out.
            ExtractionError: If no store path appears in the output.
        """


def select_backend(
    settings: Settings | None = None,
    display: RollingDisplay | None = None,
    environ: Mapping[str, str] | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> BuildBackend:
    """Choose the backend for this host.

    Args:
        settings: Application settings.
        display: Rolling display handed to the backend.
        environ: Environment to consult (default os.environ).
        which: PATH lookup used to find nix-build.

    Returns:
        A LocalBackend or ContainerizedBackend instance.
    """
    # Both backend modules import this one
    from sprout.builds.container import ContainerizedBackend
    from sprout.builds.local import LocalBackend

    settings = settings or get_settings()
    env = os.environ if environ is None else environ

    if env.get(DISABLE_LOCAL_ENV):
        logger.info("Local Nix disabled via %s, using Docker build", DISABLE_LOCAL_ENV)
        return ContainerizedBackend(settings=settings, display=display)

    nix_build = which(settings.nix_build_binary)
    if nix_build:
        logger.info("Using local Nix installation at %s", nix_build)
        return LocalBackend(nix_build, settings=settings, display=display)

    logger.info("Nix not found locally, using Docker build")
    return ContainerizedBackend(settings=settings, display=display)


__all__ = [
    "BuildBackend",
    "DISABLE_LOCAL_ENV",
    "NIX_BUILD_FLAGS",
    "NIX_STORE_PREFIX",
    "nix_build_command",
    "select_backend",
]
