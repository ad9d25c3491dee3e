"""Grow pipeline.

This module provides the high-level API:
- grow(): config -> resolve -> embed -> render -> build -> locate -> deliver

Phases run strictly in sequence under one wall-clock deadline. A failing
phase raises its own SproutError subclass, which names the phase. Staged
image archives and the rendered build input are removed when the run ends,
whether or not it succeeded.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console

from sprout.builds.artifacts import ArtifactLocator
from sprout.builds.backends import BuildBackend, select_backend
from sprout.compose.embedder import ImageEmbedder, remove_archives
from sprout.config import Settings, get_settings
from sprout.deadline import Deadline
from sprout.delivery import ProgressCallback, deliver
from sprout.display import RollingDisplay
from sprout.render import render_build_input, write_build_input
from sprout.sproutfile import (
    embed_compose,
    load_config_metadata,
    read_compose,
    resolve_output_path,
)
from sprout.sproutfile.schema import SproutConfig
from sprout.types import BackendKind, Phase

logger = logging.getLogger(__name__)


@dataclass
class GrowResult:
    """Outcome of a successful grow run.

    Attributes:
        output_path: Where the image was delivered.
        backend: Backend that built it.
        artifact: Image file the build produced.
        bytes_copied: Size of the delivered image.
        durations: Seconds spent per phase.
    """

    output_path: Path
    backend: BackendKind
    artifact: Path
    bytes_copied: int
    durations: dict[Phase, float] = field(default_factory=dict)


@contextmanager
def _timed(phase: Phase, durations: dict[Phase, float]) -> Iterator[None]:
    start = time.monotonic()
    try:
        yield
    finally:
        durations[phase] = time.monotonic() - start


def _attach_agent(config: SproutConfig, settings: Settings) -> None:
    if not config.autodiscovery:
        return
    if settings.agent_binary is None:
        logger.warning("Autodiscovery enabled but no agent binary configured")
        return
    config.agent_binary_path = settings.agent_binary.expanduser().resolve()


def grow(
    config_path: Path,
    *,
    settings: Settings | None = None,
    console: Console | None = None,
    cwd: Path | None = None,
    embedder: ImageEmbedder | None = None,
    backend: BuildBackend | None = None,
    on_progress: ProgressCallback | None = None,
) -> GrowResult:
    """Grow a system image from sprout.yaml.

    Args:
        config_path: Path to sprout.yaml.
        settings: Application settings.
        console: Console for the rolling build display.
        cwd: Invocation directory relative output paths resolve against.
        embedder: Image embedder (created from settings if omitted).
        backend: Build backend (selected for this host if omitted).
        on_progress: Copy progress callback, see deliver().

    Returns:
        GrowResult describing the delivered image.

    Raises:
        SproutError: Subclass naming the phase that failed.
    """
    settings = settings or get_settings()
    deadline = Deadline(settings.build_timeout)
    durations: dict[Phase, float] = {}

    logger.info("Growing image from %s", config_path)
    with _timed(Phase.CONFIG, durations):
        config = load_config_metadata(config_path)

    if config.embeds_compose:
        with _timed(Phase.RESOLVE, durations):
            compose_path = read_compose(config, config_path, settings.staging_dir)
        with _timed(Phase.EMBED, durations):
            embed_compose(
                config,
                compose_path,
                embedder or ImageEmbedder(settings=settings),
                timeout=deadline.remaining(),
            )
    _attach_agent(config, settings)
    output_path = resolve_output_path(config, cwd)

    build_input: Path | None = None
    try:
        with _timed(Phase.RENDER, durations):
            build_input = write_build_input(render_build_input(config))

        if backend is None:
            backend = select_backend(settings, RollingDisplay(console=console))

        extra_files = [config.agent_binary_path] if config.agent_binary_path else []
        with _timed(Phase.BUILD, durations):
            result = backend.execute(
                build_input,
                config.docker_compose.images,
                timeout=deadline.remaining(),
                extra_files=extra_files,
            )

        store_root = settings.nix_store_dir if result.backend == BackendKind.CONTAINERIZED else None
        locator = ArtifactLocator(store_root=store_root)
        with _timed(Phase.LOCATE, durations):
            artifact = locator.locate(result.reported_path, result.backend)
        result.artifact = artifact

        deadline.remaining()
        with _timed(Phase.DELIVER, durations):
            copied = deliver(artifact, output_path, on_progress=on_progress)
    finally:
        remove_archives(config.docker_compose.images)
        if build_input is not None:
            build_input.unlink(missing_ok=True)

    logger.info("Image written to %s", output_path)
    return GrowResult(
        output_path=output_path,
        backend=result.backend,
        artifact=artifact,
        bytes_copied=copied,
        durations=durations,
    )


__all__ = ["Deadline", "GrowResult", "grow"]
