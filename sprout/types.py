"""Shared type definitions for sprout.

This module contains dataclasses, enums, and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class BackendKind(str, Enum):
    """Which build backend produced a result."""

    LOCAL = "local"
    CONTAINERIZED = "containerized"


class Phase(str, Enum):
    """Pipeline phase, used to give errors context."""

    CONFIG = "config"
    RESOLVE = "resolve"
    EMBED = "embed"
    RENDER = "render"
    BUILD = "build"
    LOCATE = "locate"
    DELIVER = "deliver"


@dataclass(frozen=True)
class ResolvedImage:
    """A container image selected for embedding into the system image.

    Attributes:
        canonical_ref: Image reference used for deduplication.
        local_tag: Pipeline-private tag the image is saved under.
        archive_path: Where the exported image tar is staged.
        build_service: Compose service to build when the reference was
            synthesised from a build context; None means pull.
    """

    canonical_ref: str
    local_tag: str
    archive_path: Path
    build_service: str | None = None

    @property
    def needs_build(self) -> bool:
        return self.build_service is not None


@dataclass
class BuildResult:
    """Result of a backend execution.

    Attributes:
        backend: Backend that produced the result.
        reported_path: Opaque artifact reference printed by nix-build.
        artifact: Concrete image file, set by the artifact locator.
        output_lines: Tail of the captured build output.
    """

    backend: BackendKind
    reported_path: str
    artifact: Path | None = None
    output_lines: list[str] = field(default_factory=list)


__all__ = [
    "BackendKind",
    "BuildResult",
    "Phase",
    "ResolvedImage",
]
