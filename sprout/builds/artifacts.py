"""Resolve a backend-reported store path to the concrete image file.

Each backend lays its output out differently:
- Local: ``<store path>/sd-image/<name>.img``, exactly one image
- Containerized: ``result.img`` at or directly below the store path, which
  lives in the host directory mounted at /nix inside the container

Dispatch is on the backend kind that produced the result.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from sprout.errors import NotFoundError
from sprout.types import BackendKind, BuildResult

logger = logging.getLogger(__name__)

IMAGE_SUFFIX = ".img"
RESULT_IMAGE = "result.img"
SD_IMAGE_DIR = "sd-image"
CONTAINER_STORE_ROOT = PurePosixPath("/nix")


def is_image_file(path: Path) -> bool:
    return path.suffix == IMAGE_SUFFIX and path.is_file()


class ArtifactLocator:
    """Find the image file a build produced.

    Args:
        store_root: Host directory mounted at /nix in the build container.
            When set, containerized paths are mapped onto it.
    """

    def __init__(self, store_root: Path | None = None) -> None:
        self.store_root = store_root

    def host_path(self, reported_path: str) -> Path:
        """Translate an in-container /nix path into its host location."""
        if self.store_root is None:
            return Path(reported_path)
        posix = PurePosixPath(reported_path)
        try:
            relative = posix.relative_to(CONTAINER_STORE_ROOT)
        except ValueError:
            return Path(reported_path)
        return self.store_root.joinpath(*relative.parts)

    def locate(self, reported_path: str, backend: BackendKind) -> Path:
        """Return the image file for a reported path.

        Args:
            reported_path: Path printed by the build.
            backend: Backend that produced it.

        Returns:
            Path to an existing .img file.

        Raises:
            NotFoundError: If no image is found, or the sd-image directory
                holds more than one.
        """
        path = Path(reported_path)
        if is_image_file(path):
            return path

        if backend == BackendKind.CONTAINERIZED:
            path = self.host_path(reported_path)
            if path.is_file() and path.name == RESULT_IMAGE:
                return path
            candidate = path / RESULT_IMAGE
            if candidate.is_file():
                return candidate
            logger.debug("No %s under %s, trying %s/", RESULT_IMAGE, path, SD_IMAGE_DIR)

        return self.find_sd_image(path)

    def find_sd_image(self, path: Path) -> Path:
        if not path.exists():
            raise NotFoundError(f"Build output not found at {path}", str(path))

        image_dir = path / SD_IMAGE_DIR
        if not image_dir.is_dir():
            raise NotFoundError(
                f"No {SD_IMAGE_DIR} directory in build output {path}", str(image_dir)
            )

        images = sorted(p for p in image_dir.iterdir() if is_image_file(p))
        if not images:
            raise NotFoundError(f"No image file found in {image_dir}", str(image_dir))
        if len(images) > 1:
            names = ", ".join(p.name for p in images)
            raise NotFoundError(
                f"Ambiguous build output: {len(images)} images in {image_dir} ({names})",
                str(image_dir),
                code="artifact_ambiguous",
            )
        return images[0]

    def locate_result(self, result: BuildResult) -> BuildResult:
        """Set ``result.artifact`` and return the result."""
        result.artifact = self.locate(result.reported_path, result.backend)
        logger.info("Image located at %s", result.artifact)
        return result


__all__ = [
    "ArtifactLocator",
    "IMAGE_SUFFIX",
    "RESULT_IMAGE",
    "SD_IMAGE_DIR",
]
