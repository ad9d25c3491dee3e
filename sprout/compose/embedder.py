"""Acquire, tag and export container images for embedding.

For every resolved image:
1. Build it with the compose tool when it comes from a build context,
   otherwise pull it (arm64 first, then any platform)
2. Tag it with its local tag
3. Save it to its staged archive

A failed pull is not fatal: the image may already exist locally. Tag and
export failures are fatal. With a timeout, the whole sequence shares one
deadline that is checked before every build, pull and export.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

import docker
import docker.errors

from sprout.config import Settings, get_settings
from sprout.deadline import start_deadline
from sprout.errors import (
    ImageBuildError,
    ImageEmbedError,
    ImageExportError,
    ImageTagError,
)
from sprout.types import ResolvedImage

logger = logging.getLogger(__name__)

PREFERRED_PLATFORM = "linux/arm64"
COMPOSE_PROJECT_NAME = "sprout-embedded"


def compose_image_name(service: str) -> str:
    """Name the compose tool gives an image it builds for a service."""
    return f"{COMPOSE_PROJECT_NAME}-{service}"


class ImageEmbedder:
    """Build or pull, tag and export the images a compose file needs."""

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self.settings = settings or get_settings()

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except docker.errors.DockerException as e:
                raise ImageEmbedError(
                    f"Failed to connect to Docker: {e}", code="docker_unavailable"
                ) from e
        return self._client

    def embed(
        self,
        images: Sequence[ResolvedImage],
        working_dir: Path,
        compose_path: Path | None = None,
        timeout: float | None = None,
    ) -> list[ResolvedImage]:
        """Acquire, tag and export every image.

        Args:
            images: Images from the resolver.
            working_dir: Directory the compose tool runs in.
            compose_path: Compose file passed to the compose tool.
            timeout: Seconds allowed for embedding every image.

        Returns:
            The images, in the order they were embedded.

        Raises:
            ImageBuildError: If a compose service fails to build.
            ImageTagError: If an image cannot be tagged.
            ImageExportError: If an image cannot be saved.
            BuildTimeoutError: If the timeout runs out.
        """
        deadline = start_deadline(timeout)
        logger.info("Building and saving %d Docker image(s)", len(images))
        embedded: list[ResolvedImage] = []

        for image in images:
            logger.info("Processing: %s", image.canonical_ref)
            if image.needs_build:
                source = self.build_service(
                    image.build_service or "",
                    working_dir,
                    compose_path,
                    deadline.remaining() if deadline else None,
                )
            else:
                if deadline:
                    deadline.remaining()
                self.pull(image.canonical_ref)
                source = image.canonical_ref

            self.tag(source, image.local_tag)
            if deadline:
                deadline.remaining()
            self.export(image.local_tag, image.archive_path)
            logger.info("Saved: %s", image.local_tag)
            embedded.append(image)

        return embedded

    def build_service(
        self,
        service: str,
        working_dir: Path,
        compose_path: Path | None = None,
        timeout: float | None = None,
    ) -> str:
        """Build one compose service and return the image it produced.

        Raises:
            ImageBuildError: If the compose tool fails.
        """
        cmd = list(self.settings.compose_command)
        if compose_path is not None:
            cmd += ["-f", str(compose_path)]
        cmd += ["-p", COMPOSE_PROJECT_NAME, "build", service]
        logger.info("Building service %s", service)
        logger.debug("Running: %s (cwd=%s)", " ".join(cmd), working_dir)

        try:
            result = subprocess.run(
                cmd,
                cwd=working_dir,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ImageBuildError(service, f"timed out after {timeout}s") from e
        except OSError as e:
            raise ImageBuildError(service, str(e)) from e

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            logger.error("Building service %s failed: %s", service, output)
            raise ImageBuildError(service, output)

        return compose_image_name(service)

    def pull(self, ref: str) -> bool:
        """Pull an image, preferring arm64.

        Returns:
            True if a pull succeeded, False if the image is assumed local.
        """
        try:
            self.client.images.pull(ref, platform=PREFERRED_PLATFORM)
            logger.info("Successfully pulled ARM64 image: %s", ref)
            return True
        except docker.errors.APIError as e:
            logger.info("ARM64 image not available, trying default platform: %s", ref)
            logger.debug("arm64 pull error for %s: %s", ref, e)

        try:
            self.client.images.pull(ref)
            logger.info("Pulled image for default platform: %s", ref)
            return True
        except docker.errors.APIError as e:
            logger.warning(
                "Failed to pull image %s, assuming it exists locally: %s", ref, e
            )
            return False

    def tag(self, source: str, local_tag: str) -> None:
        """Tag ``source`` as ``local_tag``.

        Raises:
            ImageTagError: If the daemon refuses the tag.
        """
        try:
            tagged = self.client.api.tag(source, local_tag)
        except docker.errors.APIError as e:
            raise ImageTagError(source, local_tag, str(e)) from e
        if not tagged:
            raise ImageTagError(source, local_tag, "daemon did not accept the tag")

    def export(self, local_tag: str, archive_path: Path) -> None:
        """Save the tagged image to ``archive_path``.

        Raises:
            ImageExportError: If the image cannot be saved or written.
        """
        try:
            archive_path.parent.mkdir(parents=True, exist_ok=True)
            with archive_path.open("wb") as f:
                for chunk in self.client.api.get_image(local_tag):
                    f.write(chunk)
        except (docker.errors.APIError, OSError) as e:
            archive_path.unlink(missing_ok=True)
            logger.error("Failed to save %s: %s", local_tag, e)
            raise ImageExportError(local_tag, str(archive_path), str(e)) from e


def remove_archives(images: Sequence[ResolvedImage]) -> None:
    """Delete staged archives, ignoring ones already gone."""
    for image in images:
        try:
            image.archive_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s: %s", image.archive_path, e)


__all__ = [
    "COMPOSE_PROJECT_NAME",
    "ImageEmbedder",
    "PREFERRED_PLATFORM",
    "compose_image_name",
    "remove_archives",
]
