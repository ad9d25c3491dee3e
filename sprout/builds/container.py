"""Containerized nix-build backend.

Runs nix-build inside an ephemeral nixos/nix container:
- The build input and image archives are copied into a workspace under a
  directory the container runtime can see (the home directory by default,
  which Docker Desktop and Colima share with their VM)
- Host archive paths in the input are rewritten to their /workspace paths
- The Nix binary cache and store live in bind-mounted host directories so
  later builds reuse earlier work
- Output is read from the raw multiplexed attach stream while a second
  thread waits for the container to exit

The workspace is removed when execute() returns, whatever the outcome. The
container removes itself on exit, or is force-removed if it never started.
Time spent waiting for the store lock counts against the build timeout.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import docker
import docker.errors
import docker.utils.socket
from docker.types import Mount

from sprout.builds.backends import NIX_STORE_PREFIX, BuildBackend, nix_build_command
from sprout.builds.lock import store_lock
from sprout.builds.logstream import StreamId, iter_lines
from sprout.config import Settings
from sprout.deadline import start_deadline
from sprout.display import STDERR_STYLE, STDOUT_STYLE, RollingDisplay
from sprout.errors import BuildError, BuildTimeoutError, ExtractionError
from sprout.types import BackendKind, BuildResult, ResolvedImage

logger = logging.getLogger(__name__)

WORKSPACE_MOUNT = "/workspace"
BUILD_INPUT_NAME = "image.nix"
CACHE_MOUNT = "/root/.cache/nix"
STORE_MOUNT = "/nix"
WORKSPACE_PREFIX = "sprout-docker-"

CONTAINER_PATH = (
    "/root/.nix-profile/bin:/nix/var/nix/profiles/default/bin:"
    "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
)
CONTAINER_NIX_PATH = "nixpkgs=/root/.nix-defexpr/channels/nixpkgs"

# Seconds to wait for the log reader after the container has exited
READER_GRACE = 10.0
DIAGNOSTIC_TAIL = 40


class SocketStream:
    """read(n) over a docker attach socket."""

    def __init__(self, sock: Any) -> None:
        self._sock = sock

    def read(self, n: int) -> bytes:
        return docker.utils.socket.read(self._sock, n)

    def close(self) -> None:
        self._sock.close()


def container_path(host_file: Path) -> str:
    """Path a staged file has inside the container."""
    return f"{WORKSPACE_MOUNT}/{host_file.name}"


def stage_workspace(
    workspace: Path,
    build_input: Path,
    files: Sequence[Path],
) -> Path:
    """Copy the build input and referenced files into the workspace.

    Every host path of a copied file is replaced in the staged input by its
    in-container path. Files that do not exist are skipped.

    Returns:
        Path of the staged build input.
    """
    staged_input = workspace / BUILD_INPUT_NAME
    shutil.copyfile(build_input, staged_input)
    text = staged_input.read_text(encoding="utf-8")

    for host_file in files:
        if not host_file.is_file():
            logger.debug("Skipping missing file %s", host_file)
            continue
        shutil.copyfile(host_file, workspace / host_file.name)
        text = text.replace(str(host_file), container_path(host_file))

    staged_input.write_text(text, encoding="utf-8")
    return staged_input


def extract_store_path(lines: Sequence[str]) -> str:
    """Return the last line naming a Nix store path.

    Raises:
        ExtractionError: If no line starts with /nix/store/.
    """
    for line in reversed(lines):
        candidate = line.strip()
        if candidate.startswith(NIX_STORE_PREFIX):
            return candidate
    raise ExtractionError("Could not find Nix store path in build output")


class ContainerizedBackend(BuildBackend):
    """Build inside a throwaway nixos/nix container."""

    kind = BackendKind.CONTAINERIZED

    def __init__(
        self,
        settings: Settings | None = None,
        display: RollingDisplay | None = None,
        client: docker.DockerClient | None = None,
    ) -> None:
        super().__init__(settings=settings, display=display)
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except docker.errors.DockerException as e:
                raise BuildError(
                    f"Failed to create Docker client: {e}", code="docker_unavailable"
                ) from e
        return self._client

    def environment(self) -> dict[str, str]:
        return {
            "PATH": CONTAINER_PATH,
            "NIX_PATH": CONTAINER_NIX_PATH,
            "NIX_BUILD_CORES": "0",
            "NIX_CONFIG": self.settings.nix_config(filter_syscalls=False),
        }

    def mounts(self, workspace: Path) -> list[Mount]:
        return [
            Mount(target=WORKSPACE_MOUNT, source=str(workspace), type="bind"),
            Mount(target=CACHE_MOUNT, source=str(self.settings.nix_cache_dir), type="bind"),
            Mount(target=STORE_MOUNT, source=str(self.settings.nix_store_dir), type="bind"),
        ]

    def execute(
        self,
        build_input: Path,
        images: Sequence[ResolvedImage] = (),
        *,
        timeout: float | None = None,
        extra_files: Sequence[Path] = (),
    ) -> BuildResult:
        deadline = start_deadline(timeout)
        root = self.settings.workspace_root
        root.mkdir(parents=True, exist_ok=True)
        self.settings.nix_cache_dir.mkdir(parents=True, exist_ok=True)
        self.settings.nix_store_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(
            prefix=WORKSPACE_PREFIX, dir=root, ignore_cleanup_errors=True
        ) as tmp:
            workspace = Path(tmp)
            files = [image.archive_path for image in images] + list(extra_files)
            try:
                staged = stage_workspace(workspace, build_input, files)
            except OSError as e:
                raise BuildError(
                    f"Failed to prepare build workspace {workspace}: {e}",
                    code="workspace_error",
                ) from e

            logger.info(
                "Building with Docker (%d MiB RAM, persistent Nix store at %s)",
                self.settings.container_memory_bytes // (1024 * 1024),
                self.settings.nix_store_dir,
            )
            lock_timeout: float = self.settings.lock_timeout
            if deadline:
                lock_timeout = min(lock_timeout, deadline.remaining())
            with store_lock(self.settings.lock_dir, timeout=lock_timeout):
                lines = self.run_container(
                    workspace, staged, deadline.remaining() if deadline else None
                )

        reported = extract_store_path(lines)
        logger.info("Docker build completed: %s", reported)
        return BuildResult(
            backend=self.kind,
            reported_path=reported,
            output_lines=lines[-DIAGNOSTIC_TAIL:],
        )

    def create_container(self, workspace: Path, staged_input: Path) -> Any:
        """Create the build container, pulling the toolchain image if needed."""
        kwargs: dict[str, Any] = {
            "command": nix_build_command("nix-build", container_path(staged_input)),
            "working_dir": WORKSPACE_MOUNT,
            "environment": self.environment(),
            "mounts": self.mounts(workspace),
            "auto_remove": True,
            "privileged": True,
            "mem_limit": self.settings.container_memory_bytes,
            "cpu_shares": self.settings.container_cpu_shares,
        }
        image = self.settings.toolchain_image
        try:
            return self.client.containers.create(image, **kwargs)
        except docker.errors.ImageNotFound:
            logger.info("Pulling toolchain image %s", image)
            self.client.images.pull(image)
            return self.client.containers.create(image, **kwargs)

    def run_container(
        self,
        workspace: Path,
        staged_input: Path,
        timeout: float | None = None,
    ) -> list[str]:
        """Run nix-build in a container and return its output lines.

        Raises:
            BuildError: If the container cannot run or exits non-zero.
            BuildTimeoutError: If it runs past ``timeout``.
        """
        try:
            container = self.create_container(workspace, staged_input)
        except docker.errors.APIError as e:
            raise BuildError(
                f"Failed to create build container: {e}", code="container_error"
            ) from e

        try:
            sock = self.client.api.attach_socket(
                container.id,
                params={"stdout": 1, "stderr": 1, "stream": 1, "logs": 1},
            )
            stream = SocketStream(sock)
            container.start()
        except docker.errors.APIError as e:
            try:
                container.remove(force=True)
            except docker.errors.APIError as remove_error:
                logger.warning(
                    "Could not remove build container %s: %s", container.id, remove_error
                )
            raise BuildError(f"Failed to start build container: {e}", code="container_error") from e

        lines: list[str] = []
        wait_outcome: dict[str, Any] = {}

        def read_output() -> None:
            try:
                for stream_id, line in iter_lines(stream):
                    lines.append(line)
                    style = STDERR_STYLE if stream_id == StreamId.STDERR else STDOUT_STYLE
                    self.display.push(line, style)
            finally:
                self.display.close()

        def wait_for_exit() -> None:
            try:
                wait_outcome["status"] = container.wait()
            except docker.errors.APIError as e:
                wait_outcome["error"] = e

        reader = threading.Thread(target=read_output, name="container-logs", daemon=True)
        waiter = threading.Thread(target=wait_for_exit, name="container-wait", daemon=True)
        reader.start()
        waiter.start()

        waiter.join(timeout)
        if waiter.is_alive():
            logger.error("Build container exceeded %ss, killing it", timeout)
            try:
                container.kill()
            except docker.errors.APIError as e:
                logger.warning("Could not kill build container %s: %s", container.id, e)
            stream.close()
            waiter.join(READER_GRACE)
            reader.join(READER_GRACE)
            self.display.close()
            raise BuildTimeoutError(timeout or 0, lines[-DIAGNOSTIC_TAIL:])

        reader.join(READER_GRACE)
        stream.close()
        reader.join(READER_GRACE)

        if "error" in wait_outcome:
            raise BuildError(
                f"Error waiting for container: {wait_outcome['error']}",
                diagnostics=lines[-DIAGNOSTIC_TAIL:],
                code="container_wait_error",
            )

        status_code = int(wait_outcome.get("status", {}).get("StatusCode", -1))
        if status_code != 0:
            logger.error("Build container exited with code %d", status_code)
            raise BuildError(
                f"Container exited with code {status_code}",
                exit_code=status_code,
                diagnostics=lines[-DIAGNOSTIC_TAIL:],
            )
        return lines


__all__ = [
    "BUILD_INPUT_NAME",
    "ContainerizedBackend",
    "SocketStream",
    "WORKSPACE_MOUNT",
    "container_path",
    "extract_store_path",
    "stage_workspace",
]
