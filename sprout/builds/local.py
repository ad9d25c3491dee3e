"""Local nix-build backend.

Runs the host's nix-build with all cores and automatic job count. stdout
and stderr are drained by two reader threads so neither pipe can fill up
and stall the build. nix-build prints the output store path as its last
stdout line.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from collections import deque
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import IO

from sprout.builds.backends import BuildBackend, nix_build_command
from sprout.config import Settings
from sprout.display import STDERR_STYLE, STDOUT_STYLE, RollingDisplay
from sprout.errors import BuildError, BuildTimeoutError, ExtractionError
from sprout.types import BackendKind, BuildResult, ResolvedImage

logger = logging.getLogger(__name__)

# Lines of output kept for error reports
DIAGNOSTIC_TAIL = 40


def pump_lines(
    stream: IO[str],
    display: RollingDisplay,
    style: str,
    on_line: Callable[[str], None],
) -> None:
    """Forward every non-empty line of ``stream`` to the display and ``on_line``."""
    for raw in stream:
        line = raw.strip()
        if not line:
            continue
        display.push(line, style)
        on_line(line)


class LocalBackend(BuildBackend):
    """Build with the nix-build found on the host."""

    kind = BackendKind.LOCAL

    def __init__(
        self,
        nix_build: str,
        settings: Settings | None = None,
        display: RollingDisplay | None = None,
    ) -> None:
        super().__init__(settings=settings, display=display)
        self.nix_build = nix_build

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["NIX_BUILD_CORES"] = "0"
        env["NIX_CONFIG"] = self.settings.nix_config()
        return env

    def execute(
        self,
        build_input: Path,
        images: Sequence[ResolvedImage] = (),
        *,
        timeout: float | None = None,
        extra_files: Sequence[Path] = (),
    ) -> BuildResult:
        cmd = nix_build_command(self.nix_build, str(build_input.resolve()))
        logger.info("Building NixOS image locally")
        logger.debug("Executing build: %s", shlex.join(cmd))

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.build_env(),
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise BuildError(
                f"Failed to start nix-build: {e}", code="execution_error"
            ) from e

        last_stdout: list[str] = []
        tail: deque[str] = deque(maxlen=DIAGNOSTIC_TAIL)

        def on_stdout(line: str) -> None:
            last_stdout[:] = [line]
            tail.append(line)

        readers = [
            threading.Thread(
                target=pump_lines,
                args=(proc.stdout, self.display, STDOUT_STYLE, on_stdout),
                name="nix-build-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=pump_lines,
                args=(proc.stderr, self.display, STDERR_STYLE, tail.append),
                name="nix-build-stderr",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        try:
            try:
                exit_code = proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired as e:
                logger.error("nix-build exceeded %ss, killing it", timeout)
                proc.kill()
                proc.wait()
                for reader in readers:
                    reader.join()
                raise BuildTimeoutError(timeout or 0, list(tail)) from e

            for reader in readers:
                reader.join()
        finally:
            self.display.close()

        if exit_code != 0:
            logger.error("nix-build exited with code %d", exit_code)
            raise BuildError(
                f"Failed to build Nix configuration: nix-build exited with code {exit_code}",
                exit_code=exit_code,
                diagnostics=list(tail),
            )

        if not last_stdout:
            raise ExtractionError("nix-build succeeded but printed no store path")

        reported = last_stdout[0]
        logger.info("Local build completed: %s", reported)
        return BuildResult(
            backend=self.kind,
            reported_path=reported,
            output_lines=list(tail),
        )


__all__ = ["DIAGNOSTIC_TAIL", "LocalBackend", "pump_lines"]
