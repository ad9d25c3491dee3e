"""Copy the finished image to its configured destination.

The image can be several GiB, so it is streamed in fixed-size blocks and
progress is reported periodically. A partially written destination is left
in place when the copy fails.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from sprout.errors import DeliveryError

logger = logging.getLogger(__name__)

# Default block size for I/O operations (1 MiB)
DEFAULT_BLOCK_SIZE = 1024 * 1024
# Report progress every 10 MiB
DEFAULT_REPORT_EVERY = 10 * 1024 * 1024

ProgressCallback = Callable[[int, int], None]


def _copy_with_progress(
    source: BinaryIO,
    dest: BinaryIO,
    total_bytes: int,
    block_size: int,
    report_every: int,
    on_progress: ProgressCallback | None,
) -> int:
    bytes_copied = 0
    next_report = report_every

    while chunk := source.read(block_size):
        dest.write(chunk)
        bytes_copied += len(chunk)

        if bytes_copied >= next_report:
            next_report += report_every
            logger.debug("Copy progress: %d / %d bytes", bytes_copied, total_bytes)
            if on_progress is not None:
                on_progress(bytes_copied, total_bytes)

    return bytes_copied


def deliver(
    source: Path,
    destination: Path,
    *,
    on_progress: ProgressCallback | None = None,
    chunk_size: int = DEFAULT_BLOCK_SIZE,
    report_every: int = DEFAULT_REPORT_EVERY,
) -> int:
    """Copy ``source`` to ``destination``, creating parent directories.

    Args:
        source: Image file produced by the build.
        destination: Where the image should end up.
        on_progress: Called as ``on_progress(copied, total)`` every
            ``report_every`` bytes and once more when the copy completes.
        chunk_size: Block size for reads and writes.
        report_every: Bytes between progress reports.

    Returns:
        Number of bytes copied.

    Raises:
        DeliveryError: If the source is missing or any I/O fails.
    """
    if chunk_size < 1 or report_every < 1:
        raise ValueError("chunk_size and report_every must be positive")

    if not source.is_file():
        raise DeliveryError(f"Image not found: {source}", str(destination), code="source_missing")

    try:
        total_bytes = source.stat().st_size
        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(source, "rb") as src, open(destination, "wb") as dest:
            copied = _copy_with_progress(
                src, dest, total_bytes, chunk_size, report_every, on_progress
            )
    except OSError as e:
        logger.error("Failed to copy %s to %s: %s", source, destination, e)
        raise DeliveryError(
            f"Failed to copy image to {destination}: {e}", str(destination)
        ) from e

    if on_progress is not None:
        on_progress(copied, total_bytes)
    logger.info("Copied %d bytes to %s", copied, destination)
    return copied


__all__ = ["DEFAULT_BLOCK_SIZE", "DEFAULT_REPORT_EVERY", "ProgressCallback", "deliver"]
