"""File lock guarding the Nix cache and store shared by containerized builds.

Two containers writing into the same bind-mounted /nix at once can corrupt
the store database, so containerized builds on one host run one at a time.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sprout.errors import CacheLockTimeoutError

logger = logging.getLogger(__name__)

STORE_LOCK_NAME = "nix-store.lock"
POLL_INTERVAL = 0.5


@contextmanager
def store_lock(lock_dir: Path, timeout: float | None = None) -> Iterator[Path]:
    """Hold an exclusive lock on the shared Nix store.

    Args:
        lock_dir: Directory for the lock file.
        timeout: Seconds to wait for the lock (None = block).

    Yields:
        Path of the lock file once the lock is held.

    Raises:
        CacheLockTimeoutError: If the lock is not acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / STORE_LOCK_NAME

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    acquired = False
    try:
        if timeout is None:
            fcntl.flock(fd, fcntl.LOCK_EX)
            acquired = True
        else:
            start = time.monotonic()
            announced = False
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise CacheLockTimeoutError(str(lock_file), timeout) from None
                    if not announced:
                        logger.info("Waiting for another sprout build to release %s", lock_file)
                        announced = True
                    time.sleep(POLL_INTERVAL)

        logger.debug("Store lock acquired: %s", lock_file)
        yield lock_file
    finally:
        if acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Store lock released: %s", lock_file)
        os.close(fd)


__all__ = ["STORE_LOCK_NAME", "store_lock"]
