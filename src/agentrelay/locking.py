"""Exclusive file locking for the shared session map.

The session map is rewritten in full on every update, so two writers that
interleave between read and write lose one update. Callers hold this lock
across the whole read-modify-write span.

Uses fcntl.flock() on Unix and msvcrt.locking() on Windows against a sidecar
lock file, retrying with exponential backoff: 0.1s → 0.2s → 0.4s ... capped
at 2s, until the timeout.
"""

import logging
import platform
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from agentrelay.errors import LockTimeoutError

_system = platform.system()
if TYPE_CHECKING or _system == "Windows":
    import msvcrt  # type: ignore[import-not-found]
if TYPE_CHECKING or _system != "Windows":
    import fcntl  # type: ignore[import-not-found]

__all__ = ["LockTimeoutError", "acquire_file_lock", "lock_path_for"]

logger = logging.getLogger(__name__)


def lock_path_for(path: Path) -> Path:
    """Sidecar lock file that guards ``path``."""
    return path.with_name(path.name + ".lock")


@contextmanager
def acquire_file_lock(
    lock_path: Path,
    timeout: float = 5.0,
    operation: str = "file operation",
) -> Generator[None, None, None]:
    """Hold an exclusive lock on ``lock_path`` for the duration of the block.

    The lock file and its parent directory are created if missing.

    Raises:
        LockTimeoutError: If the lock is not acquired within ``timeout`` seconds
        PermissionError: If the lock file cannot be opened
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a") as handle:
        _acquire_with_backoff(handle, lock_path, timeout, operation)
        try:
            yield
        finally:
            _release(handle)


def _acquire_with_backoff(
    handle: TextIO, lock_path: Path, timeout: float, operation: str
) -> None:
    start = time.monotonic()
    delay = 0.1
    attempt = 0

    while True:
        try:
            if _system == "Windows":
                msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
            else:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            if attempt:
                logger.debug("Acquired %s after %d retries", lock_path, attempt)
            return
        except (BlockingIOError, PermissionError) as e:
            # On Unix a PermissionError on the first try is a real permission problem
            if isinstance(e, PermissionError) and attempt == 0 and _system != "Windows":
                raise

        elapsed = time.monotonic() - start
        remaining = timeout - elapsed
        if remaining <= 0:
            raise LockTimeoutError(
                f"Failed to acquire lock for {operation} after {timeout} seconds. "
                f"Lock file: {lock_path}. Another process may be holding it."
            )
        time.sleep(min(delay, remaining))
        delay = min(delay * 2, 2.0)
        attempt += 1


def _release(handle: TextIO) -> None:
    try:
        if _system == "Windows":
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        else:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        # Closing the handle releases the lock anyway
        logger.debug("Error releasing file lock: %s", e)
