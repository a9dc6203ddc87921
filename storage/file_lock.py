# storage/file_lock.py

"""
Advisory lock over a single file path.

The lock is a sentinel file next to the target (`<target>.lock`) created
with an atomic create-exclusive open, so two waiters can never both see
"free" and both take it. Only participants that use this class respect it.

The marker holds `<pid>:<token>`. The token is unique per acquisition and
is checked on release, so a lock can only be released by its holder.
Ownership is tracked per thread: one FileLock shared by several threads
behaves like one lock per thread on the same path.
"""

import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_POLL_INTERVAL_MS = 100


class LockTimeoutError(TimeoutError):
    """Raised when the lock marker did not clear within the timeout."""

    def __init__(self, lock_path: Path, timeout_ms: int):
        super().__init__(
            f"Failed to acquire file lock: timeout after {timeout_ms}ms ({lock_path})"
        )
        self.lock_path = lock_path
        self.timeout_ms = timeout_ms


class FileLock:
    def __init__(
        self,
        file_path: Union[str, Path],
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        stale_after_ms: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.lock_path = Path(f"{file_path}.lock")
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.stale_after_ms = stale_after_ms
        self._clock = clock
        self._sleep = sleep
        self._local = threading.local()

    @property
    def _owner_id(self) -> Optional[str]:
        return getattr(self._local, "owner_id", None)

    @_owner_id.setter
    def _owner_id(self, value: Optional[str]) -> None:
        self._local.owner_id = value

    @property
    def is_held(self) -> bool:
        """True while the calling thread holds the lock."""
        return self._owner_id is not None

    def acquire(self) -> None:
        """
        Block until the marker can be created, polling every poll_interval_ms.

        Raises:
            LockTimeoutError if the marker is still present after timeout_ms.
        """
        start = self._clock()
        owner_id = f"{os.getpid()}:{uuid.uuid4().hex}"

        while True:
            if self._try_create(owner_id):
                self._owner_id = owner_id
                return

            if self._reap_if_stale():
                continue

            elapsed_ms = (self._clock() - start) * 1000
            if elapsed_ms > self.timeout_ms:
                raise LockTimeoutError(self.lock_path, self.timeout_ms)

            self._sleep(self.poll_interval_ms / 1000)

    def release(self) -> bool:
        """
        Remove the marker if this lock owns it.

        Returns True when the marker was removed. A missing marker is not an
        error. A marker owned by another holder is left in place.
        """
        owner_id = self._owner_id
        self._owner_id = None

        current = self._read_marker()
        if current is None:
            return False

        if current != owner_id:
            logger.warning(
                "[file_lock] Not releasing %s: held by %s, not by this lock",
                self.lock_path,
                current,
            )
            return False

        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            return False
        return True

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    # --------------------------------------------------
    # Marker helpers
    # --------------------------------------------------

    def _try_create(self, owner_id: str) -> bool:
        try:
            fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False

        try:
            os.write(fd, owner_id.encode("utf-8"))
        finally:
            os.close(fd)
        return True

    def _read_marker(self) -> Optional[str]:
        try:
            return self.lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    def _reap_if_stale(self) -> bool:
        if not self.stale_after_ms:
            return False

        holder = self._read_marker()
        if holder is None:
            # Released between our create attempt and now; retry at once.
            return True

        try:
            mtime = self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return True

        age_ms = (self._clock() - mtime) * 1000
        if age_ms <= self.stale_after_ms:
            return False

        # Another waiter may have reaped and re-taken it already.
        if self._read_marker() != holder:
            return True

        logger.warning(
            "[file_lock] Reaping stale lock %s held by %s (age %.0fms)",
            self.lock_path,
            holder,
            age_ms,
        )
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        return True
