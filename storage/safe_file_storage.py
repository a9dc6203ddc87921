# storage/safe_file_storage.py

"""
Lock-guarded read/write of a single text document on disk.

Every write first copies the current document into `<dir>/backups/`
(named `<stem>-<timestamp><suffix>`), then replaces the document.
update() does the same for a read-modify-write under a single lock hold.
Old backups are pruned by age with cleanup_old_backups().
"""

import logging
import os
import shutil
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

from storage.file_lock import DEFAULT_POLL_INTERVAL_MS, DEFAULT_TIMEOUT_MS, FileLock

logger = logging.getLogger(__name__)

BACKUP_DIR_NAME = "backups"
SECONDS_PER_DAY = 60 * 60 * 24


def _backup_timestamp(now: datetime) -> str:
    # 2026-10-16T12:00:00.123Z -> 2026-10-16T12-00-00-123Z
    iso = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


class SafeFileStorage:
    def __init__(
        self,
        file_path: Union[str, Path],
        lock_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        lock_poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        stale_lock_ms: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.file_path = Path(file_path)
        self.backup_dir = self.file_path.parent / BACKUP_DIR_NAME
        self.lock = FileLock(
            self.file_path,
            timeout_ms=lock_timeout_ms,
            poll_interval_ms=lock_poll_interval_ms,
            stale_after_ms=stale_lock_ms,
        )
        self._clock = clock

    def exists(self) -> bool:
        return self.file_path.exists()

    def read(self) -> str:
        """
        Return the whole document.

        Raises:
            OSError (usually FileNotFoundError) if it cannot be read.
            LockTimeoutError if the lock could not be taken.
        """
        with self.lock:
            return self.file_path.read_text(encoding="utf-8")

    def write(self, content: str) -> Optional[Path]:
        """
        Back up the current document, then replace it with `content`.

        Returns the backup path, or None when there was no document yet.
        """
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        with self.lock:
            backup_path = self._create_backup()
            self._replace(content)
        return backup_path

    def update(self, fn: Callable[[Optional[str]], str]) -> str:
        """
        Read, transform and write the document under one lock hold.

        `fn` gets the current content (None when there is no document yet)
        and returns the new content. If `fn` raises, nothing is written.
        Returns the content that was written.
        """
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        with self.lock:
            try:
                current: Optional[str] = self.file_path.read_text(encoding="utf-8")
            except FileNotFoundError:
                current = None

            content = fn(current)
            self._create_backup()
            self._replace(content)
        return content

    def cleanup_old_backups(self, max_age_days: float = 7) -> List[Path]:
        """
        Delete backups whose mtime is more than `max_age_days` days old.

        Returns the deleted paths. Backups that disappear while this runs
        (another cleanup got there first) are skipped.
        """
        self._ensure_backup_dir()
        now = self._clock()
        removed: List[Path] = []

        for path in sorted(self.backup_dir.iterdir()):
            try:
                if not path.is_file():
                    continue
                age_days = (now - path.stat().st_mtime) / SECONDS_PER_DAY
                if age_days > max_age_days:
                    path.unlink()
                    removed.append(path)
            except FileNotFoundError:
                logger.debug("[safe_file_storage] Backup %s already removed", path)

        if removed:
            logger.info(
                "[safe_file_storage] Removed %d backup(s) older than %s days",
                len(removed),
                max_age_days,
            )
        return removed

    def list_backups(self) -> List[Path]:
        if not self.backup_dir.exists():
            return []
        return sorted(p for p in self.backup_dir.iterdir() if p.is_file())

    # --------------------------------------------------
    # Internals (caller holds the lock)
    # --------------------------------------------------

    def _ensure_backup_dir(self) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def _next_backup_path(self) -> Path:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        base = f"{self.file_path.stem}-{_backup_timestamp(now)}"
        suffix = self.file_path.suffix

        candidate = self.backup_dir / f"{base}{suffix}"
        counter = 1
        while candidate.exists():
            candidate = self.backup_dir / f"{base}-{counter}{suffix}"
            counter += 1
        return candidate

    def _create_backup(self) -> Optional[Path]:
        self._ensure_backup_dir()
        backup_path = self._next_backup_path()
        try:
            # copyfile, not copy2: the backup's mtime must be its creation time.
            shutil.copyfile(self.file_path, backup_path)
        except FileNotFoundError:
            logger.debug(
                "[safe_file_storage] No existing %s to back up (first write)",
                self.file_path,
            )
            return None
        return backup_path

    def _replace(self, content: str) -> None:
        fd, tmp = tempfile.mkstemp(
            dir=str(self.file_path.parent),
            prefix=f".{self.file_path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, self.file_path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise
