# services/feature_flag_service.py

"""
Feature flag service.

Stores the flag set as one JSON document through SafeFileStorage, so
every change is lock-protected and backed up. Changes are appended to
a plain-text change log, one line per update that changed something.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from config import Settings
from logic.feature_flags import DEFAULT_FEATURE_FLAGS, parse_feature_flags
from storage.safe_file_storage import SafeFileStorage

logger = logging.getLogger(__name__)


def _utc_iso_z() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def _diff(old: Mapping[str, bool], new: Mapping[str, bool]) -> List[str]:
    return [f"{k}: {old.get(k)} -> {new[k]}" for k in new if old.get(k) != new[k]]


class FeatureFlagService:
    def __init__(self, storage: SafeFileStorage, change_log_path: Optional[Union[str, Path]] = None):
        self.storage = storage
        self.change_log_path = Path(change_log_path) if change_log_path else None
        self.flags: Dict[str, bool] = dict(DEFAULT_FEATURE_FLAGS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeatureFlagService":
        storage = SafeFileStorage(
            settings.FEATURE_FLAGS_PATH,
            lock_timeout_ms=settings.LOCK_TIMEOUT_MS,
            lock_poll_interval_ms=settings.LOCK_POLL_INTERVAL_MS,
            stale_lock_ms=settings.STALE_LOCK_MS or None,
        )
        return cls(storage, change_log_path=settings.FEATURE_FLAGS_CHANGE_LOG)

    # --------------------------------------------------
    # Storage
    # --------------------------------------------------

    @staticmethod
    def _parse(raw: str) -> Dict[str, bool]:
        return parse_feature_flags(json.loads(raw))

    def _read(self) -> Dict[str, bool]:
        return self._parse(self.storage.read())

    def _log_change(self, user: str, old: Dict[str, bool], new: Dict[str, bool]) -> None:
        changes = _diff(old, new)
        if not changes:
            return

        entry = f"[{_utc_iso_z()}] {user} changed: {', '.join(changes)}"
        logger.info("[feature_flags] %s", entry)
        if self.change_log_path is None:
            return

        self.change_log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.change_log_path, "a", encoding="utf-8") as f:
            f.write(entry + "\n")

    # --------------------------------------------------
    # Public API
    # --------------------------------------------------

    def initialize(self) -> Dict[str, bool]:
        """Load flags from disk, keeping the defaults if that fails."""
        try:
            self.flags = self._read()
        except (OSError, ValueError) as e:
            logger.warning("[feature_flags] Failed to load flags, using defaults: %s", e)
        return dict(self.flags)

    def get_flags(self) -> Dict[str, bool]:
        """Always reads the latest document from disk."""
        self.flags = self._read()
        return dict(self.flags)

    def update_flags(self, updates: Mapping[str, Any], user: str) -> Dict[str, bool]:
        """
        Merge `updates` into the stored flags and persist them.

        The read, merge and write happen under one storage lock hold, so
        concurrent updaters never overwrite each other's changes.

        Raises:
            FeatureFlagValidationError before anything is written if the
            merged flags do not match the schema.
        """
        seen: Dict[str, Dict[str, bool]] = {}

        def merge(current: Optional[str]) -> str:
            old = self._parse(current) if current is not None else dict(DEFAULT_FEATURE_FLAGS)
            new = parse_feature_flags({**old, **dict(updates)})
            seen["old"], seen["new"] = old, new
            return json.dumps(new, indent=2)

        self.storage.update(merge)
        self._log_change(user, seen["old"], seen["new"])

        self.flags = self._read()
        return dict(self.flags)

    def cleanup_old_backups(self, max_age_days: float = 7) -> List[Path]:
        return self.storage.cleanup_old_backups(max_age_days)
