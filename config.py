"""
Centralized settings for the feature flag service.

This file reads environment variables (optionally from a .env file)
and provides sane defaults so the app and CLI can boot locally.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Any
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from the .env file NEXT TO THIS FILE
ENV_PATH = Path(__file__).resolve().parent / ".env"
load_dotenv(ENV_PATH)


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_str(name: str, default: str = "") -> str:
    raw = os.getenv(name)
    return default if raw is None else raw


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------
# Flag storage
# ---------------------------
FEATURE_FLAGS_PATH: str = _get_str("FEATURE_FLAGS_PATH", "data/flags.json")
FEATURE_FLAGS_CHANGE_LOG: str = _get_str("FEATURE_FLAGS_CHANGE_LOG", "data/flag-changes.log")

# ---------------------------
# Locking
# ---------------------------
LOCK_TIMEOUT_MS: int = _get_int("LOCK_TIMEOUT_MS", 5000)
LOCK_POLL_INTERVAL_MS: int = _get_int("LOCK_POLL_INTERVAL_MS", 100)
STALE_LOCK_MS: int = _get_int("STALE_LOCK_MS", 60000)  # 0 disables reaping

# ---------------------------
# Backups
# ---------------------------
BACKUP_MAX_AGE_DAYS: int = _get_int("BACKUP_MAX_AGE_DAYS", 7)
BACKUP_CLEANUP_ENABLED: bool = _get_bool("BACKUP_CLEANUP_ENABLED", False)
BACKUP_CLEANUP_INTERVAL_SECONDS: int = _get_int("BACKUP_CLEANUP_INTERVAL_SECONDS", 86400)

# ---------------------------
# Rate limiting
# ---------------------------
RATE_LIMIT_CLEANUP_PROBABILITY: float = _get_float("RATE_LIMIT_CLEANUP_PROBABILITY", 0.1)

# ---------------------------
# Logging
# ---------------------------
LOG_LEVEL: str = _get_str("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class Settings:
    FEATURE_FLAGS_PATH: str
    FEATURE_FLAGS_CHANGE_LOG: str
    LOCK_TIMEOUT_MS: int
    LOCK_POLL_INTERVAL_MS: int
    STALE_LOCK_MS: int
    BACKUP_MAX_AGE_DAYS: int
    BACKUP_CLEANUP_ENABLED: bool
    BACKUP_CLEANUP_INTERVAL_SECONDS: int
    RATE_LIMIT_CLEANUP_PROBABILITY: float
    LOG_LEVEL: str


def get_settings() -> Dict[str, Any]:
    return {
        "FEATURE_FLAGS_PATH": FEATURE_FLAGS_PATH,
        "FEATURE_FLAGS_CHANGE_LOG": FEATURE_FLAGS_CHANGE_LOG,
        "LOCK_TIMEOUT_MS": LOCK_TIMEOUT_MS,
        "LOCK_POLL_INTERVAL_MS": LOCK_POLL_INTERVAL_MS,
        "STALE_LOCK_MS": STALE_LOCK_MS,
        "BACKUP_MAX_AGE_DAYS": BACKUP_MAX_AGE_DAYS,
        "BACKUP_CLEANUP_ENABLED": BACKUP_CLEANUP_ENABLED,
        "BACKUP_CLEANUP_INTERVAL_SECONDS": BACKUP_CLEANUP_INTERVAL_SECONDS,
        "RATE_LIMIT_CLEANUP_PROBABILITY": RATE_LIMIT_CLEANUP_PROBABILITY,
        "LOG_LEVEL": LOG_LEVEL,
    }


def get_settings_obj() -> Settings:
    return Settings(**get_settings())


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(name)s] %(levelname)s %(message)s",
    )
