from __future__ import annotations

import logging
import os
from typing import Optional


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _seconds(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./taskboard.db")
STORAGE_BACKEND = os.getenv("TASKBOARD_STORAGE", "memory")
TERMINAL_STATUS = os.getenv("TASKBOARD_TERMINAL_STATUS", "Completed")
AUTO_EVALUATE = _flag("TASKBOARD_AUTO_EVALUATE", True)
CONFIRM_TIMEOUT = _seconds("TASKBOARD_CONFIRM_TIMEOUT")
LOG_LEVEL = os.getenv("TASKBOARD_LOG_LEVEL", "INFO")

DEFAULT_COLUMNS = ("To Do", "In Progress", TERMINAL_STATUS)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
