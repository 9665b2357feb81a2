"""
Configuration for Scriptwise.

All settings come from environment variables, read once at import time.
Components accept explicit paths in their constructors, so these values
are only defaults.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

DATA_DIR = Path(os.getenv("SCRIPTWISE_DATA_DIR", str(Path.home() / ".scriptwise"))).expanduser()
SKILLS_DIR = Path(os.getenv("SCRIPTWISE_SKILLS_DIR", str(DATA_DIR / "skills"))).expanduser()

PATTERNS_FILENAME = "learned-patterns.json"
INDEX_FILENAME = "patterns-index.json"

# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUT_MS = 30_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 300_000
OSASCRIPT_BIN = os.getenv("SCRIPTWISE_OSASCRIPT", "osascript")

# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

API_HOST = os.getenv("SCRIPTWISE_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("SCRIPTWISE_API_PORT", "8790"))
ALLOWED_ORIGINS = os.getenv(
    "SCRIPTWISE_CORS_ORIGINS",
    "http://localhost:3000,http://localhost:8790",
).split(",")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL = os.getenv("SCRIPTWISE_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "[%(asctime)s] %(name)s.%(levelname)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger with the project's stream handler attached once."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)
    return logger


def configure_logging(verbose: bool = False) -> None:
    """Root logging setup for CLI and server entry points."""
    level = logging.DEBUG if verbose else getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("scriptwise").setLevel(level)
