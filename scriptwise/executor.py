"""
Script executor — runs AppleScript through ``osascript``.

The intelligence layer never calls the scripting engine itself; it is handed
an object with ``execute(script, timeout_ms)``. ``OsascriptExecutor`` is the
production implementation, anything with the same method works in tests.
"""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from scriptwise.config import (
    DEFAULT_TIMEOUT_MS,
    MAX_TIMEOUT_MS,
    MIN_TIMEOUT_MS,
    OSASCRIPT_BIN,
    get_logger,
)
from scriptwise.errors import ExecutionError

logger = get_logger("scriptwise.executor")


@dataclass
class ExecutionResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def error_message(self) -> str:
        """Best text to hand to the failure analyzer."""
        return self.stderr.strip() or self.stdout.strip() or f"exit code {self.exit_code}"

    def to_dict(self) -> dict:
        return {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "success": self.success,
            "durationMs": self.duration_ms,
        }


class Executor(Protocol):
    def execute(self, script: str, timeout_ms: Optional[int] = None) -> ExecutionResult:
        ...


def clamp_timeout(timeout_ms: Optional[int]) -> int:
    """Coerce a caller-supplied timeout into the allowed window."""
    if timeout_ms is None:
        return DEFAULT_TIMEOUT_MS
    return max(MIN_TIMEOUT_MS, min(MAX_TIMEOUT_MS, int(timeout_ms)))


class OsascriptExecutor:
    """Runs scripts with ``osascript -e``."""

    def __init__(self, binary: str = OSASCRIPT_BIN) -> None:
        self.binary = binary

    def execute(self, script: str, timeout_ms: Optional[int] = None) -> ExecutionResult:
        if not script or not script.strip():
            raise ValueError("script must not be empty")

        timeout = clamp_timeout(timeout_ms)
        started = time.monotonic()
        try:
            proc = subprocess.run(
                [self.binary, "-e", script],
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout / 1000,
            )
        except FileNotFoundError as exc:
            raise ExecutionError(f"Scripting engine not found: {self.binary}") from exc
        except subprocess.TimeoutExpired:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.warning("Script timed out after %d ms", timeout)
            # Shaped like the engine's own timeout error so the analyzer classifies it
            return ExecutionResult(
                stderr=f"AppleEvent timed out. (-1712) after {timeout} ms",
                exit_code=124,
                duration_ms=elapsed,
            )

        result = ExecutionResult(
            stdout=(proc.stdout or "").rstrip("\n"),
            stderr=(proc.stderr or "").rstrip("\n"),
            exit_code=proc.returncode,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.debug("osascript exited %d in %d ms", result.exit_code, result.duration_ms)
        return result

