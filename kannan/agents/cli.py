"""Subprocess runner for agent CLIs."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging
import os
import subprocess
import time

logger = logging.getLogger(__name__)

TRANSIENT_MARKERS = (
    "connection refused",
    "connection reset",
    "temporary failure",
    "service unavailable",
    "rate limit",
    "too many requests",
    "overloaded",
)


@dataclass
class CliResult:
    text: str
    duration_ms: float
    ok: bool
    error: Optional[str] = None
    stderr: Optional[str] = None
    attempts: int = 1


class CliClient:
    def __init__(self, timeout_seconds: int = 600, retries: int = 0, retry_delay: float = 2.0) -> None:
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.retry_delay = retry_delay

    def run(
        self,
        command: List[str],
        stdin: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CliResult:
        if not command:
            return CliResult(text="", duration_ms=0.0, ok=False, error="missing command")

        result = CliResult(text="", duration_ms=0.0, ok=False, error="no attempts made", attempts=0)
        elapsed = 0.0
        for attempt in range(self.retries + 1):
            if attempt:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.info("Retrying %s (%d/%d) in %.1fs", command[0], attempt, self.retries, delay)
                time.sleep(delay)
            result = self._run_once(command, stdin, cwd, env)
            elapsed += result.duration_ms
            result.attempts = attempt + 1
            result.duration_ms = elapsed
            if result.ok or result.error == "timeout" or not self._is_transient(result):
                break
            logger.warning("%s attempt %d failed: %s", command[0], attempt + 1, result.error)
        if not result.ok:
            logger.debug("%s failed: %s %s", command[0], result.error, result.stderr or "")
        return result

    def _run_once(
        self,
        command: List[str],
        stdin: Optional[str],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
    ) -> CliResult:
        run_env = os.environ.copy()
        if env:
            run_env.update({str(k): str(v) for k, v in env.items()})
        start = time.perf_counter()
        try:
            proc = subprocess.run(
                list(command),
                input=stdin,
                text=True,
                capture_output=True,
                timeout=self.timeout_seconds,
                cwd=cwd,
                env=run_env,
            )
        except subprocess.TimeoutExpired:
            duration = (time.perf_counter() - start) * 1000
            return CliResult(text="", duration_ms=duration, ok=False, error="timeout")
        except OSError as exc:
            duration = (time.perf_counter() - start) * 1000
            return CliResult(text="", duration_ms=duration, ok=False, error=str(exc))
        duration = (time.perf_counter() - start) * 1000
        ok = proc.returncode == 0
        return CliResult(
            text=(proc.stdout or "").strip(),
            duration_ms=duration,
            ok=ok,
            error=None if ok else f"exit {proc.returncode}",
            stderr=(proc.stderr or "").strip() or None,
        )

    def _is_transient(self, result: CliResult) -> bool:
        combined = f"{result.error or ''} {result.stderr or ''}".lower()
        return any(marker in combined for marker in TRANSIENT_MARKERS)
