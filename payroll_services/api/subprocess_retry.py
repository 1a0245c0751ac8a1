"""
Subprocess retry wrapper for contract-call scripts.

The ledger adapter reads chain state through small TypeScript scripts that
print one JSON object on stdout. Read calls go through run_json_script_with_retry;
state-changing calls must not, because a blind resubmission of a signed
transaction can double-send.
"""
from __future__ import annotations

import json
import subprocess
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from payroll_services.api.logging_config import get_logger

logger = get_logger("subprocess_retry")

_FAST_RETRY = ("nonce too low", "replacement transaction underpriced", "header not found")
_BACKOFF_RETRY = ("429", "rate limit", "connection", "timeout", "econnrefused", "enotfound", "etimedout")


class SubprocessRetryError(Exception):
    """Raised when subprocess fails after all retries"""


def run_with_retry(
    cmd: List[str],
    max_retries: int = 3,
    timeout: int = 60,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    description: str = "Command",
    on_attempt: Optional[Callable[[int, str], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> subprocess.CompletedProcess:
    """
    Run subprocess command with automatic retry logic.

    Features:
    - Exponential backoff (1s, 2s, 4s) for timeouts, rate limits and network errors
    - Short fixed pause for stale-node errors (nonce / header lag)
    - Any other non-zero exit raises at once
    - Captures stdout/stderr for debugging

    Args:
        cmd: Command list (e.g., ["npx", "tsx", "scripts/payroll.ts", "readStream", "{}"])
        max_retries: Maximum attempts (default: 3)
        timeout: Command timeout in seconds (default: 60)
        cwd: Working directory for command
        env: Environment variables
        description: Human-readable description for logging
        on_attempt: Optional callback called on each attempt: (attempt_num, status_msg)
        sleep: Delay function, replaced in tests

    Returns:
        CompletedProcess with stdout, stderr, returncode

    Raises:
        SubprocessRetryError: If command fails after all retries
    """
    last_error: Optional[str] = None

    for attempt in range(max_retries):
        final = attempt == max_retries - 1
        status_msg = f"{description} (attempt {attempt + 1}/{max_retries})"
        logger.debug(status_msg)
        if on_attempt:
            on_attempt(attempt + 1, status_msg)

        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            last_error = f"timed out after {timeout}s"
            logger.warning("%s timed out after %ss", description, timeout)
            if not final:
                sleep(2 ** attempt)
            continue
        except OSError as e:
            # missing executable / bad cwd: retrying will not help
            raise SubprocessRetryError(f"{description} could not be started: {e}") from e

        if result.returncode == 0:
            logger.debug("%s successful", description)
            return result

        stderr = result.stderr or ""
        last_error = f"exit code {result.returncode}: {stderr[:500]}"
        logger.warning("%s failed with %s", description, last_error)
        if final:
            break

        lowered = stderr.lower()
        if any(p in lowered for p in _FAST_RETRY):
            sleep(0.5)
        elif any(p in lowered for p in _BACKOFF_RETRY):
            logger.info("Retrying %s in %ss", description, 2 ** attempt)
            sleep(2 ** attempt)
        else:
            # reverts and bad arguments fail the same way every time
            raise SubprocessRetryError(f"{description} failed: {last_error}")

    raise SubprocessRetryError(
        f"{description} failed after {max_retries} attempts. Last error: {last_error}"
    )


def parse_json_output(stdout: str, description: str = "Script") -> dict:
    """Parse the last JSON object a script printed (scripts may log before it)."""
    text = (stdout or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for line in reversed(text.splitlines()):
        line = line.strip()
        if line.startswith("{"):
            try:
                return json.loads(line)
            except json.JSONDecodeError:
                continue
    raise SubprocessRetryError(f"Failed to parse {description} output as JSON: {text[:500]!r}")


def run_json_script_with_retry(
    cmd: List[str],
    max_retries: int = 3,
    timeout: int = 60,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    description: str = "Script",
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """
    Run a script that outputs JSON with retry logic.

    Returns:
        Parsed JSON output from script

    Raises:
        SubprocessRetryError: If command fails after all retries or prints no JSON
    """
    result = run_with_retry(
        cmd=cmd,
        max_retries=max_retries,
        timeout=timeout,
        cwd=cwd,
        env=env,
        description=description,
        sleep=sleep,
    )
    return parse_json_output(result.stdout, description)
