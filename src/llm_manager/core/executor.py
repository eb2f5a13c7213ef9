"""Run one backend invocation as a subprocess and capture its output."""

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from llm_manager.core.backends import Backend

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    success: bool
    output: str
    exit_code: int | None = None
    timed_out: bool = False
    duration_ms: int = 0


def build_command(backend: Backend, description: str, model: str | None = None) -> list[str]:
    return backend.argv(description, model)


def invoke(
    backend: Backend,
    description: str,
    model: str | None = None,
    timeout: float | None = None,
    cwd: Path | None = None,
) -> InvocationResult:
    """Run the backend once, blocking until it exits or the deadline passes.

    stdout and stderr are merged into one string. A missing launcher, a
    non-zero exit, empty output and a timeout all come back as an
    unsuccessful result rather than an exception.
    """
    cmd = build_command(backend, description, model)
    start = time.monotonic()
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        # subprocess.run kills the child before re-raising
        partial = _decode(e.output)
        logger.warning("%s timed out after %ss", backend.name, timeout)
        return InvocationResult(
            success=False,
            output=f"{partial}\n[timed out after {timeout}s]".lstrip("\n"),
            timed_out=True,
            duration_ms=_elapsed_ms(start),
        )
    except OSError as e:
        logger.warning("Could not launch %s: %s", backend.command, e)
        return InvocationResult(
            success=False,
            output=f"Failed to launch {backend.command}: {e}",
            duration_ms=_elapsed_ms(start),
        )

    output = proc.stdout or ""
    success = proc.returncode == 0 and bool(output.strip())
    return InvocationResult(
        success=success,
        output=output,
        exit_code=proc.returncode,
        duration_ms=_elapsed_ms(start),
    )


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
