"""
External tool invocation

Stages drive compilers, scanners and the container runtime as
subprocesses. A non-zero exit or a missing binary becomes a
StageExecutionError; running past the budget becomes a StageTimeout.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from pipegate.core.errors import StageExecutionError, StageTimeout

logger = logging.getLogger(__name__)

# Keep error messages readable when a tool dumps a lot of output
OUTPUT_TAIL = 2000


def render_command(template: str, **values: str) -> list[str]:
    """Split a configured command line and fill {placeholders} in each argument."""
    try:
        return [part.format(**values) for part in shlex.split(template)]
    except (KeyError, IndexError, ValueError) as exc:
        raise StageExecutionError(f"Cannot render command {template!r}: {exc}") from exc


def run_tool(
    command: Union[str, Sequence[str]],
    cwd: Optional[Path] = None,
    timeout: Optional[float] = None,
    env: Optional[Mapping[str, str]] = None,
) -> subprocess.CompletedProcess:
    """
    Run an external tool and return the completed process.

    Raises:
        StageTimeout: The tool ran longer than ``timeout`` seconds.
        StageExecutionError: The tool is missing or exited non-zero.
    """
    argv = shlex.split(command) if isinstance(command, str) else list(command)
    if not argv:
        raise StageExecutionError("Empty command")

    executable = shutil.which(argv[0])
    if executable is None:
        raise StageExecutionError(f"{argv[0]} is not installed or not on PATH", command=argv)

    logger.info("Running %s", " ".join(shlex.quote(a) for a in argv))
    try:
        result = subprocess.run(
            [executable, *argv[1:]],
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=dict(env) if env is not None else None,
        )
    except subprocess.TimeoutExpired as exc:
        raise StageTimeout(
            f"{argv[0]} timed out after {timeout:.0f}s", command=argv
        ) from exc
    except OSError as exc:
        raise StageExecutionError(f"Cannot run {argv[0]}: {exc}", command=argv) from exc

    if result.returncode != 0:
        output = (result.stderr or result.stdout or "")[-OUTPUT_TAIL:]
        raise StageExecutionError(
            f"{argv[0]} exited with status {result.returncode}",
            command=argv,
            returncode=result.returncode,
            output=output,
        )

    logger.debug("%s finished", argv[0])
    return result
