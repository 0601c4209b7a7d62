"""
frontend_deploy.build — Run the external build step.

The build is opaque: only its exit code decides success.  Output tails are
kept for the CI log.
"""

from __future__ import annotations

import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from aws_lambda_powertools import Logger

from frontend_deploy.exceptions import BuildError

logger = Logger(service="frontend-deploy")

_OUTPUT_TAIL_CHARS = 8000


@dataclass(frozen=True)
class BuildResult:
    command: str
    return_code: int
    stdout_tail: str = ""
    stderr_tail: str = ""


def run_build(
    command: str | Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    timeout_seconds: float | None = None,
) -> BuildResult:
    """Run command and raise BuildError unless it exits 0."""
    argv = shlex.split(command) if isinstance(command, str) else list(command)
    if not argv:
        raise BuildError("Build command is empty")
    cmd_display = " ".join(argv)
    logger.info("Running build", command=cmd_display, cwd=str(cwd or "."))

    try:
        result = subprocess.run(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except FileNotFoundError as exc:
        raise BuildError(f"Build command not found: {argv[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise BuildError(f"Build timed out after {timeout_seconds}s: {cmd_display}") from exc

    build = BuildResult(
        command=cmd_display,
        return_code=result.returncode,
        stdout_tail=result.stdout.strip()[-_OUTPUT_TAIL_CHARS:],
        stderr_tail=result.stderr.strip()[-_OUTPUT_TAIL_CHARS:],
    )
    if result.returncode != 0:
        logger.error(
            "Build failed",
            command=cmd_display,
            return_code=result.returncode,
            stderr_tail=build.stderr_tail,
        )
        raise BuildError(
            f"Build failed ({result.returncode}): {cmd_display}", return_code=result.returncode
        )
    logger.info("Build succeeded", command=cmd_display)
    return build
