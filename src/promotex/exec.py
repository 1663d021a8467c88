"""Command runners for cluster CLI calls."""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_SECRET_ARG = re.compile(r"^(--token=).+$")


@dataclass(frozen=True)
class ExecResult:
    """Result envelope for subprocess execution."""

    argv: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ExecError(RuntimeError):
    """Raised when a command returns non-zero in check mode."""

    def __init__(self, result: ExecResult):
        rendered = render_argv(result.argv)
        detail = (result.stderr or result.stdout).strip()
        super().__init__(f"command failed ({result.returncode}): {rendered}\n{detail}")
        self.result = result


def render_argv(argv: tuple[str, ...] | list[str]) -> str:
    """Join argv for display with token values masked."""
    return " ".join(_SECRET_ARG.sub(r"\1***", arg) for arg in argv)


def run_command(
    argv: list[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    stdin_text: str | None = None,
    check: bool = True,
) -> ExecResult:
    """Run command and return structured result."""
    workdir = (cwd or Path.cwd()).resolve()
    logger.debug("exec: %s", render_argv(argv))
    completed = subprocess.run(
        argv,
        cwd=workdir,
        env=dict(env) if env is not None else None,
        input=stdin_text,
        capture_output=True,
        text=True,
        check=False,
    )
    result = ExecResult(
        argv=tuple(argv),
        cwd=workdir,
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
    if check and result.returncode != 0:
        raise ExecError(result)
    return result


def run_oc(
    args: list[str],
    *,
    env: Mapping[str, str] | None = None,
    stdin_text: str | None = None,
    check: bool = True,
) -> ExecResult:
    """Run an ``oc`` command."""
    return run_command(["oc", *args], env=env, stdin_text=stdin_text, check=check)
