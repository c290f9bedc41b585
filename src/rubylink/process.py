"""External command execution shared by acquisition and build steps."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from rubylink.errors import ToolchainError


@dataclass(frozen=True, slots=True)
class StepResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Runner(Protocol):
    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> StepResult:
        """Run ``argv`` in ``cwd`` and capture its exit status and output."""


@dataclass(slots=True)
class SubprocessRunner:
    """Runs commands with :mod:`subprocess`, layering ``env`` over ``os.environ``."""

    inherit_env: bool = True

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> StepResult:
        merged: dict[str, str] | None = None
        if env is not None:
            merged = dict(os.environ) if self.inherit_env else {}
            merged.update(env)
        completed = subprocess.run(
            list(argv),
            cwd=cwd,
            env=merged,
            check=False,
            text=True,
            capture_output=True,
        )
        return StepResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


def run_step(
    runner: Runner,
    argv: Sequence[str],
    *,
    cwd: Path,
    operation: str,
    env: Mapping[str, str] | None = None,
) -> StepResult:
    """Run one external step and raise :class:`ToolchainError` unless it succeeds."""
    command = tuple(str(arg) for arg in argv)
    try:
        result = runner.run(command, cwd=cwd, env=env)
    except OSError as exc:
        raise ToolchainError(
            f"Could not start `{command[0]}`.",
            command=command,
            stderr=str(exc),
            hint="Ensure the tool is installed and on PATH.",
            context={"operation": operation, "cwd": str(cwd)},
        ) from exc
    if not result.ok:
        raise ToolchainError(
            f"`{command[0]}` exited with status {result.returncode}.",
            command=command,
            returncode=result.returncode,
            stderr=result.stderr,
            hint="Inspect the captured stderr for the failing step.",
            context={"operation": operation, "cwd": str(cwd)},
        )
    return result


__all__ = ["Runner", "StepResult", "SubprocessRunner", "run_step"]
