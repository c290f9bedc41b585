"""Ruby builders for Unix and MSVC toolchains."""

from __future__ import annotations

from rubylink.builders.base import BuildSpec, Builder
from rubylink.builders.unix import UnixBuilder
from rubylink.builders.windows import MsvcToolchain, WindowsBuilder
from rubylink.models import BuildTarget
from rubylink.observability import StructuredLogger
from rubylink.process import Runner, SubprocessRunner


def select_builder(
    target: BuildTarget,
    runner: Runner | None = None,
    *,
    logger: StructuredLogger | None = None,
) -> Builder:
    step_runner = runner or SubprocessRunner()
    log = logger or StructuredLogger()
    if target.is_msvc:
        return WindowsBuilder(runner=step_runner, logger=log)
    return UnixBuilder(runner=step_runner, logger=log)


__all__ = [
    "BuildSpec",
    "Builder",
    "MsvcToolchain",
    "UnixBuilder",
    "WindowsBuilder",
    "select_builder",
]
