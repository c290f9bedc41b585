"""MSVC builder driving ``win32\\configure.bat`` and ``nmake``."""

from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from rubylink.builders.base import (
    BuildSpec,
    completed_installation,
    finish_build,
    log_step,
    staged_build,
)
from rubylink.errors import ToolchainError
from rubylink.models import BuildTarget, RubyInstallation
from rubylink.observability import StructuredLogger
from rubylink.process import Runner, SubprocessRunner, run_step

VC_TOOLS_COMPONENT = "Microsoft.VisualStudio.Component.VC.Tools.x86.x64"


def parse_set_output(text: str) -> dict[str, str]:
    """Parse ``set`` output (``NAME=value`` per line) into an environment."""
    env: dict[str, str] = {}
    for line in text.splitlines():
        name, sep, value = line.partition("=")
        if sep and name and not name.startswith("="):
            env[name] = value.rstrip("\r")
    return env


@dataclass(slots=True)
class MsvcToolchain:
    """Locates an MSVC environment: on ``PATH`` already, or through ``vcvarsall.bat``."""

    runner: Runner = field(default_factory=SubprocessRunner)
    which: Callable[[str], str | None] = shutil.which
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    def environment(self, target: BuildTarget) -> dict[str, str]:
        if self.which("nmake") and self.which("cl"):
            return {}
        vcvarsall = self._vcvarsall()
        if vcvarsall is None:
            raise ToolchainError(
                "No MSVC toolchain found.",
                command=("vswhere",),
                hint="Install Visual Studio Build Tools with the C++ workload, or run from a developer prompt.",
                context={"operation": "locate_toolchain", "target": target.target},
            )
        result = run_step(
            self.runner,
            ("cmd", "/d", "/c", "call", str(vcvarsall), target.msvc_arch(), "&&", "set"),
            cwd=vcvarsall.parent,
            operation="locate_toolchain",
        )
        return parse_set_output(result.stdout)

    def _vcvarsall(self) -> Path | None:
        program_files = self.environ.get("ProgramFiles(x86)") or r"C:\Program Files (x86)"
        vswhere = Path(program_files) / "Microsoft Visual Studio" / "Installer" / "vswhere.exe"
        if not vswhere.is_file():
            return None
        result = run_step(
            self.runner,
            (
                str(vswhere),
                "-latest",
                "-products",
                "*",
                "-requires",
                VC_TOOLS_COMPONENT,
                "-property",
                "installationPath",
            ),
            cwd=vswhere.parent,
            operation="locate_toolchain",
        )
        install_path = result.stdout.strip().splitlines()
        if not install_path:
            return None
        vcvarsall = Path(install_path[0].strip()) / "VC" / "Auxiliary" / "Build" / "vcvarsall.bat"
        return vcvarsall if vcvarsall.is_file() else None


def configure_command(spec: BuildSpec) -> tuple[str, ...]:
    return (
        "cmd",
        "/d",
        "/c",
        str(spec.source / "win32" / "configure.bat"),
        f"--prefix={spec.install_dir}",
        f"--target={spec.target.ruby_triple}",
        "--disable-shared" if spec.linkage.is_static else "--enable-shared",
        "--disable-install-doc",
        *spec.configure_args,
    )


@dataclass(slots=True)
class WindowsBuilder:
    runner: Runner = field(default_factory=SubprocessRunner)
    toolchain: MsvcToolchain | None = None
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def build(self, spec: BuildSpec) -> RubyInstallation:
        existing = completed_installation(spec)
        if existing is not None:
            log_step(self.logger, spec, "Build already complete.", path=str(spec.output_dir))
            return existing

        toolchain = self.toolchain or MsvcToolchain(runner=self.runner)
        env = {**spec.env, **toolchain.environment(spec.target)}
        log_step(self.logger, spec, "MSVC toolchain located.", arch=spec.target.msvc_arch())

        with staged_build(spec) as work:
            steps = (
                ("configure", configure_command(work)),
                ("make", ("nmake",)),
                ("install", ("nmake", "install")),
            )
            for operation, command in steps:
                log_step(self.logger, spec, f"Running {operation}.", command=" ".join(command))
                run_step(self.runner, command, cwd=work.build_dir, operation=operation, env=env or None)

            installation = finish_build(spec, work)
        log_step(self.logger, spec, "Build complete.", path=str(installation.root))
        return installation
