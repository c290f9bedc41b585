"""autoconf/configure/make builder for Unix-like hosts."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field, replace

from rubylink.builders.base import (
    BuildSpec,
    completed_installation,
    finish_build,
    log_step,
    staged_build,
)
from rubylink.models import RubyInstallation
from rubylink.observability import StructuredLogger
from rubylink.process import Runner, SubprocessRunner, run_step


def configure_command(spec: BuildSpec) -> tuple[str, ...]:
    command = [
        str(spec.source / "configure"),
        f"--prefix={spec.install_dir}",
        "--disable-shared" if spec.linkage.is_static else "--enable-shared",
        "--disable-install-doc",
    ]
    if not spec.target.is_native:
        command.extend([f"--build={spec.target.host}", f"--host={spec.target.target}"])
    for name in ("CC", "CFLAGS"):
        if spec.env.get(name):
            command.append(f"{name}={spec.env[name]}")
    command.extend(spec.configure_args)
    return tuple(command)


@dataclass(slots=True)
class UnixBuilder:
    runner: Runner = field(default_factory=SubprocessRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def build(self, spec: BuildSpec) -> RubyInstallation:
        existing = completed_installation(spec)
        if existing is not None:
            log_step(self.logger, spec, "Build already complete.", path=str(spec.output_dir))
            return existing

        env = dict(spec.env) or None
        with staged_build(spec) as work:
            if not (work.source / "configure").exists():
                # The shared source entry is read-only; generate configure in a copy.
                source = work.output_dir / "source"
                shutil.copytree(work.source, source, symlinks=True)
                work = replace(work, source=source)
                log_step(self.logger, spec, "Generating configure script.", path=str(source))
                run_step(self.runner, ("autoconf",), cwd=source, operation="autoconf", env=env)

            steps = (
                ("configure", configure_command(work)),
                ("make", ("make", f"-j{work.jobs}")),
                ("install", ("make", "install")),
            )
            for operation, command in steps:
                log_step(self.logger, spec, f"Running {operation}.", command=" ".join(command))
                run_step(self.runner, command, cwd=work.build_dir, operation=operation, env=env)

            installation = finish_build(spec, work)
        log_step(self.logger, spec, "Build complete.", path=str(installation.root))
        return installation
