"""Typed interfaces and shared steps for Ruby builders.

A build never runs inside its cache entry. Each attempt gets a private
staging tree under the cache root; once ``rbconfig.rb`` is installed there
the tree is marked and renamed into place. A concurrent build of the same
entry therefore never sees or disturbs another process's work.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Protocol

from rubylink.cache import CacheKey, CacheStore
from rubylink.errors import ToolchainError
from rubylink.models import BuildTarget, LinkageMode, RubyInstallation, find_rbconfig
from rubylink.observability import StructuredLogger
from rubylink.version import Version


@dataclass(frozen=True, slots=True)
class BuildSpec:
    version: Version
    source: Path
    linkage: LinkageMode
    target: BuildTarget
    output_dir: Path
    jobs: int = 1
    configure_args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def key(self) -> CacheKey:
        return CacheKey.for_build(self.version, self.linkage, self.target)

    @property
    def build_dir(self) -> Path:
        return self.output_dir / "build"

    @property
    def install_dir(self) -> Path:
        return self.output_dir / "install"

    @property
    def store(self) -> CacheStore:
        return CacheStore(self.output_dir.parent)


class Builder(Protocol):
    def build(self, spec: BuildSpec) -> RubyInstallation:
        """Compile Ruby from ``spec.source`` and return the installation."""


def completed_installation(spec: BuildSpec) -> RubyInstallation | None:
    """Return the installation when ``spec.output_dir`` holds a finished build."""
    if not spec.store.is_complete(spec.output_dir, spec.key):
        return None
    config_path = find_rbconfig(spec.install_dir)
    if config_path is None:
        return None
    return RubyInstallation(
        version=spec.version,
        linkage=spec.linkage,
        root=spec.install_dir,
        config_path=config_path,
        origin="cache",
    )


@contextmanager
def staged_build(spec: BuildSpec) -> Iterator[BuildSpec]:
    """Yield ``spec`` retargeted at a fresh staging tree, removed on exit.

    After :func:`finish_build` has published the tree nothing is left to
    remove; a failed build leaves no trace in the cache.
    """
    staging = spec.store.staging_dir(spec.key)
    work = replace(spec, output_dir=staging)
    work.build_dir.mkdir()
    try:
        yield work
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def finish_build(spec: BuildSpec, work: BuildSpec) -> RubyInstallation:
    """Check the staged install, mark it and publish it as ``spec.output_dir``."""
    if find_rbconfig(work.install_dir) is None:
        raise ToolchainError(
            "Build finished without producing rbconfig.rb.",
            hint="The install step may have failed silently; inspect the build output.",
            context={"operation": "build", "install_dir": str(work.install_dir)},
        )
    spec.store.mark_complete(work.output_dir, spec.key)
    entry = spec.store.promote(work.output_dir, spec.key)
    config_path = find_rbconfig(entry / "install")
    if config_path is None:
        raise ToolchainError(
            "Published build is missing rbconfig.rb.",
            hint="Remove the cache entry and rebuild.",
            context={"operation": "build", "path": str(entry)},
        )
    return RubyInstallation(
        version=spec.version,
        linkage=spec.linkage,
        root=entry / "install",
        config_path=config_path,
        origin="build",
    )


def log_step(logger: StructuredLogger, spec: BuildSpec, message: str, **extra: str) -> None:
    logger.log(
        operation="build",
        stage="build",
        version=str(spec.version),
        linkage=spec.linkage.value,
        target=str(spec.target),
        message=message,
        extra=extra or None,
    )
