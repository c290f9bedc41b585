"""Core typed dataclasses for build requests and resolved installations."""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Literal

from rubylink.version import Version

Origin = Literal["cache", "system", "build", "prebuilt"]


class LinkageMode(StrEnum):
    STATIC = "static"
    SHARED = "shared"

    @property
    def is_static(self) -> bool:
        return self is LinkageMode.STATIC


class ArtifactKind(StrEnum):
    SOURCE = "source"
    PREBUILT = "prebuilt"


_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "i386": "i686",
    "i686": "i686",
    "x86": "i686",
}

# configure/configure.bat target names for Windows triples
_RUBY_TRIPLES = {
    "x86_64-pc-windows-msvc": "x64-mswin64",
    "x86_64-pc-windows-gnu": "x86_64-pc-mingw32",
    "i686-pc-windows-msvc": "x86-mswin32",
    "i686-pc-windows-gnu": "i686-pc-mingw32",
}

_MSVC_ARCHES = {
    "x86_64": "x64",
    "i686": "x86",
    "aarch64": "arm64",
}


def host_triple() -> str:
    """Best-effort target triple of the running interpreter's platform."""
    machine = platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine, machine or "unknown")
    if sys.platform == "win32":
        return f"{arch}-pc-windows-msvc"
    if sys.platform == "darwin":
        return f"{arch}-apple-darwin"
    if sys.platform.startswith("linux"):
        return f"{arch}-unknown-linux-gnu"
    return f"{arch}-unknown-{sys.platform}"


@dataclass(frozen=True, slots=True)
class BuildTarget:
    host: str
    target: str

    @classmethod
    def native(cls) -> BuildTarget:
        triple = host_triple()
        return cls(host=triple, target=triple)

    @classmethod
    def for_target(cls, target: str | None) -> BuildTarget:
        host = host_triple()
        return cls(host=host, target=target or host)

    @property
    def is_native(self) -> bool:
        return self.host == self.target

    @property
    def arch(self) -> str:
        return self.target.split("-", 1)[0]

    @property
    def is_windows(self) -> bool:
        return "windows" in self.target or "mingw" in self.target or "mswin" in self.target

    @property
    def is_msvc(self) -> bool:
        return self.target.endswith("-msvc") or "mswin" in self.target

    @property
    def pointer_width(self) -> int:
        if self.arch in ("x86_64", "aarch64", "powerpc64", "powerpc64le", "s390x", "riscv64"):
            return 64
        return 32

    @property
    def ruby_triple(self) -> str:
        return _RUBY_TRIPLES.get(self.target, self.target)

    def msvc_arch(self) -> str:
        """Argument for ``vcvarsall.bat``; cross builds use ``host_target``."""
        host = _MSVC_ARCHES.get(self.host.split("-", 1)[0], "x64")
        target = _MSVC_ARCHES.get(self.arch, "x64")
        return target if host == target else f"{host}_{target}"

    def __str__(self) -> str:
        if self.is_native:
            return self.target
        return f"{self.host}->{self.target}"


@dataclass(frozen=True, slots=True)
class RubyInstallation:
    version: Version
    linkage: LinkageMode
    root: Path
    config_path: Path
    origin: Origin

    @property
    def lib_dir(self) -> Path:
        return self.root / "lib"


_LIB_DIRS = ("lib", "lib64")


def find_rbconfig(root: Path) -> Path | None:
    """Return ``lib/ruby/<abi>/<arch>/rbconfig.rb`` (or under ``lib64``) below an install root."""
    for lib in _LIB_DIRS:
        candidates = sorted(root.glob(f"{lib}/ruby/*/*/rbconfig.rb"))
        if candidates:
            return candidates[0]
    return None


def install_root_for(config_path: Path) -> Path:
    """Invert :func:`find_rbconfig`, falling back to the containing directory."""
    parents = config_path.parents
    if len(parents) > 4 and parents[2].name == "ruby" and parents[3].name in _LIB_DIRS:
        return parents[4]
    return config_path.parent


__all__ = [
    "ArtifactKind",
    "BuildTarget",
    "LinkageMode",
    "Origin",
    "RubyInstallation",
    "find_rbconfig",
    "host_triple",
    "install_root_for",
]
