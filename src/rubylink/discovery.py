"""Lookup of Ruby installations that already exist on the machine."""

from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from rubylink.errors import ConfigUnreadableError, InstallationMismatchError, RubyLinkError
from rubylink.models import BuildTarget, LinkageMode, find_rbconfig
from rubylink.observability import StructuredLogger
from rubylink.process import Runner, run_step
from rubylink.rbconfig import RubyConfig, parse_rbconfig
from rubylink.version import Version

RUBYINSTALLER_KEY = r"Software\RubyInstaller\MRI"

# Prints the install prefix and the directory holding rbconfig.rb.
CURRENT_RUBY_SCRIPT = "puts RbConfig::CONFIG.values_at('prefix', 'rubyarchdir')"


class ConfigDiscovery(Protocol):
    def discover(self, version: Version, linkage: LinkageMode, target: BuildTarget) -> Path | None:
        """Return the ``rbconfig.rb`` of a matching installation, or ``None``."""


def default_unix_roots(home: Path | None = None) -> tuple[str, ...]:
    """Installation-manager layouts; ``{version}`` is substituted per lookup."""
    base = home or Path.home()
    return (
        str(base / ".rbenv" / "versions" / "{version}"),
        str(base / ".rvm" / "rubies" / "ruby-{version}"),
        str(base / ".rubies" / "ruby-{version}"),
        "/opt/rubies/ruby-{version}",
        str(base / ".asdf" / "installs" / "ruby" / "{version}"),
    )


def mismatch(config: RubyConfig, version: Version | None, linkage: LinkageMode) -> str | None:
    """Describe how ``config`` differs from the request, or ``None`` when it fits.

    Ruby pre-releases are built with ``PATCHLEVEL`` -1. The tag itself is not
    recorded, so any pre-release of the same triple satisfies a pre-release
    request.
    """
    if version is not None:
        found = config.version_string()
        if found != str(version.release):
            return f"version {found or 'unknown'} instead of {version.release}"
        patchlevel = config.get("PATCHLEVEL")
        if patchlevel is not None and (patchlevel == "-1") != version.is_prerelease:
            kind = "a pre-release" if patchlevel == "-1" else "a final release"
            return f"{kind} of {version.release}"
    if config.shared_enabled == linkage.is_static:
        built = "shared" if config.shared_enabled else "static-only"
        return f"a {built} build for {linkage.value} linkage"
    return None


def matches(config_path: Path, version: Version, linkage: LinkageMode) -> bool:
    return mismatch(parse_rbconfig(config_path), version, linkage) is None


def ensure_matches(
    config: RubyConfig,
    version: Version | None,
    linkage: LinkageMode,
    *,
    origin: str,
) -> None:
    reason = mismatch(config, version, linkage)
    if reason is not None:
        raise InstallationMismatchError(
            f"The {origin} Ruby installation is {reason}.",
            hint="Request the version and linkage the installation was built for, or build from source.",
            context={
                "operation": "check_installation",
                "origin": origin,
                "path": config.source,
                "requested_version": str(version) if version is not None else "",
                "requested_linkage": linkage.value,
            },
        )


@dataclass(frozen=True, slots=True)
class CurrentRuby:
    root: Path
    config_path: Path


def current_ruby(runner: Runner, *, executable: str = "ruby", cwd: Path | None = None) -> CurrentRuby:
    """Ask the ``ruby`` on ``PATH`` where it is installed."""
    result = run_step(
        runner,
        (executable, "-e", CURRENT_RUBY_SCRIPT),
        cwd=cwd or Path.cwd(),
        operation="current_ruby",
    )
    lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    if len(lines) < 2:
        raise ConfigUnreadableError(
            f"`{executable}` did not report its installation directories.",
            hint="Check that the ruby on PATH is a working MRI interpreter.",
            context={"operation": "current_ruby", "stdout": result.stdout[-2000:]},
        )
    config_path = Path(lines[1]) / "rbconfig.rb"
    if not config_path.is_file():
        raise ConfigUnreadableError(
            "The current Ruby has no rbconfig.rb where it reports one.",
            hint="Install the Ruby development files or set RUBYLINK_RUBY_VERSION.",
            context={"operation": "current_ruby", "path": str(config_path)},
        )
    return CurrentRuby(root=Path(lines[0]), config_path=config_path)


@dataclass(slots=True)
class UnixDiscovery:
    roots: Sequence[str] = field(default_factory=default_unix_roots)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def discover(self, version: Version, linkage: LinkageMode, target: BuildTarget) -> Path | None:
        if not target.is_native:
            return None
        for template in self.roots:
            root = Path(template.format(version=version))
            config_path = find_rbconfig(root) if root.is_dir() else None
            if config_path is None:
                continue
            if _accept(config_path, version, linkage, target, self.logger):
                return config_path
        return None


class RegistryReader(Protocol):
    def subkeys(self, hive: str, path: str, *, bits: int) -> list[str]:
        """Names of the subkeys under ``hive\\path``; empty when missing."""

    def value(self, hive: str, path: str, name: str, *, bits: int) -> str | None:
        """A string value under ``hive\\path``; ``None`` when missing."""


class WinregReader:
    """:class:`RegistryReader` backed by :mod:`winreg`."""

    def subkeys(self, hive: str, path: str, *, bits: int) -> list[str]:
        import winreg

        try:
            with winreg.OpenKey(_hive(hive), path, 0, winreg.KEY_READ | _view(bits)) as key:
                count = winreg.QueryInfoKey(key)[0]
                return [winreg.EnumKey(key, index) for index in range(count)]
        except OSError:
            return []

    def value(self, hive: str, path: str, name: str, *, bits: int) -> str | None:
        import winreg

        try:
            with winreg.OpenKey(_hive(hive), path, 0, winreg.KEY_READ | _view(bits)) as key:
                data, _kind = winreg.QueryValueEx(key, name)
        except OSError:
            return None
        return str(data) if data else None


def _hive(name: str) -> int:
    import winreg

    return {"HKLM": winreg.HKEY_LOCAL_MACHINE, "HKCU": winreg.HKEY_CURRENT_USER}[name]


def _view(bits: int) -> int:
    import winreg

    return winreg.KEY_WOW64_64KEY if bits == 64 else winreg.KEY_WOW64_32KEY


@dataclass(slots=True)
class WindowsDiscovery:
    reader: RegistryReader = field(default_factory=WinregReader)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    hives: tuple[str, ...] = ("HKLM", "HKCU")

    def discover(self, version: Version, linkage: LinkageMode, target: BuildTarget) -> Path | None:
        if not target.is_native:
            return None
        bits = target.pointer_width
        for install_dir in self._install_locations(version, bits):
            config_path = find_rbconfig(install_dir) if install_dir.is_dir() else None
            if config_path is None:
                continue
            if _accept(config_path, version, linkage, target, self.logger):
                return config_path
        return None

    def _install_locations(self, version: Version, bits: int) -> Iterator[Path]:
        for hive in self.hives:
            for name in self.reader.subkeys(hive, RUBYINSTALLER_KEY, bits=bits):
                if not _installer_name_matches(name, version, bits):
                    continue
                location = self.reader.value(
                    hive, f"{RUBYINSTALLER_KEY}\\{name}", "InstallLocation", bits=bits
                )
                if location:
                    yield Path(location)


def _installer_name_matches(name: str, version: Version, bits: int) -> bool:
    """Match RubyInstaller key names such as ``2.6.0-1-x64``."""
    base, _, arch = name.rpartition("-")
    if arch in ("x64", "x86"):
        if (arch == "x64") != (bits == 64):
            return False
    else:
        base = name
    release = str(version.release)
    return base == release or base.startswith(f"{release}-")


def _accept(
    config_path: Path,
    version: Version,
    linkage: LinkageMode,
    target: BuildTarget,
    logger: StructuredLogger,
) -> bool:
    try:
        accepted = matches(config_path, version, linkage)
    except RubyLinkError as exc:
        logger.log(
            operation="discover",
            stage="discovery",
            version=str(version),
            linkage=linkage.value,
            target=str(target),
            level="warning",
            message="Skipping unreadable installation.",
            extra={"path": str(config_path), "code": exc.code},
        )
        return False
    logger.log(
        operation="discover",
        stage="discovery",
        version=str(version),
        linkage=linkage.value,
        target=str(target),
        message="Found matching installation." if accepted else "Installation does not match.",
        extra={"path": str(config_path)},
    )
    return accepted


def select_discovery(
    target: BuildTarget,
    *,
    logger: StructuredLogger | None = None,
    roots: Iterable[str] | None = None,
) -> ConfigDiscovery:
    log = logger or StructuredLogger()
    if target.is_windows and sys.platform == "win32":
        return WindowsDiscovery(logger=log)
    if roots is None:
        return UnixDiscovery(logger=log)
    return UnixDiscovery(roots=tuple(roots), logger=log)


__all__ = [
    "ConfigDiscovery",
    "CurrentRuby",
    "RegistryReader",
    "UnixDiscovery",
    "WindowsDiscovery",
    "WinregReader",
    "current_ruby",
    "default_unix_roots",
    "ensure_matches",
    "matches",
    "mismatch",
    "select_discovery",
]
