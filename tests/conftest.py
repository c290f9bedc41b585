"""Shared test fixtures."""

from __future__ import annotations

import io
import tarfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from rubylink.config import Settings
from rubylink.errors import FetchError
from rubylink.models import BuildTarget, LinkageMode
from rubylink.process import StepResult
from rubylink.version import Version

LINUX = "x86_64-unknown-linux-gnu"

SAMPLE_RBCONFIG = """\
# frozen-string-literal: false
#
# The module storing Ruby interpreter configurations on building.

module RbConfig
  RUBY_VERSION.start_with?("2.6.") or
    raise "ruby lib version (2.6.0) doesn't match executable version (#{RUBY_VERSION})"

  TOPDIR = File.dirname(__FILE__).chomp!("/lib/ruby/2.6.0/x86_64-linux")
  DESTDIR = '' unless defined? DESTDIR
  CONFIG = {}
  CONFIG["DESTDIR"] = DESTDIR
  CONFIG["MAJOR"] = "2"
  CONFIG["MINOR"] = "6"
  CONFIG["TEENY"] = "0"
  CONFIG["PATCHLEVEL"] = "0"
  CONFIG["RUBY_PROGRAM_VERSION"] = "2.6.0"
  CONFIG["prefix"] = (TOPDIR || DESTDIR + "/opt/ruby")
  CONFIG["exec_prefix"] = "$(prefix)"
  CONFIG["libdir"] = "$(exec_prefix)/lib"
  CONFIG["includedir"] = "$(prefix)/include"
  CONFIG["RUBY_BASE_NAME"] = "ruby"
  CONFIG["ruby_version"] = "2.6.0"
  CONFIG["RUBY_VERSION_NAME"] = "$(RUBY_BASE_NAME)-$(ruby_version)"
  CONFIG["rubyhdrdir"] = "$(includedir)/$(RUBY_VERSION_NAME)"
  CONFIG["arch"] = "x86_64-linux"
  CONFIG["rubyarchhdrdir"] = "$(rubyhdrdir)/$(arch)"
  CONFIG["RUBY_SO_NAME"] = "ruby"
  CONFIG["LIBRUBY_A"] = "lib$(RUBY_SO_NAME)-static.a"
  CONFIG["ENABLE_SHARED"] = "yes"
  CONFIG["LDFLAGS"] = "-L. -fstack-protector-strong -rdynamic -Wl,-export-dynamic"
  CONFIG["LIBRUBYARG_SHARED"] = "-Wl,-rpath,$(libdir) -L$(libdir) -l$(RUBY_SO_NAME)"
  CONFIG["LIBRUBYARG_STATIC"] = "-Wl,-rpath,$(libdir) -L$(libdir) -l$(RUBY_SO_NAME)-static"
  CONFIG["MAINLIBS"] = "-lz -lpthread -lrt -lrt -lgmp -ldl -lcrypt -lm "
  CONFIG["target_os"] = "linux"
  CONFIG["target"] = "x86_64-pc-linux-gnu"
end
"""

INSTALL_CONFIG_PATH = Path("lib") / "ruby" / "2.6.0" / "x86_64-linux" / "rbconfig.rb"


def write_install(root: Path, text: str = SAMPLE_RBCONFIG) -> Path:
    config_path = root / INSTALL_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(text, encoding="utf-8")
    return config_path


def tarball(files: Mapping[str, bytes], mode: str = "w:bz2") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode=mode) as archive:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@dataclass
class FakeRunner:
    """Records commands; ``make install``/``nmake install`` lay out an install tree."""

    failures: dict[str, StepResult] = field(default_factory=dict)
    stdout: dict[str, str] = field(default_factory=dict)
    install_config: str | None = SAMPLE_RBCONFIG
    calls: list[tuple[tuple[str, ...], Path, Mapping[str, str] | None]] = field(default_factory=list)

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> StepResult:
        command = tuple(argv)
        self.calls.append((command, cwd, env))
        program = Path(command[0]).name
        if program in self.failures:
            return self.failures[program]
        if command[-1] == "install" and self.install_config is not None:
            write_install(self._prefix(), self.install_config)
        return StepResult(returncode=0, stdout=self.stdout.get(program, ""))

    @property
    def commands(self) -> list[tuple[str, ...]]:
        return [command for command, _cwd, _env in self.calls]

    def _prefix(self) -> Path:
        for command in self.commands:
            for arg in command:
                if arg.startswith("--prefix="):
                    return Path(arg.removeprefix("--prefix="))
        raise AssertionError("install ran before configure")


@dataclass
class FakeFetcher:
    payloads: dict[str, bytes] = field(default_factory=dict)
    default: bytes | None = None
    urls: list[str] = field(default_factory=list)

    def fetch(self, url: str) -> bytes:
        self.urls.append(url)
        if url in self.payloads:
            return self.payloads[url]
        if self.default is not None:
            return self.default
        raise FetchError("unexpected url", context={"url": url})


@dataclass
class FakeRegistry:
    keys: dict[tuple[str, str], list[str]] = field(default_factory=dict)
    values: dict[tuple[str, str, str], str] = field(default_factory=dict)
    views: list[int] = field(default_factory=list)

    def subkeys(self, hive: str, path: str, *, bits: int) -> list[str]:
        self.views.append(bits)
        return list(self.keys.get((hive, path), []))

    def value(self, hive: str, path: str, name: str, *, bits: int) -> str | None:
        return self.values.get((hive, path, name))


@pytest.fixture
def linux_target() -> BuildTarget:
    return BuildTarget(host=LINUX, target=LINUX)


@pytest.fixture
def sample_rbconfig() -> str:
    return SAMPLE_RBCONFIG


@pytest.fixture
def install_tree() -> Callable[..., Path]:
    """Write an install tree's rbconfig.rb; returns its path."""
    return write_install


@pytest.fixture
def make_tarball() -> Callable[..., bytes]:
    return tarball


@pytest.fixture
def source_tarball() -> bytes:
    return tarball({"ruby-2.6.0/configure": b"#!/bin/sh\n", "ruby-2.6.0/ruby.c": b"int main;\n"})


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def settings(tmp_path: Path, linux_target: BuildTarget) -> Settings:
    return Settings(
        version=Version.parse("2.6.0"),
        linkage=LinkageMode.SHARED,
        cache_dir=tmp_path / "cache",
        target=linux_target,
        jobs=2,
        use_system_ruby=False,
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    """Environment with no rubylink settings and a native Linux target."""
    for name in (
        "RUBYLINK_RUBY_VERSION",
        "RUBYLINK_STATIC_RUBY",
        "RUBYLINK_CACHE_DIR",
        "RUBYLINK_OFFLINE",
        "RUBYLINK_SOURCE_URL",
        "RUBYLINK_PREBUILT_URL",
        "RUBYLINK_ARCHIVE_SHA256",
        "RUBYLINK_REQUIRE_SHA256",
        "RUBYLINK_JOBS",
        "RUBYLINK_CONFIGURE_ARGS",
        "RUBYLINK_EXTRA_LIB_DIRS",
        "RUBYLINK_NO_SYSTEM_RUBY",
        "CC",
        "CFLAGS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOST", LINUX)
    monkeypatch.setenv("TARGET", LINUX)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg"))
    return monkeypatch
