"""End-to-end resolution of a Ruby request into link directives.

Order of preference: a finished build in the cache, a matching system
installation (native targets only), a prebuilt archive when one is
configured, and finally a source build. A request without a version uses
the ``ruby`` found on ``PATH``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path

from rubylink.acquire import SourceAcquirer, make_acquirer
from rubylink.builders import BuildSpec, Builder, select_builder
from rubylink.cache import CacheKey, CacheStore
from rubylink.config import Settings
from rubylink.discovery import ConfigDiscovery, current_ruby, ensure_matches, select_discovery
from rubylink.errors import ConfigUnreadableError, ValidationError
from rubylink.headers import ruby_headers, wrapper_header
from rubylink.link import LinkDirectives, emit_link_directives
from rubylink.models import (
    ArtifactKind,
    BuildTarget,
    LinkageMode,
    Origin,
    RubyInstallation,
    find_rbconfig,
    install_root_for,
)
from rubylink.observability import StructuredLogger
from rubylink.process import Runner, SubprocessRunner
from rubylink.rbconfig import RubyConfig, parse_rbconfig
from rubylink.version import Version


@dataclass(frozen=True, slots=True)
class Resolution:
    installation: RubyInstallation
    config: RubyConfig
    directives: LinkDirectives

    @property
    def origin(self) -> Origin:
        return self.installation.origin

    @property
    def overrides(self) -> dict[str, str]:
        return {"prefix": str(self.installation.root)}

    def headers(self) -> list[Path]:
        return ruby_headers(self.config, self.overrides)

    def wrapper_header(self, keep: Callable[[Path], bool] | None = None) -> str:
        """Header text suitable as a bindgen input; see :func:`rubylink.headers.wrapper_header`."""
        return wrapper_header(self.config, self.overrides, keep=keep)


@dataclass(slots=True)
class RubyResolver:
    settings: Settings = field(default_factory=Settings.from_env)
    acquirer: SourceAcquirer | None = None
    builder: Builder | None = None
    discovery: ConfigDiscovery | None = None
    runner: Runner = field(default_factory=SubprocessRunner)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    @property
    def store(self) -> CacheStore:
        return CacheStore(self.settings.cache_dir)

    def resolve(
        self,
        version: Version | str | None = None,
        linkage: LinkageMode | None = None,
        target: BuildTarget | str | None = None,
    ) -> Resolution:
        request_version, request_linkage, request_target = self._request(version, linkage, target)
        if request_version is None:
            installation = self._current(request_linkage, request_target)
        else:
            installation = self._locate(
                request_version,
                request_linkage,
                request_target,
                allow_system=self.settings.use_system_ruby,
            )
        config = parse_rbconfig(installation.config_path)
        self._log(installation, "Parsed build configuration.", keys=str(len(config)))
        overrides = {"prefix": str(installation.root)}
        directives = emit_link_directives(
            config,
            request_linkage,
            lib_dir=_lib_dir(installation, config, overrides),
            extra_lib_dirs=self.settings.extra_lib_dirs,
            overrides=overrides,
        )
        self._log(
            installation,
            "Link directives ready.",
            libraries=",".join(library.name for library in directives.libraries),
            search_paths=str(len(directives.search_paths)),
        )
        return Resolution(installation=installation, config=config, directives=directives)

    def build(
        self,
        version: Version | str | None = None,
        linkage: LinkageMode | None = None,
        target: BuildTarget | str | None = None,
    ) -> RubyInstallation:
        """Acquire and build without considering system installations."""
        request_version, request_linkage, request_target = self._request(version, linkage, target)
        if request_version is None:
            raise ValidationError(
                "A Ruby version is required to build.",
                hint="Pass a version or set RUBYLINK_RUBY_VERSION.",
                context={"operation": "build"},
            )
        return self._locate(request_version, request_linkage, request_target, allow_system=False)

    def _request(
        self,
        version: Version | str | None,
        linkage: LinkageMode | None,
        target: BuildTarget | str | None,
    ) -> tuple[Version | None, LinkageMode, BuildTarget]:
        if isinstance(version, str):
            version = Version.parse(version)
        if isinstance(target, str):
            target = BuildTarget(host=self.settings.target.host, target=target)
        return (
            version or self.settings.version,
            linkage or self.settings.linkage,
            target or self.settings.target,
        )

    def _current(self, linkage: LinkageMode, target: BuildTarget) -> RubyInstallation:
        if not target.is_native:
            raise ValidationError(
                "A Ruby version is required for cross builds.",
                hint="The ruby on PATH runs on the host; set RUBYLINK_RUBY_VERSION to build for the target.",
                context={"operation": "resolve", "target": str(target)},
            )
        found = current_ruby(self.runner)
        config = parse_rbconfig(found.config_path)
        ensure_matches(config, None, linkage, origin="current")
        version_text = config.version_string()
        if version_text is None:
            raise ConfigUnreadableError(
                "The current Ruby's configuration does not state its version.",
                hint="Set RUBYLINK_RUBY_VERSION to choose a version explicitly.",
                context={"operation": "resolve", "path": str(found.config_path)},
            )
        installation = RubyInstallation(
            version=Version.parse(version_text),
            linkage=linkage,
            root=found.root,
            config_path=found.config_path,
            origin="system",
        )
        self._log(installation, "Using the ruby on PATH.")
        return installation

    def _locate(
        self,
        version: Version,
        linkage: LinkageMode,
        target: BuildTarget,
        *,
        allow_system: bool,
    ) -> RubyInstallation:
        key = CacheKey.for_build(version, linkage, target)
        entry = self.store.lookup(key)
        if entry is not None:
            config_path = find_rbconfig(entry.path / "install")
            if config_path is not None:
                installation = RubyInstallation(
                    version=version,
                    linkage=linkage,
                    root=entry.path / "install",
                    config_path=config_path,
                    origin="cache",
                )
                self._log(installation, "Build cache hit.")
                return installation

        if allow_system and target.is_native:
            discovery = self.discovery or select_discovery(target, logger=self.logger)
            found = discovery.discover(version, linkage, target)
            if found is not None:
                installation = RubyInstallation(
                    version=version,
                    linkage=linkage,
                    root=install_root_for(found),
                    config_path=found,
                    origin="system",
                )
                self._log(installation, "Using system Ruby.")
                return installation

        acquirer = self.acquirer or make_acquirer(
            self.settings, store=self.store, logger=self.logger
        )
        if self.settings.prebuilt_url is not None:
            return self._prebuilt(acquirer, version, linkage, target)

        source = acquirer.acquire(version, ArtifactKind.SOURCE)
        builder = self.builder or select_builder(target, self.runner, logger=self.logger)
        return builder.build(
            BuildSpec(
                version=version,
                source=source,
                linkage=linkage,
                target=target,
                output_dir=self.store.entry_dir(key),
                jobs=self.settings.jobs,
                configure_args=self.settings.configure_args,
                env=self.settings.build_env,
            )
        )

    def _prebuilt(
        self,
        acquirer: SourceAcquirer,
        version: Version,
        linkage: LinkageMode,
        target: BuildTarget,
    ) -> RubyInstallation:
        root = acquirer.acquire(version, ArtifactKind.PREBUILT, linkage=linkage, target=target)
        config_path = find_rbconfig(root)
        if config_path is None:
            raise ConfigUnreadableError(
                "Prebuilt archive does not contain rbconfig.rb.",
                hint="Check RUBYLINK_PREBUILT_URL points at a Ruby install tree archive.",
                context={"operation": "acquire", "path": str(root)},
            )
        ensure_matches(parse_rbconfig(config_path), version, linkage, origin="prebuilt")
        installation = RubyInstallation(
            version=version,
            linkage=linkage,
            root=root,
            config_path=config_path,
            origin="prebuilt",
        )
        self._log(installation, "Using prebuilt Ruby.")
        return installation

    def _log(self, installation: RubyInstallation, message: str, **extra: str) -> None:
        self.logger.log(
            operation="resolve",
            stage=installation.origin,
            version=str(installation.version),
            linkage=installation.linkage.value,
            message=message,
            extra={"root": str(installation.root), **extra},
        )


def _lib_dir(installation: RubyInstallation, config: RubyConfig, overrides: dict[str, str]) -> Path:
    """The configured ``libdir`` when it exists inside the installation, else ``<root>/lib``."""
    libdir = config.expanded("libdir", overrides=overrides)
    if libdir:
        candidate = Path(libdir)
        if candidate.is_dir() and candidate.is_relative_to(installation.root):
            return candidate
    return installation.lib_dir


def resolve(
    version: Version | str | None = None,
    linkage: LinkageMode | None = None,
    target: BuildTarget | str | None = None,
    *,
    settings: Settings | None = None,
    cache_dir: Path | None = None,
) -> Resolution:
    """Resolve with settings from the environment."""
    resolved = settings or Settings.from_env()
    if cache_dir is not None:
        resolved = replace(resolved, cache_dir=cache_dir)
    return RubyResolver(settings=resolved).resolve(version, linkage, target)


__all__ = ["Resolution", "RubyResolver", "resolve"]
