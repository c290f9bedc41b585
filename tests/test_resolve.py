from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from rubylink.acquire import DownloadingSourceAcquirer
from rubylink.builders import BuildSpec, UnixBuilder
from rubylink.cache import CacheKey, CacheStore
from rubylink.config import Settings
from rubylink.discovery import CURRENT_RUBY_SCRIPT, UnixDiscovery
from rubylink.errors import (
    InstallationMismatchError,
    MissingLibraryNameError,
    SourceUnavailableError,
    ValidationError,
)
from rubylink.link import LinkLibrary
from rubylink.models import ArtifactKind, BuildTarget, LinkageMode, RubyInstallation
from rubylink.policy import Policy
from rubylink.resolve import RubyResolver
from rubylink.version import Version

VERSION = Version.parse("2.6.0")


class ExplodingAcquirer:
    def acquire(
        self,
        version: Version,
        kind: ArtifactKind,
        *,
        linkage: LinkageMode | None = None,
        target: BuildTarget | None = None,
    ) -> Path:
        raise AssertionError("acquirer must not be called")


class ExplodingBuilder:
    def build(self, spec: BuildSpec) -> RubyInstallation:
        raise AssertionError("builder must not be called")


def test_cache_hit_short_circuits_acquire_and_build(settings: Settings, install_tree) -> None:
    store = CacheStore(settings.cache_dir)
    key = CacheKey.for_build(VERSION, LinkageMode.SHARED, settings.target)
    entry = store.entry_dir(key)
    install_tree(entry / "install")
    store.mark_complete(entry, key)
    resolver = RubyResolver(settings=settings, acquirer=ExplodingAcquirer(), builder=ExplodingBuilder())

    resolution = resolver.resolve("2.6.0", LinkageMode.SHARED)

    assert resolution.origin == "cache"
    assert resolution.directives.search_paths == (str(entry / "install" / "lib"),)
    assert resolution.directives.libraries == (LinkLibrary(name="ruby", kind="dylib"),)
    assert resolution.directives.include_dirs[0] == str(entry / "install" / "include" / "ruby-2.6.0")


def test_end_to_end_shared_build_from_empty_cache(
    settings: Settings, fake_fetcher, fake_runner, source_tarball: bytes
) -> None:
    fake_fetcher.default = source_tarball
    store = CacheStore(settings.cache_dir)
    resolver = RubyResolver(
        settings=settings,
        acquirer=DownloadingSourceAcquirer(store=store, fetcher=fake_fetcher),
        builder=UnixBuilder(runner=fake_runner),
    )

    resolution = resolver.resolve()

    assert fake_fetcher.urls == ["https://cache.ruby-lang.org/pub/ruby/2.6/ruby-2.6.0.tar.bz2"]
    configure = fake_runner.commands[0]
    assert "--enable-shared" in configure
    assert fake_runner.commands[1] == ("make", "-j2")
    assert resolution.origin == "build"
    install_root = store.entry_dir(CacheKey.for_build(VERSION, LinkageMode.SHARED, settings.target)) / "install"
    assert resolution.installation.root == install_root
    assert resolution.directives.search_paths == (str(install_root / "lib"),)
    assert resolution.directives.libraries == (LinkLibrary(name="ruby", kind="dylib"),)
    assert resolution.directives.system_libraries == ()

    again = RubyResolver(
        settings=settings,
        acquirer=ExplodingAcquirer(),
        builder=ExplodingBuilder(),
    ).resolve()
    assert again.origin == "cache"
    assert again.directives == resolution.directives


def test_static_resolution_from_cache_includes_system_libraries(settings: Settings, install_tree) -> None:
    static = replace(settings, linkage=LinkageMode.STATIC)
    store = CacheStore(static.cache_dir)
    key = CacheKey.for_build(VERSION, LinkageMode.STATIC, static.target)
    install_tree(store.entry_dir(key) / "install")
    store.mark_complete(store.entry_dir(key), key)

    resolution = RubyResolver(settings=static, acquirer=ExplodingAcquirer(), builder=ExplodingBuilder()).resolve()

    assert resolution.directives.libraries == (LinkLibrary(name="ruby-static", kind="static"),)
    assert "pthread" in [library.name for library in resolution.directives.system_libraries]


def test_system_ruby_is_used_before_building(settings: Settings, tmp_path: Path, install_tree) -> None:
    config_path = install_tree(tmp_path / "rbenv" / "2.6.0")
    resolver = RubyResolver(
        settings=replace(settings, use_system_ruby=True),
        acquirer=ExplodingAcquirer(),
        builder=ExplodingBuilder(),
        discovery=UnixDiscovery(roots=[str(tmp_path / "rbenv" / "{version}")]),
    )

    resolution = resolver.resolve()

    assert resolution.origin == "system"
    assert resolution.installation.config_path == config_path
    assert resolution.installation.root == tmp_path / "rbenv" / "2.6.0"
    assert resolution.directives.search_paths == (str(tmp_path / "rbenv" / "2.6.0" / "lib"),)


def test_system_ruby_disabled_skips_discovery(settings: Settings, tmp_path: Path, install_tree) -> None:
    install_tree(tmp_path / "rbenv" / "2.6.0")
    offline = replace(settings, policy=Policy(network_mode="offline"))
    resolver = RubyResolver(
        settings=offline,
        discovery=UnixDiscovery(roots=[str(tmp_path / "rbenv" / "{version}")]),
    )

    with pytest.raises(SourceUnavailableError):
        resolver.resolve()


def test_prebuilt_archive_skips_build(settings: Settings, fake_fetcher, make_tarball, sample_rbconfig: str) -> None:
    fake_fetcher.default = make_tarball(
        {"ruby-2.6.0/lib/ruby/2.6.0/x86_64-linux/rbconfig.rb": sample_rbconfig.encode("utf-8")},
        "w:gz",
    )
    prebuilt = replace(settings, prebuilt_url="https://mirror.example/ruby-{version}.tar.gz")
    store = CacheStore(prebuilt.cache_dir)
    resolver = RubyResolver(
        settings=prebuilt,
        acquirer=DownloadingSourceAcquirer(
            store=store, fetcher=fake_fetcher, prebuilt_url=prebuilt.prebuilt_url
        ),
        builder=ExplodingBuilder(),
    )

    resolution = resolver.resolve()

    root = store.entry_dir(CacheKey.for_artifact(
        VERSION, ArtifactKind.PREBUILT, linkage=LinkageMode.SHARED, target=settings.target
    )) / "ruby-2.6.0"
    assert resolution.origin == "prebuilt"
    assert resolution.directives.search_paths == (str(root / "lib"),)


def test_errors_abort_without_partial_output(settings: Settings, install_tree) -> None:
    store = CacheStore(settings.cache_dir)
    key = CacheKey.for_build(VERSION, LinkageMode.SHARED, settings.target)
    install_tree(store.entry_dir(key) / "install", 'CONFIG["MAJOR"] = "2"\n')
    store.mark_complete(store.entry_dir(key), key)

    with pytest.raises(MissingLibraryNameError):
        RubyResolver(settings=settings, acquirer=ExplodingAcquirer(), builder=ExplodingBuilder()).resolve()


def test_every_stage_is_logged(settings: Settings, fake_fetcher, fake_runner, source_tarball: bytes) -> None:
    fake_fetcher.default = source_tarball
    resolver = RubyResolver(settings=settings, runner=fake_runner)
    resolver.acquirer = DownloadingSourceAcquirer(
        store=resolver.store, fetcher=fake_fetcher, logger=resolver.logger
    )

    resolver.resolve()

    assert {"acquire", "build", "resolve"} <= set(resolver.logger.operations())


def _prebuilt_resolver(settings: Settings, fake_fetcher, url: str) -> tuple[RubyResolver, CacheStore]:
    prebuilt = replace(settings, prebuilt_url=url)
    store = CacheStore(prebuilt.cache_dir)
    resolver = RubyResolver(
        settings=prebuilt,
        acquirer=DownloadingSourceAcquirer(store=store, fetcher=fake_fetcher, prebuilt_url=url),
        builder=ExplodingBuilder(),
    )
    return resolver, store


def test_prebuilt_with_wrong_linkage_is_rejected(
    settings: Settings, fake_fetcher, make_tarball, sample_rbconfig: str
) -> None:
    static_only = sample_rbconfig.replace('"ENABLE_SHARED"] = "yes"', '"ENABLE_SHARED"] = "no"')
    fake_fetcher.default = make_tarball(
        {"ruby-2.6.0/lib/ruby/2.6.0/x86_64-linux/rbconfig.rb": static_only.encode("utf-8")},
        "w:gz",
    )
    resolver, _store = _prebuilt_resolver(settings, fake_fetcher, "https://mirror.example/ruby-{version}.tar.gz")

    with pytest.raises(InstallationMismatchError) as excinfo:
        resolver.resolve("2.6.0", LinkageMode.SHARED)

    assert "static-only build for shared linkage" in str(excinfo.value)
    assert excinfo.value.context["origin"] == "prebuilt"


def test_prebuilt_with_wrong_version_is_rejected(
    settings: Settings, fake_fetcher, make_tarball, sample_rbconfig: str
) -> None:
    fake_fetcher.default = make_tarball(
        {"ruby-2.6.0/lib/ruby/2.6.0/x86_64-linux/rbconfig.rb": sample_rbconfig.encode("utf-8")},
        "w:gz",
    )
    resolver, _store = _prebuilt_resolver(settings, fake_fetcher, "https://mirror.example/ruby.tar.gz")

    with pytest.raises(InstallationMismatchError):
        resolver.resolve("2.7.1")


def test_cross_target_prebuilt_uses_its_own_archive_and_entry(
    settings: Settings, fake_fetcher, make_tarball, sample_rbconfig: str
) -> None:
    fake_fetcher.default = make_tarball(
        {"ruby-2.6.0/lib/ruby/2.6.0/x86_64-linux/rbconfig.rb": sample_rbconfig.encode("utf-8")},
        "w:gz",
    )
    resolver, store = _prebuilt_resolver(
        settings, fake_fetcher, "https://mirror.example/{target}/ruby-{version}-{linkage}.tar.gz"
    )

    native = resolver.resolve()
    cross = resolver.resolve(target="aarch64-unknown-linux-gnu")

    assert fake_fetcher.urls == [
        "https://mirror.example/x86_64-unknown-linux-gnu/ruby-2.6.0-shared.tar.gz",
        "https://mirror.example/aarch64-unknown-linux-gnu/ruby-2.6.0-shared.tar.gz",
    ]
    cross_target = BuildTarget(host=settings.target.host, target="aarch64-unknown-linux-gnu")
    cross_key = CacheKey.for_artifact(VERSION, ArtifactKind.PREBUILT, linkage=LinkageMode.SHARED, target=cross_target)
    assert cross.installation.root == store.entry_dir(cross_key) / "ruby-2.6.0"
    assert native.installation.root != cross.installation.root


def test_missing_version_uses_ruby_on_path(settings: Settings, fake_runner, tmp_path: Path, install_tree) -> None:
    root = tmp_path / "usr" / "local"
    config_path = install_tree(root)
    fake_runner.stdout["ruby"] = f"{root}\n{config_path.parent}\n"
    resolver = RubyResolver(
        settings=replace(settings, version=None),
        acquirer=ExplodingAcquirer(),
        builder=ExplodingBuilder(),
        runner=fake_runner,
    )

    resolution = resolver.resolve()

    assert fake_runner.commands == [("ruby", "-e", CURRENT_RUBY_SCRIPT)]
    assert resolution.origin == "system"
    assert resolution.installation.version == VERSION
    assert resolution.installation.config_path == config_path
    assert resolution.directives.search_paths == (str(root / "lib"),)


def test_ruby_on_path_with_wrong_linkage_is_rejected(
    settings: Settings, fake_runner, tmp_path: Path, install_tree
) -> None:
    root = tmp_path / "usr" / "local"
    config_path = install_tree(root)
    fake_runner.stdout["ruby"] = f"{root}\n{config_path.parent}\n"
    resolver = RubyResolver(settings=replace(settings, version=None), runner=fake_runner)

    with pytest.raises(InstallationMismatchError):
        resolver.resolve(linkage=LinkageMode.STATIC)


def test_missing_version_for_cross_target_is_rejected(settings: Settings, fake_runner) -> None:
    resolver = RubyResolver(settings=replace(settings, version=None), runner=fake_runner)

    with pytest.raises(ValidationError):
        resolver.resolve(target="aarch64-unknown-linux-gnu")

    assert fake_runner.calls == []


def test_build_requires_a_version(settings: Settings) -> None:
    resolver = RubyResolver(
        settings=replace(settings, version=None),
        acquirer=ExplodingAcquirer(),
        builder=ExplodingBuilder(),
    )

    with pytest.raises(ValidationError):
        resolver.build()


def _cached_install(settings: Settings, install_tree, text: str | None = None) -> Path:
    store = CacheStore(settings.cache_dir)
    key = CacheKey.for_build(VERSION, LinkageMode.SHARED, settings.target)
    root = store.entry_dir(key) / "install"
    if text is None:
        install_tree(root)
    else:
        install_tree(root, text)
    store.mark_complete(store.entry_dir(key), key)
    return root


def test_configured_lib64_libdir_is_searched(settings: Settings, install_tree, sample_rbconfig: str) -> None:
    lib64 = sample_rbconfig.replace('"$(exec_prefix)/lib"', '"$(exec_prefix)/lib64"')
    root = _cached_install(settings, install_tree, lib64)
    (root / "lib64").mkdir()

    resolution = RubyResolver(settings=settings, acquirer=ExplodingAcquirer(), builder=ExplodingBuilder()).resolve()

    assert resolution.directives.search_paths[0] == str(root / "lib64")


def test_configured_libdir_outside_the_install_falls_back_to_lib(
    settings: Settings, install_tree, sample_rbconfig: str, tmp_path: Path
) -> None:
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    moved = sample_rbconfig.replace('"$(exec_prefix)/lib"', f'"{elsewhere}"')
    root = _cached_install(settings, install_tree, moved)

    resolution = RubyResolver(settings=settings, acquirer=ExplodingAcquirer(), builder=ExplodingBuilder()).resolve()

    assert resolution.directives.search_paths[0] == str(root / "lib")


def test_resolution_lists_headers_and_renders_wrapper(settings: Settings, install_tree) -> None:
    root = _cached_install(settings, install_tree)
    include = root / "include" / "ruby-2.6.0"
    for name in ("ruby.h", "ruby/intern.h", "x86_64-linux/ruby/config.h"):
        (include / name).parent.mkdir(parents=True, exist_ok=True)
        (include / name).write_text("", encoding="utf-8")

    resolution = RubyResolver(settings=settings, acquirer=ExplodingAcquirer(), builder=ExplodingBuilder()).resolve()

    assert set(resolution.headers()) == {
        include / "ruby.h",
        include / "ruby" / "intern.h",
        include / "x86_64-linux" / "ruby" / "config.h",
    }
    assert sorted(resolution.wrapper_header().splitlines()) == [
        "#include <ruby.h>",
        "#include <ruby/intern.h>",
    ]
