"""Derivation and rendering of linker directives from a parsed configuration."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import cbor2

from rubylink.errors import MissingLibraryNameError
from rubylink.models import LinkageMode
from rubylink.rbconfig import RubyConfig

LibraryKind = Literal["static", "dylib", "framework"]

_LIBRARY_SUFFIXES = (".a", ".lib", ".so", ".dylib", ".dll")


@dataclass(frozen=True, slots=True)
class LinkLibrary:
    name: str
    kind: LibraryKind


@dataclass(frozen=True, slots=True)
class LinkDirectives:
    linkage: LinkageMode
    search_paths: tuple[str, ...]
    libraries: tuple[LinkLibrary, ...]
    system_libraries: tuple[LinkLibrary, ...] = ()
    include_dirs: tuple[str, ...] = ()
    extra_link_args: tuple[str, ...] = ()
    framework_paths: tuple[str, ...] = ()
    schema_version: int = 1

    def cargo_directives(self) -> list[str]:
        lines = [f"cargo:rustc-link-search=native={path}" for path in self.search_paths]
        lines.extend(f"cargo:rustc-link-search=framework={path}" for path in self.framework_paths)
        for library in (*self.libraries, *self.system_libraries):
            lines.append(f"cargo:rustc-link-lib={library.kind}={library.name}")
        return lines

    def linker_args(self) -> list[str]:
        args = [f"-L{path}" for path in self.search_paths]
        args.extend(f"-F{path}" for path in self.framework_paths)
        for library in (*self.libraries, *self.system_libraries):
            if library.kind == "framework":
                args.extend(["-framework", library.name])
            else:
                args.append(f"-l{library.name}")
        args.extend(self.extra_link_args)
        return args

    def extension_kwargs(self) -> dict[str, list[str]]:
        """Keyword arguments for :class:`setuptools.Extension`."""
        frameworks = [f"-F{path}" for path in self.framework_paths]
        for library in self.system_libraries:
            if library.kind == "framework":
                frameworks.extend(["-framework", library.name])
        return {
            "include_dirs": list(self.include_dirs),
            "library_dirs": list(self.search_paths),
            "libraries": [
                library.name
                for library in (*self.libraries, *self.system_libraries)
                if library.kind != "framework"
            ],
            "extra_link_args": [*frameworks, *self.extra_link_args],
        }

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def _payload(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "linkage": self.linkage.value,
            "search_paths": list(self.search_paths),
            "libraries": [_library_payload(library) for library in self.libraries],
            "system_libraries": [_library_payload(library) for library in self.system_libraries],
            "include_dirs": list(self.include_dirs),
            "extra_link_args": list(self.extra_link_args),
            "framework_paths": list(self.framework_paths),
        }


def emit_link_directives(
    config: RubyConfig,
    linkage: LinkageMode,
    *,
    lib_dir: str | Path | None = None,
    extra_lib_dirs: Iterable[str] = (),
    overrides: Mapping[str, str] | None = None,
) -> LinkDirectives:
    msvc = _is_msvc(config)
    library = _ruby_library(config, linkage, msvc=msvc, overrides=overrides)

    search_paths = _OrderedSet()
    own_lib_dir = str(lib_dir) if lib_dir is not None else config.expanded("libdir", overrides=overrides)
    if own_lib_dir:
        search_paths.add(own_lib_dir)

    framework_paths = _OrderedSet()
    arg_key = "LIBRUBYARG_STATIC" if linkage.is_static else "LIBRUBYARG_SHARED"
    for key in ("LDFLAGS", arg_key):
        tokens = (config.expanded(key, "", overrides=overrides) or "").split()
        for token in tokens:
            directory = _search_dir(token)
            if directory is not None:
                search_paths.add(directory)
            framework_dir = _search_dir(token, flag="-F")
            if framework_dir is not None:
                framework_paths.add(framework_dir)
    for extra in extra_lib_dirs:
        if extra:
            search_paths.add(extra)

    system_libraries: _OrderedSet = _OrderedSet()
    extra_link_args: _OrderedSet = _OrderedSet()
    if linkage.is_static:
        main_libs = config.expanded("MAINLIBS", "", overrides=overrides) or ""
        _collect_system_libraries(
            main_libs.split(),
            msvc=msvc,
            libraries=system_libraries,
            search_paths=search_paths,
            framework_paths=framework_paths,
            extra_args=extra_link_args,
        )

    include_dirs = _OrderedSet()
    for key in ("rubyhdrdir", "rubyarchhdrdir"):
        value = config.expanded(key, overrides=overrides)
        if value:
            include_dirs.add(value)

    return LinkDirectives(
        linkage=linkage,
        search_paths=search_paths.items(),
        libraries=(library,),
        system_libraries=system_libraries.items(),
        include_dirs=include_dirs.items(),
        extra_link_args=extra_link_args.items(),
        framework_paths=framework_paths.items(),
    )


def _ruby_library(
    config: RubyConfig,
    linkage: LinkageMode,
    *,
    msvc: bool,
    overrides: Mapping[str, str] | None,
) -> LinkLibrary:
    base = config.expanded("RUBY_SO_NAME", overrides=overrides)
    if not base:
        raise MissingLibraryNameError(
            "Configuration does not name the Ruby library.",
            hint="RUBY_SO_NAME is missing; the configuration dump may be incomplete.",
            context={"operation": "emit_link_directives", "path": config.source, "key": "RUBY_SO_NAME"},
        )
    if not linkage.is_static:
        return LinkLibrary(name=_library_name(base, msvc=msvc), kind="dylib")

    archive = config.expanded("LIBRUBY_A", overrides=overrides)
    if not archive:
        raise MissingLibraryNameError(
            "Configuration does not name a static Ruby archive.",
            hint="LIBRUBY_A is missing; rebuild Ruby with --disable-shared or link dynamically.",
            context={"operation": "emit_link_directives", "path": config.source, "key": "LIBRUBY_A"},
        )
    return LinkLibrary(name=_library_name(archive, msvc=msvc), kind="static")


def _library_name(filename: str, *, msvc: bool) -> str:
    name = Path(filename.strip()).name
    for suffix in _LIBRARY_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    if not msvc and name.startswith("lib") and len(name) > 3:
        name = name[3:]
    return name


def _collect_system_libraries(
    tokens: list[str],
    *,
    msvc: bool,
    libraries: _OrderedSet,
    search_paths: _OrderedSet,
    framework_paths: _OrderedSet,
    extra_args: _OrderedSet,
) -> None:
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if token == "-framework" and index < len(tokens):
            libraries.add(LinkLibrary(name=tokens[index], kind="framework"))
            index += 1
        elif token.startswith("-l") and len(token) > 2:
            libraries.add(LinkLibrary(name=token[2:], kind="dylib"))
        elif token.startswith("-L"):
            directory = _search_dir(token)
            if directory is not None:
                search_paths.add(directory)
        elif token.startswith("-F"):
            directory = _search_dir(token, flag="-F")
            if directory is not None:
                framework_paths.add(directory)
        elif msvc and token.lower().endswith(".lib"):
            libraries.add(LinkLibrary(name=token[:-4], kind="dylib"))
        elif token.startswith("-Wl,"):
            continue
        else:
            extra_args.add(token)


def _search_dir(token: str, *, flag: str = "-L") -> str | None:
    # rbconfig carries build-tree relative entries such as ``-L.``.
    if not token.startswith(flag) or len(token) <= len(flag):
        return None
    directory = token[len(flag):]
    if not os.path.isabs(directory):
        return None
    return directory


def _is_msvc(config: RubyConfig) -> bool:
    target = " ".join(config.get(key, "") for key in ("target", "target_os", "arch"))
    return "mswin" in target or "msvc" in target


def _library_payload(library: LinkLibrary) -> dict[str, str]:
    return {"name": library.name, "kind": library.kind}


class _OrderedSet:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: dict[Any, None] = {}

    def add(self, item: Any) -> None:
        self._items.setdefault(item, None)

    def items(self) -> tuple[Any, ...]:
        return tuple(self._items)


__all__ = ["LibraryKind", "LinkDirectives", "LinkLibrary", "emit_link_directives"]
