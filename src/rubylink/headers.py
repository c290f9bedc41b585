"""Ruby C header enumeration for binding generators such as bindgen."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path

from rubylink.errors import ConfigUnreadableError
from rubylink.rbconfig import RubyConfig


def header_dir(config: RubyConfig, key: str, overrides: Mapping[str, str] | None = None) -> Path:
    value = config.expanded(key, overrides=overrides)
    if not value:
        raise ConfigUnreadableError(
            f"Configuration does not name {key}.",
            hint="The installation may lack development headers.",
            context={"operation": "headers", "path": config.source, "key": key},
        )
    directory = Path(value)
    if not directory.is_dir():
        raise ConfigUnreadableError(
            "Ruby header directory does not exist.",
            hint="Install the Ruby development files.",
            context={"operation": "headers", "path": str(directory), "key": key},
        )
    return directory


def ruby_headers(config: RubyConfig, overrides: Mapping[str, str] | None = None) -> list[Path]:
    """Every ``.h`` file under ``rubyhdrdir`` and ``rubyarchhdrdir``, sorted."""
    found: set[Path] = set()
    for key in ("rubyhdrdir", "rubyarchhdrdir"):
        if key in config:
            found.update(header_dir(config, key, overrides).rglob("*.h"))
    return sorted(path for path in found if path.is_file())


def wrapper_header(
    config: RubyConfig,
    overrides: Mapping[str, str] | None = None,
    *,
    keep: Callable[[Path], bool] | None = None,
) -> str:
    """``#include`` lines for the headers under ``rubyhdrdir``.

    Headers below ``rubyarchhdrdir`` are left out unless ``keep`` is given, in
    which case ``keep`` alone decides. Including both sets tends to produce
    redefinition errors in generated bindings.
    """
    root = header_dir(config, "rubyhdrdir", overrides)
    if keep is None:
        arch = config.expanded("rubyarchhdrdir", overrides=overrides)
        keep = _outside(Path(arch) if arch else None)
    lines = [
        f"#include <{path.relative_to(root).as_posix()}>\n"
        for path in sorted(root.rglob("*.h"))
        if path.is_file() and keep(path)
    ]
    return "".join(lines)


def _outside(directory: Path | None) -> Callable[[Path], bool]:
    def check(path: Path) -> bool:
        return directory is None or not path.is_relative_to(directory)

    return check


__all__ = ["header_dir", "ruby_headers", "wrapper_header"]
