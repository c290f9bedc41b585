"""Parsing of Ruby build configuration dumps.

Two line shapes are understood, and may be mixed in one file::

    RUBY_SO_NAME = "ruby"
    CONFIG["RUBY_SO_NAME"] = "ruby"

The second is what ``rbconfig.rb`` contains. Anything else (comments, module
headers, Ruby statements) is skipped. Values that are a single quoted string
are unquoted; other values are kept verbatim. When a key repeats, the last
assignment wins.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from rubylink.errors import ConfigUnreadableError, MalformedConfigError

ASSIGNMENT_PATTERN = re.compile(
    r"""^\s*
    (?:CONFIG\[\s*(?P<quote>["'])(?P<config_key>[^"']+)(?P=quote)\s*\]
      |(?P<key>[A-Za-z_][A-Za-z0-9_]*))
    \s*=(?![=~])\s*
    (?P<value>.*?)\s*$""",
    re.VERBOSE,
)

REFERENCE_PATTERN = re.compile(r"\$\$|\$\(([^()]+)\)|\$\{([^{}]+)\}")

_DOUBLE_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"', "'": "'", "e": "\x1b", "s": " "}


@dataclass(frozen=True, slots=True, eq=False)
class RubyConfig(Mapping[str, str]):
    values: Mapping[str, str] = field(default_factory=dict)
    source: str = "<memory>"

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, key: str) -> str:
        return self.values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RubyConfig):
            return dict(self.values) == dict(other.values)
        if isinstance(other, Mapping):
            return dict(self.values) == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def expand(self, value: str, overrides: Mapping[str, str] | None = None) -> str:
        """Substitute ``$(name)`` and ``${name}`` references like ``RbConfig.expand``.

        Unknown names are left in place, ``$$`` becomes ``$``, and a name that
        refers back to itself is left unexpanded.
        """
        lookup = dict(self.values)
        if overrides:
            lookup.update(overrides)
        return _expand(value, lookup, ())

    def expanded(
        self,
        key: str,
        default: str | None = None,
        *,
        overrides: Mapping[str, str] | None = None,
    ) -> str | None:
        if overrides and key in overrides:
            return self.expand(overrides[key], overrides)
        if key not in self.values:
            return default
        return self.expand(self.values[key], overrides)

    def version_string(self) -> str | None:
        program_version = self.values.get("RUBY_PROGRAM_VERSION")
        if program_version:
            return program_version
        parts = [self.values.get(name) for name in ("MAJOR", "MINOR", "TEENY")]
        if all(parts):
            return ".".join(str(part) for part in parts)
        return None

    @property
    def shared_enabled(self) -> bool:
        return self.values.get("ENABLE_SHARED", "no") == "yes"


def _expand(value: str, lookup: Mapping[str, str], active: tuple[str, ...]) -> str:
    def replace(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        if name is None:
            return "$"
        if name in active or name not in lookup:
            return match.group(0)
        return _expand(lookup[name], lookup, (*active, name))

    return REFERENCE_PATTERN.sub(replace, value)


def parse_rbconfig(path: str | Path) -> RubyConfig:
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigUnreadableError(
            "Configuration dump could not be read.",
            hint="Rebuild Ruby or check file permissions.",
            context={"operation": "parse_rbconfig", "path": str(config_path), "reason": str(exc)},
        ) from exc
    return parse_rbconfig_text(text, source=str(config_path))


def parse_rbconfig_text(text: str, *, source: str = "<memory>") -> RubyConfig:
    if not text.strip():
        raise ConfigUnreadableError(
            "Configuration dump is empty.",
            hint="The Ruby build may not have completed; clear the cache entry and rebuild.",
            context={"operation": "parse_rbconfig", "path": source},
        )
    values: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        match = ASSIGNMENT_PATTERN.match(line)
        if match is None:
            continue
        key = match.group("config_key") or match.group("key")
        values[key] = _parse_value(match.group("value"), line=line, lineno=lineno, source=source)
    return RubyConfig(values=values, source=source)


def _parse_value(raw: str, *, line: str, lineno: int, source: str) -> str:
    if not raw or raw[0] not in ("'", '"'):
        if not _quotes_balanced(raw):
            raise _malformed(line, lineno, source)
        return raw
    quote = raw[0]
    chars: list[str] = []
    index = 1
    while index < len(raw):
        char = raw[index]
        if char == "\\" and index + 1 < len(raw):
            escaped = raw[index + 1]
            if quote == '"':
                chars.append(_DOUBLE_ESCAPES.get(escaped, escaped))
            elif escaped in ("\\", "'"):
                chars.append(escaped)
            else:
                chars.append(char + escaped)
            index += 2
            continue
        if char == quote:
            if index == len(raw) - 1:
                return "".join(chars)
            # A closed string followed by more Ruby code is an expression.
            if not _quotes_balanced(raw):
                raise _malformed(line, lineno, source)
            return raw
        chars.append(char)
        index += 1
    raise _malformed(line, lineno, source)


def _quotes_balanced(raw: str) -> bool:
    """True when every quote opened in ``raw`` is closed again."""
    open_quote: str | None = None
    index = 0
    while index < len(raw):
        char = raw[index]
        if char == "\\":
            index += 2
            continue
        if open_quote is None:
            if char in ("'", '"'):
                open_quote = char
        elif char == open_quote:
            open_quote = None
        index += 1
    return open_quote is None


def _malformed(line: str, lineno: int, source: str) -> MalformedConfigError:
    return MalformedConfigError(
        "Unbalanced quote in configuration value.",
        hint="The configuration dump is truncated or was edited by hand.",
        context={
            "operation": "parse_rbconfig",
            "path": source,
            "line": str(lineno),
            "text": line.strip(),
        },
    )


__all__ = ["RubyConfig", "parse_rbconfig", "parse_rbconfig_text"]
