"""Ruby version parsing and ordering."""

from __future__ import annotations

import re
from dataclasses import dataclass

from rubylink.errors import InvalidVersionError, ValidationError

DEFAULT_SOURCE_URL = "https://cache.ruby-lang.org/pub/ruby/{major}.{minor}/ruby-{version}.tar.bz2"

_COMPONENT = r"(0|[1-9][0-9]*)"
VERSION_PATTERN = re.compile(
    rf"^{_COMPONENT}\.{_COMPONENT}\.{_COMPONENT}(?:-([0-9A-Za-z][0-9A-Za-z.]*))?$"
)


@dataclass(frozen=True, slots=True)
class Version:
    """A ``MAJOR.MINOR.PATCH[-PRE]`` Ruby version.

    Ordering compares the numeric triple first. For an equal triple a
    pre-release sorts before the release; between two pre-releases an ``rc``
    tag sorts after any other tag (``preview2 < rc1``), otherwise tags compare
    as plain strings.
    """

    major: int
    minor: int
    patch: int
    pre: str | None = None

    @classmethod
    def parse(cls, text: str) -> Version:
        match = VERSION_PATTERN.fullmatch(text.strip())
        if match is None:
            raise InvalidVersionError(
                f"Invalid Ruby version {text!r}.",
                hint="Use the form MAJOR.MINOR.PATCH with an optional -PRERELEASE tag.",
                context={"operation": "parse_version", "input": text},
            )
        major, minor, patch, pre = match.groups()
        return cls(int(major), int(minor), int(patch), pre)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre is not None:
            text += f"-{self.pre}"
        return text

    @property
    def release(self) -> Version:
        return Version(self.major, self.minor, self.patch)

    @property
    def is_prerelease(self) -> bool:
        return self.pre is not None

    def archive_name(self) -> str:
        return f"ruby-{self}.tar.bz2"

    def url(self, template: str = DEFAULT_SOURCE_URL, **fields: str) -> str:
        """Substitute ``{major}``, ``{minor}``, ``{patch}``, ``{version}`` and ``fields``."""
        try:
            return template.format(
                major=self.major,
                minor=self.minor,
                patch=self.patch,
                version=str(self),
                **fields,
            )
        except (KeyError, IndexError, ValueError) as exc:
            raise ValidationError(
                f"Archive URL template {template!r} cannot be filled in.",
                hint="Placeholders are {major}, {minor}, {patch}, {version} "
                "and, for prebuilt archives, {target} and {linkage}.",
                context={"template": template, "reason": str(exc)},
            ) from exc

    def _sort_key(self) -> tuple[int, int, int, bool, bool, str]:
        pre = self.pre or ""
        return (
            self.major,
            self.minor,
            self.patch,
            self.pre is None,
            pre.startswith("rc"),
            pre,
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() <= other._sort_key()

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() > other._sort_key()

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._sort_key() >= other._sort_key()


__all__ = ["DEFAULT_SOURCE_URL", "Version"]
