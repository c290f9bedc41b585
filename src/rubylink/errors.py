"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across the resolver and CLI."""

    VALIDATION = "E_VALIDATION"
    POLICY = "E_POLICY"
    INVALID_VERSION = "E_INVALID_VERSION"
    FETCH = "E_FETCH"
    NOT_FOUND = "E_NOT_FOUND"
    ARCHIVE = "E_ARCHIVE"
    SOURCE_UNAVAILABLE = "E_SOURCE_UNAVAILABLE"
    TOOLCHAIN = "E_TOOLCHAIN"
    MALFORMED_CONFIG = "E_MALFORMED_CONFIG"
    CONFIG_UNREADABLE = "E_CONFIG_UNREADABLE"
    MISSING_LIBRARY_NAME = "E_MISSING_LIBRARY_NAME"
    INSTALLATION_MISMATCH = "E_INSTALLATION_MISMATCH"
    CACHE = "E_CACHE"


class RubyLinkError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class PolicyError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.POLICY, hint=hint, context=context)


class InvalidVersionError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.INVALID_VERSION, hint=hint, context=context)


class FetchError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
        code: ErrorCode = ErrorCode.FETCH,
    ) -> None:
        super().__init__(message, code=code, hint=hint, context=context)


class NotFoundError(FetchError):
    """No archive is published for the requested version."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, hint=hint, context=context, code=ErrorCode.NOT_FOUND)


class ArchiveError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.ARCHIVE, hint=hint, context=context)


class SourceUnavailableError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.SOURCE_UNAVAILABLE, hint=hint, context=context)


class ToolchainError(RubyLinkError):
    """An external toolchain step failed or no toolchain could be found.

    ``command``, ``returncode`` and ``stderr`` are kept in full on the
    instance; the rendered context truncates stderr to keep messages readable.
    """

    command: tuple[str, ...]
    returncode: int | None
    stderr: str

    def __init__(
        self,
        message: str,
        *,
        command: tuple[str, ...] = (),
        returncode: int | None = None,
        stderr: str = "",
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = dict(context or {})
        if command:
            merged.setdefault("command", " ".join(command))
        if returncode is not None:
            merged.setdefault("returncode", str(returncode))
        if stderr:
            merged.setdefault("stderr", stderr[-2000:])
        super().__init__(message, code=ErrorCode.TOOLCHAIN, hint=hint, context=merged)
        self.command = tuple(command)
        self.returncode = returncode
        self.stderr = stderr


class MalformedConfigError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.MALFORMED_CONFIG, hint=hint, context=context)


class ConfigUnreadableError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONFIG_UNREADABLE, hint=hint, context=context)


class MissingLibraryNameError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.MISSING_LIBRARY_NAME,
            hint=hint,
            context=context,
        )


class InstallationMismatchError(RubyLinkError):
    """An installation's configuration disagrees with the requested version or linkage."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.INSTALLATION_MISMATCH,
            hint=hint,
            context=context,
        )


class CacheError(RubyLinkError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CACHE, hint=hint, context=context)


__all__ = [
    "ArchiveError",
    "CacheError",
    "ConfigUnreadableError",
    "ErrorCode",
    "FetchError",
    "InstallationMismatchError",
    "InvalidVersionError",
    "MalformedConfigError",
    "MissingLibraryNameError",
    "NotFoundError",
    "PolicyError",
    "RubyLinkError",
    "SourceUnavailableError",
    "ToolchainError",
    "ValidationError",
]
