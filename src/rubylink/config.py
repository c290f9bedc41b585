"""Settings resolved from the build environment."""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from rubylink.errors import ValidationError
from rubylink.models import BuildTarget, LinkageMode, host_triple
from rubylink.policy import Policy
from rubylink.version import DEFAULT_SOURCE_URL, Version

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"", "0", "false", "no", "off"})


@dataclass(frozen=True, slots=True)
class Settings:
    # None selects the ruby found on PATH.
    version: Version | None = None
    linkage: LinkageMode = LinkageMode.SHARED
    cache_dir: Path = field(default_factory=lambda: default_cache_dir({}))
    target: BuildTarget = field(default_factory=BuildTarget.native)
    policy: Policy = field(default_factory=Policy)
    source_url: str = DEFAULT_SOURCE_URL
    prebuilt_url: str | None = None
    archive_sha256: str | None = None
    jobs: int = 1
    configure_args: tuple[str, ...] = ()
    extra_lib_dirs: tuple[str, ...] = ()
    use_system_ruby: bool = True
    build_env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ

        version_text = env.get("RUBYLINK_RUBY_VERSION")
        version = Version.parse(version_text) if version_text else None
        static = _flag(env, "RUBYLINK_STATIC_RUBY")
        offline = _flag(env, "RUBYLINK_OFFLINE")

        cache_value = env.get("RUBYLINK_CACHE_DIR")
        cache_dir = Path(cache_value).expanduser() if cache_value else default_cache_dir(env)

        host = env.get("HOST") or host_triple()
        target = BuildTarget(host=host, target=env.get("TARGET") or host)

        sha256 = env.get("RUBYLINK_ARCHIVE_SHA256") or None
        if sha256 is not None and not _is_sha256(sha256):
            raise ValidationError(
                "RUBYLINK_ARCHIVE_SHA256 is not a sha256 hex digest.",
                context={"variable": "RUBYLINK_ARCHIVE_SHA256", "value": sha256},
            )

        try:
            configure_args = tuple(shlex.split(env.get("RUBYLINK_CONFIGURE_ARGS", "")))
        except ValueError as exc:
            raise ValidationError(
                "RUBYLINK_CONFIGURE_ARGS could not be split into arguments.",
                hint="Check for unbalanced quotes.",
                context={"variable": "RUBYLINK_CONFIGURE_ARGS", "reason": str(exc)},
            ) from exc

        extra_lib_dirs = tuple(
            part for part in env.get("RUBYLINK_EXTRA_LIB_DIRS", "").split(os.pathsep) if part
        )
        build_env = {name: env[name] for name in ("CC", "CFLAGS") if env.get(name)}

        return cls(
            version=version,
            linkage=LinkageMode.STATIC if static else LinkageMode.SHARED,
            cache_dir=cache_dir,
            target=target,
            policy=Policy(
                network_mode="offline" if offline else "online",
                require_integrity=_flag(env, "RUBYLINK_REQUIRE_SHA256"),
            ),
            source_url=env.get("RUBYLINK_SOURCE_URL") or DEFAULT_SOURCE_URL,
            prebuilt_url=env.get("RUBYLINK_PREBUILT_URL") or None,
            archive_sha256=sha256,
            jobs=_jobs(env.get("RUBYLINK_JOBS")),
            configure_args=configure_args,
            extra_lib_dirs=extra_lib_dirs,
            use_system_ruby=not _flag(env, "RUBYLINK_NO_SYSTEM_RUBY"),
            build_env=build_env,
        )


def default_cache_dir(environ: Mapping[str, str]) -> Path:
    for variable in ("XDG_CACHE_HOME", "LOCALAPPDATA"):
        value = environ.get(variable)
        if value:
            return Path(value) / "rubylink"
    return Path.home() / ".cache" / "rubylink"


def _flag(env: Mapping[str, str], name: str) -> bool:
    value = env.get(name, "").strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValidationError(
        f"{name} must be a boolean flag.",
        hint="Use 1/0, true/false, yes/no or on/off.",
        context={"variable": name, "value": value},
    )


def _jobs(value: str | None) -> int:
    if not value:
        return os.cpu_count() or 1
    try:
        jobs = int(value)
    except ValueError:
        jobs = 0
    if jobs < 1:
        raise ValidationError(
            "RUBYLINK_JOBS must be a positive integer.",
            context={"variable": "RUBYLINK_JOBS", "value": value},
        )
    return jobs


def _is_sha256(value: str) -> bool:
    return len(value) == 64 and all(char in "0123456789abcdefABCDEF" for char in value)


__all__ = ["Settings", "default_cache_dir"]
