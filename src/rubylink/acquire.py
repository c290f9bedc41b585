"""Acquisition of Ruby source and prebuilt archives into the cache."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from rubylink.archive import Extractor, TarfileExtractor
from rubylink.cache import MARKER_NAME, CacheKey, CacheStore
from rubylink.config import Settings
from rubylink.errors import FetchError, PolicyError, RubyLinkError, SourceUnavailableError
from rubylink.fetch import Fetcher, HttpFetcher, verify_sha256
from rubylink.models import ArtifactKind, BuildTarget, LinkageMode
from rubylink.observability import StructuredLogger
from rubylink.policy import Policy
from rubylink.version import DEFAULT_SOURCE_URL, Version


class SourceAcquirer(Protocol):
    def acquire(
        self,
        version: Version,
        kind: ArtifactKind,
        *,
        linkage: LinkageMode | None = None,
        target: BuildTarget | None = None,
    ) -> Path:
        """Return a directory holding the unpacked archive for ``version``.

        ``linkage`` and ``target`` select a prebuilt tree; source archives
        ignore them.
        """


def content_root(entry: Path) -> Path:
    """The archive's single top-level directory, or ``entry`` itself."""
    children = [child for child in entry.iterdir() if child.name != MARKER_NAME]
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return entry


def artifact_key(
    version: Version,
    kind: ArtifactKind,
    linkage: LinkageMode | None,
    target: BuildTarget | None,
) -> CacheKey:
    if kind is ArtifactKind.SOURCE:
        return CacheKey.for_artifact(version, kind)
    return CacheKey.for_artifact(version, kind, linkage=linkage, target=target)


@dataclass(slots=True)
class DownloadingSourceAcquirer:
    store: CacheStore
    fetcher: Fetcher = field(default_factory=HttpFetcher)
    extractor: Extractor = field(default_factory=TarfileExtractor)
    source_url: str = DEFAULT_SOURCE_URL
    prebuilt_url: str | None = None
    sha256: str | None = None
    policy: Policy = field(default_factory=Policy)
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def acquire(
        self,
        version: Version,
        kind: ArtifactKind,
        *,
        linkage: LinkageMode | None = None,
        target: BuildTarget | None = None,
    ) -> Path:
        key = artifact_key(version, kind, linkage, target)
        entry = self.store.lookup(key)
        if entry is not None:
            self._log(version, kind, "Using cached archive.", path=entry.path)
            return content_root(entry.path)

        if self.policy.require_integrity and self.sha256 is None:
            raise PolicyError(
                "Archive downloads require an expected sha256 digest.",
                hint="Set RUBYLINK_ARCHIVE_SHA256 or unset RUBYLINK_REQUIRE_SHA256.",
                context={"operation": "acquire", "version": str(version), "kind": kind.value},
            )
        url = version.url(
            self._template(kind),
            target=target.target if target is not None else "",
            linkage=linkage.value if linkage is not None else "",
        )
        self._log(version, kind, "Fetching archive.", url=url)
        payload = self.fetcher.fetch(url)
        if self.sha256 is not None:
            verify_sha256(payload, expected=self.sha256, url=url)

        staging = self.store.staging_dir(key)
        try:
            self.extractor.extract(payload, staging)
            self.store.mark_complete(staging, key)
            entry_path = self.store.promote(staging, key)
        except RubyLinkError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        self._log(version, kind, "Archive extracted.", path=entry_path)
        return content_root(entry_path)

    def _template(self, kind: ArtifactKind) -> str:
        if kind is ArtifactKind.SOURCE:
            return self.source_url
        if self.prebuilt_url is None:
            raise FetchError(
                "No prebuilt archive location is configured.",
                hint="Set RUBYLINK_PREBUILT_URL or build from source.",
                context={"operation": "acquire", "kind": kind.value},
            )
        return self.prebuilt_url

    def _log(self, version: Version, kind: ArtifactKind, message: str, **extra: object) -> None:
        self.logger.log(
            operation="acquire",
            stage="acquire",
            version=str(version),
            message=message,
            extra={"kind": kind.value, **{name: str(value) for name, value in extra.items()}},
        )


@dataclass(slots=True)
class LocalSourceAcquirer:
    """Cache-only acquisition for offline builds."""

    store: CacheStore
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def acquire(
        self,
        version: Version,
        kind: ArtifactKind,
        *,
        linkage: LinkageMode | None = None,
        target: BuildTarget | None = None,
    ) -> Path:
        key = artifact_key(version, kind, linkage, target)
        entry = self.store.lookup(key)
        if entry is None:
            raise SourceUnavailableError(
                f"Ruby {version} {kind.value} archive is not in the cache and downloads are disabled.",
                hint="Unset RUBYLINK_OFFLINE or pre-populate the cache directory.",
                context={
                    "operation": "acquire",
                    "version": str(version),
                    "kind": kind.value,
                    "path": str(self.store.entry_dir(key)),
                },
            )
        self.logger.log(
            operation="acquire",
            stage="acquire",
            version=str(version),
            message="Using cached archive.",
            extra={"kind": kind.value, "path": str(entry.path)},
        )
        return content_root(entry.path)


def make_acquirer(
    settings: Settings,
    *,
    store: CacheStore | None = None,
    fetcher: Fetcher | None = None,
    extractor: Extractor | None = None,
    logger: StructuredLogger | None = None,
) -> SourceAcquirer:
    cache = store or CacheStore(settings.cache_dir)
    log = logger or StructuredLogger()
    if not settings.policy.download_enabled:
        return LocalSourceAcquirer(store=cache, logger=log)
    return DownloadingSourceAcquirer(
        store=cache,
        fetcher=fetcher or HttpFetcher(policy=settings.policy),
        extractor=extractor or TarfileExtractor(),
        source_url=settings.source_url,
        prebuilt_url=settings.prebuilt_url,
        sha256=settings.archive_sha256,
        policy=settings.policy,
        logger=log,
    )


__all__ = [
    "DownloadingSourceAcquirer",
    "LocalSourceAcquirer",
    "SourceAcquirer",
    "artifact_key",
    "content_root",
    "make_acquirer",
]
