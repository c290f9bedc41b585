"""Cache key derivation."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any

from rubylink.models import ArtifactKind, BuildTarget, LinkageMode
from rubylink.version import Version

_UNSAFE = re.compile(r"[^0-9A-Za-z._-]+")

BUILD_KIND = "build"


@dataclass(frozen=True, slots=True)
class CacheKey:
    version: Version
    kind: str
    linkage: LinkageMode | None = None
    target: BuildTarget | None = None

    @classmethod
    def for_artifact(
        cls,
        version: Version,
        kind: ArtifactKind,
        *,
        linkage: LinkageMode | None = None,
        target: BuildTarget | None = None,
    ) -> CacheKey:
        """Key for a downloaded archive; prebuilt trees are per linkage and target."""
        return cls(version=version, kind=kind.value, linkage=linkage, target=target)

    @classmethod
    def for_build(cls, version: Version, linkage: LinkageMode, target: BuildTarget) -> CacheKey:
        return cls(version=version, kind=BUILD_KIND, linkage=linkage, target=target)

    def dirname(self) -> str:
        parts = [f"ruby-{self.version}"]
        if self.kind != BUILD_KIND:
            parts.append(self.kind)
        if self.linkage is not None:
            parts.append(self.linkage.value)
        if self.target is not None:
            if not self.target.is_native:
                parts.append(f"{self.target.host}-to")
            parts.append(self.target.target)
        return _UNSAFE.sub("_", "-".join(parts))


def cache_key(key: CacheKey) -> str:
    canonical = json.dumps(_to_payload(key), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_payload(key: CacheKey) -> dict[str, Any]:
    return {
        "version": str(key.version),
        "kind": key.kind,
        "linkage": key.linkage.value if key.linkage is not None else None,
        "host": key.target.host if key.target is not None else None,
        "target": key.target.target if key.target is not None else None,
    }
