"""Cache root layout and the completion-marker protocol.

An entry directory only counts as complete once its marker exists and the
marker's manifest names the expected key. Entries are populated in a private
staging directory, marked there, and published with a single rename, so other
processes see either no entry or a complete one.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path

from rubylink.cache.keys import CacheKey, _to_payload, cache_key
from rubylink.errors import CacheError

MARKER_NAME = ".rubylink-complete"
STAGING_PREFIX = ".staging-"
RETIRED_PREFIX = ".retired-"
PROMOTE_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: CacheKey
    path: Path


class CacheStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def entry_dir(self, key: CacheKey) -> Path:
        return self.root / key.dirname()

    def lookup(self, key: CacheKey) -> CacheEntry | None:
        entry = self.entry_dir(key)
        if not self.is_complete(entry, key):
            return None
        return CacheEntry(key=key, path=entry)

    def is_complete(self, entry: Path, key: CacheKey) -> bool:
        manifest = self._read_manifest(entry / MARKER_NAME)
        if manifest is None:
            return False
        return manifest.get("key") == cache_key(key) and manifest.get("inputs") == _to_payload(key)

    def mark_complete(self, entry: Path, key: CacheKey) -> Path:
        marker_path = entry / MARKER_NAME
        manifest = {
            "key": cache_key(key),
            "inputs": _to_payload(key),
        }
        temp_path = entry / f"{MARKER_NAME}.{os.getpid()}.tmp"
        temp_path.write_text(
            json.dumps(manifest, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        os.replace(temp_path, marker_path)
        return marker_path

    def staging_dir(self, key: CacheKey) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{key.dirname()}-", dir=self.root))

    def promote(self, staging: Path, key: CacheKey) -> Path:
        """Publish a staging directory that already carries its marker.

        Returns the entry directory. A complete entry published by another
        process wins and ``staging`` is discarded. An incomplete leftover is
        renamed aside before it is removed, never deleted where it stands.
        """
        entry = self.entry_dir(key)
        for _attempt in range(PROMOTE_ATTEMPTS):
            if self.is_complete(entry, key):
                shutil.rmtree(staging, ignore_errors=True)
                return entry
            try:
                os.rename(staging, entry)
            except OSError:
                self._retire(entry, key)
                continue
            return entry
        shutil.rmtree(staging, ignore_errors=True)
        raise CacheError(
            "Cache entry could not be published.",
            hint="Another process keeps replacing the entry; check the cache directory for stray files.",
            context={"operation": "promote", "path": str(entry)},
        )

    def _retire(self, entry: Path, key: CacheKey) -> None:
        if self.is_complete(entry, key):
            return
        retired = self.root / f"{RETIRED_PREFIX}{key.dirname()}-{uuid.uuid4().hex}"
        try:
            os.rename(entry, retired)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise CacheError(
                "Incomplete cache entry could not be moved aside.",
                hint="Remove the entry by hand and retry.",
                context={"operation": "promote", "path": str(entry), "reason": str(exc)},
            ) from exc
        shutil.rmtree(retired, ignore_errors=True)

    def _read_manifest(self, path: Path) -> dict[str, object] | None:
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(parsed, dict):
            return None
        return parsed
