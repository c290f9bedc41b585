"""Archive retrieval by URL."""

from __future__ import annotations

from typing import Protocol

from .http import HttpFetcher, verify_sha256


class Fetcher(Protocol):
    def fetch(self, url: str) -> bytes:
        """Return the archive bytes at ``url``."""


__all__ = ["Fetcher", "HttpFetcher", "verify_sha256"]
