"""HTTP/file fetch implementation with optional integrity checks."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

from rubylink.errors import FetchError, NotFoundError
from rubylink.policy import Policy, ensure_network_allowed


@dataclass(slots=True)
class HttpFetcher:
    policy: Policy = field(default_factory=Policy)
    timeout: float | None = None

    def fetch(self, url: str) -> bytes:
        """Fetch ``url`` and return its body, mapping failures to typed errors."""
        ensure_network_allowed(policy=self.policy, operation="fetch")
        try:
            if self.timeout is None:
                response = urlopen(url)  # noqa: S310 - URL comes from a configured template
            else:
                response = urlopen(url, timeout=self.timeout)  # noqa: S310
            with response:
                return response.read()
        except HTTPError as exc:
            if exc.code == 404:
                raise NotFoundError(
                    "No archive is published at the requested URL.",
                    hint="Check that the Ruby version exists on the configured mirror.",
                    context={"operation": "fetch", "url": url, "status": str(exc.code)},
                ) from exc
            raise FetchError(
                "Archive download failed.",
                hint="Retry, or point RUBYLINK_SOURCE_URL at a reachable mirror.",
                context={"operation": "fetch", "url": url, "status": str(exc.code)},
            ) from exc
        except URLError as exc:
            if isinstance(exc.reason, FileNotFoundError):
                raise NotFoundError(
                    "No archive exists at the requested path.",
                    context={"operation": "fetch", "url": url},
                ) from exc
            raise FetchError(
                "Archive download failed.",
                hint="Check network connectivity and the mirror URL.",
                context={"operation": "fetch", "url": url, "reason": str(exc.reason)},
            ) from exc
        except (OSError, ValueError) as exc:
            raise FetchError(
                "Archive download failed.",
                context={"operation": "fetch", "url": url, "reason": str(exc)},
            ) from exc


def verify_sha256(payload: bytes, *, expected: str, url: str) -> None:
    actual = hashlib.sha256(payload).hexdigest()
    if actual != expected.lower():
        raise FetchError(
            "Fetched content hash mismatch.",
            hint="Update the expected hash or source URL to a trusted immutable artifact.",
            context={"operation": "fetch", "url": url, "expected": expected, "actual": actual},
        )
