"""Policy configuration and enforcement helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from rubylink.errors import PolicyError

NetworkMode = Literal["online", "offline"]


@dataclass(frozen=True, slots=True)
class Policy:
    network_mode: NetworkMode = "online"
    require_integrity: bool = False

    @property
    def download_enabled(self) -> bool:
        return self.network_mode == "online"


def ensure_network_allowed(*, policy: Policy, operation: str) -> None:
    if policy.network_mode == "offline":
        raise PolicyError(
            "Network operations are disabled by policy.",
            hint="Switch policy.network_mode to 'online' or pre-populate the cache.",
            context={"operation": operation},
        )
