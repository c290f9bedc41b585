"""Archive extraction into a destination directory."""

from __future__ import annotations

import io
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from rubylink.errors import ArchiveError, ToolchainError
from rubylink.process import Runner, SubprocessRunner, run_step


class Extractor(Protocol):
    def extract(self, payload: bytes, destination: Path) -> None:
        """Unpack ``payload`` into ``destination``."""


@dataclass(slots=True)
class TarfileExtractor:
    """In-process extraction of ``.tar``, ``.tar.gz``, ``.tar.bz2`` and ``.tar.xz``."""

    def extract(self, payload: bytes, destination: Path) -> None:
        destination.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:*") as archive:
                members = archive.getmembers()
                for member in members:
                    _check_member(member)
                archive.extractall(destination, members=members, filter="data")
        except ArchiveError:
            raise
        except (tarfile.TarError, EOFError, OSError, ValueError) as exc:
            raise ArchiveError(
                "Archive could not be extracted.",
                hint="The download may be truncated or not a tar archive; clear the cache entry.",
                context={
                    "operation": "extract",
                    "destination": str(destination),
                    "reason": str(exc),
                },
            ) from exc


@dataclass(slots=True)
class CommandExtractor:
    """Extraction through an external ``tar`` binary."""

    runner: Runner = field(default_factory=SubprocessRunner)
    tool: str = "tar"

    def extract(self, payload: bytes, destination: Path) -> None:
        destination.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="rubylink-archive-") as scratch:
            archive_path = Path(scratch) / "archive"
            archive_path.write_bytes(payload)
            try:
                run_step(
                    self.runner,
                    (self.tool, "-xf", str(archive_path), "-C", str(destination)),
                    cwd=destination,
                    operation="extract",
                )
            except ToolchainError as exc:
                raise ArchiveError(
                    "Archive could not be extracted.",
                    hint="The download may be truncated or in an unsupported format.",
                    context={
                        "operation": "extract",
                        "destination": str(destination),
                        "stderr": exc.stderr[-2000:],
                    },
                ) from exc


def _check_member(member: tarfile.TarInfo) -> None:
    path = PurePosixPath(member.name)
    if path.is_absolute() or ".." in path.parts:
        raise ArchiveError(
            "Archive member escapes the destination directory.",
            context={"operation": "extract", "member": member.name},
        )


__all__ = ["CommandExtractor", "Extractor", "TarfileExtractor"]
