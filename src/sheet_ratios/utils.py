"""Run bookkeeping helpers — input digests and run timestamps."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from functools import partial
from datetime import datetime, timezone
from pathlib import Path

STAMP_FORMAT = "%Y%m%d_%Hh%Mmin%Ss"


def sha256_file(path: Path, chunk_size: int = 1 << 16) -> str:
    """Return the hex SHA-256 digest of the input workbook at *path*."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(partial(fh.read, chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def file_stamp(when: datetime | None = None) -> str:
    """Return an output-name prefix like ``20240102_03h04min05s`` (local time)."""
    return (when or datetime.now()).strftime(STAMP_FORMAT)


@dataclass(frozen=True)
class RunClock:
    """One instant, rendered both for the manifest and for output file names."""

    started: datetime

    @classmethod
    def now(cls) -> RunClock:
        return cls(datetime.now(timezone.utc))

    @property
    def created_at(self) -> str:
        return self.started.isoformat()

    @property
    def stamp(self) -> str:
        return file_stamp(self.started.astimezone())

    @property
    def run_id(self) -> str:
        return self.started.strftime("%Y%m%dT%H%M%S%fZ")
