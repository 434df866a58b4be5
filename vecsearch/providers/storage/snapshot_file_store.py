"""JSON files holding serialised index snapshots.

A snapshot file records everything needed to restore the ANN structure
without recomputing it, except the vectors, which are read back from the
document store::

    {
      "format": 1,
      "dimension": 384,
      "metric": "cosine",
      "structure_kind": "hnsw",
      "structure_params": {"m": 16, ...},
      "version": 12,
      "built_from": 5000,
      "state": {...},
      "nodes": [{"id": "a#0", "level": 2, "neighbors": [[...], ...]}, ...]
    }

Writes go to a temporary file in the same directory and are moved into
place with ``os.replace`` so a crash never leaves a half-written file.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from vecsearch.utils.errors import IndexBuildError, StorageError

logger = structlog.get_logger(logger_name=__name__)

SNAPSHOT_FORMAT = 1

_REQUIRED_KEYS = ("dimension", "metric", "structure_kind", "structure_params", "version", "nodes")


class SnapshotFileStore:
    """Atomic reader/writer for snapshot JSON files."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def write(self, payload: dict[str, Any]) -> Path:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        document = {"format": SNAPSHOT_FORMAT, **payload}
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, separators=(",", ":"))
            os.replace(tmp_name, self._path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Cannot write snapshot {self._path}: {exc}", "snapshot") from exc
        logger.info("snapshot_written", path=str(self._path), nodes=len(payload.get("nodes", [])))
        return self._path

    def read(self) -> dict[str, Any]:
        try:
            with open(self._path, encoding="utf-8") as f:
                payload = json.load(f)
        except FileNotFoundError as exc:
            raise IndexBuildError(f"Snapshot file not found: {self._path}", "snapshot") from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise IndexBuildError(f"Unreadable snapshot {self._path}: {exc}", "snapshot") from exc

        if not isinstance(payload, dict):
            raise IndexBuildError(f"Snapshot {self._path} is not a JSON object", "snapshot")
        if payload.get("format") != SNAPSHOT_FORMAT:
            raise IndexBuildError(
                f"Unsupported snapshot format {payload.get('format')!r} in {self._path}",
                "snapshot",
            )
        missing = [key for key in _REQUIRED_KEYS if key not in payload]
        if missing:
            raise IndexBuildError(
                f"Snapshot {self._path} is missing keys: {', '.join(missing)}", "snapshot"
            )
        return payload
