"""Persistence adapters: SQLite document backend and snapshot files."""

from vecsearch.providers.storage.snapshot_file_store import SnapshotFileStore
from vecsearch.providers.storage.sqlite_document_backend import SQLiteDocumentBackend

__all__ = ["SQLiteDocumentBackend", "SnapshotFileStore"]
