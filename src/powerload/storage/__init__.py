from __future__ import annotations

from pathlib import Path

from powerload.storage.duckdb_store import Storage


def default_storage() -> Storage:
    return Storage(Path(".powerload/powerload.duckdb"))


__all__ = ["Storage", "default_storage"]
