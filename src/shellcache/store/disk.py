"""Disk-backed store built on :mod:`diskcache`.

Each namespace is its own :class:`diskcache.Cache` directory under the
store root, so listing namespaces is a directory listing and deleting one
is a single ``rmtree``.  Entries never expire on their own: a namespace
lives exactly as long as its generation.
"""

from __future__ import annotations

import shutil
import sqlite3
from pathlib import Path
from typing import Optional

import diskcache

from shellcache.store.base import Store


class DiskStore(Store):
    """Persistent store with one :class:`diskcache.Cache` per namespace.

    Args:
        directory: Root directory for the store.  Created if missing.

    Example::

        store = DiskStore(get_cache_dir() / "store")
        handle = await store.open("shellcache-v13")
        await store.put(handle, "/app.js", response)
    """

    offload = True
    errors = (OSError, sqlite3.Error, diskcache.Timeout)

    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self._root = Path(directory)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._root

    def _open_backend(self, namespace: str) -> diskcache.Cache:
        return diskcache.Cache(str(self._root / namespace))

    def _read(self, backend: diskcache.Cache, key: str) -> Optional[dict]:
        return backend.get(key)

    def _write(self, backend: diskcache.Cache, key: str, data: dict) -> None:
        backend.set(key, data)

    def _keys(self, backend: diskcache.Cache) -> list[str]:
        return list(backend.iterkeys())

    def _namespaces(self) -> set[str]:
        if not self._root.is_dir():
            return set()
        return {p.name for p in self._root.iterdir() if p.is_dir()}

    def _delete_backend(self, namespace: str, backend: Optional[diskcache.Cache]) -> bool:
        if backend is not None:
            backend.close()
        path = self._root / namespace
        if not path.is_dir():
            return False
        shutil.rmtree(path)
        return True

    def _close_backend(self, backend: diskcache.Cache) -> None:
        backend.close()
