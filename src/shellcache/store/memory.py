"""In-process store backed by dictionaries."""

from __future__ import annotations

from typing import Optional

from shellcache.store.base import Store


class MemoryStore(Store):
    """Store whose namespaces are plain dicts.  Nothing survives the process."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, dict[str, dict]] = {}

    def _open_backend(self, namespace: str) -> dict[str, dict]:
        return self._data.setdefault(namespace, {})

    def _read(self, backend: dict[str, dict], key: str) -> Optional[dict]:
        return backend.get(key)

    def _write(self, backend: dict[str, dict], key: str, data: dict) -> None:
        backend[key] = data

    def _keys(self, backend: dict[str, dict]) -> list[str]:
        return list(backend)

    def _namespaces(self) -> set[str]:
        return set(self._data)

    def _delete_backend(self, namespace: str, backend: Optional[dict[str, dict]]) -> bool:
        return self._data.pop(namespace, None) is not None
