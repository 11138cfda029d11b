"""Abstract base class for namespaced response stores.

Subclasses implement a handful of synchronous primitives (open a namespace
backend, read, write, list keys, list and delete namespaces).  The public
coroutine API, query-ignoring lookup, handle bookkeeping and error mapping
live here so every backend behaves the same way.

A :class:`NamespaceHandle` returned by :meth:`Store.open` stays bound to the
namespace it was opened for.  Once that namespace is deleted the handle is
marked dead: reads through it miss and writes raise
:class:`~shellcache.exceptions.StoreError`, so a late write can never bring
a superseded generation back.

:meth:`Store.mark_complete` writes the reserved :data:`COMPLETE_KEY` entry.
It is hidden from :meth:`Store.keys` and lookups.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import httpx

from shellcache.exceptions import StoreError
from shellcache.responses import StoredResponse

_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

COMPLETE_KEY = "@complete"
"""Reserved key marking a namespace whose install finished."""


class NamespaceHandle:
    """An open namespace.

    Args:
        name: The namespace name.
        backend: Backend-specific object (a :class:`diskcache.Cache`, a dict, ...).
    """

    def __init__(self, name: str, backend: Any):
        self.name = name
        self.backend = backend
        self.deleted = False

    def __repr__(self) -> str:
        state = " deleted" if self.deleted else ""
        return f"<NamespaceHandle {self.name}{state}>"


class Store(ABC):
    """Namespaced key -> response map.

    Attributes:
        offload: Run backend primitives in a worker thread so blocking I/O
            never stalls the event loop.
        errors: Backend exception types translated into
            :class:`~shellcache.exceptions.StoreError`.
    """

    offload: bool = False
    errors: tuple[type[BaseException], ...] = (OSError,)

    def __init__(self) -> None:
        self._handles: dict[str, NamespaceHandle] = {}

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def open(self, namespace: str, create: bool = True) -> NamespaceHandle:
        """Open *namespace* and return its handle.

        Args:
            namespace: Namespace name (letters, digits, ``.``, ``_``, ``-``).
            create: Create the namespace when it does not exist.  With
                ``False`` a missing namespace raises
                :class:`~shellcache.exceptions.StoreError` instead.
        """
        if not _NAMESPACE_RE.match(namespace):
            raise StoreError(f"Invalid namespace name: {namespace!r}")
        handle = self._handles.get(namespace)
        if handle is None or handle.deleted:
            if not create and namespace not in await self.list_namespaces():
                raise StoreError(f"Namespace '{namespace}' does not exist")
            backend = await self._call(self._open_backend, namespace)
            handle = NamespaceHandle(namespace, backend)
            self._handles[namespace] = handle
        return handle

    async def get(
        self,
        handle: NamespaceHandle,
        key: str,
        ignore_query: bool = False,
    ) -> Optional[httpx.Response]:
        """Look up *key* in the namespace behind *handle*.

        With ``ignore_query`` an exact match is preferred; failing that, the
        key without its query string is tried, then any stored key whose
        query-less form matches.

        Returns:
            A fresh :class:`httpx.Response`, or ``None`` on a miss.
        """
        if handle.deleted or key == COMPLETE_KEY:
            return None
        data = await self._call(self._find, handle.backend, key, ignore_query)
        if data is None:
            return None
        return StoredResponse.model_validate(data).to_response()

    async def put(self, handle: NamespaceHandle, key: str, response: httpx.Response) -> None:
        """Store a snapshot of an already-read *response* under *key*."""
        if handle.deleted:
            raise StoreError(f"Namespace '{handle.name}' has been deleted")
        data = StoredResponse.from_response(key, response).model_dump()
        await self._call(self._write, handle.backend, key, data)

    async def list_namespaces(self) -> set[str]:
        """Return the names of all namespaces currently in the store."""
        return set(await self._call(self._namespaces))

    async def delete_namespace(self, namespace: str) -> bool:
        """Delete *namespace* and every entry in it.

        Returns:
            ``True`` if the namespace existed.
        """
        handle = self._handles.pop(namespace, None)
        backend = None
        if handle is not None:
            handle.deleted = True
            backend = handle.backend
        return bool(await self._call(self._delete_backend, namespace, backend))

    async def keys(self, handle: NamespaceHandle) -> list[str]:
        """Return every key stored in the namespace behind *handle*."""
        if handle.deleted:
            return []
        return [k for k in await self._call(self._keys, handle.backend) if k != COMPLETE_KEY]

    async def mark_complete(self, handle: NamespaceHandle) -> None:
        """Record that every entry of the namespace behind *handle* is written."""
        if handle.deleted:
            raise StoreError(f"Namespace '{handle.name}' has been deleted")
        await self._call(self._write, handle.backend, COMPLETE_KEY, {"complete": True})

    async def is_complete(self, namespace: str) -> bool:
        """Return ``True`` if *namespace* exists and was marked complete."""
        if namespace not in await self.list_namespaces():
            return False
        handle = await self.open(namespace, create=False)
        return await self._call(self._read, handle.backend, COMPLETE_KEY) is not None

    async def close(self) -> None:
        """Release every open namespace backend."""
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            await self._call(self._close_backend, handle.backend)

    # ------------------------------------------------------------------ #
    # Backend primitives
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _open_backend(self, namespace: str) -> Any:
        ...

    @abstractmethod
    def _read(self, backend: Any, key: str) -> Optional[dict]:
        ...

    @abstractmethod
    def _write(self, backend: Any, key: str, data: dict) -> None:
        ...

    @abstractmethod
    def _keys(self, backend: Any) -> list[str]:
        ...

    @abstractmethod
    def _namespaces(self) -> set[str]:
        ...

    @abstractmethod
    def _delete_backend(self, namespace: str, backend: Any) -> bool:
        ...

    def _close_backend(self, backend: Any) -> None:
        """Release *backend*.  Nothing to do by default."""

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _find(self, backend: Any, key: str, ignore_query: bool) -> Optional[dict]:
        data = self._read(backend, key)
        if data is not None or not ignore_query:
            return data

        base = strip_query(key)
        if base != key:
            data = self._read(backend, base)
            if data is not None:
                return data
        for candidate in self._keys(backend):
            if candidate != key and candidate != COMPLETE_KEY and strip_query(candidate) == base:
                return self._read(backend, candidate)
        return None

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            if self.offload:
                return await asyncio.to_thread(fn, *args)
            return fn(*args)
        except StoreError:
            raise
        except self.errors as exc:
            raise StoreError(f"Store operation {fn.__name__.lstrip('_')} failed: {exc}") from exc


def strip_query(key: str) -> str:
    """Drop the query string and fragment from a store key."""
    return key.split("#", 1)[0].split("?", 1)[0]
