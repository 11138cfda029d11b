"""Namespaced response storage for shellcache.

A :class:`Store` is a persistent map partitioned into named *namespaces*.
Every cache generation owns two of them, and activating a generation
deletes the namespaces of all others.  Two implementations are provided:

* :class:`DiskStore` -- one :mod:`diskcache` directory per namespace,
  surviving process restarts.
* :class:`MemoryStore` -- plain dictionaries, for tests and short-lived
  embedding.

Entries are :class:`~shellcache.responses.StoredResponse` snapshots; reads
return fresh :class:`httpx.Response` objects.
"""

from shellcache.store.base import COMPLETE_KEY, NamespaceHandle, Store
from shellcache.store.disk import DiskStore
from shellcache.store.memory import MemoryStore

__all__ = ["Store", "NamespaceHandle", "DiskStore", "MemoryStore", "COMPLETE_KEY"]
