"""Wiring of store, transport, version manager, lifecycle and engine.

:func:`build_runtime` assembles the components for one
:class:`~shellcache.models.GenerationConfig`.  The returned
:class:`Runtime` is an async context manager: leaving it waits for
detached refill writes and closes the transport (and the store when the
runtime created it).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shellcache.lifecycle import LifecycleController
from shellcache.models import GenerationConfig
from shellcache.policies import PolicyEngine
from shellcache.store import DiskStore, Store
from shellcache.tasks import BackgroundTasks
from shellcache.transport import HttpxTransport, Transport
from shellcache.versioning import VersionManager


@dataclass
class Runtime:
    config: GenerationConfig
    store: Store
    transport: Transport
    tasks: BackgroundTasks
    versions: VersionManager
    lifecycle: LifecycleController
    engine: PolicyEngine
    owns_store: bool = False

    async def __aenter__(self) -> Runtime:
        await self.transport.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.tasks.drain()
        await self.transport.aclose()
        if self.owns_store:
            await self.store.close()


def build_runtime(
    config: GenerationConfig,
    store: Optional[Store] = None,
    transport: Optional[Transport] = None,
    store_dir: Optional[str | Path] = None,
) -> Runtime:
    """Create a :class:`Runtime` for *config*.

    Args:
        config: The generation definition.
        store: Store to use.  When omitted a :class:`~shellcache.store.DiskStore`
            is opened at *store_dir* (default: ``<cache dir>/store``).
        transport: Transport to use; defaults to an
            :class:`~shellcache.transport.HttpxTransport` built from
            ``config.request``.
        store_dir: Root directory for the default disk store.
    """
    owns_store = store is None
    if store is None:
        if store_dir is None:
            from shellcache.config import get_cache_dir

            store_dir = get_cache_dir() / "store"
        store = DiskStore(store_dir)
    if transport is None:
        transport = HttpxTransport(config.request)

    tasks = BackgroundTasks()
    versions = VersionManager(store, transport, config)
    lifecycle = LifecycleController(versions, config)
    engine = PolicyEngine(config, store, transport, versions, tasks=tasks)
    return Runtime(
        config=config,
        store=store,
        transport=transport,
        tasks=tasks,
        versions=versions,
        lifecycle=lifecycle,
        engine=engine,
        owns_store=owns_store,
    )
