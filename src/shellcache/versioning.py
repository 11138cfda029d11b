"""Cache generations: naming, installation and activation.

A :class:`Generation` is one deployed version of the application.  It owns
exactly two store namespaces: *primary* for same-origin assets and
*secondary* for allow-listed third-party resources.

:class:`VersionManager` enforces the generation invariants:

* **Complete install.**  :meth:`~VersionManager.begin_install` fetches every
  pinned primary URL before the generation counts as installed.  One failed
  fetch, non-2xx answer or store write discards the whole generation, and
  so does an interrupted install.  Pinned secondary URLs are primed
  best-effort.  The last step marks the primary namespace complete.
* **Single active generation.**  :meth:`~VersionManager.activate` deletes
  every namespace in the store that does not belong to the generation being
  activated, then marks it active and tells its listeners.
* **Ordering.**  Only an installed generation can be activated; nothing
  else is locked.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from shellcache.classifier import normalize_cache_key, third_party_key
from shellcache.exceptions import InstallError, LifecycleError, StoreError, TransportFailure
from shellcache.models import GenerationConfig, NamespaceRole, Request, RequestMode
from shellcache.responses import is_cacheable_third_party, is_success
from shellcache.store import NamespaceHandle, Store
from shellcache.transport import Transport

logger = logging.getLogger(__name__)

ActivationListener = Callable[["Generation", Optional["Generation"]], Awaitable[None]]
"""Coroutine called with the newly active generation and the one it replaced."""


@dataclass(frozen=True)
class Generation:
    """A version tag and the names of the two namespaces it owns."""

    version: str
    primary: str
    secondary: str

    @classmethod
    def named(cls, prefix: str, version: str) -> Generation:
        base = f"{prefix}-{version}"
        return cls(version=version, primary=base, secondary=f"{base}-third-party")

    @property
    def namespaces(self) -> frozenset[str]:
        return frozenset((self.primary, self.secondary))

    def namespace_for(self, role: NamespaceRole) -> str:
        return self.primary if role is NamespaceRole.PRIMARY else self.secondary


class VersionManager:
    """Installs and activates generations in a :class:`~shellcache.store.Store`.

    Args:
        store: Where the namespaces live.
        transport: Used to download pinned resources during install.
        config: Namespace prefix, busting parameter and default pinned lists.
    """

    def __init__(self, store: Store, transport: Transport, config: GenerationConfig) -> None:
        self._store = store
        self._transport = transport
        self._config = config
        self._active: Optional[Generation] = None
        self._waiting: dict[str, Generation] = {}
        self._listeners: list[ActivationListener] = []

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def active(self) -> Optional[Generation]:
        """The generation currently serving requests, if any."""
        return self._active

    @property
    def waiting(self) -> Optional[Generation]:
        """The most recently installed generation that is not yet active."""
        if not self._waiting:
            return None
        return list(self._waiting.values())[-1]

    def generation_for(self, version: str) -> Generation:
        return Generation.named(self._config.cache_prefix, version)

    def add_activation_listener(self, listener: ActivationListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Install
    # ------------------------------------------------------------------ #

    async def begin_install(
        self,
        version: Optional[str] = None,
        pinned_primary: Optional[Iterable[str]] = None,
        pinned_secondary: Optional[Iterable[str]] = None,
    ) -> Generation:
        """Install a generation and leave it waiting for activation.

        Args:
            version: Version tag; defaults to the configured one.
            pinned_primary: Same-origin URLs (absolute or relative to the app
                origin) that must all be stored.  Defaults to the configured list.
            pinned_secondary: Third-party URLs primed best-effort.  Defaults to
                the configured list.

        Returns:
            The installed :class:`Generation`.

        Raises:
            InstallError: A primary resource could not be fetched or stored.
                The generation's namespaces have been deleted and the active
                generation is untouched.
            LifecycleError: *version* is the active generation.
        """
        version = version or self._config.version
        primary = list(self._config.pinned_primary if pinned_primary is None else pinned_primary)
        secondary = list(
            self._config.pinned_secondary if pinned_secondary is None else pinned_secondary
        )
        generation = self.generation_for(version)
        if self._active is not None and self._active.version == version:
            raise LifecycleError(f"Generation '{version}' is already active")

        self._waiting.pop(version, None)
        await self._discard(generation)

        logger.info("Installing generation %s (%d pinned assets)", version, len(primary))
        try:
            handle = await self._populate_primary(generation, primary)
            await self._prime_secondary(generation, secondary)
            await self._store.mark_complete(handle)
        except (TransportFailure, StoreError, InstallError) as exc:
            logger.error("Install of generation %s failed: %s", version, exc)
            await self._discard(generation)
            if isinstance(exc, InstallError):
                raise
            raise InstallError(
                f"Install of generation '{version}' failed: {exc}", version=version
            ) from exc
        except BaseException:
            logger.error("Install of generation %s interrupted", version)
            await self._discard(generation)
            raise

        self._waiting[version] = generation
        logger.info("Generation %s installed and waiting", version)
        return generation

    async def _populate_primary(self, generation: Generation, urls: list[str]) -> NamespaceHandle:
        """Fetch every URL first, then write them all; any failure aborts."""
        requests = [
            Request(url=self._config.absolute_url(url), mode=RequestMode.SAME_ORIGIN)
            for url in urls
        ]
        responses = await asyncio.gather(*(self._transport.fetch(r) for r in requests))

        for request, response in zip(requests, responses):
            if not is_success(response):
                raise InstallError(
                    f"Pinned asset {request.url} returned HTTP {response.status_code}",
                    version=generation.version,
                    url=request.url,
                )

        handle = await self._store.open(generation.primary)
        for request, response in zip(requests, responses):
            key = normalize_cache_key(request.parsed_url, self._config.busting_param)
            await self._store.put(handle, key, response)
        return handle

    async def _prime_secondary(self, generation: Generation, urls: list[str]) -> None:
        try:
            handle = await self._store.open(generation.secondary)
        except StoreError as exc:
            logger.warning("Could not open %s, skipping third-party priming: %s", generation.secondary, exc)
            return
        results = await asyncio.gather(*(self._prime_one(handle, url) for url in urls))
        primed = sum(results)
        if urls:
            logger.info("Primed %d/%d third-party resources", primed, len(urls))

    async def _prime_one(self, handle: NamespaceHandle, url: str) -> bool:
        request = Request(url=url, mode=RequestMode.NO_CORS)
        try:
            response = await self._transport.fetch(request)
            if not is_cacheable_third_party(response):
                logger.warning("Skipping third-party %s: HTTP %d", url, response.status_code)
                return False
            await self._store.put(handle, third_party_key(request.parsed_url), response)
        except (TransportFailure, StoreError) as exc:
            logger.warning("Could not prime third-party %s: %s", url, exc)
            return False
        return True

    async def _discard(self, generation: Generation) -> None:
        for namespace in generation.namespaces:
            await self._store.delete_namespace(namespace)

    # ------------------------------------------------------------------ #
    # Activation
    # ------------------------------------------------------------------ #

    async def activate(self, version: str) -> Generation:
        """Make the installed generation *version* the only one in the store.

        Activating the already-active generation is a no-op.

        Raises:
            LifecycleError: *version* has not finished installing.
        """
        if self._active is not None and self._active.version == version:
            return self._active
        generation = self._waiting.get(version)
        if generation is None:
            raise LifecycleError(f"Generation '{version}' has not been installed")

        keep = generation.namespaces
        for namespace in sorted(await self._store.list_namespaces()):
            if namespace not in keep:
                logger.info("Deleting superseded namespace %s", namespace)
                await self._store.delete_namespace(namespace)

        previous = self._active
        self._active = generation
        self._waiting.clear()
        logger.info(
            "Generation %s active%s",
            version,
            f" (replaced {previous.version})" if previous else "",
        )
        for listener in list(self._listeners):
            await listener(generation, previous)
        return generation

    async def force_activate(self) -> Generation:
        """Activate the waiting generation now, without waiting for consumers to go away.

        Raises:
            LifecycleError: No generation is waiting.
        """
        waiting = self.waiting
        if waiting is None:
            raise LifecycleError("No installed generation is waiting for activation")
        return await self.activate(waiting.version)

    async def adopt(self, version: str) -> Generation:
        """Register a generation installed by an earlier process as waiting.

        The primary namespace must carry the completion marker written as the
        last step of :meth:`begin_install`.

        Raises:
            LifecycleError: The generation was never completely installed.
        """
        if self._active is not None and self._active.version == version:
            return self._active
        generation = self.generation_for(version)
        if not await self._store.is_complete(generation.primary):
            raise LifecycleError(f"Generation '{version}' has not been installed")
        self._waiting[version] = generation
        return generation

    async def restore(self, version: Optional[str] = None) -> Optional[Generation]:
        """Adopt a generation already present in the store as the active one.

        Used after a process restart with a persistent store: the generation
        is adopted only when its primary namespace is marked complete and no
        generation is active yet.

        Returns:
            The adopted generation, or ``None``.
        """
        if self._active is not None:
            return self._active
        generation = self.generation_for(version or self._config.version)
        if not await self._store.is_complete(generation.primary):
            return None
        self._active = generation
        logger.info("Restored active generation %s from store", generation.version)
        for listener in list(self._listeners):
            await listener(generation, None)
        return generation

