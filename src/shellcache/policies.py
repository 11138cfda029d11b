"""Per-category caching strategies.

:class:`PolicyEngine` classifies each request, looks up the policy for its
category in :data:`~shellcache.models.POLICY_BY_CATEGORY` and runs the
matching strategy against the active generation's namespaces:

``network_first_with_fallback`` (navigations)
    Return whatever the network answers, error statuses included.  Only a
    transport failure falls back to the cached fallback document, then to a
    synthetic ``504 Offline``.

``stale_while_revalidate`` (same-origin assets)
    Return a cached copy immediately when there is one.  Either way fetch
    the original URL; a successful same-origin answer is written back under
    the normalized key by a detached task.  Without a cached copy the fetch
    is awaited; if it fails, document-like paths get the fallback document
    and everything else the synthetic ``504``.

``cache_first_with_network_fallback`` (allow-listed third parties)
    A cached copy is returned without touching the network.  Otherwise the
    response is fetched, stored when successful or opaque, and returned.
    Failure yields ``504 Third-Party Unavailable``.

``passthrough``
    Not intercepted: :meth:`PolicyEngine.handle` returns ``None``.

Store failures while serving a request are logged and treated as a miss
(reads) or skipped (writes); they never reach the caller.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Awaitable, Callable, Optional

import httpx

from shellcache.classifier import Classification, RequestClassifier
from shellcache.exceptions import StoreError, TransportFailure
from shellcache.models import POLICY_BY_CATEGORY, GenerationConfig, Policy, Request
from shellcache.responses import (
    BASIC,
    OPAQUE,
    THIRD_PARTY_OFFLINE_REASON,
    clone_response,
    get_response_type,
    is_cacheable_third_party,
    is_success,
    offline_response,
)
from shellcache.store import NamespaceHandle, Store
from shellcache.tasks import BackgroundTasks
from shellcache.transport import Transport
from shellcache.versioning import VersionManager

logger = logging.getLogger(__name__)

Strategy = Callable[[Request, Classification, str], Awaitable[httpx.Response]]


class PolicyEngine:
    """Answers requests from the store, the network, or both.

    Args:
        config: Origin, allow-list, fallback key and refill settings.
        store: Namespaced response store.
        transport: Network access.
        versions: Supplies the active generation whose namespaces are used.
        tasks: Registry for detached refill writes; a private one is
            created when omitted.

    Example::

        engine = PolicyEngine(config, store, transport, versions)
        response = await engine.respond(Request.navigate("https://app.example.com/"))
    """

    def __init__(
        self,
        config: GenerationConfig,
        store: Store,
        transport: Transport,
        versions: VersionManager,
        tasks: Optional[BackgroundTasks] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._transport = transport
        self._versions = versions
        self._tasks = tasks or BackgroundTasks()
        self._classifier = RequestClassifier(config)
        self._strategies: dict[Policy, Strategy] = {
            Policy.NETWORK_FIRST_WITH_FALLBACK: self._network_first_with_fallback,
            Policy.STALE_WHILE_REVALIDATE: self._stale_while_revalidate,
            Policy.CACHE_FIRST_WITH_NETWORK_FALLBACK: self._cache_first_with_network_fallback,
        }

    @property
    def classifier(self) -> RequestClassifier:
        return self._classifier

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def handle(self, request: Request) -> Optional[httpx.Response]:
        """Answer *request* if it is intercepted.

        Returns:
            The response, or ``None`` when the request is passed through
            (non-GET, foreign host not on the allow-list, or no active
            generation yet).
        """
        classification = self._classifier.classify(request)
        policy = POLICY_BY_CATEGORY[classification.category]
        strategy = self._strategies.get(policy)
        if strategy is None:
            logger.debug("Passthrough %s %s", request.method, request.url)
            return None

        generation = self._versions.active
        if generation is None:
            logger.debug("No active generation, not intercepting %s", request.url)
            return None

        assert classification.namespace is not None
        namespace = generation.namespace_for(classification.namespace)
        logger.debug("%s %s -> %s in %s", policy.value, request.url, classification.key, namespace)
        return await strategy(request, classification, namespace)

    async def respond(self, request: Request) -> httpx.Response:
        """Answer *request*, falling back to a plain network fetch when it is not intercepted.

        Raises:
            TransportFailure: For a passed-through request whose fetch failed.
        """
        response = await self.handle(request)
        if response is None:
            response = await self._transport.fetch(request)
        return response

    # ------------------------------------------------------------------ #
    # Strategies
    # ------------------------------------------------------------------ #

    async def _network_first_with_fallback(
        self, request: Request, classification: Classification, namespace: str
    ) -> httpx.Response:
        try:
            return await self._transport.fetch(request)
        except TransportFailure as exc:
            logger.info("Network unavailable for %s, serving fallback: %s", request.url, exc)
        return await self._fallback_document(request, await self._open(namespace))

    async def _stale_while_revalidate(
        self, request: Request, classification: Classification, namespace: str
    ) -> httpx.Response:
        assert classification.key is not None
        handle = await self._open(namespace)
        cached = await self._lookup(handle, classification.key, ignore_query=True)

        revalidation = self._tasks.spawn(
            self._revalidate(request, handle, classification.key),
            label=f"revalidate {request.url}",
        )
        if cached is not None:
            return cached

        response = await revalidation
        if response is not None:
            return response
        if _looks_like_document(request.path):
            return await self._fallback_document(request, handle)
        return offline_response(request)

    async def _cache_first_with_network_fallback(
        self, request: Request, classification: Classification, namespace: str
    ) -> httpx.Response:
        assert classification.key is not None
        handle = await self._open(namespace)
        cached = await self._lookup(handle, classification.key)
        if cached is not None:
            return cached

        try:
            response = await self._transport.fetch(request)
        except TransportFailure as exc:
            logger.info("Third-party %s unavailable: %s", request.url, exc)
            return offline_response(request, THIRD_PARTY_OFFLINE_REASON)

        if handle is not None and is_cacheable_third_party(response):
            try:
                await self._store.put(handle, classification.key, clone_response(response))
            except StoreError as exc:
                logger.warning("Could not cache third-party %s: %s", request.url, exc)
        return response

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _revalidate(
        self, request: Request, handle: Optional[NamespaceHandle], key: str
    ) -> Optional[httpx.Response]:
        """Fetch the original request and schedule the refill write.

        Returns ``None`` when the network is unreachable.
        """
        try:
            response = await self._transport.fetch(request)
        except TransportFailure as exc:
            logger.debug("Revalidation of %s failed: %s", request.url, exc)
            return None

        if handle is not None and self._is_refillable(response):
            self._tasks.spawn(
                self._store.put(handle, key, clone_response(response)),
                label=f"refill {handle.name} {key}",
            )
        return response

    def _is_refillable(self, response: httpx.Response) -> bool:
        if not is_success(response):
            return False
        kind = get_response_type(response)
        return kind == BASIC or (kind == OPAQUE and self._config.refill_opaque)

    async def _fallback_document(
        self, request: Request, handle: Optional[NamespaceHandle]
    ) -> httpx.Response:
        cached = await self._lookup(handle, self._config.fallback_document, ignore_query=True)
        if cached is not None:
            return cached
        return offline_response(request)

    async def _open(self, namespace: str) -> Optional[NamespaceHandle]:
        try:
            return await self._store.open(namespace, create=False)
        except StoreError as exc:
            logger.info("Could not open namespace %s: %s", namespace, exc)
            return None

    async def _lookup(
        self, handle: Optional[NamespaceHandle], key: str, ignore_query: bool = False
    ) -> Optional[httpx.Response]:
        if handle is None:
            return None
        try:
            return await self._store.get(handle, key, ignore_query=ignore_query)
        except StoreError as exc:
            logger.warning("Lookup of %s in %s failed: %s", key, handle.name, exc)
            return None


def _looks_like_document(path: str) -> bool:
    """``.html`` files and extension-less paths are documents."""
    _, ext = posixpath.splitext(posixpath.basename(path))
    return ext == "" or ext.lower() == ".html"
