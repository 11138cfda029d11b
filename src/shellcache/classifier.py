"""Request classification and cache-key normalization.

:class:`RequestClassifier` maps every inbound :class:`~shellcache.models.Request`
to a :class:`Classification`: the category that selects a caching policy,
the namespace role it reads and writes, and the store key.  Rules are
applied in order:

1. non-GET requests are never intercepted;
2. cross-origin requests are cached only for allow-listed hosts, keyed by
   their full URL, and otherwise passed through;
3. same-origin navigations all share the fallback-document key;
4. every other same-origin request is a static asset keyed by
   :func:`normalize_cache_key`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from shellcache.models import Category, GenerationConfig, NamespaceRole, Request, RequestMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one request.

    ``namespace`` and ``key`` are ``None`` for passthrough requests.
    """

    category: Category
    namespace: Optional[NamespaceRole] = None
    key: Optional[str] = None

    @property
    def intercepted(self) -> bool:
        return self.category is not Category.PASSTHROUGH


PASSTHROUGH = Classification(Category.PASSTHROUGH)


def normalize_cache_key(url: str | httpx.URL, busting_param: str = "v") -> str:
    """Return the store key for a same-origin asset URL.

    The key is the path alone when the query string consists solely of the
    version-busting parameter, otherwise the path followed by the full
    query.  Origin and fragment never take part.

    >>> normalize_cache_key("https://app.example.com/app.js?v=16")
    '/app.js'
    >>> normalize_cache_key("https://app.example.com/data.json?x=1")
    '/data.json?x=1'
    """
    parsed = url if isinstance(url, httpx.URL) else httpx.URL(url)
    path = parsed.path or "/"
    query = parsed.query.decode("ascii")
    if not query:
        return path
    params = httpx.QueryParams(query)
    if len(params.multi_items()) == 1 and busting_param in params:
        return path
    return f"{path}?{query}"


def third_party_key(url: str | httpx.URL) -> str:
    """Return the store key for an allow-listed third-party URL: the full URL minus fragment."""
    parsed = url if isinstance(url, httpx.URL) else httpx.URL(url)
    return str(parsed.copy_with(fragment=None))


class RequestClassifier:
    """Classifies requests for one application origin.

    Args:
        config: Supplies the application origin, the allow-list, the
            fallback-document key and the version-busting parameter name.
    """

    def __init__(self, config: GenerationConfig) -> None:
        self._origin = config.app_origin
        self._allowed_hosts = config.allowed_hosts
        self._fallback_key = config.fallback_document
        self._busting_param = config.busting_param

    def classify(self, request: Request) -> Classification:
        if request.method != "GET":
            return PASSTHROUGH

        if request.origin != self._origin:
            if request.host.lower() in self._allowed_hosts:
                return Classification(
                    Category.THIRD_PARTY,
                    NamespaceRole.SECONDARY,
                    third_party_key(request.parsed_url),
                )
            return PASSTHROUGH

        if request.mode == RequestMode.NAVIGATE:
            return Classification(Category.NAVIGATION, NamespaceRole.PRIMARY, self._fallback_key)

        return Classification(
            Category.STATIC,
            NamespaceRole.PRIMARY,
            normalize_cache_key(request.parsed_url, self._busting_param),
        )
