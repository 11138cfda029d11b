"""Canonical Pydantic models and enums shared across all shellcache modules.

The models fall into two groups:

**Configuration models** -- loaded from JSON/YAML by :mod:`shellcache.config`:
    :class:`RequestConfig` and :class:`GenerationConfig`.

**Request-time models** -- produced by the host for every intercepted fetch
and consumed by the classifier and policy engine:
    :class:`RequestMode`, :class:`Request`, :class:`NamespaceRole`, :class:`Category`,
    :class:`Policy`, and :data:`POLICY_BY_CATEGORY`.

All models use Pydantic v2.
"""

from __future__ import annotations

import enum
from typing import Optional

import httpx
from pydantic import BaseModel, Field, field_validator


# --- Configuration ---


class RequestConfig(BaseModel):
    """Settings for the default :class:`~shellcache.transport.HttpxTransport`.

    No overall deadline is imposed on the engine itself; ``timeout`` only
    bounds how long the underlying HTTP client waits before reporting a
    transport failure.
    """

    timeout: float = Field(default=30, description="Per-request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    follow_redirects: bool = Field(default=True, description="Follow HTTP redirects")


class GenerationConfig(BaseModel):
    """Everything needed to define and serve one cache generation.

    A generation is identified by ``version``.  Its two store namespaces are
    named from ``cache_prefix`` and ``version`` (see
    :class:`~shellcache.versioning.Generation`), so two configurations that
    differ only in ``version`` can be installed side by side.

    Example::

        GenerationConfig(
            version="v13",
            app_origin="https://app.example.com",
            pinned_primary=["/", "/index.html", "/app.js"],
            pinned_secondary=["https://www.gstatic.com/firebasejs/9.0.0/firebase-app.js"],
            allow_list=["www.gstatic.com"],
        )
    """

    version: str = Field(min_length=1, description="Generation version tag")
    app_origin: str = Field(description="Origin of the application, e.g. https://app.example.com")
    cache_prefix: str = Field(default="shellcache", description="Prefix for namespace names")
    fallback_document: str = Field(
        default="/index.html", description="Store key of the navigation fallback document"
    )
    busting_param: str = Field(default="v", description="Version-busting query parameter name")
    pinned_primary: list[str] = Field(
        default_factory=list, description="Same-origin URLs installed with every generation"
    )
    pinned_secondary: list[str] = Field(
        default_factory=list, description="Third-party URLs primed best-effort at install"
    )
    allow_list: list[str] = Field(
        default_factory=list, description="Third-party hostnames eligible for caching"
    )
    refill_opaque: bool = Field(
        default=False, description="Accept opaque responses when refilling static assets"
    )
    skip_waiting: bool = Field(
        default=False, description="Activate a generation as soon as it is installed"
    )
    request: RequestConfig = Field(default_factory=RequestConfig)

    @field_validator("app_origin")
    @classmethod
    def _check_origin(cls, value: str) -> str:
        url = httpx.URL(value)
        if not url.is_absolute_url:
            raise ValueError(f"app_origin must be an absolute URL, got {value!r}")
        if url.path not in ("", "/") or url.query or url.fragment:
            raise ValueError(f"app_origin must not carry a path, query or fragment, got {value!r}")
        return url_origin(url)

    @field_validator("allow_list")
    @classmethod
    def _lower_hosts(cls, value: list[str]) -> list[str]:
        return [host.strip().lower() for host in value if host.strip()]

    @field_validator("fallback_document")
    @classmethod
    def _check_fallback(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("fallback_document must be an absolute path, e.g. /index.html")
        return value

    @property
    def app_host(self) -> str:
        """Hostname of :attr:`app_origin`."""
        return httpx.URL(self.app_origin).host

    @property
    def allowed_hosts(self) -> frozenset[str]:
        """The allow-list as an immutable set."""
        return frozenset(self.allow_list)

    def absolute_url(self, url: str) -> str:
        """Resolve *url* against :attr:`app_origin` (absolute URLs pass through)."""
        return str(httpx.URL(self.app_origin + "/").join(url))


# --- Requests ---


class RequestMode(str, enum.Enum):
    """How the host issued the request.

    ``NAVIGATE`` marks top-level document loads; ``NO_CORS`` requests to a
    foreign origin produce opaque responses.
    """

    NAVIGATE = "navigate"
    SAME_ORIGIN = "same-origin"
    NO_CORS = "no-cors"
    CORS = "cors"


class Request(BaseModel):
    """An inbound fetch as seen by the engine.

    ``url`` must be absolute; the origin, host, path and query accessors are
    derived from it with :class:`httpx.URL`.
    """

    method: str = "GET"
    url: str
    mode: RequestMode = RequestMode.NO_CORS
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not httpx.URL(value).is_absolute_url:
            raise ValueError(f"request url must be absolute, got {value!r}")
        return value

    @property
    def parsed_url(self) -> httpx.URL:
        return httpx.URL(self.url)

    @property
    def origin(self) -> str:
        return url_origin(self.parsed_url)

    @property
    def host(self) -> str:
        return self.parsed_url.host

    @property
    def path(self) -> str:
        return self.parsed_url.path

    @property
    def query(self) -> str:
        return self.parsed_url.query.decode("ascii")

    def to_httpx(self) -> httpx.Request:
        """Build the equivalent :class:`httpx.Request`."""
        return httpx.Request(self.method, self.url, headers=self.headers)

    @classmethod
    def navigate(cls, url: str, headers: Optional[dict[str, str]] = None) -> Request:
        """Shortcut for a GET navigation request."""
        return cls(url=url, mode=RequestMode.NAVIGATE, headers=headers or {})


def url_origin(url: httpx.URL) -> str:
    """Return ``scheme://host[:port]`` for *url*, omitting default ports."""
    origin = f"{url.scheme}://{url.host}"
    if url.port is not None:
        origin += f":{url.port}"
    return origin


# --- Dispatch ---


class Category(str, enum.Enum):
    """Request categories assigned by :class:`~shellcache.classifier.RequestClassifier`."""

    NAVIGATION = "navigation"
    STATIC = "static"
    THIRD_PARTY = "third_party"
    PASSTHROUGH = "passthrough"


class Policy(str, enum.Enum):
    """Caching strategies executed by :class:`~shellcache.policies.PolicyEngine`."""

    NETWORK_FIRST_WITH_FALLBACK = "network_first_with_fallback"
    STALE_WHILE_REVALIDATE = "stale_while_revalidate"
    CACHE_FIRST_WITH_NETWORK_FALLBACK = "cache_first_with_network_fallback"
    PASSTHROUGH = "passthrough"


POLICY_BY_CATEGORY: dict[Category, Policy] = {
    Category.NAVIGATION: Policy.NETWORK_FIRST_WITH_FALLBACK,
    Category.STATIC: Policy.STALE_WHILE_REVALIDATE,
    Category.THIRD_PARTY: Policy.CACHE_FIRST_WITH_NETWORK_FALLBACK,
    Category.PASSTHROUGH: Policy.PASSTHROUGH,
}
"""The policy applied to each category.  Adding a category means adding a row here."""


class NamespaceRole(str, enum.Enum):
    """Which of a generation's two namespaces a request belongs to."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
