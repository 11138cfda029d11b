"""Response helpers shared by the transport, the store and the policy engine.

* :func:`response_type` -- classify a fetched response as ``basic``,
  ``cors`` or ``opaque`` and stamp it into ``response.extensions``.
* :func:`clone_response` -- an independent copy whose body can be stored
  while the original is returned to the caller.
* :func:`offline_response` -- the synthetic ``504`` answer used when the
  network is unreachable and nothing usable is cached.
* :class:`StoredResponse` -- the serialisable form persisted by a
  :class:`~shellcache.store.Store`.
"""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import BaseModel, Field

from shellcache.models import Request, RequestMode, url_origin

BASIC = "basic"
CORS = "cors"
OPAQUE = "opaque"

RESPONSE_TYPE_KEY = "response_type"
"""``httpx.Response.extensions`` key holding the response type."""

OFFLINE_STATUS = 504
OFFLINE_REASON = "Offline"
THIRD_PARTY_OFFLINE_REASON = "Third-Party Unavailable"

# Headers describing the wire encoding; the copies below hold decoded bytes.
_WIRE_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


def response_type(response: httpx.Response, request: Request) -> str:
    """Classify *response* for *request* and record the result on it.

    A response is ``basic`` when the final URL and every redirect hop stayed
    on the requesting origin.  Otherwise it is ``opaque`` for ``no-cors``
    requests and ``cors`` for the rest.  A type already present in
    ``response.extensions`` wins, so test doubles and custom transports can
    force one.
    """
    explicit = response.extensions.get(RESPONSE_TYPE_KEY)
    if explicit:
        return explicit

    origin = request.origin
    hops = [url_origin(r.request.url) for r in response.history]
    hops.append(url_origin(response.request.url))
    if all(hop == origin for hop in hops):
        kind = BASIC
    elif request.mode == RequestMode.NO_CORS:
        kind = OPAQUE
    else:
        kind = CORS
    response.extensions[RESPONSE_TYPE_KEY] = kind
    return kind


def get_response_type(response: httpx.Response) -> str:
    """Return the type stamped on *response*, defaulting to ``basic``."""
    return response.extensions.get(RESPONSE_TYPE_KEY, BASIC)


def is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


def clone_response(response: httpx.Response) -> httpx.Response:
    """Return an independent copy of an already-read *response*.

    The copy shares no stream with the original, so storing one and
    returning the other never competes for a single-use body.
    """
    return httpx.Response(
        status_code=response.status_code,
        headers=_body_headers(response.headers),
        content=response.content,
        request=response.request if _has_request(response) else None,
        extensions=_copy_extensions(response),
    )


def offline_response(
    request: Optional[Request] = None,
    reason: str = OFFLINE_REASON,
) -> httpx.Response:
    """Build the synthetic "gateway unavailable" response.

    Args:
        request: The request being answered, attached for ``response.url``.
        reason: Reason phrase; :data:`OFFLINE_REASON` for the generic case,
            :data:`THIRD_PARTY_OFFLINE_REASON` for allow-listed hosts.
    """
    return httpx.Response(
        status_code=OFFLINE_STATUS,
        content=b"",
        request=request.to_httpx() if request is not None else None,
        extensions={"reason_phrase": reason.encode("ascii"), "synthetic": True},
    )


def is_synthetic(response: httpx.Response) -> bool:
    """Whether *response* was produced by :func:`offline_response`."""
    return bool(response.extensions.get("synthetic"))


class StoredResponse(BaseModel):
    """Serialisable snapshot of a response held in a store namespace."""

    key: str
    status_code: int
    reason_phrase: str = ""
    headers: list[tuple[str, str]] = Field(default_factory=list)
    body: bytes = b""
    url: str = ""
    response_type: str = BASIC

    @classmethod
    def from_response(cls, key: str, response: httpx.Response) -> StoredResponse:
        url = str(response.request.url) if _has_request(response) else ""
        return cls(
            key=key,
            status_code=response.status_code,
            reason_phrase=response.reason_phrase,
            headers=list(_body_headers(response.headers).items()),
            body=response.content,
            url=url,
            response_type=get_response_type(response),
        )

    def to_response(self) -> httpx.Response:
        """Rebuild a fresh :class:`httpx.Response` from the snapshot."""
        extensions: dict = {RESPONSE_TYPE_KEY: self.response_type, "cached": True}
        if self.reason_phrase:
            extensions["reason_phrase"] = self.reason_phrase.encode("ascii", "replace")
        return httpx.Response(
            status_code=self.status_code,
            headers=self.headers,
            content=self.body,
            request=httpx.Request("GET", self.url) if self.url else None,
            extensions=extensions,
        )


def is_cached(response: httpx.Response) -> bool:
    """Whether *response* was served from a store."""
    return bool(response.extensions.get("cached"))


# ------------------------------------------------------------------ #
# Private helpers
# ------------------------------------------------------------------ #


def _body_headers(headers: httpx.Headers) -> httpx.Headers:
    """Drop wire-encoding headers that no longer describe the decoded body."""
    return httpx.Headers(
        [(k, v) for k, v in headers.multi_items() if k.lower() not in _WIRE_HEADERS]
    )


def _copy_extensions(response: httpx.Response) -> dict:
    """Copy the metadata extensions worth keeping on a cloned response."""
    keep = (RESPONSE_TYPE_KEY, "reason_phrase", "cached", "synthetic")
    return {k: response.extensions[k] for k in keep if k in response.extensions}


def _has_request(response: httpx.Response) -> bool:
    try:
        response.request
    except RuntimeError:
        return False
    return True


def is_cacheable_third_party(response: httpx.Response) -> bool:
    """Third-party responses are kept when successful or opaque."""
    return is_success(response) or get_response_type(response) == OPAQUE
