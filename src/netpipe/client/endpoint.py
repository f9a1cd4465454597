"""Endpoint protocol and the reference :class:`Route` implementation.

The pipeline never builds URLs itself: it asks an *endpoint* for an
:class:`~netpipe.client.request.OutgoingRequest`. Anything with a
``build_request()`` method qualifies. :class:`Route` covers the common
case of a base URL, a path, a method, and optional JSON body, query and
header parameters.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

import httpx

from netpipe.client.request import DEFAULT_TIMEOUT, OutgoingRequest
from netpipe.exceptions import RequestBuildError
from netpipe.models import BuildFailure, HTTPMethod

_JSON_CONTENT_TYPE = "application/json"
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"


@runtime_checkable
class Endpoint(Protocol):
    """Anything that can be materialised into an outgoing request."""

    def build_request(self) -> OutgoingRequest:
        """Return a fresh request.

        Raises:
            RequestBuildError: If the URL is missing or parameters cannot
                be encoded. The pipeline treats this as terminal.
        """
        ...


@dataclass(frozen=True)
class Route:
    """Declarative description of one API call.

    Args:
        base_url: Scheme and host (optionally with a path prefix).
        path: Path appended to *base_url* with exactly one ``/`` between.
        method: HTTP method.
        body_params: JSON-encoded into the request body when given.
        url_params: Percent-encoded into the query string when given.
        headers: Extra headers, applied before parameter encoding.
        timeout: Per-attempt timeout in seconds.

    Example::

        Route("https://api.example.com", "/users", url_params={"page": 2})
    """

    base_url: str
    path: str = ""
    method: HTTPMethod = HTTPMethod.GET
    body_params: Optional[Mapping[str, Any]] = None
    url_params: Optional[Mapping[str, Any]] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT

    @property
    def url(self) -> str:
        """The base URL joined with the path, without query parameters."""
        if not self.path:
            return self.base_url
        return f"{self.base_url.rstrip('/')}/{self.path.lstrip('/')}"

    def build_request(self) -> OutgoingRequest:
        if not self.base_url:
            raise RequestBuildError(BuildFailure.MISSING_URL)

        request = OutgoingRequest(
            method=HTTPMethod(self.method).value,
            url=self.url,
            headers=httpx.Headers(dict(self.headers)),
            timeout=self.timeout,
        )

        if self.body_params is None and self.url_params is None:
            request.headers["Content-Type"] = _JSON_CONTENT_TYPE
            return request

        if self.body_params is not None:
            _encode_json_body(request, self.body_params)
        if self.url_params is not None:
            _encode_url_params(request, self.url_params)
        return request


def _encode_json_body(request: OutgoingRequest, params: Mapping[str, Any]) -> None:
    try:
        request.body = json.dumps(dict(params)).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise RequestBuildError(BuildFailure.ENCODING_FAILED, f"failed to encode body: {exc}") from exc
    if "Content-Type" not in request.headers:
        request.headers["Content-Type"] = _JSON_CONTENT_TYPE


def _encode_url_params(request: OutgoingRequest, params: Mapping[str, Any]) -> None:
    if not params:
        return
    try:
        url = httpx.URL(request.url).copy_merge_params(
            {key: str(value) for key, value in params.items()}
        )
    except (TypeError, ValueError, httpx.InvalidURL) as exc:
        raise RequestBuildError(BuildFailure.ENCODING_FAILED, f"failed to encode query: {exc}") from exc
    request.url = str(url)
    if "Content-Type" not in request.headers:
        request.headers["Content-Type"] = _FORM_CONTENT_TYPE
