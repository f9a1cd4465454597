"""Request and response value types passed between pipeline stages.

* :class:`OutgoingRequest` -- a materialised request (method, URL,
  case-insensitive headers, optional body, timeout). Each attempt works on
  its own copy so adapters never share mutable state across attempts.
* :class:`RawResponse` -- what the transport hands back: status code,
  headers, and the fully read body.
* :class:`Completion` -- the untyped outcome of
  :meth:`~netpipe.client.pipeline.RequestPipeline.execute`, mirroring the
  ``(data, response, error)`` triple a task-based transport reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import httpx

DEFAULT_TIMEOUT = 10.0


@dataclass
class OutgoingRequest:
    """A concrete HTTP request ready for dispatch.

    Attributes:
        method: Upper-case HTTP method.
        url: Absolute target URL including the query string.
        headers: Case-insensitive header mapping; setting an existing key
            replaces its value.
        body: Raw request body, or ``None``.
        timeout: Per-attempt timeout in seconds.
        attempt: Zero-based attempt number within the retry loop, set by
            the pipeline before the retrier sees the request.
    """

    method: str
    url: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Optional[bytes] = None
    timeout: float = DEFAULT_TIMEOUT
    attempt: int = 0

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    def copy(self) -> OutgoingRequest:
        """Return an independent copy; mutating it leaves this request untouched."""
        return OutgoingRequest(
            method=self.method,
            url=self.url,
            headers=self.headers.copy(),
            body=self.body,
            timeout=self.timeout,
            attempt=self.attempt,
        )


@dataclass(frozen=True)
class RawResponse:
    """An HTTP response as delivered by the transport."""

    status_code: int
    headers: httpx.Headers
    content: bytes
    url: str = ""

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> RawResponse:
        """Snapshot a fully read :class:`httpx.Response`."""
        return cls(
            status_code=response.status_code,
            headers=response.headers,
            content=response.content,
            url=str(response.request.url) if _has_request(response) else "",
        )

    @property
    def is_success(self) -> bool:
        """Whether the status code is in the 2xx range."""
        return 200 <= self.status_code <= 299


def _has_request(response: httpx.Response) -> bool:
    try:
        response.request
    except RuntimeError:
        return False
    return True


@dataclass
class Completion:
    """Result of one :meth:`~netpipe.client.pipeline.RequestPipeline.execute` call.

    Exactly one of ``response`` or ``error`` is normally set: a transport
    failure has an error but no response, a retrier abort carries both.

    Attributes:
        request: The last request dispatched (after adaptation), or
            ``None`` when building or adapting failed.
        response: The HTTP response, or ``None``.
        error: The failure, or ``None``.
    """

    request: Optional[OutgoingRequest] = None
    response: Optional[RawResponse] = None
    error: Optional[BaseException] = None

    @property
    def data(self) -> Optional[bytes]:
        """The response body, or ``None`` when there is no response."""
        if self.response is None:
            return None
        return self.response.content
