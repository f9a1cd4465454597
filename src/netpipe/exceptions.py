"""Exception hierarchy for netpipe.

All exceptions inherit from :class:`NetpipeError`, which carries a
class-level ``code`` string identifying the failure category. Typed
pipeline callbacks receive these exceptions inside a
:class:`~netpipe.client.result.Result`; nothing in the pipeline raises
them into the caller's thread.

Subclass hierarchy::

    NetpipeError        (error)
    +-- RequestBuildError (request_build)  -- terminal, never retried
    +-- EncodingError     (encoding)
    +-- AdapterError      (adapter)        -- terminal, never retried
    +-- TransportError    (transport)      -- routed through the retrier
    +-- ResponseError     (response)       -- routed through the retrier
    +-- DecodeError       (decode)         -- terminal regardless of status
    +-- CancelledError    (cancelled)
    +-- CacheError        (cache)
    +-- ConfigError       (config)
"""

from __future__ import annotations

from typing import Any, Optional

from netpipe.models import BuildFailure, FailureKind


class NetpipeError(Exception):
    """Base exception for all netpipe errors.

    Args:
        message: Human-readable error description.
        code: Optional override for the class-level code.
    """

    code: str = "error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class RequestBuildError(NetpipeError):
    """Raised when a route cannot be turned into an outgoing request.

    Args:
        reason: Which part of the build failed.
        message: Optional detail; defaults to a description of *reason*.
    """

    code = "request_build"

    _DESCRIPTIONS = {
        BuildFailure.MISSING_URL: "url is missing",
        BuildFailure.ENCODING_FAILED: "failed to encode parameters",
        BuildFailure.PARAMETERS_NIL: "parameters were nil",
    }

    def __init__(self, reason: BuildFailure, message: str | None = None):
        super().__init__(message or self._DESCRIPTIONS[reason])
        self.reason = reason


class EncodingError(NetpipeError):
    """Raised when a request body (e.g. multipart) cannot be encoded."""

    code = "encoding"


class AdapterError(NetpipeError):
    """Raised when a request adapter fails. Adapter failures are not retried."""

    code = "adapter"


class TransportError(NetpipeError):
    """Raised on network-level failures (timeout, DNS, connection refused).

    A completion that carries no HTTP response is always reported as this
    error by typed calls.
    """

    code = "transport"


class ResponseError(NetpipeError):
    """Raised when the server answered with a non-success status code.

    Args:
        kind: The :class:`~netpipe.models.FailureKind` assigned by the
            classifier.
        payload: Decoded error body, when the classifier produced one.
        status_code: The HTTP status code of the response.
    """

    code = "response"

    def __init__(
        self,
        kind: FailureKind,
        payload: Optional[Any] = None,
        status_code: Optional[int] = None,
    ):
        prefix = f"HTTP {status_code}" if status_code is not None else "HTTP error"
        super().__init__(f"{prefix}: {kind.value}")
        self.kind = kind
        self.payload = payload
        self.status_code = status_code


class DecodeError(NetpipeError):
    """Raised when a response body cannot be decoded into the requested type."""

    code = "decode"


class CancelledError(NetpipeError):
    """Raised when an operation was cancelled before it resolved.

    Args:
        message: Human-readable error description.
        resume_data: For cancelled downloads, the bytes received so far.
            Pass them back to
            :meth:`~netpipe.client.pipeline.RequestPipeline.download` to
            resume the transfer.
    """

    code = "cancelled"

    def __init__(self, message: str = "Operation was cancelled", resume_data: Optional[bytes] = None):
        super().__init__(message)
        self.resume_data = resume_data


class CacheError(NetpipeError):
    """Raised when a cache snapshot cannot be written or read back."""

    code = "cache"


class ConfigError(NetpipeError):
    """Raised for configuration problems (invalid JSON, bad values)."""

    code = "config"
