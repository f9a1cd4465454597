"""Canonical Pydantic models and enumerations shared across netpipe modules.

Every other module imports its data shapes from here rather than defining
its own. The contents fall into two groups:

**Configuration models** -- serialised as JSON in the user's config
directory and resolved by :mod:`netpipe.config`:
    :class:`RequestConfig`, :class:`RetryConfig`, :class:`CacheConfig`,
    :class:`OutputConfig`, and :class:`GlobalConfig`.

**Protocol enumerations** -- shared by the client and the exception
hierarchy:
    :class:`HTTPMethod`, :class:`FailureKind`, :class:`BuildFailure`, and
    :class:`MimeType`.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, Field


# --- Enumerations ---


class HTTPMethod(str, enum.Enum):
    """HTTP methods a :class:`~netpipe.client.endpoint.Route` may use."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class FailureKind(str, enum.Enum):
    """Category of a classified HTTP failure.

    Produced by :class:`~netpipe.client.classifier.ResponseClassifier` and
    carried by :class:`~netpipe.exceptions.ResponseError`. The built-in
    classifier emits ``UNAUTHORIZED`` and ``GENERIC_FAILURE``; the other
    members are available to custom classifiers and retriers.
    """

    NO_DATA = "no_data"
    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    OUTDATED = "outdated"
    GENERIC_FAILURE = "generic_failure"


class BuildFailure(str, enum.Enum):
    """Reason a route could not be materialised into a request."""

    MISSING_URL = "missing_url"
    ENCODING_FAILED = "encoding_failed"
    PARAMETERS_NIL = "parameters_nil"


class MimeType(str, enum.Enum):
    """MIME types with a known file extension for multipart uploads."""

    PNG = "image/png"
    JPEG = "image/jpeg"

    @property
    def extension(self) -> str:
        """File extension (without the dot) conventionally used for this type."""
        return {MimeType.PNG: "png", MimeType.JPEG: "jpg"}[self]


# --- Configuration ---


class RequestConfig(BaseModel):
    """Transport settings applied to every request a pipeline dispatches."""

    timeout: float = Field(default=10.0, description="Per-attempt timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    follow_redirects: bool = Field(default=True, description="Follow HTTP redirects")
    max_workers: int = Field(
        default=4, ge=1, description="Worker threads that run operations and callbacks"
    )


class RetryConfig(BaseModel):
    """Settings for :class:`~netpipe.client.policy.BackoffRetrier`."""

    max_retries: int = Field(default=3, ge=0, description="Max retry attempts")
    backoff_base: float = Field(
        default=1.0, ge=0, description="First back-off delay in seconds, doubled per attempt"
    )
    retry_statuses: list[int] = Field(
        default_factory=lambda: [500, 502, 503, 504],
        description="Status codes treated as transient",
    )


class CacheConfig(BaseModel):
    """Settings for :class:`~netpipe.cache.TTLCache`."""

    name: str = Field(default="temporary", description="Snapshot file stem")
    capacity: int = Field(default=50, ge=1, description="Max resident entries")
    ttl_seconds: float = Field(
        default=12 * 60 * 60, gt=0, description="Lifetime of an entry in seconds"
    )
    persist: bool = Field(
        default=True, description="Persist the cache when its owner closes"
    )


class OutputConfig(BaseModel):
    """Diagnostic output preferences."""

    verbose: bool = Field(default=False, description="Show debug diagnostics")
    quiet: bool = Field(default=False, description="Suppress informational messages")
    no_color: bool = Field(default=False, description="Disable Rich markup")


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/netpipe/config.json``.

    Loaded and saved by :func:`~netpipe.config.load_global_config` and
    :func:`~netpipe.config.save_global_config`. Fields here have the
    lowest precedence and can be overridden by environment variables or
    explicit arguments. See :func:`~netpipe.config.resolve_config` for the
    full precedence chain.
    """

    request: RequestConfig = Field(default_factory=RequestConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
