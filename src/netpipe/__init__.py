"""netpipe -- a callback-driven HTTP client runtime built on httpx.

The package executes requests described by pluggable *routes*, classifies
the responses into typed outcomes, retries under a caller-supplied policy,
reports byte progress for uploads and downloads, and caches decoded results
in a bounded, TTL-aware store that survives process restarts.

Typical usage::

    from netpipe import RequestPipeline, Route

    with RequestPipeline() as pipeline:
        op = pipeline.execute_typed(
            Route("https://api.example.com", "/users"), list, on_done,
        )
        op.wait()

Modules:
    client: Request pipeline, transport, classifier, multipart encoder,
        transfer tracker and the collaborator protocols.
    cache: The bounded TTL cache with JSON persistence.
    models: Pydantic configuration models.
    config: XDG-aware configuration loading and precedence resolution.
    exceptions: Exception hierarchy.
    output: stderr diagnostics with Rich support.
"""

from netpipe.cache import TTLCache
from netpipe.client import (
    Completion,
    MultipartEncoder,
    MultipartFile,
    Operation,
    RequestPipeline,
    ResponseClassifier,
    Result,
    Route,
    TransferTracker,
)

__version__ = "0.1.0"

__all__ = [
    "Completion",
    "MultipartEncoder",
    "MultipartFile",
    "Operation",
    "RequestPipeline",
    "ResponseClassifier",
    "Result",
    "Route",
    "TTLCache",
    "TransferTracker",
]
