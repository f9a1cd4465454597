"""HTTP client runtime for netpipe.

Provides the callback-driven :class:`RequestPipeline` and the pieces it is
assembled from: a task-based :class:`HttpxTransport`, the
:class:`ResponseClassifier`, the :class:`MultipartEncoder`, the
thread-safe :class:`TransferTracker`, and the collaborator protocols
(:class:`Endpoint`, :class:`RequestAdapter`, :class:`Retrier`,
:class:`Serializer`) with one reference implementation each.

Example::

    from netpipe.client import BackoffRetrier, RequestPipeline, Route

    with RequestPipeline(retrier=BackoffRetrier()) as pipeline:
        op = pipeline.execute_typed(
            Route("https://api.example.com", "/users"), list, print,
        )
        op.wait()
"""

from netpipe.client.classifier import ResponseClassifier, ResponseOutcome
from netpipe.client.endpoint import Endpoint, Route
from netpipe.client.multipart import MultipartEncoder, MultipartFile
from netpipe.client.pipeline import Operation, RequestPipeline
from netpipe.client.policy import (
    BackoffRetrier,
    HeaderAdapter,
    RequestAdapter,
    Retrier,
    RetryAction,
    RetryDecision,
)
from netpipe.client.request import Completion, OutgoingRequest, RawResponse
from netpipe.client.result import Result
from netpipe.client.serializer import JSONSerializer, Serializer
from netpipe.client.transfers import Progress, TransferTracker
from netpipe.client.transport import HttpxTransport, Transport

__all__ = [
    "BackoffRetrier",
    "Completion",
    "Endpoint",
    "HeaderAdapter",
    "HttpxTransport",
    "JSONSerializer",
    "MultipartEncoder",
    "MultipartFile",
    "Operation",
    "OutgoingRequest",
    "Progress",
    "RawResponse",
    "RequestAdapter",
    "RequestPipeline",
    "ResponseClassifier",
    "ResponseOutcome",
    "Result",
    "Retrier",
    "RetryAction",
    "RetryDecision",
    "Route",
    "Serializer",
    "Transport",
    "TransferTracker",
]
