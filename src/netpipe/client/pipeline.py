"""The request pipeline: build, adapt, dispatch, retry, classify, deliver.

:class:`RequestPipeline` is the central component of netpipe. Every public
method returns immediately with an :class:`Operation` and resolves its
callback later on a worker thread:

- :meth:`~RequestPipeline.execute` -- untyped; delivers a
  :class:`~netpipe.client.request.Completion`.
- :meth:`~RequestPipeline.execute_typed` -- classifies the response and
  decodes the body; delivers a :class:`~netpipe.client.result.Result`.
- :meth:`~RequestPipeline.upload_multipart` -- typed call with a multipart
  body and upload progress.
- :meth:`~RequestPipeline.download` -- streams a body to disk with
  download progress; delivers a ``Result[Path]``.

Each attempt runs build -> adapt -> dispatch -> retrier decision. Build and
adapter failures are terminal; transport and response failures go to the
retrier, which alone decides whether to try again. Attempts of one
operation are strictly sequential, and the cancellation flag is checked
before each one.

Cancellation is per operation via :meth:`Operation.cancel`.
:meth:`RequestPipeline.cancel` is kept for callers that hold no handle,
but it only reaches the most recently issued simple request: with several
requests in flight on one pipeline the older ones cannot be cancelled that
way.
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Union

from netpipe.client.classifier import ResponseClassifier
from netpipe.client.endpoint import Endpoint
from netpipe.client.multipart import MultipartEncoder, MultipartFile
from netpipe.client.policy import RequestAdapter, Retrier, RetryAction
from netpipe.client.request import Completion, OutgoingRequest, RawResponse
from netpipe.client.result import Result
from netpipe.client.serializer import JSONSerializer, Serializer
from netpipe.client.transfers import ProgressCallback, TransferTracker
from netpipe.client.transport import HttpxTransport, Transport
from netpipe.config import get_cache_dir
from netpipe.exceptions import (
    AdapterError,
    CancelledError,
    DecodeError,
    NetpipeError,
    RequestBuildError,
    TransportError,
)
from netpipe.models import BuildFailure, GlobalConfig
from netpipe.output import get_output

if TYPE_CHECKING:
    from netpipe.cache import TTLCache

CompletionHandler = Callable[[Completion], None]
ResultHandler = Callable[[Result[Any]], None]


class Operation:
    """Handle for one pipeline call: wait for it or cancel it.

    Attributes:
        id: Unique operation id. Transfers use it as their tracker key.
        resume_data: Bytes received before a download was cancelled, or
            ``None``.
    """

    def __init__(self) -> None:
        self.id = uuid.uuid4().hex
        self.resume_data: Optional[bytes] = None
        self._cancel_event = threading.Event()
        self._finished = threading.Event()
        self._on_cancel: Optional[Callable[[], Any]] = None

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation.

        The in-flight attempt stops at its next chunk boundary and no
        further attempt is dispatched. Transfers are deregistered at once,
        so they receive no progress or completion callback afterwards.
        """
        self._cancel_event.set()
        if self._on_cancel is not None:
            self._on_cancel()

    def done(self) -> bool:
        """Whether the operation has resolved (callback delivered or dropped)."""
        return self._finished.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the operation resolves. Returns ``False`` on timeout."""
        return self._finished.wait(timeout)

    def _finish(self) -> None:
        self._finished.set()


class RequestPipeline:
    """Executes routes with adaptation, retry, classification and decoding.

    Args:
        transport: Executes requests. Defaults to an :class:`HttpxTransport`
            built from ``config.request``.
        adapter: Optional request adapter applied to every attempt.
        retrier: Optional retry policy consulted after every attempt.
        serializer: Decodes typed results. Defaults to
            :class:`~netpipe.client.serializer.JSONSerializer`.
        classifier: Maps status codes to outcomes.
        cache: Optional result cache for typed GET requests.
        tracker: Transfer registry; a private one is created when omitted.
        config: Request settings (timeout, SSL, worker count).
        persist_cache: Persist *cache* to disk on :meth:`close`.
        max_workers: Worker threads; overrides ``config.request.max_workers``.

    Example::

        with RequestPipeline(retrier=BackoffRetrier()) as pipeline:
            op = pipeline.execute_typed(route, User, on_user)
            op.wait()
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        adapter: Optional[RequestAdapter] = None,
        retrier: Optional[Retrier] = None,
        serializer: Optional[Serializer] = None,
        classifier: Optional[ResponseClassifier] = None,
        cache: Optional[TTLCache] = None,
        tracker: Optional[TransferTracker] = None,
        config: Optional[GlobalConfig] = None,
        persist_cache: bool = False,
        max_workers: Optional[int] = None,
    ) -> None:
        self._config = config or GlobalConfig()
        self._transport = transport or HttpxTransport(self._config.request)
        self._adapter = adapter
        self._retrier = retrier
        self._serializer = serializer or JSONSerializer()
        self._classifier = classifier or ResponseClassifier(self._serializer)
        self._cache = cache
        self._persist_cache = persist_cache
        self._tracker = tracker or TransferTracker()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or self._config.request.max_workers,
            thread_name_prefix="netpipe",
        )
        self._lock = threading.Lock()
        self._current: Optional[Operation] = None

    @classmethod
    def from_config(cls, config: Optional[GlobalConfig] = None, **kwargs: Any) -> RequestPipeline:
        """Build a pipeline with the configured retrier and a restored cache.

        When *config* is omitted it is resolved with
        :func:`~netpipe.config.resolve_config`. The cache snapshot is
        restored now and persisted again on :meth:`close` when
        ``config.cache.persist`` is set.
        """
        from netpipe.cache import TTLCache
        from netpipe.client.policy import BackoffRetrier
        from netpipe.config import resolve_config

        config = config or resolve_config()
        cache = kwargs.pop("cache", None)
        if cache is None:
            cache = TTLCache.from_config(config.cache)
            cache.restore()
        kwargs.setdefault("retrier", BackoffRetrier(config.retry))
        kwargs.setdefault("persist_cache", config.cache.persist)
        return cls(config=config, cache=cache, **kwargs)

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> RequestPipeline:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Wait for running operations, then release the transport.

        Persists the cache when the pipeline was created with
        ``persist_cache=True``.
        """
        self._executor.shutdown(wait=True)
        self._transport.close()
        if self._cache is not None and self._persist_cache:
            self._cache.persist()

    @property
    def tracker(self) -> TransferTracker:
        return self._tracker

    # ------------------------------------------------------------------ #
    # Public operations
    # ------------------------------------------------------------------ #

    def execute(self, route: Endpoint, on_complete: CompletionHandler) -> Operation:
        """Run *route* and deliver the raw :class:`Completion`.

        The completion carries the last attempt's request, response and
        error exactly as the retrier left them; no classification happens.
        """
        op = self._track_current(Operation())
        self._submit(
            op, self._run_execute, route, op, on_complete,
            on_failure=lambda error: _deliver(on_complete, Completion(error=error)),
        )
        return op

    def execute_typed(
        self,
        route: Endpoint,
        object_type: Any,
        on_complete: ResultHandler,
    ) -> Operation:
        """Run *route*, classify the response and decode it into *object_type*.

        The callback receives ``Result(value)`` on success (``None`` for an
        empty body) or ``Result(error=...)`` with a
        :class:`~netpipe.exceptions.TransportError` (no response),
        :class:`~netpipe.exceptions.ResponseError` (non-2xx),
        :class:`~netpipe.exceptions.DecodeError`, or the build/adapter
        error that ended the operation.
        """
        op = self._track_current(Operation())
        self._submit(
            op, self._run_typed, route, object_type, op, on_complete,
            on_failure=lambda error: _deliver(on_complete, Result.failure(error)),
        )
        return op

    def upload_multipart(
        self,
        fields: Mapping[str, Union[MultipartFile, bytes]],
        route: Endpoint,
        object_type: Any,
        on_complete: ResultHandler,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Operation:
        """Upload *fields* as a multipart body to *route*.

        Progress and completion callbacks are registered with the transfer
        tracker before dispatch; cancelling the operation deregisters them.
        """
        op = Operation()
        try:
            url = route.build_request().url
        except RequestBuildError as exc:
            self._submit(op, self._resolve_now, op, on_complete, Result.failure(exc))
            return op

        self._tracker.register(url, on_progress, on_complete, operation_id=op.id)
        op._on_cancel = lambda: self._tracker.cancel(op.id)
        self._submit(
            op, self._run_upload, fields, route, object_type, op,
            on_failure=lambda error: self._tracker.complete(op.id, Result.failure(error)),
        )
        return op

    def download(
        self,
        url: str,
        on_complete: Callable[[Result[Path]], None],
        on_progress: Optional[ProgressCallback] = None,
        resume_data: Optional[bytes] = None,
        destination: Optional[Path] = None,
    ) -> Operation:
        """Stream *url* to a file and deliver its path.

        Args:
            url: Absolute URL to fetch.
            on_complete: Receives ``Result[Path]``.
            on_progress: Receives :class:`~netpipe.client.transfers.Progress`
                snapshots.
            resume_data: Bytes from a cancelled download (see
                :attr:`Operation.resume_data`); sent as a ``Range`` request.
            destination: Target file. Defaults to a unique file under the
                cache directory's ``downloads/`` folder.
        """
        op = Operation()
        self._tracker.register(url, on_progress, on_complete, operation_id=op.id)
        op._on_cancel = lambda: self._tracker.cancel(op.id)
        self._submit(
            op, self._run_download, url, resume_data, destination, op,
            on_failure=lambda error: self._tracker.complete(op.id, Result.failure(error)),
        )
        return op

    def cancel(self) -> None:
        """Cancel the most recently issued :meth:`execute`/:meth:`execute_typed` call."""
        with self._lock:
            current = self._current
        if current is not None:
            current.cancel()

    # ------------------------------------------------------------------ #
    # Workers
    # ------------------------------------------------------------------ #

    def _run_execute(self, route: Endpoint, op: Operation, on_complete: CompletionHandler) -> None:
        completion = self._perform(route, op)
        _deliver(on_complete, completion)

    def _run_typed(
        self,
        route: Endpoint,
        object_type: Any,
        op: Operation,
        on_complete: ResultHandler,
    ) -> None:
        cache_key = self._cache_key(route)
        if cache_key is not None:
            cached = self._cached_result(cache_key, object_type)
            if cached is not None:
                get_output().debug(f"Cache hit: {cache_key}")
                _deliver(on_complete, cached)
                return

        completion = self._perform(route, op)
        result = self._to_result(completion, object_type)
        if cache_key is not None and result.ok and result.value is not None:
            assert self._cache is not None
            self._cache.insert(cache_key, result.value)
        _deliver(on_complete, result)

    def _run_upload(
        self,
        fields: Mapping[str, Union[MultipartFile, bytes]],
        route: Endpoint,
        object_type: Any,
        op: Operation,
    ) -> None:
        encoder = MultipartEncoder()
        try:
            body = encoder.encode(fields)
        except NetpipeError as exc:
            self._tracker.complete(op.id, Result.failure(exc))
            return

        def attach_body(request: OutgoingRequest) -> OutgoingRequest:
            request.body = body
            request.headers["Content-Type"] = encoder.content_type
            return request

        def report(completed: int, total: int, chunk: int) -> None:
            self._tracker.progress(op.id, completed, total, chunk)

        completion = self._perform(route, op, prepare=attach_body, on_upload=report)
        self._tracker.complete(op.id, self._to_result(completion, object_type))

    def _run_download(
        self,
        url: str,
        resume_data: Optional[bytes],
        destination: Optional[Path],
        op: Operation,
    ) -> None:
        if op.cancelled:
            return
        if destination is None:
            name = url.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0] or "download"
            destination = get_cache_dir() / "downloads" / f"{op.id}-{name}"

        def report(completed: int, total: int, chunk: int) -> None:
            self._tracker.progress(op.id, completed, total, chunk)

        get_output().debug(f"Downloading {url} to {destination}")
        result: Result[Path]
        try:
            response, path = self._transport.download(
                url, destination, resume_data, on_progress=report, cancel_event=op.cancel_event,
            )
        except CancelledError as exc:
            op.resume_data = exc.resume_data
            self._tracker.complete(op.id, Result.failure(exc))
            return
        except TransportError as exc:
            result = Result.failure(exc)
        else:
            if path is None:
                outcome = self._classifier.classify_response(response)
                result = Result.failure(outcome.to_error())
            else:
                result = Result.success(path)
        self._tracker.complete(op.id, result)

    # ------------------------------------------------------------------ #
    # The attempt loop
    # ------------------------------------------------------------------ #

    def _perform(
        self,
        route: Endpoint,
        op: Operation,
        prepare: Optional[Callable[[OutgoingRequest], OutgoingRequest]] = None,
        on_upload: Optional[Callable[[int, int, int], None]] = None,
    ) -> Completion:
        """Run attempts until the retrier stops asking for more."""
        output = get_output()
        attempt = 0
        while True:
            if op.cancelled:
                return Completion(error=CancelledError())

            # 1. Build (terminal on failure)
            try:
                request = route.build_request()
            except RequestBuildError as exc:
                return Completion(error=exc)
            except Exception as exc:
                error = RequestBuildError(BuildFailure.ENCODING_FAILED, f"Endpoint failed: {exc}")
                error.__cause__ = exc
                return Completion(error=error)
            request.attempt = attempt
            if prepare is not None:
                request = prepare(request)

            # 2. Adapt (terminal on failure)
            if self._adapter is not None:
                try:
                    request = self._adapter.adapt(request.copy())
                except Exception as exc:
                    error = AdapterError(f"Request adapter failed: {exc}")
                    error.__cause__ = exc
                    return Completion(request=request, error=error)

            # 3. Dispatch
            output.debug(f"{request.method} {request.url} (attempt {attempt + 1})")
            response: Optional[RawResponse] = None
            failure: Optional[BaseException] = None
            try:
                response = self._transport.send(
                    request, on_upload=on_upload, cancel_event=op.cancel_event,
                )
            except CancelledError as exc:
                return Completion(request=request, error=exc)
            except TransportError as exc:
                failure = exc

            # 4. Retry decision
            if self._retrier is None:
                return Completion(request=request, response=response, error=failure)
            data = response.content if response is not None else None
            try:
                decision = self._retrier.decide(request, response, data, failure)
            except Exception as exc:
                return Completion(request=request, response=response, error=exc)

            if decision.action == RetryAction.RETRY:
                attempt += 1
                continue
            if decision.action == RetryAction.ABORT:
                return Completion(request=request, response=response, error=decision.error)
            return Completion(request=request, response=response, error=failure)

    def _to_result(self, completion: Completion, object_type: Any) -> Result[Any]:
        """Turn a completion into a typed result."""
        response = completion.response
        error = completion.error
        if error is not None:
            if response is None and not isinstance(error, NetpipeError):
                wrapped = TransportError(f"Request failed without a response: {error}")
                wrapped.__cause__ = error
                return Result.failure(wrapped)
            return Result.failure(error)
        if response is None:
            return Result.failure(TransportError("Request completed without a response"))

        outcome = self._classifier.classify_response(response)
        if not outcome.is_success:
            return Result.failure(outcome.to_error())
        if outcome.body is None:
            return Result.success(None)
        try:
            return Result.success(self._serializer.decode(outcome.body, object_type))
        except DecodeError as exc:
            return Result.failure(exc)
        except Exception as exc:
            error = DecodeError(f"Failed to decode response body: {exc}")
            error.__cause__ = exc
            return Result.failure(error)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _submit(
        self,
        op: Operation,
        fn: Callable[..., None],
        *args: Any,
        on_failure: Optional[Callable[[NetpipeError], None]] = None,
    ) -> None:
        """Run *fn* on a worker; *on_failure* resolves the operation if *fn* raises."""

        def run() -> None:
            try:
                fn(*args)
            except Exception as exc:
                get_output().error(f"Operation {op.id} failed unexpectedly: {exc}")
                if on_failure is not None:
                    error = TransportError(f"Operation failed unexpectedly: {exc}")
                    error.__cause__ = exc
                    on_failure(error)
            finally:
                op._finish()

        self._executor.submit(run)

    def _track_current(self, op: Operation) -> Operation:
        with self._lock:
            self._current = op
        return op

    @staticmethod
    def _resolve_now(op: Operation, on_complete: ResultHandler, result: Result[Any]) -> None:
        _deliver(on_complete, result)

    def _cache_key(self, route: Endpoint) -> Optional[str]:
        if self._cache is None:
            return None
        try:
            request = route.build_request()
        except Exception:
            return None
        if request.method != "GET":
            return None
        return f"GET {request.url}"

    def _cached_result(self, key: str, object_type: Any) -> Optional[Result[Any]]:
        assert self._cache is not None
        value = self._cache.lookup(key)
        if value is None:
            return None
        convert = getattr(self._serializer, "convert", None)
        if convert is None:
            return Result.success(value)
        try:
            return Result.success(convert(value, object_type))
        except DecodeError:
            self._cache.remove(key)
            return None


def _deliver(callback: Callable[[Any], None], value: Any) -> None:
    """Invoke a caller callback; an exception it raises is reported, not re-delivered."""
    try:
        callback(value)
    except Exception as exc:
        get_output().warning(f"Completion callback raised: {exc}")
