"""Adapter and retrier protocols plus the reference policies.

* :class:`RequestAdapter` -- mutates a copy of every outgoing request
  before dispatch (e.g. to attach credentials). A failing adapter ends the
  operation; it is never retried.
* :class:`Retrier` -- inspects each completed attempt and returns a
  :class:`RetryDecision`. The retrier owns back-off and limits: the
  pipeline has no retry cap of its own, so a retrier that always answers
  "retry" loops forever. That is a policy bug in the caller's retrier,
  not in the pipeline.

:class:`HeaderAdapter` and :class:`BackoffRetrier` cover the common cases.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Protocol, Union, runtime_checkable

from netpipe.client.request import OutgoingRequest, RawResponse
from netpipe.exceptions import TransportError
from netpipe.models import RetryConfig
from netpipe.output import get_output


@runtime_checkable
class RequestAdapter(Protocol):
    """Transforms a request before it is dispatched."""

    def adapt(self, request: OutgoingRequest) -> OutgoingRequest:
        """Return the request to send. May mutate and return *request*.

        Any exception raised here is wrapped in
        :class:`~netpipe.exceptions.AdapterError` and ends the operation.
        """
        ...


class RetryAction(str, enum.Enum):
    PROCEED = "proceed"
    RETRY = "retry"
    ABORT = "abort"


@dataclass(frozen=True)
class RetryDecision:
    """What the pipeline does with a completed attempt.

    * ``proceed`` -- surface the attempt's completion as-is.
    * ``retry`` -- rebuild the request from the route and dispatch again.
    * ``abort`` -- surface :attr:`error` and stop.
    """

    action: RetryAction
    error: Optional[BaseException] = None

    @classmethod
    def proceed(cls) -> RetryDecision:
        return cls(RetryAction.PROCEED)

    @classmethod
    def retry(cls) -> RetryDecision:
        return cls(RetryAction.RETRY)

    @classmethod
    def abort(cls, error: BaseException) -> RetryDecision:
        return cls(RetryAction.ABORT, error)


@runtime_checkable
class Retrier(Protocol):
    """Decides, once per completed attempt, whether to retry."""

    def decide(
        self,
        request: OutgoingRequest,
        response: Optional[RawResponse],
        data: Optional[bytes],
        error: Optional[BaseException],
    ) -> RetryDecision:
        ...


HeaderValue = Union[str, Callable[[], str]]


class HeaderAdapter:
    """Sets fixed or lazily computed headers on every request.

    Callable values are invoked per request, which suits short-lived
    tokens::

        HeaderAdapter({"Authorization": lambda: f"Bearer {store.token()}"})

    Adapter headers replace request headers of the same name
    (case-insensitively).
    """

    def __init__(self, headers: Mapping[str, HeaderValue]) -> None:
        self._headers = dict(headers)

    def adapt(self, request: OutgoingRequest) -> OutgoingRequest:
        for name, value in self._headers.items():
            request.headers[name] = value() if callable(value) else value
        return request


class BackoffRetrier:
    """Retries transient failures with exponential back-off.

    An attempt is transient when the transport failed or the status code is
    in ``retry_statuses``. The delay doubles each attempt: ``backoff_base``,
    then ``2 * backoff_base``, ``4 * backoff_base``, ...

    Once ``max_retries`` is exhausted, a transient *response* is surfaced
    as-is and a transport failure aborts with
    :class:`~netpipe.exceptions.TransportError`.

    Args:
        config: Retry limits and the transient status codes.
        sleep: Blocking sleep function, injectable for tests.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or RetryConfig()
        self._sleep = sleep

    def decide(
        self,
        request: OutgoingRequest,
        response: Optional[RawResponse],
        data: Optional[bytes],
        error: Optional[BaseException],
    ) -> RetryDecision:
        max_retries = self._config.max_retries
        attempt = request.attempt
        output = get_output()

        if response is None:
            if attempt < max_retries:
                delay = self._delay(attempt)
                output.debug(
                    f"Connection error: {error}, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{max_retries})"
                )
                self._sleep(delay)
                return RetryDecision.retry()
            failure = TransportError(f"Connection failed after {attempt + 1} attempts: {error}")
            if error is not None:
                failure.__cause__ = error
            return RetryDecision.abort(failure)

        if response.status_code in self._config.retry_statuses and attempt < max_retries:
            delay = self._delay(attempt)
            output.debug(
                f"Server error {response.status_code}, retrying in {delay}s "
                f"(attempt {attempt + 1}/{max_retries})"
            )
            self._sleep(delay)
            return RetryDecision.retry()

        return RetryDecision.proceed()

    def _delay(self, attempt: int) -> float:
        return self._config.backoff_base * (2 ** attempt)
