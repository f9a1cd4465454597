"""Status-code classification of HTTP responses into typed outcomes.

The mapping, in precedence order:

======================  ==============================================
status                  outcome
======================  ==============================================
200-299                 success, body or ``None`` when empty
400, 404                ``GENERIC_FAILURE`` with the decoded error body
401-500 (others)        ``UNAUTHORIZED``
501-599                 ``GENERIC_FAILURE`` (server error), no payload
anything else           ``GENERIC_FAILURE``, no payload
======================  ==============================================

Older releases carried a ``BAD_REQUEST`` branch for "501...500", a range
that can never match. It is gone; 5xx responses above 500 have their own
explicit branch and keep the generic-failure outcome callers already
observe.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from netpipe.client.request import RawResponse
from netpipe.client.serializer import JSONSerializer, Serializer
from netpipe.exceptions import DecodeError, ResponseError
from netpipe.models import FailureKind

SUCCESS_STATUSES = range(200, 300)
PAYLOAD_STATUSES = frozenset({400, 404})
UNAUTHORIZED_STATUSES = range(401, 501)
SERVER_ERROR_STATUSES = range(501, 600)


@dataclass(frozen=True)
class ResponseOutcome:
    """Either a success carrying the body or a failure carrying a kind.

    Attributes:
        status_code: The classified status code.
        body: Success body, ``None`` for an empty success or any failure.
        kind: Failure category, ``None`` on success.
        payload: Decoded error body for failures that carry one.
    """

    status_code: int
    body: Optional[bytes] = None
    kind: Optional[FailureKind] = None
    payload: Optional[Any] = None

    @property
    def is_success(self) -> bool:
        return self.kind is None

    def to_error(self) -> ResponseError:
        """Build the :class:`~netpipe.exceptions.ResponseError` for a failure."""
        if self.kind is None:
            raise ValueError("A successful outcome has no error")
        return ResponseError(self.kind, payload=self.payload, status_code=self.status_code)


class ResponseClassifier:
    """Maps a status code and body to a :class:`ResponseOutcome`.

    Args:
        serializer: Used to decode error payloads for 400/404 responses.
        error_type: Type the error payload is decoded into. Plain JSON data
            when omitted.
    """

    def __init__(
        self,
        serializer: Optional[Serializer] = None,
        error_type: Any = Any,
    ) -> None:
        self._serializer = serializer or JSONSerializer()
        self._error_type = error_type

    def classify(self, status_code: int, body: Optional[bytes] = None) -> ResponseOutcome:
        if status_code in SUCCESS_STATUSES:
            return ResponseOutcome(status_code, body=body or None)
        if status_code in PAYLOAD_STATUSES:
            return ResponseOutcome(
                status_code,
                kind=FailureKind.GENERIC_FAILURE,
                payload=self._decode_payload(body),
            )
        if status_code in UNAUTHORIZED_STATUSES:
            return ResponseOutcome(status_code, kind=FailureKind.UNAUTHORIZED)
        if status_code in SERVER_ERROR_STATUSES:
            return ResponseOutcome(status_code, kind=FailureKind.GENERIC_FAILURE)
        return ResponseOutcome(status_code, kind=FailureKind.GENERIC_FAILURE)

    def classify_response(self, response: RawResponse) -> ResponseOutcome:
        return self.classify(response.status_code, response.content)

    def _decode_payload(self, body: Optional[bytes]) -> Optional[Any]:
        if not body:
            return None
        try:
            return self._serializer.decode(body, self._error_type)
        except DecodeError:
            return None
