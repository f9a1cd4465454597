"""Task-based request execution over :mod:`httpx` with byte-progress events.

The pipeline talks to a :class:`Transport`: ``send`` runs one request to
completion and ``download`` streams a body to disk. Both report bytes as
they move and honour a cancellation event between chunks.

:class:`HttpxTransport` is the default implementation. It owns an
:class:`httpx.Client` built from :class:`~netpipe.models.RequestConfig`,
or wraps one supplied by the caller (which is how tests plug in an
:class:`httpx.MockTransport`).
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol, runtime_checkable

import httpx

from netpipe.client.request import OutgoingRequest, RawResponse
from netpipe.exceptions import CancelledError, TransportError
from netpipe.models import RequestConfig

ByteProgress = Callable[[int, int, int], None]
"""Called with ``(completed, total, chunk)``; ``total`` is ``0`` when unknown."""

DEFAULT_CHUNK_SIZE = 64 * 1024

# Everything httpx raises while sending or reading a response.
_HTTPX_FAILURES = (httpx.HTTPError, httpx.StreamError, httpx.InvalidURL)


@runtime_checkable
class Transport(Protocol):
    """Executes requests and reports byte progress."""

    def send(
        self,
        request: OutgoingRequest,
        on_upload: Optional[ByteProgress] = None,
        on_download: Optional[ByteProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RawResponse:
        """Send *request* and return the fully read response.

        Raises:
            TransportError: On any httpx failure, including timeouts,
                undecodable bodies and redirect loops.
            CancelledError: If *cancel_event* is set mid-transfer.
        """
        ...

    def download(
        self,
        url: str,
        destination: Path,
        resume_data: Optional[bytes] = None,
        on_progress: Optional[ByteProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> tuple[RawResponse, Optional[Path]]:
        """Stream *url* into *destination*.

        Returns:
            The response (with an empty body on success) and the written
            path, or ``None`` as path when the status was not 2xx, in
            which case the response carries the error body.
        """
        ...

    def close(self) -> None:
        ...


class HttpxTransport:
    """:class:`Transport` backed by a blocking :class:`httpx.Client`.

    Args:
        config: Timeout, SSL verification and redirect settings used when
            the transport builds its own client.
        client: Pre-built client to use instead. The transport closes it on
            :meth:`close` either way.
        chunk_size: Granularity of progress events, in bytes.
    """

    def __init__(
        self,
        config: Optional[RequestConfig] = None,
        client: Optional[httpx.Client] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        config = config or RequestConfig()
        self._chunk_size = chunk_size
        self._client = client or httpx.Client(
            timeout=config.timeout,
            verify=config.verify_ssl,
            follow_redirects=config.follow_redirects,
        )

    def send(
        self,
        request: OutgoingRequest,
        on_upload: Optional[ByteProgress] = None,
        on_download: Optional[ByteProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RawResponse:
        headers = request.headers.copy()
        content: Optional[object] = request.body
        if request.body is not None and on_upload is not None:
            # An explicit length keeps httpx from switching to chunked encoding.
            headers["Content-Length"] = str(len(request.body))
            content = self._upload_chunks(request.body, on_upload, cancel_event)

        try:
            http_request = self._client.build_request(
                request.method,
                request.url,
                headers=headers,
                content=content,
                timeout=request.timeout,
            )
            response = self._client.send(http_request, stream=True)
        except _HTTPX_FAILURES as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc}") from exc

        try:
            total = _content_length(response)
            body = bytearray()
            for chunk in response.iter_bytes(self._chunk_size):
                _check_cancelled(cancel_event)
                body.extend(chunk)
                if on_download is not None:
                    on_download(len(body), total, len(chunk))
        except _HTTPX_FAILURES as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc}") from exc
        finally:
            response.close()

        return RawResponse(
            status_code=response.status_code,
            headers=response.headers,
            content=bytes(body),
            url=str(response.url),
        )

    def download(
        self,
        url: str,
        destination: Path,
        resume_data: Optional[bytes] = None,
        on_progress: Optional[ByteProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> tuple[RawResponse, Optional[Path]]:
        headers = {}
        if resume_data:
            headers["Range"] = f"bytes={len(resume_data)}-"

        try:
            http_request = self._client.build_request("GET", url, headers=headers)
            response = self._client.send(http_request, stream=True)
        except _HTTPX_FAILURES as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc

        raw = RawResponse(
            status_code=response.status_code,
            headers=response.headers,
            content=b"",
            url=str(response.url),
        )
        try:
            if not raw.is_success:
                response.read()
                return RawResponse.from_httpx(response), None
            resumed = bool(resume_data) and response.status_code == 206
            prefix = resume_data if resumed and resume_data else b""
            path = self._stream_to_file(response, destination, prefix, on_progress, cancel_event)
        except _HTTPX_FAILURES as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        finally:
            response.close()
        return raw, path

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _upload_chunks(
        self,
        body: bytes,
        on_upload: ByteProgress,
        cancel_event: Optional[threading.Event],
    ) -> Iterator[bytes]:
        total = len(body)
        sent = 0
        for start in range(0, total, self._chunk_size):
            _check_cancelled(cancel_event)
            chunk = body[start:start + self._chunk_size]
            yield chunk
            sent += len(chunk)
            on_upload(sent, total, len(chunk))

    def _stream_to_file(
        self,
        response: httpx.Response,
        destination: Path,
        prefix: bytes,
        on_progress: Optional[ByteProgress],
        cancel_event: Optional[threading.Event],
    ) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(f".{destination.name}.part")
        length = _content_length(response)
        total = length + len(prefix) if length else 0
        written = len(prefix)

        with open(partial, "wb") as fh:
            fh.write(prefix)
            try:
                for chunk in response.iter_bytes(self._chunk_size):
                    _check_cancelled(cancel_event)
                    fh.write(chunk)
                    written += len(chunk)
                    if on_progress is not None:
                        on_progress(written, total, len(chunk))
            except CancelledError:
                fh.flush()
                fh.close()
                received = partial.read_bytes()
                partial.unlink()
                raise CancelledError("Download was cancelled", resume_data=received) from None
            except BaseException:
                fh.close()
                partial.unlink()
                raise

        os.replace(partial, destination)
        return destination


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CancelledError()


def _content_length(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("Content-Length", "0"))
    except ValueError:
        return 0
