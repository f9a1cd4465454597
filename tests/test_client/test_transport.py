"""Tests for HttpxTransport: send, progress events, downloads and resume."""

from __future__ import annotations

import threading
from pathlib import Path

import httpx
import pytest

from netpipe.client.request import OutgoingRequest
from netpipe.client.transport import HttpxTransport, Transport
from netpipe.exceptions import CancelledError, TransportError


class TestSend:
    def test_returns_full_response(self, mock_transport) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.headers["x-test"] == "1"
            return httpx.Response(200, content=b'{"id": 1}', headers={"X-Server": "mock"})

        transport = mock_transport(handler)
        response = transport.send(
            OutgoingRequest("GET", "https://api.example.com/users/1", headers={"X-Test": "1"})
        )
        assert response.status_code == 200
        assert response.content == b'{"id": 1}'
        assert response.headers["x-server"] == "mock"
        assert response.url == "https://api.example.com/users/1"
        assert response.is_success

    def test_error_status_is_not_raised(self, mock_transport) -> None:
        transport = mock_transport(lambda request: httpx.Response(503, text="down"))
        response = transport.send(OutgoingRequest("GET", "https://api.example.com/x"))
        assert response.status_code == 503
        assert response.content == b"down"
        assert not response.is_success

    def test_body_is_sent(self, mock_transport) -> None:
        received: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request.content)
            return httpx.Response(201)

        transport = mock_transport(handler)
        transport.send(OutgoingRequest("POST", "https://api.example.com/x", body=b"payload"))
        assert received == [b"payload"]

    def test_download_progress_events(self, mock_transport) -> None:
        transport = mock_transport(lambda request: httpx.Response(200, content=b"0123456789"))
        events: list[tuple[int, int, int]] = []
        transport.send(
            OutgoingRequest("GET", "https://api.example.com/x"),
            on_download=lambda done, total, chunk: events.append((done, total, chunk)),
        )
        assert events[-1] == (10, 10, 2)
        assert [e[0] for e in events] == [4, 8, 10]

    def test_upload_progress_events(self, mock_transport) -> None:
        received: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request.read())
            return httpx.Response(200)

        transport = mock_transport(handler)
        events: list[tuple[int, int, int]] = []
        transport.send(
            OutgoingRequest("POST", "https://api.example.com/up", body=b"abcdefghij"),
            on_upload=lambda done, total, chunk: events.append((done, total, chunk)),
        )
        assert received == [b"abcdefghij"]
        assert events == [(4, 10, 4), (8, 10, 4), (10, 10, 2)]

    def test_timeout_becomes_transport_error(self, mock_transport) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        transport = mock_transport(handler)
        with pytest.raises(TransportError) as exc_info:
            transport.send(OutgoingRequest("GET", "https://api.example.com/slow", timeout=0.1))
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)

    def test_connection_error_becomes_transport_error(self, mock_transport) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError):
            mock_transport(handler).send(OutgoingRequest("GET", "https://api.example.com/x"))

    def test_undecodable_body_becomes_transport_error(self, mock_transport) -> None:
        transport = mock_transport(
            lambda request: httpx.Response(
                200, content=b"not gzip", headers={"Content-Encoding": "gzip"},
            )
        )
        with pytest.raises(TransportError) as exc_info:
            transport.send(OutgoingRequest("GET", "https://api.example.com/gzip"))
        assert isinstance(exc_info.value.__cause__, httpx.DecodingError)

    def test_redirect_loop_becomes_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": str(request.url)})

        client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
        transport = HttpxTransport(client=client)
        with pytest.raises(TransportError) as exc_info:
            transport.send(OutgoingRequest("GET", "https://api.example.com/loop"))
        assert isinstance(exc_info.value.__cause__, httpx.TooManyRedirects)
        transport.close()

    def test_cancel_event_stops_transfer(self, mock_transport) -> None:
        transport = mock_transport(lambda request: httpx.Response(200, content=b"x" * 20))
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(CancelledError):
            transport.send(OutgoingRequest("GET", "https://api.example.com/x"), cancel_event=cancel)

    def test_per_request_timeout_is_applied(self, mock_transport) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.extensions["timeout"])
            return httpx.Response(200)

        mock_transport(handler).send(OutgoingRequest("GET", "https://api.example.com/x", timeout=2.5))
        assert seen[0]["read"] == 2.5

    def test_is_a_transport(self, mock_transport) -> None:
        assert isinstance(mock_transport(lambda r: httpx.Response(200)), Transport)


class TestDownload:
    def test_writes_file(self, mock_transport, tmp_path: Path) -> None:
        transport = mock_transport(lambda request: httpx.Response(200, content=b"file-body"))
        destination = tmp_path / "out" / "file.bin"
        events: list[tuple[int, int, int]] = []
        response, path = transport.download(
            "https://cdn.example.com/file.bin",
            destination,
            on_progress=lambda done, total, chunk: events.append((done, total, chunk)),
        )
        assert response.status_code == 200
        assert path == destination
        assert destination.read_bytes() == b"file-body"
        assert events[-1] == (9, 9, 1)
        assert not list(destination.parent.glob(".*.part"))

    def test_error_status_returns_body_and_no_path(self, mock_transport, tmp_path: Path) -> None:
        transport = mock_transport(lambda request: httpx.Response(404, json={"message": "gone"}))
        destination = tmp_path / "missing.bin"
        response, path = transport.download("https://cdn.example.com/missing.bin", destination)
        assert path is None
        assert response.status_code == 404
        assert b"gone" in response.content
        assert not destination.exists()

    def test_cancel_keeps_resume_data(self, mock_transport, tmp_path: Path) -> None:
        transport = mock_transport(lambda request: httpx.Response(200, content=b"abcdefghijkl"))
        cancel = threading.Event()

        def on_progress(done: int, total: int, chunk: int) -> None:
            cancel.set()

        destination = tmp_path / "big.bin"
        with pytest.raises(CancelledError) as exc_info:
            transport.download(
                "https://cdn.example.com/big.bin", destination,
                on_progress=on_progress, cancel_event=cancel,
            )
        assert exc_info.value.resume_data == b"abcd"
        assert not destination.exists()
        assert not list(tmp_path.glob(".*.part"))

    def test_resume_sends_range_and_prefixes_data(self, mock_transport, tmp_path: Path) -> None:
        ranges: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            ranges.append(request.headers.get("Range", ""))
            return httpx.Response(206, content=b"efgh")

        transport = mock_transport(handler)
        events: list[tuple[int, int, int]] = []
        _, path = transport.download(
            "https://cdn.example.com/big.bin", tmp_path / "big.bin", resume_data=b"abcd",
            on_progress=lambda done, total, chunk: events.append((done, total, chunk)),
        )
        assert ranges == ["bytes=4-"]
        assert path is not None
        assert path.read_bytes() == b"abcdefgh"
        assert events == [(8, 8, 4)]

    def test_resume_ignored_by_server_restarts(self, mock_transport, tmp_path: Path) -> None:
        transport = mock_transport(lambda request: httpx.Response(200, content=b"abcdefgh"))
        _, path = transport.download(
            "https://cdn.example.com/big.bin", tmp_path / "big.bin", resume_data=b"abcd",
        )
        assert path is not None
        assert path.read_bytes() == b"abcdefgh"

    def test_connection_error(self, mock_transport, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError):
            mock_transport(handler).download("https://cdn.example.com/x", tmp_path / "x")


class TestClose:
    def test_close_closes_client(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        HttpxTransport(client=client).close()
        assert client.is_closed
