"""Tests for multipart/form-data encoding."""

from __future__ import annotations

import re
from unittest.mock import patch

import pytest

from netpipe.client.multipart import MultipartEncoder, MultipartFile
from netpipe.exceptions import EncodingError
from netpipe.models import MimeType


class TestEncode:
    def test_single_field_wire_format(self) -> None:
        encoder = MultipartEncoder(boundary="B")
        body = encoder.encode({"photo": MultipartFile("a.png", "image/png", b"X")})
        assert body == (
            b'--B\r\nContent-Disposition: form-data; name="photo"; filename="a.png"\r\n'
            b"Content-Type: image/png\r\n\r\nX\r\n--B--"
        )

    def test_fields_in_mapping_order(self) -> None:
        encoder = MultipartEncoder(boundary="B")
        body = encoder.encode({
            "second": MultipartFile("2.jpg", "image/jpeg", b"two"),
            "first": MultipartFile("1.png", "image/png", b"one"),
        })
        assert body.index(b'name="second"') < body.index(b'name="first"')
        assert body.count(b"--B\r\n") == 2
        assert body.endswith(b"\r\n--B--")

    def test_empty_mapping_is_only_closing_marker(self) -> None:
        assert MultipartEncoder(boundary="B").encode({}) == b"--B--"

    def test_raw_bytes_become_octet_stream(self) -> None:
        body = MultipartEncoder(boundary="B").encode({"blob": b"\x00\x01"})
        assert b'name="blob"; filename="blob"' in body
        assert b"Content-Type: application/octet-stream\r\n\r\n\x00\x01\r\n" in body

    def test_binary_payload_is_untouched(self) -> None:
        payload = bytes(range(256))
        body = MultipartEncoder(boundary="B-unique").encode(
            {"f": MultipartFile("f.bin", "application/octet-stream", payload)}
        )
        assert payload in body


class TestBoundary:
    def test_generated_boundaries_differ(self) -> None:
        assert MultipartEncoder().boundary != MultipartEncoder().boundary

    def test_generated_boundary_format(self) -> None:
        assert re.fullmatch(r"Boundary-[0-9A-F-]{36}", MultipartEncoder().boundary)

    def test_content_type_announces_boundary(self) -> None:
        encoder = MultipartEncoder(boundary="xyz")
        assert encoder.content_type == "multipart/form-data; boundary=xyz"

    def test_fixed_boundary_collision_raises(self) -> None:
        encoder = MultipartEncoder(boundary="B")
        with pytest.raises(EncodingError):
            encoder.encode({"f": MultipartFile("f.txt", "text/plain", b"contains B")})

    def test_each_encode_gets_a_fresh_boundary(self) -> None:
        encoder = MultipartEncoder()
        fields = {"f": MultipartFile("f.txt", "text/plain", b"x")}
        first_body = encoder.encode(fields)
        first = encoder.boundary
        second_body = encoder.encode(fields)
        assert encoder.boundary != first
        assert first_body.startswith(f"--{first}\r\n".encode())
        assert second_body.startswith(f"--{encoder.boundary}\r\n".encode())
        assert encoder.content_type == f"multipart/form-data; boundary={encoder.boundary}"

    def test_fixed_boundary_is_reused(self) -> None:
        encoder = MultipartEncoder(boundary="B")
        encoder.encode({"f": b"x"})
        encoder.encode({"f": b"y"})
        assert encoder.boundary == "B"

    def test_generated_boundary_regenerated_on_collision(self) -> None:
        with patch(
            "netpipe.client.multipart._generate_boundary",
            side_effect=["Boundary-1", "Boundary-2"],
        ):
            encoder = MultipartEncoder()
            body = encoder.encode({"f": MultipartFile("f.txt", "text/plain", b"Boundary-1")})
        assert encoder.boundary == "Boundary-2"
        assert body.startswith(b"--Boundary-2\r\n")


class TestMultipartFile:
    def test_from_mime_appends_extension(self) -> None:
        part = MultipartFile.from_mime(b"data", MimeType.JPEG, name="avatar")
        assert part.filename == "avatar.jpg"
        assert part.mime_type == "image/jpeg"

    def test_from_mime_defaults_to_timestamp(self) -> None:
        with patch("netpipe.client.multipart.time.time", return_value=1700000000.5):
            part = MultipartFile.from_mime(b"data", MimeType.PNG)
        assert part.filename == "1700000000.5.png"

    def test_mime_extensions(self) -> None:
        assert MimeType.PNG.extension == "png"
        assert MimeType.JPEG.extension == "jpg"
