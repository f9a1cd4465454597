"""``multipart/form-data`` body encoding for file uploads.

Wire format, per field and in mapping order::

    --{boundary}\\r\\n
    Content-Disposition: form-data; name="{field}"; filename="{filename}"\\r\\n
    Content-Type: {mime}\\r\\n
    \\r\\n
    {bytes}\\r\\n

followed by the closing ``--{boundary}--``. Encoding is pure: no I/O and
no state beyond the boundary token.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from netpipe.exceptions import EncodingError
from netpipe.models import MimeType

_MAX_BOUNDARY_ATTEMPTS = 8


@dataclass(frozen=True)
class MultipartFile:
    """One file part of a multipart body."""

    filename: str
    mime_type: str
    data: bytes

    @classmethod
    def from_mime(
        cls,
        data: bytes,
        mime: MimeType,
        name: Optional[str] = None,
    ) -> MultipartFile:
        """Build a part whose file name carries *mime*'s extension.

        When *name* is omitted the current UNIX timestamp is used, so
        ``from_mime(png_bytes, MimeType.PNG)`` yields e.g.
        ``1712345678.123.png``.
        """
        stem = name if name is not None else f"{time.time()}"
        return cls(filename=f"{stem}.{mime.extension}", mime_type=mime.value, data=data)


def _generate_boundary() -> str:
    return f"Boundary-{str(uuid.uuid4()).upper()}"


class MultipartEncoder:
    """Builds a multipart body from a mapping of field name to file part.

    Args:
        boundary: Fixed boundary token. When omitted, every :meth:`encode`
            call generates a fresh one, regenerated if it happens to occur
            inside a part. Read :attr:`content_type` after encoding.

    Example::

        encoder = MultipartEncoder()
        body = encoder.encode({"photo": MultipartFile("a.png", "image/png", data)})
        headers = {"Content-Type": encoder.content_type}
    """

    def __init__(self, boundary: Optional[str] = None) -> None:
        self._fixed = boundary is not None
        self._boundary: Optional[str] = boundary

    @property
    def boundary(self) -> str:
        """Boundary of the last encoded body."""
        if self._boundary is None:
            self._boundary = _generate_boundary()
        return self._boundary

    @property
    def content_type(self) -> str:
        """``Content-Type`` header value announcing the boundary."""
        return f"multipart/form-data; boundary={self.boundary}"

    def encode(self, fields: Mapping[str, Union[MultipartFile, bytes]]) -> bytes:
        """Encode *fields* into a single body.

        Raw ``bytes`` values are sent as ``application/octet-stream`` with
        the field name as file name.

        Raises:
            EncodingError: If a fixed boundary occurs inside a part, or no
                collision-free boundary could be generated.
        """
        parts = {name: _as_part(name, value) for name, value in fields.items()}
        if not self._fixed:
            self._boundary = _generate_boundary()
        for _ in range(_MAX_BOUNDARY_ATTEMPTS):
            if not self._collides(parts):
                return self._render(parts)
            if self._fixed:
                raise EncodingError(
                    f"Boundary {self._boundary!r} occurs inside the multipart payload"
                )
            self._boundary = _generate_boundary()
        raise EncodingError("Could not generate a boundary absent from the payload")

    def _collides(self, parts: Mapping[str, MultipartFile]) -> bool:
        token = self.boundary.encode("utf-8")
        return any(token in part.data for part in parts.values())

    def _render(self, parts: Mapping[str, MultipartFile]) -> bytes:
        boundary = self.boundary
        chunks: list[bytes] = []
        for name, part in parts.items():
            chunks.append(f"--{boundary}\r\n".encode("utf-8"))
            chunks.append(
                f'Content-Disposition: form-data; name="{name}"; '
                f'filename="{part.filename}"\r\n'.encode("utf-8")
            )
            chunks.append(f"Content-Type: {part.mime_type}\r\n\r\n".encode("utf-8"))
            chunks.append(part.data)
            chunks.append(b"\r\n")
        chunks.append(f"--{boundary}--".encode("utf-8"))
        return b"".join(chunks)


def _as_part(name: str, value: Union[MultipartFile, bytes]) -> MultipartFile:
    if isinstance(value, MultipartFile):
        return value
    return MultipartFile(filename=name, mime_type="application/octet-stream", data=bytes(value))
