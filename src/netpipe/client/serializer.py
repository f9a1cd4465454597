"""Serialization boundary between raw bodies and Python objects.

The pipeline decodes success bodies and error payloads through a
:class:`Serializer`. :class:`JSONSerializer` is the default and validates
JSON against any type Pydantic understands: ``BaseModel`` subclasses,
dataclasses, ``TypedDict``, builtin containers, or ``Any`` for plain JSON
data. Models that need snake_case conversion should declare an
``alias_generator`` in their ``model_config``.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import TypeAdapter, ValidationError

from netpipe.exceptions import DecodeError, EncodingError


@runtime_checkable
class Serializer(Protocol):
    """Turns bytes into typed objects and back."""

    def decode(self, data: bytes, object_type: Any) -> Any:
        """Decode *data* into an instance of *object_type*.

        Raises:
            DecodeError: If the data is malformed or does not match the type.
        """
        ...

    def encode(self, value: Any) -> bytes:
        """Encode *value* to bytes.

        Raises:
            EncodingError: If the value cannot be serialised.
        """
        ...


class JSONSerializer:
    """Pydantic-backed JSON serializer. Adapters are built once per type."""

    def __init__(self) -> None:
        self._adapters: dict[Any, TypeAdapter] = {}

    def decode(self, data: bytes, object_type: Any = Any) -> Any:
        try:
            return self._adapter(object_type).validate_json(data)
        except ValidationError as exc:
            raise DecodeError(f"Failed to decode {_type_name(object_type)}: {exc}") from exc

    def encode(self, value: Any) -> bytes:
        try:
            return self._adapter(type(value)).dump_json(value)
        except (ValueError, TypeError) as exc:
            raise EncodingError(f"Failed to encode {type(value).__name__}: {exc}") from exc

    def convert(self, value: Any, object_type: Any = Any) -> Any:
        """Validate an already-decoded Python value into *object_type*.

        Used for values coming back from the result cache, which may have
        been restored from a JSON snapshot as plain data.
        """
        try:
            return self._adapter(object_type).validate_python(value)
        except ValidationError as exc:
            raise DecodeError(f"Failed to convert to {_type_name(object_type)}: {exc}") from exc

    def _adapter(self, object_type: Any) -> TypeAdapter:
        try:
            adapter = self._adapters.get(object_type)
        except TypeError:
            # Unhashable type expressions are rebuilt on every call.
            return TypeAdapter(object_type)
        if adapter is None:
            adapter = TypeAdapter(object_type)
            self._adapters[object_type] = adapter
        return adapter


def _type_name(object_type: Any) -> str:
    return getattr(object_type, "__name__", repr(object_type))
