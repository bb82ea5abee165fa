"""Minimal protobuf wire-format scanner for custom option bytes.

Custom options are declared in ``masterdata_options.proto`` as extensions.
The descriptor runtime keeps them as unknown fields, so they are decoded
here directly from the serialized options message instead of through a
generated extension registry.
"""

from collections.abc import Iterator
from typing import NamedTuple

from masterforge.errors import WireFormatError

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH_DELIMITED = 2
WIRE_FIXED32 = 5

_MAX_VARINT_BYTES = 10


class WireField(NamedTuple):
    number: int
    wire_type: int
    value: int | bytes


def read_varint(data: bytes, pos: int) -> tuple[int, int]:
    """Decode a base-128 varint at ``pos``.

    Returns:
        The unsigned value and the position after it.

    Raises:
        WireFormatError: If the varint is truncated or longer than 10 bytes.
    """
    result = 0
    shift = 0
    for i in range(_MAX_VARINT_BYTES):
        if pos + i >= len(data):
            raise WireFormatError(f"truncated varint at offset {pos}")
        byte = data[pos + i]
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos + i + 1
        shift += 7
    raise WireFormatError(f"varint longer than {_MAX_VARINT_BYTES} bytes at offset {pos}")


def iter_fields(data: bytes) -> Iterator[WireField]:
    """Yield every top-level record of a serialized message."""
    pos = 0
    end = len(data)
    while pos < end:
        key, pos = read_varint(data, pos)
        number, wire_type = key >> 3, key & 0x07
        if number == 0:
            raise WireFormatError(f"invalid field number 0 at offset {pos}")

        if wire_type == WIRE_VARINT:
            value, pos = read_varint(data, pos)
            yield WireField(number, wire_type, value)
        elif wire_type == WIRE_FIXED64:
            if pos + 8 > end:
                raise WireFormatError(f"truncated 64-bit field {number}")
            yield WireField(number, wire_type, int.from_bytes(data[pos : pos + 8], "little"))
            pos += 8
        elif wire_type == WIRE_LENGTH_DELIMITED:
            length, pos = read_varint(data, pos)
            if pos + length > end:
                raise WireFormatError(f"truncated length-delimited field {number}")
            yield WireField(number, wire_type, data[pos : pos + length])
            pos += length
        elif wire_type == WIRE_FIXED32:
            if pos + 4 > end:
                raise WireFormatError(f"truncated 32-bit field {number}")
            yield WireField(number, wire_type, int.from_bytes(data[pos : pos + 4], "little"))
            pos += 4
        else:
            raise WireFormatError(f"unsupported wire type {wire_type} for field {number}")


def to_int32(value: int) -> int:
    """Reinterpret a decoded varint as a signed 32-bit integer."""
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


class ProtoWireReader:
    """Random access to the records of one serialized message.

    Scalar getters return the last occurrence of a field, matching protobuf
    merge semantics, and ``None`` when the field is absent.
    """

    def __init__(self, data: bytes) -> None:
        self._fields = list(iter_fields(data))

    def has(self, number: int) -> bool:
        return any(f.number == number for f in self._fields)

    def _last(self, number: int, wire_type: int) -> int | bytes | None:
        for f in reversed(self._fields):
            if f.number == number:
                if f.wire_type != wire_type:
                    raise WireFormatError(f"field {number} has wire type {f.wire_type}, expected {wire_type}")
                return f.value
        return None

    def get_varint(self, number: int) -> int | None:
        value = self._last(number, WIRE_VARINT)
        return None if value is None else to_int32(value)

    def get_bool(self, number: int) -> bool | None:
        value = self._last(number, WIRE_VARINT)
        return None if value is None else bool(value)

    def get_string(self, number: int) -> str | None:
        value = self._last(number, WIRE_LENGTH_DELIMITED)
        if value is None:
            return None
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WireFormatError(f"field {number} is not valid UTF-8") from e

    def get_repeated_bytes(self, number: int) -> list[bytes]:
        """All length-delimited occurrences of a field, in order."""
        values: list[bytes] = []
        for f in self._fields:
            if f.number == number:
                if f.wire_type != WIRE_LENGTH_DELIMITED:
                    raise WireFormatError(f"field {number} is not length-delimited")
                values.append(f.value)
        return values
