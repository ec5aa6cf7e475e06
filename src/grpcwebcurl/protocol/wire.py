"""
A schema-free walker over the protocol buffers binary wire format.

A protobuf message is a sequence of tagged fields. Each field starts with a
tag varint holding the field number and the wire type, followed by a value
whose size is implied by the wire type.

.. code-block:: console

    +------------------------------+---------------------------------+
    |  tag (varint)                |  value                          |
    +------------------------------+---------------------------------+
    |  field_number << 3 | type    |  varint | 8 bytes | 4 bytes |   |
    |                              |  length (varint) + bytes        |
    +------------------------------+---------------------------------+

The walker knows nothing about message schemas. It is used to pick specific
fields out of payloads for which no compiled schema is available (such as
server reflection responses) and to hand encode small requests.

All varint arithmetic and all bounds checking of untrusted input happens in
this module. Malformed input raises :class:`WireDecodeError`, never an
IndexError.
"""

import enum
import logging
from collections import namedtuple
from typing import Iterator, Optional, Tuple, Union

from grpcwebcurl.errors import WireDecodeError

logger = logging.getLogger(__name__)


MAX_VARINT_SIZE = 10  # a 64-bit value needs at most 10 groups of 7 bits
UINT64_MASK = (1 << 64) - 1


class WireType(enum.IntEnum):
    VARINT = 0
    FIXED64 = 1
    LENGTH_DELIMITED = 2
    FIXED32 = 5


# value is an int for VARINT, FIXED64 and FIXED32 fields and a bytes object
# for LENGTH_DELIMITED fields.
WireField = namedtuple("WireField", ("number", "wire_type", "value"))

BufferType = Union[bytes, bytearray, memoryview]


def decode_varint(data: BufferType, pos: int = 0) -> Tuple[int, int]:
    """ Decode a base-128 varint starting at *pos*.

    :returns: a tuple containing the decoded value and the position of the
      first byte after the varint.

    :raises: WireDecodeError if the buffer ends before the varint does or if
      the varint is longer than 10 bytes.
    """
    result = 0
    shift = 0
    for _ in range(MAX_VARINT_SIZE):
        if pos >= len(data):
            raise WireDecodeError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & UINT64_MASK, pos
        shift += 7
    raise WireDecodeError(f"varint is longer than {MAX_VARINT_SIZE} bytes")


def read_field(
    data: BufferType, pos: int = 0
) -> Tuple[Optional[WireField], int]:
    """ Read the field that starts at *pos*.

    :returns: a tuple containing the next WireField and the position just past
      it. At the end of the buffer the field is None.

    :raises: WireDecodeError if the field is truncated, has an invalid field
      number or uses an unsupported (group) wire type.
    """
    if pos >= len(data):
        return None, pos

    tag, pos = decode_varint(data, pos)
    number = tag >> 3
    wire_type = tag & 0x07

    if number == 0:
        raise WireDecodeError("invalid field number 0")

    if wire_type == WireType.VARINT:
        value, pos = decode_varint(data, pos)

    elif wire_type == WireType.FIXED64:
        value, pos = _read_fixed(data, pos, 8, number)

    elif wire_type == WireType.LENGTH_DELIMITED:
        length, pos = decode_varint(data, pos)
        end = pos + length
        if end > len(data):
            raise WireDecodeError(
                f"field {number} declares {length} bytes but only "
                f"{len(data) - pos} remain"
            )
        value = bytes(data[pos:end])
        pos = end

    elif wire_type == WireType.FIXED32:
        value, pos = _read_fixed(data, pos, 4, number)

    else:
        raise WireDecodeError(f"unsupported wire type {wire_type} for field {number}")

    return WireField(number, WireType(wire_type), value), pos


def _read_fixed(data: BufferType, pos: int, size: int, number: int) -> Tuple[int, int]:
    end = pos + size
    if end > len(data):
        raise WireDecodeError(f"truncated {size * 8}-bit value in field {number}")
    return int.from_bytes(bytes(data[pos:end]), "little"), end


def iter_fields(data: BufferType) -> Iterator[WireField]:
    """ Yield every top level field in *data* in encounter order.

    :raises: WireDecodeError when malformed data is reached. Fields yielded
      before that point remain valid.
    """
    pos = 0
    while True:
        field, pos = read_field(data, pos)
        if field is None:
            return
        yield field


def find_fields(
    data: BufferType,
    number: int,
    wire_type: WireType = WireType.LENGTH_DELIMITED,
) -> Iterator[Union[int, bytes]]:
    """ Yield the values of every field matching *number* and *wire_type*.

    Fields with other numbers, and fields with the expected number but an
    unexpected wire type, are skipped.
    """
    for field in iter_fields(data):
        if field.number == number and field.wire_type == wire_type:
            yield field.value


def encode_varint(value: int) -> bytes:
    """ Encode an integer as a base-128 varint.

    Negative values are encoded as their 64-bit two's complement, which is
    how protobuf encodes negative int32/int64 values.
    """
    value &= UINT64_MASK
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_tag(number: int, wire_type: WireType) -> bytes:
    if number < 1:
        raise ValueError(f"field number must be positive, got {number}")
    return encode_varint((number << 3) | int(wire_type))


def encode_varint_field(number: int, value: int) -> bytes:
    return encode_tag(number, WireType.VARINT) + encode_varint(value)


def encode_length_delimited(number: int, payload: Union[bytes, str]) -> bytes:
    """ Encode a bytes, string or embedded message field. """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return (
        encode_tag(number, WireType.LENGTH_DELIMITED)
        + encode_varint(len(payload))
        + bytes(payload)
    )
