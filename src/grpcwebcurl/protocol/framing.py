"""
gRPC-Web message framing.

Every request and response body is a sequence of frames. A frame header holds
a flag byte and the number of bytes in the payload.

.. code-block:: console

    +-----------------------------+--------------------+
    |             header          |  payload           |
    +-----------------------------+--------------------+
    |  Flags    | Message_Length  |  DATA ....         |
    |  uint8    |  uint32 (BE)    |                    |
    |-----------|-----------------|--------------------|

When the high bit of the flag byte is set the frame is a trailer frame whose
payload holds ``key: value`` lines in HTTP header format (e.g. the
``grpc-status`` and ``grpc-message`` of the call). Any other flag value is a
data frame carrying one serialized message. The remaining flag bits are
reserved and ignored by the decoder.

Decoding reads strictly sequentially from a blocking, file-like reader and
never reads ahead of the frame being decoded.
"""

import enum
import io
import logging
import struct
from collections import namedtuple
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from grpcwebcurl.errors import FrameError, FrameSizeError, TruncatedFrameError
from grpcwebcurl.protocol import headers

logger = logging.getLogger(__name__)


FRAME_HEADER_FORMAT = "!BI"
FRAME_HEADER_SIZE = struct.calcsize(FRAME_HEADER_FORMAT)

TRAILER_FLAG = 0x80

MAX_MESSAGE_SIZE = 16 * 1024 * 1024  # limit maximum msg size as a precaution


class FrameType(enum.IntEnum):
    DATA = 0x00
    TRAILER = 0x80


Frame = namedtuple("Frame", ("type", "payload"))

Status = namedtuple("Status", ("code", "message"))

MessageHandlerType = Callable[[bytes], None]


class DecodedResponse(object):
    """ The messages, trailers and status extracted from a response body.

    ``status`` is only set when a trailer frame carried ``grpc-status`` or
    ``grpc-message``. Callers should treat a missing status as OK, which is
    what the ``code`` property reports.
    """

    def __init__(
        self,
        messages: Optional[List[bytes]] = None,
        trailers: Optional[Dict[str, str]] = None,
        status: Optional[Status] = None,
    ) -> None:
        self.messages = messages if messages is not None else []
        self.trailers = trailers if trailers is not None else {}
        self.status = status

    @property
    def code(self) -> int:
        return self.status.code if self.status else headers.StatusCode.OK

    def __repr__(self):
        return (
            f"<DecodedResponse messages={len(self.messages)} "
            f"trailers={self.trailers} status={self.status}>"
        )


class FrameEncoder(object):
    """ Writes frames to a binary file-like object. """

    def __init__(self, writer) -> None:
        self.writer = writer

    def encode(self, message: bytes) -> None:
        """ Write *message* as a data frame. """
        self.encode_frame(Frame(FrameType.DATA, message))

    def encode_frame(self, frame: Frame) -> None:
        payload = bytes(frame.payload)
        self.writer.write(struct.pack(FRAME_HEADER_FORMAT, frame.type, len(payload)))
        self.writer.write(payload)


class FrameDecoder(object):
    """ Reads frames from a blocking binary file-like object.

    A zero byte read where a frame would start is the clean end of the
    stream. A header or payload cut short anywhere else is reported as a
    :class:`TruncatedFrameError`. Errors raised by the reader itself (such as
    socket timeouts) are propagated unchanged.
    """

    def __init__(self, reader, max_message_size: int = MAX_MESSAGE_SIZE) -> None:
        """
        :param reader: an object with a ``read(size)`` method returning bytes.

        :param max_message_size: the largest payload size accepted. A frame
          that declares a bigger payload is rejected before its payload is
          read.
        """
        self.reader = reader
        self.max_message_size = max_message_size

    def __iter__(self) -> Iterator[Frame]:
        while True:
            frame = self.decode_frame()
            if frame is None:
                return
            yield frame

    def decode_frame(self) -> Optional[Frame]:
        """ Decode the next frame.

        :returns: a Frame, or None at the end of the stream.
        """
        header = self._read(FRAME_HEADER_SIZE)
        if not header:
            return None

        if len(header) < FRAME_HEADER_SIZE:
            raise TruncatedFrameError(
                f"truncated frame header: got {len(header)} of "
                f"{FRAME_HEADER_SIZE} bytes"
            )

        flags, msg_len = struct.unpack(FRAME_HEADER_FORMAT, header)

        if msg_len > self.max_message_size:
            raise FrameSizeError(msg_len, self.max_message_size)

        payload = self._read(msg_len) if msg_len else b""
        if len(payload) < msg_len:
            raise TruncatedFrameError(
                f"corrupt frame: expected {msg_len} payload bytes, "
                f"got {len(payload)}"
            )

        frame_type = FrameType.TRAILER if flags & TRAILER_FLAG else FrameType.DATA
        logger.debug(f"Decoded {frame_type.name} frame with {msg_len} bytes")
        return Frame(frame_type, payload)

    def decode(self) -> Optional[bytes]:
        """ Return the payload of the next data frame, skipping trailers.

        :returns: the message payload, or None at the end of the stream.
        """
        for frame in self:
            if frame.type == FrameType.DATA:
                return frame.payload
        return None

    def decode_all(self) -> List[Frame]:
        """ Decode frames until the end of the stream.

        :raises: FrameError if a frame can't be decoded. The frames decoded
          before the failure are available in the exception's ``frames``
          attribute.
        """
        frames = []  # type: List[Frame]
        try:
            for frame in self:
                frames.append(frame)
        except FrameError as exc:
            exc.frames = frames
            raise
        return frames

    def _read(self, size: int) -> bytes:
        # Readers such as raw sockets may return fewer bytes than requested
        # before the end of the stream, so keep reading until satisfied.
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self.reader.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)


def encode_frame(frame: Frame) -> bytes:
    """ Return a single frame as bytes. """
    buffer = io.BytesIO()
    FrameEncoder(buffer).encode_frame(frame)
    return buffer.getvalue()


def encode_message(message: bytes) -> bytes:
    """ Return *message* wrapped in a data frame. """
    return encode_frame(Frame(FrameType.DATA, message))


def encode_trailer(trailers: Dict[str, str]) -> bytes:
    """ Return a trailer frame holding *trailers* as HTTP header lines. """
    payload = "".join(f"{key}: {value}\r\n" for key, value in trailers.items())
    return encode_frame(Frame(FrameType.TRAILER, payload.encode("utf-8")))


def parse_trailers(payload: bytes) -> Tuple[Dict[str, str], Optional[Status]]:
    """ Parse the payload of a trailer frame.

    Keys are lower-cased. Blank lines and lines without a colon are skipped.
    When a key repeats the last value wins.

    :returns: a tuple containing a dict of trailers and a Status, or None if
      neither ``grpc-status`` nor ``grpc-message`` is present.
    """
    trailers = {}  # type: Dict[str, str]
    for line in payload.decode("utf-8", errors="replace").split("\n"):
        line = line.rstrip("\r")
        if not line:
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        trailers[key.strip().lower()] = value.strip()

    if headers.GRPC_STATUS not in trailers and headers.GRPC_MESSAGE not in trailers:
        return trailers, None

    return trailers, _status_from_trailers(trailers)


def _status_from_trailers(trailers: Dict[str, str]) -> Status:
    return Status(
        headers.parse_status_code(trailers.get(headers.GRPC_STATUS, "")),
        trailers.get(headers.GRPC_MESSAGE, ""),
    )


def read_response(
    reader,
    on_message: Optional[MessageHandlerType] = None,
    max_message_size: int = MAX_MESSAGE_SIZE,
) -> DecodedResponse:
    """ Decode a whole response body from *reader*.

    Data frames are collected in arrival order and trailer frames are merged
    into a single trailers dict.

    :param on_message: an optional callback invoked with each message payload
      as soon as its frame is decoded and before the next frame is read. An
      exception raised by the callback stops decoding and is propagated.

    :param max_message_size: the largest frame payload accepted.
    """
    response = DecodedResponse()
    saw_status = False

    for frame in FrameDecoder(reader, max_message_size=max_message_size):
        if frame.type == FrameType.DATA:
            if on_message:
                on_message(frame.payload)
            response.messages.append(frame.payload)
        else:
            trailers, status = parse_trailers(frame.payload)
            response.trailers.update(trailers)
            saw_status = saw_status or status is not None

    if saw_status:
        response.status = _status_from_trailers(response.trailers)

    return response


def decode_response(
    data: bytes, max_message_size: int = MAX_MESSAGE_SIZE
) -> DecodedResponse:
    """ Decode a complete response body held in memory. """
    return read_response(io.BytesIO(data), max_message_size=max_message_size)


def decode_message(data: bytes) -> Optional[bytes]:
    """ Return the payload of the first data frame in *data*. """
    return FrameDecoder(io.BytesIO(data)).decode()
