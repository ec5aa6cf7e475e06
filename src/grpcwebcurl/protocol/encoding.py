""" This module contains the gRPC-Web body encodings.

gRPC-Web defines two ways of carrying the framed body over HTTP. The binary
mode (``application/grpc-web+proto``) sends the frames as-is. The text mode
(``application/grpc-web-text+proto``) base64 encodes the frames so the body
can pass through proxies and user agents that only handle text.
"""

import abc
import base64
import binascii
import re
from collections import namedtuple
from typing import Dict, Optional, Tuple

from grpcwebcurl.protocol.headers import (
    CONTENT_TYPE_GRPC_WEB,
    CONTENT_TYPE_GRPC_WEB_TEXT,
)

ENCODING_PROTO = "proto"
ENCODING_TEXT = "text"

# A text mode response may be a concatenation of separately padded chunks
_BASE64_SEGMENT_RE = re.compile(rb"[^=]+=*|=+")


codec = namedtuple("codec", ("content_type", "encoder"))


class IBodyEncoder(abc.ABC):
    """
    This class represents the base interface for a body encoder.
    """

    @abc.abstractmethod  # pragma: no branch
    def encode(self, data: bytes) -> bytes:
        """ Returns the framed body ready to send """

    @abc.abstractmethod  # pragma: no branch
    def decode(self, data: bytes) -> bytes:
        """ Returns the framed body held in a received body """


class BodyEncodingRegistry(object):
    """ This registry keeps track of body encodings.

    A convenience name or the specific content-type string can be used to
    reference a specific encoding.
    """

    def __init__(self) -> None:
        self._encoders = {}  # type: Dict[str, codec]
        self._default_codec = None  # type: Optional[str]
        self.type_to_name = {}  # type: Dict[str, str]
        self.name_to_type = {}  # type: Dict[str, str]

    def register(self, name: str, encoder: IBodyEncoder, content_type: str) -> None:
        """ Register a new body encoding.

        :param name: A convenience name for the encoding (e.g. text).

        :param encoder: An object that implements the IBodyEncoder interface.

        :param content_type: The mime-type sent for bodies using this encoding.
        """
        if not isinstance(encoder, IBodyEncoder):
            raise ValueError(
                f"Invalid encoder '{name}'. Expected an instance of IBodyEncoder"
            )

        self._encoders[name] = codec(content_type, encoder)

        # map convenience name to mime-type and back again.
        self.type_to_name[content_type] = name
        self.name_to_type[name] = content_type

    def set_default(self, name_or_type: str) -> None:
        name, _content_type = self._resolve(name_or_type)
        self._default_codec = name

    @property
    def encoders(self):
        """ Return a dict of the available encodings (codecs) """
        return self._encoders

    def get_codec(self, name_or_type: Optional[str] = None) -> codec:
        """ Return codec attributes for a specific encoding.

        :param name_or_type: The convenience name or the mime-type of the
          encoding. Defaults to the registry default.
        """
        name, _content_type = self._resolve(name_or_type)
        return self._encoders[name]

    def encode(
        self, data: bytes, name_or_type: Optional[str] = None
    ) -> Tuple[str, bytes]:
        """ Encode a framed request body.

        :returns: A tuple containing the content type to send and the
          encoded body.
        """
        content_type, encoder = self.get_codec(name_or_type)
        return content_type, encoder.encode(data)

    def decode(self, data: bytes, name_or_type: Optional[str] = None) -> bytes:
        """ Recover the framed body from a received body. """
        _content_type, encoder = self.get_codec(name_or_type)
        return encoder.decode(data)

    def _resolve(self, name_or_type: Optional[str]) -> Tuple[str, str]:
        """ Resolve the encoding name and mime-type.

        Content-type parameters (e.g. ``; charset=utf-8``) are ignored.

        Raises:
            ValueError: If the encoding requested is not available.
        """
        if name_or_type is None:
            name_or_type = self._default_codec

        if name_or_type in self.name_to_type:
            name = name_or_type
            content_type = self.name_to_type[name]
        else:
            content_type = (name_or_type or "").split(";", 1)[0].strip().lower()
            if content_type not in self.type_to_name:
                raise ValueError(f"Invalid encoding '{name_or_type}'")
            name = self.type_to_name[content_type]

        return name, content_type


def register_proto(registry: BodyEncodingRegistry) -> None:
    """ Binary mode: the framed body is sent unchanged. """

    class ProtoEncoder(IBodyEncoder):
        def encode(self, data: bytes) -> bytes:
            if not isinstance(data, (bytes, bytearray)):
                raise ValueError(f"Can only encode bytes, got {type(data)}")
            return bytes(data)

        def decode(self, data: bytes) -> bytes:
            return bytes(data)

    registry.register(ENCODING_PROTO, ProtoEncoder(), CONTENT_TYPE_GRPC_WEB)


def register_text(registry: BodyEncodingRegistry) -> None:
    """ Text mode: the framed body is base64 encoded. """

    class TextEncoder(IBodyEncoder):
        def encode(self, data: bytes) -> bytes:
            if not isinstance(data, (bytes, bytearray)):
                raise ValueError(f"Can only encode bytes, got {type(data)}")
            return base64.b64encode(data)

        def decode(self, data: bytes) -> bytes:
            """ Decode a body made of one or more padded base64 segments.

            Servers may flush each frame as its own base64 segment, so
            padding can appear in the middle of the body.
            """
            data = b"".join(bytes(data).split())
            try:
                return b"".join(
                    base64.b64decode(segment, validate=True)
                    for segment in _BASE64_SEGMENT_RE.findall(data)
                )
            except binascii.Error as exc:
                raise ValueError(f"Invalid base64 response body: {exc}") from exc

    registry.register(ENCODING_TEXT, TextEncoder(), CONTENT_TYPE_GRPC_WEB_TEXT)


def initialize(registry: BodyEncodingRegistry):
    """ Register body encodings and set a default """
    register_proto(registry)
    register_text(registry)

    registry.set_default(ENCODING_PROTO)


registry = BodyEncodingRegistry()

encode = registry.encode

decode = registry.decode

initialize(registry)
