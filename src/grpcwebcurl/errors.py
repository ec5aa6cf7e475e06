""" Exceptions raised by grpcwebcurl """

from typing import List, Optional


class GrpcWebError(Exception):
    """ Base class for all errors raised by this library """


class FrameError(GrpcWebError):
    """ Raised when the framed response body can't be decoded.

    :param frames: the frames successfully decoded before the failure.
    """

    def __init__(self, message: str, frames: Optional[List] = None) -> None:
        super().__init__(message)
        self.frames = frames if frames is not None else []


class TruncatedFrameError(FrameError):
    """ A frame header or payload was shorter than declared """


class FrameSizeError(FrameError):
    """ A frame declared a payload larger than the configured maximum """

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"message size {size} exceeds limit {limit}")
        self.size = size
        self.limit = limit


class WireDecodeError(GrpcWebError):
    """ Raised when a tagged binary payload is malformed """


class ReflectionError(GrpcWebError):
    """ Raised when the server reflection exchange fails """


class DescriptorError(GrpcWebError):
    """ Raised when descriptors can't be loaded, compiled or linked """


class NotFoundError(GrpcWebError, LookupError):
    """ Raised when a symbol, service or method is not in a registry """


class ServiceMethodFormatError(GrpcWebError, ValueError):
    """ Raised when a method path is not of the form package.Service/Method """


class TransportError(GrpcWebError):
    """ Raised when the HTTP exchange itself fails """


class HttpError(TransportError):
    """ Raised for a non-200 HTTP reply that carries no gRPC status """

    def __init__(self, status_code: int, reason: str = "") -> None:
        super().__init__(f"HTTP error: {status_code} {reason}".rstrip())
        self.status_code = status_code
        self.reason = reason


class MessageFormatError(GrpcWebError, ValueError):
    """ Raised when a message can't be converted to or from JSON or text """
