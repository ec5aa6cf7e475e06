"""
Server reflection over gRPC-Web.

Reflection lets a client discover the services of a server and fetch the
descriptors of their messages at runtime. The reflection protocol messages are
tiny and use a handful of fixed field numbers, so requests are hand encoded
and responses are picked apart with the schema-free walker in
:mod:`grpcwebcurl.protocol.wire` rather than a compiled reflection schema.

.. code-block:: console

    ServerReflectionRequest
      4: file_containing_symbol (string)
      7: list_services (string)

    ServerReflectionResponse
      4: file_descriptor_response
           1: file_descriptor_proto (repeated bytes)
      6: list_services_response
           1: service (repeated)
                1: name (string)
      7: error_response
           1: error_code (int32)
           2: error_message (string)

Two versions of the reflection service exist. Each request is sent to the
``v1alpha`` service first and, if that fails, once more to the ``v1`` service.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from google.protobuf import descriptor_pb2

from grpcwebcurl.client import Client, Request
from grpcwebcurl.descriptor.source import (
    DescriptorSource,
    FileSource,
    decode_file_descriptors,
)
from grpcwebcurl.errors import (
    FrameError,
    NotFoundError,
    ReflectionError,
    TransportError,
    WireDecodeError,
)
from grpcwebcurl.protocol import wire
from grpcwebcurl.protocol.headers import status_name
from grpcwebcurl.protocol.wire import WireType

logger = logging.getLogger(__name__)


REFLECTION_SERVICE_V1ALPHA = "grpc.reflection.v1alpha.ServerReflection"
REFLECTION_SERVICE_V1 = "grpc.reflection.v1.ServerReflection"
REFLECTION_SERVICES = (REFLECTION_SERVICE_V1ALPHA, REFLECTION_SERVICE_V1)
REFLECTION_METHOD = "ServerReflectionInfo"
REFLECTION_PREFIX = "grpc.reflection."

# ServerReflectionRequest
FILE_CONTAINING_SYMBOL_FIELD = 4
LIST_SERVICES_FIELD = 7

# ServerReflectionResponse
FILE_DESCRIPTOR_RESPONSE_FIELD = 4
LIST_SERVICES_RESPONSE_FIELD = 6
ERROR_RESPONSE_FIELD = 7

SERVICE_FIELD = 1  # ListServiceResponse.service
SERVICE_NAME_FIELD = 1  # ServiceResponse.name
FILE_DESCRIPTOR_PROTO_FIELD = 1  # FileDescriptorResponse.file_descriptor_proto
ERROR_CODE_FIELD = 1  # ErrorResponse.error_code
ERROR_MESSAGE_FIELD = 2  # ErrorResponse.error_message


def encode_list_services_request() -> bytes:
    """ Return a request asking for every service (an empty list_services). """
    return wire.encode_length_delimited(LIST_SERVICES_FIELD, b"")


def encode_file_containing_symbol_request(symbol: str) -> bytes:
    """ Return a request for the file that defines *symbol*. """
    return wire.encode_length_delimited(FILE_CONTAINING_SYMBOL_FIELD, symbol)


def extract_service_names(data: bytes) -> List[str]:
    """ Return the service names of a list_services_response in encounter order.

    Unknown fields are ignored. A service entry that can't be decoded is
    skipped.

    :raises: WireDecodeError if the top level response is malformed.
    """
    names = []
    for nested in wire.find_fields(data, LIST_SERVICES_RESPONSE_FIELD):
        for entry in wire.find_fields(nested, SERVICE_FIELD):
            try:
                name = _first_string(entry, SERVICE_NAME_FIELD)
            except WireDecodeError as exc:
                logger.debug(f"Skipping malformed service entry: {exc}")
                continue
            if name:
                names.append(name)
    return names


def extract_file_descriptors(data: bytes) -> List[bytes]:
    """ Return the serialized FileDescriptorProtos of a file_descriptor_response.

    :raises: ReflectionError if the response holds no descriptors.
    """
    blobs = []  # type: List[bytes]
    for nested in wire.find_fields(data, FILE_DESCRIPTOR_RESPONSE_FIELD):
        blobs.extend(wire.find_fields(nested, FILE_DESCRIPTOR_PROTO_FIELD))

    if not blobs:
        raise ReflectionError("no descriptors in response")
    return blobs


def extract_error(data: bytes) -> Optional[Tuple[int, str]]:
    """ Return the code and message of an error_response, or None. """
    for nested in wire.find_fields(data, ERROR_RESPONSE_FIELD):
        code = 0
        message = ""
        for field in wire.iter_fields(nested):
            if field.number == ERROR_CODE_FIELD and field.wire_type == WireType.VARINT:
                code = _to_int32(field.value)
            elif (
                field.number == ERROR_MESSAGE_FIELD
                and field.wire_type == WireType.LENGTH_DELIMITED
            ):
                message = field.value.decode("utf-8", errors="replace")
        return code, message
    return None


def raise_for_error(data: bytes) -> None:
    """ Raise ReflectionError if the response carries an error_response. """
    error = extract_error(data)
    if error is not None:
        code, message = error
        raise ReflectionError(f"reflection error: {message} (code {code})")


def _first_string(data: bytes, number: int) -> str:
    for value in wire.find_fields(data, number):
        return value.decode("utf-8", errors="replace")
    return ""


def _to_int32(value: int) -> int:
    # negative int32 values are sign extended to 64 bits on the wire
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


class ReflectionClient(object):
    """ Makes reflection requests through a gRPC-Web :class:`Client`. """

    def __init__(
        self, client: Client, services: Sequence[str] = REFLECTION_SERVICES
    ) -> None:
        """
        :param client: the client used to reach the server.

        :param services: the reflection service names to try, in order.
          Exactly two names are expected. The second one is only used when a
          request to the first one fails.
        """
        self.client = client
        self.primary, self.fallback = services

    def call(self, message: bytes) -> bytes:
        """ Send a reflection request and return the response message.

        The request goes to the primary reflection service and, if that
        fails, once to the fallback service.

        :raises: ReflectionError with the failure of the fallback attempt.
        """
        try:
            return self._exchange(self.primary, message)
        except ReflectionError as exc:
            logger.debug(f"Reflection via {self.primary} failed ({exc})")

        logger.debug(f"Retrying reflection via {self.fallback}")
        return self._exchange(self.fallback, message)

    def _exchange(self, service: str, message: bytes) -> bytes:
        request = Request(service, REFLECTION_METHOD, message)
        try:
            response = self.client.invoke(request)
        except (TransportError, FrameError) as exc:
            raise ReflectionError(f"reflection request failed: {exc}") from exc

        if not response.ok:
            code, msg = response.status
            raise ReflectionError(
                f"reflection request failed: {status_name(code)} ({code}): {msg}"
            )

        if not response.messages:
            raise ReflectionError("no response from reflection service")

        return response.messages[0]

    def list_services(self) -> List[str]:
        """ Return every service the server exposes, sorted by name. """
        data = self.call(encode_list_services_request())
        raise_for_error(data)

        names = extract_service_names(data)
        if not names and data:
            logger.debug(f"Parsed no services from {len(data)} bytes: {data.hex()}")
        return sorted(names)

    def file_containing_symbol(
        self, symbol: str
    ) -> List[descriptor_pb2.FileDescriptorProto]:
        """ Return the file defining *symbol* followed by its dependencies. """
        data = self.call(encode_file_containing_symbol_request(symbol))
        raise_for_error(data)
        return decode_file_descriptors(extract_file_descriptors(data))

    def resolve_service(self, name: str):
        """ Return the ServiceDescriptor of a fully qualified service. """
        source = FileSource(self.file_containing_symbol(name))
        return source.find_service(name)

    def resolve_method(self, service: str, method: str):
        """ Return the MethodDescriptor of *method* of *service*. """
        service_desc = self.resolve_service(service)
        method_desc = service_desc.methods_by_name.get(method)
        if method_desc is None:
            raise NotFoundError(f"method not found: {service}/{method}")
        return method_desc

    def snapshot(self) -> FileSource:
        """ Fetch the descriptors of every user service into a FileSource.

        Services whose descriptors can't be fetched are skipped.
        """
        files = {}  # type: Dict[str, descriptor_pb2.FileDescriptorProto]
        for name in self.list_services():
            if name.startswith(REFLECTION_PREFIX):
                continue
            try:
                fdps = self.file_containing_symbol(name)
            except ReflectionError as exc:
                logger.warning(f"Skipping service {name}: {exc}")
                continue
            for fdp in fdps:
                files.setdefault(fdp.name, fdp)

        return FileSource(files.values())


class ReflectionSource(DescriptorSource):
    """ A descriptor source backed by server reflection.

    Nothing is cached. Every lookup makes a new request to the server and
    builds a transient registry from the files returned.
    """

    def __init__(self, client: ReflectionClient) -> None:
        self.client = client

    def _source_for(self, symbol: str) -> FileSource:
        return FileSource(self.client.file_containing_symbol(symbol))

    def find_symbol(self, name: str):
        return self._source_for(name).find_symbol(name)

    def list_services(self) -> List[str]:
        return sorted(
            name
            for name in self.client.list_services()
            if not name.startswith(REFLECTION_PREFIX)
        )

    def find_service(self, name: str):
        return self._source_for(name).find_service(name)

    def find_method(self, service: str, method: str):
        return self._source_for(service).find_method(service, method)
