""" Human readable output for responses, errors and descriptors """

import sys
from typing import Iterable, Mapping, Optional

from google.protobuf.descriptor import FieldDescriptor

from grpcwebcurl.protocol.framing import Status
from grpcwebcurl.protocol.headers import status_name


ANSI_RED = "\033[31m"
ANSI_GREY = "\033[90m"
ANSI_RESET = "\033[0m"

_SCALAR_TYPE_NAMES = {
    FieldDescriptor.TYPE_DOUBLE: "double",
    FieldDescriptor.TYPE_FLOAT: "float",
    FieldDescriptor.TYPE_INT64: "int64",
    FieldDescriptor.TYPE_UINT64: "uint64",
    FieldDescriptor.TYPE_INT32: "int32",
    FieldDescriptor.TYPE_FIXED64: "fixed64",
    FieldDescriptor.TYPE_FIXED32: "fixed32",
    FieldDescriptor.TYPE_BOOL: "bool",
    FieldDescriptor.TYPE_STRING: "string",
    FieldDescriptor.TYPE_BYTES: "bytes",
    FieldDescriptor.TYPE_UINT32: "uint32",
    FieldDescriptor.TYPE_SFIXED32: "sfixed32",
    FieldDescriptor.TYPE_SFIXED64: "sfixed64",
    FieldDescriptor.TYPE_SINT32: "sint32",
    FieldDescriptor.TYPE_SINT64: "sint64",
}


def field_type_name(field) -> str:
    """ Return the schema type of a field, e.g. ``int32`` or ``pkg.Message`` """
    if field.type in (FieldDescriptor.TYPE_MESSAGE, FieldDescriptor.TYPE_GROUP):
        return field.message_type.full_name
    if field.type == FieldDescriptor.TYPE_ENUM:
        return field.enum_type.full_name
    return _SCALAR_TYPE_NAMES.get(field.type, "unknown")


def streaming_note(method) -> str:
    if method.client_streaming and method.server_streaming:
        return "stream"
    if method.client_streaming:
        return "client streaming"
    if method.server_streaming:
        return "server streaming"
    return ""


class Printer(object):
    """ Writes formatted output to a text stream """

    def __init__(self, stream=None, color: bool = False, indent: str = "  ") -> None:
        self.stream = stream if stream is not None else sys.stdout
        self.color = color
        self.indent = indent

    def _write(self, text: str = "", ansi: Optional[str] = None) -> None:
        if ansi and self.color:
            text = f"{ansi}{text}{ANSI_RESET}"
        print(text, file=self.stream)

    def print_message(self, text: str) -> None:
        self._write(text)

    def print_error(self, status: Status) -> None:
        self._write(f"Error: {status_name(status.code)} ({status.code})", ANSI_RED)
        if status.message:
            self._write(f"Message: {status.message}")

    def print_trailers(self, trailers: Mapping[str, str]) -> None:
        self._write("Trailers:", ANSI_GREY)
        for key, value in trailers.items():
            self._write(f"{self.indent}{key}: {value}")

    def print_services(self, services: Iterable[str]) -> None:
        for name in services:
            self._write(name)

    def print_service_description(self, service) -> None:
        self._write(f"service {service.name} {{")
        for method in service.methods:
            self._write(
                f"{self.indent}rpc {method.name}({method.input_type.full_name}) "
                f"returns ({method.output_type.full_name});"
            )
            note = streaming_note(method)
            if note:
                self._write(f"{self.indent * 2}// {note}")
        self._write("}")

    def print_message_description(self, message) -> None:
        self._write(f"message {message.name} {{")
        for field in message.fields:
            repeated = "repeated " if field.is_repeated else ""
            self._write(
                f"{self.indent}{repeated}{field_type_name(field)} "
                f"{field.name} = {field.number};"
            )
        self._write("}")

    def print_enum_description(self, enum) -> None:
        self._write(f"enum {enum.name} {{")
        for value in enum.values:
            self._write(f"{self.indent}{value.name} = {value.number};")
        self._write("}")

    def print_verbose(self, direction: str, hdrs: Mapping[str, str]) -> None:
        """ Print headers prefixed with ``>`` (request) or ``<`` (response) """
        prefix = "<" if direction == "response" else ">"
        for key, value in hdrs.items():
            self._write(f"{prefix} {key}: {value}")
        self._write()
