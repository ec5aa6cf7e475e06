"""
This module converts between human readable text and serialized messages.

Messages are built dynamically from descriptors, so no generated code is
needed for the services being called. JSON is the default input and output
format. The protobuf text format is available as an output format.
"""

import abc
import json
import logging
from typing import Optional

from google.protobuf import json_format, message_factory, text_format
from google.protobuf.message import DecodeError, Message

from grpcwebcurl.errors import MessageFormatError

logger = logging.getLogger(__name__)


FORMAT_JSON = "json"
FORMAT_TEXT = "text"


def new_message(descriptor) -> Message:
    """ Return an empty dynamic message of the type described by *descriptor* """
    return message_factory.GetMessageClass(descriptor)()


def decode_message(data: bytes, descriptor) -> Message:
    """ Deserialize a binary message of the type described by *descriptor*.

    :raises: MessageFormatError if the data isn't a valid message.
    """
    msg = new_message(descriptor)
    try:
        msg.ParseFromString(data)
    except DecodeError as exc:
        raise MessageFormatError(
            f"failed to unmarshal {descriptor.full_name}: {exc}"
        ) from exc
    return msg


class MessageFormatter(abc.ABC):
    """
    This class represents the base interface for a message formatter.
    """

    @abc.abstractmethod  # pragma: no branch
    def format(self, message: Message) -> str:
        """ Return the message rendered as text """

    def format_bytes(self, data: bytes, descriptor) -> str:
        """ Render a binary message of the type described by *descriptor* """
        return self.format(decode_message(data, descriptor))


class JsonFormatter(MessageFormatter):
    """ Converts messages to and from JSON using protobuf's json_format. """

    def __init__(
        self,
        emit_defaults: bool = False,
        indent: Optional[int] = 2,
        use_proto_names: bool = False,
        use_enum_numbers: bool = False,
    ) -> None:
        """
        :param emit_defaults: include fields that hold their default value.

        :param indent: the JSON indent. None renders compact single line JSON.

        :param use_proto_names: use the field names from the schema instead of
          their lowerCamelCase JSON names.

        :param use_enum_numbers: render enum values as numbers.
        """
        self.emit_defaults = emit_defaults
        self.indent = indent
        self.use_proto_names = use_proto_names
        self.use_enum_numbers = use_enum_numbers

    def format(self, message: Message) -> str:
        text = json_format.MessageToJson(
            message,
            always_print_fields_with_no_presence=self.emit_defaults,
            preserving_proto_field_name=self.use_proto_names,
            use_integers_for_enums=self.use_enum_numbers,
            indent=self.indent,
        )
        return text if self.indent is not None else compact_json(text)

    def parse(self, text: str, descriptor) -> Message:
        """ Parse JSON into a message of the type described by *descriptor*.

        Unknown fields are ignored. Empty input yields an empty message.

        :raises: MessageFormatError if the JSON doesn't match the type.
        """
        msg = new_message(descriptor)
        try:
            json_format.Parse(text.strip() or "{}", msg, ignore_unknown_fields=True)
        except json_format.ParseError as exc:
            raise MessageFormatError(f"failed to parse JSON: {exc}") from exc
        return msg

    def serialize(self, text: str, descriptor) -> bytes:
        """ Parse JSON and return the binary encoding of the message """
        return self.parse(text, descriptor).SerializeToString()


class TextFormatter(MessageFormatter):
    """ Renders messages in the protobuf text format """

    def __init__(self, as_one_line: bool = False) -> None:
        self.as_one_line = as_one_line

    def format(self, message: Message) -> str:
        return text_format.MessageToString(message, as_one_line=self.as_one_line)


def create_formatter(name: str, **kwargs) -> MessageFormatter:
    """ Return a formatter for an output format name (json or text).

    :raises: ValueError if the format is unknown.
    """
    if name == FORMAT_JSON:
        return JsonFormatter(**kwargs)
    if name == FORMAT_TEXT:
        return TextFormatter()
    raise ValueError(f"Invalid output format '{name}'")


def pretty_print_json(text: str, indent: int = 2) -> str:
    """ Re-indent a JSON document.

    :raises: ValueError if the text isn't valid JSON.
    """
    return json.dumps(json.loads(text), indent=indent)


def compact_json(text: str) -> str:
    """ Remove the insignificant whitespace from a JSON document.

    :raises: ValueError if the text isn't valid JSON.
    """
    return json.dumps(json.loads(text), separators=(",", ":"))
