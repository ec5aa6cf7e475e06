"""
The grpcwebcurl command line.

.. code-block:: console

    grpcwebcurl [options] ADDRESS SERVICE/METHOD
    grpcwebcurl [options] list ADDRESS
    grpcwebcurl [options] describe ADDRESS [SYMBOL]
    grpcwebcurl version

Descriptors come from ``-p``/``--protoset`` when given and from server
reflection otherwise.
"""

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from google.protobuf.descriptor import (
    Descriptor,
    EnumDescriptor,
    MethodDescriptor,
    ServiceDescriptor,
)

import grpcwebcurl
from grpcwebcurl.client import Client, ClientOptions, Request
from grpcwebcurl.descriptor import (
    DescriptorSource,
    FileSource,
    ProtoParser,
    default_import_paths,
    load_descriptor_set,
    parse_service_method,
)
from grpcwebcurl.errors import (
    DescriptorError,
    GrpcWebError,
    MessageFormatError,
    NotFoundError,
    ReflectionError,
    ServiceMethodFormatError,
    TransportError,
)
from grpcwebcurl.formatting.messages import (
    FORMAT_JSON,
    FORMAT_TEXT,
    create_formatter,
)
from grpcwebcurl.formatting.printer import Printer
from grpcwebcurl.protocol import encoding, framing, headers
from grpcwebcurl.protocol.framing import Status
from grpcwebcurl.protocol.headers import StatusCode
from grpcwebcurl.reflection import ReflectionClient, ReflectionSource

logger = logging.getLogger(__name__)


PROG = "grpcwebcurl"
COMMANDS = ("list", "describe", "version")

LOG_FORMAT = "%(asctime)s.%(msecs)03.0f [%(levelname)s] [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

STATUS_HINTS = {
    StatusCode.UNAUTHENTICATED: "Add authentication header with -H 'Authorization: Bearer <token>'",
    StatusCode.PERMISSION_DENIED: "Check if the provided credentials have access to this method",
    StatusCode.NOT_FOUND: "Verify the service and method names are correct",
    StatusCode.INVALID_ARGUMENT: "Check the request JSON matches the expected message format",
    StatusCode.UNAVAILABLE: "The service may be down or unreachable. Check the server address.",
    StatusCode.DEADLINE_EXCEEDED: "Try increasing the timeout with --max-time",
}

EPILOG = """\
examples:
  # Simple unary call with a proto file
  grpcwebcurl -p api.proto -d '{"id": "123"}' https://api.example.com pkg.Service/Method

  # Using server reflection (no proto file needed)
  grpcwebcurl -d '{"id": "123"}' https://api.example.com pkg.Service/Method

  # Read request data from stdin
  echo '{"id": "123"}' | grpcwebcurl -p api.proto -d @ localhost:8080 pkg.Service/Method

  # List the services of a server
  grpcwebcurl list https://api.example.com
"""


class UsageError(GrpcWebError):
    """ Raised for invalid command line input that argparse can't detect """


def common_parser() -> argparse.ArgumentParser:
    """ Return a parser holding the options shared by every command """
    parser = argparse.ArgumentParser(prog=PROG, add_help=False)

    group = parser.add_argument_group("descriptors")
    group.add_argument(
        "-p",
        "--proto",
        metavar="<file>",
        action="append",
        default=[],
        help="Proto file to use for message types. May be repeated.",
    )
    group.add_argument(
        "-I",
        "--import-path",
        metavar="<dir>",
        action="append",
        default=[],
        help="Import path for proto files. May be repeated.",
    )
    group.add_argument(
        "--protoset",
        metavar="<file>",
        action="append",
        default=[],
        help="A compiled FileDescriptorSet to use for message types. May be repeated.",
    )

    group = parser.add_argument_group("connection")
    group.add_argument(
        "-H",
        "--header",
        metavar="<header>",
        action="append",
        default=[],
        help="Custom header in 'Key: Value' format. May be repeated.",
    )
    group.add_argument(
        "-k",
        "--insecure",
        action="store_true",
        help="Skip TLS certificate verification",
    )
    group.add_argument(
        "--plaintext", action="store_true", help="Use plaintext HTTP (no TLS)"
    )
    group.add_argument("--cert", metavar="<file>", help="Client certificate file")
    group.add_argument("--key", metavar="<file>", help="Client private key file")
    group.add_argument("--cacert", metavar="<file>", help="CA certificate file")
    group.add_argument(
        "--servername", metavar="<name>", help="Override the TLS server name (SNI)"
    )
    group.add_argument(
        "--connect-timeout",
        metavar="<seconds>",
        type=float,
        default=None,
        help="Connection timeout. Default is 10 seconds.",
    )
    group.add_argument(
        "--max-time",
        metavar="<seconds>",
        type=float,
        default=None,
        help="Maximum time for the request. Default is 30 seconds.",
    )
    group.add_argument(
        "--text",
        action="store_true",
        help="Use the base64 text body encoding (application/grpc-web-text)",
    )
    group.add_argument(
        "--http2", action="store_true", help="Use HTTP/2. Requires the http2 extra."
    )

    group = parser.add_argument_group("logging")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose output. Implies --log-level debug.",
    )
    group.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default="error",
        help="Logging level. Default is 'error'.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {grpcwebcurl.__version__}"
    )
    return parser


def invoke_parser(parent: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="A command line tool for calling gRPC-Web endpoints.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=[parent],
    )
    parser.add_argument(
        "-d",
        "--data",
        metavar="<json>",
        default="",
        help="Request data in JSON format. Use @ to read from stdin.",
    )
    parser.add_argument(
        "-o",
        "--format",
        choices=[FORMAT_JSON, FORMAT_TEXT],
        default=FORMAT_JSON,
        help="Output format. Default is 'json'.",
    )
    parser.add_argument(
        "--emit-defaults",
        action="store_true",
        help="Emit fields with default values",
    )
    parser.add_argument(
        "--show-trailers", action="store_true", help="Always show response trailers"
    )
    parser.add_argument(
        "--max-msg-sz",
        metavar="<bytes>",
        type=int,
        default=framing.MAX_MESSAGE_SIZE,
        help="Maximum response message size",
    )
    parser.add_argument("address", help="Server address, e.g. https://host:443")
    parser.add_argument("method", help="Method to call, e.g. package.Service/Method")
    return parser


def list_parser(parent: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=f"{PROG} list",
        description="List the services available on a server.",
        parents=[parent],
    )
    parser.add_argument("address", help="Server address")
    return parser


def describe_parser(parent: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=f"{PROG} describe",
        description="Describe a service, method, message or enum.",
        parents=[parent],
    )
    parser.add_argument("address", help="Server address")
    parser.add_argument(
        "symbol", nargs="?", help="Fully qualified symbol. Lists services if omitted."
    )
    return parser


def split_command(argv: Sequence[str]):
    """ Return the sub-command named in *argv* (or None) and the remaining args.

    Options shared by every command may appear before the sub-command name.
    """
    _known, rest = common_parser().parse_known_args(argv)
    if rest and rest[0] in COMMANDS:
        command = rest[0]
        args = list(argv)
        args.remove(command)
        return command, args
    return None, list(argv)


def configure_logging(args) -> None:
    level = logging.DEBUG if args.verbose else getattr(logging, args.log_level.upper())
    logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, level=level)


def parse_header(header: str):
    """ Split a ``Key: Value`` header. Returns None when there is no colon. """
    key, sep, value = header.partition(":")
    if not sep or not key.strip():
        return None
    return key.strip(), value.strip()


def create_client(args) -> Client:
    options = ClientOptions(
        insecure=args.insecure,
        plaintext=args.plaintext,
        cert_file=args.cert,
        key_file=args.key,
        ca_file=args.cacert,
        server_name=args.servername,
        timeout=args.max_time,
        connect_timeout=args.connect_timeout,
        max_message_size=getattr(args, "max_msg_sz", framing.MAX_MESSAGE_SIZE),
        http2=args.http2,
        body_encoding=encoding.ENCODING_TEXT if args.text else encoding.ENCODING_PROTO,
    )
    client = Client(args.address, options)

    for header in args.header:
        parsed = parse_header(header)
        if parsed is None:
            logger.warning(f"Ignoring malformed header '{header}'")
            continue
        client.set_header(*parsed)

    return client


def get_descriptor_source(args, client: Client) -> DescriptorSource:
    """ Return a source for the descriptors named on the command line.

    Server reflection is used when no proto files or protosets are given.
    """
    if args.proto or args.protoset:
        files = []
        for path in args.protoset:
            files.extend(load_descriptor_set(path).file)
        if args.proto:
            parser = ProtoParser(default_import_paths() + args.import_path)
            files.extend(parser.compile(*args.proto).file)
        return FileSource(files)

    logger.info("Using server reflection to discover services")
    return ReflectionSource(ReflectionClient(client))


def read_request_data(data: str, stdin=None) -> str:
    if data == "@":
        stdin = stdin if stdin is not None else sys.stdin
        return stdin.read().strip()
    return data


def suggest_services(source: DescriptorSource, service: str) -> str:
    """ Return a hint listing services that resemble *service* """
    try:
        services = source.list_services()
    except GrpcWebError as exc:
        logger.debug(f"Unable to list services for suggestions: {exc}")
        return ""

    similar = [s for s in services if service.lower() in s.lower()]
    if similar:
        return "\n\nDid you mean one of these services?\n  " + "\n  ".join(similar)
    if services:
        return (
            "\n\nAvailable services:\n  "
            + "\n  ".join(services)
            + f"\n\nUse '{PROG} list <address>' to see all services"
        )
    return ""


def error_hint(exc: Exception) -> Optional[str]:
    """ Return advice for an error raised while running a command """
    text = str(exc).lower()
    if isinstance(exc, ServiceMethodFormatError):
        return (
            "Expected format: package.Service/Method\n"
            "Examples:\n  messages.UserService/GetUser\n  helloworld.Greeter/SayHello"
        )
    if isinstance(exc, ReflectionError):
        return (
            "Hints:\n"
            "  - The server may not have reflection enabled\n"
            "  - Try providing proto files with -p/--proto\n"
            "  - Check if authentication is required (-H 'Authorization: Bearer <token>')"
        )
    if isinstance(exc, DescriptorError):
        return (
            "Hints:\n"
            "  - Check the proto file path is correct\n"
            "  - Use -I/--import-path to specify import directories"
        )
    if isinstance(exc, TransportError) and ("certificate" in text or "ssl" in text):
        return (
            "Hints:\n"
            "  - Use --plaintext for http:// URLs\n"
            "  - Use -k/--insecure to skip certificate verification\n"
            "  - Use --cacert to specify a CA certificate"
        )
    return None


def report_status(status: Status, stream) -> None:
    Printer(stream).print_error(status)
    hint = STATUS_HINTS.get(status.code)
    if hint:
        print(f"\nHint: {hint}", file=stream)


def run_invoke(args, stdout, stderr) -> int:
    service, method = parse_service_method(args.method)

    data = read_request_data(args.data)
    if not data:
        raise UsageError(
            "request data is required (-d flag)\n\nExample:\n"
            f"  {PROG} -d '{{\"id\": \"123\"}}' {args.address} {args.method}"
        )

    formatter = create_formatter(args.format, emit_defaults=args.emit_defaults)
    json_formatter = create_formatter(FORMAT_JSON)
    printer = Printer(stdout)

    with create_client(args) as client:
        source = get_descriptor_source(args, client)
        try:
            method_desc = source.find_method(service, method)
        except NotFoundError as exc:
            raise NotFoundError(f"{exc}{suggest_services(source, service)}") from exc

        try:
            message = json_formatter.serialize(data, method_desc.input_type)
        except MessageFormatError as exc:
            raise MessageFormatError(
                f"{exc}\n\nExpected message type: {method_desc.input_type.full_name}"
            ) from exc
        request = Request(service, method, message)

        if args.verbose:
            kind = "server streaming" if method_desc.server_streaming else "unary"
            print(f"Calling {service}/{method} ({kind})", file=stderr)
            content_type = encoding.registry.get_codec(client.body_encoding).content_type
            Printer(stderr).print_verbose(
                "request",
                headers.request_headers(
                    content_type, timeout=client.options.timeout, extra=client.headers
                ),
            )

        count = 0

        def on_message(payload: bytes) -> None:
            nonlocal count
            count += 1
            if args.format == FORMAT_TEXT:
                printer.print_message(f"--- Message {count} ---")
            printer.print_message(formatter.format_bytes(payload, method_desc.output_type))

        if method_desc.server_streaming:
            response = client.invoke_server_stream(request, on_message)
        else:
            response = client.invoke(request)

    if args.verbose:
        Printer(stderr).print_verbose("response", response.http_headers)

    if not response.ok:
        report_status(response.status, stderr)
        return 1

    if not method_desc.server_streaming:
        for payload in response.messages:
            printer.print_message(formatter.format_bytes(payload, method_desc.output_type))

    if (args.show_trailers or args.verbose) and response.trailers:
        print(file=stderr)
        Printer(stderr).print_trailers(response.trailers)

    return 0


def run_list(args, stdout, stderr) -> int:
    with create_client(args) as client:
        source = get_descriptor_source(args, client)
        Printer(stdout).print_services(source.list_services())
    return 0


def run_describe(args, stdout, stderr) -> int:
    printer = Printer(stdout)
    with create_client(args) as client:
        source = get_descriptor_source(args, client)
        if not args.symbol:
            printer.print_services(source.list_services())
            return 0

        try:
            printer.print_service_description(source.find_service(args.symbol))
            return 0
        except NotFoundError:
            logger.debug(f"{args.symbol} is not a service")

        desc = source.find_symbol(args.symbol)

    if isinstance(desc, Descriptor):
        printer.print_message_description(desc)
    elif isinstance(desc, EnumDescriptor):
        printer.print_enum_description(desc)
    elif isinstance(desc, ServiceDescriptor):
        printer.print_service_description(desc)
    elif isinstance(desc, MethodDescriptor):
        printer.print_message(
            f"rpc {desc.name}({desc.input_type.full_name}) "
            f"returns ({desc.output_type.full_name});"
        )
    else:
        printer.print_message(f"Symbol: {desc.full_name}")
    return 0


def main(argv: Optional[List[str]] = None, stdout=None, stderr=None) -> int:
    """ Run the command line and return the process exit status """
    argv = list(sys.argv[1:] if argv is None else argv)
    stdout = stdout if stdout is not None else sys.stdout
    stderr = stderr if stderr is not None else sys.stderr

    command, argv = split_command(argv)
    if command == "version":
        print(f"{PROG} version {grpcwebcurl.__version__}", file=stdout)
        return 0

    parent = common_parser()
    if command == "list":
        args, runner = list_parser(parent).parse_args(argv), run_list
    elif command == "describe":
        args, runner = describe_parser(parent).parse_args(argv), run_describe
    else:
        args, runner = invoke_parser(parent).parse_args(argv), run_invoke

    configure_logging(args)

    try:
        return runner(args, stdout, stderr)
    except GrpcWebError as exc:
        print(f"Error: {exc}", file=stderr)
        hint = error_hint(exc)
        if hint:
            print(f"\n{hint}", file=stderr)
        return 1
