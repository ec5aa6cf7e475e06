import logging

from grpcwebcurl.client import Client, ClientOptions
from grpcwebcurl.formatting.printer import Printer
from grpcwebcurl.reflection import ReflectionClient


if __name__ == "__main__":

    import argparse

    parser = argparse.ArgumentParser(description="Server Reflection Example")
    parser.add_argument(
        "--address",
        metavar="<address>",
        type=str,
        default="http://localhost:8080",
        help="The address of the gRPC-Web proxy",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "error"],
        default="error",
        help="Logging level. Default is 'error'.",
    )

    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s.%(msecs)03.0f [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=getattr(logging, args.log_level.upper()),
    )

    printer = Printer()
    with Client(args.address, ClientOptions(plaintext=True)) as client:
        reflection = ReflectionClient(client)

        # A snapshot resolves every service once so lookups need no requests
        source = reflection.snapshot()
        for name in source.list_services():
            printer.print_service_description(source.find_service(name))
            print()
