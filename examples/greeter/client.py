import json
import logging
import os

from grpcwebcurl.client import Client, ClientOptions, Request
from grpcwebcurl.descriptor import ProtoParser
from grpcwebcurl.formatting.messages import JsonFormatter


if __name__ == "__main__":

    import argparse

    parser = argparse.ArgumentParser(description="gRPC-Web Greeter Client Example")
    parser.add_argument(
        "--address",
        metavar="<address>",
        type=str,
        default="http://localhost:8080",
        help="The address of the gRPC-Web proxy",
    )
    parser.add_argument(
        "--name",
        metavar="<name>",
        type=str,
        default="world",
        help="The name to greet",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Call the server streaming method instead of the unary one",
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

    # Compile the proto file that sits next to this script
    here = os.path.dirname(os.path.abspath(__file__))
    source = ProtoParser([here]).parse_files("greeter.proto")

    method_name = "SayHelloStream" if args.stream else "SayHello"
    method = source.find_method("helloworld.Greeter", method_name)

    formatter = JsonFormatter()
    message = formatter.serialize(json.dumps({"name": args.name}), method.input_type)
    request = Request("helloworld.Greeter", method_name, message)

    def on_message(payload: bytes) -> None:
        print(formatter.format_bytes(payload, method.output_type))

    with Client(args.address, ClientOptions(plaintext=True)) as client:
        if method.server_streaming:
            response = client.invoke_server_stream(request, on_message)
        else:
            response = client.invoke(request)
            for payload in response.messages:
                on_message(payload)

    if not response.ok:
        print(f"Call failed: {response.status}")
