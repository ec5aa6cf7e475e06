""" Descriptors and canned gRPC-Web replies shared by the test cases """

import httpx
from google.protobuf import descriptor_pb2

from grpcwebcurl.protocol import framing, headers, wire

F = descriptor_pb2.FieldDescriptorProto


def common_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(
        name="test/common.proto", package="test.common", syntax="proto3"
    )
    page = fdp.message_type.add(name="Page")
    page.field.add(name="number", number=1, type=F.TYPE_INT32, label=F.LABEL_OPTIONAL)

    mood = fdp.enum_type.add(name="Mood")
    mood.value.add(name="MOOD_UNKNOWN", number=0)
    mood.value.add(name="MOOD_HAPPY", number=1)
    return fdp


def greeter_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(
        name="test/greeter.proto", package="test.greeter", syntax="proto3"
    )
    fdp.dependency.append("test/common.proto")
    fdp.dependency.append("google/protobuf/timestamp.proto")

    request = fdp.message_type.add(name="HelloRequest")
    request.field.add(name="name", number=1, type=F.TYPE_STRING, label=F.LABEL_OPTIONAL)
    request.field.add(name="tags", number=2, type=F.TYPE_STRING, label=F.LABEL_REPEATED)
    request.field.add(
        name="mood",
        number=3,
        type=F.TYPE_ENUM,
        type_name=".test.common.Mood",
        label=F.LABEL_OPTIONAL,
    )

    reply = fdp.message_type.add(name="HelloReply")
    reply.field.add(name="message", number=1, type=F.TYPE_STRING, label=F.LABEL_OPTIONAL)
    reply.field.add(
        name="sent",
        number=2,
        type=F.TYPE_MESSAGE,
        type_name=".google.protobuf.Timestamp",
        label=F.LABEL_OPTIONAL,
    )
    reply.field.add(
        name="page",
        number=3,
        type=F.TYPE_MESSAGE,
        type_name=".test.common.Page",
        label=F.LABEL_OPTIONAL,
    )

    greeter = fdp.service.add(name="Greeter")
    greeter.method.add(
        name="SayHello",
        input_type=".test.greeter.HelloRequest",
        output_type=".test.greeter.HelloReply",
    )
    greeter.method.add(
        name="SayHelloStream",
        input_type=".test.greeter.HelloRequest",
        output_type=".test.greeter.HelloReply",
        server_streaming=True,
    )

    farewell = fdp.service.add(name="Farewell")
    farewell.method.add(
        name="SayGoodbye",
        input_type=".test.greeter.HelloRequest",
        output_type=".test.greeter.HelloReply",
    )
    return fdp


def descriptor_set() -> descriptor_pb2.FileDescriptorSet:
    fds = descriptor_pb2.FileDescriptorSet()
    fds.file.extend([common_file(), greeter_file()])
    return fds


def grpc_web_body(messages=(), trailers=None) -> bytes:
    """ Return a binary response body holding data frames and a trailer frame """
    body = b"".join(framing.encode_message(m) for m in messages)
    if trailers is None:
        trailers = {headers.GRPC_STATUS: "0"}
    if trailers:
        body += framing.encode_trailer(trailers)
    return body


def grpc_web_response(messages=(), trailers=None, status_code=200, extra_headers=None):
    hdrs = {headers.HEADER_CONTENT_TYPE: headers.CONTENT_TYPE_GRPC_WEB}
    hdrs.update(extra_headers or {})
    return httpx.Response(
        status_code, headers=hdrs, content=grpc_web_body(messages, trailers)
    )


def service_entry(name: str) -> bytes:
    """ Return a ListServiceResponse.service entry """
    return wire.encode_length_delimited(1, wire.encode_length_delimited(1, name))


def list_services_response(*names: str) -> bytes:
    return wire.encode_length_delimited(
        6, b"".join(service_entry(name) for name in names)
    )


def file_descriptor_response(*files) -> bytes:
    return wire.encode_length_delimited(
        4,
        b"".join(wire.encode_length_delimited(1, f.SerializeToString()) for f in files),
    )


def error_response(code: int, message: str) -> bytes:
    return wire.encode_length_delimited(
        7,
        wire.encode_varint_field(1, code) + wire.encode_length_delimited(2, message),
    )
