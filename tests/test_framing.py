import io
import struct
import unittest
import unittest.mock

from grpcwebcurl.errors import FrameError, FrameSizeError, TruncatedFrameError
from grpcwebcurl.protocol import framing
from grpcwebcurl.protocol.framing import (
    FRAME_HEADER_FORMAT,
    Frame,
    FrameDecoder,
    FrameType,
    Status,
)


def create_frame(flags: int, data: bytes) -> bytes:
    return struct.pack(FRAME_HEADER_FORMAT, flags, len(data)) + data


class OneByteReader(object):
    """ A reader that never returns more than one byte per read """

    def __init__(self, data: bytes) -> None:
        self.buffer = io.BytesIO(data)

    def read(self, size: int) -> bytes:
        return self.buffer.read(min(size, 1))


class FrameEncodingTestCase(unittest.TestCase):
    def test_empty_message_is_a_bare_header(self):
        self.assertEqual(framing.encode_message(b""), b"\x00\x00\x00\x00\x00")

    def test_message_frame_layout(self):
        self.assertEqual(
            framing.encode_message(b"Hello"), b"\x00\x00\x00\x00\x05Hello"
        )

    def test_round_trip(self):
        for payload in (b"", b"\x00", b"Hello World", bytes(range(256)) * 40):
            with self.subTest(f"Check round trip of {len(payload)} bytes"):
                decoded = framing.decode_message(framing.encode_message(payload))
                self.assertEqual(decoded, payload)

    def test_trailer_frame(self):
        data = framing.encode_trailer({"grpc-status": "0", "grpc-message": "OK"})
        self.assertEqual(data[0], framing.TRAILER_FLAG)
        self.assertEqual(data[5:], b"grpc-status: 0\r\ngrpc-message: OK\r\n")

    def test_frame_encoder_writes_to_stream(self):
        buffer = io.BytesIO()
        encoder = framing.FrameEncoder(buffer)
        encoder.encode(b"a")
        encoder.encode_frame(Frame(FrameType.TRAILER, b"k: v\r\n"))
        self.assertEqual(
            buffer.getvalue(), create_frame(0, b"a") + create_frame(0x80, b"k: v\r\n")
        )


class FrameDecodingTestCase(unittest.TestCase):
    def test_clean_end_of_stream(self):
        decoder = FrameDecoder(io.BytesIO(b""))
        self.assertIsNone(decoder.decode_frame())
        self.assertIsNone(decoder.decode())

    def test_decoder_is_iterable(self):
        data = create_frame(0, b"one") + create_frame(0, b"two")
        frames = list(FrameDecoder(io.BytesIO(data)))
        self.assertEqual(
            frames, [Frame(FrameType.DATA, b"one"), Frame(FrameType.DATA, b"two")]
        )

    def test_reserved_flag_bits_are_ignored(self):
        data = create_frame(0x01, b"data") + create_frame(0x81, b"grpc-status: 0")
        frames = list(FrameDecoder(io.BytesIO(data)))
        self.assertEqual(frames[0].type, FrameType.DATA)
        self.assertEqual(frames[1].type, FrameType.TRAILER)

    def test_truncated_header(self):
        with self.assertRaises(TruncatedFrameError) as cm:
            FrameDecoder(io.BytesIO(b"\x00\x00\x00")).decode_frame()
        self.assertIn("truncated frame header", str(cm.exception))

    def test_truncated_payload(self):
        data = struct.pack(FRAME_HEADER_FORMAT, 0, 10) + b"short"
        with self.assertRaises(TruncatedFrameError) as cm:
            FrameDecoder(io.BytesIO(data)).decode_frame()
        self.assertIn("expected 10 payload bytes, got 5", str(cm.exception))

    def test_oversized_frame_is_rejected_before_reading_payload(self):
        size = framing.MAX_MESSAGE_SIZE + 1
        reader = io.BytesIO(struct.pack(FRAME_HEADER_FORMAT, 0, size) + b"x" * 64)
        with self.assertRaises(FrameSizeError) as cm:
            FrameDecoder(reader).decode_frame()
        self.assertIn(f"message size {size} exceeds limit", str(cm.exception))
        self.assertEqual(reader.tell(), framing.FRAME_HEADER_SIZE)

    def test_configurable_size_limit(self):
        data = create_frame(0, b"0123456789")
        with self.assertRaises(FrameSizeError) as cm:
            FrameDecoder(io.BytesIO(data), max_message_size=9).decode_frame()
        self.assertEqual(cm.exception.size, 10)
        self.assertEqual(cm.exception.limit, 9)

        frame = FrameDecoder(io.BytesIO(data), max_message_size=10).decode_frame()
        self.assertEqual(frame.payload, b"0123456789")

    def test_short_reads_are_retried(self):
        data = create_frame(0, b"Hello World") + create_frame(0x80, b"a: b")
        frames = list(FrameDecoder(OneByteReader(data)))
        self.assertEqual(len(frames), 2)
        self.assertEqual(frames[0].payload, b"Hello World")

    def test_decode_skips_trailers(self):
        data = create_frame(0x80, b"a: b") + create_frame(0, b"msg")
        self.assertEqual(FrameDecoder(io.BytesIO(data)).decode(), b"msg")

    def test_decode_all_keeps_frames_decoded_before_an_error(self):
        data = create_frame(0, b"one") + create_frame(0, b"two") + b"\x00\x00"
        with self.assertRaises(FrameError) as cm:
            FrameDecoder(io.BytesIO(data)).decode_all()
        self.assertEqual([f.payload for f in cm.exception.frames], [b"one", b"two"])

    def test_decode_all(self):
        data = create_frame(0, b"one") + create_frame(0x80, b"a: b")
        frames = FrameDecoder(io.BytesIO(data)).decode_all()
        self.assertEqual(len(frames), 2)

    def test_reader_errors_propagate(self):
        reader = unittest.mock.Mock()
        reader.read.side_effect = TimeoutError("read timed out")
        with self.assertRaises(TimeoutError):
            FrameDecoder(reader).decode_frame()


class TrailerParsingTestCase(unittest.TestCase):
    def test_parse_trailers(self):
        payload = b"Grpc-Status: 5\r\ngrpc-message: not found\r\n\r\nbogus\r\nx-id: 1\r\n"
        trailers, status = framing.parse_trailers(payload)
        self.assertEqual(
            trailers,
            {"grpc-status": "5", "grpc-message": "not found", "x-id": "1"},
        )
        self.assertEqual(status, Status(5, "not found"))

    def test_duplicate_keys_last_wins(self):
        trailers, _status = framing.parse_trailers(b"x-a: 1\r\nX-A: 2\r\n")
        self.assertEqual(trailers, {"x-a": "2"})

    def test_status_code_parsing(self):
        cases = (("0", 0), ("12", 12), ("7 denied", 7), ("abc", 0), ("", 0))
        for value, expected in cases:
            with self.subTest(f"Check grpc-status '{value}'"):
                _trailers, status = framing.parse_trailers(
                    f"grpc-status: {value}\r\n".encode()
                )
                self.assertEqual(status.code, expected)

    def test_no_status_keys(self):
        trailers, status = framing.parse_trailers(b"x-a: 1\r\n")
        self.assertEqual(trailers, {"x-a": "1"})
        self.assertIsNone(status)


class ResponseDecodingTestCase(unittest.TestCase):
    def test_data_frames_followed_by_trailer(self):
        messages = [b"one", b"", b"three"]
        data = b"".join(framing.encode_message(m) for m in messages)
        data += framing.encode_trailer({"grpc-status": "0", "x-extra": "yes"})

        response = framing.decode_response(data)

        self.assertEqual(response.messages, messages)
        self.assertEqual(response.trailers, {"grpc-status": "0", "x-extra": "yes"})
        self.assertEqual(response.status, Status(0, ""))
        self.assertEqual(response.code, 0)

    def test_error_status(self):
        data = framing.encode_trailer({"grpc-status": "16", "grpc-message": "no token"})
        response = framing.decode_response(data)
        self.assertEqual(response.messages, [])
        self.assertEqual(response.status, Status(16, "no token"))

    def test_trailer_without_status_leaves_status_unset(self):
        data = framing.encode_message(b"m") + framing.encode_trailer({"x-a": "1"})
        response = framing.decode_response(data)
        self.assertEqual(response.trailers, {"x-a": "1"})
        self.assertIsNone(response.status)
        self.assertEqual(response.code, 0)

    def test_status_from_any_trailer_frame(self):
        data = framing.encode_trailer({"grpc-status": "9"}) + framing.encode_trailer(
            {"x-a": "1"}
        )
        response = framing.decode_response(data)
        self.assertEqual(response.status, Status(9, ""))

    def test_missing_trailer_leaves_status_unset(self):
        response = framing.decode_response(framing.encode_message(b"m"))
        self.assertEqual(response.messages, [b"m"])
        self.assertIsNone(response.status)
        self.assertEqual(response.code, 0)

    def test_on_message_called_in_arrival_order(self):
        on_message_mock = unittest.mock.Mock()
        data = framing.encode_message(b"a") + framing.encode_message(b"b")
        framing.read_response(io.BytesIO(data), on_message=on_message_mock)
        self.assertEqual(
            on_message_mock.call_args_list,
            [unittest.mock.call(b"a"), unittest.mock.call(b"b")],
        )

    def test_on_message_error_aborts_decoding(self):
        on_message_mock = unittest.mock.Mock(side_effect=RuntimeError("stop"))
        reader = io.BytesIO(
            framing.encode_message(b"a") + framing.encode_message(b"b")
        )
        with self.assertRaises(RuntimeError):
            framing.read_response(reader, on_message=on_message_mock)
        self.assertEqual(on_message_mock.call_count, 1)
        # the second frame was never read
        self.assertEqual(reader.tell(), framing.FRAME_HEADER_SIZE + 1)


if __name__ == "__main__":
    unittest.main()
