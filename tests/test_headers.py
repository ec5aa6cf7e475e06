import unittest

import grpcwebcurl
from grpcwebcurl.protocol import headers
from grpcwebcurl.protocol.headers import StatusCode


class RequestHeadersTestCase(unittest.TestCase):
    def test_default_headers(self):
        hdrs = headers.request_headers()
        self.assertEqual(hdrs["Content-Type"], headers.CONTENT_TYPE_GRPC_WEB)
        self.assertEqual(hdrs["Accept"], headers.CONTENT_TYPE_GRPC_WEB)
        self.assertEqual(hdrs["X-Grpc-Web"], "1")
        self.assertEqual(hdrs["X-User-Agent"], f"grpcwebcurl/{grpcwebcurl.__version__}")
        self.assertNotIn("Grpc-Timeout", hdrs)

    def test_text_content_type(self):
        hdrs = headers.request_headers(headers.CONTENT_TYPE_GRPC_WEB_TEXT)
        self.assertEqual(hdrs["Content-Type"], headers.CONTENT_TYPE_GRPC_WEB_TEXT)
        self.assertEqual(hdrs["Accept"], headers.CONTENT_TYPE_GRPC_WEB_TEXT)

    def test_timeout_header(self):
        hdrs = headers.request_headers(timeout=1.5)
        self.assertEqual(hdrs["Grpc-Timeout"], "1500000u")

    def test_custom_headers_override_defaults(self):
        hdrs = headers.request_headers(
            extra={"x-user-agent": "custom/1.0", "Authorization": "Bearer t"}
        )
        self.assertEqual(hdrs["x-user-agent"], "custom/1.0")
        self.assertNotIn("X-User-Agent", hdrs)
        self.assertEqual(hdrs["Authorization"], "Bearer t")

    def test_merge_headers(self):
        merged = headers.merge_headers({"A": "1", "B": "2"}, {"a": "3"}, {"C": "4"})
        self.assertEqual(merged, {"B": "2", "a": "3", "C": "4"})


class TimeoutFormatTestCase(unittest.TestCase):
    def test_format_timeout(self):
        cases = (
            (30, "30000000u"),
            (0.5, "500000u"),
            (0.000000002, "2n"),
            (1000000, "1000000S"),
            (360000000, "6000000M"),
        )
        for seconds, expected in cases:
            with self.subTest(f"Check {seconds} seconds"):
                self.assertEqual(headers.format_timeout(seconds), expected)

    def test_non_positive_timeout(self):
        for seconds in (0, -1):
            with self.subTest(f"Check {seconds} is rejected"):
                with self.assertRaises(ValueError):
                    headers.format_timeout(seconds)


class StatusTestCase(unittest.TestCase):
    def test_status_codes(self):
        self.assertEqual(len(StatusCode), 17)
        self.assertEqual(StatusCode.OK, 0)
        self.assertEqual(StatusCode.UNAUTHENTICATED, 16)

    def test_status_name(self):
        self.assertEqual(headers.status_name(0), "OK")
        self.assertEqual(headers.status_name(5), "NOT_FOUND")
        self.assertEqual(headers.status_name(99), "UNKNOWN")

    def test_parse_status_code(self):
        cases = (("7", 7), (" 14", 14), ("3 extra", 3), ("abc", 0), ("", 0), (None, 0))
        for value, expected in cases:
            with self.subTest(f"Check '{value}'"):
                self.assertEqual(headers.parse_status_code(value), expected)

    def test_status_from_headers(self):
        hdrs = {"Grpc-Status": "7", "Grpc-Message": "denied"}
        self.assertTrue(headers.has_status(hdrs))
        self.assertEqual(headers.status_from_headers(hdrs), (7, "denied"))

    def test_status_missing_from_headers(self):
        hdrs = {"Content-Type": "text/html"}
        self.assertFalse(headers.has_status(hdrs))
        self.assertEqual(headers.status_from_headers(hdrs), (0, ""))


if __name__ == "__main__":
    unittest.main()
