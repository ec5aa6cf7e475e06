""" HTTP headers, content types and status codes used by gRPC-Web. """

import enum
import re
from typing import Dict, Mapping, Optional

import grpcwebcurl


CONTENT_TYPE_GRPC_WEB = "application/grpc-web+proto"
CONTENT_TYPE_GRPC_WEB_TEXT = "application/grpc-web-text+proto"
CONTENT_TYPE_GRPC_WEB_JSON = "application/grpc-web+json"

HEADER_CONTENT_TYPE = "Content-Type"
HEADER_ACCEPT = "Accept"
HEADER_GRPC_WEB = "X-Grpc-Web"
HEADER_USER_AGENT = "X-User-Agent"
HEADER_GRPC_TIMEOUT = "Grpc-Timeout"
HEADER_GRPC_ENCODING = "Grpc-Encoding"
HEADER_AUTHORIZATION = "Authorization"

# Trailer and header keys are compared lower-cased
GRPC_STATUS = "grpc-status"
GRPC_MESSAGE = "grpc-message"

USER_AGENT = f"grpcwebcurl/{grpcwebcurl.__version__}"

_STATUS_CODE_RE = re.compile(r"^\s*([+-]?\d+)")

# grpc-timeout allows at most 8 digits per value
_TIMEOUT_UNITS = (
    ("H", 3600.0),
    ("M", 60.0),
    ("S", 1.0),
    ("m", 1e-3),
    ("u", 1e-6),
    ("n", 1e-9),
)
_TIMEOUT_MAX_VALUE = 99999999


class StatusCode(enum.IntEnum):
    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


def status_name(code: int) -> str:
    """ Return the canonical name of a status code, or UNKNOWN. """
    try:
        return StatusCode(code).name
    except ValueError:
        return StatusCode.UNKNOWN.name


def request_headers(
    content_type: str = CONTENT_TYPE_GRPC_WEB,
    timeout: Optional[float] = None,
    extra: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """ Build the headers for a gRPC-Web request.

    :param content_type: the body content type. It is sent as both the
      Content-Type and the Accept header.

    :param timeout: an optional call deadline in seconds, sent as the
      ``Grpc-Timeout`` header.

    :param extra: custom headers. These are applied last and replace any
      default header with the same (case-insensitive) name.
    """
    hdrs = {
        HEADER_CONTENT_TYPE: content_type or CONTENT_TYPE_GRPC_WEB,
        HEADER_ACCEPT: content_type or CONTENT_TYPE_GRPC_WEB,
        HEADER_GRPC_WEB: "1",
        HEADER_USER_AGENT: USER_AGENT,
    }
    if timeout:
        hdrs[HEADER_GRPC_TIMEOUT] = format_timeout(timeout)

    return merge_headers(hdrs, extra or {})


def merge_headers(*mappings: Mapping[str, str]) -> Dict[str, str]:
    """ Merge header mappings left to right.

    A later header replaces an earlier one whose name matches regardless of
    case. The spelling of the later name is kept.
    """
    merged = {}  # type: Dict[str, str]
    for mapping in mappings:
        for key, value in mapping.items():
            for existing in [k for k in merged if k.lower() == key.lower()]:
                del merged[existing]
            merged[key] = value
    return merged


def parse_status_code(value: str) -> int:
    """ Return the leading integer of a ``grpc-status`` value, or 0. """
    match = _STATUS_CODE_RE.match(value or "")
    return int(match.group(1)) if match else 0


def format_timeout(seconds: float) -> str:
    """ Format a duration as a ``grpc-timeout`` value (e.g. ``1500000u``).

    The most precise unit whose value still fits in 8 digits is chosen.
    """
    if seconds <= 0:
        raise ValueError(f"timeout must be positive, got {seconds}")

    for unit, scale in reversed(_TIMEOUT_UNITS):
        value = round(seconds / scale)
        if value <= _TIMEOUT_MAX_VALUE:
            return f"{max(value, 1)}{unit}"

    return f"{_TIMEOUT_MAX_VALUE}H"


def status_from_headers(hdrs: Mapping[str, str]):
    """ Extract a gRPC status carried in HTTP response headers.

    :returns: a tuple containing the status code and message. The code is 0
      when the header is missing or unparseable.
    """
    lowered = {k.lower(): v for k, v in hdrs.items()}
    return parse_status_code(lowered.get(GRPC_STATUS, "")), lowered.get(GRPC_MESSAGE, "")


def has_status(hdrs: Mapping[str, str]) -> bool:
    """ Return True if the HTTP headers carry a gRPC status. """
    return any(k.lower() == GRPC_STATUS for k in hdrs.keys())
