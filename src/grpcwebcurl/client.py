"""
This module contains the HTTP client that carries gRPC-Web calls.

A call is an HTTP POST to ``<base-url>/<package.Service>/<Method>`` whose
body holds the request message in a single data frame. The response body is
decoded frame by frame as it arrives, so server streaming calls can hand each
message to the caller before the stream ends.
"""

import io
import logging
import os
import ssl
from typing import Callable, Dict, Iterator, List, Mapping, Optional

import httpx
from yarl import URL

from grpcwebcurl.errors import FrameError, HttpError, TransportError
from grpcwebcurl.protocol import encoding, framing, headers
from grpcwebcurl.protocol.framing import Status

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 10.0

StreamHandlerType = Callable[[bytes], None]


class ClientOptions(object):
    """ Connection settings for a :class:`Client`. """

    def __init__(
        self,
        insecure: bool = False,
        plaintext: bool = False,
        cert_file: Optional[str] = None,
        key_file: Optional[str] = None,
        ca_file: Optional[str] = None,
        server_name: Optional[str] = None,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        max_message_size: int = framing.MAX_MESSAGE_SIZE,
        http2: bool = False,
        body_encoding: str = encoding.ENCODING_PROTO,
    ) -> None:
        """
        :param insecure: skip verification of the server certificate.

        :param plaintext: use HTTP without TLS. Addresses given without a
          scheme get ``http://`` instead of ``https://``.

        :param cert_file: a PEM client certificate. Used with key_file.

        :param key_file: the private key for cert_file.

        :param ca_file: a PEM bundle of CA certificates used to verify the
          server instead of the system default.

        :param server_name: override the TLS server name (SNI) sent to the
          server.

        :param timeout: the total time allowed for a call, in seconds. If not
          specified the environment is inspected for ``GRPCWEBCURL_TIMEOUT``
          and then a default of 30 seconds is used.

        :param connect_timeout: the time allowed to establish a connection.
          If not specified the environment is inspected for
          ``GRPCWEBCURL_CONNECT_TIMEOUT`` and then a default of 10 seconds
          is used.

        :param max_message_size: the largest response message accepted.

        :param http2: negotiate HTTP/2. Requires the ``http2`` extra.

        :param body_encoding: the gRPC-Web body encoding, ``proto`` (binary)
          or ``text`` (base64).
        """
        self.insecure = insecure
        self.plaintext = plaintext
        self.cert_file = cert_file
        self.key_file = key_file
        self.ca_file = ca_file
        self.server_name = server_name
        self.timeout = (
            timeout
            if timeout is not None
            else float(os.getenv("GRPCWEBCURL_TIMEOUT", str(DEFAULT_TIMEOUT)))
        )
        self.connect_timeout = (
            connect_timeout
            if connect_timeout is not None
            else float(
                os.getenv("GRPCWEBCURL_CONNECT_TIMEOUT", str(DEFAULT_CONNECT_TIMEOUT))
            )
        )
        self.max_message_size = max_message_size
        self.http2 = http2
        self.body_encoding = body_encoding


class Request(object):
    """ A single call to make. ``message`` is the serialized request. """

    def __init__(
        self,
        service: str,
        method: str,
        message: bytes = b"",
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.service = service
        self.method = method
        self.message = message
        self.headers = dict(headers or {})


class Response(object):
    """ The outcome of a call.

    ``status`` is always set. It is OK when the server signalled nothing.
    """

    def __init__(
        self,
        messages: Optional[List[bytes]] = None,
        trailers: Optional[Dict[str, str]] = None,
        status: Optional[Status] = None,
        http_status: int = 200,
        http_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.messages = messages if messages is not None else []
        self.trailers = trailers if trailers is not None else {}
        self.status = status if status is not None else Status(headers.StatusCode.OK, "")
        self.http_status = http_status
        self.http_headers = http_headers if http_headers is not None else {}

    @property
    def ok(self) -> bool:
        return self.status.code == headers.StatusCode.OK

    def __repr__(self):
        return (
            f"<Response http_status={self.http_status} status={self.status} "
            f"messages={len(self.messages)}>"
        )


def build_base_url(address: str, plaintext: bool = False) -> URL:
    """ Return the base URL for an address.

    :param address: a URL (``https://api.example.com``) or a bare
      ``host:port``. Bare addresses get ``http://`` when plaintext is set and
      ``https://`` otherwise.
    """
    if "://" not in address:
        scheme = "http" if plaintext else "https"
        address = f"{scheme}://{address}"
    return URL(address)


def create_ssl_context(options: ClientOptions) -> ssl.SSLContext:
    """ Create the TLS context described by *options*.

    :raises: TransportError if a certificate or key can't be loaded.
    """
    try:
        context = ssl.create_default_context(cafile=options.ca_file)
        if options.insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if options.cert_file and options.key_file:
            context.load_cert_chain(options.cert_file, options.key_file)
    except (ssl.SSLError, OSError) as exc:
        raise TransportError(f"failed to configure TLS: {exc}") from exc
    return context


class _ResponseReader(io.RawIOBase):
    """ Adapts an iterator of body chunks to a blocking file-like reader. """

    def __init__(self, chunks: Iterator[bytes]) -> None:
        self._chunks = chunks
        self._pending = b""

    def readable(self):
        return True

    def readinto(self, buffer):
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


class Client(object):
    """
    A gRPC-Web client.

    Each call opens an HTTP request, writes a single framed request message
    and decodes the framed response. A client holds a connection pool and
    should be closed when no longer needed (or used as a context manager).
    """

    def __init__(
        self,
        base_url: str,
        options: Optional[ClientOptions] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """
        :param base_url: the server address. See :func:`build_base_url`.

        :param options: connection settings. Defaults are used if not set.

        :param transport: an optional httpx transport to send requests
          through instead of the network (e.g. ``httpx.MockTransport``).
        """
        self.options = options or ClientOptions()
        self.base_url = build_base_url(base_url, plaintext=self.options.plaintext)
        self.headers = {}  # type: Dict[str, str]
        self.body_encoding = self.options.body_encoding

        verify = True  # type: object
        if self.base_url.scheme == "https":
            verify = create_ssl_context(self.options)

        self._http = httpx.Client(
            verify=verify,
            timeout=httpx.Timeout(
                self.options.timeout, connect=self.options.connect_timeout
            ),
            http2=self.options.http2,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        """ Release pooled connections """
        self._http.close()

    def set_header(self, key: str, value: str) -> None:
        """ Set a header sent with every request """
        self.headers = headers.merge_headers(self.headers, {key: value})

    def set_headers(self, hdrs: Mapping[str, str]) -> None:
        self.headers = headers.merge_headers(self.headers, hdrs)

    def set_body_encoding(self, name_or_type: str) -> None:
        """ Select the body encoding by name (``proto``/``text``) or mime-type.

        :raises: ValueError if the encoding is unknown.
        """
        encoding.registry.get_codec(name_or_type)
        self.body_encoding = name_or_type

    def method_url(self, service: str, method: str) -> str:
        return str(self.base_url / service / method)

    def invoke(self, request: Request) -> Response:
        """ Make a unary call. """
        return self._call(request, None)

    def invoke_server_stream(
        self, request: Request, handler: Optional[StreamHandlerType] = None
    ) -> Response:
        """ Make a server streaming call.

        :param handler: called with each response message as soon as it has
          been received. An exception raised by the handler aborts the call
          and is propagated to the caller.
        """
        return self._call(request, handler)

    def _call(
        self, request: Request, handler: Optional[StreamHandlerType]
    ) -> Response:
        url = self.method_url(request.service, request.method)
        content_type, body = encoding.encode(
            framing.encode_message(request.message), self.body_encoding
        )
        hdrs = headers.request_headers(
            content_type,
            timeout=self.options.timeout,
            extra=headers.merge_headers(self.headers, request.headers),
        )

        extensions = {}
        if self.options.server_name:
            extensions["sni_hostname"] = self.options.server_name

        logger.debug(f"> POST {url}")
        for key, value in hdrs.items():
            logger.debug(f"> {key}: {value}")

        try:
            with self._http.stream(
                "POST", url, content=body, headers=hdrs, extensions=extensions
            ) as http_resp:
                logger.debug(f"< {http_resp.status_code} {http_resp.reason_phrase}")
                for key, value in http_resp.headers.items():
                    logger.debug(f"< {key}: {value}")

                if http_resp.status_code != 200:
                    code, message = headers.status_from_headers(http_resp.headers)
                    if code or message:
                        return Response(
                            status=Status(code, message),
                            http_status=http_resp.status_code,
                            http_headers=http_resp.headers,
                        )
                    raise HttpError(http_resp.status_code, http_resp.reason_phrase)

                decoded = framing.read_response(
                    self._body_reader(http_resp),
                    on_message=handler,
                    max_message_size=self.options.max_message_size,
                )
        except httpx.HTTPError as exc:
            raise TransportError(f"request failed: {exc}") from exc

        status = decoded.status
        if status is None and headers.has_status(http_resp.headers):
            # A trailers-only reply carries its status in the HTTP headers
            status = Status(*headers.status_from_headers(http_resp.headers))

        return Response(
            messages=decoded.messages,
            trailers=decoded.trailers,
            status=status,
            http_status=http_resp.status_code,
            http_headers=http_resp.headers,
        )

    def _body_reader(self, http_resp: httpx.Response):
        # The reply's content type wins over the encoding that was requested
        content_type = http_resp.headers.get(headers.HEADER_CONTENT_TYPE, "").lower()
        if content_type.startswith("application/grpc-web-text"):
            name = encoding.ENCODING_TEXT
        elif content_type.startswith("application/grpc-web"):
            name = encoding.ENCODING_PROTO
        else:
            name = self.body_encoding

        if encoding.registry.get_codec(name).content_type == headers.CONTENT_TYPE_GRPC_WEB:
            return _ResponseReader(http_resp.iter_bytes())

        # Text mode segments are not frame aligned, so decode the whole body
        try:
            return io.BytesIO(encoding.decode(http_resp.read(), name))
        except ValueError as exc:
            raise FrameError(str(exc)) from exc
