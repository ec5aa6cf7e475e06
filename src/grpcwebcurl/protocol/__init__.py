""" gRPC-Web wire protocol: message framing, headers and body encodings """
from . import encoding
from . import framing
from . import headers
from . import wire
