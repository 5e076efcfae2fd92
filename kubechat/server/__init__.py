"""kubechat server module - Wire protocol, routing and the connection loop."""

from kubechat.server.protocol import (
    HttpRequest,
    HttpResponse,
    IncompleteRequestError,
    Method,
    Path,
    ProtocolError,
    RequestReader,
    RequestTooLargeError,
    decode_request,
)
from kubechat.server.router import ChatEnvelope, ChatHandler, Router
from kubechat.server.server import HttpServer

__all__ = [
    "HttpServer",
    "Router",
    "ChatHandler",
    "ChatEnvelope",
    "HttpRequest",
    "HttpResponse",
    "Method",
    "Path",
    "RequestReader",
    "ProtocolError",
    "RequestTooLargeError",
    "IncompleteRequestError",
    "decode_request",
]
