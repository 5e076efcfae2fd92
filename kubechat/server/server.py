"""Asyncio TCP server for the kubechat endpoint."""

import asyncio
from http import HTTPStatus
from typing import Optional

import structlog

from kubechat.server.protocol import (
    DEFAULT_MAX_REQUEST_BYTES,
    HttpResponse,
    IncompleteRequestError,
    RequestReader,
    RequestTooLargeError,
    decode_request,
)
from kubechat.server.router import Router

READ_CHUNK_SIZE = 4096


class HttpServer:
    """
    Serves one request per connection.

    Each accepted connection runs in its own task: read the request, decode
    it, route it, write the response and close. At most ``max_connections``
    connections are processed at the same time; further clients wait for a
    free slot.
    """

    def __init__(
        self,
        router: Router,
        host: str = "127.0.0.1",
        port: int = 8080,
        max_connections: int = 8,
        max_request_bytes: int = DEFAULT_MAX_REQUEST_BYTES,
        read_timeout: Optional[float] = None,
    ):
        """Initialize HTTP server."""
        self.router = router
        self.host = host
        self.port = port
        self.max_connections = max_connections
        self.max_request_bytes = max_request_bytes
        self.read_timeout = read_timeout
        self.server: asyncio.Server | None = None
        self._slots = asyncio.Semaphore(max_connections)
        self.logger = structlog.get_logger("kubechat.server")

    @property
    def bound_port(self) -> int:
        """Port actually bound, useful when started with port 0."""
        if self.server is None or not self.server.sockets:
            return self.port
        return self.server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Bind the listening socket."""
        self.server = await asyncio.start_server(
            self.handle_connection,
            self.host,
            self.port,
        )
        self.logger.info(f"Server listening on {self.host}:{self.bound_port}")

    async def serve_forever(self) -> None:
        """Start (if needed) and serve until stopped or cancelled."""
        if self.server is None:
            await self.start()
        try:
            await self.server.serve_forever()
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop accepting connections and wait for the listener to close."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
        self.logger.info("Server stopped")

    async def read_request(self, reader: asyncio.StreamReader) -> RequestReader:
        """Read from the client until a full request has been framed.

        Raises:
            RequestTooLargeError: If the request exceeds the size cap
            IncompleteRequestError: If the client closes mid-request
            TimeoutError: If ``read_timeout`` elapses
        """
        framer = RequestReader(self.max_request_bytes)
        async with asyncio.timeout(self.read_timeout):
            while not framer.complete:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                framer.feed(chunk)
        return framer

    async def handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle a single client connection."""
        peer = writer.get_extra_info("peername")
        async with self._slots:
            self.logger.debug(f"Accepted connection from {peer}")
            try:
                response = await self._respond(reader)
                if response is not None:
                    self.logger.debug(f"Sending response: {response.status.value}")
                    writer.write(response.to_bytes())
                    await writer.drain()
            except (ConnectionError, TimeoutError) as e:
                self.logger.error(f"Error handling client {peer}: {e!r}")
            finally:
                writer.close()
                try:
                    await writer.wait_closed()
                except ConnectionError:
                    pass

    async def _respond(self, reader: asyncio.StreamReader) -> Optional[HttpResponse]:
        """Read, decode and route one request. None means nothing to answer."""
        try:
            framer = await self.read_request(reader)
        except RequestTooLargeError as e:
            self.logger.warning(f"Rejecting oversized request: {e}")
            return HttpResponse(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, "Request too large")

        if framer.bytes_received == 0:
            self.logger.debug("Client closed the connection without sending a request")
            return None

        try:
            raw = framer.request_bytes()
        except IncompleteRequestError as e:
            self.logger.warning(f"Received incomplete request: {e}")
            return HttpResponse(HTTPStatus.BAD_REQUEST, "Incomplete request")

        request = decode_request(raw)
        if request is None:
            # Only the request line, header values may carry the API key
            request_line = raw.split(b"\n", 1)[0][:256]
            self.logger.warning("Received malformed request, returning 400")
            self.logger.debug(f"Rejected request line: {request_line!r}")
            return HttpResponse(HTTPStatus.BAD_REQUEST, "Invalid request")

        self.logger.debug(f"Parsed request: method={request.method.value}, path={request.path.value}")
        return await self.router.handle(request)
