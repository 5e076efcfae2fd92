"""Request authentication, dispatch and the chat handler."""

import secrets
from http import HTTPStatus
from typing import List, Optional

import structlog
from pydantic import BaseModel, ValidationError

from kubechat.llm.provider import ChatBackend, ChatMessage, ChatRole, LLMError
from kubechat.server.protocol import HttpRequest, HttpResponse, Method, Path

HEALTHY_BODY = '{"healthy": true}'

logger = structlog.get_logger("kubechat.server.router")


class HistoryEntry(BaseModel):
    """One turn of client-supplied chat history."""

    role: str
    content: str


class ChatEnvelope(BaseModel):
    """Body of ``POST /chat``."""

    prompt: str
    chat_history: Optional[List[HistoryEntry]] = None


class InvalidRoleError(ValueError):
    """Raised when a history entry carries an unknown role."""

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Invalid role in chat history: {role!r}")


def convert_history(entries: Optional[List[HistoryEntry]]) -> List[ChatMessage]:
    """Convert client history into backend messages.

    Raises:
        InvalidRoleError: On the first entry whose role is not user/assistant
    """
    messages = []
    for entry in entries or []:
        try:
            role = ChatRole(entry.role)
        except ValueError as e:
            raise InvalidRoleError(entry.role) from e
        messages.append(ChatMessage(role=role, content=entry.content))
    return messages


class ChatHandler:
    """Handles ``POST /chat`` by forwarding the prompt to a ChatBackend."""

    def __init__(self, backend: ChatBackend):
        self.backend = backend

    async def handle(self, body: Optional[bytes]) -> HttpResponse:
        if body is None:
            logger.warning("Chat request missing body")
            return HttpResponse(HTTPStatus.BAD_REQUEST, "Missing request body")

        try:
            envelope = ChatEnvelope.model_validate_json(body)
        except ValidationError as e:
            logger.warning(f"Failed to parse chat request JSON: {e.error_count()} errors")
            logger.debug(f"Rejected chat body: {body!r}")
            return HttpResponse(HTTPStatus.BAD_REQUEST, "Invalid JSON body")

        logger.info(f"Processing chat request ({len(envelope.prompt)} chars)")

        try:
            history = convert_history(envelope.chat_history)
        except InvalidRoleError as e:
            logger.warning(f"Invalid message role in chat history: {e.role!r}")
            return HttpResponse(HTTPStatus.BAD_REQUEST, "Invalid message role in chat history")

        if history:
            logger.debug(f"Including {len(history)} historical messages")

        try:
            reply = await self.backend.chat(envelope.prompt, history)
        except LLMError as e:
            logger.error(f"Failed to generate chat response: {e}")
            return HttpResponse(HTTPStatus.INTERNAL_SERVER_ERROR, "Failed to generate response")

        logger.info(f"Generated response ({len(reply)} chars)")
        return HttpResponse(HTTPStatus.OK, reply)


class Router:
    """Authenticates requests and dispatches them by path and method.

    The API key is checked before anything else, so even health checks
    require a valid key.
    """

    def __init__(self, api_key: str, chat_handler: ChatHandler):
        if not api_key:
            raise ValueError("Server API key must not be empty")
        self._api_key = api_key
        self.chat_handler = chat_handler

    def authenticate(self, request: HttpRequest) -> Optional[HttpResponse]:
        """Return an error response if the request is not authorized, else None."""
        if request.api_key is None:
            logger.warning("Request missing API key")
            return HttpResponse(HTTPStatus.UNAUTHORIZED, "Missing API key")

        if not secrets.compare_digest(request.api_key.encode("utf-8"), self._api_key.encode("utf-8")):
            logger.warning("Invalid API key attempt")
            return HttpResponse(HTTPStatus.FORBIDDEN, "Invalid API key")

        return None

    async def handle(self, request: HttpRequest) -> HttpResponse:
        """Produce the response for a decoded request."""
        logger.debug(f"Routing request: method={request.method.value}, path={request.path.value}")

        rejection = self.authenticate(request)
        if rejection is not None:
            return rejection

        try:
            return await self._dispatch(request)
        except Exception:
            logger.exception(f"Unhandled error while serving {request.method.value} {request.path.value}")
            return HttpResponse(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal server error")

    async def _dispatch(self, request: HttpRequest) -> HttpResponse:
        if request.path is Path.ROOT:
            if request.method is Method.GET:
                logger.debug("Health check requested")
                return HttpResponse(HTTPStatus.OK, HEALTHY_BODY)
            return self._method_not_allowed(request)

        if request.path is Path.CHAT:
            if request.method is Method.POST:
                return await self.chat_handler.handle(request.body)
            return self._method_not_allowed(request)

        if request.path is Path.FAVICON:
            logger.debug("Favicon request received, returning 404")
            return HttpResponse(HTTPStatus.NOT_FOUND, "Favicon not found")

        logger.warning(f"No route for path {request.path.value}")
        return HttpResponse(HTTPStatus.BAD_REQUEST, "Invalid request")

    @staticmethod
    def _method_not_allowed(request: HttpRequest) -> HttpResponse:
        logger.warning(f"Invalid HTTP method {request.method.value} for {request.path.value}")
        return HttpResponse(
            HTTPStatus.METHOD_NOT_ALLOWED,
            f"Invalid method for {request.path.value}",
        )
