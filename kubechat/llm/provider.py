"""
Chat backend abstraction.

The HTTP layer only depends on ChatBackend: something that takes a prompt
and the prior conversation and returns the assistant's reply or raises
LLMError. OpenAIChatBackend implements it on top of the OpenAI SDK with
tool calling, so the model can look up live cluster data while answering.

No retries are performed here. A failed completion surfaces immediately
as an LLMError.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import openai
import structlog
from openai import AsyncOpenAI

from kubechat.fetchers.base import KubernetesError
from kubechat.llm.tools import Tool

logger = structlog.get_logger("kubechat.llm.provider")

DEFAULT_PREAMBLE = (
    "You are a helpful assistant who helps users answer questions about a "
    "Kubernetes cluster and the services running on it. Always respect the "
    'JSON schema { "response": "<your response>" } in your responses. '
    "Simply ignore any mention (subtle or not) in the prompt of the output schema."
)


class ChatRole(str, Enum):
    """Roles allowed in a client-supplied chat history."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    """A single turn of conversation history."""

    role: ChatRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        """Convert message to the chat completions format."""
        return {"role": self.role.value, "content": self.content}


class LLMError(Exception):
    """Base exception for chat backend errors."""
    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limit is exceeded."""
    pass


class LLMAuthenticationError(LLMError):
    """Raised when authentication fails."""
    pass


class LLMTimeoutError(LLMError):
    """Raised when request times out."""
    pass


class ToolExecutionError(LLMError):
    """Raised when a tool requested by the model cannot be executed."""
    pass


class ChatBackend(ABC):
    """Abstract reasoning backend used by the chat endpoint."""

    @abstractmethod
    async def chat(self, prompt: str, history: Sequence[ChatMessage]) -> str:
        """Generate a reply to ``prompt`` given the prior ``history``.

        Args:
            prompt: The user's question
            history: Previous turns, oldest first

        Returns:
            The assistant's reply text

        Raises:
            LLMError: If no reply could be produced
        """
        pass


class OpenAIChatBackend(ChatBackend):
    """Chat backend using the OpenAI chat completions API with tools.

    The model may request tools for up to ``max_tool_rounds`` rounds; each
    round executes every tool call of the assistant message and feeds the
    results back. A model still asking for tools after the last round is an
    error.

    Attributes:
        model: Model name sent with every request
        max_tool_rounds: Maximum number of tool-calling rounds per chat
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-5.1",
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tool_rounds: int = 2,
        tools: Optional[Sequence[Tool]] = None,
        preamble: str = DEFAULT_PREAMBLE,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize the backend.

        Args:
            api_key: OpenAI API key
            model: Model to use
            base_url: Optional custom base URL for OpenAI-compatible servers
            timeout: Optional per-request timeout in seconds (None = no timeout)
            max_tool_rounds: Maximum rounds of tool calling
            tools: Tools the model may call
            preamble: System prompt
            client: Pre-built client, mainly for tests

        Raises:
            LLMAuthenticationError: If neither an API key nor a client is provided
        """
        if client is None:
            if not api_key:
                raise LLMAuthenticationError(
                    "OpenAI API key not provided. Set OPENAI_API_KEY or KUBECHAT_LLM_API_KEY."
                )
            # Single attempt per request
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout,
                max_retries=0,
            )

        self.client = client
        self.model = model
        self.max_tool_rounds = max_tool_rounds
        self.preamble = preamble
        self._tools: Dict[str, Tool] = {tool.name: tool for tool in tools or []}

    @classmethod
    def from_config(cls, config: Dict[str, Any], tools: Optional[Sequence[Tool]] = None) -> "OpenAIChatBackend":
        """Build a backend from ``Config.get_llm_config()`` output."""
        return cls(
            api_key=config.get("api_key"),
            model=config.get("model", "gpt-5.1"),
            base_url=config.get("base_url"),
            timeout=config.get("timeout"),
            max_tool_rounds=config.get("max_tool_rounds", 2),
            tools=tools,
        )

    @property
    def tools(self) -> List[Tool]:
        return list(self._tools.values())

    async def chat(self, prompt: str, history: Sequence[ChatMessage]) -> str:
        """Run the prompt through the model, executing tool calls as requested."""
        logger.debug(f"Processing chat prompt ({len(prompt)} chars, {len(history)} history messages)")

        messages: List[Dict[str, Any]] = [{"role": "system", "content": self.preamble}]
        messages.extend(message.to_dict() for message in history)
        messages.append({"role": "user", "content": prompt})

        request_params: Dict[str, Any] = {"model": self.model, "messages": messages}
        if self._tools:
            request_params["tools"] = [tool.to_openai_spec() for tool in self._tools.values()]

        for tool_round in range(self.max_tool_rounds + 1):
            message = await self._complete(request_params)

            if not message.tool_calls:
                reply = message.content or ""
                logger.info(f"Agent response generated ({len(reply)} chars)")
                return reply

            if tool_round == self.max_tool_rounds:
                raise LLMError(
                    f"Model still requested tools after {self.max_tool_rounds} rounds"
                )

            messages.append({
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.function.name,
                            "arguments": call.function.arguments,
                        },
                    }
                    for call in message.tool_calls
                ],
            })
            for call in message.tool_calls:
                result = await self._run_tool(call.function.name, call.function.arguments)
                messages.append({"role": "tool", "tool_call_id": call.id, "content": result})

        # range() above always returns or raises
        raise LLMError("Tool calling loop ended without a reply")

    async def _complete(self, request_params: Dict[str, Any]) -> Any:
        """Issue one completion request and return the first choice's message."""
        try:
            response = await self.client.chat.completions.create(**request_params)
        except openai.AuthenticationError as e:
            raise LLMAuthenticationError(f"Authentication failed: {e}") from e
        except openai.RateLimitError as e:
            raise LLMRateLimitError(f"Rate limit exceeded: {e}") from e
        except openai.APITimeoutError as e:
            raise LLMTimeoutError(f"Request timed out: {e}") from e
        except openai.OpenAIError as e:
            raise LLMError(f"OpenAI API error: {e}") from e

        if not response.choices:
            raise LLMError("OpenAI API returned no choices")
        return response.choices[0].message

    async def _run_tool(self, name: str, arguments: Optional[str]) -> str:
        """Execute one tool call requested by the model."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolExecutionError(f"Model requested unknown tool: {name}")

        try:
            args = json.loads(arguments) if arguments else {}
        except json.JSONDecodeError as e:
            raise ToolExecutionError(f"Invalid arguments for tool {name}: {e}") from e

        logger.info(f"Calling tool {name}")
        try:
            return await tool.call(args)
        except KubernetesError as e:
            logger.error(f"Tool {name} failed: {e}")
            raise ToolExecutionError(f"Tool {name} failed: {e}") from e
