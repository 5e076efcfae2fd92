"""
Chat backend for the kubechat endpoint.

Wraps the OpenAI SDK behind the ChatBackend interface and exposes cluster
tools to the model.
"""

from kubechat.llm.provider import (
    ChatBackend,
    ChatMessage,
    ChatRole,
    LLMAuthenticationError,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
    OpenAIChatBackend,
    ToolExecutionError,
)
from kubechat.llm.tools import NodeMetricsTool, Tool

__all__ = [
    "ChatBackend",
    "ChatMessage",
    "ChatRole",
    "LLMError",
    "LLMAuthenticationError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "ToolExecutionError",
    "OpenAIChatBackend",
    "NodeMetricsTool",
    "Tool",
]
