from __future__ import annotations  # Re-export llm_gateway public API

from .llm_gateway import (
    GATEWAY_ERROR_KINDS,
    HttpClient,
    HttpResponse,
    LlmGatewayError,
    LlmReply,
    bind_chat_route,
    chat,
    chat_json,
)

__all__ = [
    "GATEWAY_ERROR_KINDS",
    "HttpClient",
    "HttpResponse",
    "LlmGatewayError",
    "LlmReply",
    "bind_chat_route",
    "chat",
    "chat_json",
]
