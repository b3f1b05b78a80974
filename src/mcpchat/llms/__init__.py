"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Model access for mcpchat: tool declarations, request contents and the
streaming tool-call gateway.
"""

from .contents import build_contents, results_message
from .errors import GatewayError, LLMConfigurationError, LLMError, LLMRetryableError
from .gateway import ModelGateway
from .runtime import RetryPolicy
from .settings import LLMSettings
from .tool_export import build_tool_declarations, normalize_json_schema
from .transport import LiteLLMTransport, ModelTransport
from .types import (
    FunctionResult,
    GatewayEvent,
    Message,
    ModelRequest,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    "FunctionResult",
    "GatewayError",
    "GatewayEvent",
    "LLMConfigurationError",
    "LLMError",
    "LLMRetryableError",
    "LLMSettings",
    "LiteLLMTransport",
    "Message",
    "ModelGateway",
    "ModelRequest",
    "ModelTransport",
    "RetryPolicy",
    "ToolCall",
    "ToolDefinition",
    "build_contents",
    "build_tool_declarations",
    "normalize_json_schema",
    "results_message",
]
