"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Error hierarchy for model calls.
"""

from __future__ import annotations

CREDENTIALS_MESSAGE = "The model API key is invalid. Check the MCPCHAT_LLM_API_KEY setting."
MISSING_CREDENTIALS_MESSAGE = "No model API key is configured. Set MCPCHAT_LLM_API_KEY."
RATE_LIMITED_MESSAGE = "Too many requests. Please wait a moment and try again."
GENERIC_MESSAGE = "The model failed to respond. Please try again."


class LLMError(RuntimeError):
    """Base model call error carrying the upstream HTTP status when known."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMRetryableError(LLMError):
    """Raised for rate-limited calls that may succeed after backing off."""


class LLMConfigurationError(LLMError):
    """Raised when the model client is missing required configuration."""


class GatewayError(LLMError):
    """Terminal failure of one turn, with a user-presentable message."""

    def __init__(self, message: str, *, status_code: int = 500) -> None:
        super().__init__(message, status_code=status_code)


def user_message_for_status(status_code: int | None) -> str:
    if status_code in (401, 403):
        return CREDENTIALS_MESSAGE
    if status_code == 429:
        return RATE_LIMITED_MESSAGE
    return GENERIC_MESSAGE
