"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Model settings and explicit config loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import MISSING_CREDENTIALS_MESSAGE, LLMConfigurationError
from .runtime.contracts import RetryPolicy

# Placeholder some starter .env files ship with.
_PLACEHOLDER_KEYS = {"", "your-api-key-here"}


@dataclass(frozen=True, slots=True)
class LLMSettings:
    """Explicit settings used by the model gateway and its transport."""

    model: str = "gemini/gemini-2.0-flash"
    api_key: str | None = None
    api_base_url: str | None = None
    temperature: float | None = None

    max_retries: int = 3
    backoff_step_s: float = 2.0

    @property
    def has_api_key(self) -> bool:
        return self.api_key is not None and self.api_key.strip() not in _PLACEHOLDER_KEYS

    def require_api_key(self) -> str:
        """Return the API key or raise ``LLMConfigurationError`` when unset."""
        if not self.has_api_key:
            raise LLMConfigurationError(MISSING_CREDENTIALS_MESSAGE, status_code=500)
        return self.api_key.strip()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff_step_s=self.backoff_step_s,
        )

    @staticmethod
    def from_env() -> "LLMSettings":
        """Load settings from environment variables."""
        temperature = os.getenv("MCPCHAT_LLM_TEMPERATURE")
        return LLMSettings(
            model=os.getenv("MCPCHAT_LLM_MODEL", "gemini/gemini-2.0-flash"),
            api_key=os.getenv("MCPCHAT_LLM_API_KEY") or os.getenv("GEMINI_API_KEY"),
            api_base_url=os.getenv("MCPCHAT_LLM_API_BASE_URL"),
            temperature=float(temperature) if temperature else None,
            max_retries=int(os.getenv("MCPCHAT_LLM_MAX_RETRIES", "3")),
            backoff_step_s=float(os.getenv("MCPCHAT_LLM_BACKOFF_STEP_S", "2.0")),
        )
