"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Runtime policies and helpers for model calls.
"""

from .contracts import RetryPolicy
from .retry import call_with_retry, classify_error, status_code_of
from .streaming import ToolCallAccumulator, parse_arguments

__all__ = [
    "RetryPolicy",
    "ToolCallAccumulator",
    "call_with_retry",
    "classify_error",
    "parse_arguments",
    "status_code_of",
]
