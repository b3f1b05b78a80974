"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Typed runtime policies for model execution.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Retry semantics for opening a model stream.

    Only rate-limited attempts are retried. Attempt ``n`` (zero-based) waits
    ``backoff_step_s * (n + 1)`` seconds before the next try.
    """

    max_retries: int = 3
    backoff_step_s: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return self.backoff_step_s * (attempt + 1)
