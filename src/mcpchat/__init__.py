"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

mcpchat: a chat backend for language models with Model Context Protocol
tool calling and per-call human approval.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
