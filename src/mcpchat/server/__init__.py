"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

HTTP boundary for mcpchat.
"""

from .app import ChatServer, ChatServerConfig, create_app

__all__ = ["ChatServer", "ChatServerConfig", "create_app"]
