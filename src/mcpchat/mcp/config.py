"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Server config persistence contracts, in-memory store and JSON file loader.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from mcpchat.mcp.types import (
    SERVER_ID_MAX_LENGTH,
    ServerConnectionConfig,
    TransportConfigError,
)

logger = logging.getLogger("mcpchat.mcp.config")

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]+")
_UNDERSCORE_RUNS = re.compile(r"_{2,}")


class ServerConfigStore(Protocol):
    """Persistence contract for ``ServerConnectionConfig`` rows."""

    def load_all(self) -> list[ServerConnectionConfig]: ...

    def get(self, server_id: str) -> ServerConnectionConfig | None: ...

    def upsert(self, config: ServerConnectionConfig) -> None: ...

    def delete(self, server_id: str) -> None: ...


class InMemoryServerConfigStore:
    """Dict-backed config store. Configs are lost on process restart."""

    def __init__(self, configs: list[ServerConnectionConfig] | None = None) -> None:
        self._rows: dict[str, ServerConnectionConfig] = {}
        for config in configs or []:
            self.upsert(config)

    def load_all(self) -> list[ServerConnectionConfig]:
        """Return configs, most recently updated first."""
        return sorted(self._rows.values(), key=lambda c: c.updated_at, reverse=True)

    def get(self, server_id: str) -> ServerConnectionConfig | None:
        return self._rows.get(server_id)

    def upsert(self, config: ServerConnectionConfig) -> None:
        self._rows[config.id] = config

    def delete(self, server_id: str) -> None:
        self._rows.pop(server_id, None)


def _infer_transport(row: dict[str, Any]) -> str:
    explicit = row.get("transportType") or row.get("transport_type")
    if isinstance(explicit, str) and explicit:
        return explicit
    return "streamable-http" if row.get("url") else "stdio"


def server_id_from_key(key: str) -> str:
    """
    Derive a server id from an ``mcpServers`` key.

    Runs of characters function names cannot carry become ``-``, repeated
    underscores collapse to one and the result is cut to the id length
    limit. Returns an empty string when nothing usable is left.
    """
    slug = _UNDERSCORE_RUNS.sub("_", _UNSAFE_ID_CHARS.sub("-", key)).strip("-_")
    return slug[:SERVER_ID_MAX_LENGTH].rstrip("-_")


def parse_server_configs(document: dict[str, Any]) -> list[ServerConnectionConfig]:
    """
    Parse an ``{"mcpServers": {"<key>": {...}}}`` document.

    Each key becomes the server id (see ``server_id_from_key``) and, unless
    the row names one, the display name. The transport is inferred from the
    presence of ``url`` when a row does not name one. Rows that fail
    validation raise ``TransportConfigError``.
    """
    servers = document.get("mcpServers")
    if not isinstance(servers, dict):
        raise TransportConfigError("Config document requires an 'mcpServers' object")

    configs: list[ServerConnectionConfig] = []
    keys_by_id: dict[str, str] = {}
    for key, row in servers.items():
        key = str(key)
        if not isinstance(row, dict):
            raise TransportConfigError(f"Server '{key}' must be an object")
        server_id = server_id_from_key(key)
        if not server_id:
            raise TransportConfigError(f"Server key '{key}' has no usable id characters")
        if server_id in keys_by_id:
            raise TransportConfigError(
                f"Server keys '{keys_by_id[server_id]}' and '{key}' both map to id '{server_id}'"
            )
        keys_by_id[server_id] = key
        if server_id != key:
            logger.info("MCP server '%s' uses id '%s'", key, server_id)
        payload = {
            **row,
            "id": server_id,
            "name": row.get("name") or key,
            "transportType": _infer_transport(row),
        }
        payload.pop("transport_type", None)
        try:
            configs.append(ServerConnectionConfig.model_validate(payload))
        except ValidationError as e:
            raise TransportConfigError(f"Invalid config for server '{key}': {e}") from e
    return configs


def load_server_configs(path: str | Path) -> list[ServerConnectionConfig]:
    """Load server configs from a JSON file."""
    file_path = Path(path)
    try:
        document = json.loads(file_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise TransportConfigError(f"Config file '{file_path}' cannot be read: {e}") from e
    except json.JSONDecodeError as e:
        raise TransportConfigError(f"Config file '{file_path}' is not valid JSON") from e
    if not isinstance(document, dict):
        raise TransportConfigError(f"Config file '{file_path}' must contain an object")
    configs = parse_server_configs(document)
    logger.info("Loaded %d MCP server configs from %s", len(configs), file_path)
    return configs
