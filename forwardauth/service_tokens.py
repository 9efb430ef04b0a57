"""
Service token header table.
Cloudflare Access service tokens carry their client ID in the `common_name` claim
instead of a human identity; this table maps each client ID to fixed headers.
Loaded once at startup from YAML; read-only afterwards.

File format:

    "0123abcd.access":
      X-User-Email: robot@example.com
      X-Group-Name: automation
"""
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import yaml

from forwardauth.errors import ConfigError
from forwardauth.headers import is_valid_header_name, is_valid_header_value, set_header

logger = logging.getLogger(__name__)


class ServiceTokenHeaderTable:
    """Immutable client ID -> {header name: header value} mapping."""

    __slots__ = ("_table",)

    def __init__(self, table: Mapping[str, Mapping[str, str]] | None = None):
        frozen = {}
        for client_id, raw_headers in (table or {}).items():
            frozen[client_id] = MappingProxyType(_validated_headers(client_id, raw_headers))
        self._table = MappingProxyType(frozen)

    @classmethod
    def from_mapping_file(cls, path: str | Path) -> "ServiceTokenHeaderTable":
        """Parse the YAML mapping file. Any read, parse or shape problem is a ConfigError."""
        p = Path(path)
        try:
            with p.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Failed to open service token mapping file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to deserialize YAML in {path}: {e}") from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Service token mapping file {path} must contain a mapping at the top level")
        table = cls(raw)
        logger.info("Loaded %d service token header mapping(s) from %s", len(table), path)
        return table

    def get_header_map_for_token(self, client_id: str) -> Mapping[str, str] | None:
        return self._table.get(client_id)

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._table


def _validated_headers(client_id: object, raw_headers: object) -> dict[str, str]:
    if not isinstance(client_id, str):
        raise ConfigError(f"Service token client ID must be a string, got {client_id!r}")
    if not isinstance(raw_headers, dict):
        raise ConfigError(f"Headers for service token '{client_id}' must be a mapping of name to value")
    headers: dict[str, str] = {}
    for name, value in raw_headers.items():
        if not isinstance(name, str) or not is_valid_header_name(name):
            raise ConfigError(f"Failed to parse header key '{name}' for service token '{client_id}'")
        # YAML turns bare numbers/booleans into non-strings; headers are text
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str) or not is_valid_header_value(value):
            raise ConfigError(f"Failed to parse header value '{value}' for service token '{client_id}'")
        set_header(headers, name, value)
    return headers
