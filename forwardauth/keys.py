"""
Verification keys for Cloudflare Access assertions.

IssuerIdentity derives the JWKS URL from the team domain. KeySetSnapshot is an
immutable key set built from one JWKS document. KeySetCache holds the current
snapshot behind a single reference: the refresher is the only writer and request
handlers read it without locking. A reader sees either no snapshot or a complete
one, since publishing is one attribute assignment.
"""
import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterator

from jwt import PyJWK
from jwt.exceptions import InvalidKeyError, PyJWKError

from forwardauth.config import parse_issuer_url
from forwardauth.errors import KeySetError

logger = logging.getLogger(__name__)

JWKS_PATH = "/cdn-cgi/access/certs"


@dataclass(frozen=True)
class IssuerIdentity:
    """The Access team domain, e.g. https://team.cloudflareaccess.com (no trailing slash)."""

    url: str

    @classmethod
    def from_url(cls, value: str | None) -> "IssuerIdentity":
        return cls(parse_issuer_url(value))

    @property
    def jwks_url(self) -> str:
        return f"{self.url}{JWKS_PATH}"


class KeySetSnapshot:
    """Immutable set of public keys from one JWKS document, looked up by kid."""

    __slots__ = ("_keys", "_by_kid", "_fingerprint")

    def __init__(self, keys: list[PyJWK], fingerprint: str):
        by_kid: dict[str, PyJWK] = {}
        for key in keys:
            if key.key_id is not None and key.key_id not in by_kid:
                by_kid[key.key_id] = key
        self._keys = tuple(keys)
        self._by_kid = MappingProxyType(by_kid)
        self._fingerprint = fingerprint

    @classmethod
    def from_jwks(cls, data: Any) -> "KeySetSnapshot":
        """
        Build a snapshot from a decoded JWKS document.
        Skips encryption keys and keys PyJWT cannot load; raises KeySetError if none remain.
        """
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise KeySetError("JWKS document has no 'keys' list")

        keys = []
        for jwk_data in data["keys"]:
            if not isinstance(jwk_data, dict):
                logger.debug("Skipping non-object JWKS entry")
                continue
            if jwk_data.get("use", "sig") != "sig":
                logger.debug("Skipping non-signing key kid=%s", jwk_data.get("kid"))
                continue
            try:
                keys.append(PyJWK(jwk_data))
            except (PyJWKError, InvalidKeyError, ValueError, TypeError, KeyError) as e:
                logger.debug("Skipping unusable key kid=%s: %s", jwk_data.get("kid"), e)

        if not keys:
            raise KeySetError("JWKS document contains no usable signing keys")
        fingerprint = json.dumps(data["keys"], sort_keys=True)
        return cls(keys, fingerprint)

    def get_key(self, kid: str | None) -> PyJWK | None:
        """Key for the given kid. A token without a kid may use the key set's only key."""
        if kid is None:
            return self._keys[0] if len(self._keys) == 1 else None
        return self._by_kid.get(kid)

    @property
    def key_ids(self) -> list[str]:
        return list(self._by_kid)

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[PyJWK]:
        return iter(self._keys)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeySetSnapshot):
            return NotImplemented
        return self._fingerprint == other._fingerprint

    def __hash__(self) -> int:
        return hash(self._fingerprint)

    def __repr__(self) -> str:
        return f"KeySetSnapshot(key_ids={self.key_ids!r})"


class KeySetCache:
    """Holds at most one KeySetSnapshot. One writer (the refresher), any number of readers."""

    __slots__ = ("_snapshot",)

    def __init__(self, snapshot: KeySetSnapshot | None = None):
        self._snapshot = snapshot

    def read(self) -> KeySetSnapshot | None:
        return self._snapshot

    def publish(self, snapshot: KeySetSnapshot) -> None:
        self._snapshot = snapshot

    @property
    def is_ready(self) -> bool:
        """True once any snapshot has been published; never reverts."""
        return self._snapshot is not None
