"""
Cloudflare Access assertion validation.
Verifies the `Cf-Access-Jwt-Assertion` JWT against the cached key set, then checks
exp/nbf, iss and aud in that order. Each failure is classified (see errors.py) so
the caller can log the reason while only ever answering 401.
"""
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping

import jwt
from jwt import PyJWK

from forwardauth.errors import (
    AudienceMismatchError,
    ExpiredTokenError,
    InvalidSignatureError,
    IssuerMismatchError,
    MalformedTokenError,
    NotReadyError,
    NotYetValidError,
    UnknownSigningKeyError,
)
from forwardauth.keys import IssuerIdentity, KeySetSnapshot

logger = logging.getLogger(__name__)

# Cloudflare Access signs with RS256 only
ALGORITHMS = ["RS256"]

REQUIRED_CLAIMS = ("iss", "aud", "exp")

# Signature only; claim checks below run in a fixed order against an injectable clock
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_iss": False,
    "verify_aud": False,
}


@dataclass(frozen=True)
class VerifiedClaims:
    """
    Claims from a verified assertion.

    `custom` holds the "OIDC Claims" configured on the Access side (string values only).
    `service_token_id` is the client ID of the service token used, from `common_name`.
    """

    custom: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    service_token_id: str | None = None
    subject: str | None = None

    def claims(self) -> Iterator[tuple[str, str]]:
        """(name, value) pairs of custom claims, in arbitrary order."""
        return iter(self.custom.items())


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class TokenValidator:
    def __init__(
        self,
        issuer: IssuerIdentity,
        *,
        algorithms: list[str] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.issuer = issuer
        self.algorithms = list(algorithms or ALGORITHMS)
        self._clock = clock

    def validate(self, token: str, audience: str, snapshot: KeySetSnapshot | None) -> VerifiedClaims:
        """
        Verify `token` for `audience` against `snapshot`.
        Raises NotReadyError when no key set has been loaded, otherwise a
        TokenValidationError subclass on any failure.
        """
        if snapshot is None:
            raise NotReadyError("Validation requested before JWKS data was loaded")

        header = self._read_header(token)
        kid = header.get("kid")
        key = snapshot.get_key(kid)
        if key is None:
            raise UnknownSigningKeyError(f"No key with kid={kid!r} in the current key set")

        payload = self._verify_signature(token, header, key)
        self._check_times(payload)
        self._check_issuer(payload)
        self._check_audience(payload, audience)
        # The nonce claim is not verified; tokens without one are accepted.
        return self._extract(payload)

    def _read_header(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise MalformedTokenError("Assertion is empty")
        try:
            return jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"Assertion header could not be decoded: {e}") from e

    def _verify_signature(self, token: str, header: dict[str, Any], key: PyJWK) -> dict[str, Any]:
        alg = header.get("alg")
        if alg not in self.algorithms:
            raise InvalidSignatureError(f"Signing algorithm {alg!r} is not allowed")
        if key.algorithm_name != alg:
            raise InvalidSignatureError(
                f"Signing algorithm {alg!r} does not match key {key.key_id!r} ({key.algorithm_name})"
            )
        try:
            return jwt.decode(token, key.key, algorithms=[alg], options=_DECODE_OPTIONS)
        except jwt.InvalidSignatureError as e:
            raise InvalidSignatureError(f"Signature verification failed: {e}") from e
        except jwt.InvalidAlgorithmError as e:
            raise InvalidSignatureError(f"Signing algorithm rejected: {e}") from e
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"Assertion could not be decoded: {e}") from e

    def _check_times(self, payload: dict[str, Any]) -> None:
        missing = [name for name in REQUIRED_CLAIMS if name not in payload]
        if missing:
            raise MalformedTokenError(f"Assertion is missing required claim(s): {', '.join(missing)}")

        exp = payload["exp"]
        nbf = payload.get("nbf")
        if not _is_number(exp):
            raise MalformedTokenError("Claim 'exp' must be a number")
        if nbf is not None and not _is_number(nbf):
            raise MalformedTokenError("Claim 'nbf' must be a number")

        now = self._clock()
        # Expiry is inclusive: a token whose exp equals now is already expired
        if now >= exp:
            raise ExpiredTokenError(f"Assertion expired at {exp}")
        if nbf is not None and now < nbf:
            raise NotYetValidError(f"Assertion not valid before {nbf}")

    def _check_issuer(self, payload: dict[str, Any]) -> None:
        iss = payload["iss"]
        if iss != self.issuer.url:
            raise IssuerMismatchError(f"Issuer {iss!r} does not match {self.issuer.url!r}")

    def _check_audience(self, payload: dict[str, Any], audience: str) -> None:
        aud = payload["aud"]
        if isinstance(aud, str):
            audiences = [aud]
        elif isinstance(aud, list):
            audiences = aud
        else:
            raise MalformedTokenError("Claim 'aud' must be a string or a list")
        # Every listed audience must be the requested one; untrusted extras are rejected
        if not audiences or any(a != audience for a in audiences):
            raise AudienceMismatchError(f"Audience {aud!r} does not match {audience!r}")

    def _extract(self, payload: dict[str, Any]) -> VerifiedClaims:
        custom = payload.get("custom", {})
        if not isinstance(custom, dict):
            raise MalformedTokenError("Claim 'custom' must be an object")
        service_token_id = payload.get("common_name")
        if service_token_id is not None and not isinstance(service_token_id, str):
            raise MalformedTokenError("Claim 'common_name' must be a string")
        sub = payload.get("sub")

        return VerifiedClaims(
            custom=MappingProxyType({k: v for k, v in custom.items() if isinstance(v, str)}),
            service_token_id=service_token_id,
            subject=sub if isinstance(sub, str) else None,
        )
