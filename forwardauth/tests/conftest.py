"""
Pytest configuration for forwardauth. Environment is set before any app module is
imported, since config.py reads it at import time.
"""
import os

os.environ["CF_AUTH_DOMAIN"] = "https://test-team.cloudflareaccess.com"
os.environ["LISTEN_ADDR"] = "127.0.0.1:9000"
os.environ.pop("SERVICE_TOKEN_MAP_PATH", None)

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from forwardauth.keys import IssuerIdentity, KeySetSnapshot

ISSUER_URL = "https://test-team.cloudflareaccess.com"
AUDIENCE = "4714c1358e65fe4b408ad6d432a5f878f08194bdb4752441fd56faefa9b2b6f2"
NOW = 1_700_000_000


def _int_to_b64url(value: int) -> str:
    """Encode a positive int as base64url (JWK n/e)."""
    length = (value.bit_length() + 7) // 8
    s = jwt.utils.base64url_encode(value.to_bytes(length, "big"))
    return s.decode("utf-8") if isinstance(s, bytes) else s


def public_jwk(private_key, kid: str) -> dict:
    """RSA public JWK for the given private key, shaped like Cloudflare's certs endpoint."""
    pub = private_key.public_key().public_numbers()
    return {
        "kid": kid,
        "kty": "RSA",
        "alg": "RS256",
        "use": "sig",
        "e": _int_to_b64url(pub.e),
        "n": _int_to_b64url(pub.n),
    }


@pytest.fixture(scope="session")
def signing_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def other_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture
def issuer():
    return IssuerIdentity(ISSUER_URL)


@pytest.fixture
def audience():
    return AUDIENCE


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def jwks(signing_key):
    return {"keys": [public_jwk(signing_key, "key-1")]}


@pytest.fixture
def snapshot(jwks):
    return KeySetSnapshot.from_jwks(jwks)


@pytest.fixture
def make_token(signing_key):
    """
    Factory for signed assertions. Keyword overrides replace payload claims;
    an override of None removes the claim.
    """

    def _make(*, key=None, kid="key-1", now=NOW, algorithm="RS256", **overrides):
        payload = {
            "iss": ISSUER_URL,
            "aud": [AUDIENCE],
            "sub": "7335d417-61da-459d-899c-0a01c76a2f94",
            "email": "alice@example.com",
            "type": "app",
            "iat": now,
            "nbf": now,
            "exp": now + 3600,
            "custom": {"team_id": "eng-42", "group_name": "platform"},
        }
        for name, value in overrides.items():
            if value is None:
                payload.pop(name, None)
            else:
                payload[name] = value
        headers = {"kid": kid} if kid is not None else {}
        return jwt.encode(payload, key if key is not None else signing_key, algorithm=algorithm, headers=headers)

    return _make


@pytest.fixture
def other_jwks(other_key):
    return {"keys": [public_jwk(other_key, "key-2")]}


@pytest.fixture
def two_key_snapshot(signing_key, other_key):
    return KeySetSnapshot.from_jwks(
        {"keys": [public_jwk(signing_key, "key-1"), public_jwk(other_key, "key-2")]}
    )
