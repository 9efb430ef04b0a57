"""
Error taxonomy for the forward-auth sidecar.

Startup problems raise ConfigError and stop the process. Key-set fetch problems
raise KeySetError and are retried by the refresher. Per-request problems raise a
TokenValidationError subclass (401) or NotReadyError (500). Each error carries a
short `code` for server-side logs; nothing here is ever sent to the caller.
"""


class AccessError(Exception):
    """Base class for all errors raised by this package."""

    code = "access_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class ConfigError(AccessError):
    """Invalid or missing startup configuration."""

    code = "config_error"


class KeySetError(AccessError):
    """JWKS document could not be turned into a usable key set."""

    code = "invalid_key_set"


class NotReadyError(AccessError):
    """No key set has been loaded yet."""

    code = "not_ready"


class TokenValidationError(AccessError):
    """Base class for assertion failures; all map to 401."""

    code = "invalid_token"


class MalformedTokenError(TokenValidationError):
    """Assertion is not a well-formed signed token."""

    code = "malformed_token"


class UnknownSigningKeyError(TokenValidationError):
    """No key in the current key set matches the token's key ID."""

    code = "unknown_signing_key"


class InvalidSignatureError(TokenValidationError):
    """Signature does not verify against the selected key."""

    code = "invalid_signature"


class ExpiredTokenError(TokenValidationError):
    """Token expired."""

    code = "expired"


class NotYetValidError(TokenValidationError):
    """Token is not valid yet (nbf in the future)."""

    code = "not_yet_valid"


class IssuerMismatchError(TokenValidationError):
    """Issuer claim does not match the configured team domain."""

    code = "issuer_mismatch"


class AudienceMismatchError(TokenValidationError):
    """Audience claim does not match the requested audience."""

    code = "audience_mismatch"
