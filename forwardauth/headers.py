"""
HTTP header-field helpers: legality checks (RFC 7230) and claim-name to
header-name conversion.
"""
import re

# field-name = token
_TOKEN_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")

# Visible ASCII, SP and HTAB only; rejects CR/LF/NUL, other controls and non-ASCII
_FIELD_VALUE_RE = re.compile(r"[\t\x20-\x7e]*")

# Word boundaries inside a separator-free chunk: fooBar, HTTPServer, abc123, 123abc
_WORD_BOUNDARY_RE = re.compile(
    r"(?<=[a-z])(?=[A-Z])"
    r"|(?<=[A-Z])(?=[A-Z][a-z])"
    r"|(?<=[A-Za-z])(?=[0-9])"
    r"|(?<=[0-9])(?=[A-Za-z])"
)

_SEPARATOR_RE = re.compile(r"[-_]+")


def is_valid_header_name(name: str) -> bool:
    return bool(name) and _TOKEN_RE.fullmatch(name) is not None


def is_valid_header_value(value: str) -> bool:
    return _FIELD_VALUE_RE.fullmatch(value) is not None


def split_words(name: str) -> list[str]:
    """Split on '-', '_', case changes and letter/digit changes. Other characters stay put."""
    words = []
    for chunk in _SEPARATOR_RE.split(name):
        words.extend(w for w in _WORD_BOUNDARY_RE.split(chunk) if w)
    return words


def to_train_case(name: str) -> str:
    """group_name -> Group-Name, teamId -> Team-Id."""
    return "-".join(w[:1].upper() + w[1:].lower() for w in split_words(name))


def claim_header_name(claim_name: str) -> str | None:
    """
    Header name for a custom claim: `X-` prefix, train-cased.
    Returns None when the claim name has no words to build from.
    """
    words = to_train_case(claim_name)
    if not words:
        return None
    return f"X-{words}"


def set_header(headers: dict[str, str], name: str, value: str) -> None:
    """Insert into an ordered header dict, replacing any same-named header (case-insensitive)."""
    lowered = name.lower()
    for existing in [k for k in headers if k.lower() == lowered]:
        del headers[existing]
    headers[name] = value
