"""Tests for claim-to-header mapping and the header-field helpers it relies on."""
from types import MappingProxyType

import pytest

from forwardauth.claims import map_claims_to_headers
from forwardauth.headers import (
    claim_header_name,
    is_valid_header_name,
    is_valid_header_value,
    set_header,
    to_train_case,
)
from forwardauth.service_tokens import ServiceTokenHeaderTable
from forwardauth.validation import VerifiedClaims


def _claims(custom=None, service_token_id=None):
    return VerifiedClaims(custom=MappingProxyType(custom or {}), service_token_id=service_token_id)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("team_id", "Team-Id"),
        ("group_name", "Group-Name"),
        ("email", "Email"),
        ("groupName", "Group-Name"),
        ("HTTPServer", "Http-Server"),
        ("shard2", "Shard-2"),
        ("already-train-Case", "Already-Train-Case"),
        ("__double__under__", "Double-Under"),
        ("bad name", "Bad name"),
    ],
)
def test_to_train_case(name, expected):
    assert to_train_case(name) == expected


def test_claim_header_name():
    assert claim_header_name("team_id") == "X-Team-Id"
    assert claim_header_name("___") is None
    assert claim_header_name("") is None


@pytest.mark.parametrize("name, valid", [("X-Team-Id", True), ("X-Bad name", False), ("X-Ünïcode", False), ("", False), ("X:Y", False), ("X-Team\n", False)])
def test_is_valid_header_name(name, valid):
    assert is_valid_header_name(name) is valid


@pytest.mark.parametrize(
    "value, valid",
    [("eng-42", True), ("a b\tc", True), ("", True), ("line\r\nbreak", False), ("nul\x00", False), ("café", False), ("eng-42\n", False)],
)
def test_is_valid_header_value(value, valid):
    assert is_valid_header_value(value) is valid


def test_set_header_replaces_case_insensitively():
    headers = {"X-Team-Id": "a", "X-Other": "b"}
    set_header(headers, "x-team-id", "c")
    assert headers == {"X-Other": "b", "x-team-id": "c"}


def test_team_id_claim_becomes_header():
    headers = map_claims_to_headers(_claims({"team_id": "eng-42"}), ServiceTokenHeaderTable())
    assert headers == {"X-Team-Id": "eng-42"}


def test_illegal_header_name_is_skipped_without_aborting_others():
    headers = map_claims_to_headers(
        _claims({"bad name": "x", "team_id": "eng-42", "group_name": "platform"}),
        ServiceTokenHeaderTable(),
    )
    assert headers == {"X-Team-Id": "eng-42", "X-Group-Name": "platform"}


def test_illegal_header_value_is_skipped_without_aborting_others():
    headers = map_claims_to_headers(
        _claims({"evil": "a\r\nSet-Cookie: x=y", "team_id": "eng-42"}),
        ServiceTokenHeaderTable(),
    )
    assert headers == {"X-Team-Id": "eng-42"}


def test_no_custom_claims_no_headers():
    assert map_claims_to_headers(_claims(), ServiceTokenHeaderTable()) == {}


def test_service_token_headers_override_claim_headers():
    table = ServiceTokenHeaderTable(
        {"0123abcd.access": {"x-team-id": "robots", "X-User-Email": "ci@example.com"}}
    )
    headers = map_claims_to_headers(
        _claims({"team_id": "eng-42", "group_name": "platform"}, service_token_id="0123abcd.access"),
        table,
    )
    lowered = {k.lower(): v for k, v in headers.items()}
    assert len(headers) == len(lowered) == 3
    assert lowered == {"x-team-id": "robots", "x-group-name": "platform", "x-user-email": "ci@example.com"}


def test_unknown_service_token_adds_nothing():
    table = ServiceTokenHeaderTable({"0123abcd.access": {"X-User-Email": "ci@example.com"}})
    headers = map_claims_to_headers(_claims({"team_id": "eng-42"}, service_token_id="other.access"), table)
    assert headers == {"X-Team-Id": "eng-42"}


def test_trailing_newline_claim_is_skipped_without_aborting_others():
    headers = map_claims_to_headers(
        _claims({"team_id": "eng-42\n", "bad\n": "x", "group_name": "platform"}),
        ServiceTokenHeaderTable(),
    )
    assert headers == {"X-Group-Name": "platform"}
