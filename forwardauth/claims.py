"""
Turn verified claims into response headers for the protected application.

Every custom claim becomes an `X-Foo-Bar` header, so even "basic" claims such as
email or group must be listed under "OIDC Claims" in the Access identity provider
settings to reach the app. Claims that cannot be expressed as a header are
skipped one by one; they never fail the request. Service token headers from the
static table are applied last and win over same-named claim headers.
"""
import logging

from forwardauth.headers import claim_header_name, is_valid_header_name, is_valid_header_value, set_header
from forwardauth.service_tokens import ServiceTokenHeaderTable
from forwardauth.validation import VerifiedClaims

logger = logging.getLogger(__name__)


def map_claims_to_headers(claims: VerifiedClaims, token_table: ServiceTokenHeaderTable) -> dict[str, str]:
    headers: dict[str, str] = {}

    for claim_name, claim_value in claims.claims():
        header_name = claim_header_name(claim_name)
        if header_name is None or not is_valid_header_name(header_name):
            logger.debug("Received invalid header name '%s' as part of custom claims.", claim_name)
            continue
        if not is_valid_header_value(claim_value):
            logger.debug("Received invalid header value '%s' as part of custom claims.", claim_value)
            continue
        set_header(headers, header_name, claim_value)

    if claims.service_token_id is not None:
        mapped = token_table.get_header_map_for_token(claims.service_token_id)
        if mapped is not None:
            for header_name, header_value in mapped.items():
                set_header(headers, header_name, header_value)
        else:
            logger.debug("No header mapping for service token '%s'.", claims.service_token_id)

    return headers
