"""
Forward-auth endpoint for Cloudflare Access.
GET /validate/{audience} checks the Cf-Access-Jwt-Assertion header and answers
200 with identity headers, 401 for a bad assertion, or 500 before the key set is
loaded. /health/live and /health/ready back the container probes. All responses
have an empty body.
"""
import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI, Header, Request, Response, status

from forwardauth import config
from forwardauth.claims import map_claims_to_headers
from forwardauth.errors import ConfigError, NotReadyError, TokenValidationError
from forwardauth.keys import IssuerIdentity, KeySetCache
from forwardauth.refresher import KeySetRefresher
from forwardauth.service_tokens import ServiceTokenHeaderTable
from forwardauth.validation import TokenValidator

logger = logging.getLogger(__name__)

ASSERTION_HEADER = "Cf-Access-Jwt-Assertion"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_key_cache(request: Request) -> KeySetCache:
    return request.app.state.key_cache


def get_validator(request: Request) -> TokenValidator:
    return request.app.state.validator


def get_token_table(request: Request) -> ServiceTokenHeaderTable:
    return request.app.state.token_table


def liveness() -> Response:
    """Process is up; says nothing about key set state."""
    return Response(status_code=status.HTTP_200_OK)


def readiness(cache: Annotated[KeySetCache, Depends(get_key_cache)]) -> Response:
    """200 once a key set has ever been loaded, 500 before that."""
    if cache.is_ready:
        return Response(status_code=status.HTTP_200_OK)
    return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def validate(
    audience: str,
    cache: Annotated[KeySetCache, Depends(get_key_cache)],
    validator: Annotated[TokenValidator, Depends(get_validator)],
    token_table: Annotated[ServiceTokenHeaderTable, Depends(get_token_table)],
    assertion: Annotated[str | None, Header(alias=ASSERTION_HEADER)] = None,
) -> Response:
    """
    Validate the Access assertion for `audience` and return the mapped identity headers.
    Failure details are logged here and never returned to the caller.
    """
    if not assertion:
        logger.warning("Validation request for audience '%s' without %s header.", audience, ASSERTION_HEADER)
        return Response(status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        claims = validator.validate(assertion, audience, cache.read())
    except NotReadyError:
        logger.error("Validation request made before JWKS data was refreshed.")
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    except TokenValidationError as e:
        logger.warning("Failed to verify access token claims for audience '%s': [%s] %s", audience, e.code, e)
        return Response(status_code=status.HTTP_401_UNAUTHORIZED)

    headers = map_claims_to_headers(claims, token_table)
    logger.debug(
        "Verified access token for audience '%s' (sub=%s, service_token=%s, headers=%s).",
        audience, claims.subject, claims.service_token_id, list(headers),
    )
    return Response(status_code=status.HTTP_200_OK, headers=headers)


def load_token_table(path: str | None) -> ServiceTokenHeaderTable:
    """Empty table when no mapping file is configured."""
    if path is None:
        return ServiceTokenHeaderTable()
    return ServiceTokenHeaderTable.from_mapping_file(path)


def create_app(
    issuer: IssuerIdentity | None = None,
    token_table: ServiceTokenHeaderTable | None = None,
    *,
    cache: KeySetCache | None = None,
    refresher: KeySetRefresher | None = None,
    start_refresher: bool = True,
) -> FastAPI:
    """
    Build the application. Configuration not passed in is read from the environment;
    ConfigError propagates so the process never starts serving with a bad config.
    With start_refresher=False no refresh task runs, even if a refresher is passed.
    """
    if issuer is None:
        issuer = IssuerIdentity.from_url(config.CF_AUTH_DOMAIN)
    if token_table is None:
        token_table = load_token_table(config.SERVICE_TOKEN_MAP_PATH)
    if cache is None:
        cache = KeySetCache()
    if not start_refresher:
        refresher = None
    elif refresher is None:
        settings = config.load_refresh_settings()
        refresher = KeySetRefresher(
            issuer,
            cache,
            refresh_interval=settings.refresh_interval,
            retry_delay=settings.retry_delay,
            fetch_timeout=settings.fetch_timeout,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the JWKS refresh task for the lifetime of the app."""
        task = None
        if refresher is not None:
            task = asyncio.create_task(refresher.run(), name="jwks-refresh")
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
                await refresher.aclose()

    app = FastAPI(title="Cloudflare Access forward auth", version="0.1.0", lifespan=lifespan)
    app.state.issuer = issuer
    app.state.key_cache = cache
    app.state.validator = TokenValidator(issuer)
    app.state.token_table = token_table

    @app.middleware("http")
    async def log_request(request: Request, call_next):
        logger.info("Got request. method=%s path=%s", request.method, request.url.path)
        return await call_next(request)

    app.add_api_route("/health/live", liveness, methods=["GET"])
    app.add_api_route("/health/ready", readiness, methods=["GET"])
    app.add_api_route("/validate/{audience}", validate, methods=["GET"])
    return app


def main() -> int:
    try:
        log_level = config.parse_log_level(config.LOG_LEVEL)
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, stream=sys.stdout)
        logger.error("Failed with unrecoverable error. Exiting. %s", e)
        return 1
    logging.basicConfig(level=log_level, format=LOG_FORMAT, stream=sys.stdout)

    try:
        host, port = config.parse_listen_address(config.LISTEN_ADDR)
        app = create_app()
    except ConfigError as e:
        logger.error("Failed with unrecoverable error. Exiting. %s", e)
        return 1

    logger.info("Listening on %s:%d.", host, port)
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower(), access_log=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
