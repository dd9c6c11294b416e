import logging
from typing import (
    Awaitable,
    Callable,
    Optional,
)
from aiohttp import web
from pydantic import ValidationError
import sentry_sdk

from net.tessera.accounts.app.config import (
    MetricsClientAppKey,
    TokenAuthorityAppKey,
)
from net.tessera.accounts.security.tokens import AuthToken, AuthenticationException

logger = logging.getLogger(__name__)

AUTH_TOKEN_REQUEST_KEY = "auth_token"
"""Request key the verified AuthToken is stored under for protected handlers."""

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def requires_auth(
    handler: Optional[Handler] = None, *, allow_query_token: bool = False
):
    """
    Mark a request handler as requiring a valid session token.

    The marker is read by `auth_middleware`, which rejects the request before the handler
    runs. `allow_query_token` additionally accepts the token as an `auth_token` query
    parameter, for routes reached by a browser redirect that cannot set headers.

    Usable bare (`@requires_auth`) or with arguments (`@requires_auth(allow_query_token=True)`).
    """

    def mark(h: Handler) -> Handler:
        setattr(h, "requires_auth", True)
        setattr(h, "allow_query_token", allow_query_token)
        return h

    if handler is not None:
        return mark(handler)
    return mark


def extract_bearer_token(
    request: web.Request, allow_query_token: bool = False
) -> Optional[str]:
    """
    Return the serialized token presented with the request, or None.

    Only `Authorization: Bearer <token>` is considered, plus the `auth_token` query
    parameter when allowed.
    """
    authorization: Optional[str] = request.headers.getone("Authorization", None)
    if authorization is not None and authorization.startswith("Bearer "):
        token = authorization[7:].strip()
        if len(token) > 0:
            return token

    if allow_query_token:
        token = request.query.get("auth_token", "").strip()
        if len(token) > 0:
            return token

    return None


UNMATCHED_ROUTE = "unmatched"
"""Metrics tag for requests that matched no route."""


def route_path(request: web.Request) -> str:
    """
    Path template of the route a request matched, such as `/user/{handle}`.

    Request metrics carry this as their `path` tag.
    """
    resource = request.match_info.route.resource
    if resource is None:
        return UNMATCHED_ROUTE
    return resource.canonical


def verify_request_token(
    request: web.Request, allow_query_token: bool = False
) -> AuthToken:
    """
    Verify the token presented with a request.

    Raises:
        AuthenticationException: `missing` is set when no token was presented
    """
    serialized_auth_token = extract_bearer_token(request, allow_query_token)
    if serialized_auth_token is None:
        raise AuthenticationException.token_missing()
    return request.app[TokenAuthorityAppKey].verify(serialized_auth_token)


def get_auth_token(request: web.Request) -> AuthToken:
    """Return the AuthToken attached by `auth_middleware` to a protected request."""
    return request[AUTH_TOKEN_REQUEST_KEY]


def authentication_error_response(e: AuthenticationException) -> web.Response:
    if e.missing:
        return web.json_response(status=401, data={"error": "Authentication required"})
    return web.json_response(status=403, data={"error": "Forbidden"})


@web.middleware
async def auth_middleware(request: web.Request, handler):
    """
    Enforce `requires_auth` on the matched route.

    A missing token yields 401, an invalid or expired one 403. The reason is logged
    here and never sent to the client. On success the decoded identity is attached to
    the request for the handler.
    """
    route_handler = request.match_info.handler
    if not getattr(route_handler, "requires_auth", False):
        return await handler(request)

    metrics_client = request.app[MetricsClientAppKey]
    allow_query_token = getattr(route_handler, "allow_query_token", False)

    try:
        auth_token = verify_request_token(request, allow_query_token)
    except AuthenticationException as e:
        logger.info("rejected request to %s: %s", request.path, e)
        metrics_client.increment(
            "accounts.auth.rejected",
            1,
            tag_dict={
                "missing": str(e.missing).lower(),
                "path": route_path(request),
            },
        )
        return authentication_error_response(e)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.exception("auth_middleware: Exception")
        return web.json_response(status=500, data={"error": "Internal Server Error"})

    request[AUTH_TOKEN_REQUEST_KEY] = auth_token
    return await handler(request)


def validation_error_message(e: ValidationError) -> str:
    """
    Summarize the first pydantic validation error as a client facing message.

    Field errors read as `<field>: <reason>`. Errors about the body as a whole (not JSON,
    not an object) get a fixed message.
    """
    errors = e.errors()
    if len(errors) == 0:
        return "Invalid request body"

    error = errors[0]
    if error["type"] == "json_invalid":
        return "Invalid JSON"

    field = ".".join(str(part) for part in error["loc"])
    if len(field) == 0:
        return "Invalid request body"

    reason = error["msg"].removeprefix("Value error, ")
    return f"{field}: {reason}"
