"""
Third-Party Linking Handlers

The handlers in this module provide the following endpoints:
- GET /auth/login - Start linking a third-party account to the authenticated account
- GET /auth/callback - Complete linking when the external service redirects back

The login route is reached by a browser navigation, so the session token may be passed as
an `auth_token` query parameter instead of an Authorization header. Failures on the
callback are shown to the user as an HTML alert page rather than JSON.
"""

import logging
from typing import Optional
from urllib.parse import urlparse
from aiohttp import web
import aiohttp_jinja2
import sentry_sdk

from net.tessera.accounts.app.config import (
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    RedisClientAppKey,
    SessionAppKey,
    Settings,
    SettingsAppKey,
)
from net.tessera.accounts.app.handlers.helpers import get_auth_token, requires_auth
from net.tessera.accounts.linking.flow import link_complete, link_init
from net.tessera.accounts.linking.provider import LinkingException

logger = logging.getLogger(__name__)


def safe_destination(settings: Settings, destination: Optional[str]) -> str:
    """
    Return the destination if it stays on this service, else the default destination.

    Relative paths are accepted, as are absolute URLs on the external hostname.
    """
    if not destination:
        return settings.link_default_destination

    if destination.startswith("/") and not destination.startswith("//"):
        return destination

    parsed_destination = urlparse(destination)
    if (
        parsed_destination.scheme in ("http", "https")
        and parsed_destination.netloc == settings.external_hostname
    ):
        return destination

    logger.info("ignoring off-site link destination %s", destination)
    return settings.link_default_destination


@requires_auth(allow_query_token=True)
async def handle_link_login(request: web.Request):
    settings = request.app[SettingsAppKey]
    redis_session = request.app[RedisClientAppKey]
    health_gauge = request.app[HealthGaugeAppKey]
    auth_token = get_auth_token(request)

    destination = safe_destination(settings, request.query.get("destination", None))

    try:
        redirect_destination = await link_init(
            settings, redis_session, auth_token.account_id, destination
        )
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await health_gauge.womp()
        logger.exception("handle_link_login: Exception")
        return web.json_response(status=500, data={"error": "Internal Server Error"})

    raise web.HTTPFound(redirect_destination)


async def handle_link_callback(request: web.Request):
    state: Optional[str] = request.query.get("state", None)
    code: Optional[str] = request.query.get("code", None)

    settings = request.app[SettingsAppKey]
    http_session = request.app[SessionAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    redis_session = request.app[RedisClientAppKey]
    metrics_client = request.app[MetricsClientAppKey]

    try:
        (_, destination) = await link_complete(
            settings,
            http_session,
            metrics_client,
            database_session_maker,
            redis_session,
            state,
            code,
        )
    except LinkingException as e:
        logger.info("link callback failed: %s", e)
        metrics_client.increment(
            "accounts.link.failed", 1, tag_dict={"upstream": str(e.upstream).lower()}
        )
        return await aiohttp_jinja2.render_template_async(
            "alert.html",
            request,
            context={"error_message": str(e)},
            status=502 if e.upstream else 400,
        )
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.exception("handle_link_callback: Exception")
        return await aiohttp_jinja2.render_template_async(
            "alert.html",
            request,
            context={"error_message": "Linking failed, please try again."},
            status=500,
        )

    raise web.HTTPFound(destination)
