import asyncio
import contextlib
import os
import logging
from time import time
from typing import (
    Awaitable,
    Callable,
    List,
    Optional,
)
import jinja2
from aiohttp import web
import aiohttp_jinja2
import aiohttp
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from net.tessera.accounts.app.config import (
    CommentPollTaskAppKey,
    CommentSnapshotAppKey,
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    RedisClientAppKey,
    SessionAppKey,
    Settings,
    SettingsAppKey,
    TickHealthTaskAppKey,
    TokenAuthorityAppKey,
    token_authority_from_settings,
)
from net.tessera.accounts.app.handlers.accounts import (
    handle_auth_check,
    handle_login,
    handle_register,
    handle_user_profile,
)
from net.tessera.accounts.app.handlers.helpers import auth_middleware, route_path
from net.tessera.accounts.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
)
from net.tessera.accounts.app.handlers.linking import (
    handle_link_callback,
    handle_link_login,
)
from net.tessera.accounts.app.handlers.projects import handle_create_project
from net.tessera.accounts.app.metrics import create_metrics_client
from net.tessera.accounts.app.tasks import comment_poll_task, tick_health_task
from net.tessera.accounts.model.comments import CommentSnapshot
from net.tessera.accounts.model.health import HealthGauge

logger = logging.getLogger(__name__)

TEMPLATE_DIRECTORY = os.path.join(os.path.dirname(__file__), "templates")


async def background_tasks(app):
    """
    Open shared resources and start background tasks for the lifetime of the app.

    Resources already present in the application context are used as they are and left
    open on shutdown, which lets tests provide their own engine, Redis and metrics client.
    """
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]
    closers: List[Callable[[], Awaitable[None]]] = []

    if DatabaseAppKey not in app:
        engine = create_async_engine(settings.pg_dsn, hide_parameters=True)
        app[DatabaseAppKey] = engine
        closers.append(engine.dispose)

    if DatabaseSessionMakerAppKey not in app:
        app[DatabaseSessionMakerAppKey] = async_sessionmaker(
            app[DatabaseAppKey], class_=AsyncSession, expire_on_commit=False
        )

    if SessionAppKey not in app:
        trace_config = aiohttp.TraceConfig()

        if settings.debug:

            async def on_request_start(
                session, trace_config_ctx, params: aiohttp.TraceRequestStartParams
            ):
                logging.info("Starting request: %s %s", params.method, params.url)

            async def on_request_end(
                session, trace_config_ctx, params: aiohttp.TraceRequestEndParams
            ):
                logging.info(
                    "Ending request: %s %s %d",
                    params.method,
                    params.url,
                    params.response.status,
                )

            trace_config.on_request_start.append(on_request_start)
            trace_config.on_request_end.append(on_request_end)

        http_session = aiohttp.ClientSession(trace_configs=[trace_config])
        app[SessionAppKey] = http_session
        closers.append(http_session.close)

    if RedisClientAppKey not in app:
        redis_client = redis.Redis(
            connection_pool=redis.ConnectionPool.from_url(str(settings.redis_dsn))
        )
        app[RedisClientAppKey] = redis_client
        closers.append(redis_client.aclose)

    if MetricsClientAppKey not in app:
        metrics_client = create_metrics_client(
            settings.metrics_backend,
            host=settings.statsd_host,
            port=settings.statsd_port,
            debug=settings.debug,
        )
        await metrics_client.connect()
        app[MetricsClientAppKey] = metrics_client
        closers.append(metrics_client.close)

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))
    app[CommentPollTaskAppKey] = asyncio.create_task(comment_poll_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()
    app[CommentPollTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[CommentPollTaskAppKey]

    for close in reversed(closers):
        await close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = route_path(request)

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "accounts.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "accounts.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "accounts.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(
        middlewares=[statsd_middleware, sentry_middleware, auth_middleware]
    )

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()
    app[TokenAuthorityAppKey] = token_authority_from_settings(settings)
    app[CommentSnapshotAppKey] = CommentSnapshot()

    app.add_routes(
        [
            web.post("/register", handle_register),
            web.post("/login", handle_login),
            web.get("/auth/check", handle_auth_check),
            web.get("/user/{handle}", handle_user_profile),
            web.post("/createproject", handle_create_project),
        ]
    )

    app.add_routes(
        [
            web.get("/auth/login", handle_link_login),
            web.get("/auth/callback", handle_link_callback),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )

    _ = aiohttp_jinja2.setup(
        app,
        enable_async=True,
        loader=jinja2.FileSystemLoader(TEMPLATE_DIRECTORY),
    )

    app.cleanup_ctx.append(background_tasks)

    return app
