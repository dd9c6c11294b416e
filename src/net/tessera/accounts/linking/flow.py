"""
Third-Party Linking Flow

The flow is implemented in two stages:
1. Initialization (`link_init`): Remember which account is linking under a random state
   and build the redirect to the external authorization endpoint
2. Completion (`link_complete`): Consume the state, exchange the one-time code, read the
   third-party handle and attach it to the account
"""

from datetime import datetime, timezone
import logging
import secrets
from time import time
from typing import Optional, Tuple
from urllib.parse import urlparse, urlencode, parse_qsl, urlunparse

from aiohttp import ClientSession
import redis.asyncio as redis
from sqlalchemy import update
from sqlalchemy.ext.asyncio import (
    async_sessionmaker,
    AsyncSession,
)

from net.tessera.accounts.app.config import Settings
from net.tessera.accounts.app.metrics import MetricsClient
from net.tessera.accounts.linking.provider import (
    LinkingException,
    build_authorize_url,
    exchange_code,
    fetch_linked_handle,
)
from net.tessera.accounts.linking.state import (
    LinkRequest,
    pop_link_request,
    save_link_request,
)
from net.tessera.accounts.model.accounts import Account

logger = logging.getLogger(__name__)


async def link_init(
    settings: Settings,
    redis_session: redis.Redis,
    account_id: int,
    destination: str,
) -> str:
    """
    Start linking a third-party handle to an account.

    Args:
        settings: Application settings
        redis_session: Redis client holding pending link requests
        account_id: Account that will receive the linked handle
        destination: Where to send the user once linking completes

    Returns:
        str: URL of the external authorization endpoint to redirect the user to
    """
    state = secrets.token_urlsafe(32)
    link_request = LinkRequest(
        account_id=account_id,
        destination=destination,
        created_at=datetime.now(timezone.utc),
    )
    await save_link_request(
        redis_session, state, link_request, settings.link_request_expiry
    )
    return build_authorize_url(settings, state)


async def link_complete(
    settings: Settings,
    http_session: ClientSession,
    metrics_client: MetricsClient,
    database_session_maker: async_sessionmaker[AsyncSession],
    redis_session: redis.Redis,
    state: Optional[str],
    code: Optional[str],
) -> Tuple[str, str]:
    """
    Finish linking after the external service redirected back with a code.

    Args:
        settings: Application settings
        http_session: HTTP session for calls to the external service
        metrics_client: Metrics client for timing the external calls
        database_session_maker: Database session factory
        redis_session: Redis client holding pending link requests
        state: State parameter from the callback
        code: One-time code from the callback

    Returns:
        Tuple[str, str]: The linked third-party handle and the destination URL with a
        `linked` query parameter appended

    Raises:
        LinkingException: If the request is invalid, the state is unknown, the external
            service fails, or the account disappeared
    """
    if not state or not code:
        raise LinkingException.invalid_request()

    link_request = await pop_link_request(redis_session, state)
    if link_request is None:
        raise LinkingException.unknown_state()

    start_time = time()
    try:
        access_token = await exchange_code(http_session, settings, code)
        linked_handle = await fetch_linked_handle(http_session, settings, access_token)
    finally:
        metrics_client.timer("accounts.link.upstream.time", time() - start_time)

    now = datetime.now(timezone.utc)

    async with database_session_maker() as database_session:
        async with database_session.begin():
            stmt = (
                update(Account)
                .where(Account.id == link_request.account_id)
                .values(linked_handle=linked_handle, linked_at=now)
            )
            result = await database_session.execute(stmt)
            if result.rowcount == 0:
                raise LinkingException.account_not_found()

    logger.info(
        "linked account %d to third-party handle %s",
        link_request.account_id,
        linked_handle,
    )
    metrics_client.increment("accounts.link.completed", 1)

    parsed_destination = urlparse(link_request.destination)
    query = dict(parse_qsl(parsed_destination.query))
    query.update({"linked": linked_handle})
    parsed_destination = parsed_destination._replace(query=urlencode(query))
    return linked_handle, urlunparse(parsed_destination)
