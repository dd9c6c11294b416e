"""Pending link requests.

A link request remembers which account started the linking flow and where to send the
user afterwards. It lives in Redis under `link_request:<state>` with a TTL and is
removed atomically when the callback consumes it, so a state can only be used once.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel
import redis.asyncio as redis

from net.tessera.accounts.app.config import LINK_REQUEST_PREFIX


class LinkRequest(BaseModel):
    """Account and destination remembered between redirect and callback."""

    account_id: int
    destination: str
    created_at: datetime


def link_request_key(state: str) -> str:
    return f"{LINK_REQUEST_PREFIX}:{state}"


async def save_link_request(
    redis_session: redis.Redis, state: str, link_request: LinkRequest, expiry: int
) -> None:
    await redis_session.set(
        link_request_key(state), link_request.model_dump_json(), ex=expiry
    )


async def pop_link_request(
    redis_session: redis.Redis, state: str
) -> Optional[LinkRequest]:
    """Fetch and delete the link request for a state, or None if unknown or expired."""
    value = await redis_session.getdel(link_request_key(state))
    if value is None:
        return None
    return LinkRequest.model_validate_json(value)
