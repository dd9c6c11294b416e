import asyncio
import hashlib
import json
import logging
from time import time
from typing import Any, List, NoReturn
from aiohttp import ClientSession, web
import sentry_sdk

from net.tessera.accounts.app.config import (
    CommentSnapshotAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    SessionAppKey,
    SettingsAppKey,
)
from net.tessera.accounts.app.metrics import MetricsClient
from net.tessera.accounts.model.comments import CommentSnapshot

logger = logging.getLogger(__name__)


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Tick the health gauge every 30 seconds, reducing the health score by 1 each time.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    metrics_client = app[MetricsClientAppKey]
    while True:
        await health_gauge.tick()
        metrics_client.gauge("accounts.health.value", health_gauge.value)
        await asyncio.sleep(30)


def comment_id(comment: Any) -> str:
    """
    Identify one feed entry by its `id` field, or by its canonical JSON when it has none.
    """
    if isinstance(comment, dict) and "id" in comment:
        return str(comment["id"])
    return json.dumps(comment, sort_keys=True, separators=(",", ":"))


def comment_fingerprint(comment_ids: List[str]) -> str:
    digest = hashlib.sha256()
    for value in sorted(comment_ids):
        digest.update(value.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


async def poll_comments_once(
    http_session: ClientSession,
    url: str,
    snapshot: CommentSnapshot,
    metrics_client: MetricsClient,
) -> int:
    """
    Fetch the comment feed once and compare it with the last snapshot.

    Returns:
        int: Number of comments not present in the previous snapshot. Zero when the feed
        is unchanged or on the first poll.

    Raises:
        ValueError: If the feed is not a JSON list
        aiohttp.ClientError: If the feed cannot be fetched
    """
    start_time = time()
    try:
        async with http_session.get(
            url, headers={"Accept": "application/json"}
        ) as resp:
            resp.raise_for_status()
            feed: Any = await resp.json(content_type=None)
    finally:
        metrics_client.timer("accounts.task.comment_poll.fetch.time", time() - start_time)

    if not isinstance(feed, list):
        raise ValueError("comment feed is not a list")

    comment_ids = [comment_id(comment) for comment in feed]
    fingerprint = comment_fingerprint(comment_ids)

    if fingerprint == snapshot.fingerprint:
        logger.debug("comment feed unchanged")
        return 0

    new_count = await snapshot.replace(fingerprint, frozenset(comment_ids))
    if new_count > 0:
        logger.info("comment feed changed: %d new comments", new_count)
        metrics_client.increment("accounts.task.comment_poll.new_comments", new_count)
    return new_count


async def comment_poll_task(app: web.Application) -> None:
    """
    Poll the comment feed every `comment_poll_interval` seconds.

    Returns immediately when no feed URL is configured. Failures are reported and the task
    keeps polling.
    """
    settings = app[SettingsAppKey]
    if settings.comment_feed_url is None:
        logger.info("Comment feed not configured, comment polling disabled")
        return

    logger.info("Starting comment poll task")

    http_session = app[SessionAppKey]
    snapshot = app[CommentSnapshotAppKey]
    metrics_client = app[MetricsClientAppKey]
    health_gauge = app[HealthGaugeAppKey]

    while True:
        try:
            await poll_comments_once(
                http_session, settings.comment_feed_url, snapshot, metrics_client
            )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            await health_gauge.womp()
            logger.exception("comment_poll_task: Exception")
            metrics_client.increment(
                "accounts.task.comment_poll.exception",
                1,
                tag_dict={"exception": type(e).__name__},
            )
        await asyncio.sleep(settings.comment_poll_interval)
