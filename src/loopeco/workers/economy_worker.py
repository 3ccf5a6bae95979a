"""Economy arq worker: outbox delivery and scheduled maintenance.

- drain_notification_outbox: every 10 seconds
- expire_overdue_group_gifts: every minute (refunds contributors)
- reconcile_gifts: every 5 minutes
"""

from __future__ import annotations

import logging
from datetime import timedelta

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from loopeco.config import get_settings
from loopeco.database import close_db, get_session_factory, init_db
from loopeco.economy.gift_service import reconcile_pending_gifts
from loopeco.economy.group_gift_service import expire_group_gifts
from loopeco.notifications.dispatcher import RedisNotificationDispatcher
from loopeco.notifications.outbox import drain_outbox

logger = logging.getLogger(__name__)


async def economy_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the DB engine and the Redis client used for fan-out."""
    settings = get_settings()
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    ctx["redis"] = redis_client
    ctx["dispatcher"] = RedisNotificationDispatcher(redis_client)
    logger.info("Economy worker started")


async def economy_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Economy worker shut down")


async def drain_notification_outbox(ctx: dict) -> int:  # type: ignore[type-arg]
    """Deliver pending notification events. Returns the number delivered."""
    settings = get_settings()
    async with get_session_factory()() as db:
        try:
            return await drain_outbox(
                db,
                ctx["dispatcher"],
                batch_size=settings.outbox_batch_size,
                max_attempts=settings.outbox_max_attempts,
            )
        except Exception:
            logger.exception("Failed to drain notification outbox")
            await db.rollback()
            return 0


async def expire_overdue_group_gifts(ctx: dict) -> int:  # type: ignore[type-arg]
    """Expire open group gifts past their deadline and refund contributors."""
    async with get_session_factory()() as db:
        try:
            return await expire_group_gifts(db)
        except Exception:
            logger.exception("Failed to expire overdue group gifts")
            await db.rollback()
            return 0


async def reconcile_gifts(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Resolve gift transactions stuck in ``pending``."""
    settings = get_settings()
    async with get_session_factory()() as db:
        try:
            counts = await reconcile_pending_gifts(
                db,
                older_than=timedelta(seconds=settings.pending_gift_timeout_seconds),
                xp_bonus=settings.gift_sender_xp_bonus,
            )
        except Exception:
            logger.exception("Failed to reconcile pending gifts")
            await db.rollback()
            return {"delivered": 0, "failed": 0}
    if counts["delivered"] or counts["failed"]:
        logger.info(
            "Reconciled pending gifts: %d delivered, %d failed",
            counts["delivered"], counts["failed"],
        )
    return counts


class EconomyWorkerSettings:
    """arq worker settings for the economy background jobs."""

    functions = [drain_notification_outbox, expire_overdue_group_gifts, reconcile_gifts]
    cron_jobs = [
        cron(drain_notification_outbox, second={0, 10, 20, 30, 40, 50}, run_at_startup=True),
        cron(expire_overdue_group_gifts, second=5),
        cron(reconcile_gifts, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}, second=15),
    ]
    on_startup = economy_startup
    on_shutdown = economy_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 120
    allow_abort_jobs = True
