"""Transactional notification outbox.

Economic operations never talk to the notification transport directly: they
append an outbox row inside their own transaction, and a background worker
drains the outbox. A failed delivery is retried on the next drain and is never
lost; rows that exhaust ``max_attempts`` stay in the table for inspection.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.db.models import NotificationOutbox
from loopeco.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

VALID_TYPES = {
    "gift", "group_gift", "purchase", "achievement", "level_up", "challenge", "system",
}


async def enqueue_notification(
    db: AsyncSession,
    user_id: int,
    type_: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> NotificationOutbox:
    """Append a notification event to the outbox (part of the caller's transaction)."""
    if type_ not in VALID_TYPES:
        raise ValueError(f"Invalid notification type: {type_}. Must be one of {VALID_TYPES}")

    event = NotificationOutbox(
        user_id=user_id,
        type=type_,
        title=title,
        message=message,
        data=data or {},
        attempts=0,
        created_at=datetime.now(timezone.utc),
    )
    db.add(event)
    await db.flush()
    return event


async def drain_outbox(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    batch_size: int = 100,
    max_attempts: int = 5,
) -> int:
    """Deliver undispatched events in id order. Returns the number delivered."""
    result = await db.execute(
        select(NotificationOutbox)
        .where(
            NotificationOutbox.dispatched_at.is_(None),
            NotificationOutbox.attempts < max_attempts,
        )
        .order_by(NotificationOutbox.id.asc())
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    )
    events = list(result.scalars().all())

    delivered = 0
    for event in events:
        event.attempts += 1
        try:
            await dispatcher.dispatch(
                event.user_id,
                event.type,
                event.title,
                event.message,
                event.data or {},
                notification_id=event.id,
                created_at=event.created_at,
            )
        except Exception as exc:
            event.last_error = str(exc)[:1000]
            logger.warning(
                "Notification %d delivery failed (attempt %d/%d)",
                event.id, event.attempts, max_attempts, exc_info=True,
            )
            continue
        event.dispatched_at = datetime.now(timezone.utc)
        event.last_error = None
        delivered += 1

    await db.commit()
    if events:
        logger.info("Drained notification outbox: %d/%d delivered", delivered, len(events))
    return delivered


async def count_pending(db: AsyncSession) -> int:
    """Count events still waiting for delivery."""
    result = await db.execute(
        select(func.count())
        .select_from(NotificationOutbox)
        .where(NotificationOutbox.dispatched_at.is_(None))
    )
    return result.scalar_one()
