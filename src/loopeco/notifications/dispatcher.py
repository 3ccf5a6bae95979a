"""Notification delivery over Redis pub/sub for per-user WebSocket fan-out."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Receives notification events drained from the outbox.

    Implementations raise on delivery failure so the outbox can retry.
    """

    async def dispatch(
        self,
        user_id: int,
        type_: str,
        title: str,
        message: str,
        data: dict[str, Any],
        *,
        notification_id: int,
        created_at: datetime | None = None,
    ) -> None: ...


class RedisNotificationDispatcher:
    """Publish a formatted notification to ``ws:user:{user_id}``.

    The WebSocket bridge pattern-subscribes to ``ws:user:*`` and routes the
    message to all of the user's active connections.
    """

    def __init__(self, redis: Any) -> None:
        self.redis = redis

    async def dispatch(
        self,
        user_id: int,
        type_: str,
        title: str,
        message: str,
        data: dict[str, Any],
        *,
        notification_id: int,
        created_at: datetime | None = None,
    ) -> None:
        ws_payload = {
            "event": "notification",
            "data": {
                "id": str(notification_id),
                "type": type_,
                "title": title,
                "message": message,
                "data": data,
                "timestamp": created_at.isoformat() if created_at else None,
                "read": False,
            },
        }
        await self.redis.publish(f"ws:user:{user_id}", json.dumps(ws_payload))
        logger.debug("Pushed notification %d to ws:user:%s", notification_id, user_id)
