"""Redis notification dispatcher payload format."""

import json
from datetime import datetime, timezone

import pytest

from loopeco.notifications.dispatcher import RedisNotificationDispatcher


class FakeRedis:
    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


@pytest.mark.asyncio
async def test_publishes_to_user_channel():
    redis = FakeRedis()
    dispatcher = RedisNotificationDispatcher(redis)
    created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    await dispatcher.dispatch(
        42, "gift", "You received a gift!", "A friend sent you Golden Glow",
        {"gift_transaction_id": 9}, notification_id=5, created_at=created,
    )

    assert len(redis.published) == 1
    channel, raw = redis.published[0]
    assert channel == "ws:user:42"
    payload = json.loads(raw)
    assert payload["event"] == "notification"
    assert payload["data"]["id"] == "5"
    assert payload["data"]["type"] == "gift"
    assert payload["data"]["data"] == {"gift_transaction_id": 9}
    assert payload["data"]["timestamp"] == created.isoformat()
    assert payload["data"]["read"] is False


@pytest.mark.asyncio
async def test_publish_failure_propagates():
    class BrokenRedis:
        async def publish(self, channel: str, message: str) -> int:
            raise ConnectionError("redis down")

    dispatcher = RedisNotificationDispatcher(BrokenRedis())
    with pytest.raises(ConnectionError):
        await dispatcher.dispatch(1, "system", "t", "m", {}, notification_id=1)
