# ==============================================================================
# Valkey Notifier
# ==============================================================================
"""
Publishes session lifecycle notifications over Valkey pub/sub.

Each user has its own channel (`pulse:notify:{user_id}`); whatever delivers
notifications to clients subscribes there. Delivery is fire-and-forget: a
failed publish is logged and never fails the session operation that caused it.
"""

import json
import logging
from typing import Any

import redis
from redis.exceptions import RedisError

from pulse.base.notifier import Notifier

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "pulse:notify:"


def channel_for(user_id: str) -> str:
    return f"{CHANNEL_PREFIX}{user_id}"


class ValkeyNotifier(Notifier):
    """Notifier backed by Redis PUBLISH."""

    def __init__(self, client: redis.Redis):
        self._client = client

    def publish(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        message = json.dumps({"event": event, "data": data}, default=str)
        try:
            receivers = self._client.publish(channel_for(user_id), message)
            logger.debug("Published %s to %d subscribers of user %s", event, receivers, user_id)
        except RedisError as e:
            logger.warning("Failed to publish %s for user %s: %s", event, user_id, e)
