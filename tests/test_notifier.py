# ==============================================================================
# Tests for ValkeyNotifier
# ==============================================================================
"""
Unit tests for session notifications over Valkey pub/sub.
"""

import json
import logging
from unittest.mock import MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from pulse.base.notifier import NullNotifier
from pulse.infrastructure.notifier import ValkeyNotifier, channel_for


def next_message(pubsub, attempts: int = 10):
    for _ in range(attempts):
        message = pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message is not None:
            return message
    return None


class TestValkeyNotifier:
    def test_publishes_to_user_channel(self, fake_redis):
        pubsub = fake_redis.pubsub()
        pubsub.subscribe(channel_for("u1"))

        ValkeyNotifier(fake_redis).publish("u1", "session_started", {"session_id": "s1"})

        message = next_message(pubsub)
        assert message is not None
        assert message["channel"] == "pulse:notify:u1"
        assert json.loads(message["data"]) == {
            "event": "session_started",
            "data": {"session_id": "s1"},
        }
        pubsub.close()

    def test_publish_failure_is_logged_not_raised(self, caplog):
        client = MagicMock()
        client.publish.side_effect = RedisConnectionError("down")

        with caplog.at_level(logging.WARNING, logger="pulse.infrastructure.notifier"):
            ValkeyNotifier(client).publish("u1", "session_ended", {})

        assert "Failed to publish session_ended" in caplog.text


class TestNullNotifier:
    def test_publish_is_a_no_op(self):
        NullNotifier().publish("u1", "session_started", {"session_id": "s1"})
