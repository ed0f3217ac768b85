# ==============================================================================
# Notifier Abstract Base Class
# ==============================================================================
"""
Outbound notification port for session lifecycle events.

The session tracker publishes `session.started` / `session.ended` through an
injected Notifier instead of a process-wide broadcaster, so tests and
headless jobs can run with the NullNotifier.
"""

from abc import ABC, abstractmethod
from typing import Any


class Notifier(ABC):
    """Publishes a named event with a JSON-serializable body for one user."""

    @abstractmethod
    def publish(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        """
        Publish a notification.

        Args:
            user_id: Recipient user
            event: Event name (e.g. "session.started")
            data: JSON-serializable body
        """
        ...


class NullNotifier(Notifier):
    """Notifier that discards everything."""

    def publish(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        return None
