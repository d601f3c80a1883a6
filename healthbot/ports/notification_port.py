"""Notification port — the contract every delivery channel satisfies.

The dispatcher depends on this protocol, never on a specific messaging
provider. A channel reports failures through the returned DeliveryOutcome;
anything it raises is caught by the dispatcher and treated the same way.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from healthbot.core.notification import DeliveryOutcome, NotificationContext


class NotificationChannel(Protocol):
    """Abstract delivery channel (chat bot, web push, ...)."""

    name: str
    supports_actions: bool
    max_actions: int

    async def send(self, user_id: int, notif: NotificationContext) -> DeliveryOutcome: ...

    async def remove_notification(self, user_id: int, notification_id: int | str) -> bool: ...
