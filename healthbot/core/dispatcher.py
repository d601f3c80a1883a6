"""
Health Reminder Bot — Notification Dispatcher.

Fans one channel-agnostic NotificationContext out to every registered
channel the user has not opted out of for that kind. Channels are attempted
in parallel, each under its own deadline; a failing or slow channel never
delays or prevents the others.

Two rules govern the result:
- the send succeeds if at least one channel delivered; "no viable channel"
  (none registered, all opted out, or all failed) raises DeliveryError;
- "reminder was sent" state (last_notification_sent_at, and whatever the
  caller passes as `on_delivered`) is written only after success is known.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable

from healthbot.core.errors import DeliveryError
from healthbot.core.notification import DeliveryOutcome, NotificationContext, NotificationKind, TextPayload

if TYPE_CHECKING:
    from healthbot.core.suppression import SuppressionPolicy
    from healthbot.data.async_store import AsyncStore
    from healthbot.ports.notification_port import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    outcomes: list[DeliveryOutcome] = field(default_factory=list)
    suppressed: bool = False

    @property
    def delivered(self) -> bool:
        return any(o.success for o in self.outcomes)

    def message_id(self, channel: str) -> int | str | None:
        """Message id reported by `channel`, if it delivered one."""
        for outcome in self.outcomes:
            if outcome.channel == channel and outcome.success:
                return outcome.message_id
        return None


class NotificationDispatcher:
    def __init__(
        self,
        store: AsyncStore,
        suppression: SuppressionPolicy,
        send_timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._suppression = suppression
        self._send_timeout = send_timeout
        self._channels: dict[str, NotificationChannel] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_channel(self, channel: NotificationChannel) -> None:
        if channel is None:
            return
        self._channels[channel.name] = channel
        logger.info(
            "Registered channel: %s (actions: %s, max: %d)",
            channel.name, channel.supports_actions, channel.max_actions,
        )

    @property
    def channels(self) -> list[str]:
        return list(self._channels)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def is_suppressed(self, user_id: int, kind: NotificationKind, now: datetime) -> bool:
        return await self._suppression.is_suppressed(user_id, kind, now)

    async def send(
        self,
        user_id: int,
        notif: NotificationContext,
        *,
        now: datetime | None = None,
        on_delivered: Callable[[DispatchResult], Awaitable[None]] | None = None,
    ) -> DispatchResult:
        """Deliver `notif` to the user's channels.

        Args:
            user_id: Recipient.
            notif: What to send.
            now: Evaluation time, used for the suppression check and as the
                recorded send time.
            on_delivered: Awaited after at least one channel delivered; use
                it for state that must only change on confirmed delivery.

        Returns:
            DispatchResult. When the kind is suppressed nothing is sent and
            `suppressed` is True.

        Raises:
            DeliveryError: no channel delivered the notification.
        """
        now = now or datetime.now(timezone.utc)

        if await self._suppression.is_suppressed(user_id, notif.kind, now):
            logger.info("Skipping %s notification for user %d: suppressed", notif.kind.value, user_id)
            return DispatchResult(suppressed=True)

        disabled = await self._store.get_disabled_channels(user_id, notif.kind.value)
        channels = [c for name, c in self._channels.items() if name not in disabled]
        if not channels:
            raise DeliveryError(
                f"No enabled channel for {notif.kind.value} notifications to user {user_id}"
            )

        outcomes = await asyncio.gather(*(self._attempt(c, user_id, notif) for c in channels))
        result = DispatchResult(outcomes=list(outcomes))

        if not result.delivered:
            raise DeliveryError(
                f"All channels failed for {notif.kind.value} notification '{notif.tag}'",
                result.outcomes,
            )

        logger.info(
            "Sent %s notification '%s' via %s",
            notif.kind.value, notif.tag,
            ", ".join(o.channel for o in result.outcomes if o.success),
        )

        try:
            await self._store.mark_notified(user_id, notif.kind.value, now)
        except Exception as exc:
            logger.error("Failed to record %s notification for user %d: %s", notif.kind.value, user_id, exc)

        if on_delivered is not None:
            try:
                await on_delivered(result)
            except Exception as exc:
                logger.error("Failed to record delivery of %s notification '%s': %s", notif.kind.value, notif.tag, exc)
        return result

    async def send_text(
        self,
        user_id: int,
        kind: NotificationKind,
        body: str,
        *,
        title: str = "",
        tag: str = "",
        payload: TextPayload | None = None,
        now: datetime | None = None,
    ) -> DispatchResult:
        """Send a plain message with no actions."""
        notif = NotificationContext(
            kind=kind,
            title=title,
            body=body,
            tag=tag or kind.value,
            payload=payload or TextPayload(),
        )
        return await self.send(user_id, notif, now=now)

    async def _attempt(
        self, channel: NotificationChannel, user_id: int, notif: NotificationContext,
    ) -> DeliveryOutcome:
        fitted = self._fit_actions(channel, notif)
        try:
            outcome = await asyncio.wait_for(
                channel.send(user_id, fitted), timeout=self._send_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Channel %s timed out after %.1fs", channel.name, self._send_timeout)
            return DeliveryOutcome(channel=channel.name, success=False, error="timeout")
        except Exception as exc:
            logger.error("Channel %s failed to send: %s", channel.name, exc)
            return DeliveryOutcome(channel=channel.name, success=False, error=str(exc))

        if not outcome.success:
            logger.warning("Channel %s did not deliver: %s", channel.name, outcome.error)
        return outcome

    @staticmethod
    def _fit_actions(channel: NotificationChannel, notif: NotificationContext) -> NotificationContext:
        if not notif.actions:
            return notif
        if not channel.supports_actions:
            return dataclasses.replace(notif, actions=[])
        if len(notif.actions) > channel.max_actions:
            logger.debug(
                "Truncated actions from %d to %d for channel %s",
                len(notif.actions), channel.max_actions, channel.name,
            )
            return dataclasses.replace(notif, actions=notif.actions[: channel.max_actions])
        return notif

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def remove_notification(
        self, channel_name: str, user_id: int, notification_id: int | str,
    ) -> bool:
        """Remove a previously sent notification from one channel.

        Returns False when the channel is unknown, cannot remove messages,
        or the removal failed.
        """
        channel = self._channels.get(channel_name)
        if channel is None:
            logger.warning("Cannot remove notification: channel %s not registered", channel_name)
            return False
        try:
            return await asyncio.wait_for(
                channel.remove_notification(user_id, notification_id), timeout=self._send_timeout,
            )
        except Exception as exc:
            logger.warning("Channel %s failed to remove notification %s: %s", channel_name, notification_id, exc)
            return False
