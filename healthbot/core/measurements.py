"""
Health Reminder Bot — Weight and blood-pressure reminders.

Each measurement kind has a rule: how recent a reading silences the
reminder, how often the reminder may repeat, and the band of hours it may
fire in. The band is centred on the user's preferred hour, learned as the
average hour of their readings over the last 14 days.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING

from healthbot.core.errors import DeliveryError
from healthbot.core.notification import (
    MeasurementPayload,
    NotificationContext,
    NotificationKind,
    measurement_actions,
)

if TYPE_CHECKING:
    from healthbot.core.dispatcher import NotificationDispatcher
    from healthbot.data.async_store import AsyncStore

logger = logging.getLogger(__name__)

HISTORY_WINDOW = timedelta(days=14)
MIN_READINGS_FOR_PREFERENCE = 3


@dataclass(frozen=True)
class MeasurementRule:
    kind: NotificationKind
    default_hour: int
    min_hour: int
    max_hour: int
    window_hours: int            # fire when |hour - preferred| <= window
    quiet_after_reading: timedelta
    quiet_same_day: bool         # a reading earlier today also silences it
    resend_after: timedelta | None  # None: at most once per calendar day
    title: str
    body: str


WEIGHT_RULE = MeasurementRule(
    kind=NotificationKind.WEIGHT,
    default_hour=9,
    min_hour=6,
    max_hour=12,
    window_hours=2,
    quiet_after_reading=timedelta(days=7),
    quiet_same_day=False,
    resend_after=timedelta(days=7),
    title="⚖️ Weekly weigh-in",
    body="It's been a week since your last weigh-in. Step on the scale and log your weight.",
)

BP_RULE = MeasurementRule(
    kind=NotificationKind.BLOOD_PRESSURE,
    default_hour=20,
    min_hour=8,
    max_hour=23,
    window_hours=1,
    quiet_after_reading=timedelta(hours=12),
    quiet_same_day=True,
    resend_after=None,
    title="🩺 Blood pressure check",
    body="Time to measure your blood pressure.",
)


def preferred_hour(readings: list[datetime], rule: MeasurementRule, tz: tzinfo | None) -> int:
    """Average local hour of `readings`, clamped to the rule's range.

    Fewer than three readings fall back to the rule's default hour.
    """
    if len(readings) < MIN_READINGS_FOR_PREFERENCE:
        return rule.default_hour
    hours = [r.astimezone(tz).hour for r in readings]
    average = sum(hours) // len(hours)
    return max(rule.min_hour, min(rule.max_hour, average))


class MeasurementReminders:
    def __init__(
        self,
        store: AsyncStore,
        dispatcher: NotificationDispatcher,
        rules: tuple[MeasurementRule, ...] = (WEIGHT_RULE, BP_RULE),
        owner_ids: tuple[int, ...] = (),
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._rules = rules
        # Checked even before they have any stored reminder state.
        self._owner_ids = owner_ids

    async def check(self, now: datetime) -> None:
        for rule in self._rules:
            try:
                user_ids = set(await self._store.list_reminder_users(rule.kind.value))
            except Exception as exc:
                logger.error("Failed to list users for %s reminders: %s", rule.kind.value, exc)
                continue

            user_ids.update(self._owner_ids)
            for user_id in sorted(user_ids):
                try:
                    await self.check_user(rule, user_id, now)
                except Exception as exc:
                    logger.error("%s reminder check failed for user %d: %s", rule.kind.value, user_id, exc)

    async def check_user(self, rule: MeasurementRule, user_id: int, now: datetime) -> bool:
        """Send the reminder for one user if every gate passes. Returns True if sent."""
        kind = rule.kind.value
        state = await self._store.get_reminder_state(user_id, kind)
        if not state.enabled:
            return False

        if await self._dispatcher.is_suppressed(user_id, rule.kind, now):
            return False

        last = await self._store.get_last_measurement(user_id, kind)
        if last is not None:
            if now - last < rule.quiet_after_reading:
                return False
            if rule.quiet_same_day and last.astimezone(now.tzinfo).date() == now.date():
                return False

        readings = await self._store.list_measurements_since(user_id, kind, now - HISTORY_WINDOW)
        hour = preferred_hour(readings, rule, now.tzinfo)
        if hour != state.preferred_reminder_hour:
            await self._store.set_preferred_reminder_hour(user_id, kind, hour)

        if abs(now.hour - hour) > rule.window_hours:
            return False

        sent = state.last_notification_sent_at
        if sent is not None:
            if rule.resend_after is not None:
                if now - sent < rule.resend_after:
                    return False
            elif sent.astimezone(now.tzinfo).date() >= now.date():
                return False

        notif = NotificationContext(
            kind=rule.kind,
            title=rule.title,
            body=rule.body,
            tag=f"{kind}_{now.date().isoformat()}",
            payload=MeasurementPayload(last_measured_at=last),
            actions=measurement_actions(rule.kind),
        )
        try:
            result = await self._dispatcher.send(user_id, notif, now=now)
        except DeliveryError as exc:
            logger.warning("Failed to send %s reminder to user %d: %s", kind, user_id, exc)
            return False

        if result.delivered:
            logger.info("Sent %s reminder to user %d", kind, user_id)
        return result.delivered
