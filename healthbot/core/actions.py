"""
Health Reminder Bot — Notification actions.

The user-interaction half of the engine: whatever a channel sends back
(an inline-button callback, a push notification action) is decoded into a
NotificationAction and routed here. Completing or skipping a workout is
where rotation advances.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from healthbot.core.notification import ActionType, NotificationAction, NotificationKind

if TYPE_CHECKING:
    from healthbot.core.rotation import RotationStateMachine
    from healthbot.core.suppression import SuppressionPolicy
    from healthbot.data.async_store import AsyncStore

logger = logging.getLogger(__name__)

DEFAULT_WORKOUT_SNOOZE_MINUTES = 60
DEFAULT_REMINDER_SNOOZE_MINUTES = 120
DEFAULT_BLOCK_MINUTES = 24 * 60

_REMINDER_KINDS = {NotificationKind.WEIGHT.value, NotificationKind.BLOOD_PRESSURE.value}


# ---------------------------------------------------------------------------
# Callback decoding
# ---------------------------------------------------------------------------


def _parse_id(raw: str, data: str) -> int:
    if not raw.isdigit():
        raise ValueError(f"Invalid id in callback data: {data!r}")
    return int(raw)


def decode_callback_data(data: str) -> NotificationAction:
    """Turn a chat callback string back into a NotificationAction.

    Formats: ``confirm:<id>[,<id>...]``, ``workout_<start|snooze|skip|done>_<session id>``,
    ``remind_<snooze|block>_<kind>``.

    Raises:
        ValueError: unrecognised or malformed callback data.
    """
    if data.startswith("confirm:"):
        raw_ids = [part for part in data[len("confirm:"):].split(",") if part]
        if not raw_ids:
            raise ValueError(f"No intake ids in callback data: {data!r}")
        ids = [_parse_id(part, data) for part in raw_ids]
        return NotificationAction("confirm_all", "Confirm", ActionType.CONFIRM, data, {"intake_ids": ids})

    if data.startswith("workout_"):
        verb, _, raw_id = data[len("workout_"):].partition("_")
        session_id = _parse_id(raw_id, data)
        payload: dict = {"session_id": session_id}
        if verb == "start":
            return NotificationAction("start", "Start", ActionType.START, data, payload)
        if verb == "snooze":
            payload["duration_minutes"] = DEFAULT_WORKOUT_SNOOZE_MINUTES
            return NotificationAction("snooze_1h", "Snooze", ActionType.SNOOZE, data, payload)
        if verb == "skip":
            return NotificationAction("skip", "Skip", ActionType.SKIP, data, payload)
        if verb == "done":
            return NotificationAction("done", "Done", ActionType.COMPLETE, data, payload)
        raise ValueError(f"Unknown workout action: {data!r}")

    if data.startswith("remind_"):
        verb, _, kind = data[len("remind_"):].partition("_")
        if kind not in _REMINDER_KINDS:
            raise ValueError(f"Unknown reminder kind in callback data: {data!r}")
        if verb == "snooze":
            return NotificationAction(
                "snooze", "Snooze", ActionType.SNOOZE, data,
                {"kind": kind, "duration_minutes": DEFAULT_REMINDER_SNOOZE_MINUTES},
            )
        if verb == "block":
            return NotificationAction(
                "dont_bug_me", "Not today", ActionType.BLOCK, data,
                {"kind": kind, "duration_minutes": DEFAULT_BLOCK_MINUTES},
            )
        raise ValueError(f"Unknown reminder action: {data!r}")

    raise ValueError(f"Unrecognised callback data: {data!r}")


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


class ActionHandler:
    """Applies notification actions to the store."""

    def __init__(
        self,
        store: AsyncStore,
        rotation: RotationStateMachine,
        suppression: SuppressionPolicy,
    ) -> None:
        self._store = store
        self._rotation = rotation
        self._suppression = suppression

    async def handle(
        self, user_id: int, action: NotificationAction, now: datetime | None = None,
    ) -> str:
        """Route `action` and return a short confirmation for the user.

        Raises:
            ValueError: the action type is unknown or its data is incomplete.
        """
        now = now or datetime.now(timezone.utc)
        data = action.data
        logger.info("Processing action: type=%s, id=%s, user=%d", action.type.value, action.id, user_id)

        if action.type is ActionType.CONFIRM:
            count = await self.confirm_intakes(data.get("intake_ids") or [], now)
            return f"✅ Confirmed {count} intake(s)" if count else "Already confirmed"

        if action.type is ActionType.SNOOZE:
            minutes = int(data.get("duration_minutes", DEFAULT_WORKOUT_SNOOZE_MINUTES))
            if "session_id" in data:
                until = await self.snooze_session(int(data["session_id"]), timedelta(minutes=minutes), now)
                return f"⏰ Workout snoozed until {until:%H:%M}"
            if "kind" in data:
                await self._suppression.snooze(user_id, data["kind"], timedelta(minutes=minutes), now)
                return f"⏰ Snoozed for {minutes // 60}h" if minutes >= 60 else f"⏰ Snoozed for {minutes}m"
            raise ValueError("Snooze action needs a session_id or a kind")

        if action.type is ActionType.BLOCK:
            if "kind" not in data:
                raise ValueError("Block action needs a kind")
            minutes = int(data.get("duration_minutes", DEFAULT_BLOCK_MINUTES))
            await self._suppression.block(user_id, data["kind"], timedelta(minutes=minutes), now)
            return "🔕 Got it, no more reminders for now"

        if action.type in (ActionType.START, ActionType.SKIP, ActionType.COMPLETE):
            if "session_id" not in data:
                raise ValueError(f"{action.type.value} action needs a session_id")
            session_id = int(data["session_id"])
            if action.type is ActionType.START:
                started = await self.start_session(session_id, now)
                return "💪 Workout started!" if started else "Workout already started"
            if action.type is ActionType.SKIP:
                skipped = await self.skip_session(session_id, now)
                return "⏭ Workout skipped" if skipped else "Workout already finished"
            completed = await self.complete_session(session_id, now)
            return "🎉 Workout completed!" if completed else "Workout already completed"

        raise ValueError(f"Unknown action type: {action.type}")

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    async def confirm_intakes(self, intake_ids: list[int], now: datetime) -> int:
        """Confirm pending intakes and decrement inventory for each.

        Returns:
            Number of intakes this call confirmed.
        """
        confirmed = 0
        for intake_id in intake_ids:
            try:
                if not await self._store.confirm_intake(intake_id, now):
                    continue
                confirmed += 1
                intake = await self._store.get_intake(intake_id)
                if intake is not None:
                    await self._store.decrement_inventory(intake.medication_id, 1)
            except Exception as exc:
                logger.error("Failed to confirm intake %d: %s", intake_id, exc)
        return confirmed

    # ------------------------------------------------------------------
    # Workouts
    # ------------------------------------------------------------------

    async def start_session(self, session_id: int, now: datetime) -> bool:
        return await self._store.start_session(session_id, now)

    async def snooze_session(self, session_id: int, duration: timedelta, now: datetime) -> datetime:
        until = now + duration
        await self._store.snooze_session(session_id, until)
        logger.info("Session %d snoozed until %s", session_id, until.isoformat())
        return until

    async def complete_session(self, session_id: int, now: datetime) -> bool:
        """Complete a session and advance its group's rotation.

        Completing an already-completed session (e.g. after editing its
        exercises) is safe: the rotation only moves once per session.
        """
        completed = await self._store.complete_session(session_id, now)
        await self._advance(session_id, now)
        return completed

    async def skip_session(self, session_id: int, now: datetime) -> bool:
        skipped = await self._store.skip_session(session_id)
        if skipped:
            await self._advance(session_id, now)
        return skipped

    async def _advance(self, session_id: int, now: datetime) -> None:
        session = await self._store.get_session(session_id)
        if session is None:
            raise ValueError(f"Workout session {session_id} not found")
        group = await self._store.get_workout_group(session.group_id)
        if group is None:
            logger.warning("Group %d of session %d no longer exists", session.group_id, session_id)
            return
        if await self._rotation.advance_if_rotating(group, session, now):
            logger.info("Rotation advanced for group %d after session %d", group.id, session_id)
