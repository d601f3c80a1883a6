"""
Health Reminder Bot — Workout notifications.

Runs every minute. For each active workout group scheduled today it
materializes the day's session and walks it through its notification
lifecycle:

    pending   --(advance-minutes before start, delivered)-->  notified
    notified  --(3h after start, once)--> resent
    notified  --(6h after start)--> skipped (chat message removed)
    snoozed   --(snooze elapsed)--> re-sent

A session that is in progress blocks new workout notifications. One that
was started and forgotten gets a "still training?" nudge after 90 minutes
and is auto-skipped after 4 hours. Auto-skips never advance rotation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from healthbot.core.errors import DeliveryError
from healthbot.core.notification import (
    NotificationContext,
    NotificationKind,
    TextPayload,
    WorkoutPayload,
    workout_actions,
)
from healthbot.core.schedule import parse_time_mark, weekday_index
from healthbot.data.models import SessionStatus

if TYPE_CHECKING:
    from healthbot.core.dispatcher import DispatchResult, NotificationDispatcher
    from healthbot.core.materializer import DueEventMaterializer
    from healthbot.core.rotation import RotationStateMachine
    from healthbot.data.async_store import AsyncStore
    from healthbot.data.models import WorkoutExercise, WorkoutGroup, WorkoutSession, WorkoutVariant

logger = logging.getLogger(__name__)

STALE_REMINDER_AFTER = timedelta(minutes=90)
STALE_SKIP_AFTER = timedelta(hours=4)
RESEND_AFTER = timedelta(hours=3)
AUTO_SKIP_AFTER = timedelta(hours=6)

# Only the chat channel can delete a sent message.
_REMOVABLE_CHANNEL = "telegram"


def format_exercise(index: int, exercise: WorkoutExercise) -> str:
    if exercise.target_reps_max is not None and exercise.target_reps_max != exercise.target_reps_min:
        reps = f"{exercise.target_reps_min}-{exercise.target_reps_max}"
    else:
        reps = str(exercise.target_reps_min)
    line = f"{index}. {exercise.exercise_name}: {exercise.target_sets} × {reps}"
    if exercise.target_weight_kg is not None:
        line += f" @ {exercise.target_weight_kg:.0f}kg"
    return line


def build_workout_message(
    group: WorkoutGroup, variant: WorkoutVariant, exercises: list[WorkoutExercise],
) -> str:
    lines = [
        f"🏋️ Workout starting in {group.notification_advance_minutes} minutes",
        "",
        f"{group.name} - {variant.name}",
    ]
    if exercises:
        lines += ["", "Exercises:"]
        lines += [format_exercise(i, ex) for i, ex in enumerate(exercises, start=1)]
    return "\n".join(lines)


class WorkoutNotifier:
    def __init__(
        self,
        store: AsyncStore,
        dispatcher: NotificationDispatcher,
        rotation: RotationStateMachine,
        materializer: DueEventMaterializer,
        user_id: int,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._rotation = rotation
        self._materializer = materializer
        self._user_id = user_id

    async def check(self, now: datetime) -> None:
        """One workout tick. A failure in one group never stops the others."""
        active = await self._check_active_session(now)

        groups = await self._store.list_workout_groups(self._user_id, True)
        for group in groups:
            try:
                await self._check_group(group, active, now)
            except Exception as exc:
                logger.error("Workout check failed for group %d: %s", group.id, exc)

    # ------------------------------------------------------------------
    # In-progress session
    # ------------------------------------------------------------------

    async def _check_active_session(self, now: datetime) -> WorkoutSession | None:
        """Nudge or auto-skip a forgotten in-progress session.

        Returns the session still blocking new notifications, if any.
        """
        sessions = await self._store.list_sessions_by_status(self._user_id, SessionStatus.IN_PROGRESS)
        if not sessions:
            return None

        active = sessions[0]
        if active.started_at is None:
            return active

        elapsed = now - active.started_at
        if elapsed > STALE_SKIP_AFTER:
            await self._store.skip_session(active.id)
            await self._remove_message(active)
            logger.info("Auto-skipped session %d: in progress for %s", active.id, elapsed)
            return None

        if elapsed > STALE_REMINDER_AFTER and not active.stale_reminded:
            try:
                result = await self._dispatcher.send_text(
                    self._user_id,
                    NotificationKind.WORKOUT,
                    "🏋️ Still training? It's been 1.5 hours. Don't forget to log your results!",
                    tag=f"workout_stale_{active.id}",
                    payload=TextPayload(session_id=active.id),
                    now=now,
                )
            except DeliveryError as exc:
                logger.warning("Failed to send stale workout reminder: %s", exc)
            else:
                if result.delivered:
                    await self._store.set_session_flag(active.id, "stale_reminded")
        return active

    # ------------------------------------------------------------------
    # Scheduled sessions
    # ------------------------------------------------------------------

    async def _check_group(
        self, group: WorkoutGroup, active: WorkoutSession | None, now: datetime,
    ) -> None:
        if weekday_index(now.date()) not in group.days_of_week:
            return

        hour, minute = parse_time_mark(group.scheduled_time)
        scheduled = datetime(now.year, now.month, now.day, hour, minute, tzinfo=now.tzinfo)

        session = await self._store.find_session(group.id, now.date())
        if session is None:
            variant_id = await self._rotation.current_variant_id(group)
            if variant_id is None:
                if group.is_rotating:
                    logger.warning("Rotating group %d has no rotation state; skipping", group.id)
                else:
                    logger.warning("Workout group %d has no variants; skipping", group.id)
                return
            session, _ = await self._materializer.materialize_session(group, variant_id, now.date())

        notify_at = scheduled - timedelta(minutes=group.notification_advance_minutes)

        if session.status is SessionStatus.PENDING:
            # Never announce a workout while another one is in progress
            if active is not None:
                return
            if now >= notify_at:
                await self._notify(group, session, now)
                return

        elif session.status is SessionStatus.NOTIFIED and now > scheduled + RESEND_AFTER:
            if now > scheduled + AUTO_SKIP_AFTER:
                await self._store.skip_session(session.id)
                await self._remove_message(session)
                logger.info("Auto-skipped session %d: no response for 6 hours", session.id)
                return
            if not session.resent and not self._snoozed(session, now):
                if await self._notify(group, session, now):
                    await self._store.set_session_flag(session.id, "resent")
                return

        if (
            session.snoozed_until is not None
            and now >= session.snoozed_until
            and active is None
            and session.status in (SessionStatus.PENDING, SessionStatus.NOTIFIED)
        ):
            if await self._notify(group, session, now):
                await self._store.clear_session_snooze(session.id)

    @staticmethod
    def _snoozed(session: WorkoutSession, now: datetime) -> bool:
        return session.snoozed_until is not None and now < session.snoozed_until

    async def _notify(self, group: WorkoutGroup, session: WorkoutSession, now: datetime) -> bool:
        """Send the workout card. Status becomes `notified` only on delivery."""
        variant = await self._store.get_workout_variant(session.variant_id)
        if variant is None:
            logger.error("Variant %d of session %d not found", session.variant_id, session.id)
            return False
        exercises = await self._store.list_exercises(variant.id)

        notif = NotificationContext(
            kind=NotificationKind.WORKOUT,
            title=f"🏋️ {group.name} - {variant.name}",
            body=build_workout_message(group, variant, exercises),
            tag=f"workout_{session.id}",
            payload=WorkoutPayload(session=session, group=group, variant=variant, exercises=exercises),
            actions=workout_actions(session.id),
        )

        async def mark_notified(result: DispatchResult) -> None:
            message_id = result.message_id(_REMOVABLE_CHANNEL)
            await self._store.set_session_status(
                session.id,
                SessionStatus.NOTIFIED,
                message_id=message_id if isinstance(message_id, int) else None,
            )

        try:
            result = await self._dispatcher.send(
                self._user_id, notif, now=now, on_delivered=mark_notified,
            )
        except DeliveryError as exc:
            logger.warning("Failed to send workout notification for session %d: %s", session.id, exc)
            return False
        return result.delivered

    async def _remove_message(self, session: WorkoutSession) -> None:
        if session.notification_message_id is None:
            return
        await self._dispatcher.remove_notification(
            _REMOVABLE_CHANNEL, session.user_id, session.notification_message_id,
        )
