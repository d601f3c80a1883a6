"""
Health Reminder Bot — Reminder Engine.

Owns the periodic loops and drives the engine components:

- schedule      (every minute)   evaluate -> materialize -> dispatch medication doses
- reminders     (hourly)         re-notify intakes left unconfirmed
- low_stock     (hourly)         one low-inventory warning per calendar day
- workouts      (every minute)   workout session notifications
- measurements  (every 15 min)   weight and blood-pressure reminders

Loops are python-telegram-bot JobQueue jobs. They run concurrently with
each other, but a loop never overlaps itself: a tick that finds its
previous run still in progress is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING, Awaitable, Callable

from healthbot.core.errors import DeliveryError
from healthbot.core.grouping import medication_notification
from healthbot.core.materializer import DueEventMaterializer
from healthbot.core.measurements import MeasurementReminders
from healthbot.core.notification import (
    NotificationContext,
    NotificationKind,
    TextPayload,
    confirm_intakes_action,
)
from healthbot.core.rotation import RotationStateMachine
from healthbot.core.schedule import ScheduleEvaluator
from healthbot.core.stock import LowStockGate, find_low_stock, low_stock_notification
from healthbot.core.workout import WorkoutNotifier

if TYPE_CHECKING:
    from telegram.ext import ContextTypes, Job, JobQueue

    from healthbot.core.dispatcher import NotificationDispatcher
    from healthbot.data.async_store import AsyncStore

logger = logging.getLogger(__name__)

Check = Callable[[datetime], Awaitable[None]]


class ReminderEngine:
    def __init__(
        self,
        store: AsyncStore,
        dispatcher: NotificationDispatcher,
        user_id: int,
        tz: tzinfo,
        *,
        schedule_interval: int = 60,
        reminder_interval: int = 3600,
        stale_intake_minutes: int = 60,
        low_stock_interval: int = 3600,
        low_stock_hour: int = 11,
        low_stock_days_threshold: int = 7,
        workout_interval: int = 60,
        measurement_interval: int = 900,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._user_id = user_id
        self._tz = tz
        self._stale_after = timedelta(minutes=stale_intake_minutes)
        self._low_stock_hour = low_stock_hour
        self._low_stock_threshold = low_stock_days_threshold

        self.evaluator = ScheduleEvaluator(store)
        self.materializer = DueEventMaterializer(store, user_id)
        self.rotation = RotationStateMachine(store)
        self.workouts = WorkoutNotifier(store, dispatcher, self.rotation, self.materializer, user_id)
        self.measurements = MeasurementReminders(store, dispatcher, owner_ids=(user_id,))
        self.low_stock_gate = LowStockGate()

        self._loops: list[tuple[str, int, Check]] = [
            ("schedule", schedule_interval, self.check_schedule),
            ("reminders", reminder_interval, self.check_reminders),
            ("low_stock", low_stock_interval, self.check_low_stock),
            ("workouts", workout_interval, self.check_workout_notifications),
            ("measurements", measurement_interval, self.check_measurement_reminders),
        ]
        self._locks = {name: asyncio.Lock() for name, _, _ in self._loops}
        self._jobs: list[Job] = []

    def now(self) -> datetime:
        return datetime.now(self._tz)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, job_queue: JobQueue) -> None:
        """Register every loop on `job_queue` and return immediately."""
        for name, interval, check in self._loops:
            job = job_queue.run_repeating(
                self._make_callback(name, check),
                interval=interval,
                first=1,
                name=f"reminder_{name}",
                job_kwargs={"max_instances": 1, "coalesce": True},
            )
            self._jobs.append(job)
            logger.info("Scheduled %s check every %ds", name, interval)

    def stop(self) -> None:
        """Stop scheduling new ticks. Sends already in flight finish on their own."""
        for job in self._jobs:
            job.schedule_removal()
        self._jobs.clear()
        logger.info("Reminder engine stopped")

    def _make_callback(
        self, name: str, check: Check,
    ) -> Callable[[ContextTypes.DEFAULT_TYPE], Awaitable[None]]:
        async def _job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
            await self.run_check(name, check)

        return _job_callback

    async def run_check(self, name: str, check: Check) -> None:
        """Run one tick of a loop; the outermost place a tick's error is logged."""
        lock = self._locks[name]
        if lock.locked():
            logger.warning("Previous %s tick still running; skipping this one", name)
            return
        async with lock:
            try:
                await check(self.now())
            except Exception as exc:
                logger.error("%s check failed: %s", name, exc)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_schedule(self, now: datetime) -> None:
        """Materialize and announce medication doses due at `now`."""
        if await self._dispatcher.is_suppressed(self._user_id, NotificationKind.MEDICATION, now):
            logger.info("Medication reminders suppressed; skipping schedule check")
            return

        for group in await self.evaluator.evaluate(now):
            try:
                intake_ids = await self.materializer.materialize(group)
                if not intake_ids:
                    continue
                await self._dispatcher.send(
                    self._user_id, medication_notification(group, intake_ids), now=now,
                )
            except DeliveryError as exc:
                logger.warning("Medication notification %s not delivered: %s", group.tag, exc)
            except Exception as exc:
                logger.error("Failed to process medication group %s: %s", group.tag, exc)

    async def check_reminders(self, now: datetime) -> None:
        """Re-notify intakes still pending after the stale threshold."""
        cutoff = now - self._stale_after
        for intake in await self._store.list_pending_intakes():
            if intake.scheduled_at >= cutoff:
                continue
            try:
                med = await self._store.get_medication(intake.medication_id)
                if med is None or med.archived:
                    continue

                name = f"{med.name} ({med.dosage})" if med.dosage else med.name
                scheduled = intake.scheduled_at.astimezone(self._tz).strftime("%H:%M")
                notif = NotificationContext(
                    kind=NotificationKind.REMINDER,
                    title="🔔 Medication reminder",
                    body=f"🔔 REMINDER: You haven't confirmed taking {name} yet (scheduled {scheduled})!",
                    tag=f"intake_reminder_{intake.id}",
                    payload=TextPayload(intake_id=intake.id),
                    actions=[confirm_intakes_action([intake.id])],
                )
                await self._dispatcher.send(intake.user_id, notif, now=now)
            except DeliveryError as exc:
                logger.warning("Reminder for intake %d not delivered: %s", intake.id, exc)
            except Exception as exc:
                logger.error("Failed to send reminder for intake %d: %s", intake.id, exc)

    async def check_low_stock(self, now: datetime) -> None:
        """Warn about low inventory once per calendar day, during the low-stock hour."""
        if now.hour != self._low_stock_hour:
            return
        if not self.low_stock_gate.is_open(now):
            return

        medications = await self._store.list_active_medications()
        items = find_low_stock(medications, now.date(), self._low_stock_threshold)
        if not items:
            self.low_stock_gate.close(now)
            return

        notif = low_stock_notification(items, now.date(), self._low_stock_threshold)
        try:
            result = await self._dispatcher.send(self._user_id, notif, now=now)
        except DeliveryError as exc:
            logger.warning("Low stock warning not delivered: %s", exc)
            return

        if result.delivered:
            self.low_stock_gate.close(now)

    async def check_workout_notifications(self, now: datetime) -> None:
        await self.workouts.check(now)

    async def check_measurement_reminders(self, now: datetime) -> None:
        await self.measurements.check(now)
