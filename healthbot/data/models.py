"""
Health Reminder Bot — Data Models.

Plain dataclasses for everything the reminder engine reads from or writes to
the store. Rows are converted to these by HealthDB; the engine never sees
sqlite3.Row objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class ScheduleKind(str, Enum):
    """Recurrence kind of a medication schedule."""

    DAILY = "daily"
    WEEKLY = "weekly"
    AS_NEEDED = "as_needed"


class IntakeStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class SessionStatus(str, Enum):
    """Workout session lifecycle: pending -> notified -> in_progress -> completed|skipped."""

    PENDING = "pending"
    NOTIFIED = "notified"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass
class ScheduleDefinition:
    """Parsed medication schedule.

    `days` uses 0=Sunday .. 6=Saturday and only matters for weekly schedules.
    """

    kind: ScheduleKind
    times: list[str] = field(default_factory=list)   # ["08:00", "20:00"]
    days: list[int] = field(default_factory=list)


@dataclass
class Medication:
    """A medication with its raw schedule string (legacy "HH:MM" or JSON)."""

    id: int
    name: str
    schedule: str
    dosage: str = ""
    start_date: date | None = None
    end_date: date | None = None
    inventory_count: int | None = None    # None = inventory not tracked
    archived: bool = False


@dataclass
class Intake:
    """A materialized medication due event, keyed by (medication_id, scheduled_at)."""

    id: int
    medication_id: int
    user_id: int
    scheduled_at: datetime
    status: IntakeStatus = IntakeStatus.PENDING
    taken_at: datetime | None = None


@dataclass
class WorkoutGroup:
    id: int
    name: str
    user_id: int
    days_of_week: list[int]               # 0=Sunday
    scheduled_time: str                   # "HH:MM"
    is_rotating: bool = False
    notification_advance_minutes: int = 15
    active: bool = True
    description: str = ""


@dataclass
class WorkoutVariant:
    """One variant of a workout group (Day A, Day B, ... or Default)."""

    id: int
    group_id: int
    name: str
    rotation_order: int | None = None     # None for non-rotating groups
    description: str = ""


@dataclass
class WorkoutExercise:
    id: int
    variant_id: int
    exercise_name: str
    target_sets: int
    target_reps_min: int
    target_reps_max: int | None = None
    target_weight_kg: float | None = None
    order_index: int = 0


@dataclass
class WorkoutSession:
    """A materialized workout due event, keyed by (group_id, scheduled_date)."""

    id: int
    group_id: int
    variant_id: int
    user_id: int
    scheduled_date: date
    scheduled_time: str
    status: SessionStatus = SessionStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    snoozed_until: datetime | None = None
    snooze_count: int = 0
    notification_message_id: int | None = None
    stale_reminded: bool = False
    resent: bool = False
    rotation_advanced: bool = False


@dataclass
class RotationState:
    group_id: int
    current_variant_id: int
    last_session_id: int | None = None
    last_advanced_at: datetime | None = None


@dataclass
class SuppressionWindow:
    """Snooze / "don't bug me" deadlines for one (user, reminder kind) pair."""

    user_id: int
    kind: str
    snoozed_until: datetime | None = None
    dont_remind_until: datetime | None = None

    @property
    def deadline(self) -> datetime | None:
        deadlines = [d for d in (self.snoozed_until, self.dont_remind_until) if d is not None]
        return max(deadlines) if deadlines else None

    def gates(self, now: datetime) -> bool:
        deadline = self.deadline
        return deadline is not None and now < deadline


@dataclass
class ReminderState:
    """Per-user state of a measurement reminder kind (weight, blood pressure)."""

    user_id: int
    kind: str
    enabled: bool = True
    last_notification_sent_at: datetime | None = None
    preferred_reminder_hour: int | None = None


@dataclass
class PushSubscription:
    id: int
    user_id: int
    endpoint: str
    auth: str
    p256dh: str
    enabled: bool = True
