"""
Health Reminder Bot — Notification value types.

A NotificationContext is channel-agnostic: every channel renders the same
context its own way. The context is a tagged variant: `kind` is a closed
enumeration and each kind carries its own payload shape. Any kind may also
carry a TextPayload for plain follow-up messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from healthbot.data.models import (
        Medication,
        WorkoutExercise,
        WorkoutGroup,
        WorkoutSession,
        WorkoutVariant,
    )


class NotificationKind(str, Enum):
    MEDICATION = "medication"
    WORKOUT = "workout"
    WEIGHT = "weight"
    BLOOD_PRESSURE = "blood_pressure"
    LOW_STOCK = "low_stock"
    REMINDER = "reminder"


class ActionType(str, Enum):
    CONFIRM = "confirm"
    SNOOZE = "snooze"
    BLOCK = "block"
    SKIP = "skip"
    START = "start"
    COMPLETE = "complete"


@dataclass
class NotificationAction:
    """An interactive button attached to a notification.

    `callback` is the compact string a chat channel round-trips back to us;
    see healthbot.core.actions.decode_callback_data.
    """

    id: str
    label: str
    type: ActionType
    callback: str
    data: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass
class MedicationPayload:
    medications: list[Medication]
    scheduled_at: datetime
    intake_ids: list[int]


@dataclass
class WorkoutPayload:
    session: WorkoutSession
    group: WorkoutGroup
    variant: WorkoutVariant
    exercises: list[WorkoutExercise] = field(default_factory=list)


@dataclass
class MeasurementPayload:
    last_measured_at: datetime | None = None


@dataclass
class LowStockItem:
    medication: Medication
    days_remaining: float | None


@dataclass
class LowStockPayload:
    items: list[LowStockItem]


@dataclass
class TextPayload:
    """Plain message without structured data (re-notifications, nudges)."""

    intake_id: int | None = None
    session_id: int | None = None


Payload = Union[MedicationPayload, WorkoutPayload, MeasurementPayload, LowStockPayload, TextPayload]

_PAYLOAD_TYPES: dict[NotificationKind, tuple[type, ...]] = {
    NotificationKind.MEDICATION: (MedicationPayload, TextPayload),
    NotificationKind.WORKOUT: (WorkoutPayload, TextPayload),
    NotificationKind.WEIGHT: (MeasurementPayload, TextPayload),
    NotificationKind.BLOOD_PRESSURE: (MeasurementPayload, TextPayload),
    NotificationKind.LOW_STOCK: (LowStockPayload, TextPayload),
    NotificationKind.REMINDER: (TextPayload,),
}


@dataclass
class NotificationContext:
    kind: NotificationKind
    title: str
    body: str
    tag: str
    payload: Payload = field(default_factory=TextPayload)
    actions: list[NotificationAction] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.kind = NotificationKind(self.kind)
        allowed = _PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, allowed):
            raise TypeError(
                f"{type(self.payload).__name__} is not a valid payload for "
                f"{self.kind.value} notifications"
            )


@dataclass
class DeliveryOutcome:
    """Result of attempting one channel."""

    channel: str
    success: bool
    error: str | None = None
    message_id: int | str | None = None


# ---------------------------------------------------------------------------
# Action builders
# ---------------------------------------------------------------------------


def confirm_intakes_action(intake_ids: list[int]) -> NotificationAction:
    ids = ",".join(str(i) for i in intake_ids)
    label = "✅ Confirm" if len(intake_ids) == 1 else "✅ Confirm all"
    return NotificationAction(
        id="confirm_all",
        label=label,
        type=ActionType.CONFIRM,
        callback=f"confirm:{ids}",
        data={"intake_ids": list(intake_ids)},
    )


def workout_actions(session_id: int) -> list[NotificationAction]:
    data = {"session_id": session_id}
    return [
        NotificationAction("start", "▶️ Start", ActionType.START, f"workout_start_{session_id}", dict(data)),
        NotificationAction(
            "snooze_1h", "⏰ Snooze 1h", ActionType.SNOOZE,
            f"workout_snooze_{session_id}", {**data, "duration_minutes": 60},
        ),
        NotificationAction("skip", "⏭ Skip", ActionType.SKIP, f"workout_skip_{session_id}", dict(data)),
    ]


def measurement_actions(kind: NotificationKind) -> list[NotificationAction]:
    return [
        NotificationAction(
            "snooze", "⏰ Snooze 2h", ActionType.SNOOZE,
            f"remind_snooze_{kind.value}", {"kind": kind.value, "duration_minutes": 120},
        ),
        NotificationAction(
            "dont_bug_me", "🔕 Not today", ActionType.BLOCK,
            f"remind_block_{kind.value}", {"kind": kind.value, "duration_minutes": 24 * 60},
        ),
    ]


def session_started_actions(session_id: int) -> list[NotificationAction]:
    return [
        NotificationAction(
            "done", "✅ Done", ActionType.COMPLETE,
            f"workout_done_{session_id}", {"session_id": session_id},
        ),
        NotificationAction("skip", "⏭ Skip", ActionType.SKIP, f"workout_skip_{session_id}", {"session_id": session_id}),
    ]
