"""Store port — the storage collaborator as seen by the reminder engine.

Core modules depend on this protocol; HealthDB (SQLite) is the bundled
implementation. The two `*_if_absent` methods must perform the existence
check and the insert atomically.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from healthbot.data.models import (
        Intake,
        Medication,
        PushSubscription,
        ReminderState,
        RotationState,
        SessionStatus,
        SuppressionWindow,
        WorkoutExercise,
        WorkoutGroup,
        WorkoutSession,
        WorkoutVariant,
    )


class StorePort(Protocol):
    # Medications and intakes
    def list_active_medications(self) -> list[Medication]: ...
    def get_medication(self, medication_id: int) -> Medication | None: ...
    def decrement_inventory(self, medication_id: int, quantity: int = 1) -> None: ...
    def find_intake(self, medication_id: int, scheduled_at: datetime) -> Intake | None: ...
    def create_intake_if_absent(
        self, medication_id: int, user_id: int, scheduled_at: datetime,
    ) -> tuple[int, bool]: ...
    def get_intake(self, intake_id: int) -> Intake | None: ...
    def list_pending_intakes(self) -> list[Intake]: ...
    def confirm_intake(self, intake_id: int, taken_at: datetime) -> bool: ...

    # Workouts
    def list_workout_groups(self, user_id: int, active_only: bool = True) -> list[WorkoutGroup]: ...
    def get_workout_group(self, group_id: int) -> WorkoutGroup | None: ...
    def list_variants(self, group_id: int) -> list[WorkoutVariant]: ...
    def get_workout_variant(self, variant_id: int) -> WorkoutVariant | None: ...
    def list_exercises(self, variant_id: int) -> list[WorkoutExercise]: ...
    def find_session(self, group_id: int, scheduled_date: date) -> WorkoutSession | None: ...
    def create_session_if_absent(
        self, group_id: int, variant_id: int, user_id: int,
        scheduled_date: date, scheduled_time: str,
    ) -> tuple[WorkoutSession, bool]: ...
    def get_session(self, session_id: int) -> WorkoutSession | None: ...
    def list_sessions_by_status(self, user_id: int, status: SessionStatus) -> list[WorkoutSession]: ...
    def set_session_status(
        self, session_id: int, status: SessionStatus, message_id: int | None = None,
    ) -> None: ...
    def set_session_flag(self, session_id: int, flag: str) -> None: ...
    def start_session(self, session_id: int, started_at: datetime) -> bool: ...
    def complete_session(self, session_id: int, completed_at: datetime) -> bool: ...
    def skip_session(self, session_id: int) -> bool: ...
    def snooze_session(self, session_id: int, until: datetime) -> None: ...
    def clear_session_snooze(self, session_id: int) -> None: ...

    # Rotation
    def get_rotation_state(self, group_id: int) -> RotationState | None: ...
    def initialize_rotation(self, group_id: int, variant_id: int) -> None: ...
    def advance_rotation(self, group_id: int, session_id: int, advanced_at: datetime) -> bool: ...

    # Suppression and reminder state
    def get_suppression_window(self, user_id: int, kind: str) -> SuppressionWindow: ...
    def set_snooze(self, user_id: int, kind: str, until: datetime) -> None: ...
    def set_block(self, user_id: int, kind: str, until: datetime) -> None: ...
    def get_reminder_state(self, user_id: int, kind: str) -> ReminderState: ...
    def set_preferred_reminder_hour(self, user_id: int, kind: str, hour: int) -> None: ...
    def mark_notified(self, user_id: int, kind: str, sent_at: datetime) -> None: ...
    def list_reminder_users(self, kind: str) -> list[int]: ...

    # Measurements
    def get_last_measurement(self, user_id: int, kind: str) -> datetime | None: ...
    def list_measurements_since(self, user_id: int, kind: str, since: datetime) -> list[datetime]: ...

    # Channels
    def list_push_subscriptions(self, user_id: int) -> list[PushSubscription]: ...
    def disable_channel_endpoint(self, endpoint: str) -> bool: ...
    def get_disabled_channels(self, user_id: int, kind: str) -> set[str]: ...
