"""Tests for healthbot.core.workout — workout session notifications."""

from datetime import date

import pytest

from conftest import USER_ID, at
from healthbot.core.materializer import DueEventMaterializer
from healthbot.core.rotation import RotationStateMachine
from healthbot.core.workout import WorkoutNotifier, build_workout_message, format_exercise
from healthbot.data.models import SessionStatus, WorkoutExercise, WorkoutGroup, WorkoutVariant

MONDAY = date(2026, 3, 2)


@pytest.fixture
def notifier(store, dispatcher):
    return WorkoutNotifier(
        store, dispatcher, RotationStateMachine(store), DueEventMaterializer(store, USER_ID), USER_ID,
    )


def _group(db, time="09:00", rotating=False, name="Strength"):
    """Monday/Wednesday group with one variant and one exercise."""
    group = db.add_workout_group(name, USER_ID, [1, 3], time, is_rotating=rotating)
    variant = db.add_workout_variant(group.id, "Day A" if rotating else "Default", rotation_order=0 if rotating else None)
    db.add_workout_exercise(variant.id, "Squat", 3, 8, 10, target_weight_kg=80)
    return group, variant


def _today(db, group):
    return db.find_session(group.id, MONDAY)


class TestMessage:
    def test_format_exercise_range_and_weight(self):
        ex = WorkoutExercise(id=1, variant_id=1, exercise_name="Squat", target_sets=3,
                             target_reps_min=8, target_reps_max=10, target_weight_kg=80)
        assert format_exercise(1, ex) == "1. Squat: 3 × 8-10 @ 80kg"

    def test_format_exercise_fixed_reps(self):
        ex = WorkoutExercise(id=1, variant_id=1, exercise_name="Plank", target_sets=2, target_reps_min=1)
        assert format_exercise(2, ex) == "2. Plank: 2 × 1"

    def test_build_workout_message(self):
        group = WorkoutGroup(id=1, name="Strength", user_id=USER_ID, days_of_week=[1], scheduled_time="18:00")
        variant = WorkoutVariant(id=1, group_id=1, name="Day A")
        msg = build_workout_message(group, variant, [])
        assert msg.splitlines() == ["🏋️ Workout starting in 15 minutes", "", "Strength - Day A"]


class TestScheduledNotification:
    @pytest.mark.asyncio
    async def test_session_materialized_before_notify_time(self, health_db, notifier, channel):
        group, _ = _group(health_db)

        await notifier.check(at(8, 30))

        assert _today(health_db, group).status is SessionStatus.PENDING
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_notified_once_at_advance_time(self, health_db, notifier, channel):
        group, _ = _group(health_db)

        await notifier.check(at(8, 45))
        await notifier.check(at(8, 46))
        await notifier.check(at(9))

        assert len(channel.sent) == 1
        notif = channel.sent[0][1]
        assert "Squat" in notif.body
        assert [a.type.value for a in notif.actions] == ["start", "snooze", "skip"]
        session = _today(health_db, group)
        assert session.status is SessionStatus.NOTIFIED
        assert session.notification_message_id == 100

    @pytest.mark.asyncio
    async def test_unscheduled_day_does_nothing(self, health_db, notifier, channel):
        group, _ = _group(health_db)
        await notifier.check(at(8, 50, day=3))  # Tuesday
        assert health_db.find_session(group.id, date(2026, 3, 3)) is None
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_failed_delivery_stays_pending_and_retries(self, health_db, notifier, channel):
        group, _ = _group(health_db)
        channel.succeed = False
        await notifier.check(at(8, 45))
        assert _today(health_db, group).status is SessionStatus.PENDING

        channel.succeed = True
        await notifier.check(at(8, 46))
        assert _today(health_db, group).status is SessionStatus.NOTIFIED
        assert len(channel.sent) == 2

    @pytest.mark.asyncio
    async def test_rotating_group_without_variants_is_skipped(self, health_db, notifier, channel, caplog):
        group = health_db.add_workout_group("Strength", USER_ID, [1, 3], "09:00", is_rotating=True)

        await notifier.check(at(8, 50))

        assert _today(health_db, group) is None
        assert channel.sent == []
        assert "no rotation state" in caplog.text

    @pytest.mark.asyncio
    async def test_rotating_group_built_through_store_is_notified(self, health_db, notifier, channel):
        group = health_db.add_workout_group("Strength", USER_ID, [1, 3], "09:00", is_rotating=True)
        a = health_db.add_workout_variant(group.id, "Day A", rotation_order=0)
        health_db.add_workout_variant(group.id, "Day B", rotation_order=1)

        await notifier.check(at(8, 45))

        assert len(channel.sent) == 1
        session = _today(health_db, group)
        assert session.variant_id == a.id
        assert session.status is SessionStatus.NOTIFIED
        assert health_db.get_rotation_state(group.id).current_variant_id == a.id

    @pytest.mark.asyncio
    async def test_rotating_group_uses_current_variant(self, health_db, notifier):
        group, a = _group(health_db, rotating=True)
        b = health_db.add_workout_variant(group.id, "Day B", rotation_order=1)
        health_db.initialize_rotation(group.id, b.id)

        await notifier.check(at(8, 50))

        assert _today(health_db, group).variant_id == b.id


class TestResendAndAutoSkip:
    @pytest.mark.asyncio
    async def test_resent_once_after_three_hours(self, health_db, notifier, channel):
        group, _ = _group(health_db)
        await notifier.check(at(8, 45))

        await notifier.check(at(11, 59))
        assert len(channel.sent) == 1

        await notifier.check(at(12, 1))
        await notifier.check(at(12, 30))
        assert len(channel.sent) == 2
        assert _today(health_db, group).resent is True

    @pytest.mark.asyncio
    async def test_auto_skip_after_six_hours_removes_message(self, health_db, notifier, channel):
        group, a = _group(health_db, rotating=True)
        health_db.initialize_rotation(group.id, a.id)
        health_db.add_workout_variant(group.id, "Day B", rotation_order=1)
        await notifier.check(at(8, 45))

        await notifier.check(at(15, 1))

        assert _today(health_db, group).status is SessionStatus.SKIPPED
        assert channel.removed == [(USER_ID, 100)]
        # Auto-skips never advance rotation
        assert health_db.get_rotation_state(group.id).current_variant_id == a.id

    @pytest.mark.asyncio
    async def test_snoozed_session_resent_when_snooze_elapses(self, health_db, notifier, channel):
        group, _ = _group(health_db)
        await notifier.check(at(8, 45))
        health_db.snooze_session(_today(health_db, group).id, at(10))

        await notifier.check(at(9, 30))
        assert len(channel.sent) == 1

        await notifier.check(at(10))
        assert len(channel.sent) == 2
        assert _today(health_db, group).snoozed_until is None

        await notifier.check(at(10, 1))
        assert len(channel.sent) == 2


class TestActiveSession:
    @pytest.mark.asyncio
    async def test_in_progress_session_blocks_other_groups(self, health_db, notifier, channel):
        morning, morning_variant = _group(health_db, time="09:00")
        evening, _ = _group(health_db, time="10:00", name="Cardio")
        session, _ = health_db.create_session_if_absent(morning.id, morning_variant.id, USER_ID, MONDAY, "09:00")
        health_db.start_session(session.id, at(9))

        await notifier.check(at(9, 50))

        assert channel.sent == []
        assert _today(health_db, evening).status is SessionStatus.PENDING

    @pytest.mark.asyncio
    async def test_stale_nudge_sent_once(self, health_db, notifier, channel):
        group, variant = _group(health_db)
        session, _ = health_db.create_session_if_absent(group.id, variant.id, USER_ID, MONDAY, "09:00")
        health_db.start_session(session.id, at(9))

        await notifier.check(at(10, 31))
        await notifier.check(at(10, 45))

        assert len(channel.sent) == 1
        assert "Still training?" in channel.sent[0][1].body
        assert health_db.get_session(session.id).stale_reminded is True

    @pytest.mark.asyncio
    async def test_forgotten_session_auto_skipped(self, health_db, notifier, channel):
        group, variant = _group(health_db)
        session, _ = health_db.create_session_if_absent(group.id, variant.id, USER_ID, MONDAY, "09:00")
        health_db.set_session_status(session.id, SessionStatus.NOTIFIED, message_id=77)
        health_db.start_session(session.id, at(9))

        await notifier.check(at(13, 1))

        assert health_db.get_session(session.id).status is SessionStatus.SKIPPED
        assert channel.removed == [(USER_ID, 77)]
