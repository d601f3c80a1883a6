"""Tests for healthbot.core.schedule — parsing and the Schedule Evaluator."""

import json
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import at
from healthbot.core.errors import ScheduleError
from healthbot.core.schedule import (
    ScheduleEvaluator,
    candidate_targets,
    parse_schedule,
    parse_time_mark,
    weekday_index,
)
from healthbot.data.models import Medication, ScheduleKind


def _med(schedule, med_id=1, **kwargs):
    return Medication(id=med_id, name=f"Med{med_id}", schedule=schedule, **kwargs)


def _weekly(days, times):
    return json.dumps({"type": "weekly", "days": days, "times": times})


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseTimeMark:
    def test_valid(self):
        assert parse_time_mark("08:05") == (8, 5)
        assert parse_time_mark("23:59") == (23, 59)

    @pytest.mark.parametrize("mark", ["8:05", "24:00", "12:60", "ab:cd", "", "08-05", None])
    def test_invalid(self, mark):
        with pytest.raises(ScheduleError):
            parse_time_mark(mark)


class TestParseSchedule:
    def test_legacy_hhmm_is_daily(self):
        definition = parse_schedule("09:00")
        assert definition.kind is ScheduleKind.DAILY
        assert definition.times == ["09:00"]

    def test_json_weekly(self):
        definition = parse_schedule(_weekly([1, 3], ["08:00", "20:00"]))
        assert definition.kind is ScheduleKind.WEEKLY
        assert definition.days == [1, 3]
        assert definition.times == ["08:00", "20:00"]

    def test_json_as_needed(self):
        assert parse_schedule('{"type": "as_needed"}').kind is ScheduleKind.AS_NEEDED

    @pytest.mark.parametrize(
        "raw",
        [
            "not a schedule",
            "[1, 2]",
            '{"type": "hourly", "times": ["08:00"]}',
            '{"type": "daily", "times": ["8am"]}',
            '{"type": "weekly", "days": [7], "times": ["08:00"]}',
            '{"type": "daily", "times": "08:00"}',
            "25:00",
        ],
    )
    def test_malformed_raises(self, raw):
        with pytest.raises(ScheduleError):
            parse_schedule(raw)


class TestWeekdayIndex:
    def test_sunday_is_zero(self):
        assert weekday_index(date(2026, 3, 1)) == 0

    def test_monday_is_one(self):
        assert weekday_index(date(2026, 3, 2)) == 1

    def test_saturday_is_six(self):
        assert weekday_index(date(2026, 3, 7)) == 6


# ---------------------------------------------------------------------------
# candidate_targets
# ---------------------------------------------------------------------------


class TestCandidateTargets:
    def test_no_early_firing(self):
        assert candidate_targets(_med("09:00"), at(8, 59)) == []

    def test_due_at_exact_minute(self):
        assert candidate_targets(_med("09:00"), at(9)) == [at(9)]

    def test_target_has_zero_seconds(self):
        now = datetime(2026, 3, 2, 9, 0, 42, 123, tzinfo=timezone.utc)
        assert candidate_targets(_med("09:00"), now) == [at(9)]

    def test_multiple_times_only_past_ones(self):
        med = _med(json.dumps({"type": "daily", "times": ["08:00", "12:00", "20:00"]}))
        assert candidate_targets(med, at(13)) == [at(8), at(12)]

    def test_duplicate_marks_collapse(self):
        med = _med(json.dumps({"type": "daily", "times": ["08:00", "08:00"]}))
        assert candidate_targets(med, at(9)) == [at(8)]

    def test_weekly_gating(self):
        med = _med(_weekly([1], ["09:00"]))  # Monday only
        assert candidate_targets(med, at(10, day=2)) == [at(9, day=2)]
        for day in (1, 3, 4, 5, 6, 7):
            assert candidate_targets(med, at(10, day=day)) == []

    def test_as_needed_never_fires(self):
        med = _med('{"type": "as_needed", "times": ["09:00"]}')
        assert candidate_targets(med, at(23)) == []

    def test_before_start_date(self):
        med = _med("09:00", start_date=date(2026, 3, 3))
        assert candidate_targets(med, at(10, day=2)) == []
        assert candidate_targets(med, at(10, day=3)) == [at(9, day=3)]

    def test_after_end_date(self):
        med = _med("09:00", end_date=date(2026, 3, 2))
        assert candidate_targets(med, at(10, day=2)) == [at(9, day=2)]
        assert candidate_targets(med, at(10, day=3)) == []

    def test_target_built_in_local_timezone(self):
        tz = ZoneInfo("Asia/Jerusalem")
        now = datetime(2026, 3, 2, 9, 30, tzinfo=tz)
        (target,) = candidate_targets(_med("09:00"), now)
        assert target == datetime(2026, 3, 2, 9, 0, tzinfo=tz)
        assert target.utcoffset() == now.utcoffset()


# ---------------------------------------------------------------------------
# ScheduleEvaluator
# ---------------------------------------------------------------------------


class TestScheduleEvaluator:
    @pytest.mark.asyncio
    async def test_groups_same_target(self, health_db, store):
        health_db.add_medication("A", "09:00")
        health_db.add_medication("B", "09:00")
        health_db.add_medication("C", "12:00")

        groups = await ScheduleEvaluator(store).evaluate(at(9, 1))

        assert len(groups) == 1
        assert groups[0].target == at(9)
        assert [m.name for m in groups[0].medications] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_existing_intake_is_not_a_candidate(self, health_db, store):
        med = health_db.add_medication("A", "09:00")
        health_db.create_intake_if_absent(med.id, 12345, at(9))
        assert await ScheduleEvaluator(store).evaluate(at(9, 30)) == []

    @pytest.mark.asyncio
    async def test_malformed_schedule_skipped_not_fatal(self, health_db, store, caplog):
        health_db.add_medication("Broken", "whenever")
        health_db.add_medication("Good", "09:00")

        groups = await ScheduleEvaluator(store).evaluate(at(9, 5))

        assert [m.name for g in groups for m in g.medications] == ["Good"]
        assert "Invalid schedule" in caplog.text

    @pytest.mark.asyncio
    async def test_archived_medication_ignored(self, health_db, store):
        med = health_db.add_medication("A", "09:00")
        health_db.archive_medication(med.id)
        assert await ScheduleEvaluator(store).evaluate(at(10)) == []

    @pytest.mark.asyncio
    async def test_evaluate_has_no_side_effects(self, health_db, store):
        health_db.add_medication("A", "09:00")
        evaluator = ScheduleEvaluator(store)
        await evaluator.evaluate(at(10))
        await evaluator.evaluate(at(10))
        assert health_db.list_pending_intakes() == []
