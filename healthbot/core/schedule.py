"""
Health Reminder Bot — Schedule Evaluator.

Decides which medication doses are due "now". This is the only module that
reasons about recurrence rules: daily / weekly / as-needed schedules, the
time-of-day marks, and the optional [start_date, end_date] window.

A medication's schedule is stored either as a legacy "HH:MM" string or as
JSON: {"type": "weekly", "days": [1, 3], "times": ["08:00", "20:00"]}.
Days use 0=Sunday .. 6=Saturday.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from healthbot.core.errors import ScheduleError
from healthbot.core.grouping import DueCandidate, group_candidates
from healthbot.data.models import ScheduleDefinition, ScheduleKind

if TYPE_CHECKING:
    from healthbot.core.grouping import NotificationGroup
    from healthbot.data.async_store import AsyncStore
    from healthbot.data.models import Medication

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_time_mark(mark: str) -> tuple[int, int]:
    """Parse a strict "HH:MM" mark into (hour, minute).

    Raises:
        ScheduleError: anything other than a valid 24h "HH:MM".
    """
    if not isinstance(mark, str) or len(mark) != 5 or mark[2] != ":":
        raise ScheduleError(f"Invalid time mark: {mark!r}")
    hh, mm = mark[:2], mark[3:]
    if not (hh.isdigit() and mm.isdigit()):
        raise ScheduleError(f"Invalid time mark: {mark!r}")
    hour, minute = int(hh), int(mm)
    if hour > 23 or minute > 59:
        raise ScheduleError(f"Time mark out of range: {mark!r}")
    return hour, minute


def parse_schedule(raw: str) -> ScheduleDefinition:
    """Parse a stored schedule string into a ScheduleDefinition.

    Raises:
        ScheduleError: malformed JSON, unknown type, or bad times/days.
    """
    if not isinstance(raw, str):
        raise ScheduleError(f"Schedule must be a string, got {type(raw).__name__}")
    raw = raw.strip()

    # Legacy single daily time
    if len(raw) == 5 and raw[2] == ":":
        parse_time_mark(raw)
        return ScheduleDefinition(kind=ScheduleKind.DAILY, times=[raw])

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ScheduleError(f"Schedule is neither HH:MM nor JSON: {raw!r}") from exc

    if not isinstance(data, dict):
        raise ScheduleError(f"Schedule JSON must be an object: {raw!r}")

    try:
        kind = ScheduleKind(data.get("type"))
    except ValueError as exc:
        raise ScheduleError(f"Unknown schedule type: {data.get('type')!r}") from exc

    times = data.get("times") or []
    days = data.get("days") or []
    if not isinstance(times, list) or not isinstance(days, list):
        raise ScheduleError("Schedule 'times' and 'days' must be lists")

    for mark in times:
        parse_time_mark(mark)
    for day in days:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise ScheduleError(f"Invalid weekday {day!r} (expected 0=Sunday .. 6=Saturday)")

    return ScheduleDefinition(kind=kind, times=list(times), days=list(days))


def weekday_index(day: date) -> int:
    """Weekday with 0=Sunday, matching stored schedules."""
    return (day.weekday() + 1) % 7


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def candidate_targets(medication: Medication, now: datetime) -> list[datetime]:
    """Today's target instants for `medication` that are due at `now`.

    `now` must be timezone-aware; targets are built in its timezone with
    seconds zeroed. Does not check whether the intake already exists.
    """
    definition = parse_schedule(medication.schedule)

    if definition.kind is ScheduleKind.AS_NEEDED:
        return []
    if definition.kind is ScheduleKind.WEEKLY and weekday_index(now.date()) not in definition.days:
        return []

    targets: list[datetime] = []
    for mark in definition.times:
        hour, minute = parse_time_mark(mark)
        target = datetime(now.year, now.month, now.day, hour, minute, tzinfo=now.tzinfo)

        if medication.start_date and target.date() < medication.start_date:
            continue
        if medication.end_date and target.date() > medication.end_date:
            continue
        # Never fire early
        if now < target:
            continue
        if target not in targets:
            targets.append(target)
    return targets


class ScheduleEvaluator:
    """Turns persisted medication schedules into due NotificationGroups."""

    def __init__(self, store: AsyncStore) -> None:
        self._store = store

    async def evaluate(self, now: datetime) -> list[NotificationGroup]:
        """Return groups of not-yet-materialized due doses, one per target instant.

        A malformed schedule or a failed existence check skips that one
        medication; it never aborts evaluation of the others.
        """
        medications = await self._store.list_active_medications()
        candidates: list[DueCandidate] = []

        for med in medications:
            try:
                targets = candidate_targets(med, now)
            except ScheduleError as exc:
                logger.warning("Invalid schedule for medication %d: %s", med.id, exc)
                continue

            for target in targets:
                try:
                    existing = await self._store.find_intake(med.id, target)
                except Exception as exc:
                    logger.error(
                        "Intake lookup failed for medication %d at %s: %s",
                        med.id, target.isoformat(), exc,
                    )
                    continue
                if existing is None:
                    candidates.append(DueCandidate(medication=med, target=target))

        return group_candidates(candidates)
