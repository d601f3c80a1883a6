"""Low-stock computation and the once-per-day gate for low-stock warnings."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from healthbot.core.errors import ScheduleError
from healthbot.core.notification import (
    LowStockItem,
    LowStockPayload,
    NotificationContext,
    NotificationKind,
)
from healthbot.core.schedule import parse_schedule
from healthbot.data.models import ScheduleKind

if TYPE_CHECKING:
    from healthbot.data.models import Medication

logger = logging.getLogger(__name__)


def daily_usage(medication: Medication) -> float:
    """Average doses per day; 0 for as-needed or unparseable schedules."""
    try:
        definition = parse_schedule(medication.schedule)
    except ScheduleError:
        return 0.0

    times_per_day = float(len(definition.times))
    if definition.kind is ScheduleKind.DAILY:
        return times_per_day
    if definition.kind is ScheduleKind.WEEKLY:
        return len(set(definition.days)) / 7.0 * times_per_day
    return 0.0


def days_of_stock_remaining(medication: Medication) -> float | None:
    """Days the tracked inventory lasts, or None if it cannot be computed."""
    if medication.inventory_count is None:
        return None
    usage = daily_usage(medication)
    if usage == 0:
        return None
    return medication.inventory_count / usage


def is_low_on_stock(medication: Medication, today: date, days_threshold: int) -> bool:
    """Whether to warn about `medication`.

    With an end date, stock is low only if it runs out before the course
    ends (a course that already ended never warns). Without one, stock is
    low when fewer than `days_threshold` days remain.
    """
    remaining = days_of_stock_remaining(medication)
    if remaining is None:
        return False

    if medication.end_date is not None:
        days_until_end = (medication.end_date - today).days
        if days_until_end <= 0:
            return False
        return remaining < days_until_end

    return remaining < days_threshold


def find_low_stock(
    medications: list[Medication], today: date, days_threshold: int,
) -> list[LowStockItem]:
    return [
        LowStockItem(medication=m, days_remaining=days_of_stock_remaining(m))
        for m in medications
        if not m.archived and is_low_on_stock(m, today, days_threshold)
    ]


def build_low_stock_message(items: list[LowStockItem], days_threshold: int) -> str:
    lines = [
        f"The following medications are running low (< {days_threshold} days):",
        "",
    ]
    for item in items:
        left = f" (~{item.days_remaining:.0f} days left)" if item.days_remaining is not None else ""
        lines.append(f"• {item.medication.name}: {item.medication.inventory_count} units{left}")
    lines += ["", "Please restock soon!"]
    return "\n".join(lines)


def low_stock_notification(
    items: list[LowStockItem], today: date, days_threshold: int,
) -> NotificationContext:
    return NotificationContext(
        kind=NotificationKind.LOW_STOCK,
        title="⚠️ Low Stock Warning",
        body=build_low_stock_message(items, days_threshold),
        tag=f"low_stock_{today.isoformat()}",
        payload=LowStockPayload(items=items),
    )


class LowStockGate:
    """Allows one low-stock check per calendar day.

    Days are compared as calendar dates of the local clock, not as a
    rolling 24h window, so a late tick one day and an early tick the next
    both count.
    """

    def __init__(self) -> None:
        self.last_checked: date | None = None

    def is_open(self, now: datetime) -> bool:
        return self.last_checked is None or self.last_checked < now.date()

    def close(self, now: datetime) -> None:
        self.last_checked = now.date()
