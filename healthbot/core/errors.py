"""Exceptions raised by the reminder engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from healthbot.core.notification import DeliveryOutcome


class ScheduleError(ValueError):
    """A schedule definition or time mark could not be parsed."""


class RotationError(Exception):
    """Rotation state is missing or the workout group has no variants."""


class DeliveryError(Exception):
    """No channel delivered a notification."""

    def __init__(self, message: str, outcomes: Sequence[DeliveryOutcome] = ()) -> None:
        super().__init__(message)
        self.outcomes = list(outcomes)
