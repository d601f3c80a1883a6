"""Grouping & batching of due medication doses.

Doses whose target instants are identical (to the second) become one
NotificationGroup, so the user gets one message for "09:00: A and B"
instead of one per medication. Groups are rebuilt every tick and never
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from healthbot.core.notification import (
    MedicationPayload,
    NotificationContext,
    NotificationKind,
    confirm_intakes_action,
)

if TYPE_CHECKING:
    from healthbot.data.models import Medication


@dataclass
class DueCandidate:
    medication: Medication
    target: datetime


@dataclass
class NotificationGroup:
    target: datetime
    medications: list[Medication] = field(default_factory=list)

    @property
    def tag(self) -> str:
        return f"medication_{int(self.target.timestamp())}"


def group_candidates(candidates: Iterable[DueCandidate]) -> list[NotificationGroup]:
    """Merge candidates by target instant; groups come back in time order."""
    groups: dict[int, NotificationGroup] = {}
    for candidate in candidates:
        key = int(candidate.target.timestamp())
        group = groups.setdefault(key, NotificationGroup(target=candidate.target))
        if all(m.id != candidate.medication.id for m in group.medications):
            group.medications.append(candidate.medication)
    return sorted(groups.values(), key=lambda g: g.target)


def _describe(med: Medication) -> str:
    return f"{med.name} ({med.dosage})" if med.dosage else med.name


def build_medication_message(medications: list[Medication], target: datetime) -> str:
    if not medications:
        return ""
    if len(medications) == 1:
        return f"Time to take {_describe(medications[0])} at {target.strftime('%H:%M')}"

    lines = [f"Time to take {len(medications)} medications ({target.strftime('%H:%M')}):"]
    lines.extend(f"• {_describe(m)}" for m in medications)
    return "\n".join(lines)


def medication_notification(group: NotificationGroup, intake_ids: list[int]) -> NotificationContext:
    """One combined notification for every medication in the group."""
    actions = [confirm_intakes_action(intake_ids)] if intake_ids else []
    return NotificationContext(
        kind=NotificationKind.MEDICATION,
        title="💊 Medication Reminder",
        body=build_medication_message(group.medications, group.target),
        tag=group.tag,
        payload=MedicationPayload(
            medications=list(group.medications),
            scheduled_at=group.target,
            intake_ids=list(intake_ids),
        ),
        actions=actions,
    )
