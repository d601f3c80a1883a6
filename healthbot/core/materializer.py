"""Due-Event Materializer.

The only writer of due-event rows. Each (entity, scheduled instant) pair is
created at most once: the store checks for an existing row and inserts in
one atomic step, and an existing row is reported as "not created" rather
than raised as an error.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from healthbot.core.grouping import NotificationGroup
    from healthbot.data.async_store import AsyncStore
    from healthbot.data.models import WorkoutGroup, WorkoutSession

logger = logging.getLogger(__name__)


class DueEventMaterializer:
    def __init__(self, store: AsyncStore, user_id: int) -> None:
        self._store = store
        self._user_id = user_id

    async def materialize(self, group: NotificationGroup) -> list[int]:
        """Persist one intake per medication in `group`.

        Medications whose intake already existed (a concurrent or replayed
        tick got there first) are dropped from the group, so the caller only
        notifies about doses this call created.

        Returns:
            Ids of the intakes created by this call.
        """
        created_ids: list[int] = []
        kept = []
        for med in group.medications:
            try:
                intake_id, created = await self._store.create_intake_if_absent(
                    med.id, self._user_id, group.target,
                )
            except Exception as exc:
                logger.error("Failed to create intake for medication %d: %s", med.id, exc)
                continue

            if not created:
                logger.debug(
                    "Intake for medication %d at %s already exists (#%d)",
                    med.id, group.target.isoformat(), intake_id,
                )
                continue

            logger.info(
                "Triggering medication %s (%s) scheduled for %s",
                med.name, med.dosage, group.target.isoformat(),
            )
            created_ids.append(intake_id)
            kept.append(med)

        group.medications = kept
        return created_ids

    async def materialize_session(
        self, group: WorkoutGroup, variant_id: int, day: date,
    ) -> tuple[WorkoutSession, bool]:
        """Get or create the workout session for (group, day)."""
        return await self._store.create_session_if_absent(
            group.id, variant_id, group.user_id, day, group.scheduled_time,
        )
