"""
Rotation State Machine for cyclic workout plans.

A rotating group cycles through its variants (Day A -> Day B -> ... -> Day A)
by rotation_order. The group's rotation advances one step when a session is
completed or skipped, and at most once per session: the store claims the
session's rotation_advanced flag in the same transaction that moves the
state, so editing a completed session later never advances it again.

Rotation state is created explicitly with initialize_rotation; a rotating
group without state has no current variant.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from healthbot.core.errors import RotationError

if TYPE_CHECKING:
    from healthbot.data.async_store import AsyncStore
    from healthbot.data.models import WorkoutGroup, WorkoutSession

logger = logging.getLogger(__name__)


class RotationStateMachine:
    def __init__(self, store: AsyncStore) -> None:
        self._store = store

    async def initialize_rotation(
        self, group: WorkoutGroup, variant_id: int | None = None,
    ) -> int:
        """Set the starting variant of a rotating group.

        Args:
            group: The rotating workout group.
            variant_id: Starting variant; defaults to the first by rotation_order.

        Returns:
            The variant id the rotation now points at.

        Raises:
            RotationError: non-rotating group, no variants, or a variant
                that does not belong to the group.
        """
        if not group.is_rotating:
            raise RotationError(f"Workout group {group.id} is not rotating")

        variants = await self._store.list_variants(group.id)
        if not variants:
            raise RotationError(f"Workout group {group.id} has no variants")

        if variant_id is None:
            variant_id = variants[0].id
        elif variant_id not in {v.id for v in variants}:
            raise RotationError(f"Variant {variant_id} does not belong to group {group.id}")

        await self._store.initialize_rotation(group.id, variant_id)
        logger.info("Rotation for group %d initialized at variant %d", group.id, variant_id)
        return variant_id

    async def current_variant_id(self, group: WorkoutGroup) -> int | None:
        """Variant the next session of `group` should use.

        Rotating groups read their rotation state (None if never
        initialized); non-rotating groups always use their first variant.
        """
        if group.is_rotating:
            state = await self._store.get_rotation_state(group.id)
            return state.current_variant_id if state else None

        variants = await self._store.list_variants(group.id)
        return variants[0].id if variants else None

    async def advance_if_rotating(
        self,
        group: WorkoutGroup,
        session: WorkoutSession,
        now: datetime | None = None,
    ) -> bool:
        """Advance the group's rotation for a completed or skipped session.

        Returns:
            True if the rotation moved. False for non-rotating groups and for
            sessions that already advanced it.

        Raises:
            RotationError: the group has no rotation state or no variants.
        """
        if not group.is_rotating:
            return False
        if session.group_id != group.id:
            raise RotationError(f"Session {session.id} does not belong to group {group.id}")
        if session.rotation_advanced:
            logger.debug("Session %d already advanced rotation of group %d", session.id, group.id)
            return False

        try:
            advanced = await self._store.advance_rotation(
                group.id, session.id, now or datetime.now(timezone.utc),
            )
        except ValueError as exc:
            raise RotationError(str(exc)) from exc

        if advanced:
            session.rotation_advanced = True
        return advanced
