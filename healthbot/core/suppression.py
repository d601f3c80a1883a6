"""Suppression Policy: per-user, per-kind snooze and "don't bug me" windows.

Both operations store an absolute deadline (now + duration). A later
snooze or block replaces the earlier deadline; windows never stack. A
reminder kind is gated while now < max(snoozed_until, dont_remind_until).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from healthbot.core.notification import NotificationKind
    from healthbot.data.async_store import AsyncStore

logger = logging.getLogger(__name__)


def _kind(kind: NotificationKind | str) -> str:
    return getattr(kind, "value", kind)


class SuppressionPolicy:
    def __init__(self, store: AsyncStore) -> None:
        self._store = store

    async def is_suppressed(self, user_id: int, kind: NotificationKind | str, now: datetime) -> bool:
        window = await self._store.get_suppression_window(user_id, _kind(kind))
        return window.gates(now)

    async def snooze(
        self,
        user_id: int,
        kind: NotificationKind | str,
        duration: timedelta,
        now: datetime | None = None,
    ) -> datetime:
        """Silence `kind` for `duration`. Returns the new deadline."""
        until = (now or datetime.now(timezone.utc)) + duration
        await self._store.set_snooze(user_id, _kind(kind), until)
        return until

    async def block(
        self,
        user_id: int,
        kind: NotificationKind | str,
        duration: timedelta,
        now: datetime | None = None,
    ) -> datetime:
        """"Don't bug me" for `duration`. Returns the new deadline."""
        until = (now or datetime.now(timezone.utc)) + duration
        await self._store.set_block(user_id, _kind(kind), until)
        return until
