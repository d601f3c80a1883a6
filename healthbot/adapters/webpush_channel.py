"""Web Push delivery channel — implements NotificationChannel.

Renders the notification as the JSON payload the service worker expects
and sends it to every enabled subscription of the user in parallel.
Encryption and delivery are delegated to a PushTransport.

A 404 or 410 from the push service means the subscription is gone for
good: the endpoint is disabled in the store and never retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from healthbot.core.notification import (
    DeliveryOutcome,
    LowStockPayload,
    MedicationPayload,
    NotificationContext,
    TextPayload,
    WorkoutPayload,
)

if TYPE_CHECKING:
    from healthbot.data.async_store import AsyncStore
    from healthbot.data.models import PushSubscription
    from healthbot.ports.push_port import PushTransport

logger = logging.getLogger(__name__)

_ICON = "/static/android-chrome-192x192.png"
_GONE_STATUSES = frozenset({404, 410})
_OK_STATUSES = frozenset({200, 201})


def _payload_data(notif: NotificationContext) -> dict[str, Any]:
    data: dict[str, Any] = {"type": notif.kind.value}
    payload = notif.payload
    if isinstance(payload, MedicationPayload):
        data["scheduled_at"] = payload.scheduled_at.isoformat()
        data["medication_ids"] = [m.id for m in payload.medications]
        data["intake_ids"] = list(payload.intake_ids)
    elif isinstance(payload, WorkoutPayload):
        data["session_id"] = payload.session.id
        data["group_name"] = payload.group.name
        data["variant"] = payload.variant.name
    elif isinstance(payload, LowStockPayload):
        data["medication_ids"] = [item.medication.id for item in payload.items]
    elif isinstance(payload, TextPayload):
        if payload.intake_id is not None:
            data["intake_id"] = payload.intake_id
        if payload.session_id is not None:
            data["session_id"] = payload.session_id
    return data


def build_push_payload(notif: NotificationContext) -> bytes:
    body: dict[str, Any] = {
        "title": notif.title,
        "body": notif.body,
        "icon": _ICON,
        "badge": _ICON,
        "tag": notif.tag,
        "data": _payload_data(notif),
    }
    if notif.actions:
        body["actions"] = [{"action": a.id, "title": a.label} for a in notif.actions]
    return json.dumps(body).encode("utf-8")


class WebPushChannel:
    """Web Push implementation of NotificationChannel."""

    name = "web_push"
    supports_actions = True
    max_actions = 2  # browsers show at most two action buttons

    def __init__(self, store: AsyncStore, transport: PushTransport, ttl: int = 43200) -> None:
        self._store = store
        self._transport = transport
        self._ttl = ttl

    async def send(self, user_id: int, notif: NotificationContext) -> DeliveryOutcome:
        subscriptions = await self._store.list_push_subscriptions(user_id)
        if not subscriptions:
            return DeliveryOutcome(channel=self.name, success=False, error="no push subscriptions")

        payload = build_push_payload(notif)
        results = await asyncio.gather(
            *(self._send_one(sub, payload) for sub in subscriptions)
        )
        delivered = sum(results)
        if delivered == 0:
            return DeliveryOutcome(
                channel=self.name,
                success=False,
                error=f"0 of {len(subscriptions)} subscriptions accepted the push",
            )
        return DeliveryOutcome(channel=self.name, success=True)

    async def _send_one(self, subscription: PushSubscription, payload: bytes) -> bool:
        try:
            status = await self._transport.send(subscription, payload, self._ttl)
        except Exception as exc:
            logger.warning("WebPush error for %s: %s", subscription.endpoint, exc)
            return False

        if status in _GONE_STATUSES:
            logger.info("WebPush subscription gone (%d): %s", status, subscription.endpoint)
            try:
                await self._store.disable_channel_endpoint(subscription.endpoint)
            except Exception as exc:
                logger.error("Failed to disable subscription %s: %s", subscription.endpoint, exc)
            return False
        if status not in _OK_STATUSES:
            logger.warning("WebPush unexpected status %d for %s", status, subscription.endpoint)
            return False
        return True

    async def remove_notification(self, user_id: int, notification_id: int | str) -> bool:
        # Push notifications can't be withdrawn from the device.
        return False
