"""Tests for healthbot.adapters.webpush_channel and push_transport."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from conftest import USER_ID, at
from healthbot.adapters.push_transport import HttpxPushTransport, VapidPushEncryptor
from healthbot.adapters.webpush_channel import WebPushChannel, build_push_payload
from healthbot.core.grouping import NotificationGroup, medication_notification
from healthbot.data.models import Medication, PushSubscription


def _medication_notif():
    group = NotificationGroup(
        target=at(9), medications=[Medication(id=1, name="Aspirin", schedule="09:00")],
    )
    return medication_notification(group, [10])


class StatusTransport:
    """PushTransport that answers each endpoint with a scripted status."""

    def __init__(self, statuses):
        self.statuses = statuses
        self.calls = []

    async def send(self, subscription, payload, ttl):
        self.calls.append((subscription.endpoint, json.loads(payload), ttl))
        status = self.statuses[subscription.endpoint]
        if isinstance(status, Exception):
            raise status
        return status


class TestBuildPushPayload:
    def test_medication_payload(self):
        body = json.loads(build_push_payload(_medication_notif()))

        assert body["title"] == "💊 Medication Reminder"
        assert body["tag"] == f"medication_{int(at(9).timestamp())}"
        assert body["data"]["type"] == "medication"
        assert body["data"]["intake_ids"] == [10]
        assert body["actions"] == [{"action": "confirm_all", "title": "✅ Confirm"}]


class TestWebPushChannel:
    @pytest.mark.asyncio
    async def test_no_subscriptions_is_failure(self, store):
        outcome = await WebPushChannel(store, StatusTransport({})).send(USER_ID, _medication_notif())
        assert outcome.success is False
        assert outcome.error == "no push subscriptions"

    @pytest.mark.asyncio
    async def test_sends_to_every_subscription(self, health_db, store):
        health_db.add_push_subscription(USER_ID, "https://push.example/a", "auth", "key")
        health_db.add_push_subscription(USER_ID, "https://push.example/b", "auth", "key")
        transport = StatusTransport({"https://push.example/a": 201, "https://push.example/b": 500})

        outcome = await WebPushChannel(store, transport, ttl=60).send(USER_ID, _medication_notif())

        assert outcome.success is True
        assert sorted(c[0] for c in transport.calls) == ["https://push.example/a", "https://push.example/b"]
        assert all(c[2] == 60 for c in transport.calls)

    @pytest.mark.asyncio
    async def test_gone_subscription_disabled(self, health_db, store):
        health_db.add_push_subscription(USER_ID, "https://push.example/a", "auth", "key")
        transport = StatusTransport({"https://push.example/a": 410})

        outcome = await WebPushChannel(store, transport).send(USER_ID, _medication_notif())

        assert outcome.success is False
        assert health_db.list_push_subscriptions(USER_ID) == []

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self, health_db, store):
        health_db.add_push_subscription(USER_ID, "https://push.example/a", "auth", "key")
        transport = StatusTransport({"https://push.example/a": httpx.ConnectError("refused")})

        outcome = await WebPushChannel(store, transport).send(USER_ID, _medication_notif())

        assert outcome.success is False
        assert len(health_db.list_push_subscriptions(USER_ID)) == 1

    @pytest.mark.asyncio
    async def test_cannot_remove(self, store):
        assert await WebPushChannel(store, StatusTransport({})).remove_notification(USER_ID, 1) is False


class TestHttpxPushTransport:
    @pytest.mark.asyncio
    async def test_posts_encrypted_body(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content
            return httpx.Response(201)

        encryptor = MagicMock()
        encryptor.encrypt.return_value = (b"ciphertext", {"Authorization": "vapid t=abc"})
        subscription = PushSubscription(id=1, user_id=USER_ID, endpoint="https://push.example/a", auth="a", p256dh="k")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            status = await HttpxPushTransport(encryptor, client=client).send(subscription, b"{}", 120)

        assert status == 201
        assert seen["url"] == "https://push.example/a"
        assert seen["body"] == b"ciphertext"
        assert seen["headers"]["TTL"] == "120"
        assert seen["headers"]["Content-Encoding"] == "aes128gcm"
        assert seen["headers"]["Authorization"] == "vapid t=abc"
        encryptor.encrypt.assert_called_once_with(subscription, b"{}")

    @pytest.mark.asyncio
    async def test_returns_gone_status(self):
        encryptor = MagicMock()
        encryptor.encrypt.return_value = (b"x", {})
        subscription = PushSubscription(id=1, user_id=USER_ID, endpoint="https://push.example/a", auth="a", p256dh="k")
        transport = httpx.MockTransport(lambda request: httpx.Response(410))

        async with httpx.AsyncClient(transport=transport) as client:
            assert await HttpxPushTransport(encryptor, client=client).send(subscription, b"{}", 60) == 410


class TestVapidPushEncryptor:
    def test_encrypts_and_signs_for_endpoint_origin(self):
        subscription = PushSubscription(
            id=1, user_id=USER_ID, endpoint="https://push.example:8443/send/abc", auth="secret", p256dh="pubkey",
        )
        with patch("healthbot.adapters.push_transport.Vapid") as vapid_cls, \
                patch("healthbot.adapters.push_transport.WebPusher") as pusher_cls:
            vapid_cls.from_string.return_value.sign.return_value = {"Authorization": "vapid t=jwt,k=pub"}
            pusher_cls.return_value.encode.return_value = {"body": b"ciphertext"}

            encryptor = VapidPushEncryptor("private-key", "mailto:me@example.com")
            body, headers = encryptor.encrypt(subscription, b'{"title": "x"}')

        assert body == b"ciphertext"
        assert headers == {"Authorization": "vapid t=jwt,k=pub"}
        vapid_cls.from_string.assert_called_once_with(private_key="private-key")
        pusher_cls.assert_called_once_with({
            "endpoint": "https://push.example:8443/send/abc",
            "keys": {"p256dh": "pubkey", "auth": "secret"},
        })
        pusher_cls.return_value.encode.assert_called_once_with(b'{"title": "x"}', content_encoding="aes128gcm")
        claims = vapid_cls.from_string.return_value.sign.call_args.args[0]
        assert claims["aud"] == "https://push.example:8443"
        assert claims["sub"] == "mailto:me@example.com"
        assert claims["exp"] > 0
