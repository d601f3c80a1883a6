"""Tests for healthbot.core.dispatcher — multi-channel fan-out."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import USER_ID, FakeChannel, at
from healthbot.core.dispatcher import NotificationDispatcher
from healthbot.core.errors import DeliveryError
from healthbot.core.notification import (
    ActionType,
    MeasurementPayload,
    NotificationAction,
    NotificationContext,
    NotificationKind,
    TextPayload,
    measurement_actions,
)


def _weight_notification(actions=None):
    return NotificationContext(
        kind=NotificationKind.WEIGHT,
        title="⚖️ Weight",
        body="Time to weigh in",
        tag="weight",
        payload=MeasurementPayload(),
        actions=actions if actions is not None else measurement_actions(NotificationKind.WEIGHT),
    )


def _dispatcher(store, suppression, *channels, timeout=1):
    d = NotificationDispatcher(store, suppression, send_timeout=timeout)
    for c in channels:
        d.register_channel(c)
    return d


class SlowChannel(FakeChannel):
    async def send(self, user_id, notif):
        await asyncio.sleep(5)
        return await super().send(user_id, notif)


class TestSend:
    @pytest.mark.asyncio
    async def test_delivers_and_records_sent_time(self, health_db, dispatcher, channel):
        result = await dispatcher.send(USER_ID, _weight_notification(), now=at(9))

        assert result.delivered is True
        assert result.message_id("telegram") == 100
        assert len(channel.sent) == 1
        assert health_db.get_reminder_state(USER_ID, "weight").last_notification_sent_at == at(9)

    @pytest.mark.asyncio
    async def test_partial_failure_still_succeeds(self, health_db, store, suppression):
        failing = FakeChannel(name="a", succeed=False)
        healthy = FakeChannel(name="b")
        d = _dispatcher(store, suppression, failing, healthy)

        result = await d.send(USER_ID, _weight_notification(), now=at(9))

        assert result.delivered is True
        assert [o.success for o in result.outcomes] == [False, True]
        assert health_db.get_reminder_state(USER_ID, "weight").last_notification_sent_at == at(9)

    @pytest.mark.asyncio
    async def test_all_channels_failing_raises_and_leaves_state(self, health_db, store, suppression):
        d = _dispatcher(
            store, suppression,
            FakeChannel(name="a", succeed=False),
            FakeChannel(name="b", raises=RuntimeError("boom")),
        )
        on_delivered = AsyncMock()

        with pytest.raises(DeliveryError) as exc_info:
            await d.send(USER_ID, _weight_notification(), now=at(9), on_delivered=on_delivered)

        assert len(exc_info.value.outcomes) == 2
        assert exc_info.value.outcomes[1].error == "boom"
        on_delivered.assert_not_called()
        assert health_db.get_reminder_state(USER_ID, "weight").last_notification_sent_at is None

    @pytest.mark.asyncio
    async def test_slow_channel_does_not_block_others(self, store, suppression):
        slow = SlowChannel(name="slow")
        fast = FakeChannel(name="fast")
        d = _dispatcher(store, suppression, slow, fast, timeout=0.05)

        result = await d.send(USER_ID, _weight_notification(), now=at(9))

        assert result.delivered is True
        slow_outcome = next(o for o in result.outcomes if o.channel == "slow")
        assert slow_outcome.success is False
        assert slow_outcome.error == "timeout"

    @pytest.mark.asyncio
    async def test_no_channels_registered_raises(self, store, suppression):
        with pytest.raises(DeliveryError):
            await _dispatcher(store, suppression).send(USER_ID, _weight_notification(), now=at(9))

    @pytest.mark.asyncio
    async def test_disabled_channel_is_skipped(self, health_db, store, suppression):
        telegram = FakeChannel(name="telegram")
        push = FakeChannel(name="web_push")
        d = _dispatcher(store, suppression, telegram, push)
        health_db.set_channel_enabled(USER_ID, "web_push", "weight", False)

        await d.send(USER_ID, _weight_notification(), now=at(9))

        assert len(telegram.sent) == 1
        assert push.sent == []

    @pytest.mark.asyncio
    async def test_all_channels_opted_out_raises(self, health_db, dispatcher):
        health_db.set_channel_enabled(USER_ID, "telegram", "weight", False)
        with pytest.raises(DeliveryError):
            await dispatcher.send(USER_ID, _weight_notification(), now=at(9))

    @pytest.mark.asyncio
    async def test_suppressed_sends_nothing(self, health_db, dispatcher, suppression, channel):
        await suppression.snooze(USER_ID, NotificationKind.WEIGHT, timedelta(hours=2), now=at(9))

        result = await dispatcher.send(USER_ID, _weight_notification(), now=at(10))

        assert result.suppressed is True
        assert result.delivered is False
        assert channel.sent == []
        assert health_db.get_reminder_state(USER_ID, "weight").last_notification_sent_at is None

    @pytest.mark.asyncio
    async def test_on_delivered_receives_result(self, dispatcher):
        on_delivered = AsyncMock()
        result = await dispatcher.send(USER_ID, _weight_notification(), now=at(9), on_delivered=on_delivered)
        on_delivered.assert_awaited_once_with(result)

    @pytest.mark.asyncio
    async def test_on_delivered_error_does_not_undo_delivery(self, health_db, dispatcher, channel, caplog):
        on_delivered = AsyncMock(side_effect=TimeoutError("store busy"))

        result = await dispatcher.send(USER_ID, _weight_notification(), now=at(9), on_delivered=on_delivered)

        assert result.delivered is True
        assert len(channel.sent) == 1
        assert health_db.get_reminder_state(USER_ID, "weight").last_notification_sent_at == at(9)
        assert "store busy" in caplog.text


class TestActionFitting:
    @pytest.mark.asyncio
    async def test_actions_stripped_for_plain_channel(self, store, suppression):
        plain = FakeChannel(name="sms", supports_actions=False)
        await _dispatcher(store, suppression, plain).send(USER_ID, _weight_notification(), now=at(9))
        assert plain.sent[0][1].actions == []

    @pytest.mark.asyncio
    async def test_actions_truncated_to_channel_max(self, store, suppression):
        narrow = FakeChannel(name="web_push", max_actions=1)
        wide = FakeChannel(name="telegram")
        notif = _weight_notification()

        await _dispatcher(store, suppression, narrow, wide).send(USER_ID, notif, now=at(9))

        assert [a.id for a in narrow.sent[0][1].actions] == ["snooze"]
        assert len(wide.sent[0][1].actions) == 2
        assert len(notif.actions) == 2

    def test_fit_actions_keeps_order(self):
        actions = [NotificationAction(str(i), str(i), ActionType.SNOOZE, f"cb{i}") for i in range(4)]
        notif = _weight_notification(actions)
        fitted = NotificationDispatcher._fit_actions(FakeChannel(max_actions=2), notif)
        assert [a.id for a in fitted.actions] == ["0", "1"]


class TestSendText:
    @pytest.mark.asyncio
    async def test_plain_message(self, dispatcher, channel):
        await dispatcher.send_text(
            USER_ID, NotificationKind.WORKOUT, "Still training?",
            payload=TextPayload(session_id=3), now=at(19),
        )
        notif = channel.sent[0][1]
        assert notif.body == "Still training?"
        assert notif.tag == "workout"
        assert notif.actions == []
        assert notif.payload.session_id == 3


class TestRemoveNotification:
    @pytest.mark.asyncio
    async def test_removes_via_named_channel(self, dispatcher, channel):
        assert await dispatcher.remove_notification("telegram", USER_ID, 55) is True
        assert channel.removed == [(USER_ID, 55)]

    @pytest.mark.asyncio
    async def test_unknown_channel(self, dispatcher):
        assert await dispatcher.remove_notification("pager", USER_ID, 55) is False

    @pytest.mark.asyncio
    async def test_removal_error_returns_false(self, store, suppression):
        broken = FakeChannel(name="telegram")
        broken.remove_notification = AsyncMock(side_effect=RuntimeError("gone"))
        d = _dispatcher(store, suppression, broken)
        assert await d.remove_notification("telegram", USER_ID, 55) is False
