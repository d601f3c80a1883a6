"""Telegram delivery channel — implements NotificationChannel.

Wraps a telegram.Bot instance. Actions become inline keyboard buttons whose
callback data round-trips through healthbot.core.actions.decode_callback_data.
"""

from __future__ import annotations

import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

from healthbot.core.notification import DeliveryOutcome, NotificationAction, NotificationContext

logger = logging.getLogger(__name__)

# Telegram allows up to 100 buttons, but more than a handful is unusable.
_MAX_ACTIONS = 8


def build_keyboard(actions: list[NotificationAction]) -> InlineKeyboardMarkup | None:
    """One row of buttons per two actions."""
    if not actions:
        return None
    buttons = [InlineKeyboardButton(a.label, callback_data=a.callback) for a in actions]
    rows = [buttons[i:i + 2] for i in range(0, len(buttons), 2)]
    return InlineKeyboardMarkup(rows)


def render_text(notif: NotificationContext) -> str:
    if notif.title and not notif.body.startswith(notif.title):
        return f"{notif.title}\n\n{notif.body}"
    return notif.body


class TelegramChannel:
    """Telegram implementation of NotificationChannel."""

    name = "telegram"
    supports_actions = True
    max_actions = _MAX_ACTIONS

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, user_id: int, notif: NotificationContext) -> DeliveryOutcome:
        try:
            message = await self._bot.send_message(
                chat_id=user_id,
                text=render_text(notif),
                reply_markup=build_keyboard(notif.actions),
            )
        except TelegramError as exc:
            logger.warning("Telegram send to %d failed: %s", user_id, exc)
            return DeliveryOutcome(channel=self.name, success=False, error=str(exc))
        return DeliveryOutcome(channel=self.name, success=True, message_id=message.message_id)

    async def remove_notification(self, user_id: int, notification_id: int | str) -> bool:
        try:
            return await self._bot.delete_message(chat_id=user_id, message_id=int(notification_id))
        except TelegramError as exc:
            logger.warning("Failed to delete Telegram message %s: %s", notification_id, exc)
            return False
