"""
Health Reminder Bot — Telegram Bot.

Telegram is the primary delivery channel and the place where the user acts
on reminders: inline buttons under each notification confirm doses, start,
finish, snooze or skip workouts, and snooze or silence measurement reminders.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)

from healthbot.adapters.telegram_channel import TelegramChannel, build_keyboard
from healthbot.config import settings
from healthbot.core.actions import ActionHandler, decode_callback_data
from healthbot.core.dispatcher import NotificationDispatcher
from healthbot.core.engine import ReminderEngine
from healthbot.core.notification import ActionType, confirm_intakes_action, session_started_actions
from healthbot.core.suppression import SuppressionPolicy
from healthbot.data.async_store import AsyncStore

if TYPE_CHECKING:
    from healthbot.ports.push_port import PushEncryptor
    from healthbot.ports.store_port import StorePort

logger = logging.getLogger(__name__)

_CALLBACK_PATTERN = r"^(confirm:|workout_|remind_)"


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores updates from anyone but the owner.

    Does NOT send any response to strangers: the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id != settings.ALLOWED_USER_ID:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


_HELP_TEXT = (
    "👋 Health reminders are running.\n\n"
    "I'll ping you when a dose is due, before each workout, and when it's "
    "time to weigh in or measure your blood pressure.\n\n"
    "/pending: doses you haven't confirmed yet\n"
    "/help: this message"
)


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(_HELP_TEXT)


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(_HELP_TEXT)


@authorized_only
async def cmd_pending(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """List unconfirmed intakes with a button to confirm them all."""
    store: AsyncStore = context.bot_data["store"]
    tz = ZoneInfo(settings.TIMEZONE)

    pending = await store.list_pending_intakes()
    if not pending:
        await update.message.reply_text("✅ Nothing pending. All doses confirmed.")
        return

    lines = ["💊 Pending doses:"]
    for intake in pending:
        med = await store.get_medication(intake.medication_id)
        name = med.name if med else f"medication #{intake.medication_id}"
        lines.append(f"• {name} ({intake.scheduled_at.astimezone(tz):%d/%m %H:%M})")

    keyboard = build_keyboard([confirm_intakes_action([i.id for i in pending])])
    await update.message.reply_text("\n".join(lines), reply_markup=keyboard)


# ---------------------------------------------------------------------------
# Inline button callbacks
# ---------------------------------------------------------------------------


async def _handle_action_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Decode an inline button tap and route it to the ActionHandler."""
    query = update.callback_query
    await query.answer()

    # Verify the user is authorized
    user = query.from_user
    if user is None or user.id != settings.ALLOWED_USER_ID:
        return

    handler: ActionHandler = context.bot_data["actions"]
    try:
        action = decode_callback_data(query.data)
        reply = await handler.handle(user.id, action)
    except ValueError as exc:
        logger.warning("Rejected callback %r: %s", query.data, exc)
        await query.edit_message_reply_markup(reply_markup=None)
        return
    except Exception as exc:
        logger.error("Action %r failed: %s", query.data, exc)
        await query.message.reply_text("Something went wrong, please try again.")
        return

    # A started workout keeps its card, with buttons to finish it.
    if action.type is ActionType.START and "session_id" in action.data:
        markup = build_keyboard(session_started_actions(action.data["session_id"]))
    else:
        markup = None
    await query.edit_message_reply_markup(reply_markup=markup)
    await query.message.reply_text(reply)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    store: StorePort | None = None,
    push_encryptor: PushEncryptor | None = None,
) -> Application:
    """Build the Telegram Application, the reminder engine and its channels.

    Args:
        store: Storage collaborator. Defaults to HealthDB at DATABASE_PATH.
        push_encryptor: Web Push encryption. Defaults to VapidPushEncryptor
            built from the VAPID settings. The push channel is registered
            whenever VAPID_PRIVATE_KEY is set.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if store is None:
        from healthbot.data.db import HealthDB
        store = HealthDB(settings.DATABASE_PATH, timeout=settings.STORE_TIMEOUT_SECONDS)

    async_store = AsyncStore(store, timeout=settings.STORE_TIMEOUT_SECONDS)
    suppression = SuppressionPolicy(async_store)
    dispatcher = NotificationDispatcher(async_store, suppression, send_timeout=settings.SEND_TIMEOUT_SECONDS)
    dispatcher.register_channel(TelegramChannel(app.bot))

    if settings.VAPID_PRIVATE_KEY:
        from healthbot.adapters.push_transport import HttpxPushTransport, VapidPushEncryptor
        from healthbot.adapters.webpush_channel import WebPushChannel

        if push_encryptor is None:
            push_encryptor = VapidPushEncryptor(settings.VAPID_PRIVATE_KEY, settings.VAPID_SUBJECT)
        dispatcher.register_channel(
            WebPushChannel(
                async_store,
                HttpxPushTransport(push_encryptor, timeout=settings.SEND_TIMEOUT_SECONDS),
                ttl=settings.PUSH_TTL_SECONDS,
            )
        )

    engine = ReminderEngine(
        async_store,
        dispatcher,
        settings.ALLOWED_USER_ID,
        ZoneInfo(settings.TIMEZONE),
        schedule_interval=settings.SCHEDULE_CHECK_SECONDS,
        reminder_interval=settings.REMINDER_RETRY_SECONDS,
        stale_intake_minutes=settings.STALE_INTAKE_MINUTES,
        low_stock_interval=settings.LOW_STOCK_CHECK_SECONDS,
        low_stock_hour=settings.LOW_STOCK_HOUR,
        low_stock_days_threshold=settings.LOW_STOCK_DAYS_THRESHOLD,
        workout_interval=settings.WORKOUT_CHECK_SECONDS,
        measurement_interval=settings.MEASUREMENT_CHECK_SECONDS,
    )

    # Store collaborators in bot_data for handler access
    app.bot_data["store"] = async_store
    app.bot_data["dispatcher"] = dispatcher
    app.bot_data["engine"] = engine
    app.bot_data["actions"] = ActionHandler(async_store, engine.rotation, suppression)

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("pending", cmd_pending))
    app.add_handler(CallbackQueryHandler(_handle_action_callback, pattern=_CALLBACK_PATTERN))

    engine.start(app.job_queue)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Health Reminder bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
