"""
Health Reminder Bot: entry point.

`python main.py` starts the Telegram bot together with the reminder
engine loops. Logging is configured by healthbot.bot.telegram_bot.main.
"""

from healthbot.bot.telegram_bot import main

if __name__ == "__main__":
    main()
