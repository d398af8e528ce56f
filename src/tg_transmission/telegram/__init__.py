"""Telegram-specific clients and adapters."""

from .client import BotClient, TelegramClient
from .loop import run_main_loop

__all__ = ["BotClient", "TelegramClient", "run_main_loop"]
