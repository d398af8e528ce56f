"""Telegram remote control for a Transmission daemon."""

__version__ = "0.3.0"
