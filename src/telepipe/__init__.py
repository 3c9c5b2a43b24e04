"""telepipe: a staged event processing engine for Telegram bots."""

__version__ = "0.1.0"
