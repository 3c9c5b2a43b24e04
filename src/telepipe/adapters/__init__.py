"""Adapters that connect the core engine to Telethon and sqlite."""
