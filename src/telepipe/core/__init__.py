"""Core engine package for telepipe.

Core contains the stage loop, error recovery, hooks, and action dispatch
without any Telethon or storage-specific code, keeping the engine portable.
"""
