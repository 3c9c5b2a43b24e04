"""Per-client registry of running bot engines."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from telepipe.core.bot import BotEngine

LOGGER = logging.getLogger(__name__)

EngineFactory = Callable[[Mapping[str, Any]], BotEngine]


@dataclass
class _Entry:
    bot: BotEngine
    config: Mapping[str, Any]
    status: str = "stopped"


class BotManager:
    """Creates, replaces, and removes bot engines keyed by client id."""

    def __init__(self) -> None:
        self._bots: dict[str, _Entry] = {}

    async def add_bot(self, client_id: str, config: Mapping[str, Any], factory: EngineFactory) -> BotEngine:
        """Build and start an engine, replacing any existing one for the client."""

        await self.remove_bot(client_id)
        bot = factory(config)
        entry = _Entry(bot=bot, config=config)
        self._bots[client_id] = entry
        await bot.start()
        entry.status = "running"
        LOGGER.info("Bot started for client %s", client_id)
        return bot

    async def update_bot(self, client_id: str, config: Mapping[str, Any], factory: EngineFactory) -> BotEngine:
        return await self.add_bot(client_id, config, factory)

    async def remove_bot(self, client_id: str) -> None:
        entry = self._bots.pop(client_id, None)
        if entry is None:
            return
        await entry.bot.stop()
        LOGGER.info("Bot removed for client %s", client_id)

    async def stop_all(self) -> None:
        for client_id in list(self._bots):
            await self.remove_bot(client_id)

    def get_bot(self, client_id: str) -> Optional[BotEngine]:
        entry = self._bots.get(client_id)
        return entry.bot if entry else None

    def list_bots(self) -> list[str]:
        return list(self._bots)

    def get_status(self, client_id: str) -> str:
        entry = self._bots.get(client_id)
        return entry.status if entry else "not found"
