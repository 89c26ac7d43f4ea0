"""
Mock Bot Service Client

Keeps an in-memory bot registry for development and tests.
"""

import copy
import logging
from typing import Any, Optional

from sufrah.services.bot_api.base import BaseBotApiClient, BotApiError

logger = logging.getLogger(__name__)


class MockBotApiClient(BaseBotApiClient):
    """In-memory stand-in for the bot service admin API."""

    def __init__(self, bots: Optional[list[dict[str, Any]]] = None):
        self._bots: dict[str, dict[str, Any]] = {}
        for bot in bots or []:
            self.add_bot(bot)
        logger.info(f"MockBotApiClient initialized ({len(self._bots)} bots)")

    @property
    def provider_name(self) -> str:
        return "mock"

    def add_bot(self, bot: dict[str, Any]) -> None:
        self._bots[bot["id"]] = dict(bot)

    def reset(self) -> None:
        self._bots.clear()

    def _get(self, bot_id: str) -> dict[str, Any]:
        bot = self._bots.get(bot_id)
        if bot is None:
            raise BotApiError("Bot not found", status_code=404, body={"error": "Bot not found"})
        return bot

    async def list_bots(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(b) for b in self._bots.values()]

    async def get_bot(self, bot_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._get(bot_id))

    async def assign_bot(self, bot_id: str, restaurant_id: str) -> dict[str, Any]:
        bot = self._get(bot_id)
        bot["restaurantId"] = restaurant_id
        logger.info(f"Mock bot {bot_id} assigned to restaurant {restaurant_id}")
        return copy.deepcopy(bot)

    async def health_check(self) -> bool:
        return True
