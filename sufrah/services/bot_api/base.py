"""
Bot Service Client Abstract Base Class

The bot service (bot.sufrah.sa) runs the WhatsApp conversational bots.
Onboarding only needs its admin bot registry: listing senders that are
free to share and assigning one to a restaurant.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class BotApiError(Exception):
    """Raised when the bot service rejects a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class BaseBotApiClient(ABC):
    """Abstract base class for bot service clients."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def list_bots(self) -> list[dict[str, Any]]:
        """All bots registered with the bot service."""
        pass

    @abstractmethod
    async def get_bot(self, bot_id: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def assign_bot(self, bot_id: str, restaurant_id: str) -> dict[str, Any]:
        """Attach a bot-service bot to a restaurant."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def list_shared_senders(self) -> list[dict[str, Any]]:
        """Active bots not yet assigned to any restaurant."""
        bots = await self.list_bots()
        return [
            bot for bot in bots
            if bot.get("isActive") is True and bot.get("restaurantId") is None
        ]
