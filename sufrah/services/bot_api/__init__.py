"""
Bot Service Client Factory

Returns the mock or HTTP bot service client based on ENV_MODE.
"""

import logging
from functools import lru_cache

from sufrah.core.config import get_settings
from sufrah.services.bot_api.base import BaseBotApiClient, BotApiError
from sufrah.services.bot_api.mock import MockBotApiClient
from sufrah.services.bot_api.real import BotApiClient

logger = logging.getLogger(__name__)


@lru_cache()
def get_bot_api_client() -> BaseBotApiClient:
    """Get the configured bot service client."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Bot API: Using MockBotApiClient (development mode)")
        return MockBotApiClient()
    else:
        logger.info(f"Bot API: Using BotApiClient ({settings.env_mode.value} mode)")
        return BotApiClient()


def reset_bot_api_client() -> None:
    """Clear the cached client instance."""
    get_bot_api_client.cache_clear()


__all__ = [
    "get_bot_api_client",
    "reset_bot_api_client",
    "BaseBotApiClient",
    "BotApiClient",
    "MockBotApiClient",
    "BotApiError",
]
