"""
Bot Service HTTP Client

Talks to the bot service admin API with the dashboard's bearer token.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from sufrah.core.config import get_settings
from sufrah.services.bot_api.base import BaseBotApiClient, BotApiError

logger = logging.getLogger(__name__)


class BotApiClient(BaseBotApiClient):
    """HTTP client for ``BOT_API_URL``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self._base_url = (base_url or settings.bot_api_url).rstrip("/")
        self._token = token if token is not None else settings.bot_api_token
        self._timeout = timeout if timeout is not None else settings.http_timeout
        self._transport = transport

        if not self._token:
            logger.warning("BOT_API_TOKEN not configured")

        logger.info(f"BotApiClient initialized ({self._base_url})")

    @property
    def provider_name(self) -> str:
        return "bot-service"

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method, f"{self._base_url}{path}", headers=headers, json=json
                )
        except httpx.HTTPError as e:
            logger.error(f"Bot service {method} {path} failed: {e}")
            raise BotApiError(f"Could not reach bot service: {e}") from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text}
            logger.error(f"Bot service {method} {path} -> {response.status_code}: {body}")
            message = body.get("error") if isinstance(body, dict) else None
            raise BotApiError(
                message or f"Bot service error: {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        if not response.content:
            return {}
        return response.json()

    async def list_bots(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/admin/bots")
        return body if isinstance(body, list) else []

    async def get_bot(self, bot_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/admin/bots/{quote(bot_id, safe='')}")

    async def assign_bot(self, bot_id: str, restaurant_id: str) -> dict[str, Any]:
        return await self._request(
            "PUT",
            f"/admin/bots/{quote(bot_id, safe='')}",
            json={"restaurantId": restaurant_id},
        )

    async def health_check(self) -> bool:
        try:
            await self.list_bots()
            return True
        except BotApiError:
            return False
