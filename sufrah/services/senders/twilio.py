"""
Twilio Sender Service

Production implementation backed by the Twilio Senders API v2
(https://messaging.twilio.com/v2/Channels/Senders).
Used when ENV_MODE=production or ENV_MODE=staging.

The twilio helper library wraps the Senders resource itself but not its
`/Request` and `/Complete` verification actions, so every call goes
through httpx with the account's basic-auth credentials.
"""

import logging
from typing import Any, Optional

import httpx

from sufrah.core.config import get_settings
from sufrah.phone import to_whatsapp_address
from sufrah.services.senders.base import (
    BaseSenderService,
    SenderApiError,
    SenderInfo,
    VerificationResult,
)

logger = logging.getLogger(__name__)


class TwilioSenderService(BaseSenderService):
    """
    Senders API client.

    Configuration:
        Requires TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN.
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()

        self._account_sid = account_sid or settings.twilio_account_sid
        self._auth_token = auth_token or settings.twilio_auth_token
        if not (self._account_sid and self._auth_token):
            raise ValueError(
                "TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN are required for the "
                "Twilio sender service."
            )

        self._base_url = (base_url or settings.twilio_senders_base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.http_timeout
        self._transport = transport

        logger.info("TwilioSenderService initialized")

    @property
    def provider_name(self) -> str:
        return "twilio"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            auth=(self._account_sid, self._auth_token),
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str = "",
        *,
        json: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, str]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        url = f"{self._base_url}{path}"

        try:
            async with self._client() as client:
                response = await client.request(method, url, json=json, data=data, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Twilio request {method} {path or '/'} failed: {e}")
            raise SenderApiError(f"Could not reach Twilio: {e}") from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}

            error_code = body.get("error_code") or body.get("code")
            message = body.get("message") or f"Twilio API error: {response.status_code}"
            logger.error(
                f"Twilio {method} {path or '/'} -> {response.status_code} "
                f"(code={error_code}): {message}"
            )
            raise SenderApiError(message, status_code=response.status_code, error_code=error_code)

        if not response.content:
            return {}
        return response.json()

    async def create_sender(
        self,
        phone: str,
        profile: dict[str, Any],
        waba_id: str,
        webhook: Optional[dict[str, str]] = None,
    ) -> SenderInfo:
        payload: dict[str, Any] = {
            "sender_id": to_whatsapp_address(phone),
            "profile": profile,
            "verification_method": "sms",
            "configuration": {"waba_id": waba_id},
        }
        if webhook:
            payload["webhook"] = webhook

        body = await self._request("POST", json=payload)
        sender = SenderInfo.from_payload(body)
        logger.info(f"Twilio sender created: {sender.sid} ({sender.status})")
        return sender

    async def fetch_sender(self, sender_sid: str) -> SenderInfo:
        body = await self._request("GET", f"/{sender_sid}")
        return SenderInfo.from_payload(body)

    async def request_verification(
        self,
        sender_sid: str,
        method: str = "sms",
    ) -> VerificationResult:
        body = await self._request(
            "POST",
            f"/{sender_sid}/Request",
            json={"verification_method": method},
        )
        return VerificationResult(
            sender_sid=sender_sid,
            verification_sid=body.get("verification_sid"),
            method=method,
            status=body.get("status"),
        )

    async def complete_verification(self, sender_sid: str, code: str) -> SenderInfo:
        body = await self._request(
            "POST",
            f"/{sender_sid}/Complete",
            data={"verification_code": code.strip()},
        )
        sender = SenderInfo.from_payload(body)
        if not sender.sid:
            sender.sid = sender_sid
        return sender

    async def list_senders(self, channel: str = "whatsapp") -> list[SenderInfo]:
        body = await self._request("GET", params={"Channel": channel})

        if isinstance(body, list):
            items = body
        elif isinstance(body.get("senders"), list):
            items = body["senders"]
        elif isinstance(body.get("data"), list):
            items = body["data"]
        else:
            items = []

        return [SenderInfo.from_payload(item, default_channel=channel) for item in items]

    async def health_check(self) -> bool:
        try:
            await self._request("GET", params={"Channel": "whatsapp", "PageSize": "1"})
            return True
        except SenderApiError as e:
            logger.warning(f"Twilio health check failed: {e}")
            return False
