"""
Mock Sender Service

Simulates the Twilio Senders API without making real API calls.
Used in development mode (ENV_MODE=development) and in tests.

Behavior:
    - New senders start CREATING and turn UNVERIFIED after a configurable
      number of status reads
    - Requesting verification issues a fake verification SID
    - The configured development OTP (default 123456) moves a sender ONLINE
    - Registering a number twice fails with Twilio error 20422
"""

import asyncio
import random
import uuid
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sufrah.phone import mask_phone, normalize_phone, to_whatsapp_address
from sufrah.services.senders.base import (
    ERROR_ALREADY_REGISTERED,
    BaseSenderService,
    SenderApiError,
    SenderInfo,
    VerificationResult,
)

logger = logging.getLogger(__name__)


@dataclass
class _MockSender:
    sid: str
    phone: str
    status: str
    profile: dict[str, Any]
    configuration: dict[str, Any]
    reads: int = 0
    verification_sid: Optional[str] = None
    verification_requests: list[str] = field(default_factory=list)

    def to_info(self) -> SenderInfo:
        return SenderInfo(
            sid=self.sid,
            sender_id=to_whatsapp_address(self.phone),
            status=self.status,
            configuration=dict(self.configuration),
            profile=dict(self.profile),
        )


class MockSenderService(BaseSenderService):
    """
    In-memory stand-in for the Twilio Senders API.

    Attributes:
        otp_code: Code complete_verification accepts
        ready_after_polls: Status reads before CREATING becomes UNVERIFIED
        failure_rate: Probability of a simulated upstream failure
    """

    def __init__(
        self,
        otp_code: str = "123456",
        ready_after_polls: int = 1,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.otp_code = otp_code
        self.ready_after_polls = ready_after_polls
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self._senders: dict[str, _MockSender] = {}

        logger.info(
            f"MockSenderService initialized "
            f"(ready_after_polls={ready_after_polls}, failure_rate={failure_rate:.0%})"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _maybe_fail(self) -> None:
        if self.failure_rate and random.random() < self.failure_rate:
            raise SenderApiError("Simulated Twilio failure", status_code=503)

    def _get(self, sender_sid: str) -> _MockSender:
        sender = self._senders.get(sender_sid)
        if sender is None:
            raise SenderApiError(
                f"The requested resource /Senders/{sender_sid} was not found",
                status_code=404,
                error_code="20404",
            )
        return sender

    # =========================================================================
    # SENDERS API
    # =========================================================================

    async def create_sender(
        self,
        phone: str,
        profile: dict[str, Any],
        waba_id: str,
        webhook: Optional[dict[str, str]] = None,
    ) -> SenderInfo:
        await self._simulate_latency()
        self._maybe_fail()

        phone = normalize_phone(phone)
        if any(s.phone == phone for s in self._senders.values()):
            raise SenderApiError(
                "Sender already exists",
                status_code=409,
                error_code=ERROR_ALREADY_REGISTERED,
            )

        configuration: dict[str, Any] = {"waba_id": waba_id}
        if webhook:
            configuration["webhook"] = dict(webhook)

        sender = _MockSender(
            sid=f"XE{uuid.uuid4().hex}",
            phone=phone,
            status="CREATING" if self.ready_after_polls > 0 else "UNVERIFIED",
            profile=dict(profile),
            configuration=configuration,
        )
        self._senders[sender.sid] = sender

        logger.info(f"Mock sender created for {mask_phone(phone)}: {sender.sid}")
        return sender.to_info()

    async def fetch_sender(self, sender_sid: str) -> SenderInfo:
        await self._simulate_latency()
        sender = self._get(sender_sid)

        if sender.status == "CREATING":
            sender.reads += 1
            if sender.reads >= self.ready_after_polls:
                sender.status = "UNVERIFIED"

        return sender.to_info()

    async def request_verification(
        self,
        sender_sid: str,
        method: str = "sms",
    ) -> VerificationResult:
        await self._simulate_latency()
        self._maybe_fail()
        sender = self._get(sender_sid)

        if sender.status == "CREATING":
            raise SenderApiError(
                "Sender is not ready for verification",
                status_code=400,
            )

        sender.verification_sid = f"VE{uuid.uuid4().hex}"
        sender.verification_requests.append(method)
        logger.info(
            f"Mock OTP sent via {method} to {mask_phone(sender.phone)} "
            f"(code {self.otp_code})"
        )

        return VerificationResult(
            sender_sid=sender_sid,
            verification_sid=sender.verification_sid,
            method=method,
            status="PENDING",
        )

    async def complete_verification(self, sender_sid: str, code: str) -> SenderInfo:
        await self._simulate_latency()
        sender = self._get(sender_sid)

        if code.strip() != self.otp_code:
            raise SenderApiError("Invalid verification code", status_code=400)

        sender.status = "ONLINE"
        return sender.to_info()

    async def list_senders(self, channel: str = "whatsapp") -> list[SenderInfo]:
        await self._simulate_latency()
        return [s.to_info() for s in self._senders.values()]

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True

    # =========================================================================
    # TEST HELPERS
    # =========================================================================

    def set_status(self, sender_sid: str, status: str) -> None:
        """Force a sender into a Twilio status (e.g. ONLINE, FAILED)."""
        self._get(sender_sid).status = status

    def verification_requests(self, sender_sid: str) -> list[str]:
        return list(self._get(sender_sid).verification_requests)

    def reset(self) -> None:
        self._senders.clear()
