"""
Sender Service Abstract Base Class

Defines the interface for the Twilio WhatsApp Senders API (v2).
Both MockSenderService and TwilioSenderService implement it.

Twilio drives each sender through its own lifecycle:

    CREATING -> UNVERIFIED -> (OTP requested / completed) -> ONLINE

The onboarding service maps that lifecycle onto the dashboard's
PENDING / VERIFYING / ACTIVE / FAILED bot status.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Sender statuses from which an OTP can be requested or is no longer needed
READY_STATUSES = frozenset({"UNVERIFIED", "VERIFIED"})

# Sender statuses that mean the number is live
APPROVED_STATUSES = frozenset({"ONLINE", "VERIFIED", "ACTIVE"})

FAILED_STATUSES = frozenset({"FAILED"})

# Twilio error codes the onboarding flow reports specifically
ERROR_FIRST_SENDER_REQUIRES_CONSOLE = "63100"
ERROR_ALREADY_REGISTERED = "20422"


class SenderApiError(Exception):
    """
    Raised when the Senders API rejects a request or cannot be reached.

    Attributes:
        message: Human readable message (Twilio's ``message`` when present)
        status_code: HTTP status of the upstream response, if any
        error_code: Twilio error code as a string, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = str(error_code) if error_code is not None else None


@dataclass
class SenderInfo:
    """
    A WhatsApp sender as reported by Twilio.

    Attributes:
        sid: Sender SID (XE...)
        sender_id: Address, e.g. ``whatsapp:+966500000000``
        status: Twilio sender status (CREATING, UNVERIFIED, ONLINE, ...)
        channel: Channel name, always ``whatsapp`` here
        configuration: Raw configuration block (waba_id, verification, ...)
        profile: Business profile block
    """
    sid: str
    sender_id: Optional[str] = None
    status: Optional[str] = None
    channel: str = "whatsapp"
    configuration: dict[str, Any] = field(default_factory=dict)
    profile: dict[str, Any] = field(default_factory=dict)

    @property
    def verification_status(self) -> Optional[str]:
        """Top-level status, falling back to configuration.verification.status."""
        if self.status:
            return self.status
        verification = self.configuration.get("verification") or {}
        return verification.get("status")

    @property
    def is_ready(self) -> bool:
        return self.status in READY_STATUSES

    @property
    def is_approved(self) -> bool:
        return self.verification_status in APPROVED_STATUSES

    @classmethod
    def from_payload(cls, payload: dict[str, Any], default_channel: str = "whatsapp") -> "SenderInfo":
        """Build from a Senders API body, accepting snake_case or PascalCase keys."""
        return cls(
            sid=payload.get("sid") or payload.get("Sid") or payload.get("sender_sid") or "",
            sender_id=(
                payload.get("sender_id")
                or payload.get("SenderId")
                or payload.get("address")
                or payload.get("Address")
            ),
            status=payload.get("status") or payload.get("Status"),
            channel=payload.get("channel") or payload.get("Channel") or default_channel,
            configuration=payload.get("configuration") or payload.get("Configuration") or {},
            profile=payload.get("profile") or payload.get("Profile") or {},
        )


@dataclass
class VerificationResult:
    """Result of requesting an OTP for a sender."""
    sender_sid: str
    verification_sid: Optional[str] = None
    method: str = "sms"
    status: Optional[str] = None


class BaseSenderService(ABC):
    """Abstract base class for WhatsApp sender services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def create_sender(
        self,
        phone: str,
        profile: dict[str, Any],
        waba_id: str,
        webhook: Optional[dict[str, str]] = None,
    ) -> SenderInfo:
        """
        Register ``phone`` as a WhatsApp sender under ``waba_id``.

        Args:
            phone: Number in +E.164 form
            profile: Business profile, at least ``{"name": ...}``
            waba_id: WhatsApp Business Account the sender joins
            webhook: ``{"callback_url": ..., "callback_method": ...}``

        Raises:
            SenderApiError: Twilio rejected the registration
        """
        pass

    @abstractmethod
    async def fetch_sender(self, sender_sid: str) -> SenderInfo:
        """Read the current sender state."""
        pass

    @abstractmethod
    async def request_verification(
        self,
        sender_sid: str,
        method: str = "sms",
    ) -> VerificationResult:
        """Ask Twilio to send an OTP to the sender's number (``sms`` or ``call``)."""
        pass

    @abstractmethod
    async def complete_verification(self, sender_sid: str, code: str) -> SenderInfo:
        """Submit the OTP the owner received."""
        pass

    @abstractmethod
    async def list_senders(self, channel: str = "whatsapp") -> list[SenderInfo]:
        """List all senders on the account."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass

    async def wait_until_ready(
        self,
        sender_sid: str,
        max_attempts: int = 10,
        interval: float = 2.0,
    ) -> SenderInfo:
        """
        Poll a freshly created sender until OTP can be requested.

        Returns once the sender is UNVERIFIED or VERIFIED.

        Raises:
            SenderApiError: The sender FAILED, or it never became ready
        """
        for attempt in range(1, max_attempts + 1):
            sender = await self.fetch_sender(sender_sid)
            logger.debug(
                f"Sender {sender_sid} status {sender.status} "
                f"(poll {attempt}/{max_attempts})"
            )

            if sender.is_ready:
                return sender

            if sender.status in FAILED_STATUSES:
                raise SenderApiError("Sender creation failed")

            if attempt < max_attempts and interval > 0:
                await asyncio.sleep(interval)

        raise SenderApiError("Sender creation timed out")
