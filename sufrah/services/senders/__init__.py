"""
Sender Service Factory

Returns the Mock or Twilio sender service based on ENV_MODE.

Usage:
    from sufrah.services.senders import get_sender_service

    senders = get_sender_service()
    sender = await senders.create_sender(
        phone="+966500000000",
        profile={"name": "Sufrah"},
        waba_id="123456789",
    )
"""

import logging
from functools import lru_cache

from sufrah.core.config import get_settings
from sufrah.services.senders.base import (
    APPROVED_STATUSES,
    ERROR_ALREADY_REGISTERED,
    ERROR_FIRST_SENDER_REQUIRES_CONSOLE,
    READY_STATUSES,
    BaseSenderService,
    SenderApiError,
    SenderInfo,
    VerificationResult,
)
from sufrah.services.senders.mock import MockSenderService
from sufrah.services.senders.twilio import TwilioSenderService

logger = logging.getLogger(__name__)


@lru_cache()
def get_sender_service() -> BaseSenderService:
    """
    Get the configured sender service instance.

    The instance is cached so the mock keeps its registry between
    requests.

    Raises:
        ValueError: If production mode but Twilio credentials are missing
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Sender Service: Using MockSenderService (development mode)")
        return MockSenderService(
            otp_code=settings.mock_otp_code,
            ready_after_polls=settings.mock_ready_after_polls,
        )
    else:
        logger.info(f"Sender Service: Using TwilioSenderService ({settings.env_mode.value} mode)")
        return TwilioSenderService()


def reset_sender_service() -> None:
    """Clear the cached service instance."""
    get_sender_service.cache_clear()


__all__ = [
    "get_sender_service",
    "reset_sender_service",
    "BaseSenderService",
    "MockSenderService",
    "TwilioSenderService",
    "SenderApiError",
    "SenderInfo",
    "VerificationResult",
    "READY_STATUSES",
    "APPROVED_STATUSES",
    "ERROR_ALREADY_REGISTERED",
    "ERROR_FIRST_SENDER_REQUIRES_CONSOLE",
]
