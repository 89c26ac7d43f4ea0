"""
Notification Service Abstract Base Class

Tells a restaurant owner how WhatsApp onboarding ended.
Supports both Mock (development) and Real (production) implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message. Provider errors come back as a failed result."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass

    async def notify_sender_activated(
        self,
        owner_phone: str,
        restaurant_name: str,
        whatsapp_number: Optional[str],
    ) -> NotificationResult:
        """Tell the owner their WhatsApp number is live."""
        number = whatsapp_number or "your WhatsApp number"
        message = (
            f"{restaurant_name}: WhatsApp is connected. "
            f"Customers can now order through {number}."
        )
        return await self.send_sms(owner_phone, message)

    async def notify_sender_failed(
        self,
        owner_phone: str,
        restaurant_name: str,
        reason: Optional[str],
    ) -> NotificationResult:
        """Tell the owner onboarding failed and why."""
        message = (
            f"{restaurant_name}: WhatsApp setup did not complete"
            f"{f' ({reason})' if reason else ''}. "
            f"Open the dashboard to try again."
        )
        return await self.send_sms(owner_phone, message)
