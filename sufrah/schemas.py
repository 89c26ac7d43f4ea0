"""
Pydantic Schemas for Request/Response Validation

Request bodies accept the dashboard's camelCase keys (``senderSid``,
``restaurantId``, ...) as well as snake_case.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sufrah.models import BotStatus
from sufrah.phone import is_e164


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class SenderProfile(RequestModel):
    """WhatsApp business profile shown to customers."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    address: Optional[str] = None
    emails: Optional[List[str]] = None
    vertical: Optional[str] = None
    logo_url: Optional[str] = None
    description: Optional[str] = None
    about: Optional[str] = None
    websites: Optional[List[str]] = None

    @field_validator("emails")
    @classmethod
    def validate_emails(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        for email in v:
            if "@" not in email or email.startswith("@") or email.endswith("@"):
                raise ValueError(f"Invalid email: {email}")
        return v

    @field_validator("logo_url")
    @classmethod
    def validate_logo_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("logo_url must be an http(s) URL")
        return v

    @field_validator("websites")
    @classmethod
    def validate_websites(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        for url in v:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Invalid website URL: {url}")
        return v

    def to_twilio(self, display_name: str) -> dict[str, Any]:
        """Profile block for the Senders API; empty fields are left out."""
        profile: dict[str, Any] = {"name": display_name}
        for key in ("address", "vertical", "logo_url", "description", "about"):
            value = getattr(self, key)
            if value:
                profile[key] = value
        if self.emails:
            profile["emails"] = self.emails
        if self.websites:
            profile["websites"] = self.websites
        return profile


class WebhookConfig(RequestModel):
    """Where Twilio should deliver inbound messages for the new sender."""
    callback_url: str
    callback_method: Literal["GET", "POST"] = "POST"

    @field_validator("callback_url")
    @classmethod
    def validate_callback_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("callback_url must be an http(s) URL")
        return v


class StartOnboardingRequest(RequestModel):
    """Register a new WhatsApp sender for the restaurant."""
    phone: str = Field(..., examples=["+966500000000"])
    restaurant_id: Optional[str] = Field(None, alias="restaurantId")
    profile: Optional[SenderProfile] = None
    webhook: Optional[WebhookConfig] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not is_e164(v):
            raise ValueError("Invalid phone format")
        return v


class VerifyOtpRequest(RequestModel):
    sender_sid: str = Field(..., min_length=1, alias="senderSid")
    code: str = Field(..., min_length=3, max_length=10)


class ResendOtpRequest(RequestModel):
    sender_sid: str = Field(..., min_length=1, alias="senderSid")
    method: Literal["sms", "voice"] = "sms"


class RestaurantActionRequest(RequestModel):
    """Body of cancel / delink / use-existing."""
    restaurant_id: str = Field(..., min_length=1, alias="restaurantId")


class SaveCredentialsRequest(RequestModel):
    """Sender details reported back by the provider's signup flow."""
    restaurant_id: str = Field(..., min_length=1, alias="restaurantId")
    waba_id: str = Field(..., min_length=1, alias="wabaId")
    whatsapp_number: str = Field(..., alias="whatsappNumber")
    sender_sid: str = Field(..., min_length=1, alias="senderSid")
    status: str = Field(..., examples=["approved", "pending", "rejected"])

    @field_validator("whatsapp_number")
    @classmethod
    def validate_whatsapp_number(cls, v: str) -> str:
        if not is_e164(v):
            raise ValueError("Invalid WhatsApp number format")
        return v


class SenderStatusWebhook(RequestModel):
    """Status callback for a sender (approved / rejected / pending)."""
    waba_id: str
    phone_number: str
    sender_sid: str
    status: str


class LinkSenderRequest(RequestModel):
    bot_id: str = Field(..., min_length=1, alias="botId")
    restaurant_id: Optional[str] = Field(None, alias="restaurantId")


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class BotResponse(BaseModel):
    """A restaurant bot as the dashboard sees it. Credentials are not exposed."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    restaurant_id: str
    name: str
    restaurant_name: str
    account_sid: Optional[str] = None
    whatsapp_number: Optional[str] = None
    sender_sid: Optional[str] = None
    verification_sid: Optional[str] = None
    waba_id: Optional[str] = None
    status: BotStatus
    verified_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class OnboardingStatusResponse(BaseModel):
    success: bool = True
    bot: Optional[BotResponse] = None
    is_shared: bool = False


class StartOnboardingResponse(BaseModel):
    success: bool = True
    bot: BotResponse
    message: str
    has_verification: bool


class BotActionResponse(BaseModel):
    """Response of operations that return the updated bot."""
    success: bool = True
    bot: Optional[BotResponse] = None
    message: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class WebhookAckResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    sender_service: str
    bot_service: str
    notification_service: str
    timestamp: datetime
