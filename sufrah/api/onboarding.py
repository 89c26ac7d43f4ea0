"""
WhatsApp Onboarding Endpoints

    GET  /api/onboarding/whatsapp                     current bot (reconciled)
    POST /api/onboarding/whatsapp/start               create sender, send OTP
    POST /api/onboarding/whatsapp/verify              submit OTP
    POST /api/onboarding/whatsapp/resend-otp          new OTP by SMS or call
    POST /api/onboarding/whatsapp/cancel              drop the bot, start over
    POST /api/onboarding/whatsapp/delink              detach the number
    POST /api/onboarding/whatsapp/use-existing        attach the shared number
    POST /api/onboarding/whatsapp/save-credentials    store a provider-created sender
    POST /api/onboarding/whatsapp/webhook             provider status callback
    GET  /api/onboarding/shared-senders               unassigned bot-service bots
    POST /api/onboarding/link-sender                  assign a bot-service bot
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.request_validator import RequestValidator

from sufrah.auth import get_current_user
from sufrah.core.config import get_settings
from sufrah.database import get_db
from sufrah.models import User
from sufrah.schemas import (
    BotActionResponse,
    BotResponse,
    ErrorResponse,
    LinkSenderRequest,
    MessageResponse,
    OnboardingStatusResponse,
    ResendOtpRequest,
    RestaurantActionRequest,
    SaveCredentialsRequest,
    SenderStatusWebhook,
    StartOnboardingRequest,
    StartOnboardingResponse,
    VerifyOtpRequest,
    WebhookAckResponse,
)
from sufrah.services.onboarding import OnboardingService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/onboarding",
    tags=["WhatsApp Onboarding"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)


def get_onboarding_service(db: AsyncSession = Depends(get_db)) -> OnboardingService:
    return OnboardingService(db)


def _bot_response(bot) -> Optional[BotResponse]:
    return BotResponse.model_validate(bot) if bot is not None else None


# =============================================================================
# OTP FLOW
# =============================================================================

@router.get(
    "/whatsapp",
    response_model=OnboardingStatusResponse,
    summary="Onboarding Status",
)
async def get_onboarding_status(
    restaurant_id: Optional[str] = Query(None, alias="restaurantId"),
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> OnboardingStatusResponse:
    """
    Current bot for the restaurant.

    A bot waiting on Twilio is checked first, so polling this endpoint
    moves it to ACTIVE/FAILED or requests the OTP once the sender is ready.
    """
    bot, is_shared = await service.get_status(user, restaurant_id)
    return OnboardingStatusResponse(bot=_bot_response(bot), is_shared=is_shared)


@router.post(
    "/whatsapp/start",
    response_model=StartOnboardingResponse,
    summary="Register WhatsApp Sender",
)
async def start_onboarding(
    request: StartOnboardingRequest,
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> StartOnboardingResponse:
    """
    Register the restaurant's number as a WhatsApp sender.

    ``has_verification`` tells the dashboard whether an OTP is already on
    its way; otherwise it keeps polling the status endpoint.
    """
    bot, message, has_verification = await service.start(user, request)
    return StartOnboardingResponse(
        bot=_bot_response(bot),
        message=message,
        has_verification=has_verification,
    )


@router.post(
    "/whatsapp/verify",
    response_model=BotActionResponse,
    summary="Verify OTP",
)
async def verify_otp(
    request: VerifyOtpRequest,
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> BotActionResponse:
    bot = await service.verify(user, request.sender_sid, request.code)
    return BotActionResponse(bot=_bot_response(bot))


@router.post(
    "/whatsapp/resend-otp",
    response_model=MessageResponse,
    summary="Resend OTP",
)
async def resend_otp(
    request: ResendOtpRequest,
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> MessageResponse:
    message = await service.resend_otp(user, request.sender_sid, request.method)
    return MessageResponse(message=message)


@router.post(
    "/whatsapp/cancel",
    response_model=MessageResponse,
    summary="Cancel Onboarding",
)
async def cancel_onboarding(
    request: RestaurantActionRequest,
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> MessageResponse:
    message = await service.cancel(user, request.restaurant_id)
    return MessageResponse(message=message)


@router.post(
    "/whatsapp/delink",
    response_model=BotActionResponse,
    summary="Delink WhatsApp Number",
)
async def delink_number(
    request: RestaurantActionRequest,
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> BotActionResponse:
    bot = await service.delink(user, request.restaurant_id)
    return BotActionResponse(bot=_bot_response(bot))


# =============================================================================
# ALTERNATIVE PATHS
# =============================================================================

@router.post(
    "/whatsapp/use-existing",
    response_model=BotActionResponse,
    summary="Use Shared Number",
)
async def use_existing_number(
    request: RestaurantActionRequest,
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> BotActionResponse:
    bot, message = await service.use_existing(user, request.restaurant_id)
    return BotActionResponse(bot=_bot_response(bot), message=message)


@router.post(
    "/whatsapp/save-credentials",
    response_model=BotActionResponse,
    summary="Save Sender Credentials",
)
async def save_credentials(
    request: SaveCredentialsRequest,
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> BotActionResponse:
    bot, message = await service.save_credentials(user, request)
    return BotActionResponse(bot=_bot_response(bot), message=message)


@router.post(
    "/whatsapp/webhook",
    response_model=WebhookAckResponse,
    summary="Sender Status Webhook",
)
async def sender_status_webhook(
    payload: SenderStatusWebhook,
    request: Request,
    service: OnboardingService = Depends(get_onboarding_service),
    x_twilio_signature: Optional[str] = Header(None, alias="X-Twilio-Signature"),
) -> Any:
    """
    Status callback for a sender.

    Always acknowledged with 200 once the payload parses, so the provider
    does not retry; ``success`` is false when the update could not be
    stored.
    """
    settings = get_settings()

    if settings.twilio_validate_webhooks:
        # JSON callbacks are signed over the URL plus a bodySHA256 query param
        params = (await request.body()).decode() if "bodySHA256" in request.query_params else {}
        validator = RequestValidator(settings.twilio_auth_token)
        if not validator.validate(str(request.url), params, x_twilio_signature or ""):
            logger.warning("Rejected sender status webhook with invalid signature")
            return JSONResponse(
                status_code=403,
                content={"success": False, "error": "Invalid signature"},
            )

    logger.info(f"Sender status webhook: {payload.sender_sid} -> {payload.status}")

    try:
        bot = await service.handle_status_webhook(payload)
    except Exception as e:
        logger.exception(f"Error processing sender status webhook: {e}")
        return WebhookAckResponse(success=False, error="Internal error")

    if bot is None:
        return WebhookAckResponse(success=True, message="Bot not found for this number.")
    return WebhookAckResponse(success=True)


@router.get(
    "/shared-senders",
    summary="List Shared Senders",
)
async def list_shared_senders(
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> dict[str, Any]:
    """Active bot-service bots that no restaurant has claimed yet."""
    senders = await service.shared_senders()
    return {"success": True, "senders": senders}


@router.post(
    "/link-sender",
    response_model=BotActionResponse,
    summary="Link Shared Sender",
)
async def link_sender(
    request: LinkSenderRequest,
    user: User = Depends(get_current_user),
    service: OnboardingService = Depends(get_onboarding_service),
) -> BotActionResponse:
    bot = await service.link_sender(user, request)
    if bot is None:
        return BotActionResponse(message="Sender linked.")
    return BotActionResponse(bot=_bot_response(bot), message="Sender linked.")
