"""
WhatsApp Sender Onboarding

Coordinates Twilio sender provisioning with the restaurant's bot record:

    start   -> create sender, wait until Twilio can send an OTP, request it
               (bot VERIFYING)
    verify  -> submit the OTP (bot ACTIVE once Twilio reports the sender live)
    resend  -> request another OTP by SMS or voice call
    cancel  -> drop the bot record and start over
    delink  -> detach the number, bot back to PENDING

Alternative paths attach the shared platform number, a bot from the bot
service, or credentials reported by the provider's signup flow. A
VERIFYING bot is reconciled against Twilio's sender status on read and by
the periodic Celery task.

Usage:
    service = OnboardingService(db)
    bot, message, has_otp = await service.start(user, request)
"""

import logging
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sufrah.core.config import get_settings
from sufrah.exceptions import OnboardingError
from sufrah.models import BotStatus, Restaurant, RestaurantBot, User, utcnow
from sufrah.phone import mask_phone, normalize_phone
from sufrah.schemas import (
    LinkSenderRequest,
    SaveCredentialsRequest,
    SenderStatusWebhook,
    StartOnboardingRequest,
)
from sufrah.services.bot_api import BaseBotApiClient, BotApiError, get_bot_api_client
from sufrah.services.notifications import BaseNotificationService, get_notification_service
from sufrah.services.senders import (
    ERROR_ALREADY_REGISTERED,
    ERROR_FIRST_SENDER_REQUIRES_CONSOLE,
    BaseSenderService,
    SenderApiError,
    get_sender_service,
)

logger = logging.getLogger(__name__)

# Reconcile outcomes
SKIPPED = "skipped"
UNCHANGED = "unchanged"
OTP_REQUESTED = "otp_requested"
ACTIVATED = "activated"
FAILED = "failed"

FIRST_SENDER_MESSAGE = (
    "Twilio requires the first WhatsApp sender to be created in the Twilio Console "
    "(Self Sign-Up). Complete the initial onboarding in Twilio, then retry here."
)
ALREADY_REGISTERED_MESSAGE = (
    "This phone number is already registered. If you need to re-register it, "
    "please deregister it first."
)
PROVIDER_FAILED_MESSAGE = "Sender registration failed at provider"
WEBHOOK_REJECTED_MESSAGE = "Connection rejected by provider."
CREDENTIALS_REJECTED_MESSAGE = "WhatsApp connection was rejected by Meta/Twilio."


class OnboardingService:
    """
    WhatsApp onboarding operations for one request.

    Holds the request's database session; external services default to the
    ENV_MODE-selected factories.
    """

    def __init__(
        self,
        db: AsyncSession,
        sender_service: Optional[BaseSenderService] = None,
        bot_api: Optional[BaseBotApiClient] = None,
        notifications: Optional[BaseNotificationService] = None,
    ):
        self.db = db
        self.settings = get_settings()
        self.senders = sender_service or get_sender_service()
        self.bot_api = bot_api or get_bot_api_client()
        self.notifications = notifications or get_notification_service()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _resolve_restaurant(
        self,
        user: User,
        restaurant_id: Optional[str] = None,
        strict: bool = False,
    ) -> Restaurant:
        """
        The restaurant the user acts on: the explicit id, else their own.

        ``strict`` reports a missing restaurant as 403 like a foreign one,
        so ids cannot be probed.
        """
        if restaurant_id:
            restaurant = await self.db.get(Restaurant, restaurant_id)
        else:
            result = await self.db.execute(
                select(Restaurant).where(Restaurant.user_id == user.id).limit(1)
            )
            restaurant = result.scalar_one_or_none()

        if restaurant is None:
            if strict:
                raise OnboardingError("Restaurant not found or access denied", 403)
            raise OnboardingError("Restaurant not found", 404)

        if restaurant.user_id != user.id:
            if strict:
                raise OnboardingError("Restaurant not found or access denied", 403)
            raise OnboardingError("Forbidden", 403)

        return restaurant

    async def _bot_for_restaurant(self, restaurant_id: str) -> Optional[RestaurantBot]:
        result = await self.db.execute(
            select(RestaurantBot).where(RestaurantBot.restaurant_id == restaurant_id)
        )
        return result.scalar_one_or_none()

    async def _bot_for_sender(self, user: User, sender_sid: str) -> RestaurantBot:
        """The bot registered with ``sender_sid``, if the user owns it."""
        result = await self.db.execute(
            select(RestaurantBot).where(RestaurantBot.sender_sid == sender_sid).limit(1)
        )
        bot = result.scalar_one_or_none()
        if bot is None:
            raise OnboardingError("Sender not found", 404)

        restaurant = await self.db.get(Restaurant, bot.restaurant_id)
        if restaurant is None:
            raise OnboardingError("Restaurant not found", 404)
        if restaurant.user_id != user.id:
            raise OnboardingError("Forbidden", 403)

        return bot

    async def _get_or_create_bot(self, restaurant: Restaurant) -> RestaurantBot:
        bot = await self._bot_for_restaurant(restaurant.id)
        if bot is None:
            bot = RestaurantBot(
                restaurant_id=restaurant.id,
                name=restaurant.name,
                restaurant_name=restaurant.name,
            )
            self.db.add(bot)
        return bot

    def shared_number(self) -> Optional[str]:
        """The platform's shared WhatsApp number in +E.164 form."""
        if not self.settings.twilio_whatsapp_from:
            return None
        return normalize_phone(self.settings.twilio_whatsapp_from) or None

    def is_shared(self, bot: Optional[RestaurantBot]) -> bool:
        shared = self.shared_number()
        return bool(bot and bot.whatsapp_number and shared and bot.whatsapp_number == shared)

    def _require_twilio(self, require_waba: bool = False) -> tuple[str, Optional[str]]:
        """Return (account_sid, waba_id)."""
        if not self.settings.has_twilio_credentials:
            raise OnboardingError("Missing TWILIO_ACCOUNT_SID or TWILIO_AUTH_TOKEN", 500)
        if require_waba and not self.settings.twilio_waba_id:
            raise OnboardingError(
                "Missing TWILIO_WABA_ID - This is required to register WhatsApp senders", 500
            )
        return self.settings.twilio_account_sid, self.settings.twilio_waba_id

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    @staticmethod
    def _apply_status(
        bot: RestaurantBot,
        status: BotStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Set the status and keep verified_at / error_message consistent with it."""
        bot.status = status
        bot.error_message = error_message if status == BotStatus.FAILED else None

        if status == BotStatus.ACTIVE:
            bot.verified_at = utcnow()
        elif status in (BotStatus.PENDING, BotStatus.VERIFYING):
            bot.verified_at = None

    async def _save(self, *instances) -> None:
        await self.db.commit()
        for instance in instances:
            await self.db.refresh(instance)

    async def _notify_transition(self, bot: RestaurantBot, previous: Optional[BotStatus]) -> None:
        """SMS the owner when a bot lands on ACTIVE or FAILED."""
        if bot.status == previous or bot.status not in (BotStatus.ACTIVE, BotStatus.FAILED):
            return

        try:
            restaurant = await self.db.get(Restaurant, bot.restaurant_id)
            owner = await self.db.get(User, restaurant.user_id) if restaurant else None
            if owner is None:
                return

            if bot.status == BotStatus.ACTIVE:
                result = await self.notifications.notify_sender_activated(
                    owner.phone, restaurant.name, bot.whatsapp_number
                )
            else:
                result = await self.notifications.notify_sender_failed(
                    owner.phone, restaurant.name, bot.error_message
                )
        except SQLAlchemyError as e:
            logger.warning(f"Could not load owner for bot {bot.id}: {e}")
            return
        except Exception as e:
            # The transition is already committed
            logger.exception(f"Owner notification for bot {bot.id} raised: {e}")
            return

        if not result.success:
            logger.warning(f"Owner notification for bot {bot.id} failed: {result.error_message}")

    async def _record_failure(self, restaurant_id: str, message: str) -> None:
        """Mark the restaurant's existing bot FAILED with ``message``."""
        try:
            await self.db.rollback()
            bot = await self._bot_for_restaurant(restaurant_id)
            if bot is None:
                return
            previous = bot.status
            self._apply_status(bot, BotStatus.FAILED, message)
            await self._save(bot)
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist onboarding error for {restaurant_id}: {e}")
            return

        await self._notify_transition(bot, previous)

    # =========================================================================
    # STATUS / RECONCILIATION
    # =========================================================================

    async def get_status(
        self,
        user: User,
        restaurant_id: Optional[str] = None,
    ) -> tuple[Optional[RestaurantBot], bool]:
        """
        Current bot for the restaurant and whether it uses the shared number.

        A VERIFYING bot is reconciled first; Twilio errors are logged and the
        stored state is returned unchanged.
        """
        restaurant = await self._resolve_restaurant(user, restaurant_id)
        bot = await self._bot_for_restaurant(restaurant.id)

        if bot is not None and bot.status == BotStatus.VERIFYING and bot.sender_sid:
            try:
                await self.reconcile(bot)
            except SenderApiError as e:
                logger.warning(f"Could not advance bot {bot.id}: {e}")

        return bot, self.is_shared(bot)

    async def reconcile(self, bot: RestaurantBot) -> str:
        """
        Bring a VERIFYING bot in line with its Twilio sender.

        Returns one of ``skipped``, ``unchanged``, ``otp_requested``,
        ``activated`` or ``failed``.

        Raises:
            SenderApiError: Twilio could not be queried
        """
        if bot.status != BotStatus.VERIFYING or not bot.sender_sid:
            return SKIPPED

        sender = await self.senders.fetch_sender(bot.sender_sid)
        previous = bot.status

        if sender.status == "UNVERIFIED" and not bot.verification_sid:
            verification = await self.senders.request_verification(bot.sender_sid, "sms")
            if not verification.verification_sid:
                return UNCHANGED
            bot.verification_sid = verification.verification_sid
            await self._save(bot)
            logger.info(f"OTP requested for bot {bot.id} ({bot.sender_sid})")
            return OTP_REQUESTED

        if sender.status in ("ONLINE", "VERIFIED"):
            self._apply_status(bot, BotStatus.ACTIVE)
            await self._save(bot)
            await self._notify_transition(bot, previous)
            logger.info(f"Bot {bot.id} activated from Twilio status {sender.status}")
            return ACTIVATED

        if sender.status == "FAILED":
            self._apply_status(bot, BotStatus.FAILED, PROVIDER_FAILED_MESSAGE)
            await self._save(bot)
            await self._notify_transition(bot, previous)
            logger.warning(f"Bot {bot.id} failed at provider")
            return FAILED

        return UNCHANGED

    # =========================================================================
    # OTP FLOW
    # =========================================================================

    async def start(
        self,
        user: User,
        request: StartOnboardingRequest,
    ) -> tuple[RestaurantBot, str, bool]:
        """
        Register the restaurant's number with Twilio and request an OTP.

        Returns:
            (bot, message, has_verification)

        Raises:
            OnboardingError: 400 for numbers Twilio will not register,
                404/403 for restaurant lookup, 500 otherwise (the bot, if
                any, is then marked FAILED)
        """
        restaurant = await self._resolve_restaurant(user, request.restaurant_id)

        try:
            account_sid, waba_id = self._require_twilio(require_waba=True)

            phone = request.phone.strip()
            profile_name = request.profile.name if request.profile else None
            display_name = profile_name or restaurant.name or f"Restaurant {restaurant.id}"
            profile = (
                request.profile.to_twilio(display_name)
                if request.profile
                else {"name": display_name}
            )
            webhook = {
                "callback_method": request.webhook.callback_method if request.webhook else "POST",
                "callback_url": (
                    request.webhook.callback_url
                    if request.webhook
                    else self.settings.effective_bot_webhook_url
                ),
            }

            logger.info(
                f"Registering WhatsApp sender {mask_phone(phone)} "
                f"for restaurant {restaurant.id} (WABA {waba_id})"
            )

            try:
                sender = await self.senders.create_sender(phone, profile, waba_id, webhook)
            except SenderApiError as e:
                if e.error_code == ERROR_FIRST_SENDER_REQUIRES_CONSOLE:
                    raise OnboardingError(FIRST_SENDER_MESSAGE, 400) from e
                if e.error_code == ERROR_ALREADY_REGISTERED:
                    raise OnboardingError(ALREADY_REGISTERED_MESSAGE, 400) from e
                raise

            verification_sid = None
            if sender.status == "CREATING":
                try:
                    ready = await self.senders.wait_until_ready(
                        sender.sid,
                        max_attempts=self.settings.sender_poll_attempts,
                        interval=self.settings.sender_poll_interval,
                    )
                    if ready.status == "UNVERIFIED":
                        verification = await self.senders.request_verification(sender.sid, "sms")
                        verification_sid = verification.verification_sid
                    else:
                        logger.info(f"Sender {sender.sid} is already {ready.status}")
                except SenderApiError as e:
                    # Reconciliation requests the OTP once the sender is ready
                    logger.warning(f"Sender {sender.sid} not ready yet: {e}")
            elif sender.status == "UNVERIFIED":
                verification = await self.senders.request_verification(sender.sid, "sms")
                verification_sid = verification.verification_sid

            bot = await self._get_or_create_bot(restaurant)
            bot.account_sid = account_sid
            bot.subaccount_sid = account_sid
            bot.name = display_name
            bot.restaurant_name = restaurant.name
            bot.whatsapp_number = phone
            bot.sender_sid = sender.sid
            bot.verification_sid = verification_sid
            bot.waba_id = waba_id
            self._apply_status(bot, BotStatus.VERIFYING)
            await self._save(bot)

        except OnboardingError as e:
            if e.status_code >= 500:
                await self._record_failure(restaurant.id, e.message)
            raise
        except SenderApiError as e:
            await self._record_failure(restaurant.id, e.message)
            raise OnboardingError(e.message, 500) from e

        logger.info(f"Bot {bot.id} saved as VERIFYING (sender {bot.sender_sid})")

        if verification_sid:
            return bot, "OTP sent. Check your phone.", True
        return bot, "Sender created. Verification will be available shortly.", False

    async def verify(self, user: User, sender_sid: str, code: str) -> RestaurantBot:
        """
        Submit the OTP. The bot turns ACTIVE once Twilio reports the sender
        ONLINE/VERIFIED/ACTIVE and otherwise stays VERIFYING.

        Raises:
            OnboardingError: 404/403 for lookup, 500 when Twilio rejects
                the code (the bot is then marked FAILED)
        """
        bot = await self._bot_for_sender(user, sender_sid)

        try:
            sender = await self.senders.complete_verification(sender_sid, code)
        except SenderApiError as e:
            logger.warning(f"Verification of {sender_sid} failed: {e}")
            await self._record_failure(bot.restaurant_id, e.message)
            raise OnboardingError(e.message, 500) from e

        previous = bot.status
        if sender.is_approved:
            self._apply_status(bot, BotStatus.ACTIVE)
        else:
            logger.info(
                f"Sender {sender_sid} not active yet "
                f"(status {sender.verification_status}); keeping VERIFYING"
            )
            self._apply_status(bot, BotStatus.VERIFYING)
        await self._save(bot)
        await self._notify_transition(bot, previous)

        return bot

    async def resend_otp(self, user: User, sender_sid: str, method: str = "sms") -> str:
        """Request a new OTP by ``sms`` or ``voice``; returns a user-facing message."""
        bot = await self._bot_for_sender(user, sender_sid)
        twilio_method = "call" if method == "voice" else "sms"

        try:
            verification = await self.senders.request_verification(sender_sid, twilio_method)
        except SenderApiError as e:
            raise OnboardingError(e.message or "Failed to resend OTP", 500) from e

        if verification.verification_sid:
            bot.verification_sid = verification.verification_sid
            await self._save(bot)

        return f"OTP sent via {'call' if method == 'voice' else 'SMS'}"

    async def cancel(self, user: User, restaurant_id: str) -> str:
        """Delete the bot record so onboarding can start from scratch."""
        restaurant = await self._resolve_restaurant(user, restaurant_id, strict=True)

        await self.db.execute(
            delete(RestaurantBot).where(RestaurantBot.restaurant_id == restaurant.id)
        )
        await self.db.commit()

        logger.info(f"Onboarding cancelled for restaurant {restaurant.id}")
        return "Connection cancelled. You can now start over."

    async def delink(self, user: User, restaurant_id: str) -> RestaurantBot:
        """Detach the number: bot back to PENDING, account SIDs kept."""
        restaurant = await self._resolve_restaurant(user, restaurant_id, strict=True)

        bot = await self._bot_for_restaurant(restaurant.id)
        if bot is None:
            raise OnboardingError("No bot to delink", 404)

        bot.whatsapp_number = None
        bot.waba_id = None
        bot.sender_sid = None
        bot.verification_sid = None
        self._apply_status(bot, BotStatus.PENDING)
        restaurant.whatsapp_number = None
        await self._save(bot, restaurant)

        logger.info(f"Bot {bot.id} delinked")
        return bot

    # =========================================================================
    # ALTERNATIVE PATHS
    # =========================================================================

    async def use_existing(self, user: User, restaurant_id: str) -> tuple[RestaurantBot, str]:
        """Attach the shared platform number; no sender or OTP involved."""
        restaurant = await self._resolve_restaurant(user, restaurant_id, strict=True)

        shared = self.shared_number()
        waba_id = self.settings.twilio_waba_id
        if not (shared and waba_id and self.settings.has_twilio_credentials):
            raise OnboardingError("WhatsApp configuration missing", 500)

        account_sid = self.settings.twilio_account_sid
        bot = await self._get_or_create_bot(restaurant)
        previous = bot.status

        bot.account_sid = account_sid
        bot.subaccount_sid = account_sid
        bot.name = restaurant.name
        bot.restaurant_name = restaurant.name
        bot.whatsapp_number = shared
        bot.waba_id = waba_id
        bot.sender_sid = None
        bot.verification_sid = None
        self._apply_status(bot, BotStatus.ACTIVE)
        restaurant.whatsapp_number = shared
        await self._save(bot, restaurant)
        await self._notify_transition(bot, previous)

        logger.info(f"Restaurant {restaurant.id} connected to shared number {mask_phone(shared)}")
        return bot, f"WhatsApp connected! You'll receive messages at the shared number {shared}"

    async def save_credentials(
        self,
        user: User,
        request: SaveCredentialsRequest,
    ) -> tuple[RestaurantBot, str]:
        """
        Store a sender created outside the OTP flow.

        The reported status is a hint; when Twilio can be reached its own
        sender status wins.
        """
        restaurant = await self._resolve_restaurant(user, request.restaurant_id)
        account_sid, _ = self._require_twilio()

        reported = request.status.lower()
        error_message = None
        if reported == "approved":
            status = BotStatus.ACTIVE
        elif reported == "rejected":
            status = BotStatus.FAILED
            error_message = CREDENTIALS_REJECTED_MESSAGE
        elif reported == "pending":
            status = BotStatus.VERIFYING
        else:
            status = BotStatus.PENDING

        try:
            sender = await self.senders.fetch_sender(request.sender_sid)
            logger.info(f"Sender {request.sender_sid} reports {sender.status}")
            if sender.status == "ONLINE":
                status = BotStatus.ACTIVE
            elif sender.status in ("PENDING", "UNVERIFIED"):
                status = BotStatus.VERIFYING
        except SenderApiError as e:
            logger.warning(f"Could not verify sender {request.sender_sid}: {e}")

        bot = await self._get_or_create_bot(restaurant)
        previous = bot.status
        if bot.whatsapp_number and bot.whatsapp_number != request.whatsapp_number:
            logger.warning(
                f"Replacing number {mask_phone(bot.whatsapp_number)} "
                f"with {mask_phone(request.whatsapp_number)} for bot {bot.id}"
            )

        bot.account_sid = account_sid
        bot.subaccount_sid = account_sid
        bot.name = restaurant.name
        bot.restaurant_name = restaurant.name
        bot.whatsapp_number = request.whatsapp_number
        bot.sender_sid = request.sender_sid
        bot.waba_id = request.waba_id
        bot.verification_sid = None
        self._apply_status(bot, status, error_message)
        restaurant.whatsapp_number = request.whatsapp_number
        await self._save(bot, restaurant)
        await self._notify_transition(bot, previous)

        if bot.status == BotStatus.ACTIVE:
            message = "WhatsApp connected successfully!"
        elif bot.status == BotStatus.VERIFYING:
            message = "WhatsApp connection is being verified. This may take a few moments."
        else:
            message = "WhatsApp connection saved."
        return bot, message

    async def handle_status_webhook(self, payload: SenderStatusWebhook) -> Optional[RestaurantBot]:
        """
        Apply a provider status callback.

        Returns the updated bot, or None when no single bot owns the sender.
        The shared number never identifies a bot on its own.
        """
        result = await self.db.execute(
            select(RestaurantBot).where(RestaurantBot.sender_sid == payload.sender_sid).limit(1)
        )
        bot = result.scalar_one_or_none()

        number = normalize_phone(payload.phone_number)
        if bot is None and number and number != self.shared_number():
            result = await self.db.execute(
                select(RestaurantBot).where(RestaurantBot.whatsapp_number == number).limit(2)
            )
            matches = list(result.scalars())
            if len(matches) == 1:
                bot = matches[0]
            elif matches:
                logger.warning(
                    f"Status webhook number {mask_phone(number)} matches several bots; ignoring"
                )

        if bot is None:
            logger.warning(f"Status webhook for unknown number {mask_phone(payload.phone_number)}")
            return None

        reported = payload.status.lower()
        if reported == "approved":
            status = BotStatus.ACTIVE
        elif reported == "rejected":
            status = BotStatus.FAILED
        else:
            status = BotStatus.PENDING

        previous = bot.status
        bot.waba_id = payload.waba_id
        bot.sender_sid = payload.sender_sid
        self._apply_status(bot, status, WEBHOOK_REJECTED_MESSAGE)
        await self._save(bot)
        await self._notify_transition(bot, previous)

        logger.info(f"Bot {bot.id} updated to {status.value} by status webhook")
        return bot

    async def shared_senders(self) -> list[dict[str, Any]]:
        """Active bot-service bots not yet assigned to a restaurant."""
        try:
            return await self.bot_api.list_shared_senders()
        except BotApiError as e:
            raise OnboardingError("Failed to fetch senders", e.status_code or 502) from e

    async def link_sender(
        self,
        user: User,
        request: LinkSenderRequest,
    ) -> Optional[RestaurantBot]:
        """
        Assign a bot-service bot to the restaurant and mirror it locally.

        Returns None when the assignment succeeded but the bot could not be
        read back.
        """
        restaurant = await self._resolve_restaurant(user, request.restaurant_id)

        try:
            await self.bot_api.assign_bot(request.bot_id, restaurant.id)
        except BotApiError as e:
            raise OnboardingError(e.message or "Failed to link sender", e.status_code or 502) from e

        try:
            external = await self.bot_api.get_bot(request.bot_id)
        except BotApiError as e:
            logger.warning(f"Linked bot {request.bot_id} but could not read it back: {e}")
            return None

        number = normalize_phone(external.get("whatsappNumber") or "") or None
        account_sid = (
            external.get("accountSid")
            or external.get("subaccountSid")
            or external.get("account_sid")
        )

        bot = await self._get_or_create_bot(restaurant)
        previous = bot.status

        bot.account_sid = account_sid
        bot.subaccount_sid = external.get("subaccountSid") or external.get("accountSid")
        bot.name = external.get("name") or external.get("restaurantName") or restaurant.name
        bot.restaurant_name = external.get("restaurantName") or external.get("name") or restaurant.name
        bot.whatsapp_number = number
        bot.sender_sid = external.get("senderSid") or external.get("sender_sid")
        bot.waba_id = external.get("wabaId") or external.get("waba_id")
        bot.verification_sid = None
        self._apply_status(bot, BotStatus.ACTIVE)
        restaurant.whatsapp_number = number
        await self._save(bot, restaurant)
        await self._notify_transition(bot, previous)

        logger.info(f"Bot-service bot {request.bot_id} linked to restaurant {restaurant.id}")
        return bot
