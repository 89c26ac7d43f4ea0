"""
Celery Tasks
Periodic reconciliation of WhatsApp senders still waiting on Twilio.
"""

import asyncio
import logging
import time

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from sufrah.celery_worker import celery_app
from sufrah.core.config import get_settings
from sufrah.models import BotStatus, RestaurantBot
from sufrah.services.onboarding import OnboardingService
from sufrah.services.senders import SenderApiError

logger = logging.getLogger(__name__)


async def reconcile_all(session_factory: async_sessionmaker) -> dict:
    """
    Run ``OnboardingService.reconcile`` on every VERIFYING bot with a sender.

    Each bot gets its own session so one failure does not roll back the
    others.

    Returns:
        dict: ``checked``, ``activated``, ``failed``, ``otp_requested``, ``errors``
    """
    summary = {"checked": 0, "activated": 0, "failed": 0, "otp_requested": 0, "errors": 0}

    async with session_factory() as db:
        result = await db.execute(
            select(RestaurantBot.id).where(
                RestaurantBot.status == BotStatus.VERIFYING,
                RestaurantBot.sender_sid.is_not(None),
            )
        )
        bot_ids = list(result.scalars())

    for bot_id in bot_ids:
        async with session_factory() as db:
            bot = await db.get(RestaurantBot, bot_id)
            if bot is None:
                continue

            summary["checked"] += 1
            try:
                outcome = await OnboardingService(db).reconcile(bot)
            except (SenderApiError, SQLAlchemyError) as e:
                summary["errors"] += 1
                logger.warning(f"Reconcile of bot {bot_id} failed: {e}")
                continue

            if outcome in summary:
                summary[outcome] += 1

    return summary


@celery_app.task(bind=True)
def reconcile_verifying_senders(self) -> dict:
    """
    Beat task: advance bots stuck in VERIFYING.

    Uses a throwaway NullPool engine since every run gets a new event loop.
    """
    task_id = self.request.id
    start_time = time.time()
    engine = create_async_engine(get_settings().database_url, poolclass=NullPool)
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def run() -> dict:
        try:
            return await reconcile_all(session_factory)
        finally:
            await engine.dispose()

    summary = asyncio.run(run())
    elapsed = round(time.time() - start_time, 3)
    logger.info(f"Task {task_id}: reconciled senders in {elapsed}s {summary}")
    return summary
