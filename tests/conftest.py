import asyncio
import os
import tempfile
from pathlib import Path
from urllib.parse import quote

import pytest
from sqlalchemy import select

_TMP = Path(tempfile.mkdtemp(prefix="sufrah-tests-"))

# Must be set before sufrah is imported: settings and the engine are module-level
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'sufrah.db'}"
os.environ.setdefault("SENDER_POLL_INTERVAL", "0")
os.environ.setdefault("SENDER_POLL_ATTEMPTS", "3")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "AC00000000000000000000000000000000")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-auth-token")
os.environ.setdefault("TWILIO_WABA_ID", "123456789012345")
os.environ.setdefault("TWILIO_WHATSAPP_FROM", "whatsapp:+14155238886")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

from fastapi.testclient import TestClient  # noqa: E402

from sufrah.auth import SESSION_COOKIE  # noqa: E402
from sufrah.database import Base, async_session_maker, engine  # noqa: E402
from sufrah.main import app  # noqa: E402
from sufrah.models import Restaurant, RestaurantBot, User  # noqa: E402
from sufrah.services.bot_api import get_bot_api_client  # noqa: E402
from sufrah.services.notifications import get_notification_service  # noqa: E402
from sufrah.services.senders import get_sender_service  # noqa: E402

OWNER_PHONE = "+966500000001"
OTHER_PHONE = "+966500000002"


def run(coro):
    return asyncio.run(coro)


async def _reset_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def _seed_owner(phone: str, restaurant_name: str) -> dict:
    async with async_session_maker() as db:
        user = User(phone=phone, name="Owner", is_verified=True)
        db.add(user)
        await db.flush()
        restaurant = Restaurant(user_id=user.id, name=restaurant_name, phone=phone)
        db.add(restaurant)
        await db.commit()
        return {"user_id": user.id, "restaurant_id": restaurant.id, "phone": phone}


async def _load_bot(restaurant_id: str):
    async with async_session_maker() as db:
        result = await db.execute(
            select(RestaurantBot).where(RestaurantBot.restaurant_id == restaurant_id)
        )
        return result.scalar_one_or_none()


async def _load_restaurant(restaurant_id: str):
    async with async_session_maker() as db:
        return await db.get(Restaurant, restaurant_id)


def load_bot(restaurant_id: str):
    return run(_load_bot(restaurant_id))


def load_restaurant(restaurant_id: str):
    return run(_load_restaurant(restaurant_id))


@pytest.fixture(autouse=True)
def reset_state():
    run(_reset_db())
    get_sender_service().reset()
    get_bot_api_client().reset()
    get_notification_service().sent.clear()
    yield


@pytest.fixture
def senders():
    return get_sender_service()


@pytest.fixture
def bot_api():
    return get_bot_api_client()


@pytest.fixture
def notifications():
    return get_notification_service()


@pytest.fixture
def owner():
    return run(_seed_owner(OWNER_PHONE, "Sufrah Test Kitchen"))


@pytest.fixture
def other_owner():
    return run(_seed_owner(OTHER_PHONE, "Other Kitchen"))


@pytest.fixture
def client(owner):
    with TestClient(app) as c:
        c.cookies.set(SESSION_COOKIE, quote(owner["phone"]))
        yield c


@pytest.fixture
def anon_client():
    with TestClient(app) as c:
        yield c
