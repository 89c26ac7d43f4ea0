"""
SQLAlchemy Database Models

Records the dashboard keeps for WhatsApp onboarding:
- Dashboard users (restaurant owners, identified by phone)
- Restaurant profiles
- The restaurant's WhatsApp bot and its onboarding status
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text, Enum, Boolean, ForeignKey

from sufrah.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BotStatus(str, enum.Enum):
    """
    WhatsApp sender onboarding status.

    PENDING -> VERIFYING -> ACTIVE | FAILED. Delink returns a bot to
    PENDING; cancel deletes it.
    """
    PENDING = "PENDING"
    VERIFYING = "VERIFYING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


class User(Base):
    """Dashboard user. The sign-in cookie carries the phone number."""
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_new_id)
    phone = Column(String(20), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<User {self.id} - {self.phone}>"


class Restaurant(Base):
    """Restaurant profile owned by exactly one user."""
    __tablename__ = "restaurants"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(32),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    phone = Column(String(20), nullable=True)
    whatsapp_number = Column(String(20), nullable=True)
    address = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Restaurant {self.id} - {self.name}>"


class RestaurantBot(Base):
    """
    The restaurant's WhatsApp bot.

    Tracks the Twilio sender registered for the restaurant and where it is
    in onboarding. A bot on the shared platform number has no sender_sid.
    """
    __tablename__ = "restaurant_bots"

    id = Column(String(32), primary_key=True, default=_new_id)
    restaurant_id = Column(
        String(32),
        ForeignKey("restaurants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    # =========================================================================
    # DISPLAY
    # =========================================================================
    name = Column(String(200), nullable=False)
    restaurant_name = Column(String(200), nullable=False)

    # =========================================================================
    # TWILIO
    # =========================================================================
    account_sid = Column(String(64), nullable=True)
    subaccount_sid = Column(String(64), nullable=True)
    whatsapp_number = Column(String(20), nullable=True, index=True)
    sender_sid = Column(String(64), nullable=True, index=True)
    verification_sid = Column(String(64), nullable=True)
    waba_id = Column(String(64), nullable=True)

    # =========================================================================
    # ONBOARDING STATUS
    # =========================================================================
    status = Column(
        Enum(BotStatus),
        default=BotStatus.PENDING,
        nullable=False,
        index=True
    )
    verified_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<RestaurantBot {self.id} - {self.restaurant_id} - {self.status.value}>"
