"""
Dashboard session lookup.

Sign-in stores the owner's phone number in the ``user-phone`` cookie;
routes that act for a restaurant resolve the user from it.
"""

from typing import Optional
from urllib.parse import unquote

from fastapi import Cookie, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sufrah.database import get_db
from sufrah.exceptions import AuthError
from sufrah.models import User

SESSION_COOKIE = "user-phone"


async def get_current_user(
    user_phone: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    FastAPI dependency returning the signed-in user.

    Raises:
        AuthError: 401 without the cookie, 404 for an unknown phone
    """
    if not user_phone:
        raise AuthError("Unauthorized", status_code=401)

    result = await db.execute(select(User).where(User.phone == unquote(user_phone)))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthError("User not found", status_code=404)

    return user
