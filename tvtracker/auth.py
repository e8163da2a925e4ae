import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.database import get_session
from tvtracker.exceptions import LoggedOut, LoginRequired
from tvtracker.models import User
from tvtracker.request_context import set_user_id
from tvtracker.services.users import get_user_by_id

logger = logging.getLogger(__name__)

USER_SESSION_KEY = "user_id"
PASSKEY_CHALLENGE_KEY = "passkey_challenge"


def get_user_id(request: Request) -> Optional[str]:
    user_id = request.session.get(USER_SESSION_KEY)
    if user_id:
        set_user_id(user_id)
    return user_id


async def require_user_id(request: Request) -> str:
    """Dependency: the logged in user's id, or a redirect to the login page."""
    user_id = get_user_id(request)
    if not user_id:
        raise LoginRequired(request.url.path)
    return user_id


async def require_user(
    request: Request,
    session: AsyncSession = Depends(get_session)
) -> User:
    """Dependency: the logged in user. Sessions of deleted users are cleared."""
    user_id = await require_user_id(request)
    user = await get_user_by_id(session, user_id)
    if user:
        return user

    logger.info(f"Session references unknown user {user_id}, logging out")
    request.session.clear()
    raise LoggedOut()


def create_user_session(request: Request, user_id: str, redirect_to: str) -> RedirectResponse:
    request.session.clear()
    request.session[USER_SESSION_KEY] = user_id
    set_user_id(user_id)
    return RedirectResponse(url=redirect_to, status_code=303)


def logout(request: Request) -> RedirectResponse:
    request.session.clear()
    return RedirectResponse(url="/", status_code=303)


def set_passkey_challenge(request: Request, challenge: str):
    request.session[PASSKEY_CHALLENGE_KEY] = challenge


def get_passkey_challenge(request: Request) -> Optional[str]:
    return request.session.get(PASSKEY_CHALLENGE_KEY)


def clear_passkey_challenge(request: Request):
    request.session.pop(PASSKEY_CHALLENGE_KEY, None)
