import hashlib
import logging
from datetime import timedelta
from typing import Optional

import bcrypt
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.exceptions import (
    NoEmailOrTokenError,
    PasswordRemovalError,
    PasswordResetExpiredError,
    UserNotFoundError,
)
from tvtracker.models import (
    Account, EpisodeOnUser, Passkey, Password, PasswordReset, ShowOnUser, User
)
from tvtracker.models.user import new_id
from tvtracker.utils import utcnow

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10
PASSWORD_RESET_TTL = timedelta(hours=1)
CREDENTIAL_PROVIDER = "credential"


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes
    return bcrypt.hashpw(password.encode("utf-8")[:72], bcrypt.gensalt(BCRYPT_ROUNDS)).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[User]:
    return await session.get(User, user_id)


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_user_by_plex_token(session: AsyncSession, plex_token: Optional[str]) -> Optional[User]:
    if not plex_token:
        return None
    result = await session.execute(select(User).where(User.plex_token == plex_token))
    return result.scalar_one_or_none()


async def _get_credential_account(session: AsyncSession, user_id: str) -> Optional[Account]:
    result = await session.execute(
        select(Account).where(
            Account.user_id == user_id,
            Account.provider_id == CREDENTIAL_PROVIDER
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def _set_credential_password(session: AsyncSession, user_id: str, hashed: str):
    account = await _get_credential_account(session, user_id)
    if account:
        account.password = hashed
    else:
        session.add(Account(
            account_id=user_id,
            provider_id=CREDENTIAL_PROVIDER,
            user_id=user_id,
            password=hashed
        ))


async def create_user(session: AsyncSession, email: str, password: str) -> User:
    user = User(id=new_id(), email=email)
    session.add(user)
    await session.flush()
    await _set_credential_password(session, user.id, hash_password(password))
    await session.commit()
    logger.info(f"Created user {user.id}")
    return user


async def verify_login(session: AsyncSession, email: str, password: str) -> Optional[User]:
    """
    Check an email/password pair.

    Legacy passwords are checked first; on success the hash moves to the
    credential account and the legacy row is dropped. Returns the user or
    None when the credentials do not match.
    """
    user = await get_user_by_email(session, email)
    if not user:
        return None

    legacy = await session.get(Password, user.id)
    if legacy:
        if not check_password(password, legacy.hash):
            return None

        await _set_credential_password(session, user.id, legacy.hash)
        await session.delete(legacy)
        await session.commit()
        logger.info(f"Migrated legacy password of user {user.id}")
        return user

    account = await _get_credential_account(session, user.id)
    if not account or not account.password:
        return None

    if not check_password(password, account.password):
        return None

    return user


async def has_password(session: AsyncSession, user_id: str) -> bool:
    if await session.get(Password, user_id):
        return True
    account = await _get_credential_account(session, user_id)
    return bool(account and account.password)


async def _validate_password_reset_token(session: AsyncSession, token: str) -> str:
    """Consume a reset token and return its email, raising if unknown or expired."""
    hashed = hash_token(token)
    result = await session.execute(select(PasswordReset).where(PasswordReset.token == hashed))
    entry = result.scalar_one_or_none()

    if not entry or entry.created_at < utcnow() - PASSWORD_RESET_TTL:
        raise PasswordResetExpiredError("Password reset token is unknown or expired")

    email = entry.email
    await session.delete(entry)
    await session.flush()
    return email


async def change_password(
    session: AsyncSession,
    email: Optional[str],
    password: str,
    token: Optional[str] = None
):
    """Set a new password, either for a known email or through a reset token."""
    if not email and not token:
        raise NoEmailOrTokenError("Either an email or a reset token is required")

    user_email = email
    if token:
        user_email = await _validate_password_reset_token(session, token)

    user = await get_user_by_email(session, user_email)
    if not user:
        await session.rollback()
        raise UserNotFoundError(user_email)

    hashed = hash_password(password)
    legacy = await session.get(Password, user.id)
    if legacy:
        await session.delete(legacy)
    await _set_credential_password(session, user.id, hashed)
    await session.commit()
    logger.info(f"Changed password of user {user.id}")


async def remove_password(session: AsyncSession, user_id: str):
    """Drop all password credentials. Only allowed when a passkey exists."""
    result = await session.execute(
        select(func.count(Passkey.id)).where(Passkey.user_id == user_id)
    )
    if not result.scalar():
        raise PasswordRemovalError("Register a passkey before removing the password")

    await session.execute(delete(Password).where(Password.user_id == user_id))
    await session.execute(
        delete(Account).where(
            Account.user_id == user_id,
            Account.provider_id == CREDENTIAL_PROVIDER
        )
    )
    await session.commit()
    logger.info(f"Removed password of user {user_id}")


async def regenerate_plex_token(session: AsyncSession, user_id: str) -> Optional[str]:
    user = await get_user_by_id(session, user_id)
    if not user:
        return None
    user.plex_token = new_id()
    await session.commit()
    return user.plex_token


async def delete_user_by_id(session: AsyncSession, user_id: str):
    """Delete a user together with everything attached to it."""
    user = await get_user_by_id(session, user_id)
    if not user:
        raise UserNotFoundError(user_id)

    for model in (EpisodeOnUser, ShowOnUser, Passkey, Account, Password):
        await session.execute(delete(model).where(model.user_id == user_id))
    await session.execute(delete(PasswordReset).where(PasswordReset.email == user.email))
    await session.delete(user)
    await session.commit()
    logger.info(f"Deleted user {user_id}")


async def delete_user_by_email(session: AsyncSession, email: str):
    user = await get_user_by_email(session, email)
    if not user:
        raise UserNotFoundError(email)
    await delete_user_by_id(session, user.id)


async def get_user_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(User.id)))
    return result.scalar() or 0
