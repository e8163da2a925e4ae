import asyncio
import logging
import random
import uuid

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.models import PasswordReset
from tvtracker.services.mail import send_password_reset_mail
from tvtracker.services.users import get_user_by_email, hash_token

logger = logging.getLogger(__name__)


async def trigger_password_reset(session: AsyncSession, email: str):
    """
    Start the password reset flow for an email address.

    Unknown addresses get a short random delay instead of a mail so the
    response time does not reveal whether an account exists.
    """
    logger.info(f"Password reset triggered for {email}")

    token = str(uuid.uuid4())
    hashed = hash_token(token)

    user = await get_user_by_email(session, email)
    if not user:
        await asyncio.sleep(random.uniform(0.05, 0.15))
        return

    await session.execute(delete(PasswordReset).where(PasswordReset.email == email))
    try:
        session.add(PasswordReset(email=email, token=hashed))
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(f"Failed to create password reset entry for {email}")
        return

    logger.info(f"Password reset entry created for {email}")
    await send_password_reset_mail(email, token)
