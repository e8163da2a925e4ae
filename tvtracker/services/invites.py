import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.models import Invite

logger = logging.getLogger(__name__)


async def redeem_invite_code(session: AsyncSession, invite_code: str) -> bool:
    """Consume an invite code. Returns whether the code existed."""
    invite = await session.get(Invite, invite_code)
    if not invite:
        return False

    try:
        await session.delete(invite)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(f"Failed to delete redeemed invite code {invite_code}")

    return True
