import logging
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from tvtracker.models import Passkey
from tvtracker.utils import utcnow

logger = logging.getLogger(__name__)


async def get_passkeys_by_user_id(session: AsyncSession, user_id: str) -> list[Passkey]:
    result = await session.execute(
        select(Passkey).where(Passkey.user_id == user_id).order_by(Passkey.created_at.desc())
    )
    return list(result.scalars().all())


async def get_passkey_by_credential_id(session: AsyncSession, credential_id: str) -> Optional[Passkey]:
    result = await session.execute(select(Passkey).where(Passkey.credential_id == credential_id))
    return result.scalar_one_or_none()


async def create_passkey(
    session: AsyncSession,
    user_id: str,
    credential_id: str,
    public_key: bytes,
    counter: int,
    transports: list[str],
    name: str
) -> Passkey:
    passkey = Passkey(
        user_id=user_id,
        credential_id=credential_id,
        public_key=public_key,
        counter=counter,
        transports=list(transports),
        name=name
    )
    session.add(passkey)
    await session.commit()
    logger.info(f"Registered passkey {passkey.id} for user {user_id}")
    return passkey


async def update_passkey_counter(session: AsyncSession, passkey_id: str, new_counter: int):
    passkey = await session.get(Passkey, passkey_id)
    if passkey:
        passkey.counter = new_counter
        passkey.last_used_at = utcnow()
        await session.commit()


async def delete_passkey(session: AsyncSession, passkey_id: str, user_id: str) -> bool:
    """Delete a passkey owned by the user. Returns whether one was deleted."""
    result = await session.execute(
        delete(Passkey).where(Passkey.id == passkey_id, Passkey.user_id == user_id)
    )
    await session.commit()
    return result.rowcount > 0


async def update_passkey_name(session: AsyncSession, passkey_id: str, user_id: str, name: str) -> bool:
    result = await session.execute(
        select(Passkey).where(Passkey.id == passkey_id, Passkey.user_id == user_id)
    )
    passkey = result.scalar_one_or_none()
    if not passkey:
        return False
    passkey.name = name
    await session.commit()
    return True
