"""Experience credit service with idempotency."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from civic.db.models import ExperienceLedger, User

logger = logging.getLogger(__name__)


async def has_ledger_entry(db: AsyncSession, idempotency_key: str) -> bool:
    result = await db.execute(
        select(ExperienceLedger.id).where(ExperienceLedger.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none() is not None


async def grant_experience(
    db: AsyncSession,
    user_id: int,
    amount: int,
    source: str,
    source_id: str,
    idempotency_key: str,
) -> bool:
    """Credit experience to a user. Returns True if credited, False if duplicate.

    1. Insert into experience_ledger (UNIQUE idempotency_key)
    2. Increment users.experience by ``amount``

    The user's level is not recomputed here; levels are managed elsewhere.
    """
    if await has_ledger_entry(db, idempotency_key):
        return False

    entry = ExperienceLedger(
        user_id=user_id,
        amount=amount,
        source=source,
        source_id=source_id,
        idempotency_key=idempotency_key,
        created_at=datetime.now(timezone.utc),
    )
    try:
        async with db.begin_nested():
            db.add(entry)
            await db.flush()
    except IntegrityError:
        # Race condition: another request used the key first
        logger.info("Duplicate experience credit ignored: %s", idempotency_key)
        return False

    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(experience=User.experience + amount)
    )
    return True


class SqlRewardLedger:
    """RewardLedger backed by the experience_ledger table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def credit(
        self,
        user_id: int,
        amount: int,
        source: str,
        source_id: str,
        idempotency_key: str,
    ) -> bool:
        return await grant_experience(self.db, user_id, amount, source, source_id, idempotency_key)
