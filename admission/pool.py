"""The fixed pool of ticket numbers 1..N.

Every number has one row in ``ticket_numbers``. A row goes from free to used
once, through a single conditional UPDATE, and only ``reset_all`` puts it
back. ``try_claim`` and ``claim_any`` must run inside the caller's write
transaction so the claim and the ticket row commit together.
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import case, delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admission.database import writer_transaction
from admission.exceptions import StorageError
from admission.models import NumberStatus, PoolEntry, Ticket
from admission.schemas import NumbersSummary


def _pool_rows(size: int) -> list[dict]:
    return [{'number': number} for number in range(1, size + 1)]


async def seed_pool(session: AsyncSession, size: int) -> int:
    """Fill an empty pool with numbers 1..size. A non-empty pool is left alone."""
    async with writer_transaction(session):
        existing = await session.scalar(select(func.count()).select_from(PoolEntry))
        if existing:
            return 0
        await session.execute(insert(PoolEntry), _pool_rows(size))

    logger.info(f'Seeded {size} ticket numbers')
    return size


async def try_claim(
    session: AsyncSession,
    number: int,
    *,
    ticket_id: str,
    buyer_name: str,
    assigned_at: datetime,
) -> bool:
    stm = (
        update(PoolEntry)
        .where(
            PoolEntry.number == number,
            PoolEntry.status == NumberStatus.FREE,
        )
        .values(
            status=NumberStatus.USED,
            ticket_id=ticket_id,
            buyer_name=buyer_name,
            assigned_at=assigned_at,
        )
        .execution_options(synchronize_session=False)
    )
    claimed = await session.execute(stm)
    return claimed.rowcount == 1


async def claim_any(
    session: AsyncSession,
    *,
    ticket_id: str,
    buyer_name: str,
    assigned_at: datetime,
) -> int | None:
    """Claim the lowest free number and return it, or None when sold out."""
    lowest_free = (
        select(PoolEntry.number)
        .where(PoolEntry.status == NumberStatus.FREE)
        .order_by(PoolEntry.number)
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )
    stm = (
        update(PoolEntry)
        .where(
            PoolEntry.number == lowest_free,
            PoolEntry.status == NumberStatus.FREE,
        )
        .values(
            status=NumberStatus.USED,
            ticket_id=ticket_id,
            buyer_name=buyer_name,
            assigned_at=assigned_at,
        )
        .returning(PoolEntry.number)
        .execution_options(synchronize_session=False)
    )
    return await session.scalar(stm)


async def count_free(session: AsyncSession) -> int:
    """Free numbers as committed, for use inside a write transaction."""
    return await session.scalar(
        select(func.count())
        .select_from(PoolEntry)
        .where(PoolEntry.status == NumberStatus.FREE)
    )


async def summary(session: AsyncSession) -> NumbersSummary:
    async with session.begin():
        row = (
            await session.execute(
                select(
                    func.count(),
                    func.coalesce(
                        func.sum(
                            case((PoolEntry.status == NumberStatus.FREE, 1), else_=0)
                        ),
                        0,
                    ),
                )
            )
        ).one()

    total, free = int(row[0]), int(row[1])
    return NumbersSummary(total=total, free=free, used=total - free)


async def list_free(session: AsyncSession, limit: int, *, max_limit: int) -> list[int]:
    limit = max(1, min(limit, max_limit))

    async with session.begin():
        numbers = await session.scalars(
            select(PoolEntry.number)
            .where(PoolEntry.status == NumberStatus.FREE)
            .order_by(PoolEntry.number)
            .limit(limit)
        )

    return list(numbers.all())


async def reset_all(session: AsyncSession, size: int) -> None:
    """Drop every ticket and put all numbers 1..size back in the pool.

    Destructive. Boot-time seeding never calls this.
    """
    try:
        async with writer_transaction(session):
            await session.execute(delete(Ticket))
            await session.execute(delete(PoolEntry))
            await session.execute(insert(PoolEntry), _pool_rows(size))
    except SQLAlchemyError as exc:
        logger.exception('Pool reset failed')
        raise StorageError('Could not reset the ticket pool') from exc

    session.expunge_all()
    logger.warning(f'Pool reset: all tickets removed, {size} numbers free')
