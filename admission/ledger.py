"""Ticket ledger: id generation and read-only projections over ``tickets``."""

import csv
import io
import secrets
import string
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from admission.exceptions import NotFoundError
from admission.models import Ticket
from admission.schemas import TicketStats

TICKET_ID_TAG = 'TCK'
SUFFIX_ALPHABET = string.digits + string.ascii_uppercase
SUFFIX_LENGTH = 8
UNCATEGORIZED = '-'

CSV_COLUMNS = (
    'serial_no',
    'id',
    'buyer_name',
    'ticket_category',
    'status',
    'issued_at',
    'used_at',
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_ticket_id(now: datetime | None = None) -> str:
    now = now or utcnow()
    suffix = ''.join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f'{TICKET_ID_TAG}-{now:%Y%m%d}-{suffix}'


async def get_ticket(session: AsyncSession, ticket_id: str) -> Ticket:
    async with session.begin():
        ticket = await session.scalar(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        )

    if not ticket:
        raise NotFoundError('Ticket was not found')

    return ticket


async def recent_tickets(
    session: AsyncSession, limit: int, *, max_limit: int
) -> list[Ticket]:
    limit = max(1, min(limit, max_limit))

    async with session.begin():
        tickets = await session.scalars(
            select(Ticket).order_by(Ticket.issued_at.desc()).limit(limit)
        )

    return list(tickets.all())


async def ticket_stats(session: AsyncSession) -> TicketStats:
    async with session.begin():
        rows = await session.execute(
            select(Ticket.category, func.count()).group_by(Ticket.category)
        )
        by_category: dict[str, int] = {}
        for category, count in rows.all():
            key = category or UNCATEGORIZED
            by_category[key] = by_category.get(key, 0) + count

    return TicketStats(total=sum(by_category.values()), by_category=by_category)


async def export_rows(session: AsyncSession) -> list[Ticket]:
    async with session.begin():
        tickets = await session.scalars(select(Ticket).order_by(Ticket.serial_no))

    return list(tickets.all())


def _csv_value(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def render_csv(tickets: Iterable[Ticket]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_NOTNULL, lineterminator='\r\n')
    buffer.write(','.join(CSV_COLUMNS) + '\r\n')
    for ticket in tickets:
        writer.writerow(
            _csv_value(v)
            for v in (
                ticket.serial_no,
                ticket.id,
                ticket.buyer_name,
                ticket.category,
                ticket.status,
                ticket.issued_at,
                ticket.used_at,
            )
        )
    return buffer.getvalue()
