"""Door check-in.

A ticket moves from ``issued`` to ``used`` at most once. The move is a single
conditional UPDATE, so of any number of concurrent scans of the same ticket
exactly one gets ``OK`` and every other one gets ``ALREADY_USED`` with the
stored ``used_at``.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admission.database import writer_transaction
from admission.exceptions import StorageError
from admission.ledger import utcnow
from admission.models import Ticket, TicketStatus

TICKET_ID_PATTERN = re.compile(r'[A-Z]{3}-\d{8}-[A-Z0-9]{8}', re.IGNORECASE)


class Outcome(str, Enum):
    OK = 'OK'
    ALREADY_USED = 'ALREADY_USED'
    INVALID = 'INVALID'
    ERROR = 'ERROR'


@dataclass(frozen=True)
class VerifyResult:
    status: Outcome
    ticket_id: str | None = None
    buyer_name: str | None = None
    used_at: datetime | None = None
    error: str | None = None


def extract_ticket_id(text: str | None) -> str | None:
    match = TICKET_ID_PATTERN.search((text or '').strip())
    return match.group(0).upper() if match else None


def _already_used(ticket: Ticket) -> VerifyResult:
    return VerifyResult(
        status=Outcome.ALREADY_USED,
        ticket_id=ticket.id,
        buyer_name=ticket.buyer_name,
        used_at=ticket.used_at,
    )


async def verify_ticket(session: AsyncSession, text: str | None) -> VerifyResult:
    ticket_id = extract_ticket_id(text)
    if not ticket_id:
        return VerifyResult(status=Outcome.ERROR, error='ticket_id required')

    try:
        async with session.begin():
            ticket = await session.scalar(
                select(Ticket)
                .where(Ticket.id == ticket_id)
                .execution_options(populate_existing=True)
            )

        if not ticket:
            logger.info(f'Check-in rejected, unknown ticket {ticket_id}')
            return VerifyResult(status=Outcome.INVALID, ticket_id=ticket_id)

        if ticket.status == TicketStatus.USED:
            logger.info(f'Check-in repeated for ticket {ticket_id}')
            return _already_used(ticket)

        async with writer_transaction(session):
            used_at = await session.scalar(
                update(Ticket)
                .where(
                    Ticket.id == ticket_id,
                    Ticket.status != TicketStatus.USED,
                )
                .values(status=TicketStatus.USED, used_at=utcnow())
                .returning(Ticket.used_at)
                .execution_options(synchronize_session=False)
            )

        async with session.begin():
            await session.refresh(ticket)
    except SQLAlchemyError as exc:
        logger.exception(f'Check-in failed for ticket {ticket_id}')
        raise StorageError('Could not check the ticket in') from exc

    if used_at is None:
        # Another scan won the transition between our read and our write
        logger.info(f'Check-in lost the race for ticket {ticket_id}')
        return _already_used(ticket)

    logger.info(f'Checked in ticket {ticket_id}')
    return VerifyResult(
        status=Outcome.OK,
        ticket_id=ticket.id,
        buyer_name=ticket.buyer_name,
        used_at=used_at,
    )
