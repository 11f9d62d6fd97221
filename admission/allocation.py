"""Ticket issuance: claim a pool number and write its ticket in one transaction."""

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admission.database import writer_transaction
from admission.exceptions import (
    DomainError,
    NumberOutOfRangeError,
    NumberUnavailableError,
    PoolBusyError,
    PoolExhaustedError,
    StorageError,
)
from admission.ledger import generate_ticket_id, utcnow
from admission.models import Ticket, TicketStatus
from admission.pool import claim_any, count_free, try_claim
from admission.schemas import TicketRequestCreate


@dataclass(frozen=True)
class IssueDefaults:
    max_tickets: int
    event_name: str | None = None
    category: str = 'Standard'
    seat: str = 'Free seating'


async def issue_ticket(
    session: AsyncSession,
    ticket_in: TicketRequestCreate,
    defaults: IssueDefaults,
) -> Ticket:
    """Issue one ticket.

    With ``serial_no`` set only that number is tried, otherwise the lowest
    free number is taken. On any failure nothing is written: the pool claim
    and the ticket row are committed together or not at all. There is no
    retry here, the caller decides whether to resubmit.
    """
    requested = ticket_in.serial_no
    if requested is not None and not 1 <= requested <= defaults.max_tickets:
        raise NumberOutOfRangeError(requested, defaults.max_tickets)

    issued_at = utcnow()
    ticket_id = generate_ticket_id(issued_at)
    claim = {
        'ticket_id': ticket_id,
        'buyer_name': ticket_in.buyer_name,
        'assigned_at': issued_at,
    }

    try:
        async with writer_transaction(session):
            if requested is not None:
                if not await try_claim(session, requested, **claim):
                    raise NumberUnavailableError(requested)
                number = requested
            else:
                number = await claim_any(session, **claim)
                if number is None:
                    # Free rows locked by in-flight claims are skipped, not sold
                    if await count_free(session):
                        raise PoolBusyError()
                    raise PoolExhaustedError()

            new_ticket = Ticket(
                id=ticket_id,
                event_name=defaults.event_name,
                buyer_name=ticket_in.buyer_name,
                category=ticket_in.category or defaults.category,
                seat=ticket_in.seat or defaults.seat,
                status=TicketStatus.ISSUED,
                issued_at=issued_at,
                serial_no=number,
            )
            session.add(new_ticket)
    except DomainError as exc:
        logger.warning(f'Ticket not issued: {exc.message}')
        raise
    except SQLAlchemyError as exc:
        logger.exception('Ticket issuance failed, transaction rolled back')
        raise StorageError('Could not issue the ticket') from exc

    logger.info(f'Issued ticket {new_ticket.id} with number {new_ticket.serial_no}')
    return new_ticket
