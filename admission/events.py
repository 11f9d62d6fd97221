"""Post-commit notifications for issued tickets.

Whatever happens after a ticket is committed (rendering a printable ticket,
sending it to the buyer) subscribes here. The dispatcher runs after the HTTP
response is sent, so a failing subscriber never turns a committed allocation
into an error.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from admission.models import Ticket


@dataclass(frozen=True)
class TicketIssued:
    ticket_id: str
    serial_no: int | None
    buyer_name: str
    category: str | None
    seat: str | None
    event_name: str | None
    issued_at: datetime

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> 'TicketIssued':
        return cls(
            ticket_id=ticket.id,
            serial_no=ticket.serial_no,
            buyer_name=ticket.buyer_name,
            category=ticket.category,
            seat=ticket.seat,
            event_name=ticket.event_name,
            issued_at=ticket.issued_at,
        )


Subscriber = Callable[[TicketIssued], Awaitable[None]]


class TicketEventDispatcher:
    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, handler: Subscriber) -> Subscriber:
        self._subscribers.append(handler)
        return handler

    def clear(self) -> None:
        self._subscribers.clear()

    async def dispatch(self, event: TicketIssued) -> int:
        """Deliver to every subscriber, returns how many succeeded."""
        delivered = 0
        for handler in list(self._subscribers):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    f'Subscriber {getattr(handler, "__name__", handler)!r} '
                    f'failed for ticket {event.ticket_id}'
                )
                continue
            delivered += 1
        return delivered


dispatcher = TicketEventDispatcher()
