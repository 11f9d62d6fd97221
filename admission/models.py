from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, String, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase, AsyncAttrs):
    pass


class NumberStatus(str, Enum):
    FREE = 'free'
    USED = 'used'


class TicketStatus(str, Enum):
    ISSUED = 'issued'
    USED = 'used'


def _status_column(enum_cls: type[Enum]) -> SAEnum:
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )


class PoolEntry(Base):
    __tablename__ = 'ticket_numbers'

    number: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    status: Mapped[NumberStatus] = mapped_column(
        _status_column(NumberStatus), default=NumberStatus.FREE
    )
    ticket_id: Mapped[str | None] = mapped_column(String(32), default=None)
    buyer_name: Mapped[str | None] = mapped_column(default=None)
    assigned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )


class Ticket(Base):
    __tablename__ = 'tickets'
    __table_args__ = (
        Index(
            'ux_tickets_serial_no',
            'serial_no',
            unique=True,
            sqlite_where=text('serial_no IS NOT NULL'),
            postgresql_where=text('serial_no IS NOT NULL'),
        ),
        Index('idx_tickets_issued_at', 'issued_at'),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    event_name: Mapped[str | None] = mapped_column(default=None)
    buyer_name: Mapped[str]
    category: Mapped[str | None] = mapped_column('ticket_category', default=None)
    seat: Mapped[str | None] = mapped_column(default=None)
    status: Mapped[TicketStatus] = mapped_column(
        _status_column(TicketStatus), default=TicketStatus.ISSUED
    )
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    serial_no: Mapped[int | None] = mapped_column(
        ForeignKey('ticket_numbers.number'), default=None
    )
