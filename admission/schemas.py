from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from admission.models import TicketStatus


class TicketRequestCreate(BaseModel):
    buyer_name: str = Field(min_length=2)
    category: str | None = Field(default=None, alias='ticket_category')
    seat: str | None = None
    serial_no: int | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('buyer_name', mode='before')
    @classmethod
    def strip_buyer_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('category', 'seat', 'serial_no', mode='before')
    @classmethod
    def blank_as_missing(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    serial_no: int | None
    buyer_name: str
    category: str | None
    seat: str | None
    status: TicketStatus
    issued_at: datetime
    used_at: datetime | None = None


class RecentTicket(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    serial_no: int | None
    buyer_name: str
    category: str | None
    status: TicketStatus
    issued_at: datetime


class ListTickets(BaseModel):
    tickets: list[RecentTicket]


class TicketStats(BaseModel):
    total: int
    by_category: dict[str, int]


class NumbersSummary(BaseModel):
    total: int
    free: int
    used: int


class FreeNumbers(BaseModel):
    numbers: list[int]


class VerifyRequest(BaseModel):
    ticket_id: str | None = None
    id: str | None = None
    code: str | None = None
    text: str | None = None

    @property
    def raw_text(self) -> str:
        return self.ticket_id or self.id or self.code or self.text or ''


class VerifyResponse(BaseModel):
    status: str
    ticket_id: str | None = None
    buyer_name: str | None = None
    used_at: datetime | None = None
    error: str | None = None


class ResetResponse(BaseModel):
    ok: bool
    message: str
