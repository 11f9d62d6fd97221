import asyncio
from contextlib import asynccontextmanager, suppress
from http import HTTPStatus
from typing import Annotated

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Response
from loguru import logger

from admission import ledger, pool
from admission.allocation import IssueDefaults, issue_ticket
from admission.backup import backup_loop, database_file
from admission.checkin import Outcome, verify_ticket
from admission.config import Settings, get_settings
from admission.database import (
    AsyncSession,
    AsyncSessionLocal,
    create_tables,
    engine,
    get_session,
)
from admission.error_handlers import register_exception_handlers
from admission.events import TicketIssued, dispatcher
from admission.exceptions import BackupError
from admission.log_config import setup_logging
from admission.schemas import (
    FreeNumbers,
    ListTickets,
    NumbersSummary,
    ResetResponse,
    TicketRequestCreate,
    TicketResponse,
    TicketStats,
    VerifyRequest,
    VerifyResponse,
)

VERIFY_STATUS = {
    Outcome.OK: HTTPStatus.OK,
    Outcome.ALREADY_USED: HTTPStatus.OK,
    Outcome.INVALID: HTTPStatus.NOT_FOUND,
    Outcome.ERROR: HTTPStatus.BAD_REQUEST,
}


def _start_backup_task(settings: Settings) -> asyncio.Task | None:
    if settings.backup_interval_minutes <= 0:
        return None
    try:
        db_path = database_file(settings.database_url)
    except BackupError as exc:
        logger.warning(f'Scheduled snapshots disabled: {exc.message}')
        return None

    logger.info(
        f'Snapshots every {settings.backup_interval_minutes} min to {settings.backup_dir}'
    )
    return asyncio.create_task(
        backup_loop(
            db_path,
            settings.backup_dir,
            interval_minutes=settings.backup_interval_minutes,
            keep=settings.backup_keep,
        )
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)

    await create_tables(engine)
    async with AsyncSessionLocal() as session:
        await pool.seed_pool(session, settings.max_tickets)

    backup_task = _start_backup_task(settings)
    yield

    if backup_task is not None:
        backup_task.cancel()
        with suppress(asyncio.CancelledError):
            await backup_task
    await engine.dispose()


app = FastAPI(lifespan=lifespan)
register_exception_handlers(app)


SessionDep = Annotated[AsyncSession, Depends(get_session)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


@app.get('/health')
async def health():
    return {'status': 'ok'}


@app.post(
    '/api/tickets',
    response_model=TicketResponse,
    status_code=HTTPStatus.CREATED,
)
async def create_ticket(
    session: SessionDep,
    settings: SettingsDep,
    ticket_in: TicketRequestCreate,
    background_tasks: BackgroundTasks,
):
    defaults = IssueDefaults(
        max_tickets=settings.max_tickets,
        event_name=settings.event_name,
        category=settings.default_category,
        seat=settings.default_seat,
    )
    new_ticket = await issue_ticket(session, ticket_in, defaults)

    background_tasks.add_task(dispatcher.dispatch, TicketIssued.from_ticket(new_ticket))

    return new_ticket


@app.get('/api/tickets/recent', response_model=ListTickets)
async def get_recent_tickets(
    session: SessionDep,
    settings: SettingsDep,
    limit: Annotated[int | None, Query()] = None,
):
    tickets = await ledger.recent_tickets(
        session,
        limit or settings.recent_tickets_default,
        max_limit=settings.recent_tickets_max,
    )

    return {'tickets': tickets}


@app.get('/api/tickets/stats', response_model=TicketStats)
async def get_ticket_stats(session: SessionDep):
    return await ledger.ticket_stats(session)


@app.get('/api/tickets/{ticket_id}', response_model=TicketResponse)
async def get_ticket_by_id(session: SessionDep, ticket_id: str):
    return await ledger.get_ticket(session, ticket_id.upper())


@app.get('/api/numbers/summary', response_model=NumbersSummary)
async def get_numbers_summary(session: SessionDep):
    return await pool.summary(session)


@app.get('/api/numbers/free', response_model=FreeNumbers)
async def get_free_numbers(
    session: SessionDep,
    settings: SettingsDep,
    limit: Annotated[int | None, Query()] = None,
):
    numbers = await pool.list_free(
        session,
        limit or settings.free_numbers_default,
        max_limit=settings.free_numbers_max,
    )

    return {'numbers': numbers}


@app.get('/export.csv')
async def export_csv(session: SessionDep):
    tickets = await ledger.export_rows(session)

    return Response(
        content=ledger.render_csv(tickets),
        media_type='text/csv; charset=utf-8',
        headers={'Content-Disposition': 'attachment; filename="tickets.csv"'},
    )


@app.post('/api/verify', response_model=VerifyResponse)
async def verify(session: SessionDep, verify_in: VerifyRequest, response: Response):
    result = await verify_ticket(session, verify_in.raw_text)

    response.status_code = VERIFY_STATUS[result.status]

    return VerifyResponse(
        status=result.status.value,
        ticket_id=result.ticket_id,
        buyer_name=result.buyer_name,
        used_at=result.used_at,
        error=result.error,
    )


@app.post('/api/admin/clear', response_model=ResetResponse)
async def clear_database(session: SessionDep, settings: SettingsDep):
    await pool.reset_all(session, settings.max_tickets)

    return {
        'ok': True,
        'message': f'Database cleared, {settings.max_tickets} numbers free',
    }
