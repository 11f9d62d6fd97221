from http import HTTPStatus

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from admission.ledger import utcnow
from admission.models import Ticket, TicketStatus

pytestmark = pytest.mark.anyio


async def _create(client: AsyncClient, **payload) -> dict:
    response = await client.post('/api/tickets', json={'buyer_name': 'Aida', **payload})
    assert response.status_code == HTTPStatus.CREATED
    return response.json()


async def test_health(async_client: AsyncClient):
    response = await async_client.get('/health')

    assert response.status_code == HTTPStatus.OK
    assert response.json() == {'status': 'ok'}


async def test_create_ticket_success(async_client: AsyncClient):
    response = await async_client.post(
        '/api/tickets',
        json={'buyer_name': '  Aida  ', 'ticket_category': 'VIP', 'serial_no': ''},
    )

    assert response.status_code == HTTPStatus.CREATED
    body = response.json()
    assert body['serial_no'] == 1
    assert body['buyer_name'] == 'Aida'
    assert body['category'] == 'VIP'
    assert body['seat'] == 'Free seating'
    assert body['status'] == 'issued'
    assert body['used_at'] is None
    assert body['id'].startswith('TCK-')


async def test_create_ticket_with_short_name(async_client: AsyncClient):
    response = await async_client.post('/api/tickets', json={'buyer_name': ' A '})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()['code'] == 'validation_error'


async def test_create_ticket_number_out_of_range(async_client: AsyncClient):
    response = await async_client.post(
        '/api/tickets', json={'buyer_name': 'Aida', 'serial_no': 6}
    )

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json() == {
        'detail': 'Ticket number must be between 1 and 5',
        'code': 'number_out_of_range',
    }


async def test_create_ticket_when_number_taken(async_client: AsyncClient):
    await _create(async_client, serial_no=3)

    response = await async_client.post(
        '/api/tickets', json={'buyer_name': 'Bolot', 'serial_no': 3}
    )

    assert response.status_code == HTTPStatus.CONFLICT
    assert response.json()['code'] == 'number_unavailable'

    summary = await async_client.get('/api/numbers/summary')
    assert summary.json() == {'total': 5, 'free': 4, 'used': 1}


async def test_create_ticket_when_pool_exhausted(async_client: AsyncClient):
    for _ in range(5):
        await _create(async_client)

    response = await async_client.post('/api/tickets', json={'buyer_name': 'Late'})

    assert response.status_code == HTTPStatus.CONFLICT
    assert response.json() == {
        'detail': 'No free ticket numbers left',
        'code': 'pool_exhausted',
    }


async def test_free_numbers(async_client: AsyncClient):
    await _create(async_client, serial_no=2)

    response = await async_client.get('/api/numbers/free', params={'limit': 3})

    assert response.status_code == HTTPStatus.OK
    assert response.json() == {'numbers': [1, 3, 4]}


async def test_get_ticket_by_id(async_client: AsyncClient):
    created = await _create(async_client)

    response = await async_client.get(f'/api/tickets/{created["id"].lower()}')

    assert response.status_code == HTTPStatus.OK
    assert response.json()['serial_no'] == created['serial_no']


async def test_get_ticket_when_not_found(async_client: AsyncClient):
    response = await async_client.get('/api/tickets/TCK-20250101-ZZZZZZZZ')

    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.json()['detail'] == 'Ticket was not found'


async def test_recent_tickets_newest_first(
    async_session: AsyncSession, async_client: AsyncClient
):
    first = await _create(async_client, buyer_name='First')
    second = await _create(async_client, buyer_name='Second')

    response = await async_client.get('/api/tickets/recent')

    assert response.status_code == HTTPStatus.OK
    ids = [ticket['id'] for ticket in response.json()['tickets']]
    assert ids == [second['id'], first['id']]


async def test_recent_tickets_when_empty(async_client: AsyncClient):
    response = await async_client.get('/api/tickets/recent')

    assert response.status_code == HTTPStatus.OK
    assert response.json()['tickets'] == []


async def test_ticket_stats(async_session: AsyncSession, async_client: AsyncClient):
    await _create(async_client)
    await _create(async_client, ticket_category='VIP')
    await _create(async_client, ticket_category='VIP')

    async with async_session.begin():
        async_session.add(
            Ticket(
                id='TCK-20250101-LEGACY00',
                buyer_name='Legacy',
                status=TicketStatus.ISSUED,
                issued_at=utcnow(),
            )
        )

    response = await async_client.get('/api/tickets/stats')

    assert response.status_code == HTTPStatus.OK
    assert response.json() == {
        'total': 4,
        'by_category': {'Standard': 1, 'VIP': 2, '-': 1},
    }


async def test_export_csv(async_client: AsyncClient):
    created = await _create(async_client, buyer_name='Aida "Ai" K')

    response = await async_client.get('/export.csv')

    assert response.status_code == HTTPStatus.OK
    assert response.headers['content-type'].startswith('text/csv')
    assert 'tickets.csv' in response.headers['content-disposition']
    header, row = response.text.split('\r\n')[:2]
    assert header == 'serial_no,id,buyer_name,ticket_category,status,issued_at,used_at'
    assert row.startswith(f'"1","{created["id"]}","Aida ""Ai"" K","Standard","issued",')
    assert row.endswith('",')


async def test_verify_flow(async_client: AsyncClient):
    created = await _create(async_client)

    first = await async_client.post('/api/verify', json={'text': created['id']})

    assert first.status_code == HTTPStatus.OK
    assert first.json()['status'] == 'OK'
    assert first.json()['buyer_name'] == 'Aida'
    assert first.json()['used_at'] is not None

    second = await async_client.post('/api/verify', json={'ticket_id': created['id']})

    assert second.status_code == HTTPStatus.OK
    assert second.json()['status'] == 'ALREADY_USED'
    assert second.json()['used_at'] == first.json()['used_at']


async def test_verify_unknown_ticket(async_client: AsyncClient):
    response = await async_client.post(
        '/api/verify', json={'code': 'TCK-20250101-ZZZZZZZZ'}
    )

    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.json()['status'] == 'INVALID'


async def test_verify_without_ticket_id(async_client: AsyncClient):
    response = await async_client.post('/api/verify', json={'text': ''})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()['status'] == 'ERROR'
    assert response.json()['error'] == 'ticket_id required'


async def test_admin_clear(async_client: AsyncClient):
    created = await _create(async_client)
    await async_client.post('/api/verify', json={'id': created['id']})

    response = await async_client.post('/api/admin/clear')

    assert response.status_code == HTTPStatus.OK
    assert response.json()['ok'] is True

    summary = await async_client.get('/api/numbers/summary')
    assert summary.json() == {'total': 5, 'free': 5, 'used': 0}

    recent = await async_client.get('/api/tickets/recent')
    assert recent.json()['tickets'] == []

    verify = await async_client.post('/api/verify', json={'id': created['id']})
    assert verify.status_code == HTTPStatus.NOT_FOUND


async def test_export_csv_leaves_missing_values_unquoted(
    async_session: AsyncSession, async_client: AsyncClient
):
    async with async_session.begin():
        async_session.add(
            Ticket(
                id='TCK-20250101-LEGACY00',
                buyer_name='Legacy',
                status=TicketStatus.ISSUED,
                issued_at=utcnow(),
            )
        )

    response = await async_client.get('/export.csv')

    row = response.text.split('\r\n')[1]
    assert row.startswith(',"TCK-20250101-LEGACY00","Legacy",,"issued",')
    assert row.endswith('",')


async def test_create_ticket_when_storage_fails(
    async_client: AsyncClient, monkeypatch: pytest.MonkeyPatch
):
    created = await _create(async_client)
    monkeypatch.setattr(
        'admission.allocation.generate_ticket_id', lambda now=None: created['id']
    )

    response = await async_client.post('/api/tickets', json={'buyer_name': 'Bolot'})

    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    assert response.json() == {
        'detail': 'Could not issue the ticket',
        'code': 'storage_error',
    }

    summary = await async_client.get('/api/numbers/summary')
    assert summary.json() == {'total': 5, 'free': 4, 'used': 1}
