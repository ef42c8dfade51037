from sqlalchemy import select
from backoffice import get_db
from backoffice.models.audit import AuditLog
from tests.test_utils_seed import bootstrap_admin, seed_user_with_grants

SALE = {
    'pnr': 'xyz789',
    'source': 'Iraqi Airways',
    'beneficiary': 'Ali Hassan',
    'currency': 'USD',
    'passengers': [{'name': 'Ali Hassan', 'purchasePrice': '450.50', 'salePrice': '500'}],
}


def _agent(client):
    return seed_user_with_grants(client, 'agent@example.com', {'tickets': ['view', 'add', 'edit']})


def test_requires_token(client):
    assert client.get('/tickets').status_code == 401
    assert client.post('/tickets/sales', json=SALE).status_code == 401


def test_create_and_fetch_sale(client):
    headers = _agent(client)
    resp = client.post('/tickets/sales', json=SALE, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['pnr'] == 'XYZ789'
    assert body['profit'] == '49.50'
    assert body['profitDisplay'] == '49.50 USD'
    got = client.get(f"/tickets/{body['id']}", headers=headers)
    assert got.status_code == 200
    assert got.get_json() == body
    assert client.get('/tickets/missing', headers=headers).status_code == 404


def test_change_and_refund_endpoints(client):
    headers = _agent(client)
    change = client.post('/tickets/changes', json={
        'pnr': 'C1', 'source': 'QR', 'beneficiary': 'Office', 'sourceCurrency': 'USD',
        'beneficiaryCurrency': 'IQD', 'sourceAmount': 100, 'beneficiaryAmount': 131000,
    }, headers=headers)
    assert change.status_code == 201
    assert change.get_json()['currencyMismatch'] is True
    assert 'profit' not in change.get_json()
    refund = client.post('/tickets/refunds', json={
        'pnr': 'R1', 'source': 'IA', 'beneficiary': 'Omar', 'purchasePrice': 200, 'salePrice': 150,
    }, headers=headers)
    assert refund.status_code == 201
    assert refund.get_json()['profit'] == '-50'


def test_validation_error_shape(client):
    headers = _agent(client)
    resp = client.post('/tickets/sales', json=dict(SALE, passengers=[]), headers=headers)
    assert resp.status_code == 400
    err = resp.get_json()['error']
    assert err['status'] == 400
    assert err['detail'] == 'at least one passenger required'
    resp = client.post('/tickets/sales', json=['not', 'an', 'object'], headers=headers)
    assert resp.status_code == 400


def test_patch_rejects_empty_pnr_and_leaves_entry_unchanged(client):
    headers = _agent(client)
    entry_id = client.post('/tickets/sales', json=SALE, headers=headers).get_json()['id']
    resp = client.patch(f'/tickets/{entry_id}', json={'pnr': ''}, headers=headers)
    assert resp.status_code == 400
    assert client.get(f'/tickets/{entry_id}', headers=headers).get_json()['pnr'] == 'XYZ789'
    ok = client.patch(f'/tickets/{entry_id}', json={'entryChecked': True}, headers=headers)
    assert ok.status_code == 200
    assert ok.get_json()['entryChecked'] is True


def test_delete_requires_permission_and_is_idempotent(client):
    admin = bootstrap_admin(client)
    agent = _agent(client)
    entry_id = client.post('/tickets/sales', json=SALE, headers=agent).get_json()['id']
    denied = client.delete(f'/tickets/{entry_id}', headers=agent)
    assert denied.status_code == 403
    assert denied.get_json()['error']['detail'] == 'insufficient permission: tickets.delete'
    first = client.delete(f'/tickets/{entry_id}', headers=admin)
    assert first.status_code == 200
    assert first.get_json() == {'id': entry_id, 'deleted': True}
    second = client.delete(f'/tickets/{entry_id}', headers=admin)
    assert second.get_json() == {'id': entry_id, 'deleted': False}


def test_list_with_filters_and_pagination(client):
    headers = _agent(client)
    for pnr in ('AAA111', 'BBB222', 'CCC333'):
        client.post('/tickets/sales', json=dict(SALE, pnr=pnr), headers=headers)
    client.post('/tickets/refunds', json={'pnr': 'R1', 'source': 'IA', 'beneficiary': 'Omar',
                                          'purchasePrice': 1, 'salePrice': 1}, headers=headers)
    page = client.get('/tickets?limit=2', headers=headers).get_json()
    assert page['pagination'] == {'total': 4, 'limit': 2, 'offset': 0, 'returned': 2}
    sales = client.get('/tickets?kind=sale', headers=headers).get_json()
    assert sales['pagination']['total'] == 3
    found = client.get('/tickets?q=bbb', headers=headers).get_json()
    assert [e['pnr'] for e in found['data']] == ['BBB222']
    assert client.get('/tickets?limit=x', headers=headers).status_code == 400
    assert client.get('/tickets?from=yesterday', headers=headers).status_code == 400


def test_view_only_group_cannot_add(client):
    headers = seed_user_with_grants(client, 'viewer@example.com', {'tickets': ['view']})
    assert client.get('/tickets', headers=headers).status_code == 200
    resp = client.post('/tickets/sales', json=SALE, headers=headers)
    assert resp.status_code == 403


def test_mutations_are_audited(client):
    headers = _agent(client)
    entry_id = client.post('/tickets/sales', json=SALE, headers=headers).get_json()['id']
    client.patch(f'/tickets/{entry_id}', json={'notes': 'checked'}, headers=headers)
    client.patch(f'/tickets/{entry_id}', json={'pnr': ''}, headers=headers)
    rows = get_db().execute(select(AuditLog).order_by(AuditLog.id)).scalars().all()
    assert [r.action for r in rows] == ['TICKET.CREATE', 'TICKET.UPDATE']
    assert rows[0].entity_id == entry_id
    assert rows[0].meta == {'kind': 'sale', 'pnr': 'XYZ789'}


def test_removed_entries_archive(client):
    admin = bootstrap_admin(client)
    entry_id = client.post('/tickets/sales', json=SALE, headers=admin).get_json()['id']
    client.delete(f'/tickets/{entry_id}', headers=admin)
    client.delete(f'/tickets/{entry_id}', headers=admin)
    removed = client.get('/tickets/removed', headers=admin).get_json()
    assert removed['pagination']['total'] == 1
    row = removed['data'][0]
    assert row['originalId'] == entry_id
    assert row['snapshot']['pnr'] == 'XYZ789'
    assert row['snapshot']['profit'] == '49.50'


def test_audited_ticket_is_locked_over_http(client):
    admin = bootstrap_admin(client)
    entry_id = client.post('/tickets/refunds', json={'pnr': 'R9', 'source': 'IA', 'beneficiary': 'Omar',
                                                     'purchasePrice': 1, 'salePrice': 2, 'auditChecked': True},
                           headers=admin).get_json()['id']
    edit = client.patch(f'/tickets/{entry_id}', json={'salePrice': 999}, headers=admin)
    assert edit.status_code == 409
    assert edit.get_json()['error']['title'] == 'Entry Locked'
    assert client.delete(f'/tickets/{entry_id}', headers=admin).status_code == 409
    assert client.get(f'/tickets/{entry_id}', headers=admin).get_json()['profit'] == '1'

    unlock = client.patch(f'/tickets/{entry_id}', json={'auditChecked': False}, headers=admin)
    assert unlock.status_code == 200
    assert client.delete(f'/tickets/{entry_id}', headers=admin).get_json() == {'id': entry_id, 'deleted': True}


def test_stats_and_check_filters(client):
    headers = _agent(client)
    client.post('/tickets/sales', json=dict(SALE, auditChecked=True), headers=headers)
    client.post('/tickets/sales', json=dict(SALE, pnr='OPEN01'), headers=headers)
    stats = client.get('/tickets/stats', headers=headers).get_json()['data']
    assert stats['sale'] == {'total': 2, 'auditChecked': 1, 'entryChecked': 0, 'pending': 2}
    audited = client.get('/tickets?auditChecked=true', headers=headers).get_json()
    assert [e['pnr'] for e in audited['data']] == ['XYZ789']
    open_ = client.get('/tickets?auditChecked=false', headers=headers).get_json()
    assert [e['pnr'] for e in open_['data']] == ['OPEN01']
    assert client.get('/tickets?entryChecked=maybe', headers=headers).status_code == 400
