import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import NotFound
from backoffice.errors import StoreUnavailableError, ValidationError
from backoffice.services.store import commit_or_raise
from tests.test_utils_seed import seed_user_with_grants


class _FailingSession:
    def __init__(self, exc):
        self.exc = exc
        self.rolled_back = False

    def commit(self):
        raise self.exc

    def rollback(self):
        self.rolled_back = True


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    assert resp.status_code == 404
    body = resp.get_json()
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_healthz(client):
    assert client.get('/healthz').get_json() == {'status': 'ok'}


def test_internal_error_shape(client, monkeypatch):
    headers = seed_user_with_grants(client, 'err@example.com', {'tickets': ['view']})
    import backoffice.routes.tickets as tickets_mod

    class Boom:
        def __init__(self, *a, **kw):
            raise RuntimeError('boom')

    monkeypatch.setattr(tickets_mod, 'TransactionIntegrityEngine', Boom)
    resp = client.get('/tickets', headers=headers)
    assert resp.status_code == 500
    assert resp.get_json() == {'error': {'status': 500, 'title': 'Internal Server Error', 'detail': 'Unexpected error'}}


def test_commit_conflict_becomes_validation_error():
    session = _FailingSession(IntegrityError('INSERT', {}, Exception('UNIQUE constraint failed')))
    with pytest.raises(ValidationError) as exc:
        commit_or_raise(session, conflict='email already registered')
    assert exc.value.description == 'email already registered'
    assert session.rolled_back


def test_commit_driver_failure_becomes_store_unavailable():
    session = _FailingSession(OperationalError('COMMIT', {}, Exception('connection reset')))
    with pytest.raises(StoreUnavailableError) as exc:
        commit_or_raise(session)
    assert exc.value.code == 503
    assert session.rolled_back


def test_other_store_errors_propagate():
    session = _FailingSession(SQLAlchemyError('mapper problem'))
    with pytest.raises(SQLAlchemyError):
        commit_or_raise(session)
    assert session.rolled_back


def test_commit_on_vanished_row_becomes_not_found():
    session = _FailingSession(StaleDataError('expected to update 1 row(s); 0 were matched'))
    with pytest.raises(NotFound) as exc:
        commit_or_raise(session, missing='entry not found')
    assert exc.value.description == 'entry not found'
    assert session.rolled_back
