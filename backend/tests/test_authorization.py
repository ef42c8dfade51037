import pytest
from backoffice.constants.permissions import full_grants
from backoffice.errors import AuthorizationError
from backoffice.models.authz import PermissionGroup, Principal
from backoffice.services.policy import AuthorizationEngine, AuthorizedContext
from tests.test_utils_seed import ensure_group, ensure_principal


def _principal(session, email, group_id, active=True):
    pid = ensure_principal(email, group_id, active=active)
    return session.get(Principal, pid)


def test_admin_group_allows_everything_without_grants(session):
    ensure_group('admins', {}, is_admin=True)
    p = _principal(session, 'boss@example.com', 'admins')
    engine = AuthorizationEngine()
    assert engine.check(p, 'tickets', 'delete', session=session)
    assert engine.check(p, 'accounts', 'currency', session=session)
    # isAdmin is evaluated before catalog membership
    assert engine.check(p, 'unknown_module', 'view', session=session)
    assert engine.effective_permissions(p, session=session) == full_grants()


def test_grants_are_exact_per_module_and_action(session):
    ensure_group('viewers', {'tickets': ['view'], 'reports': ['view']})
    p = _principal(session, 'viewer@example.com', 'viewers')
    engine = AuthorizationEngine()
    assert engine.check(p, 'tickets', 'view', session=session)
    denied = engine.check(p, 'tickets', 'add', session=session)
    assert not denied
    assert denied.reason == 'insufficient permission: tickets.add'
    # same verb in another module is not implied
    assert not engine.check(p, 'accounts', 'view', session=session)
    assert engine.effective_permissions(p, session=session) == {'tickets': ['view'], 'reports': ['view']}


def test_unknown_module_and_action_fail_closed(session):
    ensure_group('agents', {'tickets': ['view', 'add']})
    p = _principal(session, 'agent@example.com', 'agents')
    engine = AuthorizationEngine()
    d1 = engine.check(p, 'spaceships', 'view', session=session)
    assert not d1 and d1.reason.startswith('unknown module')
    d2 = engine.check(p, 'tickets', 'launch', session=session)
    assert not d2 and d2.reason.startswith('unknown action')


def test_missing_or_inactive_principal_denied(session):
    ensure_group('admins', {}, is_admin=True)
    inactive = _principal(session, 'gone@example.com', 'admins', active=False)
    engine = AuthorizationEngine()
    assert engine.check(None, 'tickets', 'view', session=session).reason == 'unknown principal'
    # even an admin group does not help an inactive principal
    assert engine.check(inactive, 'tickets', 'view', session=session).reason == 'inactive principal'
    assert engine.effective_permissions(inactive, session=session) == {}


def test_principal_with_deleted_group_denied(session):
    ensure_group('temp', {'tickets': ['view']})
    p = _principal(session, 'orphan@example.com', 'temp')
    p.permission_group_id = 'does_not_exist'
    engine = AuthorizationEngine()
    assert engine.check(p, 'tickets', 'view', session=session).reason == 'no permission group assigned'


def test_authorize_returns_context_or_raises(session):
    ensure_group('agents', {'tickets': ['view']})
    p = _principal(session, 'agent@example.com', 'agents')
    engine = AuthorizationEngine()
    ctx = engine.authorize(p, 'tickets', 'view', session=session)
    assert ctx == AuthorizedContext(principal_id=p.id, module='tickets', action='view')
    with pytest.raises(AuthorizationError) as exc:
        engine.authorize(p, 'tickets', 'delete', session=session)
    assert exc.value.code == 403
    assert exc.value.module == 'tickets' and exc.value.action == 'delete'


def test_context_require_checks_module_and_action():
    ctx = AuthorizedContext(principal_id='p1', module='accounts', action='add')
    assert ctx.require(('tickets', 'accounts'), 'add') is ctx
    with pytest.raises(AuthorizationError):
        ctx.require(('tickets', 'accounts'), 'delete')
    with pytest.raises(AuthorizationError):
        ctx.require('settings', 'add')


def test_cached_group_refreshes_after_invalidate(session):
    ensure_group('clerks', {'tickets': ['view']})
    p = _principal(session, 'clerk@example.com', 'clerks')
    engine = AuthorizationEngine(cache_enabled=True)
    assert not engine.check(p, 'tickets', 'add', session=session)
    group = session.get(PermissionGroup, 'clerks')
    group.grants = {'tickets': ['view', 'add']}
    session.commit()
    # snapshot still cached
    assert not engine.check(p, 'tickets', 'add', session=session)
    engine.invalidate('clerks')
    assert engine.check(p, 'tickets', 'add', session=session)


def test_uncached_engine_reads_group_every_time(session):
    ensure_group('clerks', {'tickets': ['view']})
    p = _principal(session, 'clerk@example.com', 'clerks')
    engine = AuthorizationEngine(cache_enabled=False)
    assert not engine.check(p, 'tickets', 'edit', session=session)
    group = session.get(PermissionGroup, 'clerks')
    group.grants = {'tickets': ['view', 'edit']}
    session.commit()
    assert engine.check(p, 'tickets', 'edit', session=session)


class _Rows:
    def __init__(self, row):
        self.row = row

    def scalar_one_or_none(self):
        return self.row


class _EditDuringRead:
    """Session stand-in: the first group read is overtaken by an edit plus its invalidation."""

    def __init__(self, engine, before, after, group_id=None):
        self.engine = engine
        self.before = before
        self.after = after
        self.group_id = group_id
        self.reads = 0

    def execute(self, statement):
        self.reads += 1
        if self.reads == 1:
            self.engine.invalidate(self.group_id)
            return _Rows(self.before)
        return _Rows(self.after)


def _clerks(grants):
    return PermissionGroup(id='clerks', name='Clerks', is_admin=False, grants=grants)


def test_fill_overtaken_by_invalidate_is_not_cached():
    p = Principal(id='p-1', name='Clerk', email='clerk@example.com', permission_group_id='clerks', active=True)
    engine = AuthorizationEngine(cache_enabled=True)
    racing = _EditDuringRead(engine, _clerks({'tickets': ['view', 'delete']}), _clerks({'tickets': ['view']}),
                             group_id='clerks')
    # the in-flight read still answers with the old grants but must not pin them
    assert engine.check(p, 'tickets', 'delete', session=racing)
    assert not engine.check(p, 'tickets', 'delete', session=racing)
    assert racing.reads == 2
    # the fresh snapshot is cached normally
    assert not engine.check(p, 'tickets', 'delete', session=racing)
    assert racing.reads == 2


def test_invalidate_all_discards_in_flight_fills():
    p = Principal(id='p-1', name='Clerk', email='clerk@example.com', permission_group_id='clerks', active=True)
    engine = AuthorizationEngine(cache_enabled=True)
    racing = _EditDuringRead(engine, _clerks({'tickets': ['view']}), _clerks({}))
    assert engine.check(p, 'tickets', 'view', session=racing)
    assert not engine.check(p, 'tickets', 'view', session=racing)
    assert racing.reads == 2
