from flask import Blueprint, request
from .. import get_db, get_authz
from ..errors import InitializationError, ValidationError
from ..models.authz import principal_json
from ..services.audit import add_audit
from ..services.bootstrap import BootstrapInitializer

system_bp = Blueprint('system', __name__)


@system_bp.get('/status')
def status():
    # the only unauthenticated gate: tells the client whether to show first-admin setup
    return {'empty': BootstrapInitializer(get_db()).is_empty()}


@system_bp.post('/initialize')
def initialize():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError('request body must be an object')
    session = get_db()
    try:
        principal = BootstrapInitializer(session, authz=get_authz()).initialize(
            data.get('email'), data.get('password'), data.get('name'),
        )
    except InitializationError as e:
        body = {'error': {'status': e.code, 'title': e.name, 'detail': e.description, 'stage': e.stage}}
        if e.orphaned_credential:
            body['error']['orphanedCredential'] = True
        return body, e.code
    add_audit('SYSTEM.INITIALIZE', 'Principal', principal.id, {'group': principal.permission_group_id},
              actor=principal.id, session=session)
    session.commit()
    return principal_json(principal), 201
