from flask import Blueprint, request
from flask_jwt_extended import create_access_token
from .. import get_db, get_authz
from ..config.pagination import normalize_pagination, page_meta
from ..constants.permissions import CATALOG_VERSION, MODULES, MODULE_ACTIONS
from ..decorators.audit import audit_log
from ..decorators.auth import require_permission, require_principal
from ..errors import ValidationError
from ..models.audit import audit_json
from ..models.authz import group_json, principal_json
from ..services.audit import list_audit_logs
from ..services.directory import Directory
from ..services.identity import IdentityProvider

iam_bp = Blueprint('iam', __name__)


def _directory() -> Directory:
    return Directory(get_authz(), get_db())


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('request body must be an object')
    return data


@iam_bp.post('/auth/login')
def login():
    data = _json_body()
    principal_id = IdentityProvider(get_db()).sign_in(data.get('email'), data.get('password'))
    # identity only; permissions are resolved from the store on every request
    token = create_access_token(identity=principal_id)
    return {'access_token': token}


@iam_bp.get('/auth/me')
@require_principal
def me(principal):
    body = principal_json(principal)
    body['permissions'] = get_authz().effective_permissions(principal, session=get_db())
    return body


@iam_bp.get('/catalog')
@require_principal
def catalog(principal):
    return {
        'version': CATALOG_VERSION,
        'modules': [{'module': m, 'actions': list(MODULE_ACTIONS[m])} for m in MODULES],
    }


# --- Permission groups ---

@iam_bp.get('/groups')
@require_permission('settings', 'view')
def list_groups(ctx):
    return {'data': [group_json(g) for g in _directory().list_groups(ctx)]}


@iam_bp.post('/groups')
@require_permission('settings', 'edit')
@audit_log('GROUP.CREATE', entity='PermissionGroup', entity_id_key='id', meta_keys=['name', 'isAdmin'])
def create_group(ctx):
    group = _directory().create_group(ctx, _json_body())
    return group_json(group), 201


def _prefetch_group(group_id):
    group = _directory().get_group(group_id)
    return group_json(group)


@iam_bp.put('/groups/<group_id>')
@require_permission('settings', 'edit')
@audit_log('GROUP.UPDATE', entity='PermissionGroup', entity_id_key='id', diff_keys=['isAdmin', 'grants', 'name'],
           pre_fetch=lambda a, kw: _prefetch_group(kw.get('group_id')))
def update_group(group_id: str, ctx):
    group = _directory().update_group(ctx, group_id, _json_body())
    return group_json(group)


@iam_bp.delete('/groups/<group_id>')
@require_permission('settings', 'edit')
@audit_log('GROUP.DELETE', entity='PermissionGroup', entity_id_arg='group_id')
def delete_group(group_id: str, ctx):
    removed = _directory().delete_group(ctx, group_id)
    return {'id': group_id, 'removed': removed}


# --- Employees ---

@iam_bp.get('/employees')
@require_permission('employees', 'view')
def list_employees(ctx):
    include_inactive = request.args.get('active') != 'true'
    rows = _directory().list_principals(ctx, include_inactive=include_inactive)
    return {'data': [principal_json(p) for p in rows]}


@iam_bp.post('/employees')
@require_permission('employees', 'add')
@audit_log('EMPLOYEE.CREATE', entity='Principal', entity_id_key='id', meta_keys=['permissionGroupId'])
def create_employee(ctx):
    principal = _directory().create_principal(ctx, _json_body())
    return principal_json(principal), 201


@iam_bp.patch('/employees/<principal_id>')
@require_permission('employees', 'edit')
@audit_log('EMPLOYEE.UPDATE', entity='Principal', entity_id_key='id', diff_keys=['permissionGroupId', 'active', 'name'],
           pre_fetch=lambda a, kw: principal_json(_directory().get_principal(kw.get('principal_id'))))
def update_employee(principal_id: str, ctx):
    principal = _directory().update_principal(ctx, principal_id, _json_body())
    return principal_json(principal)


@iam_bp.post('/employees/<principal_id>/deactivate')
@require_permission('employees', 'edit')
@audit_log('EMPLOYEE.DEACTIVATE', entity='Principal', entity_id_key='id')
def deactivate_employee(principal_id: str, ctx):
    principal = _directory().deactivate_principal(ctx, principal_id)
    return principal_json(principal)


# --- Audit trail ---

@iam_bp.get('/audit-logs')
@require_permission('audit', 'view')
def audit_logs(ctx):
    limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    rows, total = list_audit_logs(
        ctx,
        actor=request.args.get('actor'),
        action=request.args.get('action'),
        entity=request.args.get('entity'),
        entity_id=request.args.get('entity_id'),
        limit=limit,
        offset=offset,
        session=get_db(),
    )
    return {'data': [audit_json(r) for r in rows], 'pagination': page_meta(total, limit, offset, len(rows))}
