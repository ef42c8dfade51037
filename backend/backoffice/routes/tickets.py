from __future__ import annotations
from flask import Blueprint, request, abort
from .. import get_db
from ..config.pagination import normalize_pagination, page_meta
from ..decorators.audit import audit_log
from ..decorators.auth import require_permission
from ..errors import ValidationError
from ..services.ledger import TransactionIntegrityEngine, entry_json, removed_json
from ..utils.validation import parse_date

tickets_bp = Blueprint('tickets', __name__)


def _engine() -> TransactionIntegrityEngine:
    return TransactionIntegrityEngine(get_db())


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('request body must be an object')
    return data


def _optional_date(name):
    raw = request.args.get(name)
    return parse_date(raw, name) if raw else None


def _optional_flag(name):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    if raw not in ('true', 'false'):
        raise ValidationError(f'{name} must be true or false')
    return raw == 'true'


@tickets_bp.get('')
@require_permission('tickets', 'view')
def list_entries(ctx):
    limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    rows, total = _engine().list_entries(
        ctx,
        kind=request.args.get('kind'),
        currency=request.args.get('currency'),
        search=request.args.get('q'),
        date_from=_optional_date('from'),
        date_to=_optional_date('to'),
        audit_checked=_optional_flag('auditChecked'),
        entry_checked=_optional_flag('entryChecked'),
        limit=limit,
        offset=offset,
    )
    data = [entry_json(e) for e in rows]
    return {
        'data': data,
        'pagination': page_meta(total, limit, offset, len(data)),
    }


@tickets_bp.get('/stats')
@require_permission('tickets', 'view')
def stats(ctx):
    return {'data': _engine().stats(ctx)}


@tickets_bp.get('/removed')
@require_permission('tickets', 'view')
def list_removed(ctx):
    limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    rows, total = _engine().list_removed(ctx, limit=limit, offset=offset)
    return {
        'data': [removed_json(r) for r in rows],
        'pagination': page_meta(total, limit, offset, len(rows)),
    }


@tickets_bp.get('/<entry_id>')
@require_permission('tickets', 'view')
def get_entry(entry_id: str, ctx):
    entry = _engine().get(entry_id)
    if entry is None:
        abort(404, description='entry not found')
    return entry_json(entry)


@tickets_bp.post('/sales')
@require_permission('tickets', 'add')
@audit_log('TICKET.CREATE', entity='LedgerEntry', entity_id_key='id', meta_keys=['kind', 'pnr'])
def create_sale(ctx):
    return entry_json(_engine().create_sale(ctx, _json_body())), 201


@tickets_bp.post('/changes')
@require_permission('tickets', 'add')
@audit_log('TICKET.CREATE', entity='LedgerEntry', entity_id_key='id', meta_keys=['kind', 'pnr'])
def create_change(ctx):
    return entry_json(_engine().create_change(ctx, _json_body())), 201


@tickets_bp.post('/refunds')
@require_permission('tickets', 'add')
@audit_log('TICKET.CREATE', entity='LedgerEntry', entity_id_key='id', meta_keys=['kind', 'pnr'])
def create_refund(ctx):
    return entry_json(_engine().create_refund(ctx, _json_body())), 201


def _prefetch_entry(entry_id):
    entry = _engine().get(entry_id)
    return entry_json(entry) if entry is not None else None


@tickets_bp.patch('/<entry_id>')
@require_permission('tickets', 'edit')
@audit_log('TICKET.UPDATE', entity='LedgerEntry', entity_id_key='id',
           diff_keys=['pnr', 'source', 'beneficiary', 'profit', 'auditChecked', 'entryChecked'],
           pre_fetch=lambda a, kw: _prefetch_entry(kw.get('entry_id')))
def update_entry(entry_id: str, ctx):
    return entry_json(_engine().update(ctx, entry_id, _json_body()))


@tickets_bp.delete('/<entry_id>')
@require_permission('tickets', 'delete')
@audit_log('TICKET.DELETE', entity='LedgerEntry', entity_id_arg='entry_id',
           meta_builder=lambda data, rv, a, kw: {'deleted': data.get('deleted')})
def delete_entry(entry_id: str, ctx):
    deleted = _engine().delete(ctx, entry_id)
    return {'id': entry_id, 'deleted': deleted}
