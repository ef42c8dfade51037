from flask import Blueprint, request, current_app
from .. import get_db
from ..decorators.audit import audit_log
from ..decorators.auth import require_permission
from ..errors import ValidationError
from ..services.rates import ExchangeRateHistory, rate_json

rates_bp = Blueprint('rates', __name__)


def _history() -> ExchangeRateHistory:
    return ExchangeRateHistory(get_db(), max_points=current_app.config['RATE_HISTORY_MAX_POINTS'])


def _points() -> int:
    raw = request.args.get('points')
    if raw is None:
        return current_app.config['RATE_HISTORY_DEFAULT_POINTS']
    try:
        return int(raw)
    except ValueError:
        raise ValidationError('points must be a positive integer')


@rates_bp.get('/current')
@require_permission('dashboard', 'view')
def current(ctx):
    row = _history().current_rate()
    return {'current': rate_json(row) if row is not None else None}


@rates_bp.get('/history')
@require_permission('dashboard', 'view')
def history(ctx):
    svc = _history()
    points = _points()
    return {
        'data': [rate_json(r) for r in svc.history(points)],
        'trend': svc.trend(points),
    }


@rates_bp.post('')
@require_permission('accounts', 'currency')
@audit_log('RATE.RECORD', entity='ExchangeRate', entity_id_key='id', meta_keys=['rate'])
def record(ctx):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError('request body must be an object')
    row = _history().record_rate(ctx, data.get('rate'))
    return rate_json(row), 201
