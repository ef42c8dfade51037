from __future__ import annotations
"""Audit logging decorator for mutating route handlers.

Usage examples:

@audit_log('TICKET.CREATE', entity='LedgerEntry', entity_id_key='id', meta_keys=['kind', 'pnr'])
def create_sale(ctx):
    ... return entry_json(entry), 201

@audit_log('GROUP.UPDATE', entity='PermissionGroup', entity_id_arg='group_id',
           meta_builder=lambda data, rv, args, kwargs: {'isAdmin': data.get('isAdmin')})
def update_group(ctx, group_id): ...

Parameters:
  action: required audit action code (e.g. TICKET.DELETE)
  entity: optional entity label (LedgerEntry, PermissionGroup, Principal)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: name of the view argument to use for entity_id (fallback if entity_id_key absent).
  meta_keys: list of keys to project from returned JSON into meta dict (shallow copy).
  meta_builder: callable returning a meta dict; receives (data, original_return_value, args, kwargs).
  diff_keys / pre_fetch: record before/after values of the listed keys.

The audit row is only written after the view returned successfully; a view
that raises leaves no audit trace. A failure inside the decorator is logged and
never turns a completed mutation into an error response.
"""

from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict
import logging

from sqlalchemy.exc import SQLAlchemyError

from ..services.audit import add_audit
from .. import get_db

log = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return (data, original_rv) where data is the JSON-able dict for inspection."""
    if isinstance(rv, tuple) and rv:
        data = rv[0]
        return data, rv
    return rv, rv


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Optional[Dict[str, Any]]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = None
            if diff_keys and pre_fetch:
                before_snapshot = pre_fetch(args, kwargs)
            rv = fn(*args, **kwargs)
            data, _ = _extract_payload(rv)
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            meta = None
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            if diff_keys and isinstance(before_snapshot, dict):
                changes = {}
                for k in diff_keys:
                    if k in before_snapshot and k in data and before_snapshot.get(k) != data.get(k):
                        changes[k] = {'before': before_snapshot.get(k), 'after': data.get(k)}
                if changes:
                    meta = dict(meta or {})
                    meta['changes'] = changes
            session = get_db()
            try:
                add_audit(action, entity, entity_id, meta, session=session)
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                log.exception('audit write failed for %s', action)
            return rv
        return wrapper
    return outer
