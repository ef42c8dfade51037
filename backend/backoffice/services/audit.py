from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
from flask_jwt_extended import get_jwt_identity
from sqlalchemy import select, func
from .. import get_db
from ..models.audit import AuditLog
from .policy import AuthorizedContext


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None,
              actor: Optional[str] = None, session=None):
    """Persist an audit log entry within the current DB session.

    Parameters:
      action: short action code e.g. TICKET.CREATE, GROUP.UPDATE, SYSTEM.INITIALIZE
      entity: optional entity name (LedgerEntry, PermissionGroup, Principal)
      entity_id: optional primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)
      actor: acting principal id; defaults to the JWT identity when one is present
    """
    session = session or get_db()
    if actor is None:
        try:
            actor = get_jwt_identity()
        except RuntimeError:
            actor = None  # outside a request / no JWT verified
    log = AuditLog(
        actor_principal_id=str(actor) if actor is not None else None,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log


def list_audit_logs(ctx: AuthorizedContext, *, actor: Optional[str] = None, action: Optional[str] = None,
                    entity: Optional[str] = None, entity_id: Optional[str] = None, limit: int = 50,
                    offset: int = 0, session=None) -> Tuple[List[AuditLog], int]:
    ctx.require('audit', 'view')
    session = session or get_db()
    q = select(AuditLog)
    if actor:
        q = q.where(AuditLog.actor_principal_id == actor)
    if action:
        q = q.where(AuditLog.action == action)
    if entity:
        q = q.where(AuditLog.entity == entity)
    if entity_id:
        q = q.where(AuditLog.entity_id == entity_id)
    total = session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = session.execute(q.order_by(AuditLog.id.desc()).offset(offset).limit(limit)).scalars().all()
    return rows, total
