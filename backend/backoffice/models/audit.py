from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Index, Integer, String, JSON, DateTime, func
from typing import Optional
import datetime

from .authz import Base  # reuse same metadata


class AuditLog(Base):
    """Who changed what. Rows are only written after the mutation committed."""
    __tablename__ = 'audit_logs'
    __table_args__ = (Index('ix_audit_logs_entity', 'entity', 'entity_id'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # null for unauthenticated system actions (none today besides bootstrap, which sets it)
    actor_principal_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


def audit_json(row: AuditLog) -> dict:
    return {
        'id': row.id,
        'actorId': row.actor_principal_id,
        'action': row.action,
        'entity': row.entity,
        'entityId': row.entity_id,
        'meta': row.meta or {},
        'createdAt': row.created_at.isoformat() if row.created_at else None,
    }

__all__ = ['AuditLog', 'audit_json']
