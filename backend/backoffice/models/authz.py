from __future__ import annotations
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, JSON, DateTime, func
from typing import Optional, Dict, List
import uuid

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


# --- Core Models ---
class PermissionGroup(Base):
    __tablename__ = 'permission_groups'
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # module -> list of actions; validated against the catalog before every write
    grants: Mapped[Dict[str, List[str]]] = mapped_column(JSON, nullable=False, default=dict)
    catalog_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    principals = relationship('Principal', back_populates='permission_group')
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Credential(Base):
    """Identity-provider record. Only a password hash is ever stored."""
    __tablename__ = 'credentials'
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, raw)


class Principal(Base):
    __tablename__ = 'principals'
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # stored lower-cased; uniqueness is therefore case-insensitive
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    credential_id: Mapped[Optional[str]] = mapped_column(ForeignKey('credentials.id', ondelete='SET NULL'), nullable=True)
    permission_group_id: Mapped[str] = mapped_column(ForeignKey('permission_groups.id'), nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    permission_group = relationship('PermissionGroup', back_populates='principals')
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SystemState(Base):
    """Sentinel rows keyed by name. Inserting ``bootstrap`` claims first-admin creation."""
    __tablename__ = 'system_state'
    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    principal_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())


def principal_json(p: Principal) -> dict:
    return {
        'id': p.id,
        'name': p.name,
        'email': p.email,
        'permissionGroupId': p.permission_group_id,
        'active': p.active,
    }


def group_json(g: PermissionGroup) -> dict:
    return {
        'id': g.id,
        'name': g.name,
        'isAdmin': g.is_admin,
        'grants': g.grants or {},
    }

__all__ = ['Base', 'PermissionGroup', 'Credential', 'Principal', 'SystemState', 'principal_json', 'group_json', 'new_id']
