from __future__ import annotations
"""Permission-group and employee (principal) administration.

Every mutating call takes an ``AuthorizedContext`` obtained from the
authorization engine. Grants are validated against the catalog here, at write
time, so an invalid grant set never reaches the store.
"""
from typing import Any, Dict, List, Optional
import logging
import re

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import NotFound

from ..constants.permissions import CATALOG_VERSION, catalog_problems, normalize_grants
from ..errors import ValidationError
from ..models.authz import PermissionGroup, Principal
from ..utils.validation import normalize_email, require_text
from .identity import IdentityProvider
from .policy import AuthorizationEngine, AuthorizedContext, load_principal
from .store import commit_or_raise

log = logging.getLogger(__name__)

_SLUG_RE = re.compile(r'[^a-z0-9]+')


def _slug(name: str) -> str:
    return _SLUG_RE.sub('_', name.lower()).strip('_') or 'group'


def _admin_flag(value) -> bool:
    if not isinstance(value, bool):
        raise ValidationError('isAdmin must be true or false')
    return value


def _validated_grants(raw) -> Dict[str, List[str]]:
    if raw is None:
        return {}
    problems = catalog_problems(raw)
    if problems:
        raise ValidationError('invalid grants: ' + '; '.join(problems))
    return normalize_grants(raw)


class Directory:
    def __init__(self, authz: AuthorizationEngine, session=None):
        if session is None:
            from .. import get_db
            session = get_db()
        self.session = session
        self.authz = authz

    # ---------------- permission groups ---------------- #
    def list_groups(self, ctx: AuthorizedContext) -> List[PermissionGroup]:
        ctx.require('settings', 'view')
        return self.session.execute(select(PermissionGroup).order_by(PermissionGroup.name.asc())).scalars().all()

    def get_group(self, group_id: str) -> PermissionGroup:
        group = self.session.get(PermissionGroup, group_id)
        if group is None:
            raise NotFound('permission group not found')
        return group

    def create_group(self, ctx: AuthorizedContext, data: Dict[str, Any]) -> PermissionGroup:
        ctx.require('settings', 'edit')
        name = require_text(data.get('name'), 'name', max_length=128)
        grants = _validated_grants(data.get('grants'))
        is_admin = _admin_flag(data.get('isAdmin', False))
        group_id = data.get('id') or _slug(name)
        if not isinstance(group_id, str):
            raise ValidationError('id invalid')
        if self.session.get(PermissionGroup, group_id) is not None:
            raise ValidationError('group exists')
        if self.session.execute(select(PermissionGroup).where(PermissionGroup.name == name)).scalar_one_or_none():
            raise ValidationError('group name exists')
        group = PermissionGroup(id=group_id, name=name, is_admin=is_admin, grants=grants, catalog_version=CATALOG_VERSION)
        self.session.add(group)
        commit_or_raise(self.session, conflict='group exists')
        self.authz.invalidate(group.id)
        log.info('permission group %s created', group.id)
        return group

    def update_group(self, ctx: AuthorizedContext, group_id: str, patch: Dict[str, Any]) -> PermissionGroup:
        ctx.require('settings', 'edit')
        group = self.get_group(group_id)
        unknown = set(patch) - {'name', 'grants', 'isAdmin'}
        if unknown:
            raise ValidationError(f"unknown fields: {sorted(unknown)}")
        # validate everything before touching the row
        name = require_text(patch['name'], 'name', max_length=128) if 'name' in patch else group.name
        grants = _validated_grants(patch['grants']) if 'grants' in patch else group.grants
        is_admin = _admin_flag(patch['isAdmin']) if 'isAdmin' in patch else group.is_admin
        if is_admin != group.is_admin:
            # no automatic demotion policy; the change is logged and audited at the route
            log.warning('permission group %s isAdmin %s -> %s', group.id, group.is_admin, is_admin)
        group.name = name
        group.grants = grants
        group.is_admin = is_admin
        group.catalog_version = CATALOG_VERSION
        commit_or_raise(self.session, conflict='group name exists')
        self.authz.invalidate(group.id)
        return group

    def delete_group(self, ctx: AuthorizedContext, group_id: str) -> bool:
        ctx.require('settings', 'edit')
        group = self.session.get(PermissionGroup, group_id)
        if group is None:
            return False
        in_use = self.session.execute(
            select(func.count()).select_from(Principal).where(Principal.permission_group_id == group_id)
        ).scalar_one()
        if in_use:
            raise ValidationError('permission group is assigned to employees')
        self.session.delete(group)
        commit_or_raise(self.session)
        self.authz.invalidate(group_id)
        return True

    # ---------------- principals ---------------- #
    def list_principals(self, ctx: AuthorizedContext, include_inactive: bool = True) -> List[Principal]:
        ctx.require('employees', 'view')
        q = select(Principal).order_by(Principal.name.asc())
        if not include_inactive:
            q = q.where(Principal.active.is_(True))
        return self.session.execute(q).scalars().all()

    def get_principal(self, principal_id: str) -> Principal:
        principal = self.session.get(Principal, principal_id)
        if principal is None:
            raise NotFound('employee not found')
        return principal

    def _require_group(self, group_id) -> PermissionGroup:
        if not group_id or not isinstance(group_id, str):
            raise ValidationError('missing permissionGroupId')
        group = self.session.get(PermissionGroup, group_id)
        if group is None:
            raise ValidationError('unknown permission group')
        return group

    def _authorize_assignment(self, ctx: AuthorizedContext, group: PermissionGroup):
        """Group membership is a settings concern: the employees grants alone never move anyone."""
        actor = load_principal(self.session, ctx.principal_id)
        self.authz.authorize(actor, 'settings', 'edit', session=self.session)
        log.info('employee group assignment to %s authorized for %s', group.id, ctx.principal_id)

    def create_principal(self, ctx: AuthorizedContext, data: Dict[str, Any]) -> Principal:
        ctx.require('employees', 'add')
        name = require_text(data.get('name'), 'name', max_length=128)
        email = normalize_email(data.get('email'))
        group = self._require_group(data.get('permissionGroupId'))
        if group.is_admin or (group.grants or {}).get('settings'):
            self._authorize_assignment(ctx, group)
        group_id = group.id
        if self.session.execute(select(Principal).where(Principal.email == email)).scalar_one_or_none():
            raise ValidationError('email already registered')
        credential_id: Optional[str] = None
        if data.get('password') is not None:
            credential_id = IdentityProvider(self.session).create_credential(email, data['password'])
        principal = Principal(name=name, email=email, credential_id=credential_id,
                              permission_group_id=group_id, active=True)
        self.session.add(principal)
        commit_or_raise(self.session, conflict='email already registered')
        log.info('employee %s created in group %s', principal.id, group_id)
        return principal

    def update_principal(self, ctx: AuthorizedContext, principal_id: str, patch: Dict[str, Any]) -> Principal:
        ctx.require('employees', 'edit')
        principal = self.get_principal(principal_id)
        unknown = set(patch) - {'name', 'permissionGroupId', 'active'}
        if unknown:
            raise ValidationError(f"unknown fields: {sorted(unknown)}")
        name = require_text(patch['name'], 'name', max_length=128) if 'name' in patch else principal.name
        group_id = principal.permission_group_id
        if 'permissionGroupId' in patch:
            group = self._require_group(patch['permissionGroupId'])
            if group.id != group_id:
                self._authorize_assignment(ctx, group)
            group_id = group.id
        active = principal.active
        if 'active' in patch:
            if not isinstance(patch['active'], bool):
                raise ValidationError('active must be true or false')
            active = patch['active']
        principal.name = name
        principal.permission_group_id = group_id
        principal.active = active
        commit_or_raise(self.session)
        return principal

    def deactivate_principal(self, ctx: AuthorizedContext, principal_id: str) -> Principal:
        ctx.require('employees', 'edit')
        principal = self.get_principal(principal_id)
        if principal.active:
            principal.active = False
            commit_or_raise(self.session)
            log.info('employee %s deactivated', principal.id)
        return principal
