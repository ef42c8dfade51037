from __future__ import annotations
"""Authorization engine: principal + module + action -> allow / deny.

The engine never reads ambient request state. Callers pass the acting
principal explicitly; routes resolve it from the JWT identity once per request.
Denials fail closed and carry a human-readable reason.
"""
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, FrozenSet, List, Mapping, Optional
import logging

from sqlalchemy import select

from ..constants.permissions import MODULES, MODULE_ACTIONS, full_grants, is_known
from ..errors import AuthorizationError
from ..models.authz import PermissionGroup, Principal

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ''

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


@dataclass(frozen=True)
class GroupSnapshot:
    id: str
    is_admin: bool
    grants: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    @classmethod
    def of(cls, group: PermissionGroup) -> 'GroupSnapshot':
        grants = {m: frozenset(actions or ()) for m, actions in (group.grants or {}).items()}
        return cls(id=group.id, is_admin=bool(group.is_admin), grants=grants)


@dataclass(frozen=True)
class AuthorizedContext:
    """Proof that ``principal_id`` passed ``check`` for ``module.action``.

    Mutating services accept this instead of a principal, so a write cannot be
    issued without a preceding allow.
    """
    principal_id: str
    module: str
    action: str

    def require(self, modules, action: str):
        if isinstance(modules, str):
            modules = (modules,)
        if self.module not in modules or self.action != action:
            raise AuthorizationError(module=modules[0], action=action)
        return self


class AuthorizationEngine:
    def __init__(self, cache_enabled: bool = True):
        self.cache_enabled = cache_enabled
        self._cache: Dict[str, GroupSnapshot] = {}
        # bumped by invalidate; a fill only lands if no invalidation happened during its read
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = Lock()

    # --- group resolution ---
    def _resolve_group(self, session, group_id: Optional[str]) -> Optional[GroupSnapshot]:
        if not group_id:
            return None
        if self.cache_enabled:
            with self._lock:
                cached = self._cache.get(group_id)
                seen = (self._epoch, self._generations.get(group_id, 0))
            if cached is not None:
                return cached
        group = session.execute(select(PermissionGroup).where(PermissionGroup.id == group_id)).scalar_one_or_none()
        if group is None:
            return None
        snap = GroupSnapshot.of(group)
        if self.cache_enabled:
            with self._lock:
                if seen == (self._epoch, self._generations.get(group_id, 0)):
                    self._cache[group_id] = snap
        return snap

    def invalidate(self, group_id: Optional[str] = None):
        with self._lock:
            if group_id is None:
                self._epoch += 1
                self._cache.clear()
            else:
                self._generations[group_id] = self._generations.get(group_id, 0) + 1
                self._cache.pop(group_id, None)

    # --- decisions ---
    def check(self, principal: Optional[Principal], module: str, action: str, session=None) -> Decision:
        if principal is None:
            return Decision(False, 'unknown principal')
        if not principal.active:
            return Decision(False, 'inactive principal')
        if session is None:
            from .. import get_db
            session = get_db()
        group = self._resolve_group(session, principal.permission_group_id)
        if group is None:
            return Decision(False, 'no permission group assigned')
        if group.is_admin:
            return ALLOW
        if module not in MODULE_ACTIONS:
            return Decision(False, f'unknown module: {module}')
        if not is_known(module, action):
            return Decision(False, f'unknown action: {module}.{action}')
        if action in group.grants.get(module, ()):
            return ALLOW
        return Decision(False, f'insufficient permission: {module}.{action}')

    def authorize(self, principal: Optional[Principal], module: str, action: str, session=None) -> AuthorizedContext:
        decision = self.check(principal, module, action, session=session)
        if not decision:
            log.debug('denied %s.%s: %s', module, action, decision.reason)
            raise AuthorizationError(decision.reason, module=module, action=action)
        return AuthorizedContext(principal_id=principal.id, module=module, action=action)

    def effective_permissions(self, principal: Optional[Principal], session=None) -> Dict[str, List[str]]:
        """Flattened grants with ``isAdmin`` resolved; empty for denied principals."""
        if principal is None or not principal.active:
            return {}
        if session is None:
            from .. import get_db
            session = get_db()
        group = self._resolve_group(session, principal.permission_group_id)
        if group is None:
            return {}
        if group.is_admin:
            return full_grants()
        out: Dict[str, List[str]] = {}
        for module in MODULES:
            granted = group.grants.get(module, frozenset())
            actions = [a for a in MODULE_ACTIONS[module] if a in granted]
            if actions:
                out[module] = actions
        return out


def load_principal(session, principal_id) -> Optional[Principal]:
    if principal_id is None:
        return None
    return session.execute(select(Principal).where(Principal.id == str(principal_id))).scalar_one_or_none()
