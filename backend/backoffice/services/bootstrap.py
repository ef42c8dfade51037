from __future__ import annotations
"""First super-admin initialization.

``is_empty`` is the only check that may run before any principal (and so any
authorization) exists. ``initialize`` serializes concurrent attempts through a
create-if-absent sentinel row: the first transaction to insert
``system_state.key == 'bootstrap'`` wins, every other one fails on the primary
key and reports ``already initialized``.

The credential, the ``super_admin`` group and the principal are committed
together. If anything fails after the credential was created the transaction
is rolled back and the credential is deleted as compensation; the raised
``InitializationError`` says which stage failed and whether a credential was
left behind.
"""
from typing import Optional
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from ..constants.permissions import CATALOG_VERSION, SUPER_ADMIN_GROUP_ID, SUPER_ADMIN_GROUP_NAME, full_grants
from ..errors import InitializationError, ValidationError
from ..models.authz import PermissionGroup, Principal, SystemState
from ..utils.validation import normalize_email, require_text
from .identity import IdentityProvider, validate_password

log = logging.getLogger(__name__)

BOOTSTRAP_KEY = 'bootstrap'


class BootstrapInitializer:
    def __init__(self, session=None, identity: Optional[IdentityProvider] = None, authz=None):
        if session is None:
            from .. import get_db
            session = get_db()
        self.session = session
        self.identity = identity or IdentityProvider(session)
        self.authz = authz

    def is_empty(self) -> bool:
        count = self.session.execute(select(func.count()).select_from(Principal)).scalar_one()
        return count == 0

    def initialize(self, email, password, name) -> Principal:
        email = normalize_email(email)
        name = require_text(name, 'name', max_length=128)
        validate_password(password)
        session = self.session

        # 1. claim the sentinel (first statement of the transaction)
        try:
            sentinel = SystemState(key=BOOTSTRAP_KEY)
            session.add(sentinel)
            session.flush()
        except IntegrityError:
            session.rollback()
            raise InitializationError('already initialized', stage='claim')
        except OperationalError:
            session.rollback()
            raise InitializationError('initialization in progress, check again and retry', stage='claim')

        if not self.is_empty():
            # principals created by other means (seed/import) without the sentinel
            session.rollback()
            raise InitializationError('already initialized', stage='claim')

        # 2. identity credential
        try:
            credential_id = self.identity.create_credential(email, password)
        except ValidationError:
            session.rollback()
            raise
        except SQLAlchemyError:
            session.rollback()
            log.exception('bootstrap credential creation failed')
            raise InitializationError('could not create credential', stage='credential')

        # 3. super_admin group + principal, committed with the sentinel
        try:
            group = session.get(PermissionGroup, SUPER_ADMIN_GROUP_ID)
            if group is None:
                group = PermissionGroup(id=SUPER_ADMIN_GROUP_ID, name=SUPER_ADMIN_GROUP_NAME)
                session.add(group)
            elif not group.is_admin:
                log.warning('existing super_admin group lacked isAdmin; restoring before bootstrap')
            group.is_admin = True
            group.grants = full_grants()
            group.catalog_version = CATALOG_VERSION
            principal = Principal(
                name=name,
                email=email,
                credential_id=credential_id,
                permission_group_id=SUPER_ADMIN_GROUP_ID,
                active=True,
            )
            session.add(principal)
            session.flush()
            sentinel.principal_id = principal.id
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            log.exception('bootstrap principal/group write failed')
            orphaned = not self._compensate(credential_id)
            raise InitializationError(
                'could not create administrator; retry after checking system status',
                stage='principal',
                credential_id=credential_id,
                orphaned_credential=orphaned,
            )

        if self.authz is not None:
            self.authz.invalidate(SUPER_ADMIN_GROUP_ID)
        log.info('system initialized with first administrator %s', principal.id)
        return principal

    def _compensate(self, credential_id: str) -> bool:
        """Delete a credential created before a failed write. True when nothing is left behind."""
        try:
            self.identity.delete_credential(credential_id)
            self.session.commit()
            return True
        except SQLAlchemyError:
            self.session.rollback()
            log.exception('could not remove credential %s after failed bootstrap', credential_id)
            return False
