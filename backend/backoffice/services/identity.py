from __future__ import annotations
"""Identity-credential provider backed by the ``credentials`` table.

Only the password hash (werkzeug) is stored. ``sign_in`` fails with the same
generic ``AuthenticationError`` for an unknown email, a wrong password or an
inactive principal.
"""
from typing import Optional
import logging

from sqlalchemy import select, delete

from ..errors import AuthenticationError, ValidationError
from ..models.authz import Credential, Principal
from ..utils.validation import normalize_email

log = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def validate_password(password) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'password must be at least {MIN_PASSWORD_LENGTH} characters')
    return password


class IdentityProvider:
    """Writes into the caller's session; the caller owns the transaction boundary."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        if self._session is None:
            from .. import get_db
            self._session = get_db()
        return self._session

    def create_credential(self, email: str, password: str) -> str:
        email = normalize_email(email)
        validate_password(password)
        if self.session.execute(select(Credential).where(Credential.email == email)).scalar_one_or_none():
            raise ValidationError('email already registered')
        cred = Credential(email=email, password_hash='')
        cred.set_password(password)
        self.session.add(cred)
        self.session.flush()
        return cred.id

    def delete_credential(self, credential_id: Optional[str]) -> bool:
        if not credential_id:
            return False
        result = self.session.execute(delete(Credential).where(Credential.id == credential_id))
        return bool(result.rowcount)

    def sign_in(self, email, password) -> str:
        if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
            raise AuthenticationError()
        email = email.strip().lower()
        cred = self.session.execute(select(Credential).where(Credential.email == email)).scalar_one_or_none()
        if cred is None or not cred.verify_password(password):
            raise AuthenticationError()
        principal = self.session.execute(select(Principal).where(Principal.credential_id == cred.id)).scalar_one_or_none()
        if principal is None or not principal.active:
            raise AuthenticationError()
        return principal.id
