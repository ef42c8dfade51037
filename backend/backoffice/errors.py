"""Domain error taxonomy.

Every error is a werkzeug ``HTTPException`` so the application's unified error
handler renders it as ``{"error": {"status", "title", "detail"}}`` without any
per-route translation. Services raise them directly, the same way the
validation helpers used to ``abort(400)``.

Messages are meant for operators: they name the field or permission involved
but never internal identifiers.
"""
from __future__ import annotations
from typing import Optional
from werkzeug.exceptions import HTTPException


class BackofficeError(HTTPException):
    code = 500
    name = 'Back-office Error'

    def __init__(self, description: Optional[str] = None):
        super().__init__(description=description)


class ValidationError(BackofficeError):
    """Malformed or incomplete input; the operator can correct and resubmit."""
    code = 400
    name = 'Validation Error'


class AuthenticationError(BackofficeError):
    code = 401
    name = 'Authentication Failed'

    def __init__(self, description: Optional[str] = None):
        # Never reveal which of email/password was wrong
        super().__init__(description or 'invalid credentials')


class AuthorizationError(BackofficeError):
    code = 403
    name = 'Permission Denied'

    def __init__(self, description: Optional[str] = None, module: Optional[str] = None, action: Optional[str] = None):
        self.module = module
        self.action = action
        if description is None and module and action:
            description = f'insufficient permission: {module}.{action}'
        super().__init__(description or 'permission denied')


class InitializationError(BackofficeError):
    """Bootstrap race, re-invocation or partial failure.

    ``stage`` names the step that failed, ``credential_id`` the identity that
    was created before the failure (if any) and ``orphaned_credential`` is true
    only when the compensating delete also failed and manual cleanup is needed.
    """
    code = 409
    name = 'Initialization Failed'

    def __init__(self, description: Optional[str] = None, *, stage: Optional[str] = None,
                 credential_id: Optional[str] = None, orphaned_credential: bool = False):
        self.stage = stage
        self.credential_id = credential_id
        self.orphaned_credential = orphaned_credential
        super().__init__(description or 'initialization failed')


class LockedEntryError(BackofficeError):
    """The ledger entry has passed audit; only clearing ``auditChecked`` may touch it."""
    code = 409
    name = 'Entry Locked'


class StoreUnavailableError(BackofficeError):
    """Transient store failure. Callers retry with backoff; nothing is retried internally."""
    code = 503
    name = 'Store Unavailable'


__all__ = [
    'BackofficeError', 'ValidationError', 'AuthenticationError', 'AuthorizationError',
    'InitializationError', 'LockedEntryError', 'StoreUnavailableError',
]
