from __future__ import annotations
"""Transaction boundary helpers shared by the services.

A failed commit always rolls the session back so no partial write survives.
Constraint violations surface as ``ValidationError``; connection or driver
failures as ``StoreUnavailableError`` (the caller decides whether to retry). A
row that vanished under a concurrent delete surfaces as ``NotFound``.
"""
from typing import Optional
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import NotFound

from ..errors import StoreUnavailableError, ValidationError

log = logging.getLogger(__name__)


def commit_or_raise(session, conflict: Optional[str] = None, missing: str = 'record not found'):
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError(conflict or 'conflicting record')
    except StaleDataError:
        session.rollback()
        raise NotFound(missing)
    except DBAPIError:
        session.rollback()
        log.exception('store unavailable during commit')
        raise StoreUnavailableError('store unavailable, retry later')
    except SQLAlchemyError:
        session.rollback()
        raise
