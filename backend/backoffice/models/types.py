from __future__ import annotations
"""Column types shared by the ledger models.

``Money`` keeps amounts as exact decimals on every backend. SQLite has no
native decimal type and would round-trip ``Numeric`` through binary floats, so
the value is persisted as its canonical string and parsed back on load.
"""
from decimal import Decimal
from sqlalchemy.types import TypeDecorator, String


class Money(TypeDecorator):
    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return format(value, 'f')

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)

__all__ = ['Money']
