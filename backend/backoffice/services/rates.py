from __future__ import annotations
"""Append-only USD/IQD exchange-rate history for display.

Ledger math never reads these rates; every entry stays in its own currency.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
import datetime

from sqlalchemy import select

from ..errors import ValidationError
from ..models.exchange_rate import ExchangeRate
from ..utils.validation import parse_decimal
from .policy import AuthorizedContext
from .store import commit_or_raise

DEFAULT_POINTS = 30
MAX_POINTS = 365


class ExchangeRateHistory:
    def __init__(self, session=None, max_points: int = MAX_POINTS):
        if session is None:
            from .. import get_db
            session = get_db()
        self.session = session
        self.max_points = max_points

    def record_rate(self, ctx: AuthorizedContext, rate) -> ExchangeRate:
        ctx.require('accounts', 'currency')
        value = parse_decimal(rate, 'rate', strictly_positive=True)
        row = ExchangeRate(
            rate=value,
            recorded_at=datetime.datetime.now(datetime.timezone.utc),
            recorded_by=ctx.principal_id,
        )
        self.session.add(row)
        commit_or_raise(self.session)
        return row

    def current_rate(self) -> Optional[ExchangeRate]:
        return self.session.execute(
            select(ExchangeRate).order_by(ExchangeRate.recorded_at.desc(), ExchangeRate.id.desc()).limit(1)
        ).scalar_one_or_none()

    def history(self, points: int = DEFAULT_POINTS) -> List[ExchangeRate]:
        """Most recent ``points`` entries, oldest first."""
        if not isinstance(points, int) or points < 1:
            raise ValidationError('points must be a positive integer')
        points = min(points, self.max_points)
        rows = self.session.execute(
            select(ExchangeRate).order_by(ExchangeRate.recorded_at.desc(), ExchangeRate.id.desc()).limit(points)
        ).scalars().all()
        return list(reversed(rows))

    def trend(self, points: int = DEFAULT_POINTS) -> Optional[dict]:
        rows = self.history(points)
        if len(rows) < 2:
            return None
        old, new = rows[0].rate, rows[-1].rate
        change = (new - old) / old * 100
        return {
            'percentage': str(abs(change).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)),
            'isPositive': change >= 0,
        }


def rate_json(row: ExchangeRate) -> dict:
    return {
        'id': row.id,
        'rate': format(row.rate, 'f'),
        'recordedAt': row.recorded_at.isoformat() if row.recorded_at else None,
    }
