from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, DateTime, func
from typing import Optional
import datetime
from .authz import Base
from .types import Money


class ExchangeRate(Base):
    """Append-only USD->IQD rate history; the newest row is the current rate."""
    __tablename__ = 'exchange_rates'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rate = mapped_column(Money, nullable=False)
    recorded_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True, server_default=func.now())
    recorded_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

__all__ = ['ExchangeRate']
