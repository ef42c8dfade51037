from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, Date, DateTime, ForeignKey, JSON, func
from sqlalchemy.ext.orderinglist import ordering_list
from typing import Optional, List
import datetime
from .authz import Base, new_id
from .types import Money


class LedgerEntry(Base):
    __tablename__ = 'ledger_entries'
    # Lifecycle: (client-side draft) -> persisted -> removed (terminal, row deleted + archived)
    KIND_SALE = 'sale'
    KIND_CHANGE = 'change'
    KIND_REFUND = 'refund'
    ALL_KINDS = (KIND_SALE, KIND_CHANGE, KIND_REFUND)
    CURRENCIES = ('IQD', 'USD')

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    pnr: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(128), nullable=False)
    beneficiary: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # single-currency records (sale/refund)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True, index=True)
    # dual-currency change records
    source_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    beneficiary_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    issue_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    entry_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default='')
    audit_checked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    entry_checked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    passengers: Mapped[List['PassengerLine']] = relationship(
        'PassengerLine',
        back_populates='entry',
        order_by='PassengerLine.position',
        collection_class=ordering_list('position'),
        cascade='all, delete-orphan',
        lazy='selectin',
    )
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PassengerLine(Base):
    __tablename__ = 'passenger_lines'
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    entry_id: Mapped[str] = mapped_column(ForeignKey('ledger_entries.id', ondelete='CASCADE'), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default='')
    passport_number: Mapped[str] = mapped_column(String(64), nullable=False, default='')
    passenger_type: Mapped[str] = mapped_column(String(16), nullable=False, default='adult')
    purchase_price = mapped_column(Money, nullable=False)
    sale_price = mapped_column(Money, nullable=False)
    ticket_number: Mapped[str] = mapped_column(String(64), nullable=False, default='')
    entry = relationship('LedgerEntry', back_populates='passengers')


class RemovedEntry(Base):
    """Archive of deleted ledger entries (snapshot as serialized at delete time)."""
    __tablename__ = 'removed_ledger_entries'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    original_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    removed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    removed_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

__all__ = ['LedgerEntry', 'PassengerLine', 'RemovedEntry']
