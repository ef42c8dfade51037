from __future__ import annotations
"""Transaction integrity engine for ticket sales, changes and refunds.

Every operation is given an ``AuthorizedContext`` for ``tickets`` or
``accounts`` with the matching action (``add`` / ``edit`` / ``delete``) and
validates a complete candidate record before anything is written:

* creation builds the candidate from the request data;
* ``update`` rebuilds the input shape of the stored entry, merges the patch
  over it and runs the same builder, so a patch can never leave the entry in a
  state creation would have rejected;
* an entry marked ``auditChecked`` is locked until a patch clears the mark,
  and delete refuses it.

Amounts are exact ``Decimal`` values. Profit is only defined when purchase and
sale share one currency; otherwise the result is ``CurrencyMismatch``, which is
a displayable state and not an error.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union
import datetime
import logging

from sqlalchemy import and_, case, func, or_, select
from werkzeug.exceptions import NotFound

from ..constants.permissions import LEDGER_MODULES
from ..errors import LockedEntryError, ValidationError
from ..models.authz import new_id
from ..models.ledger import LedgerEntry, PassengerLine, RemovedEntry
from ..utils.validation import (
    format_amount, normalize_pnr, optional_text, parse_date, parse_decimal, require_text, validate_choice,
)
from .policy import AuthorizedContext
from .store import commit_or_raise

log = logging.getLogger(__name__)

PASSENGER_TYPES = ('adult', 'child', 'infant')
COMMON_FIELDS = {'pnr', 'source', 'beneficiary', 'entryDate', 'notes', 'auditChecked', 'entryChecked'}
KIND_FIELDS = {
    LedgerEntry.KIND_SALE: COMMON_FIELDS | {'currency', 'issueDate', 'passengers'},
    LedgerEntry.KIND_CHANGE: COMMON_FIELDS | {'sourceAmount', 'beneficiaryAmount', 'sourceCurrency',
                                              'beneficiaryCurrency', 'changeDate'},
    LedgerEntry.KIND_REFUND: COMMON_FIELDS | {'currency', 'issueDate', 'purchasePrice', 'salePrice', 'passengerName'},
}


# ---------------- derived results ---------------- #
@dataclass(frozen=True)
class Profit:
    amount: Decimal
    currency: str

    @property
    def is_loss(self) -> bool:
        return self.amount < 0

    def to_json(self) -> Dict[str, Any]:
        return {
            'currencyMismatch': False,
            'profit': format(self.amount, 'f'),
            'profitCurrency': self.currency,
            'profitDisplay': f'{format_amount(self.amount)} {self.currency}',
        }


@dataclass(frozen=True)
class CurrencyMismatch:
    source_currency: str
    beneficiary_currency: str

    def to_json(self) -> Dict[str, Any]:
        return {'currencyMismatch': True}


ProfitResult = Union[Profit, CurrencyMismatch]


def profit_of(entry: LedgerEntry) -> ProfitResult:
    if entry.kind == LedgerEntry.KIND_CHANGE:
        if entry.source_currency != entry.beneficiary_currency:
            return CurrencyMismatch(entry.source_currency, entry.beneficiary_currency)
        currency = entry.source_currency
    else:
        currency = entry.currency
    total = sum((line.sale_price - line.purchase_price for line in entry.passengers), Decimal('0'))
    return Profit(total, currency)


def _line_json(line: PassengerLine, same_currency: bool) -> Dict[str, Any]:
    out = {
        'id': line.id,
        'name': line.name,
        'passportNumber': line.passport_number,
        'passengerType': line.passenger_type,
        'purchasePrice': format(line.purchase_price, 'f'),
        'salePrice': format(line.sale_price, 'f'),
        'ticketNumber': line.ticket_number,
    }
    if same_currency:
        out['profit'] = format(line.sale_price - line.purchase_price, 'f')
    return out


def entry_json(entry: LedgerEntry) -> Dict[str, Any]:
    result = profit_of(entry)
    same_currency = isinstance(result, Profit)
    body: Dict[str, Any] = {
        'id': entry.id,
        'pnr': entry.pnr,
        'kind': entry.kind,
        'source': entry.source,
        'beneficiary': entry.beneficiary,
        'issueDate': entry.issue_date.isoformat(),
        'entryDate': entry.entry_date.isoformat(),
        'notes': entry.notes,
        'auditChecked': entry.audit_checked,
        'entryChecked': entry.entry_checked,
        'createdBy': entry.created_by,
        'updatedAt': entry.updated_at.isoformat() if entry.updated_at else None,
        'passengers': [_line_json(line, same_currency) for line in entry.passengers],
    }
    if entry.kind == LedgerEntry.KIND_CHANGE:
        line = entry.passengers[0]
        body['sourceCurrency'] = entry.source_currency
        body['beneficiaryCurrency'] = entry.beneficiary_currency
        body['sourceAmount'] = format(line.purchase_price, 'f')
        body['beneficiaryAmount'] = format(line.sale_price, 'f')
    else:
        body['currency'] = entry.currency
    body.update(result.to_json())
    return body


def removed_json(row: RemovedEntry) -> Dict[str, Any]:
    return {
        'id': row.id,
        'originalId': row.original_id,
        'removedBy': row.removed_by,
        'removedAt': row.removed_at.isoformat() if row.removed_at else None,
        'snapshot': row.snapshot,
    }


# ---------------- candidate builders ---------------- #
def _flag(data: Dict[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValidationError(f'{key} must be true or false')
    return value


def _common(data: Dict[str, Any], today: datetime.date) -> Dict[str, Any]:
    return {
        'pnr': normalize_pnr(data.get('pnr')),
        'source': require_text(data.get('source'), 'source', max_length=128),
        'beneficiary': require_text(data.get('beneficiary'), 'beneficiary', max_length=128),
        'entry_date': parse_date(data.get('entryDate'), 'entryDate', default=today),
        'notes': optional_text(data.get('notes'), 'notes'),
        'audit_checked': _flag(data, 'auditChecked'),
        'entry_checked': _flag(data, 'entryChecked'),
    }


def _currency(value: Any, field_name: str) -> str:
    if value is None or value == '':
        return 'IQD'
    if isinstance(value, str):
        value = value.strip().upper()
    return validate_choice(value, LedgerEntry.CURRENCIES, field_name)


def _line(raw: Any, index: int) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValidationError(f'passengers[{index}] must be an object')
    label = f'passengers[{index}]'
    return {
        'id': raw.get('id') if isinstance(raw.get('id'), str) else None,
        'name': optional_text(raw.get('name'), f'{label}.name'),
        'passport_number': optional_text(raw.get('passportNumber'), f'{label}.passportNumber'),
        'passenger_type': validate_choice(raw.get('passengerType') or 'adult', PASSENGER_TYPES, f'{label}.passengerType'),
        'purchase_price': parse_decimal(raw.get('purchasePrice'), f'{label}.purchasePrice'),
        'sale_price': parse_decimal(raw.get('salePrice'), f'{label}.salePrice'),
        'ticket_number': optional_text(raw.get('ticketNumber'), f'{label}.ticketNumber'),
    }


def build_sale(data: Dict[str, Any], today: datetime.date) -> Dict[str, Any]:
    out = _common(data, today)
    raw_lines = data.get('passengers')
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError('at least one passenger required')
    out.update({
        'kind': LedgerEntry.KIND_SALE,
        'currency': _currency(data.get('currency'), 'currency'),
        'source_currency': None,
        'beneficiary_currency': None,
        'issue_date': parse_date(data.get('issueDate'), 'issueDate', default=today),
        'passengers': [_line(raw, i) for i, raw in enumerate(raw_lines)],
    })
    return out


def build_change(data: Dict[str, Any], today: datetime.date, line_id: Optional[str] = None) -> Dict[str, Any]:
    out = _common(data, today)
    out.update({
        'kind': LedgerEntry.KIND_CHANGE,
        'currency': None,
        'source_currency': _currency(data.get('sourceCurrency'), 'sourceCurrency'),
        'beneficiary_currency': _currency(data.get('beneficiaryCurrency'), 'beneficiaryCurrency'),
        'issue_date': parse_date(data.get('changeDate'), 'changeDate', default=today),
        'passengers': [{
            'id': line_id,
            'name': 'change',
            'passport_number': '-',
            'passenger_type': 'adult',
            'purchase_price': parse_decimal(data.get('sourceAmount'), 'sourceAmount'),
            'sale_price': parse_decimal(data.get('beneficiaryAmount'), 'beneficiaryAmount'),
            'ticket_number': '-',
        }],
    })
    return out


def build_refund(data: Dict[str, Any], today: datetime.date, line_id: Optional[str] = None) -> Dict[str, Any]:
    out = _common(data, today)
    out.update({
        'kind': LedgerEntry.KIND_REFUND,
        'currency': _currency(data.get('currency'), 'currency'),
        'source_currency': None,
        'beneficiary_currency': None,
        'issue_date': parse_date(data.get('issueDate'), 'issueDate', default=today),
        'passengers': [{
            'id': line_id,
            'name': optional_text(data.get('passengerName'), 'passengerName', default='refund'),
            'passport_number': '-',
            'passenger_type': 'adult',
            'purchase_price': parse_decimal(data.get('purchasePrice'), 'purchasePrice'),
            'sale_price': parse_decimal(data.get('salePrice'), 'salePrice'),
            'ticket_number': '-',
        }],
    })
    return out


def _as_input(entry: LedgerEntry) -> Dict[str, Any]:
    """Inverse of the builders: the request shape that would recreate ``entry``."""
    data: Dict[str, Any] = {
        'pnr': entry.pnr,
        'source': entry.source,
        'beneficiary': entry.beneficiary,
        'entryDate': entry.entry_date,
        'notes': entry.notes,
        'auditChecked': entry.audit_checked,
        'entryChecked': entry.entry_checked,
    }
    line = entry.passengers[0] if entry.passengers else None
    if entry.kind == LedgerEntry.KIND_SALE:
        data.update({
            'currency': entry.currency,
            'issueDate': entry.issue_date,
            'passengers': [
                {
                    'id': p.id, 'name': p.name, 'passportNumber': p.passport_number,
                    'passengerType': p.passenger_type, 'purchasePrice': p.purchase_price,
                    'salePrice': p.sale_price, 'ticketNumber': p.ticket_number,
                }
                for p in entry.passengers
            ],
        })
    elif entry.kind == LedgerEntry.KIND_CHANGE:
        data.update({
            'sourceCurrency': entry.source_currency,
            'beneficiaryCurrency': entry.beneficiary_currency,
            'changeDate': entry.issue_date,
            'sourceAmount': line.purchase_price if line else None,
            'beneficiaryAmount': line.sale_price if line else None,
        })
    else:
        data.update({
            'currency': entry.currency,
            'issueDate': entry.issue_date,
            'purchasePrice': line.purchase_price if line else None,
            'salePrice': line.sale_price if line else None,
            'passengerName': line.name if line else None,
        })
    return data


class TransactionIntegrityEngine:
    def __init__(self, session=None, clock=None):
        if session is None:
            from .. import get_db
            session = get_db()
        self.session = session
        self._clock = clock or datetime.date.today

    # ---------------- reads ---------------- #
    def get(self, entry_id: str) -> Optional[LedgerEntry]:
        return self.session.get(LedgerEntry, entry_id)

    def list_entries(self, ctx: AuthorizedContext, *, kind: Optional[str] = None, currency: Optional[str] = None,
                     search: Optional[str] = None, date_from: Optional[datetime.date] = None,
                     date_to: Optional[datetime.date] = None, audit_checked: Optional[bool] = None,
                     entry_checked: Optional[bool] = None, limit: int = 50,
                     offset: int = 0) -> Tuple[List[LedgerEntry], int]:
        ctx.require(LEDGER_MODULES, 'view')
        q = select(LedgerEntry)
        if kind:
            q = q.where(LedgerEntry.kind == validate_choice(kind, LedgerEntry.ALL_KINDS, 'kind'))
        if currency:
            currency = validate_choice(currency.upper(), LedgerEntry.CURRENCIES, 'currency')
            q = q.where(or_(
                LedgerEntry.currency == currency,
                LedgerEntry.source_currency == currency,
                LedgerEntry.beneficiary_currency == currency,
            ))
        if date_from:
            q = q.where(LedgerEntry.entry_date >= date_from)
        if date_to:
            q = q.where(LedgerEntry.entry_date <= date_to)
        if audit_checked is not None:
            q = q.where(LedgerEntry.audit_checked.is_(audit_checked))
        if entry_checked is not None:
            q = q.where(LedgerEntry.entry_checked.is_(entry_checked))
        if search:
            term = f'%{search.strip()}%'
            passenger_match = select(PassengerLine.id).where(
                PassengerLine.entry_id == LedgerEntry.id,
                or_(PassengerLine.name.ilike(term), PassengerLine.passport_number.ilike(term)),
            ).exists()
            q = q.where(or_(
                LedgerEntry.pnr.ilike(term),
                LedgerEntry.source.ilike(term),
                LedgerEntry.beneficiary.ilike(term),
                passenger_match,
            ))
        total = self.session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
        rows = self.session.execute(
            q.order_by(LedgerEntry.entry_date.desc(), LedgerEntry.created_at.desc(), LedgerEntry.id.asc())
            .offset(offset).limit(limit)
        ).scalars().all()
        return rows, total

    def stats(self, ctx: AuthorizedContext) -> Dict[str, Dict[str, int]]:
        """Per-kind counters: total, audited, entered, and pending (missing either mark)."""
        ctx.require(LEDGER_MODULES, 'view')
        audited = case((LedgerEntry.audit_checked.is_(True), 1), else_=0)
        entered = case((LedgerEntry.entry_checked.is_(True), 1), else_=0)
        pending = case((and_(LedgerEntry.audit_checked.is_(True), LedgerEntry.entry_checked.is_(True)), 0), else_=1)
        rows = self.session.execute(
            select(LedgerEntry.kind, func.count(), func.sum(audited), func.sum(entered), func.sum(pending))
            .group_by(LedgerEntry.kind)
        ).all()
        out = {kind: {'total': 0, 'auditChecked': 0, 'entryChecked': 0, 'pending': 0}
               for kind in LedgerEntry.ALL_KINDS}
        for kind, total, audit_count, entry_count, pending_count in rows:
            out[kind] = {
                'total': total,
                'auditChecked': int(audit_count or 0),
                'entryChecked': int(entry_count or 0),
                'pending': int(pending_count or 0),
            }
        return out

    def list_removed(self, ctx: AuthorizedContext, *, limit: int = 50,
                     offset: int = 0) -> Tuple[List[RemovedEntry], int]:
        """Archive of deleted entries, newest removal first."""
        ctx.require(LEDGER_MODULES, 'view')
        total = self.session.execute(select(func.count()).select_from(RemovedEntry)).scalar_one()
        rows = self.session.execute(
            select(RemovedEntry).order_by(RemovedEntry.id.desc()).offset(offset).limit(limit)
        ).scalars().all()
        return rows, total

    # ---------------- writes ---------------- #
    def create_sale(self, ctx: AuthorizedContext, data: Dict[str, Any]) -> LedgerEntry:
        ctx.require(LEDGER_MODULES, 'add')
        return self._insert(ctx, build_sale(data or {}, self._clock()))

    def create_change(self, ctx: AuthorizedContext, data: Dict[str, Any]) -> LedgerEntry:
        ctx.require(LEDGER_MODULES, 'add')
        return self._insert(ctx, build_change(data or {}, self._clock()))

    def create_refund(self, ctx: AuthorizedContext, data: Dict[str, Any]) -> LedgerEntry:
        ctx.require(LEDGER_MODULES, 'add')
        return self._insert(ctx, build_refund(data or {}, self._clock()))

    def update(self, ctx: AuthorizedContext, entry_id: str, patch: Dict[str, Any]) -> LedgerEntry:
        ctx.require(LEDGER_MODULES, 'edit')
        if not isinstance(patch, dict):
            raise ValidationError('patch must be an object')
        entry = self.get(entry_id)
        if entry is None:
            raise NotFound('entry not found')
        patch = dict(patch)
        kind = patch.pop('kind', entry.kind)
        if kind != entry.kind:
            raise ValidationError('kind cannot be changed')
        patch.pop('id', None)
        unknown = set(patch) - KIND_FIELDS[entry.kind]
        if unknown:
            raise ValidationError(f'unknown fields for {entry.kind}: {sorted(unknown)}')
        if entry.audit_checked and set(patch) - {'auditChecked'}:
            raise LockedEntryError('audited entry is locked; clear auditChecked first')
        merged = _as_input(entry)
        merged.update(patch)
        today = self._clock()
        line_id = entry.passengers[0].id if entry.passengers else None
        if entry.kind == LedgerEntry.KIND_SALE:
            candidate = build_sale(merged, today)
        elif entry.kind == LedgerEntry.KIND_CHANGE:
            candidate = build_change(merged, today, line_id=line_id)
        else:
            candidate = build_refund(merged, today, line_id=line_id)
        unlocking = entry.audit_checked and not candidate['audit_checked']
        # candidate is fully valid; only now touch the persisted row
        self._apply(entry, candidate)
        commit_or_raise(self.session, missing='entry not found')
        if unlocking:
            log.warning('ledger entry %s audit mark cleared by %s', entry.id, ctx.principal_id)
        log.info('ledger entry %s updated by %s', entry.id, ctx.principal_id)
        return entry

    def delete(self, ctx: AuthorizedContext, entry_id: str) -> bool:
        """Remove an entry; a missing entry counts as already deleted (returns False).

        Audited entries are locked and must have ``auditChecked`` cleared first.
        """
        ctx.require(LEDGER_MODULES, 'delete')
        entry = self.get(entry_id)
        if entry is None:
            return False
        if entry.audit_checked:
            raise LockedEntryError('audited entry cannot be deleted; clear auditChecked first')
        self.session.add(RemovedEntry(original_id=entry.id, snapshot=entry_json(entry), removed_by=ctx.principal_id))
        self.session.delete(entry)
        try:
            commit_or_raise(self.session, missing='entry not found')
        except NotFound:
            # removed concurrently; same outcome as deleting a missing entry
            return False
        log.info('ledger entry %s removed by %s', entry_id, ctx.principal_id)
        return True

    # ---------------- internals ---------------- #
    def _insert(self, ctx: AuthorizedContext, candidate: Dict[str, Any]) -> LedgerEntry:
        entry = LedgerEntry(created_by=ctx.principal_id)
        self._apply(entry, candidate)
        self.session.add(entry)
        commit_or_raise(self.session)
        log.info('ledger %s entry %s created by %s', entry.kind, entry.id, ctx.principal_id)
        return entry

    def _apply(self, entry: LedgerEntry, candidate: Dict[str, Any]):
        for key in ('pnr', 'kind', 'source', 'beneficiary', 'currency', 'source_currency', 'beneficiary_currency',
                    'issue_date', 'entry_date', 'notes', 'audit_checked', 'entry_checked'):
            setattr(entry, key, candidate[key])
        existing = {line.id: line for line in entry.passengers}
        lines: List[PassengerLine] = []
        for position, wanted in enumerate(candidate['passengers']):
            line = existing.pop(wanted['id'], None) if wanted['id'] else None
            if line is None:
                line = PassengerLine(id=new_id())
            line.position = position
            line.name = wanted['name']
            line.passport_number = wanted['passport_number']
            line.passenger_type = wanted['passenger_type']
            line.purchase_price = wanted['purchase_price']
            line.sale_price = wanted['sale_price']
            line.ticket_number = wanted['ticket_number']
            lines.append(line)
        entry.passengers = lines
