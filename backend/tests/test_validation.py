import datetime
from decimal import Decimal
import pytest
from backoffice.config.pagination import normalize_pagination, page_meta
from backoffice.constants.permissions import GROUP_PRESETS, catalog_problems, normalize_grants
from backoffice.errors import ValidationError
from backoffice.utils.validation import (
    format_amount, normalize_email, normalize_pnr, optional_text, parse_date, parse_decimal, require_text,
)


@pytest.mark.parametrize('raw,expected', [
    ('12.50', Decimal('12.50')),
    (0.1, Decimal('0.1')),
    (7, Decimal('7')),
    (Decimal('3.333'), Decimal('3.333')),
])
def test_parse_decimal_accepts(raw, expected):
    assert parse_decimal(raw, 'amount') == expected


@pytest.mark.parametrize('raw', [None, '', True, 'NaN', 'Infinity', 'ten', [], '-0.01'])
def test_parse_decimal_rejects(raw):
    with pytest.raises(ValidationError):
        parse_decimal(raw, 'amount')


@pytest.mark.parametrize('raw,message', [
    ('1e200000', 'amount too large (max 15 integer digits)'),
    ('1e999999999', 'amount too large (max 15 integer digits)'),
    ('1000000000000000', 'amount too large (max 15 integer digits)'),
    ('0.00001', 'amount has too many decimal places (max 4)'),
    ('1e-999999999', 'amount has too many decimal places (max 4)'),
])
def test_parse_decimal_bounds(raw, message):
    with pytest.raises(ValidationError) as exc:
        parse_decimal(raw, 'amount')
    assert exc.value.description == message


def test_parse_decimal_trims_exponent_forms():
    assert format(parse_decimal('999999999999999.9999', 'amount'), 'f') == '999999999999999.9999'
    assert format(parse_decimal('1E+3', 'amount'), 'f') == '1000'
    assert format(parse_decimal('0E+99999', 'amount'), 'f') == '0'
    assert format(parse_decimal('0E-99999', 'amount'), 'f') == '0.0000'
    assert format(parse_decimal('12.50000000', 'amount'), 'f') == '12.5000'


def test_parse_decimal_strictly_positive():
    with pytest.raises(ValidationError) as exc:
        parse_decimal('0', 'rate', strictly_positive=True)
    assert exc.value.description == 'rate must be > 0'


def test_parse_date():
    default = datetime.date(2026, 1, 1)
    assert parse_date(None, 'entryDate', default=default) == default
    assert parse_date('2026-05-04', 'entryDate') == datetime.date(2026, 5, 4)
    assert parse_date('2026-05-04T23:10:00.000Z', 'entryDate') == datetime.date(2026, 5, 4)
    assert parse_date(datetime.datetime(2026, 5, 4, 8, 0), 'entryDate') == datetime.date(2026, 5, 4)
    with pytest.raises(ValidationError):
        parse_date('04/05/2026', 'entryDate')
    with pytest.raises(ValidationError):
        parse_date(None, 'entryDate')


def test_format_amount_rounds_half_up():
    assert format_amount(Decimal('2.345')) == '2.35'
    assert format_amount(Decimal('-50')) == '-50.00'
    assert format_amount(Decimal('0.004')) == '0.00'


def test_text_helpers():
    assert require_text('  Ali ', 'name') == 'Ali'
    assert normalize_pnr(' ab12cd ') == 'AB12CD'
    assert optional_text(None, 'notes') == ''
    assert normalize_email(' Ali@Example.COM ') == 'ali@example.com'
    with pytest.raises(ValidationError):
        require_text('x' * 10, 'name', max_length=5)
    with pytest.raises(ValidationError):
        normalize_email('ali@localhost')
    with pytest.raises(ValidationError):
        optional_text(12, 'notes')


def test_catalog_problems_and_normalization():
    assert catalog_problems({'tickets': ['view']}) == []
    assert catalog_problems({'rockets': ['view']}) == ["unknown module 'rockets'"]
    assert catalog_problems({'tickets': 'view'}) == ["actions for 'tickets' must be a list"]
    assert catalog_problems(['tickets']) == ['grants must be an object of module -> actions']
    assert normalize_grants({'tickets': ['delete', 'view', 'view'], 'reports': []}) == {'tickets': ['view', 'delete']}


def test_group_presets_are_valid():
    for preset in GROUP_PRESETS.values():
        assert catalog_problems(preset['grants']) == []


def test_normalize_pagination():
    assert normalize_pagination(None, None) == (50, 0)
    assert normalize_pagination('500', '-3') == (200, 0)
    assert normalize_pagination('', '5') == (50, 5)
    with pytest.raises(ValidationError):
        normalize_pagination('ten', None)
    assert page_meta(7, 5, 0, 5) == {'total': 7, 'limit': 5, 'offset': 0, 'returned': 5}
