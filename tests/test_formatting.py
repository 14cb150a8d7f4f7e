from datetime import date, datetime
from decimal import Decimal

import pytest

from preventivi.domain.errors import FormattingError
from preventivi.domain.formatting import format_currency, format_date, line_total, raw_quantity


def test_format_currency_italian():
    assert format_currency(20) == "20,00 €"
    assert format_currency(1234.5) == "1.234,50 €"
    assert format_currency(1234567.891) == "1.234.567,89 €"
    assert format_currency(Decimal("10.1")) == "10,10 €"
    assert format_currency("12.5") == "12,50 €"


def test_format_currency_rounding_and_sign():
    assert format_currency(0.005) == "0,01 €"
    assert format_currency(2.675) == "2,68 €"
    assert format_currency(-3.5) == "-3,50 €"
    assert format_currency(-0.001) == "0,00 €"


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), None, True, "abc", [1]])
def test_format_currency_rejects_invalid(bad):
    with pytest.raises(FormattingError):
        format_currency(bad)


def test_format_date():
    assert format_date(date(2025, 1, 5)) == "05/01/2025"
    assert format_date(datetime(2024, 12, 31, 23, 59)) == "31/12/2024"
    assert format_date("2025-03-09") == "09/03/2025"
    assert format_date("2025-03-09T10:00:00Z") == "09/03/2025"


@pytest.mark.parametrize("bad", ["2025-02-30", "not a date", None, 20250101])
def test_format_date_rejects_invalid(bad):
    with pytest.raises(FormattingError):
        format_date(bad)


def test_raw_quantity_and_line_total():
    assert raw_quantity(2.0) == 2 and isinstance(raw_quantity(2.0), int)
    assert raw_quantity(1.5) == 1.5
    assert line_total(3, 0.1) == Decimal("0.3")
    with pytest.raises(FormattingError):
        raw_quantity(float("nan"))
