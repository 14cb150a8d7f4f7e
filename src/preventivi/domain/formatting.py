"""
@file formatting.py
@brief Formattazione valuta/data/quantità secondo le convenzioni italiane.
@ingroup domain_module

@details
Funzioni pure: nessuno stato, nessuna dipendenza dal locale di sistema.
Input non validi (NaN, infiniti, date impossibili) sollevano FormattingError
invece di produrre stringhe tipo "NaN" nel documento.
"""

from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import FormattingError

CURRENCY_SYMBOL = "€"
_CENTS = Decimal("0.01")


def _to_decimal(value: Any) -> Decimal:
    """
    @brief Converte un valore numerico in Decimal finito.
    @throws FormattingError se il valore è None, bool, non numerico o non finito.
    """
    if value is None or isinstance(value, bool):
        raise FormattingError(f"Valore numerico non valido: {value!r}", value)
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, (int, float, str)):
        try:
            # 0.1 -> Decimal("0.1"), non 0.1000000000000000055...
            d = Decimal(str(value).strip())
        except InvalidOperation:
            raise FormattingError(f"Valore numerico non valido: {value!r}", value) from None
    else:
        raise FormattingError(f"Tipo non numerico: {type(value).__name__}", value)
    if not d.is_finite():
        raise FormattingError(f"Valore numerico non finito: {value!r}", value)
    return d


def _group_it(d: Decimal, decimals: int) -> str:
    # 1,234.56 -> 1.234,56
    s = f"{d:,.{decimals}f}"
    return s.replace(",", "\x00").replace(".", ",").replace("\x00", ".")


def format_currency(amount: Any) -> str:
    """
    @brief Formatta un importo in euro: 1234.5 -> '1.234,50 €'.
    @param amount int, float, Decimal o stringa numerica.
    @return Stringa con separatore migliaia '.', decimali ',' e simbolo in coda.
    @throws FormattingError per None, NaN, infiniti o valori non numerici.
    """
    d = _to_decimal(amount).quantize(_CENTS, rounding=ROUND_HALF_UP)
    if d == 0:
        d = abs(d)  # niente "-0,00 €"
    return f"{_group_it(d, 2)} {CURRENCY_SYMBOL}"


def raw_quantity(value: Any) -> int | float:
    """
    @brief Quantità numerica grezza: 2.0 -> 2, 1.5 -> 1.5.
    @throws FormattingError per NaN, infiniti o valori non numerici.
    """
    d = _to_decimal(value)
    if d == d.to_integral_value():
        return int(d)
    return float(d)


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    """
    @brief Totale riga esatto (quantity * unit_price) in Decimal.
    """
    return _to_decimal(quantity) * _to_decimal(unit_price)


def format_date(value: Any) -> str:
    """
    @brief Formatta una data come DD/MM/YYYY.
    @param value date, datetime (l'orario viene ignorato) o stringa ISO 'YYYY-MM-DD[...]'.
    @return Data con giorno e mese a due cifre e anno a quattro.
    @throws FormattingError se la data non è valida.
    """
    if isinstance(value, datetime):
        d = value.date()
    elif isinstance(value, date):
        d = value
    elif isinstance(value, str):
        try:
            d = date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise FormattingError(f"Data non valida: {value!r}", value) from None
    else:
        raise FormattingError(f"Data non valida: {value!r}", value)
    return f"{d.day:02d}/{d.month:02d}/{d.year:04d}"
