"""
Locale-aware money amount extraction

The deployment locale fixes the grouping convention. Under a comma-thousands
locale a numeral like ``5,000`` or ``1,234,567`` is always an integer amount.
Numerals written in the opposite convention are still read, but flagged as
ambiguous so callers can lower their confidence.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Optional, Tuple


CENTS = Decimal("0.01")

_NUMERAL = re.compile(r'(?<![\w.,/:#])\d+(?:[.,]\d+)*')

_MONTHS = (
    r'enero|febrero|marzo|abril|mayo|junio|julio|agosto|sept?iembre|octubre|noviembre|diciembre|'
    r'january|february|march|april|may|june|july|august|september|october|november|december'
)

# Units that turn a bare number into a time, duration or date reference
_NON_MONEY_SUFFIX = re.compile(
    r'^\s*(?:%|:\d|/\d|-\d{1,2}[-/]\d|'
    r'(?:am|pm|a\.\s?m\.|p\.\s?m\.|hrs?|horas?|hours?|h\b|min(?:utos?|utes?)?\b|'
    r'd[ií]as?|days?|semanas?|weeks?|meses|months?|años|years?)\b|'
    rf'de\s+(?:la\s+(?:mañana|tarde|noche)|{_MONTHS})\b|'
    rf'(?:{_MONTHS})\b|'
    r'(?:st|nd|rd|th)\b)',
    re.IGNORECASE
)
_NON_MONEY_PREFIX = re.compile(
    r'(?:\b(?:a\s+las?|desde\s+las?|hasta\s+las?|at|from|de\s+las?|el\s+d[ií]a)\s*|\d[/:-])$',
    re.IGNORECASE
)

_CURRENCY_PREFIX = re.compile(r'(US\$|USD|MX\$|MXN|EUR|€|\$)\s*$', re.IGNORECASE)
_CURRENCY_SUFFIX = re.compile(
    r'^\s*(pesos?|mxn|mx|usd|d[oó]lares?|dollars?|eur|euros?|€)(?![a-z])',
    re.IGNORECASE
)

_CURRENCY_CODES = {
    'us$': 'USD', 'usd': 'USD', 'dolar': 'USD', 'dólar': 'USD', 'dolares': 'USD', 'dólares': 'USD',
    'dollar': 'USD', 'dollars': 'USD',
    'mx$': 'MXN', 'mxn': 'MXN', 'mx': 'MXN', 'peso': 'MXN', 'pesos': 'MXN',
    'eur': 'EUR', 'euro': 'EUR', 'euros': 'EUR', '€': 'EUR',
}

# Currencies written with a bare "$" sign
_DOLLAR_SIGN_CURRENCIES = {'MXN', 'USD', 'CAD', 'AUD', 'COP', 'CLP', 'ARS'}


@dataclass
class AmountMatch:
    amount: Decimal
    raw: str
    start: int
    end: int
    currency: Optional[str] = None
    currency_explicit: bool = False
    ambiguous: bool = False


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _to_decimal(integer_part: str, fraction: str = "") -> Decimal:
    return Decimal(f"{integer_part}.{fraction}" if fraction else integer_part)


def parse_numeral(raw: str, thousands_separator: str = ",", decimal_separator: str = ".") -> Tuple[Decimal, bool]:
    """Read one numeral under the locale convention.

    Returns (amount, ambiguous). Resolution order:
      1. ``\\d{1,3}(T\\d{3})+`` is an integer (T = thousands separator)
      2. grouped or plain integer part plus ``D`` and 1-2 decimals
      3. the same shapes in the opposite convention, flagged ambiguous
      4. anything else: digits only, last separator as decimal point when
         followed by 1-2 digits, flagged ambiguous
    """
    t, d = re.escape(thousands_separator), re.escape(decimal_separator)

    if raw.isdigit():
        return quantize(Decimal(raw)), False

    if re.fullmatch(rf'\d{{1,3}}(?:{t}\d{{3}})+', raw):
        return quantize(Decimal(raw.replace(thousands_separator, ''))), False

    match = re.fullmatch(rf'(\d{{1,3}}(?:{t}\d{{3}})*|\d+){d}(\d{{1,2}})', raw)
    if match:
        return quantize(_to_decimal(match.group(1).replace(thousands_separator, ''), match.group(2))), False

    # Opposite convention, e.g. "1.234,56" or "12,50" under comma-thousands
    if not raw.startswith('0' + decimal_separator):
        match = re.fullmatch(rf'(\d{{1,3}}(?:{d}\d{{3}})+)(?:{t}(\d{{1,2}}))?', raw)
        if match:
            return quantize(_to_decimal(match.group(1).replace(decimal_separator, ''), match.group(2) or "")), True

    match = re.fullmatch(rf'(\d+){t}(\d{{1,2}})', raw)
    if match:
        return quantize(_to_decimal(match.group(1), match.group(2))), True

    separators = [i for i, ch in enumerate(raw) if ch in ',.']
    last = separators[-1]
    digits_after = raw[last + 1:]
    if len(digits_after) <= 2:
        integer_part = re.sub(r'\D', '', raw[:last])
        return quantize(_to_decimal(integer_part, digits_after)), True
    return quantize(Decimal(re.sub(r'\D', '', raw))), True


def _is_list_index(text: str, start: int, end: int) -> bool:
    line_start = text.rfind('\n', 0, start) + 1
    if text[line_start:start].strip(' \t-*•·'):
        return False
    return end < len(text) and text[end] in '.)' and (end + 1 == len(text) or text[end + 1].isspace())


def _detect_currency(text: str, start: int, end: int, default_currency: str) -> Tuple[Optional[str], int, int]:
    """Currency marker adjacent to a numeral, and the span it extends the match to"""
    prefix = _CURRENCY_PREFIX.search(text[max(0, start - 5):start])
    if prefix:
        token = prefix.group(1).lower()
        if token == '$':
            currency = default_currency if default_currency in _DOLLAR_SIGN_CURRENCIES else 'USD'
        else:
            currency = _CURRENCY_CODES.get(token, token.upper())
        return currency, start - (len(text[max(0, start - 5):start]) - prefix.start()), end

    suffix = _CURRENCY_SUFFIX.match(text[end:end + 12])
    if suffix:
        return _CURRENCY_CODES.get(suffix.group(1).lower(), 'MXN'), start, end + suffix.end()

    return None, start, end


def find_amounts(text: str, thousands_separator: str = ",", decimal_separator: str = ".",
                 default_currency: str = "MXN") -> List[AmountMatch]:
    """All money-like numerals in text, in order of appearance.

    Numerals that belong to clock times, dates, durations, ordinals or
    list indices are skipped.
    """
    matches = []
    for found in _NUMERAL.finditer(text or ""):
        start, end = found.span()
        raw = found.group(0)

        currency, span_start, span_end = _detect_currency(text, start, end, default_currency)
        if currency is None:
            if _NON_MONEY_SUFFIX.match(text[end:end + 24]):
                continue
            if _NON_MONEY_PREFIX.search(text[max(0, start - 16):start]):
                continue
            if _is_list_index(text, start, end):
                continue

        try:
            amount, ambiguous = parse_numeral(raw, thousands_separator, decimal_separator)
        except InvalidOperation:
            continue

        matches.append(AmountMatch(
            amount=amount,
            raw=text[span_start:span_end],
            start=span_start,
            end=span_end,
            currency=currency or default_currency,
            currency_explicit=currency is not None,
            ambiguous=ambiguous,
        ))
    return matches


def extract_amount(text: str, thousands_separator: str = ",", decimal_separator: str = ".",
                   default_currency: str = "MXN") -> Optional[AmountMatch]:
    """The most likely bill amount: the first currency-marked numeral, else the first numeral"""
    matches = find_amounts(text, thousands_separator, decimal_separator, default_currency)
    if not matches:
        return None
    for match in matches:
        if match.currency_explicit:
            return match
    return matches[0]
