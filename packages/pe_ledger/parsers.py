"""Pure value parsers for spreadsheet cells: dates, amounts and currencies.

All parsers are total: malformed input yields ``None`` and never raises, so a
single bad cell can never abort a batch. Callers turn ``None`` into an
:class:`~pe_ledger.models.Issue` where it matters.

Date resolution order
---------------------
1. ``date``/``datetime`` cells and spreadsheet serial-day numbers (1900 date
   system, including its phantom 1900-02-29, so serial 1 is 1900-01-01).
2. ISO ``YYYY-MM-DD`` (also ``/`` or ``.`` separators, optional time part).
3. Slash-style ``A/B/YYYY``: an explicit ``preferred_format`` wins when it
   yields a valid date; otherwise a position greater than 12 is the day; when
   both are ``<= 12`` the value is read day-first.
4. A handful of generic text formats (``15 Mar 2024``, ``March 15, 2024``).
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

# Day 0 of the 1900 system as spreadsheets count it (accounts for the
# non-existent 1900-02-29 for every serial after 60).
_SERIAL_EPOCH = date(1899, 12, 30)
_SERIAL_MAX = 100_000

_ISO_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[T\s].*)?$")
_SLASH_RE = re.compile(r"^(\d{1,2})([/.\-])(\d{1,2})\2(\d{4}|\d{2})(?:\s.*)?$")
_NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)?$")

_TEXT_FORMATS: tuple[str, ...] = (
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%d %b %y",
    "%Y%m%d",
    "%a, %d %b %Y",
    "%A, %B %d, %Y",
)


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        # Same pivot as strptime's %y.
        year += 2000 if year < 69 else 1900
    return year


def _from_serial(serial: float) -> date | None:
    if math.isnan(serial) or math.isinf(serial):
        return None
    if not (0 < serial < _SERIAL_MAX):
        return None
    return _SERIAL_EPOCH + timedelta(days=int(serial))


def _from_slash(a: int, b: int, year: int, preferred_format: str | None) -> date | None:
    fmt = (preferred_format or "").strip().upper()
    if fmt.startswith("DD"):
        hit = _safe_date(year, b, a)
        if hit is not None:
            return hit
    elif fmt.startswith("MM"):
        hit = _safe_date(year, a, b)
        if hit is not None:
            return hit

    if a > 12 and b <= 12:
        return _safe_date(year, b, a)
    if b > 12 and a <= 12:
        return _safe_date(year, a, b)
    # Both positions <= 12 (or both invalid): day-first.
    return _safe_date(year, b, a)


def parse_date(value: Any, preferred_format: str | None = None) -> str | None:
    """Parse a spreadsheet date cell into ``YYYY-MM-DD``.

    Parameters
    ----------
    value:
        Raw cell value: ``str``, ``int``/``float`` serial, ``date`` or
        ``datetime``. Anything else yields ``None``.
    preferred_format:
        Optional ``"DD/MM/YYYY"`` or ``"MM/DD/YYYY"``. Only consulted for
        ambiguous slash-delimited values.

    Examples
    --------
    >>> parse_date("25/12/2023")
    '2023-12-25'
    >>> parse_date("03/04/2024")
    '2024-04-03'
    >>> parse_date("03/04/2024", "MM/DD/YYYY")
    '2024-03-04'
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, int | float | Decimal):
        d = _from_serial(float(value))
        return d.isoformat() if d else None
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if _NUMERIC_RE.match(s) and len(s) != 8:
        d = _from_serial(float(s))
        return d.isoformat() if d else None

    m = _ISO_RE.match(s)
    if m:
        d = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        return d.isoformat() if d else None

    m = _SLASH_RE.match(s)
    if m:
        a, b = int(m.group(1)), int(m.group(3))
        d = _from_slash(a, b, _expand_year(m.group(4)), preferred_format)
        return d.isoformat() if d else None

    for fmt in _TEXT_FORMATS:
        try:
            return datetime.strptime(s, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(s).date().isoformat()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_SPACE_RE = re.compile(r"[\s']+")
_LEAD_JUNK_RE = re.compile(r"^[^\d(\-+.,]+")
_TRAIL_JUNK_RE = re.compile(r"[^\d)\-.,]+$")
_DIGITS_RE = re.compile(r"^[\d.,]+$")
_PLAIN_RE = re.compile(r"^(?:\d+(?:\.\d*)?|\.\d+)$")


def _strip_junk(s: str) -> str:
    return _TRAIL_JUNK_RE.sub("", _LEAD_JUNK_RE.sub("", s))


def _resolve_separators(s: str) -> str | None:
    """Return ``s`` with thousands separators removed and ``.`` as decimal mark."""

    has_dot, has_comma = "." in s, "," in s
    if has_dot and has_comma:
        # The later separator is the decimal mark.
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if has_comma:
        head, _, tail = s.rpartition(",")
        if s.count(",") > 1:
            return s.replace(",", "")
        if len(tail) == 3 and 1 <= len(head) <= 3:
            return head + tail
        return head + "." + tail
    if s.count(".") > 1:
        return s.replace(".", "")
    return s


def parse_amount(value: Any) -> Decimal | None:
    """Parse a money cell into a ``Decimal``.

    Strips whitespace, currency symbols/codes and thousands separators.
    Accounting parentheses ``(1,234.50)`` and a leading or trailing minus mean
    negative. European punctuation (``1.234,56``) is recognized by treating the
    last separator as the decimal mark. Non-numeric input returns ``None``,
    never zero.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return Decimal(str(value))
    if not isinstance(value, str):
        return None

    s = _SPACE_RE.sub("", value.replace("−", "-"))
    s = _strip_junk(s)
    if not s:
        return None

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = _strip_junk(s[1:-1])
    if s.startswith("-"):
        negative = not negative
        s = s[1:]
    elif s.startswith("+"):
        s = s[1:]
    if s.endswith("-"):
        negative = not negative
        s = s[:-1]
    s = _strip_junk(s)

    if not s or not _DIGITS_RE.match(s):
        return None
    resolved = _resolve_separators(s)
    if resolved is None or not _PLAIN_RE.match(resolved):
        return None
    try:
        amount = Decimal(resolved)
    except InvalidOperation:
        return None
    if negative and amount != 0:
        amount = -amount
    return amount


# ---------------------------------------------------------------------------
# Currencies
# ---------------------------------------------------------------------------

CURRENCY_SYMBOLS: Mapping[str, str] = {
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "₪": "ILS",
    "£": "GBP",
    "¥": "JPY",
    "NIS": "ILS",
    'ש"ח': "ILS",
    "ש״ח": "ILS",
    "שקל": "ILS",
    "דולר": "USD",
    "אירו": "EUR",
}


def currency_to_code(value: Any) -> str | None:
    """Map a currency symbol or code to an uppercase ISO-4217 code.

    Unknown input is uppercased and passed through; blank input is ``None``.
    """

    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    mapped = CURRENCY_SYMBOLS.get(s) or CURRENCY_SYMBOLS.get(s.upper())
    return mapped or s.upper()


__all__ = ["CURRENCY_SYMBOLS", "currency_to_code", "parse_amount", "parse_date"]
