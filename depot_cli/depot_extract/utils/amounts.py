"""Amount, date, and currency parsing helpers for German-language documents."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation

from depot_cli.shared.exceptions import MalformedFieldError

_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{2}|\d{4})$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_CENT = Decimal("0.01")


def _parse_decimal(value: str | None, field: str) -> Decimal:
    """Parse ``1.234,56`` / ``1'234,56`` / ``- 4,90`` into a Decimal.

    PDF dumps occasionally split numbers with blanks and use typographic
    minus signs, both are normalised before validation.
    """

    if value is None:
        raise MalformedFieldError(field, value, "a number")
    cleaned = "".join(value.split())
    cleaned = cleaned.replace("−", "-").replace("–", "-")
    cleaned = cleaned.replace("'", "").replace(".", "").replace(",", ".")
    if not _NUMBER_RE.match(cleaned):
        raise MalformedFieldError(field, value, "a number like 1.234,56")
    try:
        return Decimal(cleaned)
    except InvalidOperation as exc:  # pragma: no cover - regex guards the input
        raise MalformedFieldError(field, value, "a number") from exc


def parse_amount(value: str | None) -> Decimal:
    """Parse a monetary amount, rounded to cents."""

    return _parse_decimal(value, "amount").quantize(_CENT)


def parse_shares(value: str | None) -> Decimal:
    """Parse a share count such as ``140,0000``; trailing zeros are dropped."""

    shares = _parse_decimal(value, "shares")
    return shares.normalize() if shares != shares.to_integral() else shares.quantize(Decimal(1))


def parse_rate(value: str | None) -> Decimal:
    """Parse an exchange rate such as ``1,309900``; must be positive."""

    rate = _parse_decimal(value, "exchange rate")
    if rate <= 0:
        raise MalformedFieldError("exchange rate", value, "a positive number")
    return rate


def parse_date(value: str | None, time: str | None = None) -> datetime:
    """Parse ``dd.mm.yyyy`` (optionally with ``HH:MM[:SS]``) into a datetime."""

    if value is None:
        raise MalformedFieldError("date", value, "a date like 31.01.2020")
    match = _DATE_RE.match(strip_blanks(value))
    if not match:
        raise MalformedFieldError("date", value, "a date like 31.01.2020")
    day, month, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    hour = minute = second = 0
    if time:
        time_match = _TIME_RE.match(time.strip())
        if not time_match:
            raise MalformedFieldError("time", time, "a time like 12:46:28")
        hour, minute = int(time_match.group(1)), int(time_match.group(2))
        second = int(time_match.group(3) or 0)
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError as exc:
        raise MalformedFieldError("date", value, "a valid calendar date") from exc


def normalize_currency(value: str | None) -> str:
    """Return an upper-case ISO 4217 style code."""

    cleaned = (value or "").strip().upper()
    if not _CURRENCY_RE.match(cleaned):
        raise MalformedFieldError("currency", value, "a three-letter currency code")
    return cleaned


def strip_blanks(value: str) -> str:
    """Remove every whitespace character (``31.01.20 20`` -> ``31.01.2020``)."""

    return "".join((value or "").split())


def trim(value: str | None) -> str:
    """Collapse runs of whitespace and strip the ends."""

    return " ".join((value or "").split())
