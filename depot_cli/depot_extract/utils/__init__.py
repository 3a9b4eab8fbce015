"""Parsing and bookkeeping helpers used by assignment steps."""

from __future__ import annotations

from .amounts import (
    normalize_currency,
    parse_amount,
    parse_date,
    parse_rate,
    parse_shares,
    strip_blanks,
    trim,
)
from .monetary import (
    Tolerance,
    apply_fee,
    apply_tax,
    apply_withholding_tax,
    fix_gross_value,
    reconcile_gross,
)
from .securities import SecurityCatalog

__all__ = [
    "SecurityCatalog",
    "Tolerance",
    "apply_fee",
    "apply_tax",
    "apply_withholding_tax",
    "fix_gross_value",
    "normalize_currency",
    "parse_amount",
    "parse_date",
    "parse_rate",
    "parse_shares",
    "reconcile_gross",
    "strip_blanks",
    "trim",
]
