from __future__ import annotations

from decimal import Decimal

from depot_cli.depot_extract.parser import ExtractionContext
from depot_cli.depot_extract.types import ExchangeRate, ItemKind, Money, TransactionDraft, UnitKind
from depot_cli.depot_extract.utils import (
    Tolerance,
    apply_fee,
    apply_tax,
    apply_withholding_tax,
    fix_gross_value,
    reconcile_gross,
)

EUR_USD = ExchangeRate("EUR", "USD", Decimal("1.3099"))


def _draft(amount: str = "124.50", currency: str = "EUR") -> TransactionDraft:
    return TransactionDraft(kind=ItemKind.DIVIDEND, amount=Decimal(amount), currency=currency)


def _context(rate: ExchangeRate | None = EUR_USD) -> ExtractionContext:
    context = ExtractionContext("Dividendenabrechnung")
    if rate is not None:
        context.put_type(rate)
    return context


def test_tolerance_uses_larger_of_absolute_and_relative() -> None:
    tolerance = Tolerance()

    assert tolerance.allows(Decimal("124.50"), Decimal("124.498"))
    assert tolerance.allows(Decimal("30000.00"), Decimal("30014.00"))
    assert not tolerance.allows(Decimal("10.00"), Decimal("10.02"))
    assert not tolerance.allows(Decimal("130.00"), Decimal("124.50"))


def test_exchange_rate_converts_both_directions() -> None:
    assert EUR_USD.convert(Money(Decimal("100"), "EUR"), "USD") == Money(Decimal("130.9900"), "USD")
    back = EUR_USD.convert(Money(Decimal("163.08"), "USD"), "EUR")
    assert back.currency == "EUR"
    assert back.amount.quantize(Decimal("0.01")) == Decimal("124.50")
    assert EUR_USD.involves("USD", "EUR")
    assert not EUR_USD.involves("USD", "CHF")


def test_reconcile_gross_within_tolerance() -> None:
    draft = _draft()
    context = _context()

    reconcile_gross(Money(Decimal("124.50"), "EUR"), Money(Decimal("163.08"), "USD"), draft, context)

    assert context.warnings == []
    gross = draft.gross_unit()
    assert gross.amount == Money(Decimal("124.50"), "EUR")
    assert gross.forex == Money(Decimal("163.08"), "USD")
    assert gross.exchange_rate == EUR_USD


def test_reconcile_gross_keeps_record_currency_canonical() -> None:
    draft = _draft(currency="EUR")
    context = _context()

    reconcile_gross(Money(Decimal("163.08"), "USD"), Money(Decimal("124.50"), "EUR"), draft, context)

    gross = draft.gross_unit()
    assert gross.amount.currency == "EUR"
    assert gross.forex.currency == "USD"


def test_reconcile_gross_warns_outside_tolerance() -> None:
    draft = _draft()
    context = _context()

    reconcile_gross(Money(Decimal("130.00"), "EUR"), Money(Decimal("163.08"), "USD"), draft, context)

    assert len(context.warnings) == 1
    warning = context.warnings[0]
    assert warning.document_type == "Dividendenabrechnung"
    assert warning.derived == Money(Decimal("124.50"), "EUR")
    assert draft.gross_unit().amount.amount == Decimal("130.00")


def test_reconcile_gross_replaces_previous_unit() -> None:
    draft = _draft()
    context = _context()

    reconcile_gross(Money(Decimal("124.50"), "EUR"), Money(Decimal("163.08"), "USD"), draft, context)
    reconcile_gross(Money(Decimal("124.50"), "EUR"), Money(Decimal("163.08"), "USD"), draft, context)

    assert len(draft.units_of(UnitKind.GROSS_VALUE)) == 1


def test_reconcile_gross_without_rate_leaves_draft_alone() -> None:
    draft = _draft()

    reconcile_gross(Money(Decimal("124.50"), "EUR"), Money(Decimal("163.08"), "USD"), draft, _context(None))

    assert draft.units == []


def test_foreign_fee_is_converted_and_annotated() -> None:
    draft = _draft()

    apply_fee(draft, Money(Decimal("20.00"), "USD"), _context(), "Lagerland")

    (fee,) = draft.units
    assert fee.kind is UnitKind.FEE
    assert fee.amount == Money(Decimal("15.27"), "EUR")
    assert fee.forex == Money(Decimal("20.00"), "USD")
    assert fee.label == "Lagerland"


def test_foreign_tax_without_rate_is_skipped() -> None:
    draft = _draft()

    apply_tax(draft, Money(Decimal("9.07"), "USD"), _context(None))

    assert draft.units == []


def test_zero_amounts_are_ignored() -> None:
    draft = _draft()

    apply_tax(draft, Money(Decimal("0.00"), "EUR"), _context())

    assert draft.units == []


def test_withholding_tax_is_labelled() -> None:
    draft = _draft()

    apply_withholding_tax(draft, Money(Decimal("24.90"), "EUR"), _context())

    assert draft.units[0].kind is UnitKind.TAX
    assert draft.units[0].label == "withholding tax"


def test_fix_gross_value_recomputes_disagreeing_gross() -> None:
    draft = _draft(amount="92.67")
    context = _context()
    reconcile_gross(Money(Decimal("124.50"), "EUR"), Money(Decimal("163.08"), "USD"), draft, context)
    apply_tax(draft, Money(Decimal("24.90"), "EUR"), context)

    fix_gross_value(draft, context)

    gross = draft.gross_unit()
    assert draft.units[0] is gross
    assert gross.amount == Money(Decimal("117.57"), "EUR")
    assert gross.forex == Money(Decimal("154.00"), "USD")


def test_fix_gross_value_keeps_consistent_gross() -> None:
    draft = _draft(amount="99.60")
    context = _context()
    reconcile_gross(Money(Decimal("124.50"), "EUR"), Money(Decimal("163.08"), "USD"), draft, context)
    apply_tax(draft, Money(Decimal("24.90"), "EUR"), context)
    before = list(draft.units)

    fix_gross_value(draft, context)

    assert draft.units == before
