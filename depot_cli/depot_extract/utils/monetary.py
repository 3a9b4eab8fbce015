"""Gross-value reconciliation and per-record tax/fee bookkeeping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from ..types import ExchangeRate, Money, ReconciliationWarning, TransactionDraft, Unit, UnitKind

if TYPE_CHECKING:  # pragma: no cover
    from ..parser import ExtractionContext

_LOGGER = logging.getLogger(__name__)
_CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class Tolerance:
    """Allowed drift between a stated converted amount and the rate-derived one.

    A delta passes when it is within ``absolute`` or within ``relative`` times
    the stated amount, whichever is larger. Documents round the converted
    figure to cents while rates carry four to six decimals, so a sub-cent
    delta is routine and larger amounts accumulate proportionally more.
    """

    absolute: Decimal = Decimal("0.01")
    relative: Decimal = Decimal("0.0005")

    def allows(self, stated: Decimal, derived: Decimal) -> bool:
        delta = abs(stated - derived)
        return delta <= max(self.absolute, abs(stated) * self.relative)


def _cents(value: Decimal) -> Decimal:
    return value.quantize(_CENT)


def reconcile_gross(
    gross: Money,
    fx_gross: Money,
    draft: TransactionDraft,
    context: ExtractionContext,
) -> None:
    """Attach the gross-value unit pairing ``gross`` with its foreign counterpart.

    The amount stated in the record's currency stays canonical; the other one
    becomes the forex annotation. The exchange rate must already be stored in
    the context. A derived amount outside the tolerance is reported as a
    warning, never corrected.
    """

    if gross.currency == fx_gross.currency:
        return

    rate = context.get_type(ExchangeRate)
    if rate is None or not rate.involves(gross.currency, fx_gross.currency):
        _LOGGER.debug(
            "No exchange rate for %s/%s; gross value left unannotated",
            gross.currency,
            fx_gross.currency,
        )
        return

    local, foreign = gross, fx_gross
    if draft.currency is not None and fx_gross.currency == draft.currency:
        local, foreign = fx_gross, gross

    derived = rate.convert(foreign, local.currency)
    if not context.tolerance.allows(local.amount, derived.amount):
        message = (
            f"Stated {local} differs from {foreign} at {rate.rate} "
            f"({_cents(derived.amount)} {local.currency})"
        )
        _LOGGER.warning(message)
        context.warn(
            ReconciliationWarning(
                document_type=context.document_type,
                stated=local,
                derived=Money(_cents(derived.amount), local.currency),
                exchange_rate=rate,
                message=message,
            )
        )

    draft.units = [unit for unit in draft.units if unit.kind is not UnitKind.GROSS_VALUE]
    draft.units.append(Unit(UnitKind.GROSS_VALUE, local, forex=foreign, exchange_rate=rate))


def _add_unit(
    kind: UnitKind,
    money: Money,
    draft: TransactionDraft,
    context: ExtractionContext,
    label: str | None,
) -> None:
    if money.amount == 0:
        return

    if draft.currency is None or money.currency == draft.currency:
        draft.units.append(Unit(kind, money, label=label))
        return

    rate = context.get_type(ExchangeRate)
    if rate is None or not rate.involves(money.currency, draft.currency):
        _LOGGER.debug(
            "Skipping %s %s: no exchange rate into %s", kind.value, money, draft.currency
        )
        return

    converted = rate.convert(money, draft.currency)
    draft.units.append(
        Unit(
            kind,
            Money(_cents(converted.amount), draft.currency),
            forex=money,
            exchange_rate=rate,
            label=label,
        )
    )


def apply_tax(
    draft: TransactionDraft,
    money: Money,
    context: ExtractionContext,
    label: str | None = None,
) -> None:
    _add_unit(UnitKind.TAX, money, draft, context, label)


def apply_withholding_tax(
    draft: TransactionDraft,
    money: Money,
    context: ExtractionContext,
    label: str | None = None,
) -> None:
    """Withholding tax is booked as a tax unit labelled as such."""

    _add_unit(UnitKind.TAX, money, draft, context, label or "withholding tax")


def apply_fee(
    draft: TransactionDraft,
    money: Money,
    context: ExtractionContext,
    label: str | None = None,
) -> None:
    _add_unit(UnitKind.FEE, money, draft, context, label)


def fix_gross_value(draft: TransactionDraft, context: ExtractionContext) -> None:
    """Recompute the gross unit as amount + taxes + fees when it disagrees."""

    gross = draft.gross_unit()
    if gross is None or draft.amount is None or draft.currency is None:
        return

    expected = draft.amount + sum(
        (unit.amount.amount for unit in draft.units if unit.kind is not UnitKind.GROSS_VALUE),
        Decimal("0"),
    )
    if expected == gross.amount.amount:
        return

    forex = gross.forex
    rate = gross.exchange_rate
    if forex is not None and rate is not None:
        converted = rate.convert(Money(expected, draft.currency), forex.currency)
        forex = Money(_cents(converted.amount), forex.currency)

    _LOGGER.debug("Gross value %s recomputed as %s %s", gross.amount, expected, draft.currency)
    draft.units = [unit for unit in draft.units if unit is not gross]
    draft.units.insert(
        0,
        Unit(
            UnitKind.GROSS_VALUE,
            Money(expected, draft.currency),
            forex=forex,
            exchange_rate=rate,
            label=gross.label,
        ),
    )
