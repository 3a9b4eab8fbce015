"""Named assignment steps that YAML rule files refer to.

Each step receives the draft under construction, the captured values of the
matching section, and the shared ``ExtractionContext``, plus any keyword
options given in the rule file. Captures arrive as strings; converting them
is the step's job.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from depot_cli.shared.exceptions import MalformedFieldError, SpecError

from .parser import Assignment, Conclusion, ExtractionContext
from .types import ExchangeRate, ItemKind, Money, TransactionDraft
from .utils import (
    apply_fee,
    apply_tax,
    apply_withholding_tax,
    fix_gross_value,
    normalize_currency,
    parse_amount,
    parse_date,
    parse_rate,
    parse_shares,
    reconcile_gross,
    trim,
)

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AssignerInfo:
    """Registry entry for an assignment step."""

    name: str
    func: Callable[..., None]
    context_only: bool = False
    prepare: Callable[[dict[str, Any]], dict[str, Any]] | None = None


ASSIGNERS: dict[str, AssignerInfo] = {}
CONCLUDERS: dict[str, Conclusion] = {"fix_gross_value": fix_gross_value}


def assigner(
    name: str,
    *,
    context_only: bool = False,
    prepare: Callable[[dict[str, Any]], dict[str, Any]] | None = None,
) -> Callable[[Callable[..., None]], Callable[..., None]]:
    """Register ``func`` under ``name`` for use in rule files."""

    def decorator(func: Callable[..., None]) -> Callable[..., None]:
        if name in ASSIGNERS:
            raise ValueError(f"Assignment step '{name}' is already registered")
        ASSIGNERS[name] = AssignerInfo(name, func, context_only, prepare)
        return func

    return decorator


def bind(name: str, options: Mapping[str, Any] | None = None, *, context_only: bool = False) -> Assignment:
    """Resolve a step name plus its options into a ready-to-call assignment.

    Raises:
        SpecError: unknown step, unexpected options, or a step that needs a
            draft used where only the context is available.
    """

    info = ASSIGNERS.get(name)
    if info is None:
        known = ", ".join(sorted(ASSIGNERS))
        raise SpecError(f"Unknown assignment step '{name}'. Known steps: {known}")
    if context_only and not info.context_only:
        raise SpecError(f"Assignment step '{name}' needs a record and cannot run on the document context")

    kwargs = dict(options or {})
    if info.prepare is not None:
        try:
            kwargs = info.prepare(kwargs)
        except (KeyError, TypeError, ValueError) as exc:
            raise SpecError(f"Invalid options for assignment step '{name}': {exc}") from exc
    try:
        inspect.signature(info.func).bind(None, {}, None, **kwargs)
    except TypeError as exc:
        raise SpecError(f"Invalid options for assignment step '{name}': {exc}") from exc
    return functools.partial(info.func, **kwargs)


def conclusion(name: str) -> Conclusion:
    try:
        return CONCLUDERS[name]
    except KeyError as exc:
        known = ", ".join(sorted(CONCLUDERS))
        raise SpecError(f"Unknown conclude hook '{name}'. Known hooks: {known}") from exc


def _required(values: Mapping[str, str], field: str) -> str:
    value = values.get(field)
    if value is None:
        raise MalformedFieldError(field, None, f"a captured '{field}' group")
    return value


def _money(values: Mapping[str, str], field: str, currency_field: str) -> Money:
    return Money(
        parse_amount(_required(values, field)),
        normalize_currency(_required(values, currency_field)),
    )


def _kind_mapping(options: dict[str, Any]) -> dict[str, Any]:
    mapping = options.get("mapping")
    if not isinstance(mapping, Mapping) or not mapping:
        raise ValueError("'mapping' must map captured words to record kinds")
    options["mapping"] = {str(word): ItemKind.parse(str(kind)) for word, kind in mapping.items()}
    return options


def _field_list(options: dict[str, Any]) -> dict[str, Any]:
    fields = options.get("fields")
    if isinstance(fields, str):
        options["fields"] = (fields,)
    elif fields is not None:
        options["fields"] = tuple(str(name) for name in fields)
    return options


# ============================================================================
# Record fields
# ============================================================================


@assigner("set_kind", prepare=_kind_mapping)
def set_kind(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    mapping: Mapping[str, ItemKind],
    field: str = "type",
) -> None:
    kind = mapping.get(trim(values.get(field)))
    if kind is not None:
        draft.kind = kind


@assigner("set_security")
def set_security(draft: TransactionDraft, values: Mapping[str, str], context: ExtractionContext) -> None:
    try:
        draft.security = context.securities.resolve(
            name=values.get("name"),
            isin=values.get("isin"),
            wkn=values.get("wkn"),
            currency=values.get("currency"),
        )
    except MalformedFieldError:
        raise
    except ValueError as exc:
        raise MalformedFieldError("security", values.get("name"), "a name, ISIN, or WKN") from exc


@assigner("set_shares")
def set_shares(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    field: str = "shares",
) -> None:
    draft.shares = parse_shares(_required(values, field))


@assigner("set_date")
def set_date(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    field: str = "date",
    time_field: str = "time",
) -> None:
    draft.date = parse_date(_required(values, field), values.get(time_field))


@assigner("set_amount")
def set_amount(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    field: str = "amount",
    currency_field: str = "currency",
) -> None:
    money = _money(values, field, currency_field)
    draft.amount = money.amount
    draft.currency = money.currency


@assigner("set_note", prepare=_field_list)
def set_note(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    fields: tuple[str, ...] = ("note",),
) -> None:
    """Join the trimmed ``fields`` with single spaces; missing ones are skipped."""

    parts = [trim(values.get(name)) for name in fields]
    note = " ".join(part for part in parts if part)
    if note:
        draft.note = note


@assigner("subtract_tax")
def subtract_tax(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    field: str = "tax",
    currency_field: str = "currency",
) -> None:
    """Reduce a gross amount by a tax line (layouts that only state the gross)."""

    tax = _money(values, field, currency_field)
    if draft.amount is None or draft.currency is None:
        _LOGGER.debug("Ignoring %s: record has no amount yet", tax)
        return
    if tax.currency != draft.currency:
        raise MalformedFieldError(currency_field, tax.currency, f"the record currency {draft.currency}")
    draft.amount -= tax.amount


# ============================================================================
# Exchange rates and gross values
# ============================================================================


def _exchange_rate(values: Mapping[str, str]) -> ExchangeRate:
    base = values.get("base_currency") or values.get("currency")
    term = values.get("term_currency") or values.get("fx_currency")
    return ExchangeRate(
        base_currency=normalize_currency(base),
        term_currency=normalize_currency(term),
        rate=parse_rate(_required(values, "exchange_rate")),
    )


@assigner("exchange_rate", context_only=True)
def store_exchange_rate(
    draft: TransactionDraft | None, values: Mapping[str, str], context: ExtractionContext
) -> None:
    """Store the captured rate; base/term fall back to currency/fx_currency."""

    context.put_type(_exchange_rate(values))


@assigner("reconcile_gross")
def reconcile_gross_value(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
) -> None:
    context.put_type(_exchange_rate(values))
    gross = _money(values, "gross", "currency")
    fx_gross = _money(values, "fx_gross", "fx_currency")
    reconcile_gross(gross, fx_gross, draft, context)


# ============================================================================
# Taxes and fees
# ============================================================================


@assigner("tax")
def tax(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    field: str = "tax",
    currency_field: str = "currency",
    label: str | None = None,
) -> None:
    apply_tax(draft, _money(values, field, currency_field), context, label)


@assigner("withholding_tax")
def withholding_tax(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    field: str = "withholding_tax",
    currency_field: str = "currency",
    label: str | None = None,
) -> None:
    apply_withholding_tax(draft, _money(values, field, currency_field), context, label)


@assigner("fee")
def fee(
    draft: TransactionDraft,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    field: str = "fee",
    currency_field: str = "currency",
    label: str | None = None,
) -> None:
    apply_fee(draft, _money(values, field, currency_field), context, label)


# ============================================================================
# Context
# ============================================================================


@assigner("remember", context_only=True, prepare=_field_list)
def remember(
    draft: TransactionDraft | None,
    values: Mapping[str, str],
    context: ExtractionContext,
    *,
    fields: tuple[str, ...] | None = None,
) -> None:
    """Copy captured values into the context under their group names."""

    for name in fields if fields is not None else tuple(values):
        if values.get(name) is not None:
            context[name] = values[name]
