"""Dataclasses describing extracted transaction records."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class ItemKind(str, Enum):
    """Kinds of records a document can yield."""

    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"
    DEPOSIT = "deposit"
    REMOVAL = "withdrawal"
    FEES = "fee"
    FEES_REFUND = "fee_refund"
    TAXES = "tax"
    TAX_REFUND = "tax_refund"
    INTEREST = "interest"

    @classmethod
    def parse(cls, value: str) -> ItemKind:
        lowered = value.strip().lower()
        for kind in cls:
            if lowered in (kind.value, kind.name.lower()):
                return kind
        raise ValueError(f"Unknown record kind '{value}'")


@dataclass(frozen=True, slots=True)
class Money:
    amount: Decimal
    currency: str

    def __str__(self) -> str:
        return f"{self.amount:.2f} {self.currency}"


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """One unit of ``base_currency`` is worth ``rate`` units of ``term_currency``."""

    base_currency: str
    term_currency: str
    rate: Decimal

    def involves(self, first: str, second: str) -> bool:
        return {self.base_currency, self.term_currency} == {first, second}

    def convert(self, money: Money, target_currency: str) -> Money:
        """Convert ``money`` into ``target_currency`` using this rate."""

        if money.currency == target_currency:
            return money
        if money.currency == self.base_currency and target_currency == self.term_currency:
            return Money(money.amount * self.rate, target_currency)
        if money.currency == self.term_currency and target_currency == self.base_currency:
            return Money(money.amount / self.rate, target_currency)
        raise ValueError(
            f"Rate {self.base_currency}/{self.term_currency} cannot convert "
            f"{money.currency} to {target_currency}"
        )


@dataclass(frozen=True, slots=True)
class SecurityRef:
    name: str | None
    isin: str | None
    wkn: str | None
    currency: str | None


class UnitKind(str, Enum):
    GROSS_VALUE = "gross_value"
    TAX = "tax"
    FEE = "fee"


@dataclass(frozen=True, slots=True)
class Unit:
    """A tax, fee, or gross-value annotation attached to a record.

    ``forex`` and ``exchange_rate`` are set when the figure was stated in a
    currency other than the record's own.
    """

    kind: UnitKind
    amount: Money
    forex: Money | None = None
    exchange_rate: ExchangeRate | None = None
    label: str | None = None


@dataclass(slots=True)
class TransactionDraft:
    """Record under construction while a block's sections are applied."""

    kind: ItemKind
    date: datetime | None = None
    amount: Decimal | None = None
    currency: str | None = None
    security: SecurityRef | None = None
    shares: Decimal | None = None
    note: str | None = None
    units: list[Unit] = field(default_factory=list)

    @property
    def money(self) -> Money | None:
        if self.amount is None or self.currency is None:
            return None
        return Money(self.amount, self.currency)

    def units_of(self, kind: UnitKind) -> list[Unit]:
        return [unit for unit in self.units if unit.kind is kind]

    def gross_unit(self) -> Unit | None:
        units = self.units_of(UnitKind.GROSS_VALUE)
        return units[0] if units else None

    def to_item(self, *, document_type: str, source_line: int) -> ExtractedItem | None:
        """Return the emitted item, or ``None`` when the draft is not a usable record."""

        if self.currency is None or self.amount is None or self.amount == 0:
            return None
        return ExtractedItem(
            kind=self.kind,
            date=self.date,
            amount=self.amount,
            currency=self.currency,
            security=self.security,
            shares=self.shares,
            note=self.note,
            units=tuple(self.units),
            document_type=document_type,
            source_line=source_line,
        )


@dataclass(frozen=True, slots=True)
class ExtractedItem:
    """Normalized transaction record pulled from a document."""

    kind: ItemKind
    date: datetime | None
    amount: Decimal
    currency: str
    security: SecurityRef | None = None
    shares: Decimal | None = None
    note: str | None = None
    units: tuple[Unit, ...] = ()
    document_type: str = ""
    source_line: int = 0

    @property
    def gross_unit(self) -> Unit | None:
        for unit in self.units:
            if unit.kind is UnitKind.GROSS_VALUE:
                return unit
        return None

    def total(self, kind: UnitKind) -> Decimal:
        return sum((unit.amount.amount for unit in self.units if unit.kind is kind), Decimal("0"))


@dataclass(frozen=True, slots=True)
class BlockFailure:
    """Diagnostic for a block window that started but could not be completed."""

    document_type: str
    block: str
    start_line: int
    line: str
    section: str | None
    reason: str


@dataclass(frozen=True, slots=True)
class ReconciliationWarning:
    """A stated converted amount that disagrees with its rate beyond tolerance."""

    document_type: str
    stated: Money
    derived: Money
    exchange_rate: ExchangeRate
    message: str


@dataclass(slots=True)
class DocumentMetadata:
    """Summary metadata about the parsed document."""

    institution: str
    extractor: str
    document_types: tuple[str, ...] = ()


@dataclass(slots=True)
class ExtractionResult:
    """Container for metadata, emitted items, and the diagnostic trail."""

    metadata: DocumentMetadata
    items: list[ExtractedItem]
    failures: list[BlockFailure] = field(default_factory=list)
    warnings: list[ReconciliationWarning] = field(default_factory=list)

    def __iter__(self) -> Iterator[ExtractedItem]:
        return iter(self.items)

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self.items)


def merge_results(*results: ExtractionResult) -> ExtractionResult:
    """Merge results from several documents (e.g. a folder of statements)."""
    if not results:
        raise ValueError("No results to merge")
    base = results[0]
    document_types: list[str] = []
    merged = ExtractionResult(metadata=base.metadata, items=[])
    for result in results:
        merged.items.extend(result.items)
        merged.failures.extend(result.failures)
        merged.warnings.extend(result.warnings)
        for name in result.metadata.document_types:
            if name not in document_types:
                document_types.append(name)
    merged.metadata = DocumentMetadata(
        institution=base.metadata.institution,
        extractor=base.metadata.extractor,
        document_types=tuple(document_types),
    )
    return merged
