from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from depot_cli.depot_extract.types import (
    BlockFailure,
    DocumentMetadata,
    ExchangeRate,
    ExtractedItem,
    ExtractionResult,
    ItemKind,
    Money,
    ReconciliationWarning,
    SecurityRef,
    Unit,
    UnitKind,
)
from depot_cli.depot_extract.validator import validate_extraction

SECURITY = SecurityRef(name="X ETF", isin="LU0690964092", wkn="DBX0MF", currency="EUR")


def _result(*items: ExtractedItem, **kwargs) -> ExtractionResult:
    metadata = DocumentMetadata(
        institution="Quirin Privatbank AG",
        extractor="quirin",
        document_types=("Wertpapierabrechnung",),
    )
    return ExtractionResult(metadata=metadata, items=list(items), **kwargs)


def _buy(**overrides) -> ExtractedItem:
    values = {
        "kind": ItemKind.BUY,
        "date": datetime(2016, 12, 30, 12, 46, 28),
        "amount": Decimal("30090.76"),
        "currency": "EUR",
        "security": SECURITY,
        "shares": Decimal("140"),
        "document_type": "Wertpapierabrechnung",
        "source_line": 3,
    }
    values.update(overrides)
    return ExtractedItem(**values)


def test_validator_accepts_complete_record() -> None:
    report = validate_extraction(_result(_buy()))

    assert report.ok
    assert report.issues == []


def test_validator_flags_missing_fields() -> None:
    report = validate_extraction(_result(_buy(date=None, security=None, shares=None)))

    codes = {issue.code for issue in report.issues}
    assert {"missing_date", "missing_security", "missing_shares"} <= codes
    assert not report.ok
    shares_issue = next(issue for issue in report.issues if issue.code == "missing_shares")
    assert shares_issue.severity == "warning"
    assert "buy at line 3 (Wertpapierabrechnung)" in shares_issue.message


def test_validator_ignores_security_for_cash_bookings() -> None:
    deposit = _buy(kind=ItemKind.DEPOSIT, security=None, shares=None, document_type="Kontoauszug")

    assert validate_extraction(_result(deposit)).ok


def test_validator_flags_foreign_units() -> None:
    fee = Unit(kind=UnitKind.FEE, amount=Money(Decimal("5.00"), "USD"), label="Fremde Spesen")

    report = validate_extraction(_result(_buy(units=(fee,))))

    assert [issue.code for issue in report.issues] == ["unit_currency"]
    assert "5.00 USD" in report.issues[0].message


def test_validator_reports_empty_results_and_failures() -> None:
    failure = BlockFailure(
        document_type="Kontoauszug",
        block="management_fee",
        start_line=3,
        line="Verwaltungsgebühr 31.01.2020 31.01.2020 -6,98 EUR",
        section="booking",
        reason="Mandatory section 'booking' did not match",
    )

    report = validate_extraction(_result(failures=[failure]))

    assert [issue.code for issue in report.issues] == ["no_items", "block_failures"]
    assert report.ok


def test_validator_surfaces_reconciliation_warnings() -> None:
    warning = ReconciliationWarning(
        document_type="Ertraegnisabrechnung",
        stated=Money(Decimal("130.00"), "EUR"),
        derived=Money(Decimal("124.50"), "EUR"),
        exchange_rate=ExchangeRate("EUR", "USD", Decimal("1.3099")),
        message="Stated 130.00 EUR differs from derived 124.50 EUR",
    )

    report = validate_extraction(_result(_buy(), warnings=[warning]))

    (issue,) = report.issues
    assert issue.code == "gross_mismatch"
    assert issue.severity == "warning"
    assert issue.message == warning.message
