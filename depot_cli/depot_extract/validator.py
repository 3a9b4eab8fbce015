"""Lightweight extraction validator.

The validator consumes an ``ExtractionResult`` and emits a list of issues that
downstream tooling (the CLI, CI checks over sample documents) can surface.
The heuristics target the usual regressions when a bank revises a layout:

* a document type matched but nothing was emitted
* trades and dividends without a security or share count
* records without a booking date
* tax/fee units left in a foreign currency
* gross amounts that disagree with their exchange rate
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .types import ExtractedItem, ExtractionResult, ItemKind

_SECURITY_KINDS = {ItemKind.BUY, ItemKind.SELL, ItemKind.DIVIDEND}


@dataclass(slots=True)
class ValidationIssue:
    """Single validation finding."""

    code: str
    message: str
    severity: str = "error"  # "error" | "warning"


@dataclass(slots=True)
class ValidationReport:
    """Aggregate report returned by ``validate_extraction``."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when no error-level issues were recorded."""

        return all(issue.severity != "error" for issue in self.issues)

    def add(self, code: str, message: str, *, severity: str = "error") -> None:
        self.issues.append(ValidationIssue(code=code, message=message, severity=severity))


def validate_extraction(result: ExtractionResult) -> ValidationReport:
    """Validate a single extraction result and emit heuristic findings."""

    report = ValidationReport()

    if not result.items:
        report.add(
            "no_items",
            "No records were produced; check the failure trail for blocks that stopped matching.",
            severity="warning",
        )
    if result.failures:
        report.add(
            "block_failures",
            f"{len(result.failures)} block(s) started but could not be completed.",
            severity="warning",
        )

    for item in result.items:
        _validate_item(item, report)

    for warning in result.warnings:
        report.add("gross_mismatch", warning.message, severity="warning")

    return report


def _validate_item(item: ExtractedItem, report: ValidationReport) -> None:
    label = f"{item.kind.value} at line {item.source_line} ({item.document_type})"

    if item.date is None:
        report.add("missing_date", f"Record {label} has no date.")

    if item.amount < 0:
        report.add("negative_amount", f"Record {label} has a negative amount ({item.amount}).")

    if item.kind in _SECURITY_KINDS:
        if item.security is None:
            report.add("missing_security", f"Record {label} has no security.")
        if item.shares is None:
            report.add("missing_shares", f"Record {label} has no share count.", severity="warning")

    for unit in item.units:
        if unit.amount.currency != item.currency:
            report.add(
                "unit_currency",
                f"Record {label} carries a {unit.kind.value} of {unit.amount} "
                f"in a currency other than {item.currency}.",
            )
