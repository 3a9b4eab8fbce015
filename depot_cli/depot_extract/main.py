"""depot-extract CLI entrypoint.

``depot-extract FILE`` detects the bank and document layout, runs the matching
rule set, and writes one row per extracted record. ``depot-extract dev ...``
holds tooling for rule-file authors.
"""

from __future__ import annotations

import csv
import json
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from pathlib import Path
from typing import Any

import click

from depot_cli.shared.cli import CLIContext, common_cli_options, handle_cli_errors, pass_cli_context

from .declarative import DeclarativeExtractor, load_spec
from .extractors import REGISTRY, detect_extractor, ensure_bundled_specs_loaded
from .extractors.base import StatementExtractor
from .parsers.text_loader import TextDocument, load_document
from .plugin_loader import PluginLoadReport, load_user_plugins
from .types import ExtractedItem, ExtractionResult, UnitKind
from .utils import SecurityCatalog, Tolerance
from .validator import validate_extraction

_PLUGIN_OPTIONS_KEY = "depot_extract_plugin_options"
_PLUGIN_REPORT_KEY = "depot_extract_plugin_report"

CSV_HEADER = [
    "kind",
    "date",
    "amount",
    "currency",
    "security",
    "isin",
    "wkn",
    "shares",
    "gross_amount",
    "gross_currency",
    "forex_amount",
    "forex_currency",
    "exchange_rate",
    "taxes",
    "fees",
    "note",
    "document_type",
    "source_line",
]

_PLUGIN_KIND_LABELS = {
    "builtin_python": "built-in python",
    "bundled_yaml": "bundled yaml",
    "user_yaml": "user yaml",
    "python_user": "user python",
}


@dataclass(frozen=True)
class _PluginOptions:
    disabled: bool = False
    allowed: tuple[str, ...] = ()


class _ExtractByDefault(click.Group):
    """Route ``depot-extract FILE ...`` to the hidden ``extract`` command."""

    def resolve_command(self, ctx: click.Context, args: list[str]):
        if args and self.get_command(ctx, args[0]) is None:
            args = ["extract", *args]
        return super().resolve_command(ctx, args)


def load_text_document(path: str | Path, *, engine: str) -> TextDocument:
    """Module-level seam around ``load_document`` so tests can swap the loader."""

    return load_document(path, engine)


@click.group(
    cls=_ExtractByDefault,
    help="Extract depot transactions from bank documents.",
    no_args_is_help=True,
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
)
@click.option("--no-plugins", is_flag=True, help="Skip the user plugin directory for this run.")
@click.option(
    "--allow-plugin",
    "allowed_plugins",
    multiple=True,
    help="Only load the named plugins (case-insensitive); repeatable.",
)
@common_cli_options
@handle_cli_errors
def main(no_plugins: bool, allowed_plugins: tuple[str, ...], cli_ctx: CLIContext) -> None:
    cli_ctx.state[_PLUGIN_OPTIONS_KEY] = _PluginOptions(disabled=no_plugins, allowed=allowed_plugins)


@main.command("extract", hidden=True)
@click.argument("document_file", type=click.Path(path_type=str))
@click.option("--output", "output_path", type=click.Path(path_type=str), help="Write output to file.")
@click.option("--stdout", is_flag=True, help="Write output to stdout.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["csv", "json"], case_sensitive=False),
    help="Output format (default: from config or 'csv').",
)
@click.option(
    "--engine",
    type=click.Choice(["auto", "text", "pdfplumber"], case_sensitive=False),
    help="How to read the document (default: from config or 'auto').",
)
@click.option(
    "--spec",
    type=click.Path(exists=True, path_type=str),
    help="Extract with this YAML rule file instead of autodetecting the bank.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    expose_value=False,
    help="Summarise the records without writing output.",
    callback=lambda ctx, param, value: _mark_dry_run(ctx, value),
)
@handle_cli_errors
@pass_cli_context
def extract_command(
    cli_ctx: CLIContext,
    document_file: str,
    output_path: str | None,
    stdout: bool,
    output_format: str | None,
    engine: str | None,
    spec: str | None,
) -> None:
    if output_path and stdout:
        raise click.UsageError("Cannot use both --output and --stdout simultaneously.")

    config = cli_ctx.config
    selected_engine = (engine or config.extraction.engine).lower()
    cli_ctx.logger.debug(f"Reading {document_file} with the {selected_engine} engine")
    document = load_text_document(document_file, engine=selected_engine)

    extractor = _select_extractor(cli_ctx, document, spec)
    extractor.tolerance = Tolerance(
        absolute=config.reconciliation.absolute_tolerance,
        relative=config.reconciliation.relative_tolerance,
    )
    extractor.securities = SecurityCatalog()

    result = extractor.extract(document)
    _report_diagnostics(cli_ctx, result)
    if not result.items:
        raise click.ClickException("No transactions were extracted from the document.")

    cli_ctx.logger.info(
        f"Institution: {result.metadata.institution} | "
        f"Document types: {', '.join(result.metadata.document_types)} | "
        f"Records: {len(result.items)}"
    )
    if cli_ctx.dry_run:
        _emit_dry_run_summary(cli_ctx, result)
        return

    fmt = (output_format or config.output.format).lower()
    if not output_path and not stdout:
        output_path = str(config.output.directory / f"{Path(document_file).stem}.{fmt}")
        cli_ctx.logger.info(f"No --output provided; defaulting to {output_path}.")

    payload = _render_json(result) if fmt == "json" else _render_csv(result)
    if stdout:
        click.echo(payload, nl=False)
        cli_ctx.logger.success("Extraction complete. Output sent to stdout.")
        return

    destination = Path(output_path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(payload, encoding="utf-8", newline="")
    cli_ctx.logger.success(f"Extraction complete. Output written to {destination}.")


def _select_extractor(
    cli_ctx: CLIContext, document: TextDocument, spec_path: str | None
) -> StatementExtractor:
    if spec_path:
        extractor = DeclarativeExtractor(load_spec(spec_path))
        cli_ctx.logger.info(f"Using declarative extractor: {extractor.name} (from {spec_path})")
        return extractor

    _load_plugins(cli_ctx)
    extractor = detect_extractor(
        document,
        allowed_institutions=cli_ctx.config.extraction.supported_banks,
    )
    kind = _plugin_kind_label(getattr(extractor, "__plugin_kind__", "builtin_python"))
    cli_ctx.logger.info(f"Detected format: {extractor.name} ({kind})")
    return extractor


def _report_diagnostics(cli_ctx: CLIContext, result: ExtractionResult) -> None:
    for warning in result.warnings:
        cli_ctx.logger.warning(f"Reconciliation ({warning.document_type}): {warning.message}")
    for failure in result.failures:
        where = f"section '{failure.section}'" if failure.section else "context"
        cli_ctx.logger.debug(
            f"{failure.document_type}: block '{failure.block}' at line {failure.start_line} "
            f"abandoned in {where}: {failure.reason}"
        )
    for issue in validate_extraction(result).issues:
        if issue.code == "gross_mismatch":
            continue  # already reported above
        if issue.severity == "error":
            cli_ctx.logger.warning(f"Validation: {issue.message}")
        else:
            cli_ctx.logger.debug(f"Validation: {issue.message}")


def _emit_dry_run_summary(cli_ctx: CLIContext, result: ExtractionResult) -> None:
    log = cli_ctx.logger
    log.info("Dry run summary (nothing written):")
    log.info(f"  Extractor: {result.metadata.extractor}")
    log.info(f"  Records: {len(result.items)}")
    for kind, count in sorted(Counter(item.kind.value for item in result.items).items()):
        log.info(f"    {kind}: {count}")
    if result.failures:
        log.info(f"  Abandoned blocks: {len(result.failures)}")
    if result.warnings:
        log.info(f"  Reconciliation warnings: {len(result.warnings)}")
    dates = sorted(item.date for item in result.items if item.date is not None)
    if dates:
        log.info(f"  Booking dates: {dates[0].date().isoformat()} to {dates[-1].date().isoformat()}")


def _mark_dry_run(ctx: click.Context, value: bool) -> None:
    if value and isinstance(ctx.obj, CLIContext):
        ctx.obj.dry_run = True


def _render_csv(result: ExtractionResult) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    writer.writerows(_csv_row(item) for item in result.items)
    return buffer.getvalue()


def _csv_row(item: ExtractedItem) -> list[str]:
    security = item.security
    gross = item.gross_unit
    forex = gross.forex if gross else None
    rate = gross.exchange_rate if gross else None
    return [
        item.kind.value,
        item.date.isoformat() if item.date else "",
        f"{item.amount:.2f}",
        item.currency,
        (security.name or "") if security else "",
        (security.isin or "") if security else "",
        (security.wkn or "") if security else "",
        _plain(item.shares),
        f"{gross.amount.amount:.2f}" if gross else "",
        gross.amount.currency if gross else "",
        f"{forex.amount:.2f}" if forex else "",
        forex.currency if forex else "",
        _plain(rate.rate) if rate else "",
        f"{item.total(UnitKind.TAX):.2f}",
        f"{item.total(UnitKind.FEE):.2f}",
        item.note or "",
        item.document_type,
        str(item.source_line),
    ]


def _plain(value: Decimal | None) -> str:
    return "" if value is None else format(value, "f")


def _render_json(result: ExtractionResult) -> str:
    payload = {
        "institution": result.metadata.institution,
        "extractor": result.metadata.extractor,
        "document_types": list(result.metadata.document_types),
        "items": [_item_payload(item) for item in result.items],
        "warnings": [warning.message for warning in result.warnings],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def _item_payload(item: ExtractedItem) -> dict[str, Any]:
    security = item.security
    return {
        "kind": item.kind.value,
        "date": item.date.isoformat() if item.date else None,
        "amount": _plain(item.amount),
        "currency": item.currency,
        "security": (
            {"name": security.name, "isin": security.isin, "wkn": security.wkn}
            if security
            else None
        ),
        "shares": _plain(item.shares) or None,
        "note": item.note,
        "units": [
            {
                "kind": unit.kind.value,
                "amount": _plain(unit.amount.amount),
                "currency": unit.amount.currency,
                "forex_amount": _plain(unit.forex.amount) if unit.forex else None,
                "forex_currency": unit.forex.currency if unit.forex else None,
                "exchange_rate": _plain(unit.exchange_rate.rate) if unit.exchange_rate else None,
                "label": unit.label,
            }
            for unit in item.units
        ],
        "document_type": item.document_type,
        "source_line": item.source_line,
    }


def _plugin_kind_label(raw_kind: str) -> str:
    return _PLUGIN_KIND_LABELS.get(raw_kind, raw_kind)


def _load_plugins(cli_ctx: CLIContext) -> PluginLoadReport | None:
    """Register bundled rules and, unless disabled, the user plugins (once per invocation)."""

    ensure_bundled_specs_loaded()
    if _PLUGIN_REPORT_KEY in cli_ctx.state:
        return cli_ctx.state[_PLUGIN_REPORT_KEY]

    options: _PluginOptions = cli_ctx.state.get(_PLUGIN_OPTIONS_KEY, _PluginOptions())
    settings = cli_ctx.config.extraction
    report: PluginLoadReport | None = None
    if options.disabled or not settings.enable_plugins:
        cli_ctx.logger.debug("Plugin discovery disabled (configuration or --no-plugins).")
    else:
        allowlist = options.allowed or settings.plugin_allowlist
        report = load_user_plugins(
            REGISTRY,
            settings.plugin_paths,
            allowed_names={name.lower() for name in allowlist} if allowlist else None,
            blocked_names={name.lower() for name in settings.plugin_blocklist},
        )
        _log_plugin_report(cli_ctx, report)

    cli_ctx.state[_PLUGIN_REPORT_KEY] = report
    return report


def _log_plugin_report(cli_ctx: CLIContext, report: PluginLoadReport) -> None:
    registered = report.registered
    if registered:
        yaml_count = sum(1 for event in registered if event.kind == "user_yaml")
        cli_ctx.logger.info(
            f"Loaded {len(registered)} plugin extractors "
            f"({yaml_count} YAML, {len(registered) - yaml_count} Python)."
        )
    else:
        cli_ctx.logger.debug("No user plugins discovered.")
    for event in registered:
        cli_ctx.logger.debug(f"Registered plugin {event.name} from {event.source}")
    for event in report.skipped:
        cli_ctx.logger.debug(f"Skipped plugin {event.source}: {event.message}")
    for event in report.failures:
        cli_ctx.logger.warning(f"Plugin load failure for {event.source}: {event.message}")


@main.group("dev")
def dev_group() -> None:
    """Tooling for rule-file and plugin authors."""


@dev_group.command("list-extractors")
@pass_cli_context
def dev_list_extractors(cli_ctx: CLIContext) -> None:
    """List registered extractors, their precedence, and where they came from."""

    _load_plugins(cli_ctx)
    entries = REGISTRY.describe()
    if not entries:
        cli_ctx.logger.info("No extractors registered.")
        return

    cli_ctx.logger.info("Registered extractors:")
    for entry in entries:
        status = "primary" if entry.primary else "alternate"
        cli_ctx.logger.info(
            f"  - {entry.name} ({status}) → {_plugin_kind_label(entry.plugin_kind)} "
            f"[source: {entry.origin}]"
        )


@dev_group.command("validate-spec")
@click.argument("yaml_path", type=click.Path(exists=True, path_type=str))
@pass_cli_context
def dev_validate_spec(cli_ctx: CLIContext, yaml_path: str) -> None:
    """Compile a YAML rule file (patterns, steps, groups) without registering it."""

    try:
        spec = load_spec(yaml_path)
    except Exception as exc:
        raise click.ClickException(f"Spec validation failed: {exc}") from exc

    cli_ctx.logger.info(
        f"Spec '{spec.name}' loaded successfully for institution '{spec.institution}'."
    )
    for document_type in spec.document_types:
        blocks = ", ".join(
            block.name or f"block {index}" for index, block in enumerate(document_type.blocks)
        )
        cli_ctx.logger.info(f"  {document_type.name}: {blocks}")

    ensure_bundled_specs_loaded()
    if REGISTRY.get(spec.name) is not None:
        cli_ctx.logger.warning(
            "An extractor with this name is already registered; "
            "installing this spec will override the existing version."
        )
    if not (spec.detection.keywords_all or spec.detection.keywords_any):
        cli_ctx.logger.warning(
            "No detection keywords; the spec will claim every document carrying one of its markers."
        )
    cli_ctx.logger.success("Spec structure validated successfully.")


if __name__ == "__main__":  # pragma: no cover
    main()
