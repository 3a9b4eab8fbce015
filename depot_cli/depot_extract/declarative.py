"""Declarative document extractor runtime.

Bank formats are described in YAML rule files instead of Python code: each
document type names a marker, its blocks, and the sections of every block.
This module parses such files into dataclasses, validates them, and compiles
them into the engine objects from ``parser.py``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from depot_cli.shared.exceptions import SpecError

from . import assigners
from .extractors.base import StatementExtractor
from .parser import (
    Block,
    DocumentType,
    LineMatcher,
    SearchScope,
    Section,
    SectionKind,
    TransactionBuilder,
    parse_document,
)
from .types import DocumentMetadata, ExtractionResult, ItemKind
from .utils import SecurityCatalog, Tolerance

# ============================================================================
# Data Classes (match YAML schema)
# ============================================================================


@dataclass
class StepConfig:
    """One assignment step: a registered name plus keyword options."""

    name: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class SectionConfig:
    """Line patterns of one section and what to do when they match."""

    name: str
    kind: SectionKind = SectionKind.MANDATORY
    match: list[str] = field(default_factory=list)
    required: list[str] | None = None
    assign: list[StepConfig] = field(default_factory=list)
    max_gap: int = 0
    search: SearchScope = SearchScope.CURSOR
    alternatives: list[SectionConfig] = field(default_factory=list)
    optional: bool = False


@dataclass
class TransactionConfig:
    """Record kind, ordered sections, and shared groups of one block."""

    kind: ItemKind
    sections: list[SectionConfig] = field(default_factory=list)
    include: list[str] = field(default_factory=list)
    conclude: list[str] = field(default_factory=list)
    kind_from_context: str | None = None
    kind_mapping: dict[str, ItemKind] = field(default_factory=dict)


@dataclass
class BlockConfig:
    """Where a record starts (and optionally ends) in the document."""

    start: str
    transaction: TransactionConfig
    name: str | None = None
    end: str | None = None
    max_span: int | None = None


@dataclass
class DocumentTypeConfig:
    """A document layout identified by a marker."""

    name: str
    marker: str
    blocks: list[BlockConfig] = field(default_factory=list)
    context: list[SectionConfig] = field(default_factory=list)


@dataclass
class DetectionConfig:
    """Detection rules for supports() method."""

    keywords_all: list[str] = field(default_factory=list)
    keywords_any: list[str] = field(default_factory=list)


@dataclass
class DeclarativeSpec:
    """Root specification for declarative extractor."""

    name: str
    institution: str
    document_types: list[DocumentTypeConfig]
    section_groups: dict[str, list[SectionConfig]] = field(default_factory=dict)
    detection: DetectionConfig = field(default_factory=DetectionConfig)


# ============================================================================
# YAML Loading
# ============================================================================


def load_spec(yaml_path: str | Path) -> DeclarativeSpec:
    """Load and parse a declarative extractor spec from YAML.

    Args:
        yaml_path: Path to YAML spec file

    Returns:
        Parsed DeclarativeSpec

    Raises:
        SpecError: If spec is invalid
        FileNotFoundError: If file doesn't exist
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Spec file not found: {yaml_path}")
    return parse_spec_text(path.read_text(encoding="utf-8"), source=str(path))


def parse_spec_text(text: str, *, source: str = "<string>") -> DeclarativeSpec:
    """Parse rule-file text; ``source`` only labels YAML syntax errors."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SpecError(f"Spec file {source} is not valid YAML: {exc}") from exc
    return _parse_spec(data)


def _parse_spec(data: Any) -> DeclarativeSpec:
    """Parse YAML data into a validated DeclarativeSpec."""
    if not isinstance(data, dict):
        raise SpecError("Spec root must be a mapping")

    name = data.get("name")
    institution = data.get("institution")
    if not name or not institution:
        raise SpecError("Missing required fields: name, institution")

    groups_data = data.get("section_groups") or {}
    if not isinstance(groups_data, dict):
        raise SpecError("section_groups must map group names to section lists")
    section_groups = {
        str(group): [_parse_section(item, f"section_groups.{group}") for item in _as_list(items)]
        for group, items in groups_data.items()
    }

    types_data = _as_list(data.get("document_types"))
    if not types_data:
        raise SpecError("At least one entry in document_types is required")
    document_types = [
        _parse_document_type(item, f"document_types[{index}]") for index, item in enumerate(types_data)
    ]

    spec = DeclarativeSpec(
        name=str(name),
        institution=str(institution),
        document_types=document_types,
        section_groups=section_groups,
        detection=_parse_detection(data.get("detection") or {}),
    )
    # Compile once so bad regexes and unknown steps fail at load time.
    compile_document_types(spec)
    return spec


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _parse_document_type(data: Any, where: str) -> DocumentTypeConfig:
    if not isinstance(data, dict):
        raise SpecError(f"{where} must be a mapping")
    name = data.get("name")
    if not name:
        raise SpecError(f"{where}.name is required")
    where = f"document type '{name}'"
    blocks = [
        _parse_block(item, f"{where} blocks[{index}]")
        for index, item in enumerate(_as_list(data.get("blocks")))
    ]
    if not blocks:
        raise SpecError(f"{where} needs at least one block")
    return DocumentTypeConfig(
        name=str(name),
        marker=str(data.get("marker") or name),
        blocks=blocks,
        context=[
            _parse_section(item, f"{where} context", default_search=SearchScope.WINDOW)
            for item in _as_list(data.get("context"))
        ],
    )


def _parse_block(data: Any, where: str) -> BlockConfig:
    if not isinstance(data, dict) or not data.get("start"):
        raise SpecError(f"{where} needs a start pattern")
    max_span = data.get("max_span")
    if max_span is not None and (not isinstance(max_span, int) or max_span < 1):
        raise SpecError(f"{where}.max_span must be a positive integer")
    return BlockConfig(
        start=str(data["start"]),
        transaction=_parse_transaction(data.get("transaction"), where),
        name=data.get("name"),
        end=data.get("end"),
        max_span=max_span,
    )


def _parse_transaction(data: Any, where: str) -> TransactionConfig:
    if not isinstance(data, dict):
        raise SpecError(f"{where}.transaction must be a mapping")
    mapping_data = data.get("kind_mapping") or {}
    if not isinstance(mapping_data, dict):
        raise SpecError(f"{where}.transaction.kind_mapping must be a mapping")
    return TransactionConfig(
        kind=_parse_kind(data.get("kind"), where),
        sections=[_parse_section(item, where) for item in _as_list(data.get("sections"))],
        include=[str(group) for group in _as_list(data.get("include"))],
        conclude=[str(hook) for hook in _as_list(data.get("conclude"))],
        kind_from_context=data.get("kind_from_context"),
        kind_mapping={str(word): _parse_kind(kind, where) for word, kind in mapping_data.items()},
    )


def _parse_kind(value: Any, where: str) -> ItemKind:
    if not value:
        raise SpecError(f"{where}: record kind is required")
    try:
        return ItemKind.parse(str(value))
    except ValueError as exc:
        raise SpecError(f"{where}: {exc}") from exc


def _parse_section(
    data: Any,
    where: str,
    *,
    default_search: SearchScope = SearchScope.CURSOR,
    alternative: bool = False,
) -> SectionConfig:
    if not isinstance(data, dict):
        raise SpecError(f"{where}: each section must be a mapping")
    name = data.get("name")
    if not name:
        raise SpecError(f"{where}: section name is required")
    where = f"{where} section '{name}'"
    if alternative:
        inherited = sorted(key for key in ("kind", "search", "optional") if key in data)
        if inherited:
            raise SpecError(
                f"{where}: alternatives take {', '.join(inherited)} from their one_of section"
            )

    try:
        kind = SectionKind(str(data.get("kind", SectionKind.MANDATORY.value)))
        search = SearchScope(str(data.get("search", default_search.value)))
    except ValueError as exc:
        raise SpecError(f"{where}: {exc}") from exc

    max_gap = data.get("max_gap", 0)
    if not isinstance(max_gap, int) or max_gap < 0:
        raise SpecError(f"{where}: max_gap must be a non-negative integer")

    required = data.get("required")
    section = SectionConfig(
        name=str(name),
        kind=kind,
        match=[str(pattern) for pattern in _as_list(data.get("match"))],
        required=[str(item) for item in _as_list(required)] if required is not None else None,
        assign=[_parse_step(item, where) for item in _as_list(data.get("assign"))],
        max_gap=max_gap,
        search=search,
        alternatives=[
            _parse_section(item, f"{where} alternative", alternative=True)
            for item in _as_list(data.get("alternatives"))
        ],
        optional=bool(data.get("optional", False)),
    )

    if kind is SectionKind.ONE_OF:
        if not section.alternatives:
            raise SpecError(f"{where}: one_of sections need alternatives")
        if section.match or section.assign:
            raise SpecError(f"{where}: one_of sections take patterns and steps from their alternatives")
    else:
        if not section.match:
            raise SpecError(f"{where}: at least one match pattern is required")
        if not section.assign:
            raise SpecError(f"{where}: at least one assign step is required")
    return section


def _parse_step(data: Any, where: str) -> StepConfig:
    if isinstance(data, str):
        return StepConfig(name=data)
    if isinstance(data, dict) and len(data) == 1:
        ((name, options),) = data.items()
        if options is None:
            options = {}
        if not isinstance(options, dict):
            raise SpecError(f"{where}: options of step '{name}' must be a mapping")
        return StepConfig(name=str(name), options=dict(options))
    raise SpecError(f"{where}: assign entries are step names or {{step: {{options}}}} mappings")


def _parse_detection(data: dict[str, Any]) -> DetectionConfig:
    """Parse detection configuration."""
    return DetectionConfig(
        keywords_all=[str(keyword) for keyword in _as_list(data.get("keywords_all"))],
        keywords_any=[str(keyword) for keyword in _as_list(data.get("keywords_any"))],
    )


# ============================================================================
# Compilation
# ============================================================================


def compile_document_types(spec: DeclarativeSpec) -> tuple[DocumentType, ...]:
    """Turn the spec's configuration into engine objects."""

    return tuple(_compile_document_type(config, spec.section_groups) for config in spec.document_types)


def _compile_pattern(pattern: str, where: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise SpecError(f"{where}: invalid pattern {pattern!r}: {exc}") from exc


def _compile_document_type(
    config: DocumentTypeConfig, groups: dict[str, list[SectionConfig]]
) -> DocumentType:
    where = f"document type '{config.name}'"
    return DocumentType(
        name=config.name,
        marker=_compile_pattern(config.marker, f"{where} marker"),
        blocks=tuple(_compile_block(block, groups, where) for block in config.blocks),
        context_sections=tuple(
            _compile_section(section, where, context_only=True) for section in config.context
        ),
    )


def _compile_block(config: BlockConfig, groups: dict[str, list[SectionConfig]], where: str) -> Block:
    where = f"{where} block '{config.name or config.start}'"
    transaction = config.transaction

    sections = [_compile_section(section, where) for section in transaction.sections]
    for group in transaction.include:
        if group not in groups:
            raise SpecError(f"{where}: unknown section group '{group}'")
        sections.extend(_compile_section(section, f"{where} group '{group}'") for section in groups[group])
    if not sections:
        raise SpecError(f"{where}: a transaction needs at least one section")

    builder = TransactionBuilder(
        kind=transaction.kind,
        sections=tuple(sections),
        conclude=tuple(assigners.conclusion(name) for name in transaction.conclude),
        kind_from_context=transaction.kind_from_context,
        kind_mapping=dict(transaction.kind_mapping),
    )
    return Block(
        start=LineMatcher(_compile_pattern(config.start, f"{where} start")),
        builder=builder,
        end=LineMatcher(_compile_pattern(config.end, f"{where} end")) if config.end else None,
        max_span=config.max_span,
        name=config.name or "",
    )


def _compile_section(config: SectionConfig, where: str, *, context_only: bool = False) -> Section:
    where = f"{where} section '{config.name}'"
    alternatives = tuple(
        _compile_section(alternative, where, context_only=context_only)
        for alternative in config.alternatives
    )
    matchers = tuple(LineMatcher(_compile_pattern(pattern, where)) for pattern in config.match)

    known = {name for matcher in matchers for name in matcher.group_names}
    for name in config.required or ():
        if name not in known:
            raise SpecError(f"{where}: required field '{name}' is not a named group of its patterns")

    try:
        steps = tuple(
            assigners.bind(step.name, step.options, context_only=context_only) for step in config.assign
        )
    except SpecError as exc:
        raise SpecError(f"{where}: {exc}") from exc

    return Section(
        name=config.name,
        kind=config.kind,
        matchers=matchers,
        required=tuple(config.required) if config.required is not None else None,
        assign=steps,
        max_gap=config.max_gap,
        search=config.search,
        alternatives=alternatives,
        group_optional=config.optional,
    )


# ============================================================================
# Declarative Extractor Implementation
# ============================================================================


class DeclarativeExtractor(StatementExtractor):
    """Generic extractor driven by declarative YAML spec."""

    def __init__(
        self,
        spec: DeclarativeSpec,
        *,
        securities: SecurityCatalog | None = None,
        tolerance: Tolerance | None = None,
    ):
        self.spec = spec
        self.name = spec.name
        self.institution = spec.institution
        self.securities = securities
        self.tolerance = tolerance
        self.document_types = compile_document_types(spec)

    def supports(self, document: Any) -> bool:
        """Check detection keywords (case-insensitive) against the document text."""
        text = document.text.lower()

        for keyword in self.spec.detection.keywords_all:
            if keyword.lower() not in text:
                return False

        if self.spec.detection.keywords_any:
            if not any(keyword.lower() in text for keyword in self.spec.detection.keywords_any):
                return False

        return any(document_type.applies(document.text) for document_type in self.document_types)

    def extract(self, document: Any) -> ExtractionResult:
        parsed = parse_document(
            document.text,
            self.document_types,
            securities=self.securities,
            tolerance=self.tolerance,
        )
        metadata = DocumentMetadata(
            institution=self.spec.institution,
            extractor=self.name,
            document_types=tuple(parsed.document_types),
        )
        return ExtractionResult(
            metadata=metadata,
            items=parsed.items,
            failures=parsed.failures,
            warnings=parsed.warnings,
        )
