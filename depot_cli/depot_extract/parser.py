"""Generic line-oriented extraction engine.

A ``DocumentType`` is recognised by a marker anywhere in the text and owns
``Block``s. Every block start line opens a ``Window``; the block's
``TransactionBuilder`` runs its ``Section``s over that window, threading a
cursor and a ``TransactionDraft``. Sections only describe lines and the
assignment steps to run on a match, so bank formats live in YAML rule files
(see ``declarative.py``) and this module stays free of bank knowledge.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from depot_cli.shared.exceptions import MalformedFieldError, MandatorySectionError

from .types import BlockFailure, ExtractedItem, ItemKind, ReconciliationWarning, TransactionDraft
from .utils import SecurityCatalog, Tolerance

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Assignment = Callable[[TransactionDraft | None, Mapping[str, str], "ExtractionContext"], None]
Conclusion = Callable[[TransactionDraft, "ExtractionContext"], None]


def split_lines(text: str) -> list[str]:
    """Split ``text`` into lines with trailing whitespace removed."""

    return [line.rstrip() for line in text.split("\n")]


# ============================================================================
# Matching primitives
# ============================================================================


class LineMatcher:
    """A single regular expression applied to one line."""

    __slots__ = ("pattern",)

    def __init__(self, pattern: str | re.Pattern[str]) -> None:
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"LineMatcher({self.pattern.pattern!r})"

    @property
    def group_names(self) -> tuple[str, ...]:
        return tuple(self.pattern.groupindex)

    def match(self, line: str) -> dict[str, str] | None:
        found = self.pattern.search(line)
        if found is None:
            return None
        return {name: value for name, value in found.groupdict().items() if value is not None}


class SectionKind(str, Enum):
    MANDATORY = "mandatory"
    OPTIONAL = "optional"
    ONE_OF = "one_of"


class SearchScope(str, Enum):
    """Where a section starts looking for its first line."""

    CURSOR = "cursor"
    WINDOW = "window"


@dataclass(frozen=True, slots=True)
class Window:
    """Half-open line range ``[start, end)`` belonging to one block occurrence."""

    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class SectionMatch:
    """A successful, not yet applied, section match."""

    section: Section
    values: dict[str, str]
    first: int
    last: int

    def apply(self, draft: TransactionDraft | None, context: ExtractionContext) -> None:
        for step in self.section.assign:
            step(draft, self.values, context)


@dataclass(slots=True)
class Section:
    """Ordered line matchers plus the steps applied when all of them match.

    ``max_gap`` is the number of non-blank, unmatched lines tolerated between
    two consecutive matchers. ``required`` defaults to every named group of
    the matchers. A ``ONE_OF`` section carries ``alternatives`` instead of
    matchers; the first alternative that matches wins.
    """

    name: str
    kind: SectionKind = SectionKind.MANDATORY
    matchers: tuple[LineMatcher, ...] = ()
    required: tuple[str, ...] | None = None
    assign: tuple[Assignment, ...] = ()
    max_gap: int = 0
    search: SearchScope = SearchScope.CURSOR
    alternatives: tuple[Section, ...] = ()
    group_optional: bool = False

    def __post_init__(self) -> None:
        if self.kind is SectionKind.ONE_OF:
            if not self.alternatives:
                raise ValueError(f"Section '{self.name}' needs at least one alternative")
            if any(alt.kind is SectionKind.ONE_OF for alt in self.alternatives):
                raise ValueError(f"Section '{self.name}' cannot nest one_of alternatives")
        elif not self.matchers:
            raise ValueError(f"Section '{self.name}' needs at least one line pattern")
        if self.required is None:
            names: list[str] = []
            for matcher in self.matchers:
                names.extend(name for name in matcher.group_names if name not in names)
            self.required = tuple(names)

    @property
    def optional(self) -> bool:
        if self.kind is SectionKind.ONE_OF:
            return self.group_optional
        return self.kind is SectionKind.OPTIONAL

    def attempt(self, lines: Sequence[str], window: Window, cursor: int) -> SectionMatch | None:
        """Look for this section inside ``window`` without side effects.

        In ``cursor`` scope the first line must also lie within ``max_gap``
        non-blank lines of the cursor; the block's own start line is not
        counted. ``window`` scope scans the whole window.
        """

        if self.search is SearchScope.WINDOW:
            start, bounded = window.start, False
        else:
            start, bounded = max(cursor, window.start), True
        candidates = self.alternatives if self.kind is SectionKind.ONE_OF else (self,)
        for candidate in candidates:
            found = candidate._scan(lines, start, window, bounded)
            if found is not None:
                return found
        return None

    def _scan(
        self, lines: Sequence[str], start: int, window: Window, bounded: bool
    ) -> SectionMatch | None:
        skipped = 0
        for index in range(start, window.end):
            line = lines[index]
            values = self.matchers[0].match(line)
            if values is not None:
                found = self._complete(values, lines, index, window.end)
                if found is not None:
                    return found
            if bounded and index != window.start and line.strip():
                skipped += 1
                if skipped > self.max_gap:
                    return None
        return None

    def _complete(
        self, values: dict[str, str], lines: Sequence[str], first: int, stop: int
    ) -> SectionMatch | None:
        bound = dict(values)
        position = first
        for matcher in self.matchers[1:]:
            found = self._next_line(matcher, lines, position + 1, stop)
            if found is None:
                return None
            position, captured = found
            bound.update(captured)
        if all(bound.get(name) is not None for name in self.required or ()):
            return SectionMatch(self, bound, first, position)
        return None

    def _next_line(
        self,
        matcher: LineMatcher,
        lines: Sequence[str],
        start: int,
        stop: int,
    ) -> tuple[int, dict[str, str]] | None:
        skipped = 0
        for index in range(start, stop):
            line = lines[index]
            values = matcher.match(line)
            if values is not None:
                return index, values
            if line.strip():
                skipped += 1
                if skipped > self.max_gap:
                    return None
        return None


# ============================================================================
# Shared context
# ============================================================================


@dataclass(frozen=True, slots=True)
class _ContextSnapshot:
    values: dict[str, Any]
    typed: dict[type, Any]
    warning_count: int
    security_count: int


class ExtractionContext:
    """State shared by every block of one document type over one document.

    String keys hold remembered captures (``context["type"]``); type-keyed
    slots hold typed values such as the pending ``ExchangeRate``.
    """

    def __init__(
        self,
        document_type: str = "",
        *,
        securities: SecurityCatalog | None = None,
        tolerance: Tolerance | None = None,
    ) -> None:
        self.document_type = document_type
        self.securities = securities if securities is not None else SecurityCatalog()
        self.tolerance = tolerance if tolerance is not None else Tolerance()
        self.warnings: list[ReconciliationWarning] = []
        self._values: dict[str, Any] = {}
        self._typed: dict[type, Any] = {}

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._values[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def put_type(self, value: Any) -> None:
        self._typed[type(value)] = value

    def get_type(self, kind: type[T]) -> T | None:
        return self._typed.get(kind)

    def warn(self, warning: ReconciliationWarning) -> None:
        self.warnings.append(warning)

    def snapshot(self) -> _ContextSnapshot:
        return _ContextSnapshot(
            dict(self._values), dict(self._typed), len(self.warnings), len(self.securities)
        )

    def restore(self, snapshot: _ContextSnapshot) -> None:
        self._values = dict(snapshot.values)
        self._typed = dict(snapshot.typed)
        del self.warnings[snapshot.warning_count :]
        self.securities.discard_since(snapshot.security_count)


# ============================================================================
# Builders, blocks, and document types
# ============================================================================


@dataclass(slots=True)
class TransactionBuilder:
    """Runs a block's sections over one window and returns the draft."""

    kind: ItemKind
    sections: tuple[Section, ...]
    conclude: tuple[Conclusion, ...] = ()
    kind_from_context: str | None = None
    kind_mapping: Mapping[str, ItemKind] = field(default_factory=dict)

    def initial_kind(self, context: ExtractionContext) -> ItemKind:
        if self.kind_from_context is None:
            return self.kind
        remembered = context.get(self.kind_from_context)
        if remembered is None:
            return self.kind
        return self.kind_mapping.get(str(remembered).strip(), self.kind)

    def build(self, lines: Sequence[str], window: Window, context: ExtractionContext) -> TransactionDraft:
        draft = TransactionDraft(kind=self.initial_kind(context))
        cursor = window.start
        for section in self.sections:
            match = section.attempt(lines, window, cursor)
            if match is None:
                if section.optional:
                    continue
                raise MandatorySectionError(section.name)
            try:
                match.apply(draft, context)
            except MalformedFieldError as exc:
                exc.section = exc.section or section.name
                raise
            if section.search is SearchScope.CURSOR:
                cursor = match.last + 1
        for hook in self.conclude:
            hook(draft, context)
        return draft


@dataclass(slots=True)
class Block:
    """Start pattern (plus optional end pattern and span) locating record windows."""

    start: LineMatcher
    builder: TransactionBuilder
    end: LineMatcher | None = None
    max_span: int | None = None
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.start.pattern.pattern
        if self.max_span is not None and self.max_span < 1:
            raise ValueError(f"Block '{self.name}' max_span must be positive")

    def windows(self, lines: Sequence[str]) -> Iterator[Window]:
        total = len(lines)
        index = 0
        while index < total:
            if self.start.match(lines[index]) is None:
                index += 1
                continue
            stop = self._window_end(lines, index)
            if stop is None:
                index += 1
                continue
            if self.max_span is not None:
                stop = min(stop, index + self.max_span)
            yield Window(index, stop)
            index = stop

    def _window_end(self, lines: Sequence[str], start: int) -> int | None:
        if self.end is not None:
            for index in range(start, len(lines)):
                if self.end.match(lines[index]) is not None:
                    return index + 1
            return None
        for index in range(start + 1, len(lines)):
            if self.start.match(lines[index]) is not None:
                return index
        return len(lines)


@dataclass(slots=True)
class DocumentType:
    """A document layout recognised by ``marker`` and parsed by its blocks."""

    name: str
    marker: re.Pattern[str]
    blocks: tuple[Block, ...] = ()
    context_sections: tuple[Section, ...] = ()

    def applies(self, text: str) -> bool:
        return self.marker.search(text) is not None

    def run(
        self, lines: Sequence[str], context: ExtractionContext
    ) -> tuple[list[ExtractedItem], list[BlockFailure]]:
        items: list[ExtractedItem] = []
        failures: list[BlockFailure] = []

        whole = Window(0, len(lines))
        for section in self.context_sections:
            match = section.attempt(lines, whole, 0)
            if match is None:
                if section.optional:
                    continue
                error = MandatorySectionError(section.name)
                failures.append(
                    BlockFailure(
                        document_type=self.name,
                        block="<document>",
                        start_line=1,
                        line=lines[0] if lines else "",
                        section=section.name,
                        reason=str(error),
                    )
                )
                _LOGGER.debug("%s: %s", self.name, error)
                return items, failures
            match.apply(None, context)

        for block in self.blocks:
            for window in block.windows(lines):
                snapshot = context.snapshot()
                try:
                    draft = block.builder.build(lines, window, context)
                except (MandatorySectionError, MalformedFieldError) as exc:
                    context.restore(snapshot)
                    failure = BlockFailure(
                        document_type=self.name,
                        block=block.name,
                        start_line=window.start + 1,
                        line=lines[window.start],
                        section=getattr(exc, "section", None),
                        reason=str(exc),
                    )
                    _LOGGER.debug(
                        "%s: block at line %d abandoned (%s)", self.name, failure.start_line, exc
                    )
                    failures.append(failure)
                    continue

                item = draft.to_item(document_type=self.name, source_line=window.start + 1)
                if item is None:
                    _LOGGER.debug(
                        "%s: block at line %d produced no usable record",
                        self.name,
                        window.start + 1,
                    )
                    continue
                items.append(item)

        items.sort(key=lambda item: item.source_line)
        return items, failures


@dataclass(slots=True)
class DocumentParse:
    """Everything one document produced across all matching document types."""

    items: list[ExtractedItem] = field(default_factory=list)
    failures: list[BlockFailure] = field(default_factory=list)
    warnings: list[ReconciliationWarning] = field(default_factory=list)
    document_types: list[str] = field(default_factory=list)


def parse_document(
    text: str,
    document_types: Sequence[DocumentType],
    *,
    securities: SecurityCatalog | None = None,
    tolerance: Tolerance | None = None,
) -> DocumentParse:
    """Run every applicable document type over ``text``.

    Each document type gets a fresh ``ExtractionContext``; the security
    catalog is shared so a security seen twice resolves to the same reference.
    """

    result = DocumentParse()
    lines = split_lines(text)
    if securities is None:
        securities = SecurityCatalog()

    for document_type in document_types:
        if not document_type.applies(text):
            continue
        result.document_types.append(document_type.name)
        context = ExtractionContext(
            document_type.name, securities=securities, tolerance=tolerance
        )
        items, failures = document_type.run(lines, context)
        result.items.extend(items)
        result.failures.extend(failures)
        result.warnings.extend(context.warnings)

    if not result.document_types:
        _LOGGER.debug("No document type marker matched")
    return result
