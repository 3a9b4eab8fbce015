"""Extractor base class and the name-keyed registry with precedence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Iterator

from ..types import ExtractionResult

if TYPE_CHECKING:  # pragma: no cover - import only for typing
    from ..parsers.text_loader import TextDocument
    from ..utils import SecurityCatalog, Tolerance


class StatementExtractor(ABC):
    """Abstract base for bank-specific extractors.

    ``securities`` and ``tolerance`` may be set by the caller before
    ``extract`` so several documents share one security catalog and the
    configured reconciliation tolerance.
    """

    name: str = "generic"
    institution: str | None = None
    securities: SecurityCatalog | None = None
    tolerance: Tolerance | None = None

    @abstractmethod
    def supports(self, document: TextDocument) -> bool:
        """Return True if this extractor recognises the document's institution and layout."""

    @abstractmethod
    def extract(self, document: TextDocument) -> ExtractionResult:
        """Run extraction and return records plus the diagnostic trail."""


@dataclass(frozen=True)
class RegistrationResult:
    name: str
    became_primary: bool
    replaced_existing: bool


@dataclass(frozen=True)
class RegistryEntry:
    """Listing row for ``depot-extract dev list-extractors``."""

    name: str
    origin: str
    plugin_kind: str
    primary: bool


class ExtractorRegistry:
    """Extractor types keyed by case-insensitive name.

    Each name holds a bucket: the first entry is the primary, later entries are
    alternates that only run when detection walks past the primary. Bundled
    rules register with override so a rule file wins over a Python class of the
    same name; user plugins never displace an existing name unless asked to.
    """

    def __init__(self, extractors: Iterable[type[StatementExtractor]] = ()) -> None:
        self._buckets: dict[str, list[type[StatementExtractor]]] = {}
        for extractor in extractors:
            self.register(extractor)

    def register(
        self,
        extractor: type[StatementExtractor],
        *,
        allow_override: bool = False,
    ) -> RegistrationResult:
        if not hasattr(extractor, "__origin__"):
            setattr(extractor, "__origin__", f"python::{extractor.__module__}")
        if not hasattr(extractor, "__plugin_kind__"):
            setattr(extractor, "__plugin_kind__", "builtin_python")

        bucket = self._buckets.setdefault(extractor.name.lower(), [])
        existed = bool(bucket)
        if existed and not allow_override:
            bucket.append(extractor)
            return RegistrationResult(extractor.name, became_primary=False, replaced_existing=False)
        bucket.insert(0, extractor)
        return RegistrationResult(extractor.name, became_primary=True, replaced_existing=existed)

    def names(self) -> tuple[str, ...]:
        return tuple(bucket[0].name for bucket in self._buckets.values())

    def get(self, name: str) -> type[StatementExtractor] | None:
        bucket = self._buckets.get(name.lower())
        return bucket[0] if bucket else None

    def iter_types(
        self,
        *,
        include_alternates: bool = False,
    ) -> Iterator[type[StatementExtractor]]:
        for bucket in self._buckets.values():
            if include_alternates:
                yield from bucket
            else:
                yield bucket[0]

    def alternates_for(self, name: str) -> tuple[type[StatementExtractor], ...]:
        return tuple(self._buckets.get(name.lower(), [])[1:])

    def describe(self) -> list[RegistryEntry]:
        """Return one entry per registered type, primaries before their alternates."""

        return [
            RegistryEntry(
                name=extractor.name,
                origin=getattr(extractor, "__origin__", extractor.__module__),
                plugin_kind=getattr(extractor, "__plugin_kind__", "builtin_python"),
                primary=index == 0,
            )
            for bucket in self._buckets.values()
            for index, extractor in enumerate(bucket)
        ]
