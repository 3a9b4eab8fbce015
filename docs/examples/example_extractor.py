"""Skeleton StatementExtractor implementation for custom plugins.

Drop a copy into ``~/.depotcli/extractors`` (or any ``plugin_paths`` entry);
``depot-extract dev list-extractors`` shows whether it was picked up.
"""

from __future__ import annotations

from depot_cli.depot_extract.extractors.base import StatementExtractor
from depot_cli.depot_extract.parsers.text_loader import TextDocument
from depot_cli.depot_extract.types import DocumentMetadata, ExtractionResult


class ExampleExtractor(StatementExtractor):
    name = "example_python"
    institution = "Example Bank"

    def supports(self, document: TextDocument) -> bool:
        return "example depot" in document.text.lower()

    def extract(self, document: TextDocument) -> ExtractionResult:
        metadata = DocumentMetadata(institution=self.institution, extractor=self.name)
        return ExtractionResult(metadata=metadata, items=[])
