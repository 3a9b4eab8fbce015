"""Extractor registry and document autodetection.

Every bank ships as a bundled YAML rule file; Python extractors can be added as
user plugins. Detection asks each registered extractor whether it recognises
the document and only considers the institutions enabled in configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from depot_cli.shared.exceptions import UnsupportedFormatError

from .base import ExtractorRegistry, StatementExtractor

if TYPE_CHECKING:  # pragma: no cover - import only for typing
    from ..parsers.text_loader import TextDocument
    from ..plugin_loader import PluginLoadReport

__all__ = ("REGISTRY", "detect_extractor", "ensure_bundled_specs_loaded")

REGISTRY = ExtractorRegistry()

_LOGGER = logging.getLogger(__name__)
_BUNDLED_SPEC_REPORT: PluginLoadReport | None = None


def ensure_bundled_specs_loaded() -> PluginLoadReport:
    """Load bundled declarative specs once and return the report."""

    global _BUNDLED_SPEC_REPORT
    if _BUNDLED_SPEC_REPORT is None:
        from ..plugin_loader import load_bundled_specs

        report = load_bundled_specs(REGISTRY)
        for event in report.failures:
            _LOGGER.error("Failed to load bundled rules %s: %s", event.source, event.message)
        _BUNDLED_SPEC_REPORT = report
    return _BUNDLED_SPEC_REPORT


def detect_extractor(
    document: TextDocument,
    *,
    allowed_institutions: Iterable[str] | None = None,
) -> StatementExtractor:
    """Return the first registered extractor that recognises ``document``.

    Primaries are probed before alternates. When nothing enabled matches but a
    disabled extractor would have, the error names that institution so the
    user knows to extend ``extraction.supported_banks``.
    """

    ensure_bundled_specs_loaded()
    if allowed_institutions is None:
        allowed = {name.lower() for name in REGISTRY.names()}
    else:
        allowed = {name.lower() for name in allowed_institutions}

    enabled = [cls for cls in _probe_order() if cls.name.lower() in allowed]
    disabled = [cls for cls in _probe_order() if cls.name.lower() not in allowed]

    for extractor_cls in enabled:
        extractor = extractor_cls()
        if _recognises(extractor, document):
            return extractor

    for extractor_cls in disabled:
        extractor = extractor_cls()
        if _recognises(extractor, document):
            raise UnsupportedFormatError(
                f"Detected {_institution_label(extractor)} document but support is disabled via configuration."
            )

    labels = sorted(_label_for_name(name) for name in allowed)
    raise UnsupportedFormatError(
        "Unsupported document format. Supported institutions: "
        f"{', '.join(labels) or 'none configured'}"
    )


def _probe_order() -> list[type[StatementExtractor]]:
    primaries = list(REGISTRY.iter_types())
    alternates = [
        cls for cls in REGISTRY.iter_types(include_alternates=True) if cls not in primaries
    ]
    return primaries + alternates


def _recognises(extractor: StatementExtractor, document: TextDocument) -> bool:
    try:
        return extractor.supports(document)
    except Exception:  # pragma: no cover - plugin bugs must not break detection
        _LOGGER.exception("Extractor %s failed while probing the document", extractor.name)
        return False


def _institution_label(extractor: StatementExtractor) -> str:
    return extractor.institution or extractor.name


def _label_for_name(name: str) -> str:
    extractor_cls = REGISTRY.get(name)
    if extractor_cls is None:
        return name
    return _institution_label(extractor_cls())
