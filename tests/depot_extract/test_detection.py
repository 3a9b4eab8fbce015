from __future__ import annotations

import pytest

from depot_cli.depot_extract.extractors import detect_extractor
from depot_cli.depot_extract.parsers.text_loader import TextDocument
from depot_cli.shared.exceptions import UnsupportedFormatError


def test_detection_finds_quirin_rules() -> None:
    document = TextDocument(text="Quirin Privatbank AG\nKontoauszug\n")

    extractor = detect_extractor(document, allowed_institutions=("quirin",))

    assert extractor.name == "quirin"


def test_detection_respects_configured_supported_banks() -> None:
    document = TextDocument(text="Quirin Privatbank AG\nKontoauszug\n")

    with pytest.raises(UnsupportedFormatError) as exc:
        detect_extractor(document, allowed_institutions=("otherbank",))

    assert "Quirin Privatbank AG" in str(exc.value)
    assert "disabled via configuration" in str(exc.value)


def test_detection_unknown_institution() -> None:
    document = TextDocument(text="Sparkasse Musterstadt\nKontoauszug\n")

    with pytest.raises(UnsupportedFormatError) as exc:
        detect_extractor(document)

    assert "Unsupported document format" in str(exc.value)


def test_detection_requires_known_document_type() -> None:
    document = TextDocument(text="Quirin Privatbank AG\nDepotauszug\n")

    with pytest.raises(UnsupportedFormatError):
        detect_extractor(document, allowed_institutions=("quirin",))
