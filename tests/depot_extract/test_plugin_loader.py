from __future__ import annotations

from pathlib import Path

import pytest

from depot_cli.depot_extract import extractors as extractor_module
from depot_cli.depot_extract.extractors.base import ExtractorRegistry, StatementExtractor
from depot_cli.depot_extract.plugin_loader import (
    PluginLoadReport,
    load_bundled_specs,
    load_user_plugins,
)

DOCS_PLUGIN = Path(__file__).resolve().parents[2] / "docs" / "examples" / "example_extractor.py"

RULE_TEMPLATE = """\
name: {name}
institution: Test Bank
detection:
  keywords_any: ["test bank"]
document_types:
  - name: Kontoauszug
    blocks:
      - start: '^Gutschrift '
        transaction:
          kind: deposit
          sections:
            - name: amount
              match: '^Gutschrift (?P<amount>[.,\\d]+) (?P<currency>\\w{{3}})$'
              assign: [set_amount]
"""

PYTHON_PLUGIN = """\
from depot_cli.depot_extract.extractors.base import StatementExtractor
from depot_cli.depot_extract.types import DocumentMetadata, ExtractionResult


class PluginBankExtractor(StatementExtractor):
    name = "plugin_bank"

    def supports(self, document):
        return "plugin bank" in document.text.lower()

    def extract(self, document):
        return ExtractionResult(
            metadata=DocumentMetadata(institution="Plugin Bank", extractor=self.name),
            items=[],
        )
"""


class StubExtractor(StatementExtractor):
    name = "builtin"

    def supports(self, document) -> bool:  # pragma: no cover - never probed here
        return False

    def extract(self, document):  # pragma: no cover - never probed here
        raise NotImplementedError


@pytest.fixture
def registry() -> ExtractorRegistry:
    return ExtractorRegistry([StubExtractor])


def _rule_file(directory: Path, filename: str, name: str) -> Path:
    path = directory / filename
    path.write_text(RULE_TEMPLATE.format(name=name), encoding="utf-8")
    return path


def _only(report: PluginLoadReport):
    assert len(report.events) == 1, report.events
    return report.events[0]


def test_quirin_rules_are_bundled_as_primary() -> None:
    report = extractor_module.ensure_bundled_specs_loaded()

    assert report.failures == []
    quirin = extractor_module.REGISTRY.get("quirin")
    assert quirin is not None
    assert quirin.__plugin_kind__ == "bundled_yaml"
    assert quirin.__origin__ == "bundled::quirin.yaml"


def test_bundled_rules_load_into_empty_registry() -> None:
    fresh = ExtractorRegistry()

    report = load_bundled_specs(fresh)

    assert fresh.names() == ("quirin",)
    assert _only(report).became_primary


def test_user_rule_file_adds_new_name(tmp_path: Path, registry: ExtractorRegistry) -> None:
    rule_path = _rule_file(tmp_path, "bank.yaml", "custom_bank")

    event = _only(load_user_plugins(registry, [tmp_path]))

    assert (event.status, event.kind, event.name) == ("registered", "user_yaml", "custom_bank")
    assert registry.names() == ("builtin", "custom_bank")
    added = registry.get("custom_bank")
    assert added.__plugin_kind__ == "user_yaml"
    assert added.__origin__ == str(rule_path)
    assert added().institution == "Test Bank"


def test_user_rule_file_does_not_displace_existing_name(
    tmp_path: Path, registry: ExtractorRegistry
) -> None:
    _rule_file(tmp_path, "dup.yaml", "builtin")

    event = _only(load_user_plugins(registry, [tmp_path]))

    assert event.status == "skipped"
    assert event.message == "Existing extractor takes precedence"
    assert registry.get("builtin") is StubExtractor
    assert len(registry.alternates_for("builtin")) == 1


def test_override_promotes_user_rule_file(tmp_path: Path, registry: ExtractorRegistry) -> None:
    rule_path = _rule_file(tmp_path, "override.yaml", "builtin")

    event = _only(load_user_plugins(registry, [rule_path], allow_override=True))

    assert event.replaced_existing
    assert event.message == "Replaced previously registered extractor"
    assert registry.get("builtin").__plugin_kind__ == "user_yaml"
    assert registry.alternates_for("builtin") == (StubExtractor,)


def test_describe_orders_primary_before_alternate(
    tmp_path: Path, registry: ExtractorRegistry
) -> None:
    _rule_file(tmp_path, "dup.yaml", "builtin")
    load_user_plugins(registry, [tmp_path])

    rows = [(entry.name, entry.primary, entry.plugin_kind) for entry in registry.describe()]

    assert rows == [
        ("builtin", True, "builtin_python"),
        ("builtin", False, "user_yaml"),
    ]


def test_rule_file_without_document_types_is_reported(
    tmp_path: Path, registry: ExtractorRegistry
) -> None:
    (tmp_path / "broken.yaml").write_text("name: broken\ninstitution: Broken Bank\n", encoding="utf-8")

    report = load_user_plugins(registry, [tmp_path])

    assert _only(report).status == "error"
    assert report.failures[0].message.startswith("SpecError")
    assert registry.names() == ("builtin",)


def test_python_module_contributes_extractor_classes(
    tmp_path: Path, registry: ExtractorRegistry
) -> None:
    module_path = tmp_path / "plugin.py"
    module_path.write_text(PYTHON_PLUGIN, encoding="utf-8")

    event = _only(load_user_plugins(registry, [tmp_path]))

    assert (event.kind, event.name) == ("python", "plugin_bank")
    assert event.source.endswith("::PluginBankExtractor")
    loaded = registry.get("plugin_bank")
    assert loaded.__plugin_kind__ == "python_user"
    assert loaded.__origin__ == str(module_path)


def test_python_module_without_extractors_is_skipped(
    tmp_path: Path, registry: ExtractorRegistry
) -> None:
    (tmp_path / "helpers.py").write_text("VALUE = 1\n", encoding="utf-8")

    event = _only(load_user_plugins(registry, [tmp_path]))

    assert event.status == "skipped"
    assert event.message == "No StatementExtractor subclasses found"


def test_documented_example_plugin_loads() -> None:
    fresh = ExtractorRegistry()

    event = _only(load_user_plugins(fresh, [DOCS_PLUGIN]))

    assert event.name == "example_python"
    assert fresh.get("example_python")().institution == "Example Bank"


def test_missing_plugin_root_is_ignored(tmp_path: Path, registry: ExtractorRegistry) -> None:
    report = load_user_plugins(registry, [tmp_path / "absent"])

    assert report.events == []


@pytest.mark.parametrize(
    ("options", "expected_message"),
    [
        ({"allowed_names": {"good"}}, "not in allowed plugin list"),
        ({"blocked_names": {"skipme"}}, "blocked by configuration"),
    ],
)
def test_name_policy_skips_plugins(
    tmp_path: Path,
    registry: ExtractorRegistry,
    options: dict,
    expected_message: str,
) -> None:
    _rule_file(tmp_path, "a_good.yaml", "good")
    _rule_file(tmp_path, "b_skipme.yaml", "skipme")

    report = load_user_plugins(registry, [tmp_path], **options)

    assert [event.name for event in report.registered] == ["good"]
    assert [(event.name, event.message) for event in report.skipped] == [
        ("skipme", expected_message)
    ]
