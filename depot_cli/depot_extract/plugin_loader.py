"""Discovery of extractor plugins: bundled rule files and the user plugin directory.

Rule files (``*.yaml``/``*.yml``) become ``DeclarativeExtractor`` subclasses.
Python files contribute every concrete ``StatementExtractor`` subclass they
define. Each candidate produces one ``PluginLoadEvent`` so the CLI can report
what was registered, skipped, or broken.
"""

from __future__ import annotations

import copy
import hashlib
import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Iterable, Iterator, Sequence

from .extractors.base import ExtractorRegistry, RegistrationResult, StatementExtractor

if TYPE_CHECKING:  # pragma: no cover - import only for static type checking
    from .declarative import DeclarativeExtractor, DeclarativeSpec

_LOGGER = logging.getLogger(__name__)

BUNDLED_SPECS_PACKAGE = "depot_cli.depot_extract.bundled_specs"
RULE_FILE_SUFFIXES = (".yaml", ".yml")
PYTHON_SUFFIX = ".py"


@dataclass(frozen=True)
class PluginLoadEvent:
    """Outcome for one plugin candidate (a rule file or one class of a module)."""

    source: str
    kind: str  # "bundled_yaml" | "user_yaml" | "python"
    status: str  # "registered" | "skipped" | "error"
    name: str | None = None
    became_primary: bool = False
    replaced_existing: bool = False
    message: str | None = None


@dataclass
class PluginLoadReport:
    events: list[PluginLoadEvent] = field(default_factory=list)

    @property
    def registered(self) -> list[PluginLoadEvent]:
        return self._with_status("registered")

    @property
    def failures(self) -> list[PluginLoadEvent]:
        return self._with_status("error")

    @property
    def skipped(self) -> list[PluginLoadEvent]:
        return self._with_status("skipped")

    def add(self, event: PluginLoadEvent) -> None:
        self.events.append(event)

    def extend(self, events: Iterable[PluginLoadEvent]) -> None:
        self.events.extend(events)

    def _with_status(self, status: str) -> list[PluginLoadEvent]:
        return [event for event in self.events if event.status == status]


@dataclass(frozen=True)
class _NamePolicy:
    """Allow/block lists from configuration or ``--allow-plugin`` (lower-cased names)."""

    allowed: frozenset[str] | None = None
    blocked: frozenset[str] = frozenset()

    def refusal(self, name: str) -> str | None:
        lowered = name.lower()
        if lowered in self.blocked:
            return "blocked by configuration"
        if self.allowed is not None and lowered not in self.allowed:
            return "not in allowed plugin list"
        return None


def load_bundled_specs(
    registry: ExtractorRegistry,
    *,
    package: str = BUNDLED_SPECS_PACKAGE,
) -> PluginLoadReport:
    """Register every rule file shipped in ``package``; bundled rules take precedence."""

    from .declarative import parse_spec_text

    report = PluginLoadReport()
    try:
        bundle = resources.files(package)
    except ModuleNotFoundError:
        _LOGGER.debug("Bundled specs package %s not found", package)
        return report

    for resource in sorted(bundle.iterdir(), key=lambda item: item.name):
        if not resource.name.lower().endswith(RULE_FILE_SUFFIXES):
            continue
        origin = f"bundled::{resource.name}"
        try:
            spec = parse_spec_text(resource.read_text(encoding="utf-8"), source=origin)
        except Exception as exc:
            report.add(_error_event(origin, "bundled_yaml", exc))
            continue
        report.add(_register_rules(spec, registry, origin, "bundled_yaml", allow_override=True))
    return report


def load_user_plugins(
    registry: ExtractorRegistry,
    roots: Sequence[str | Path],
    *,
    allow_override: bool = False,
    allowed_names: set[str] | None = None,
    blocked_names: set[str] | None = None,
) -> PluginLoadReport:
    """Load rule files and Python extractors from ``roots`` (directories or single files).

    Missing roots are ignored, which keeps the default plugin directory optional.
    """

    policy = _NamePolicy(
        allowed=frozenset(allowed_names) if allowed_names is not None else None,
        blocked=frozenset(blocked_names or ()),
    )
    report = PluginLoadReport()
    for path in _candidate_files(roots):
        if path.suffix.lower() in RULE_FILE_SUFFIXES:
            report.add(_load_rule_file(path, registry, policy, allow_override))
        else:
            report.extend(_load_python_file(path, registry, policy, allow_override))
    return report


def _candidate_files(roots: Sequence[str | Path]) -> Iterator[Path]:
    suffixes = {PYTHON_SUFFIX, *RULE_FILE_SUFFIXES}
    for root in roots:
        path = Path(root).expanduser()
        if not path.exists():
            _LOGGER.debug("Plugin root %s does not exist; skipping", path)
            continue
        for candidate in [path] if path.is_file() else sorted(path.rglob("*")):
            if candidate.is_file() and candidate.suffix.lower() in suffixes:
                yield candidate


def _load_rule_file(
    path: Path,
    registry: ExtractorRegistry,
    policy: _NamePolicy,
    allow_override: bool,
) -> PluginLoadEvent:
    from .declarative import load_spec

    try:
        spec = load_spec(path)
    except Exception as exc:
        _LOGGER.debug("Rule file %s rejected: %s", path, exc)
        return _error_event(str(path), "user_yaml", exc)

    refusal = policy.refusal(spec.name)
    if refusal is not None:
        return PluginLoadEvent(str(path), "user_yaml", "skipped", name=spec.name, message=refusal)
    return _register_rules(spec, registry, str(path), "user_yaml", allow_override=allow_override)


def _register_rules(
    spec: DeclarativeSpec,
    registry: ExtractorRegistry,
    origin: str,
    kind: str,
    *,
    allow_override: bool,
) -> PluginLoadEvent:
    extractor_type = _declarative_type(spec, origin=origin, plugin_kind=kind)
    result = registry.register(extractor_type, allow_override=allow_override)
    return _registration_event(origin, kind, spec.name, result)


def _load_python_file(
    path: Path,
    registry: ExtractorRegistry,
    policy: _NamePolicy,
    allow_override: bool,
) -> list[PluginLoadEvent]:
    try:
        module = _import_plugin_module(path)
    except Exception as exc:
        _LOGGER.debug("Plugin module %s failed to import: %s", path, exc)
        return [_error_event(str(path), "python", exc)]

    extractor_types = _extractor_types_in(module)
    if not extractor_types:
        return [
            PluginLoadEvent(
                str(path), "python", "skipped", message="No StatementExtractor subclasses found"
            )
        ]

    events: list[PluginLoadEvent] = []
    for extractor_type in extractor_types:
        source = f"{path}::{extractor_type.__name__}"
        refusal = policy.refusal(extractor_type.name)
        if refusal is not None:
            events.append(
                PluginLoadEvent(source, "python", "skipped", name=extractor_type.name, message=refusal)
            )
            continue
        extractor_type.__origin__ = str(path)  # type: ignore[attr-defined]
        extractor_type.__plugin_kind__ = "python_user"  # type: ignore[attr-defined]
        result = registry.register(extractor_type, allow_override=allow_override)
        events.append(_registration_event(source, "python", extractor_type.name, result))
    return events


def _import_plugin_module(path: Path) -> ModuleType:
    """Import ``path`` under a stable private name so sibling helper modules resolve."""

    digest = hashlib.sha1(str(path).encode("utf-8"), usedforsecurity=False).hexdigest()
    module_name = f"depot_user_plugins.{digest}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Unable to create loader for {path}")

    parent = str(path.parent)
    added = parent not in sys.path
    if added:
        sys.path.insert(0, parent)
    try:
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
    finally:
        if added:
            sys.path.remove(parent)
    return module


def _declarative_type(
    spec: DeclarativeSpec,
    *,
    origin: str,
    plugin_kind: str,
) -> type[DeclarativeExtractor]:
    """Wrap ``spec`` in a zero-argument extractor type the registry can instantiate."""

    from .declarative import DeclarativeExtractor

    frozen_spec = copy.deepcopy(spec)

    class _RuleFileExtractor(DeclarativeExtractor):
        name = frozen_spec.name
        institution = frozen_spec.institution

        def __init__(self) -> None:
            super().__init__(frozen_spec)

    _RuleFileExtractor.__module__ = "depot_cli.depot_extract.plugins"
    _RuleFileExtractor.__qualname__ = f"DeclarativeExtractor[{frozen_spec.name}]"
    _RuleFileExtractor.__origin__ = origin  # type: ignore[attr-defined]
    _RuleFileExtractor.__plugin_kind__ = plugin_kind  # type: ignore[attr-defined]
    return _RuleFileExtractor


def _extractor_types_in(module: ModuleType) -> list[type[StatementExtractor]]:
    return [
        attribute
        for attribute in vars(module).values()
        if inspect.isclass(attribute)
        and issubclass(attribute, StatementExtractor)
        and not inspect.isabstract(attribute)
        and attribute.__module__ == module.__name__
    ]


def _registration_event(
    source: str, kind: str, name: str, result: RegistrationResult
) -> PluginLoadEvent:
    if not result.became_primary:
        status, message = "skipped", "Existing extractor takes precedence"
    elif result.replaced_existing:
        status, message = "registered", "Replaced previously registered extractor"
    else:
        status, message = "registered", None
    return PluginLoadEvent(
        source=source,
        kind=kind,
        status=status,
        name=name,
        became_primary=result.became_primary,
        replaced_existing=result.replaced_existing,
        message=message,
    )


def _error_event(source: str, kind: str, exc: Exception) -> PluginLoadEvent:
    return PluginLoadEvent(source, kind, "error", message=f"{exc.__class__.__name__}: {exc}")
