"""Configuration for the depot tools.

Settings are layered: built-in defaults, then the YAML config file, then
``DEPOTCLI_*`` environment variables. The result is frozen into ``AppConfig``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from . import paths
from .exceptions import ConfigurationError

_ENGINES = ("auto", "text", "pdfplumber")
_OUTPUT_FORMATS = ("csv", "json")


@dataclass(frozen=True, slots=True)
class ExtractionSettings:
    """Document loading and extractor discovery."""

    engine: str  # "auto", "text", or "pdfplumber"
    supported_banks: tuple[str, ...]
    enable_plugins: bool
    plugin_paths: tuple[Path, ...]
    plugin_allowlist: tuple[str, ...]
    plugin_blocklist: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ReconciliationSettings:
    """Tolerances used when a converted gross amount is checked against its rate."""

    absolute_tolerance: Decimal
    relative_tolerance: Decimal


@dataclass(frozen=True, slots=True)
class OutputSettings:
    """Where and how extracted items are written."""

    format: str
    directory: Path


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path
    extraction: ExtractionSettings
    reconciliation: ReconciliationSettings
    output: OutputSettings


def _parse_flag(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError("expected boolean (true/false)")


def _parse_names(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_tolerance(raw: Any) -> Decimal:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValueError("expected a decimal number") from exc
    if not value.is_finite() or value < 0:
        raise ValueError("expected a non-negative decimal number")
    return value


# env var -> (section, key, parser)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "DEPOTCLI_EXTRACTION_ENGINE": ("extraction", "engine", str.strip),
    "DEPOTCLI_SUPPORTED_BANKS": ("extraction", "supported_banks", _parse_names),
    "DEPOTCLI_ENABLE_PLUGINS": ("extraction", "enable_plugins", _parse_flag),
    "DEPOTCLI_PLUGIN_PATHS": ("extraction", "plugin_paths", _parse_names),
    "DEPOTCLI_PLUGIN_ALLOW": ("extraction", "plugin_allowlist", _parse_names),
    "DEPOTCLI_PLUGIN_DENY": ("extraction", "plugin_blocklist", _parse_names),
    "DEPOTCLI_ABSOLUTE_TOLERANCE": ("reconciliation", "absolute_tolerance", _parse_tolerance),
    "DEPOTCLI_RELATIVE_TOLERANCE": ("reconciliation", "relative_tolerance", _parse_tolerance),
    "DEPOTCLI_OUTPUT_FORMAT": ("output", "format", str.strip),
    "DEPOTCLI_OUTPUT_DIR": ("output", "directory", str.strip),
}


def _defaults(env: Mapping[str, str]) -> dict[str, dict[str, Any]]:
    return {
        "extraction": {
            "engine": "auto",
            "supported_banks": ["quirin"],
            "enable_plugins": True,
            "plugin_paths": [str(paths.default_plugins_path(env=env))],
            "plugin_allowlist": [],
            "plugin_blocklist": [],
        },
        "reconciliation": {
            "absolute_tolerance": "0.01",
            "relative_tolerance": "0.0005",
        },
        "output": {
            "format": "csv",
            "directory": paths.DEFAULT_OUTPUT_DIR,
        },
    }


def load_config(
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load configuration from defaults, YAML file, and env overrides."""
    env = dict(env or os.environ)
    source_path = (
        paths.resolve_path(config_path) if config_path else paths.default_config_path(env=env)
    )

    settings = _defaults(env)
    for section, values in _read_config_file(source_path).items():
        if isinstance(values, Mapping) and section in settings:
            settings[section].update(values)
        else:
            settings[section] = values  # type: ignore[assignment]

    for env_key, (section, key, parse) in ENV_OVERRIDES.items():
        if env_key not in env:
            continue
        try:
            settings[section][key] = parse(env[env_key])
        except ValueError as exc:
            raise ConfigurationError(
                f"Environment override {env_key} has invalid value '{env[env_key]}': {exc}"
            ) from exc

    return _build_config(settings, source_path)


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file at {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config file at {path} must define a mapping root object.")
    return dict(data)


def _names(values: Any) -> tuple[str, ...]:
    if isinstance(values, str):
        return tuple(_parse_names(values))
    return tuple(str(value) for value in values)


def _build_config(data: Mapping[str, Any], source_path: Path) -> AppConfig:
    try:
        extraction_cfg = data["extraction"]
        recon_cfg = data["reconciliation"]
        output_cfg = data["output"]
        extraction = ExtractionSettings(
            engine=str(extraction_cfg["engine"]).lower(),
            supported_banks=_names(extraction_cfg["supported_banks"]),
            enable_plugins=bool(extraction_cfg["enable_plugins"]),
            plugin_paths=tuple(paths.resolve_path(p) for p in _names(extraction_cfg["plugin_paths"])),
            plugin_allowlist=_names(extraction_cfg["plugin_allowlist"]),
            plugin_blocklist=_names(extraction_cfg["plugin_blocklist"]),
        )
        reconciliation = ReconciliationSettings(
            absolute_tolerance=_parse_tolerance(recon_cfg["absolute_tolerance"]),
            relative_tolerance=_parse_tolerance(recon_cfg["relative_tolerance"]),
        )
        output = OutputSettings(
            format=str(output_cfg["format"]).lower(),
            directory=paths.resolve_path(str(output_cfg["directory"])),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration structure: {exc}") from exc

    if extraction.engine not in _ENGINES:
        raise ConfigurationError(
            f"Unknown extraction engine '{extraction.engine}'. Expected one of: {', '.join(_ENGINES)}"
        )
    if output.format not in _OUTPUT_FORMATS:
        raise ConfigurationError(
            f"Unknown output format '{output.format}'. Expected one of: {', '.join(_OUTPUT_FORMATS)}"
        )

    return AppConfig(
        source_path=source_path,
        extraction=extraction,
        reconciliation=reconciliation,
        output=output,
    )
