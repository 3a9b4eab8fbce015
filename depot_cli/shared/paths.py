"""Filesystem locations used by the depot tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

DEFAULT_CONFIG_DIR = "~/.depotcli"
CONFIG_FILENAME = "config.yaml"
PLUGINS_DIRNAME = "extractors"
DEFAULT_OUTPUT_DIR = "output"

CONFIG_DIR_ENV = "DEPOTCLI_CONFIG_DIR"
CONFIG_FILE_ENV = "DEPOTCLI_CONFIG_PATH"
PLUGINS_DIR_ENV = "DEPOTCLI_PLUGIN_DIR"


def resolve_path(path_str: str | Path) -> Path:
    """Expand ``~`` and environment variables in a configured path."""
    return Path(os.path.expandvars(str(path_str))).expanduser()


def get_config_dir(env: Mapping[str, str] | None = None) -> Path:
    env = env or os.environ
    return resolve_path(env.get(CONFIG_DIR_ENV, DEFAULT_CONFIG_DIR))


def default_config_path(env: Mapping[str, str] | None = None) -> Path:
    """Return the config file location; ``DEPOTCLI_CONFIG_PATH`` wins over the config dir."""
    env = env or os.environ
    override = env.get(CONFIG_FILE_ENV)
    if override:
        return resolve_path(override)
    return get_config_dir(env) / CONFIG_FILENAME


def default_plugins_path(env: Mapping[str, str] | None = None) -> Path:
    """Return the directory scanned for user rule files and Python extractors.

    Without ``DEPOTCLI_PLUGIN_DIR`` this is the ``extractors`` folder inside the
    config directory, so relocating the config dir relocates the plugins too.
    """
    env = env or os.environ
    override = env.get(PLUGINS_DIR_ENV)
    if override:
        return resolve_path(override)
    return get_config_dir(env) / PLUGINS_DIRNAME
