# src/castor/config/loaders.py

"""Read configuration layers from the environment and TOML files.

Each loader returns a plain nested dictionary (``{"outbox": {"batch_size": 50}}``)
without validation; the resolver merges the layers and validates once.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

import tomllib

from . import utils

log = logging.getLogger(__name__)

# --- Constants ---

CONFIG_TOOL_NAME = "castor"

# Pattern sections accepted from every source
SECTIONS = ("outbox", "inbox", "sagas", "scheduling")

# --- Environment Loading ---


def load_env() -> Mapping[str, Any]:
    """Load configuration from ``CASTOR_<SECTION>__<FIELD>`` variables.

    Values stay strings; pydantic coerces them against the schema. Variables
    without a known section (``CASTOR_PROFILE``, ``CASTOR_TELEMETRY``, ...)
    steer resolution or other subsystems and are skipped.
    """
    config: dict[str, dict[str, Any]] = {}
    for key, value in os.environ.items():
        if not key.startswith(utils.ENV_PREFIX):
            continue
        rest = key[len(utils.ENV_PREFIX) :].lower()
        section, sep, field_name = rest.partition(utils.NESTED_DELIMITER)
        if not sep:
            continue
        if section not in SECTIONS or not field_name:
            log.debug("Ignoring unrecognized configuration variable %s", key)
            continue
        config.setdefault(section, {})[field_name] = value
    return config


# TOML files and profiles


def list_profiles() -> list[str]:
    """Profile names defined in either the home file or pyproject.toml."""
    names: set[str] = set()
    for path in (utils.get_pyproject_path(), utils.get_home_config_path()):
        data = _read_toml(path)
        profiles = data.get("tool", {}).get(CONFIG_TOOL_NAME, {}).get("profiles", {})
        names.update(name for name in profiles if isinstance(name, str) and name)
    return sorted(names)


def validate_profile(name: str) -> bool:
    """Return True if profile exists in either home or project config."""
    if not name:
        return False
    return name in set(list_profiles())


def profile_validation_error(name: str) -> str:
    """Describe why *name* is not a usable profile."""
    if not name:
        return "Profile name cannot be empty"
    available = list_profiles()
    if not available:
        return (
            f"Profile '{name}' not found. No profiles are configured in "
            f"{utils.get_pyproject_path()} or {utils.get_home_config_path()}"
        )
    return f"Profile '{name}' not found. Available profiles: {', '.join(available)}"


def _read_toml(path: Path) -> dict[str, Any]:
    """Read a TOML file, returning an empty dict when missing or unparsable."""
    if not path.exists():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        log.warning("Ignoring unreadable config file %s: %s", path, e)
        return {}


def _merge_sections(base: dict[str, Any], overlay: Mapping[str, Any]) -> None:
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = {**base[key], **value}
        else:
            base[key] = value


def _extract_tables(data: dict[str, Any], profile: str | None) -> dict[str, Any]:
    """Extract ``[tool.castor]`` and overlay ``[tool.castor.profiles.<profile>]``."""
    castor_section = data.get("tool", {}).get(CONFIG_TOOL_NAME, {})
    config: dict[str, Any] = {}
    _merge_sections(config, {k: v for k, v in castor_section.items() if k != "profiles"})
    if profile:
        _merge_sections(config, castor_section.get("profiles", {}).get(profile, {}))
    return config


def _load_config_file(path: Path, profile: str | None = None) -> Mapping[str, Any]:
    data = _read_toml(path)
    return _extract_tables(data, profile or utils.get_effective_profile())


def load_pyproject(profile: str | None = None) -> Mapping[str, Any]:
    """Load ``[tool.castor]`` from pyproject.toml in the working directory."""
    return _load_config_file(utils.get_pyproject_path(), profile)


def load_home(profile: str | None = None) -> Mapping[str, Any]:
    """Load ``[tool.castor]`` from ``~/.config/castor.toml``."""
    return _load_config_file(utils.get_home_config_path(), profile)
