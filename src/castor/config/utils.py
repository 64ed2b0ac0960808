# src/castor/config/utils.py

"""Configuration utilities shared by the loaders and the resolver.

Pure helpers only (paths, env naming, debug switch) so they can be imported
without creating circular dependencies.
"""

from __future__ import annotations

from functools import cache
import os
from pathlib import Path
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Callable

# --- Constants ---

ENV_PREFIX = "CASTOR_"
# CASTOR_OUTBOX__BATCH_SIZE -> outbox.batch_size
NESTED_DELIMITER = "__"

CONFIG_HOME_VAR = "CASTOR_CONFIG_HOME"
PYPROJECT_PATH_VAR = "CASTOR_PYPROJECT_PATH"
PROFILE_VAR = "CASTOR_PROFILE"
DEBUG_CONFIG_VAR = "CASTOR_DEBUG_CONFIG"

_TRUTHY = frozenset({"1", "true", "yes", "on"})

# --- Path Utilities ---


def get_config_path(path_type: Literal["project", "home"]) -> Path:
    """Get configuration file path with environment override support.

    Falls back to a cwd-based path for the "home" type when ``Path.home()``
    cannot be resolved (restricted environments).
    """
    specs: dict[str, tuple[str, Callable[[], Path]]] = {
        "project": (PYPROJECT_PATH_VAR, lambda: Path.cwd() / "pyproject.toml"),
        "home": (CONFIG_HOME_VAR, lambda: Path.home() / ".config" / "castor.toml"),
    }
    env_var, default_factory = specs[path_type]
    if override := os.environ.get(env_var):
        return Path(override)
    try:
        return default_factory()
    except RuntimeError:
        if path_type == "home":
            return Path.cwd() / "castor.toml"
        raise


def get_pyproject_path() -> Path:
    return get_config_path("project")


def get_home_config_path() -> Path:
    return get_config_path("home")


# --- Environment Utilities ---


def get_effective_profile() -> str | None:
    """Profile selected through ``CASTOR_PROFILE`` (blank means none)."""
    value = os.environ.get(PROFILE_VAR, "").strip()
    return value or None


@cache
def env_key_for(field: str) -> str:
    """Environment variable for a dotted field path (``outbox.batch_size``)."""
    return ENV_PREFIX + field.replace(".", NESTED_DELIMITER).upper()


def field_spec_hint(field: str) -> str:
    """Return a compact hint for setting a dotted config field via env or files."""
    section, _, name = field.partition(".")
    table = f"[tool.castor.{section}] {name}" if name else f"[tool.castor] {section}"
    return (
        f"Set {env_key_for(field)} or {table} in pyproject.toml "
        "(or ~/.config/castor.toml)."
    )


def is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def should_emit_debug() -> bool:
    """Return True when the config audit should be logged on every resolution."""
    return is_truthy(os.environ.get(DEBUG_CONFIG_VAR))
