"""Pattern configuration: which patterns are on and how their workers behave.

Settings are layered (defaults, home file, ``pyproject.toml``, environment,
explicit overrides), validated with pydantic and frozen into a
``FrozenConfig`` of per-pattern option objects. ``build_runtime`` reads that
frozen value once; nothing downstream re-reads the environment.
"""

from .core import (
    FieldOrigin,
    FrozenConfig,
    InboxOptions,
    Origin,
    OutboxOptions,
    SagaOptions,
    SchedulingOptions,
    Settings,
    SourceMap,
    audit_layers_summary,
    audit_lines,
    audit_text,
    check_environment,
    config_scope,
    current_config,
    doctor,
    resolve_config,
    summarize_origins,
    to_dict,
    was_field_overridden,
)
from .loaders import list_profiles, profile_validation_error, validate_profile
from .utils import field_spec_hint, get_effective_profile

__all__ = [
    "FieldOrigin",
    "FrozenConfig",
    "InboxOptions",
    "Origin",
    "OutboxOptions",
    "SagaOptions",
    "SchedulingOptions",
    "Settings",
    "SourceMap",
    "audit_layers_summary",
    "audit_lines",
    "audit_text",
    "check_environment",
    "config_scope",
    "current_config",
    "doctor",
    "field_spec_hint",
    "get_effective_profile",
    "list_profiles",
    "profile_validation_error",
    "resolve_config",
    "summarize_origins",
    "to_dict",
    "validate_profile",
    "was_field_overridden",
]
