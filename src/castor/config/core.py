# src/castor/config/core.py

"""Configuration schema and resolution for the messaging patterns.

- ``Settings``: pydantic schema, one nested model per pattern
- ``FrozenConfig``: immutable runtime payload of per-pattern options
- ``SourceMap``: where each dotted field came from (audit)
- ``config_scope``: contextvar-scoped configuration for entry points

Every pattern is opt-in: ``enabled`` defaults to False.
"""

from __future__ import annotations

from contextlib import contextmanager
import contextvars
from dataclasses import dataclass, fields
from datetime import timedelta
from enum import Enum
from functools import cache
import logging
import os
from typing import TYPE_CHECKING, Any, Literal, overload

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from castor.backoff import BackoffPolicy
from castor.errors import ConfigurationError

from .utils import env_key_for, field_spec_hint, should_emit_debug

if TYPE_CHECKING:
    from collections.abc import Generator, Mapping

log = logging.getLogger(__name__)

_DAY_S = 24 * 60 * 60.0

# --- Schema (pydantic wall) ---


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and v.strip().lower() in {"", "none", "null"}:
        return None
    return v


class _PatternSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False


class _PollingSettings(_PatternSettings):
    processing_interval_s: float = Field(default=5.0, gt=0)
    batch_size: int = Field(default=100, gt=0)
    max_retries: int = Field(default=3, ge=0)
    base_retry_delay_s: float = Field(default=5.0, gt=0)
    max_retry_delay_s: float = Field(default=3600.0, gt=0)

    @model_validator(mode="after")
    def check_delay_bounds(self) -> _PollingSettings:
        if self.max_retry_delay_s < self.base_retry_delay_s:
            raise ValueError("max_retry_delay_s must be >= base_retry_delay_s")
        return self


class OutboxSettings(_PollingSettings):
    """Outbox drain loop."""

    # None keeps processed messages forever
    processed_retention_s: float | None = Field(default=None, gt=0)

    @field_validator("processed_retention_s", mode="before")
    @classmethod
    def blank_retention_is_none(cls, v: Any) -> Any:
        return _blank_to_none(v)


class SchedulingSettings(_PollingSettings):
    """Scheduled message loop."""


class InboxSettings(_PatternSettings):
    """Inbox deduplication and retention sweep."""

    max_retries: int = Field(default=3, ge=0)
    message_retention_s: float = Field(default=7 * _DAY_S, gt=0)
    purge_enabled: bool = True
    purge_interval_s: float = Field(default=3600.0, gt=0)
    purge_batch_size: int = Field(default=100, gt=0)


class SagaSettings(_PatternSettings):
    """Saga state recovery queries."""

    stuck_saga_threshold_s: float = Field(default=3600.0, gt=0)
    stuck_saga_batch_size: int = Field(default=100, gt=0)
    default_timeout_s: float | None = Field(default=None, gt=0)
    check_interval_s: float = Field(default=60.0, gt=0)

    @field_validator("default_timeout_s", mode="before")
    @classmethod
    def blank_timeout_is_none(cls, v: Any) -> Any:
        return _blank_to_none(v)


class Settings(BaseModel):
    """Single source of truth for configuration fields, defaults and validation."""

    model_config = ConfigDict(extra="forbid")

    outbox: OutboxSettings = Field(default_factory=OutboxSettings)
    inbox: InboxSettings = Field(default_factory=InboxSettings)
    sagas: SagaSettings = Field(default_factory=SagaSettings)
    scheduling: SchedulingSettings = Field(default_factory=SchedulingSettings)


@cache
def _default_settings() -> dict[str, Any]:
    return Settings().model_dump()


# Frozen options handed to the runtime


@dataclass(frozen=True)
class OutboxOptions:
    enabled: bool
    processing_interval: timedelta
    batch_size: int
    max_retries: int
    backoff: BackoffPolicy
    processed_retention: timedelta | None


@dataclass(frozen=True)
class InboxOptions:
    enabled: bool
    max_retries: int
    message_retention: timedelta
    purge_enabled: bool
    purge_interval: timedelta
    purge_batch_size: int


@dataclass(frozen=True)
class SagaOptions:
    enabled: bool
    stuck_saga_threshold: timedelta
    stuck_saga_batch_size: int
    default_timeout: timedelta | None
    check_interval: timedelta


@dataclass(frozen=True)
class SchedulingOptions:
    enabled: bool
    processing_interval: timedelta
    batch_size: int
    max_retries: int
    backoff: BackoffPolicy


@dataclass(frozen=True)
class FrozenConfig:
    """Validated, immutable configuration handed to stores and processors."""

    outbox: OutboxOptions
    inbox: InboxOptions
    sagas: SagaOptions
    scheduling: SchedulingOptions

    @property
    def enabled_patterns(self) -> tuple[str, ...]:
        return tuple(
            f.name for f in fields(self) if getattr(self, f.name).enabled
        )


# --- Audit types ---


class Origin(str, Enum):
    """Layer a resolved field value came from."""

    DEFAULT = "default"
    HOME = "home"
    PROJECT = "project"
    ENV = "env"
    OVERRIDES = "overrides"


@dataclass(frozen=True)
class FieldOrigin:
    """Where a field was set, plus the env var or file that set it."""

    origin: Origin
    env_key: str | None = None  # e.g., "CASTOR_OUTBOX__BATCH_SIZE"
    file: str | None = None  # e.g., "~/.config/castor.toml"


# Keyed by dotted path, e.g. "outbox.batch_size"
SourceMap = dict[str, FieldOrigin]


# --- Ambient scope ---

_AMBIENT: contextvars.ContextVar[FrozenConfig | None] = contextvars.ContextVar(
    "ambient_config", default=None
)

_DOTENV_LOADED: bool = False


def current_config() -> FrozenConfig | None:
    """Configuration installed by the innermost ``config_scope``, if any."""
    return _AMBIENT.get()


@contextmanager
def config_scope(
    cfg_or_overrides: Mapping[str, Any] | FrozenConfig | None = None,
    *,
    profile: str | None = None,
    **overrides: Any,
) -> Generator[FrozenConfig]:
    """Run a block with a specific configuration (thread- and task-safe).

    Example:
        with config_scope({"outbox": {"enabled": True, "batch_size": 10}}):
            runtime = build_runtime(registry)
    """
    if isinstance(cfg_or_overrides, FrozenConfig):
        cfg = cfg_or_overrides
    else:
        combined = {**(cfg_or_overrides or {}), **overrides}
        cfg = resolve_config(overrides=combined, profile=profile)
    token = _AMBIENT.set(cfg)
    try:
        yield cfg
    finally:
        _AMBIENT.reset(token)


def _try_load_dotenv() -> None:
    """Load ``.env`` once; variables already in the environment win."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    _DOTENV_LOADED = True
    from dotenv import load_dotenv

    try:
        load_dotenv()
    except OSError as e:
        log.warning("Could not load .env file: %s", e)


# Resolution


@overload
def resolve_config(
    overrides: Mapping[str, Any] | None = ...,
    profile: str | None = ...,
    *,
    explain: Literal[True],
) -> tuple[FrozenConfig, SourceMap]: ...


@overload
def resolve_config(
    overrides: Mapping[str, Any] | None = ...,
    profile: str | None = ...,
    *,
    explain: Literal[False] = ...,
) -> FrozenConfig: ...


def resolve_config(
    overrides: Mapping[str, Any] | None = None,
    profile: str | None = None,
    *,
    explain: bool = False,
) -> FrozenConfig | tuple[FrozenConfig, SourceMap]:
    """Resolve configuration from all sources into a ``FrozenConfig``.

    Precedence: defaults < home < project < env < overrides. Overrides use
    the same nested shape as the TOML tables.

    Raises:
        ConfigurationError: If validation fails.
    """
    _try_load_dotenv()

    from . import utils as _utils
    from .loaders import load_env, load_home, load_pyproject

    effective_profile = profile if profile is not None else _utils.get_effective_profile()

    merged, sources = _resolve_layers(
        overrides=overrides or {},
        env=load_env(),
        project=load_pyproject(profile=effective_profile),
        home=load_home(profile=effective_profile),
    )

    try:
        settings = Settings.model_validate(merged)
    except ValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg") or "invalid value"
        if msg.startswith("Value error, "):
            msg = msg[13:]
        hint = field_spec_hint(loc) if loc.count(".") == 1 else None
        raise ConfigurationError(
            f"Configuration validation failed for {loc or 'settings'}: {msg}",
            hint=hint,
        ) from e

    frozen = _freeze(settings)
    if not explain and should_emit_debug():
        log.info("Config audit\n%s", audit_text(frozen, sources))
    return (frozen, sources) if explain else frozen


# --- Internal helpers ---


def _seconds(value: float | None) -> timedelta | None:
    return None if value is None else timedelta(seconds=value)


def _freeze(settings: Settings) -> FrozenConfig:
    o, i, s, sc = settings.outbox, settings.inbox, settings.sagas, settings.scheduling
    return FrozenConfig(
        outbox=OutboxOptions(
            enabled=o.enabled,
            processing_interval=timedelta(seconds=o.processing_interval_s),
            batch_size=o.batch_size,
            max_retries=o.max_retries,
            backoff=BackoffPolicy.from_seconds(o.base_retry_delay_s, o.max_retry_delay_s),
            processed_retention=_seconds(o.processed_retention_s),
        ),
        inbox=InboxOptions(
            enabled=i.enabled,
            max_retries=i.max_retries,
            message_retention=timedelta(seconds=i.message_retention_s),
            purge_enabled=i.purge_enabled,
            purge_interval=timedelta(seconds=i.purge_interval_s),
            purge_batch_size=i.purge_batch_size,
        ),
        sagas=SagaOptions(
            enabled=s.enabled,
            stuck_saga_threshold=timedelta(seconds=s.stuck_saga_threshold_s),
            stuck_saga_batch_size=s.stuck_saga_batch_size,
            default_timeout=_seconds(s.default_timeout_s),
            check_interval=timedelta(seconds=s.check_interval_s),
        ),
        scheduling=SchedulingOptions(
            enabled=sc.enabled,
            processing_interval=timedelta(seconds=sc.processing_interval_s),
            batch_size=sc.batch_size,
            max_retries=sc.max_retries,
            backoff=BackoffPolicy.from_seconds(
                sc.base_retry_delay_s, sc.max_retry_delay_s
            ),
        ),
    )


def _flatten(payload: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        path = f"{prefix}{k}"
        if isinstance(v, dict):
            out.update(_flatten(v, f"{path}."))
        else:
            out[path] = v
    return out


def _unflatten(flat: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for path, v in flat.items():
        *parents, leaf = path.split(".")
        node = out
        for p in parents:
            node = node.setdefault(p, {})
            if not isinstance(node, dict):
                raise ConfigurationError(
                    f"Configuration section {p!r} must be a table",
                    hint=field_spec_hint(path),
                )
        node[leaf] = v
    return out


def _resolve_layers(
    *,
    overrides: Mapping[str, Any],
    env: Mapping[str, Any],
    project: Mapping[str, Any],
    home: Mapping[str, Any],
) -> tuple[dict[str, Any], SourceMap]:
    """Merge the layers field by field (last wins) and record each field's origin."""
    from .utils import get_home_config_path, get_pyproject_path

    flat: dict[str, Any] = {}
    src: SourceMap = {}
    for k, v in _flatten(_default_settings()).items():
        flat[k] = v
        src[k] = FieldOrigin(origin=Origin.DEFAULT)

    layers = (
        (Origin.HOME, home),
        (Origin.PROJECT, project),
        (Origin.ENV, env),
        (Origin.OVERRIDES, overrides),
    )
    for origin, payload in layers:
        for k, v in _flatten(payload).items():
            flat[k] = v
            match origin:
                case Origin.ENV:
                    src[k] = FieldOrigin(origin=origin, env_key=env_key_for(k))
                case Origin.PROJECT:
                    src[k] = FieldOrigin(origin=origin, file=str(get_pyproject_path()))
                case Origin.HOME:
                    src[k] = FieldOrigin(origin=origin, file=str(get_home_config_path()))
                case _:
                    src[k] = FieldOrigin(origin=origin)
    return _unflatten(flat), src


# --- Audit helpers ---


def _origin_label(field: str, where: FieldOrigin) -> str:
    match where.origin:
        case Origin.ENV:
            return f"env:{where.env_key or env_key_for(field)}"
        case Origin.PROJECT:
            return f"file:{where.file or 'pyproject.toml'}"
        case Origin.HOME:
            return f"file:{where.file or '~/.config/castor.toml'}"
        case _:
            return str(where.origin.value)


def audit_lines(cfg: FrozenConfig, sources: SourceMap) -> list[str]:  # noqa: ARG001
    """One ``field: origin`` line per resolved field, in schema order."""
    return [
        f"{field}: {_origin_label(field, sources[field])}"
        for field in _flatten(_default_settings())
        if field in sources
    ]


def audit_text(cfg: FrozenConfig, sources: SourceMap) -> str:
    return "\n".join(audit_lines(cfg, sources))


def summarize_origins(sources: SourceMap) -> dict[str, int]:
    """Number of fields contributed by each layer."""
    counts: dict[str, int] = {}
    for fo in sources.values():
        key = fo.origin.value
        counts[key] = counts.get(key, 0) + 1
    return counts


def audit_layers_summary(src: SourceMap) -> list[str]:
    counts = summarize_origins(src)
    order = ["default", "home", "project", "env", "overrides"]
    return [f"{name:9s}: {counts.get(name, 0)} fields" for name in order]


def was_field_overridden(sources: SourceMap, field: str) -> bool:
    """Return True if a dotted field's value did not come from defaults."""
    fo = sources.get(field)
    return bool(fo and fo.origin is not Origin.DEFAULT)


def to_dict(cfg: FrozenConfig) -> dict[str, Any]:
    """Plain nested dict for structured logging (durations in seconds)."""

    def _plain(v: Any) -> Any:
        if isinstance(v, timedelta):
            return v.total_seconds()
        if isinstance(v, BackoffPolicy):
            return {
                "base_delay_s": v.base_delay.total_seconds(),
                "max_delay_s": None
                if v.max_delay is None
                else v.max_delay.total_seconds(),
            }
        return v

    return {
        f.name: {
            g.name: _plain(getattr(getattr(cfg, f.name), g.name))
            for g in fields(getattr(cfg, f.name))
        }
        for f in fields(cfg)
    }


def check_environment() -> dict[str, str]:
    """Return the current ``CASTOR_*`` variables."""
    from .utils import ENV_PREFIX

    return {k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)}


def doctor() -> list[str]:
    """Quick configuration check with actionable messages."""
    msgs: list[str] = []
    cfg, src = resolve_config(explain=True)
    if not cfg.enabled_patterns:
        msgs.append(
            "No messaging pattern is enabled. " + field_spec_hint("outbox.enabled")
        )
    if cfg.inbox.enabled and cfg.inbox.purge_enabled and (
        cfg.inbox.purge_interval > cfg.inbox.message_retention
    ):
        msgs.append(
            "inbox.purge_interval_s exceeds inbox.message_retention_s; "
            "expired records will linger."
        )
    for pattern in ("outbox", "scheduling"):
        if getattr(cfg, pattern).enabled and getattr(cfg, pattern).max_retries == 0:
            msgs.append(
                f"{pattern}.max_retries is 0; failed items are dead-lettered immediately."
            )
    if cfg.sagas.enabled and not was_field_overridden(src, "sagas.default_timeout_s"):
        msgs.append(
            "Advisory: sagas.default_timeout_s not set; sagas never time out. "
            + field_spec_hint("sagas.default_timeout_s")
        )
    return msgs or ["No issues detected."]


# --- Minimal CLI entrypoint ---


def main() -> int:  # pragma: no cover - thin utility  # noqa: D103
    import argparse
    import json
    import sys

    parser = argparse.ArgumentParser("castor-config")
    sub = parser.add_subparsers(dest="cmd", required=True)
    sub.add_parser("show")
    sub.add_parser("audit")
    sub.add_parser("doctor")
    sub.add_parser("env")
    args = parser.parse_args()

    if args.cmd == "show":
        sys.stdout.write(json.dumps(to_dict(resolve_config()), indent=2) + "\n")
    elif args.cmd == "audit":
        cfg, src = resolve_config(explain=True)
        sys.stdout.write(audit_text(cfg, src) + "\n")
        for line in audit_layers_summary(src):
            sys.stdout.write(line + "\n")
    elif args.cmd == "doctor":
        for m in doctor():
            sys.stdout.write(m + "\n")
    elif args.cmd == "env":
        for k, v in sorted(check_environment().items()):
            sys.stdout.write(f"{k}={v}\n")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
