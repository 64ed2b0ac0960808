"""Argument checks applied by stores and processors before any I/O."""

from __future__ import annotations

from castor.errors import ValidationError


def require_positive(name: str, value: int) -> int:
    if value <= 0:
        raise ValidationError(f"{name} must be > 0 (got {value})")
    return value


def require_non_negative(name: str, value: int) -> int:
    if value < 0:
        raise ValidationError(f"{name} must be >= 0 (got {value})")
    return value


def require_id(name: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} must not be empty")
    return value
