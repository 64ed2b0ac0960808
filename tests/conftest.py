"""Pytest configuration and fixtures.

Provides environment isolation and shared building blocks (frozen clock,
registries, in-memory stores). Isolation fixtures are autouse.
"""

from __future__ import annotations

from contextlib import suppress
from datetime import UTC, datetime
import os

import pytest

from castor.config import resolve_config
from castor.core.clock import FrozenClock
from castor.mediator import Mediator
from castor.messaging.serialization import MessageTypeRegistry
from castor.pipeline.registry import HandlerRegistry
from tests.helpers import MESSAGE_TYPES

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_castor_env(request, monkeypatch, tmp_path):
    """Ensure a clean configuration environment for each test.

    Clears CASTOR_* variables and points the home and project config files
    at empty temporary paths.
    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("CASTOR_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CASTOR_CONFIG_HOME", str(tmp_path / "home-castor.toml"))
    monkeypatch.setenv("CASTOR_PYPROJECT_PATH", str(tmp_path / "pyproject.toml"))


# =============================================================================
# Shared building blocks
# =============================================================================

START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def mediator(registry: HandlerRegistry) -> Mediator:
    return Mediator(registry)


@pytest.fixture
def types() -> MessageTypeRegistry:
    return MessageTypeRegistry().register_all(*MESSAGE_TYPES)


@pytest.fixture
def all_enabled():
    """Configuration with every pattern switched on and small batches."""
    return resolve_config(
        overrides={
            "outbox": {"enabled": True, "batch_size": 10, "base_retry_delay_s": 5},
            "inbox": {"enabled": True, "max_retries": 2},
            "sagas": {"enabled": True, "default_timeout_s": 600},
            "scheduling": {"enabled": True, "batch_size": 10},
        }
    )
