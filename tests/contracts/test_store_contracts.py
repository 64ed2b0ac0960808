"""Behavioral contracts shared by every store and pipeline component.

A database-backed store must pass the same checks as the in-memory ones:
every contract method is a coroutine, duplicate ids are rejected, unknown
ids raise ``StoreError`` and bad arguments fail before any I/O.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import inspect
from typing import Any

import pytest

from castor.core.clock import FrozenClock
from castor.errors import StoreError, ValidationError
from castor.messaging.inbox import (
    InboxBehavior,
    InboxMessage,
    InboxStore,
    InMemoryInboxStore,
)
from castor.messaging.outbox import (
    InMemoryOutboxStore,
    OutboxMessage,
    OutboxPostProcessor,
    OutboxStore,
)
from castor.messaging.sagas import InMemorySagaStore, SagaState, SagaStore
from castor.messaging.scheduling import (
    InMemoryScheduledMessageStore,
    ScheduledMessage,
    ScheduledMessageStore,
)
from castor.messaging.serialization import MessageTypeRegistry
from castor.pipeline import TransactionBehavior

pytestmark = [pytest.mark.unit, pytest.mark.contract]

START = datetime(2024, 1, 1, tzinfo=UTC)


def _outbox_row(message_id: str) -> OutboxMessage:
    return OutboxMessage.create("t.Event", "{}", created_at=START, id=message_id)


def _inbox_row(message_id: str) -> InboxMessage:
    return InboxMessage(
        message_id=message_id,
        request_type="t.Command",
        received_at=START,
        expires_at=START + timedelta(days=1),
    )


def _saga_row(saga_id: str) -> SagaState:
    return SagaState.start("t.Saga", "{}", now=START, saga_id=saga_id)


def _scheduled_row(message_id: str) -> ScheduledMessage:
    return ScheduledMessage(
        id=message_id,
        request_type="t.Command",
        payload="{}",
        scheduled_at=START,
        created_at=START,
    )


# (protocol, factory, row builder, update call on an unknown id)
STORES: list[tuple[type, Any, Any, Any]] = [
    (
        OutboxStore,
        InMemoryOutboxStore,
        _outbox_row,
        lambda s: s.mark_failed("missing", "err", None),
    ),
    (
        InboxStore,
        InMemoryInboxStore,
        _inbox_row,
        lambda s: s.mark_processed("missing", None),
    ),
    (
        SagaStore,
        InMemorySagaStore,
        _saga_row,
        lambda s: s.update(_saga_row("missing")),
    ),
    (
        ScheduledMessageStore,
        InMemoryScheduledMessageStore,
        _scheduled_row,
        lambda s: s.mark_processed("missing"),
    ),
]
IDS = [proto.__name__ for proto, *_ in STORES]


def _contract_methods(protocol: type) -> list[str]:
    return [
        name
        for name, member in vars(protocol).items()
        if not name.startswith("_") and inspect.isfunction(member)
    ]


@pytest.mark.parametrize(("protocol", "factory", "row", "update_missing"), STORES, ids=IDS)
def test_store_implements_every_contract_method_as_a_coroutine(
    protocol, factory, row, update_missing
) -> None:
    store = factory(FrozenClock(START))
    methods = _contract_methods(protocol)
    assert methods
    for name in methods:
        assert inspect.iscoroutinefunction(getattr(store, name)), f"{factory.__name__}.{name}"


@pytest.mark.asyncio
@pytest.mark.parametrize(("protocol", "factory", "row", "update_missing"), STORES, ids=IDS)
async def test_store_rejects_duplicate_ids(protocol, factory, row, update_missing) -> None:
    store = factory(FrozenClock(START))
    await store.add(row("id-1"))
    with pytest.raises(StoreError):
        await store.add(row("id-1"))


@pytest.mark.asyncio
@pytest.mark.parametrize(("protocol", "factory", "row", "update_missing"), STORES, ids=IDS)
async def test_store_raises_store_error_for_unknown_ids(
    protocol, factory, row, update_missing
) -> None:
    store = factory(FrozenClock(START))
    with pytest.raises(StoreError, match="not found"):
        await update_missing(store)


@pytest.mark.asyncio
@pytest.mark.parametrize(("protocol", "factory", "row", "update_missing"), STORES, ids=IDS)
async def test_store_rejects_blank_ids_before_io(
    protocol, factory, row, update_missing
) -> None:
    store = factory(FrozenClock(START))
    with pytest.raises(ValidationError):
        await store.add(row(" "))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "query",
    [
        lambda c: InMemoryOutboxStore(c).get_pending(0, 3),
        lambda c: InMemoryOutboxStore(c).get_pending(10, -1),
        lambda c: InMemoryInboxStore(c).get_expired(0),
        lambda c: InMemorySagaStore(c).get_stuck_sagas(timedelta(hours=1), 0),
        lambda c: InMemorySagaStore(c).get_timed_out(-5),
        lambda c: InMemoryScheduledMessageStore(c).get_due(0, 3),
        lambda c: InMemoryScheduledMessageStore(c).get_due(10, -1),
    ],
    ids=[
        "outbox-batch",
        "outbox-retries",
        "inbox-batch",
        "sagas-stuck-batch",
        "sagas-timeout-batch",
        "scheduled-batch",
        "scheduled-retries",
    ],
)
async def test_batch_queries_validate_arguments(query) -> None:
    with pytest.raises(ValidationError):
        await query(FrozenClock(START))


@pytest.mark.parametrize(
    ("component", "method"),
    [
        (TransactionBehavior(), "handle"),
        (
            InboxBehavior(
                InMemoryInboxStore(), max_retries=1, message_retention=timedelta(days=1)
            ),
            "handle",
        ),
        (OutboxPostProcessor(InMemoryOutboxStore(), MessageTypeRegistry()), "process"),
    ],
    ids=["transaction", "inbox", "outbox"],
)
def test_builtin_pipeline_components_are_async(component, method) -> None:
    assert inspect.iscoroutinefunction(getattr(component, method))
