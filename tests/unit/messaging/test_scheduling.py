"""Scheduled message store, scheduler API and background processor."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from castor.core.clock import FrozenClock
from castor.core.mediator_error import ErrorCodes
from castor.core.result_primitives import Failure, Success
from castor.errors import StoreError, TypeResolutionError, ValidationError
from castor.mediator import Mediator
from castor.messaging.scheduling import (
    InMemoryScheduledMessageStore,
    MessageScheduler,
    ScheduledMessage,
    ScheduledMessageProcessor,
)
from castor.messaging.serialization import MessageTypeRegistry
from castor.pipeline.registry import HandlerRegistry
from tests.helpers import (
    OrderPlaced,
    RecordingNotificationHandler,
    ScriptedHandler,
    SendReminder,
    Unregistered,
    rejected,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def store(clock: FrozenClock) -> InMemoryScheduledMessageStore:
    return InMemoryScheduledMessageStore(clock)


@pytest.fixture
def scheduler(
    store: InMemoryScheduledMessageStore, types: MessageTypeRegistry, clock: FrozenClock
) -> MessageScheduler:
    return MessageScheduler(store, types, clock=clock)


@pytest.fixture
def processor(
    store: InMemoryScheduledMessageStore,
    mediator: Mediator,
    types: MessageTypeRegistry,
    clock: FrozenClock,
    all_enabled,
) -> ScheduledMessageProcessor:
    return ScheduledMessageProcessor(
        store, mediator, types, all_enabled.scheduling, clock=clock
    )


def _message(clock: FrozenClock, message_id: str, offset_s: int = 0, **changes):
    fields = {
        "id": message_id,
        "request_type": "tests.helpers.SendReminder",
        "payload": '{"user": "u-1"}',
        "scheduled_at": clock.now() + timedelta(seconds=offset_s),
        "created_at": clock.now(),
    }
    return ScheduledMessage(**{**fields, **changes})


class TestScheduledMessageStore:
    @pytest.mark.asyncio
    async def test_due_messages_are_ordered_by_effective_due_time(
        self, store: InMemoryScheduledMessageStore, clock: FrozenClock
    ) -> None:
        await store.add(_message(clock, "later", -10))
        await store.add(_message(clock, "sooner", -20))
        # Scheduled earliest, but its retry is not due yet
        await store.add(
            _message(
                clock,
                "backing-off",
                -60,
                retry_count=1,
                next_retry_at=clock.now() + timedelta(seconds=30),
            )
        )
        await store.add(
            _message(
                clock,
                "retry-due",
                60,
                retry_count=1,
                next_retry_at=clock.now() - timedelta(seconds=30),
            )
        )
        await store.add(_message(clock, "future", 60))

        due = await store.get_due(batch_size=10, max_retries=3)

        assert [m.id for m in due] == ["retry-due", "sooner", "later"]

    @pytest.mark.asyncio
    async def test_processed_one_shots_and_exhausted_messages_are_not_due(
        self, store: InMemoryScheduledMessageStore, clock: FrozenClock
    ) -> None:
        await store.add(_message(clock, "done"))
        await store.mark_processed("done")
        await store.add(_message(clock, "exhausted", retry_count=3))
        await store.add(_message(clock, "ready"))

        due = await store.get_due(batch_size=10, max_retries=3)

        assert [m.id for m in due] == ["ready"]
        done = await store.get("done")
        assert done is not None
        assert done.last_executed_at == clock.now()

    @pytest.mark.asyncio
    async def test_reschedule_resets_retry_state(
        self, store: InMemoryScheduledMessageStore, clock: FrozenClock
    ) -> None:
        await store.add(
            _message(clock, "r", is_recurring=True, cron_expression="@hourly")
        )
        await store.mark_failed("r", "boom", clock.now() + timedelta(minutes=5))
        next_time = clock.now() + timedelta(hours=1)

        await store.reschedule_recurring("r", next_time)

        stored = await store.get("r")
        assert stored is not None
        assert (stored.scheduled_at, stored.retry_count) == (next_time, 0)
        assert stored.next_retry_at is None
        assert stored.last_error is None
        with pytest.raises(ValidationError, match="in the past"):
            await store.reschedule_recurring("r", clock.now() - timedelta(seconds=1))

    @pytest.mark.asyncio
    async def test_cancel_and_validation(
        self, store: InMemoryScheduledMessageStore, clock: FrozenClock
    ) -> None:
        await store.add(_message(clock, "x"))
        assert await store.cancel("x") is True
        assert await store.cancel("x") is False
        with pytest.raises(ValidationError):
            await store.add(_message(clock, "bad", is_recurring=True))
        with pytest.raises(ValidationError):
            await store.add(
                _message(clock, "bad", is_recurring=True, cron_expression="not a cron")
            )
        with pytest.raises(ValidationError):
            await store.get_due(0, 3)
        with pytest.raises(StoreError, match="not found"):
            await store.mark_failed("x", "gone", None)


class TestMessageScheduler:
    @pytest.mark.asyncio
    async def test_schedule_persists_serialized_message(
        self,
        scheduler: MessageScheduler,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
    ) -> None:
        at = clock.now() + timedelta(minutes=5)

        message_id = await scheduler.schedule(SendReminder("u-1"), at)

        stored = await store.get(message_id)
        assert stored is not None
        assert stored.request_type == "tests.helpers.SendReminder"
        assert stored.payload == '{"user":"u-1"}'
        assert stored.scheduled_at == at
        assert stored.created_at == clock.now()
        assert not stored.is_recurring

    @pytest.mark.asyncio
    async def test_schedule_after_adds_delay(
        self,
        scheduler: MessageScheduler,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
    ) -> None:
        message_id = await scheduler.schedule_after(OrderPlaced("o-1"), timedelta(hours=1))
        stored = await store.get(message_id)
        assert stored is not None
        assert stored.scheduled_at == clock.now() + timedelta(hours=1)
        with pytest.raises(ValidationError):
            await scheduler.schedule_after(OrderPlaced("o-1"), timedelta(seconds=-1))

    @pytest.mark.asyncio
    async def test_schedule_recurring_starts_at_next_occurrence(
        self,
        scheduler: MessageScheduler,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
    ) -> None:
        message_id = await scheduler.schedule_recurring(SendReminder("u-1"), "0 9 * * *")
        stored = await store.get(message_id)
        assert stored is not None
        assert stored.is_recurring
        assert stored.cron_expression == "0 9 * * *"
        assert stored.scheduled_at == clock.now().replace(day=2, hour=9, minute=0)

        first_at = clock.now() + timedelta(minutes=1)
        other = await scheduler.schedule_recurring(SendReminder("u-2"), "@daily", first_at)
        stored = await store.get(other)
        assert stored is not None
        assert stored.scheduled_at == first_at

    @pytest.mark.asyncio
    async def test_rejects_none_unregistered_and_bad_cron(
        self, scheduler: MessageScheduler, clock: FrozenClock
    ) -> None:
        with pytest.raises(ValidationError):
            await scheduler.schedule(None, clock.now())
        with pytest.raises(TypeResolutionError):
            await scheduler.schedule(Unregistered(1), clock.now())
        with pytest.raises(ValidationError):
            await scheduler.schedule_recurring(SendReminder("u"), "every day")

    @pytest.mark.asyncio
    async def test_cancel(
        self, scheduler: MessageScheduler, clock: FrozenClock
    ) -> None:
        message_id = await scheduler.schedule(SendReminder("u"), clock.now())
        assert await scheduler.cancel(message_id) is True
        assert await scheduler.cancel(message_id) is False
        with pytest.raises(ValidationError):
            await scheduler.cancel("")


class TestScheduledMessageProcessor:
    @pytest.mark.asyncio
    async def test_due_request_is_sent_and_marked_processed(
        self,
        registry: HandlerRegistry,
        scheduler: MessageScheduler,
        processor: ScheduledMessageProcessor,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
    ) -> None:
        handler = ScriptedHandler(default=None)
        registry.register_handler(SendReminder, handler)
        message_id = await scheduler.schedule_after(SendReminder("u-1"), timedelta(minutes=1))

        assert await processor.process_batch() == 0
        clock.advance(timedelta(minutes=1))
        assert await processor.process_batch() == 1

        assert handler.calls == [SendReminder("u-1")]
        stored = await store.get(message_id)
        assert stored is not None
        assert stored.is_processed
        assert await processor.process_batch() == 0

    @pytest.mark.asyncio
    async def test_due_notification_is_published(
        self,
        registry: HandlerRegistry,
        scheduler: MessageScheduler,
        processor: ScheduledMessageProcessor,
        clock: FrozenClock,
    ) -> None:
        first, second = RecordingNotificationHandler("a"), RecordingNotificationHandler("b")
        registry.register_notification_handler(OrderPlaced, first)
        registry.register_notification_handler(OrderPlaced, second)
        await scheduler.schedule(OrderPlaced("o-1"), clock.now())

        await processor.process_batch()

        assert first.received == second.received == [OrderPlaced("o-1")]

    @pytest.mark.asyncio
    async def test_recurring_message_is_rearmed_after_success(
        self,
        registry: HandlerRegistry,
        scheduler: MessageScheduler,
        processor: ScheduledMessageProcessor,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
    ) -> None:
        handler = ScriptedHandler(default=None)
        registry.register_handler(SendReminder, handler)
        message_id = await scheduler.schedule_recurring(SendReminder("u"), "*/10 * * * *")

        for _ in range(3):
            stored = await store.get(message_id)
            assert stored is not None
            clock.set(stored.scheduled_at)
            assert await processor.process_batch() == 1

        stored = await store.get(message_id)
        assert stored is not None
        assert len(handler.calls) == 3
        assert stored.processed_at is None
        assert stored.last_executed_at == clock.now()
        assert stored.scheduled_at == clock.now() + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_recurring_message_whose_cron_never_fires_is_dead_lettered(
        self,
        registry: HandlerRegistry,
        processor: ScheduledMessageProcessor,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
        all_enabled,
    ) -> None:
        handler = ScriptedHandler(default=None)
        registry.register_handler(SendReminder, handler)
        # February 30th parses but has no occurrence
        await store.add(
            _message(clock, "feb-30", is_recurring=True, cron_expression="0 0 30 2 *")
        )
        options = all_enabled.scheduling

        for attempt in range(options.max_retries):
            stored = await store.get("feb-30")
            assert stored is not None
            clock.set(stored.effective_due_at)
            assert await processor.process_batch() == 1
            stored = await store.get("feb-30")
            assert stored is not None
            assert stored.retry_count == attempt + 1
            assert ErrorCodes.SCHEDULING_INVALID_CRON in (stored.last_error or "")

        clock.advance(timedelta(days=1))
        assert await processor.process_batch() == 0
        assert handler.calls == []
        stored = await store.get("feb-30")
        assert stored is not None
        assert stored.is_dead_lettered(options.max_retries)

    @pytest.mark.asyncio
    async def test_failed_rearm_counts_as_a_failed_attempt(
        self,
        registry: HandlerRegistry,
        mediator: Mediator,
        types: MessageTypeRegistry,
        clock: FrozenClock,
        all_enabled,
    ) -> None:
        class NoRearmStore(InMemoryScheduledMessageStore):
            async def reschedule_recurring(self, message_id, next_time):
                raise StoreError("scheduler table is read-only")

        store = NoRearmStore(clock)
        handler = ScriptedHandler(default=None)
        registry.register_handler(SendReminder, handler)
        await store.add(
            _message(clock, "daily", is_recurring=True, cron_expression="@daily")
        )
        options = all_enabled.scheduling
        processor = ScheduledMessageProcessor(
            store, mediator, types, options, clock=clock
        )

        for attempt in range(options.max_retries):
            stored = await store.get("daily")
            assert stored is not None
            clock.set(stored.effective_due_at)
            assert await processor.process_batch() == 1
            stored = await store.get("daily")
            assert stored is not None
            assert stored.retry_count == attempt + 1
            assert "read-only" in (stored.last_error or "")

        clock.advance(timedelta(days=1))
        assert await processor.process_batch() == 0
        assert len(handler.calls) == options.max_retries

    @pytest.mark.asyncio
    async def test_failure_backs_off_until_retries_run_out(
        self,
        registry: HandlerRegistry,
        scheduler: MessageScheduler,
        processor: ScheduledMessageProcessor,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
        all_enabled,
    ) -> None:
        failures = [Failure(rejected("reminders.unavailable")) for _ in range(5)]
        registry.register_handler(SendReminder, ScriptedHandler(script=failures))
        message_id = await scheduler.schedule(SendReminder("u"), clock.now())
        options = all_enabled.scheduling

        for attempt in range(options.max_retries):
            stored = await store.get(message_id)
            assert stored is not None
            clock.set(stored.effective_due_at)
            assert await processor.process_batch() == 1
            stored = await store.get(message_id)
            assert stored is not None
            assert stored.retry_count == attempt + 1
            assert stored.next_retry_at == options.backoff.next_retry_at(clock.now(), attempt)
            assert "reminders.unavailable" in (stored.last_error or "")

        clock.advance(timedelta(days=1))
        assert await processor.process_batch() == 0
        stored = await store.get(message_id)
        assert stored is not None
        assert stored.is_dead_lettered(options.max_retries)

    @pytest.mark.asyncio
    async def test_unregistered_type_and_bad_payload_are_failures(
        self,
        mediator: Mediator,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
        all_enabled,
    ) -> None:
        await store.add(replace(_message(clock, "unknown"), request_type="nope.Gone"))
        await store.add(_message(clock, "garbled", payload='{"name": 1}'))
        types = MessageTypeRegistry().register_all(SendReminder)
        processor = ScheduledMessageProcessor(
            store, mediator, types, all_enabled.scheduling, clock=clock
        )

        await processor.process_batch()

        unknown = await store.get("unknown")
        garbled = await store.get("garbled")
        assert unknown is not None
        assert garbled is not None
        assert ErrorCodes.SCHEDULING_TYPE_NOT_REGISTERED in (unknown.last_error or "")
        assert ErrorCodes.PIPELINE_EXCEPTION in (garbled.last_error or "")

    @pytest.mark.asyncio
    async def test_missing_handler_is_a_failure(
        self,
        scheduler: MessageScheduler,
        processor: ScheduledMessageProcessor,
        store: InMemoryScheduledMessageStore,
        clock: FrozenClock,
    ) -> None:
        message_id = await scheduler.schedule(SendReminder("u"), clock.now())
        await processor.process_batch()
        stored = await store.get(message_id)
        assert stored is not None
        assert ErrorCodes.HANDLER_MISSING in (stored.last_error or "")

    @pytest.mark.asyncio
    async def test_handler_context_carries_scheduled_id(
        self,
        registry: HandlerRegistry,
        scheduler: MessageScheduler,
        processor: ScheduledMessageProcessor,
        clock: FrozenClock,
    ) -> None:
        seen = []

        class Capture:
            async def handle(self, request, context, cancellation):
                seen.append(context.metadata.get("scheduled_message_id"))
                return Success(None)

        registry.register_handler(SendReminder, Capture())
        message_id = await scheduler.schedule(SendReminder("u"), clock.now())

        await processor.process_batch()

        assert seen == [message_id]

    def test_worker_is_named(self, processor: ScheduledMessageProcessor) -> None:
        assert processor.worker().name == "scheduling"
