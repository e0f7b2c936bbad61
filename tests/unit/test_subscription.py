"""Unit tests for query subscriptions."""

from __future__ import annotations

import asyncio

import pytest

from queryflow.core.exceptions import QueryError
from queryflow.core.types import SendMode, SubscriptionState, TerminationReason
from queryflow.flow.subscription import QuerySubscription


def rows_of(change) -> list[dict]:
    return [dict(row) for row in change.results]


@pytest.mark.asyncio
class TestQuerySubscription:
    """Tests for QuerySubscription."""

    async def test_lazy_registration(self, query):
        """Test nothing is registered before the first pull."""
        subscription = QuerySubscription(query)

        assert subscription.state is SubscriptionState.UNSUBSCRIBED
        assert query.calls == []

    async def test_listener_registered_before_execute(self, query):
        """Test the listener is in place before the query runs."""
        subscription = QuerySubscription(query)
        await subscription.start()

        assert query.calls == ["add_change_listener", "execute"]
        assert subscription.state is SubscriptionState.SUBSCRIBED
        subscription.close()

    async def test_changes_emitted_during_execute_are_delivered(self, make_query, make_change):
        """Test the initial results produced by execute() are not missed."""
        query = make_query(on_execute=[make_change(rows=[{"x": 1}])])

        async with QuerySubscription(query) as changes:
            change = await anext(changes)

        assert rows_of(change) == [{"x": 1}]

    async def test_delivers_changes_in_order(self, query):
        """Test N callbacks are observed as N changes in callback order."""
        subscription = QuerySubscription(query)
        await subscription.start()

        for i in range(10):
            query.emit(rows=[{"n": i}])

        received = [rows_of(await anext(subscription))[0]["n"] for _ in range(10)]

        assert received == list(range(10))
        assert subscription.delivered == 10
        assert subscription.state is SubscriptionState.DELIVERING
        subscription.close()

    async def test_order_preserved_beyond_buffer_size(self, query):
        """Test a burst larger than the buffer is delivered intact and in order."""
        subscription = QuerySubscription(query, buffer_size=2)
        await subscription.start()

        for i in range(7):
            query.emit(rows=[{"n": i}])

        received = [rows_of(await anext(subscription))[0]["n"] for _ in range(7)]
        assert received == list(range(7))
        subscription.close()

    async def test_error_terminates_and_later_changes_ignored(self, query):
        """Test results, then an error, then a stray callback."""
        subscription = QuerySubscription(query)
        await subscription.start()

        query.emit(rows=[{"x": 1}])
        first = await anext(subscription)
        assert rows_of(first) == [{"x": 1}]

        timeout = TimeoutError("Timeout")
        query.emit(error=timeout)
        query.emit(rows=[{"x": 2}])

        with pytest.raises(TimeoutError) as exc_info:
            await anext(subscription)
        assert exc_info.value is timeout

        with pytest.raises(StopAsyncIteration):
            await anext(subscription)

        assert subscription.state is SubscriptionState.TERMINATED
        assert subscription.termination_reason is TerminationReason.ERROR
        assert query.removed == [1]
        assert query.listener_count == 0

    async def test_error_delivered_after_earlier_changes(self, query):
        """Test changes buffered before an error are still delivered."""
        subscription = QuerySubscription(query)
        await subscription.start()

        query.emit(rows=[{"n": 1}])
        query.emit(rows=[{"n": 2}])
        query.emit(error=RuntimeError("broken"))

        assert rows_of(await anext(subscription)) == [{"n": 1}]
        assert rows_of(await anext(subscription)) == [{"n": 2}]
        with pytest.raises(RuntimeError, match="broken"):
            await anext(subscription)

    async def test_failed_removal_keeps_query_error(self, make_query):
        """Test a failing remove_change_listener does not mask the query error."""
        query = make_query(remove_error=RuntimeError("already detached"))
        subscription = QuerySubscription(query)
        await subscription.start()

        timeout = TimeoutError("Timeout")
        query.emit(error=timeout)

        with pytest.raises(TimeoutError) as exc_info:
            await anext(subscription)
        assert exc_info.value is timeout
        assert query.removed == [1]
        assert subscription.termination_reason is TerminationReason.ERROR

        subscription.close()
        assert query.removed == [1]

    async def test_missing_change_object_raises_generic_error(self, query):
        """Test a callback without a change object fails with QueryError."""
        subscription = QuerySubscription(query)
        await subscription.start()

        query.emit_raw(None)

        with pytest.raises(QueryError, match="Something went wrong with your query"):
            await anext(subscription)

    async def test_non_exception_error_replaced_by_generic_error(self, query):
        """Test an error value that is not an exception is wrapped."""
        subscription = QuerySubscription(query)
        await subscription.start()

        query.emit(error="SQLITE_BUSY")

        with pytest.raises(QueryError) as exc_info:
            await anext(subscription)
        assert exc_info.value.reported == "SQLITE_BUSY"
        assert "SQLITE_BUSY" in str(exc_info.value)

    async def test_close_is_idempotent(self, query):
        """Test the listener is removed exactly once."""
        subscription = QuerySubscription(query)
        await subscription.start()

        subscription.close()
        subscription.close()
        await subscription.aclose()

        assert query.removed == [1]
        assert subscription.termination_reason is TerminationReason.CANCELLED

    async def test_close_before_start_registers_nothing(self, query):
        """Test closing an unstarted subscription never touches the query."""
        subscription = QuerySubscription(query)
        subscription.close()

        with pytest.raises(StopAsyncIteration):
            await anext(subscription)
        assert query.calls == []

    async def test_no_delivery_after_close(self, query, make_change):
        """Test callbacks racing with close are not delivered."""
        subscription = QuerySubscription(query)
        await subscription.start()

        query.emit(rows=[{"x": 1}])
        stale_listener = subscription._on_change

        subscription.close()
        stale_listener(make_change(rows=[{"x": 2}]))

        with pytest.raises(StopAsyncIteration):
            await anext(subscription)

    async def test_context_manager_removes_listener(self, query):
        """Test leaving an async with block removes the listener."""
        async with QuerySubscription(query) as subscription:
            query.emit(rows=[])
            await anext(subscription)

        assert query.removed == [1]

    async def test_execute_failure_removes_listener(self, make_query):
        """Test a failing execute() propagates after deregistration."""
        query = make_query(execute_error=ConnectionError("store unavailable"))
        subscription = QuerySubscription(query)

        with pytest.raises(ConnectionError, match="store unavailable"):
            await anext(subscription)

        assert query.calls == [
            "add_change_listener",
            "execute",
            "remove_change_listener",
        ]
        assert subscription.termination_reason is TerminationReason.ERROR

    async def test_awaitable_execute(self, query):
        """Test execute() returning a coroutine is awaited."""
        executed = []

        async def execute():
            executed.append(True)

        query.execute = execute
        subscription = QuerySubscription(query)
        await subscription.start()

        assert executed == [True]
        subscription.close()

    async def test_consumer_cancellation_removes_listener(self, query):
        """Test cancelling the consuming task removes the listener."""
        subscription = QuerySubscription(query)
        await subscription.start()

        consumer = asyncio.create_task(anext(subscription))
        await asyncio.sleep(0)
        consumer.cancel()

        with pytest.raises(asyncio.CancelledError):
            await consumer

        assert query.removed == [1]
        assert subscription.termination_reason is TerminationReason.CANCELLED

    async def test_close_wakes_waiting_consumer(self, query):
        """Test closing from another task ends a pending pull."""
        subscription = QuerySubscription(query)
        await subscription.start()

        consumer = asyncio.create_task(anext(subscription))
        await asyncio.sleep(0)
        await subscription.aclose()

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(consumer, timeout=1.0)
        assert query.removed == [1]

    async def test_complete_ends_iteration(self, query):
        """Test complete() ends the iteration after buffered changes."""
        subscription = QuerySubscription(query)
        await subscription.start()

        query.emit(rows=[{"x": 1}])
        subscription.complete()

        received = [change async for change in subscription]

        assert len(received) == 1
        assert subscription.termination_reason is TerminationReason.COMPLETED
        assert query.removed == [1]

    async def test_changes_from_foreign_thread(self, query):
        """Test callbacks invoked on a query-owned thread arrive in order."""
        loop = asyncio.get_running_loop()
        subscription = QuerySubscription(query, buffer_size=1)
        await subscription.start()

        def notify() -> None:
            for i in range(5):
                query.emit(rows=[{"n": i}])

        producer = loop.run_in_executor(None, notify)
        received = [rows_of(await anext(subscription))[0]["n"] for _ in range(5)]
        await asyncio.wait_for(producer, timeout=1.0)

        assert received == [0, 1, 2, 3, 4]
        subscription.close()

    async def test_settings_provide_defaults(self, query, default_settings):
        """Test buffer size and send mode fall back to settings."""
        default_settings.stream.buffer_size = 3
        default_settings.stream.send_mode = SendMode.DROP

        subscription = QuerySubscription(query)

        assert subscription.buffer_size == 3
        assert subscription.send_mode is SendMode.DROP

    async def test_arguments_override_settings(self, query):
        """Test per-call arguments win over settings."""
        subscription = QuerySubscription(query, buffer_size=5, send_mode="drop")

        assert subscription.buffer_size == 5
        assert subscription.send_mode is SendMode.DROP
