"""Single live query subscription exposed as an async iterator."""

from __future__ import annotations

import asyncio
import inspect
import threading
import uuid
from typing import Any

from queryflow.core.config import StreamSettings, get_settings
from queryflow.core.exceptions import QueryError
from queryflow.core.types import (
    ListenerToken,
    LiveQuery,
    SendMode,
    SubscriptionState,
    TerminationReason,
)
from queryflow.flow.channel import ChangeChannel, ChannelClosed
from queryflow.observability.logging import get_subscription_logger
from queryflow.observability.metrics import MetricsCollector, get_metrics_collector


class QuerySubscription:
    """
    Bridges a live query's change listener into an async iterator of changes.

    The listener is registered on the first pull (or on start()), before the
    query is executed, so the first change is never missed. A change carrying
    an error ends the iteration by raising that error once every earlier change
    has been delivered. Closing the subscription, leaving an ``async with``
    block or cancelling the consuming task removes the listener exactly once.

    Example:
        async with QuerySubscription(query) as changes:
            async for change in changes:
                render(change.results)
    """

    def __init__(
        self,
        query: LiveQuery,
        *,
        buffer_size: int | None = None,
        send_mode: SendMode | str | None = None,
        settings: StreamSettings | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        stream_settings = settings or get_settings().stream

        self._query = query
        self._buffer_size = buffer_size if buffer_size is not None else stream_settings.buffer_size
        self._send_mode = SendMode(send_mode) if send_mode else stream_settings.send_mode
        self._metrics = metrics or get_metrics_collector()

        self._subscription_id = uuid.uuid4().hex[:12]
        self._logger = get_subscription_logger(self._subscription_id, query)

        self._lock = threading.Lock()
        self._state = SubscriptionState.UNSUBSCRIBED
        self._termination_reason: TerminationReason | None = None
        self._channel: ChangeChannel[Any] | None = None
        self._token: ListenerToken = None
        self._registered = False
        self._delivered = 0

    @property
    def subscription_id(self) -> str:
        """Get the subscription identifier."""
        return self._subscription_id

    @property
    def state(self) -> SubscriptionState:
        """Get the current lifecycle state."""
        return self._state

    @property
    def termination_reason(self) -> TerminationReason | None:
        """Why the subscription terminated, if it has."""
        return self._termination_reason

    @property
    def delivered(self) -> int:
        """Number of changes handed to the consumer."""
        return self._delivered

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    @property
    def send_mode(self) -> SendMode:
        return self._send_mode

    async def start(self) -> None:
        """
        Register the change listener and execute the query.

        Errors raised by the query while registering or executing propagate
        after the listener has been removed.
        """
        if self._state is not SubscriptionState.UNSUBSCRIBED:
            return

        self._channel = ChangeChannel(
            asyncio.get_running_loop(),
            capacity=self._buffer_size,
            send_mode=self._send_mode,
            metrics=self._metrics,
        )
        self._state = SubscriptionState.SUBSCRIBED

        try:
            self._token = self._query.add_change_listener(self._on_change)
        except BaseException:
            self._logger.exception("Failed to register change listener")
            self._terminate(TerminationReason.ERROR)
            raise

        self._registered = True
        self._metrics.record_subscription_opened()
        self._logger.debug(
            "Change listener registered",
            buffer_size=self._buffer_size,
            send_mode=self._send_mode.value,
        )

        try:
            result = self._query.execute()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            self._terminate(TerminationReason.CANCELLED)
            raise
        except BaseException as e:
            self._logger.warning("Query execution failed", error=str(e))
            self._terminate(TerminationReason.ERROR)
            raise

    def complete(self) -> None:
        """End the iteration normally once buffered changes are consumed."""
        if self._channel is not None and self._channel.complete():
            self._logger.debug("Change stream completed by query")

    def close(self) -> None:
        """Remove the change listener. Safe to call more than once."""
        self._terminate(TerminationReason.CANCELLED)

    async def aclose(self) -> None:
        """Async alias of close()."""
        self.close()

    def __aiter__(self) -> QuerySubscription:
        return self

    async def __anext__(self) -> Any:
        if self._state is SubscriptionState.UNSUBSCRIBED:
            await self.start()

        if self._state is SubscriptionState.TERMINATED or self._channel is None:
            raise StopAsyncIteration

        try:
            change = await self._channel.receive()
        except ChannelClosed:
            self._terminate(TerminationReason.COMPLETED)
            raise StopAsyncIteration from None
        except asyncio.CancelledError:
            self._terminate(TerminationReason.CANCELLED)
            raise
        except BaseException:
            self._terminate(TerminationReason.ERROR)
            raise

        self._state = SubscriptionState.DELIVERING
        self._delivered += 1
        return change

    async def __aenter__(self) -> QuerySubscription:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def _on_change(self, change: Any) -> None:
        """Listener invoked by the query, possibly on a foreign thread."""
        channel = self._channel
        if channel is None or channel.is_closed:
            self._metrics.record_change("ignored")
            self._logger.debug("Change ignored after termination")
            return

        error = QueryError() if change is None else getattr(change, "error", None)

        if error is None:
            channel.send(change)
            return

        if not isinstance(error, BaseException):
            error = QueryError(error)

        if channel.fail(error):
            self._metrics.record_change("error")
            self._logger.warning("Query reported an error", error=str(error))
        else:
            self._metrics.record_change("ignored")

    def _terminate(self, reason: TerminationReason) -> None:
        with self._lock:
            if self._state is SubscriptionState.TERMINATED:
                return
            self._state = SubscriptionState.TERMINATED
            self._termination_reason = reason
            registered = self._registered
            self._registered = False

        if self._channel is not None:
            self._channel.cancel()

        if not registered:
            return

        try:
            self._query.remove_change_listener(self._token)
        except Exception:
            self._logger.exception("Failed to remove change listener", reason=reason.value)
        else:
            self._logger.debug(
                "Change listener removed",
                reason=reason.value,
                delivered=self._delivered,
            )
        finally:
            self._metrics.record_subscription_closed(reason.value)
