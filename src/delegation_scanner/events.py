"""
Typed event channels for scanner consumers.

Each event kind has its own channel carrying a single payload type, so a
consumer subscribes to exactly the events it handles. Callbacks may be plain
functions or coroutine functions; both run on the scanner's event loop.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from .models import DelegationRecord

T = TypeVar("T")

EventCallback = Callable[[T], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Payload of the ``error`` channel.

    Attributes:
        error: The exception being reported
        network: Originating network; set only by the multi-network scanner
    """

    error: BaseException
    network: str | None = None

    @property
    def message(self) -> str:
        if self.network:
            return f"[{self.network}] {self.error}"
        return str(self.error)


@dataclass(frozen=True, slots=True)
class ConnectionEvent:
    """Payload of the ``connected`` and ``disconnected`` channels."""

    network: str


class EventChannel(Generic[T]):
    """Observer list for one event kind."""

    def __init__(self, name: str) -> None:
        """
        Initialize the channel.

        Args:
            name: Event name, used in log messages
        """
        self.name = name
        self._callbacks: list[EventCallback] = []
        self._pending: set[asyncio.Task] = set()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def __len__(self) -> int:
        return len(self._callbacks)

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """
        Register a callback for this event.

        Args:
            callback: Function or coroutine function taking the payload

        Returns:
            A function that removes the subscription
        """
        self._callbacks.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def clear(self) -> None:
        self._callbacks.clear()

    async def publish(self, payload: T) -> None:
        """
        Deliver a payload to every subscriber in registration order.

        A failing subscriber is logged and does not affect the others.

        Args:
            payload: Event payload
        """
        for callback in list(self._callbacks):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(
                    f"Subscriber for '{self.name}' event failed: {e}", exc_info=True
                )

    def publish_nowait(self, payload: T) -> None:
        """
        Deliver a payload from synchronous code.

        Plain callbacks run immediately. Coroutine callbacks are scheduled on
        the running loop; without a running loop they are dropped with a
        warning.

        Args:
            payload: Event payload
        """
        for callback in list(self._callbacks):
            try:
                result = callback(payload)
            except Exception as e:
                self.logger.error(
                    f"Subscriber for '{self.name}' event failed: {e}", exc_info=True
                )
                continue

            if not inspect.isawaitable(result):
                continue

            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self.logger.warning(
                    f"No running event loop, dropping async '{self.name}' subscriber"
                )
                if inspect.iscoroutine(result):
                    result.close()
                continue

            task = loop.create_task(self._await_callback(result))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _await_callback(self, result: Awaitable[None]) -> None:
        try:
            await result
        except Exception as e:
            self.logger.error(
                f"Subscriber for '{self.name}' event failed: {e}", exc_info=True
            )


class ScannerEvents:
    """The four event channels exposed by single and multi-network scanners."""

    def __init__(self) -> None:
        self.delegation: EventChannel[DelegationRecord] = EventChannel("delegation")
        self.error: EventChannel[ErrorEvent] = EventChannel("error")
        self.connected: EventChannel[ConnectionEvent] = EventChannel("connected")
        self.disconnected: EventChannel[ConnectionEvent] = EventChannel("disconnected")

    def clear(self) -> None:
        """Remove every subscriber from every channel."""
        self.delegation.clear()
        self.error.clear()
        self.connected.clear()
        self.disconnected.clear()
