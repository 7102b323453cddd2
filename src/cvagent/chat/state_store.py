"""Current-value store with subscription, used to publish conversation snapshots.

Single writer, many readers: the orchestrator replaces the value with a new
immutable snapshot and every subscriber is notified synchronously.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Generic, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], None]


class StateStore(Generic[T]):
    """Holds one value and broadcasts every replacement to subscribers.

    Handlers are invoked in subscription order. A handler that raises is
    logged and the remaining handlers still run. Bound methods are held
    weakly so a subscriber's owner can be garbage collected.

    A handler may write to the store. The new value is queued and published
    once the current round has reached every subscriber, so all subscribers
    observe the same values in the same order and the last one they see is
    always :attr:`value`.

    Thread Safety:
        Not thread-safe; use from the event loop thread.
    """

    __slots__ = ("_value", "_handlers", "_pending", "_publishing")

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._handlers: list[_HandlerRef] = []
        self._pending: deque[T] = deque()
        self._publishing = False

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._pending.append(value)
        if self._publishing:
            return
        self._publishing = True
        try:
            while self._pending:
                self._publish(self._pending.popleft())
        finally:
            self._publishing = False
            self._pending.clear()

    def update(self, transform: Callable[[T], T]) -> T:
        """Replace the value with ``transform(current)`` and publish it."""

        value = transform(self._value)
        self.set(value)
        return value

    def subscribe(self, handler: Handler[T], *, replay: bool = True) -> Callable[[], None]:
        """Register *handler*; returns a callable that unsubscribes it.

        With ``replay`` the handler immediately receives the current value.
        """

        handler_ref = _HandlerRef.create(handler)
        self._handlers.append(handler_ref)
        logger.debug("Subscribed handler %s", _handler_name(handler))
        if replay:
            self._deliver(handler, self._value)

        def _unsubscribe() -> None:
            self.unsubscribe(handler)

        return _unsubscribe

    def unsubscribe(self, handler: Handler[T]) -> None:
        for index, handler_ref in enumerate(self._handlers):
            if handler_ref.matches(handler):
                self._handlers.pop(index)
                logger.debug("Unsubscribed handler %s", _handler_name(handler))
                return

    def subscriber_count(self) -> int:
        return len(self._handlers)

    def _publish(self, value: T) -> None:
        dead: list[_HandlerRef] = []
        # Iterate over a copy; handlers may unsubscribe while being notified.
        for handler_ref in list(self._handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            self._deliver(handler, value)
        for handler_ref in dead:
            if handler_ref in self._handlers:
                self._handlers.remove(handler_ref)

    def _deliver(self, handler: Handler[T], value: T) -> None:
        try:
            handler(value)
        except Exception:
            logger.exception("State handler %s raised", _handler_name(handler))


class _HandlerRef:
    """Weak reference for bound methods, strong reference otherwise."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = ["StateStore", "Handler"]
