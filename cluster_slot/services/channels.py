"""
Observer channels owned by the component that emits on them.

Each component exposes one Channel per signal (``orchestrator.spin_settled``,
``bonus.bonus_entered``...). Subscribing returns an unsubscribe callable, and
a component clears its channels when it is closed so no listener outlives
the game session.
"""
import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Channel(Generic[T]):
    def __init__(self, name: str):
        self.name = name
        self._handlers: List[Callable] = []

    def subscribe(self, handler: Callable) -> Callable[[], None]:
        """
        Register ``handler`` and return a callable that removes it again.
        """
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, *args) -> None:
        """
        Call every subscriber synchronously, in subscription order.

        A failing subscriber is logged and skipped so one bad listener cannot
        break the emitting component's flow.
        """
        for handler in list(self._handlers):
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Subscriber {getattr(handler, '__qualname__', handler)!r} on channel "
                             f"'{self.name}' failed: {type(e).__name__} - {str(e)}", exc_info=True)

    def clear(self) -> None:
        self._handlers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def __repr__(self):
        return f"<Channel {self.name} subscribers={len(self._handlers)}>"
