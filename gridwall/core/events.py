"""
Observer helper shared by the stores and the aggregator.

Subscribers are called synchronously, in subscription order, on the event
loop thread that triggered the change. A subscriber that raises is logged and
skipped; the remaining subscribers still run.
"""

from typing import Any, Callable, List

from gridwall.logging import getLogger


class Observable:
    """Ordered list of change callbacks with unsubscribe handles"""

    def __init__(self, name: str):
        self.name = name
        self.log = getLogger()
        self._subscribers: List[Callable[..., Any]] = []

    def subscribe(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register callback; returns a function that removes it again"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, *args, **kwargs):
        for callback in list(self._subscribers):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                self.log.error(f"[{self.name}] Subscriber failed: {e}", exc_info=True)

    def __len__(self):
        return len(self._subscribers)
