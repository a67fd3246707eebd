import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

EVENT_PRINT = "print"
EVENT_ERROR = "error"

Listener = Callable[[str], None]


class Subscription:
    """Handle returned when registering a listener; call unsubscribe() to remove it."""

    def __init__(self, events: "GDCoreEvents", event: str, listener: Listener):
        self._events = events
        self.event = event
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._events._remove(self.event, self.listener)

    def __repr__(self):
        return f"<Subscription {self.event!r} active={self.active}>"


class GDCoreEvents:
    """
    Ordered listener lists for the diagnostic output of the core library.

    "print" listeners receive standard output lines, "error" listeners
    receive error output and abort messages. Listeners run in registration
    order; one failing listener does not prevent the next from running.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {
            EVENT_PRINT: [],
            EVENT_ERROR: [],
        }

    def on(self, event: str, listener: Listener) -> Subscription:
        """
        Registers a listener for "print" or "error" events.

        Raises:
            ValueError: If the event name is unknown.
        """
        if event not in self._listeners:
            raise ValueError(
                f"Unknown event '{event}', expected one of {sorted(self._listeners)}"
            )
        self._listeners[event].append(listener)
        return Subscription(self, event, listener)

    def listeners(self, event: str) -> List[Listener]:
        return list(self._listeners.get(event, []))

    def emit(self, event: str, message: str) -> None:
        for listener in self.listeners(event):
            try:
                listener(message)
            except Exception:
                logger.exception("Listener %r failed on '%s' event", listener, event)

    def _remove(self, event: str, listener: Listener) -> None:
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass
