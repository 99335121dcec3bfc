"""In-process event broadcasting."""

import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

Listener = Callable[[str, Any], None]


class EventBus:
    """Fire-and-forget publisher for engine events.

    Components depend only on ``emit(topic, payload)``. Listeners are called
    synchronously on the emitting thread; a failing listener is logged and
    never affects the emitter or other listeners.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        """Initialize event bus.

        Args:
            logger: Logger instance
        """
        self.logger = logger or logging.getLogger(__name__)
        self._listeners: List[Tuple[Optional[str], Listener]] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener, topic: Optional[str] = None) -> None:
        """Register a listener for one topic, or for every topic if None."""
        with self._lock:
            self._listeners.append((topic, listener))

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners = [(t, l) for t, l in self._listeners if l is not listener]

    def emit(self, topic: str, payload: Any) -> None:
        """Deliver an event to every matching listener, best-effort."""
        with self._lock:
            listeners = [l for t, l in self._listeners if t is None or t == topic]

        for listener in listeners:
            try:
                listener(topic, payload)
            except Exception as e:
                self.logger.warning(f"Event listener failed for '{topic}': {e}")
