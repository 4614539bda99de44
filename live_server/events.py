import logging

logger = logging.getLogger(__name__)


class Publisher:
    """Fan out one kind of event to a list of subscribers.

    A subscriber that raises is logged and skipped; the others still
    receive the event.
    """

    def __init__(self, name):
        self.name = name
        self._subscribers = []

    def subscribe(self, fn):
        if fn not in self._subscribers:
            self._subscribers.append(fn)
        return fn

    def unsubscribe(self, fn):
        if fn in self._subscribers:
            self._subscribers.remove(fn)

    def publish(self, *args):
        for fn in list(self._subscribers):
            try:
                fn(*args)
            except Exception:
                logger.exception("%s subscriber %r failed", self.name, fn)

    def __len__(self):
        return len(self._subscribers)
