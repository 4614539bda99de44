import asyncio
import logging

from websockets.protocol import State

logger = logging.getLogger(__name__)

RELOAD_SIGNAL = "reload"


class ReloadChannel:
    """The set of connected browser tabs and the reload broadcast."""

    def __init__(self, signal=RELOAD_SIGNAL):
        self.signal = signal
        self._connections = set()

    def register(self, connection):
        self._connections.add(connection)
        logger.debug("Client connected (%d open)", len(self._connections))

    def unregister(self, connection):
        if connection in self._connections:
            self._connections.discard(connection)
            logger.debug("Client disconnected (%d open)", len(self._connections))

    def clear(self):
        self._connections.clear()

    def __len__(self):
        return len(self._connections)

    def __contains__(self, connection):
        return connection in self._connections

    def __iter__(self):
        return iter(list(self._connections))

    async def handler(self, connection):
        """websockets connection handler: keep the tab registered until it goes away."""
        self.register(connection)
        try:
            await connection.wait_closed()
        finally:
            self.unregister(connection)

    async def broadcast(self):
        """Send the reload signal to every open connection.

        Returns how many connections the signal was delivered to.
        """
        targets = [c for c in self._connections if c.protocol.state is State.OPEN]
        if not targets:
            return 0
        # one slow or dead client must not hold up the others
        results = await asyncio.gather(
            *(c.send(self.signal) for c in targets), return_exceptions=True
        )
        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.debug("Dropping client after failed send: %r", result)
                self.unregister(connection)
            else:
                delivered += 1
        logger.info("Reload sent to %d client(s)", delivered)
        return delivered
