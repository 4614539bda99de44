import asyncio
import enum
import logging
import os
from dataclasses import dataclass

from websockets.asyncio.server import serve

from .channel import ReloadChannel
from .client_script import render_client_script
from .errors import AlreadyRunning, ConfigurationError, StartError
from .events import Publisher
from .responder import StaticResponder, make_response
from .watcher import DEFAULT_IGNORE, DEFAULT_QUIET_PERIOD, ChangeKind, DirectoryWatcher

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_ENTRY_FILE = "index.html"
CLOSE_TIMEOUT = 1

# bind addresses a browser on this machine reaches as "localhost"
LOCAL_HOSTS = ("", "localhost", "127.0.0.1", "::1", "0.0.0.0", "::")


def is_valid_port(port):
    return isinstance(port, int) and not isinstance(port, bool) and 0 <= port <= 65535


def browser_host(host):
    """Host name to put in URLs for a listener bound to ``host``."""
    if host in LOCAL_HOSTS:
        return "localhost"
    if ":" in host:
        return f"[{host}]"
    return host


class ServerState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class ServerSession:
    root: str
    entry_file: str
    host: str
    port: int
    running: bool = False

    @property
    def url(self):
        return f"http://{browser_host(self.host)}:{self.port}/"


def validate_target(root, entry_file):
    """Return the absolute root, or raise ConfigurationError."""
    if not root:
        raise ConfigurationError("no root directory given")
    root = os.path.realpath(root)
    if not os.path.isdir(root):
        raise ConfigurationError(f"root directory not found: {root}")
    if not entry_file or not entry_file.strip():
        raise ConfigurationError("entry file name is empty")
    if os.path.isabs(entry_file):
        raise ConfigurationError(f"entry file must be relative to the root: {entry_file}")
    entry = os.path.realpath(os.path.join(root, entry_file))
    if os.path.commonpath([root, entry]) != root:
        raise ConfigurationError(f"entry file is outside the root: {entry_file}")
    return root


class LiveServer:
    """Serve a directory over HTTP and reload connected pages on change.

    HTTP requests and the reload WebSocket share one listener: plain GETs
    are answered from ``process_request``, upgrade requests are handed to
    the reload channel.
    """

    def __init__(
        self,
        host=DEFAULT_HOST,
        ignore=DEFAULT_IGNORE,
        quiet_period=DEFAULT_QUIET_PERIOD,
        reload_on=frozenset({ChangeKind.MODIFIED}),
        reconnect_attempts=0,
    ):
        self.host = host
        self.ignore = tuple(ignore)
        self.quiet_period = quiet_period
        self.reload_on = frozenset(reload_on)
        self.reconnect_attempts = reconnect_attempts
        self.channel = ReloadChannel()
        self.state = ServerState.IDLE
        self.session = None
        self._status = Publisher("status")
        self._server = None
        self._watcher = None
        self._responder = None
        self._broadcasts = set()
        self._stopped = None

    @property
    def is_running(self):
        return self.state is ServerState.RUNNING

    @property
    def port(self):
        return self.session.port if self.session else None

    @property
    def url(self):
        return self.session.url if self.session else None

    def subscribe(self, fn):
        """Call ``fn(state, session)`` on every state transition."""
        return self._status.subscribe(fn)

    def unsubscribe(self, fn):
        self._status.unsubscribe(fn)

    def _set_state(self, state):
        self.state = state
        self._status.publish(state, self.session)

    async def start(self, root, port=0, entry_file=DEFAULT_ENTRY_FILE):
        """Bind the listener, start watching ``root`` and return the bound port."""
        if self.state in (ServerState.STARTING, ServerState.RUNNING):
            raise AlreadyRunning("live server is already running")
        root = validate_target(root, entry_file)
        if not is_valid_port(port):
            raise ConfigurationError(f"invalid port: {port!r}")

        self.session = ServerSession(root, entry_file, self.host, port)
        self._set_state(ServerState.STARTING)
        try:
            self._server = await serve(
                self.channel.handler,
                self.host,
                port,
                process_request=self._process_request,
                close_timeout=CLOSE_TIMEOUT,
            )
            bound = self._server.sockets[0].getsockname()[1]
            self.session.port = bound
            self._responder = StaticResponder(
                root,
                entry_file,
                render_client_script(bound, reconnect_attempts=self.reconnect_attempts),
            )
            self._watcher = DirectoryWatcher(root, self.ignore, self.quiet_period)
            self._watcher.subscribe(self._on_change)
            self._watcher.start()
        except Exception as e:
            logger.error("Failed to start live server: %s", e)
            await self._teardown()
            self._set_state(ServerState.ERROR)
            raise StartError(f"could not start live server on port {port}: {e}") from e

        self._stopped = asyncio.Event()
        self.session.running = True
        self._set_state(ServerState.RUNNING)
        logger.info("Live server on %s serving %s", self.session.url, root)
        return bound

    async def stop(self):
        if self.state is ServerState.ERROR:
            self._set_state(ServerState.IDLE)
        if self.state is not ServerState.RUNNING:
            return
        self._set_state(ServerState.STOPPING)
        try:
            await self._teardown()
        finally:
            self.session.running = False
            if self._stopped is not None:
                self._stopped.set()
            self._set_state(ServerState.IDLE)
            logger.info("Live server stopped")

    async def serve_forever(self):
        """Wait until the server is stopped."""
        if self._stopped is not None:
            await self._stopped.wait()

    async def _teardown(self):
        watcher, self._watcher = self._watcher, None
        server, self._server = self._server, None
        self._responder = None
        try:
            if watcher is not None:
                watcher.unsubscribe(self._on_change)
                await watcher.stop()
        finally:
            for task in list(self._broadcasts):
                task.cancel()
            self._broadcasts.clear()
            if server is not None:
                server.close()
                await server.wait_closed()
            self.channel.clear()

    async def _process_request(self, connection, request):
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None
        if self._responder is None:
            return make_response(503, "Server is not running")
        return await self._responder.respond(request.path)

    def _on_change(self, event):
        try:
            if event.kind not in self.reload_on:
                return
            logger.info("File changed: %s, reloading...", event.path)
            task = asyncio.get_running_loop().create_task(self.channel.broadcast())
            self._broadcasts.add(task)
            task.add_done_callback(self._broadcast_done)
        except Exception:
            logger.exception("Could not schedule reload for %s", event.path)

    def _broadcast_done(self, task):
        self._broadcasts.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Reload broadcast failed", exc_info=task.exception())
