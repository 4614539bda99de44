import asyncio
import enum
import fnmatch
import logging
import os
from dataclasses import dataclass

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .events import Publisher

logger = logging.getLogger(__name__)

DEFAULT_IGNORE = ("node_modules", ".git", ".DS_Store")
DEFAULT_QUIET_PERIOD = 0.3


class ChangeKind(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


# watchdog event_type -> ChangeKind. "closed" is a write-close on inotify,
# i.e. the end of a modification.
_KINDS = {
    "created": ChangeKind.CREATED,
    "modified": ChangeKind.MODIFIED,
    "closed": ChangeKind.MODIFIED,
    "deleted": ChangeKind.DELETED,
}


@dataclass(frozen=True)
class WatchEvent:
    path: str
    kind: ChangeKind


class _EventBridge(FileSystemEventHandler):
    """Runs on the observer thread; hands events over to the event loop."""

    def __init__(self, watcher, loop):
        self.watcher = watcher
        self.loop = loop

    def on_any_event(self, event):
        path = os.fsdecode(event.src_path)
        if event.is_directory:
            if event.event_type == "deleted" and os.path.normpath(path) == self.watcher.root:
                self._call(self.watcher._on_root_lost)
            return
        if event.event_type == "moved":
            # a rename onto a served file (editor safe-write) changes its content
            dest = os.fsdecode(event.dest_path)
            if self.watcher.contains(dest):
                self._call(self.watcher._record, dest, ChangeKind.MODIFIED)
            self._call(self.watcher._record, path, ChangeKind.DELETED)
            return
        kind = _KINDS.get(event.event_type)
        if kind is None:
            return
        self._call(self.watcher._record, path, kind)

    def _call(self, fn, *args):
        try:
            self.loop.call_soon_threadsafe(fn, *args)
        except RuntimeError:
            # loop already closed; nothing left to notify
            pass


class DirectoryWatcher:
    """Watch a directory tree and publish debounced WatchEvents.

    A path's event is only published once the file has gone
    ``quiet_period`` seconds without another raw event, so a burst of
    writes collapses into a single WatchEvent.
    """

    def __init__(self, root, ignore=DEFAULT_IGNORE, quiet_period=DEFAULT_QUIET_PERIOD):
        self.root = os.path.normpath(os.path.abspath(root))
        self.ignore = tuple(ignore)
        self.quiet_period = quiet_period
        self._events = Publisher("watcher")
        self._observer = None
        self._loop = None
        self._pending = {}
        self._stop_task = None

    @property
    def running(self):
        return self._observer is not None

    def subscribe(self, fn):
        return self._events.subscribe(fn)

    def unsubscribe(self, fn):
        self._events.unsubscribe(fn)

    def contains(self, path):
        rel = os.path.relpath(path, self.root)
        return not (rel == os.pardir or rel.startswith(os.pardir + os.sep))

    def is_ignored(self, path):
        if not self.contains(path):
            return True
        rel = os.path.relpath(path, self.root)
        parts = rel.split(os.sep)
        return any(fnmatch.fnmatch(part, pattern) for part in parts for pattern in self.ignore)

    def start(self):
        if self._observer is not None:
            return
        if not os.path.isdir(self.root):
            raise FileNotFoundError(f"cannot watch missing directory: {self.root}")
        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_EventBridge(self, self._loop), self.root, recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self.root)

    async def stop(self):
        observer, self._observer = self._observer, None
        for handle, _ in self._pending.values():
            handle.cancel()
        self._pending.clear()
        if observer is None:
            return
        observer.stop()
        await asyncio.to_thread(observer.join)
        logger.info("Stopped watching %s", self.root)

    def _record(self, path, kind):
        if self._observer is None or self.is_ignored(path):
            return
        pending = self._pending.pop(path, None)
        if pending is not None:
            handle, previous = pending
            handle.cancel()
            kind = _merge(previous, kind)
        handle = self._loop.call_later(self.quiet_period, self._flush, path, kind)
        self._pending[path] = (handle, kind)

    def _flush(self, path, kind):
        self._pending.pop(path, None)
        logger.debug("%s %s", kind.value, path)
        self._events.publish(WatchEvent(path, kind))

    def _on_root_lost(self):
        if self._observer is None:
            return
        logger.error("Watched directory %s was removed; file watching stopped", self.root)
        self._stop_task = self._loop.create_task(self.stop())
        self._stop_task.add_done_callback(_log_stop_failure)


def _log_stop_failure(task):
    if not task.cancelled() and task.exception() is not None:
        logger.error("Failed to stop watcher", exc_info=task.exception())


def _merge(previous, kind):
    """Combine two raw kinds seen for one path inside a quiet period."""
    # writes right after a create are still part of the create
    if previous is ChangeKind.CREATED and kind is ChangeKind.MODIFIED:
        return previous
    # deleted and written again: the file is still there with new content
    if previous is ChangeKind.DELETED and kind in (ChangeKind.CREATED, ChangeKind.MODIFIED):
        return ChangeKind.MODIFIED
    return kind
