"""Static file server that reloads connected browser tabs when files change."""

from .channel import RELOAD_SIGNAL, ReloadChannel
from .client_script import render_client_script
from .config import ServerConfig
from .errors import AlreadyRunning, ConfigurationError, LiveServerError, StartError
from .responder import CONTENT_TYPES, StaticResponder, content_type_for, inject_script
from .server import LiveServer, ServerSession, ServerState
from .watcher import ChangeKind, DirectoryWatcher, WatchEvent

__version__ = "0.1.0"

__all__ = [
    "AlreadyRunning",
    "CONTENT_TYPES",
    "ChangeKind",
    "ConfigurationError",
    "DirectoryWatcher",
    "LiveServer",
    "LiveServerError",
    "RELOAD_SIGNAL",
    "ReloadChannel",
    "ServerConfig",
    "ServerSession",
    "ServerState",
    "StartError",
    "StaticResponder",
    "WatchEvent",
    "content_type_for",
    "inject_script",
    "render_client_script",
]
