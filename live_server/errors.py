"""Exceptions raised by the live reload server."""


class LiveServerError(Exception):
    """Base class for live server failures."""


class ConfigurationError(LiveServerError):
    """The root directory, entry file or a config value is unusable."""


class AlreadyRunning(LiveServerError):
    """start() was called on a server that is starting or running."""


class StartError(LiveServerError):
    """The listener could not be bound or the watcher could not start."""
