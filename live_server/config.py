"""Server settings: command line overrides on top of ``.openlocalhost.json``.

The config file is looked up in the project root first and then in the
usual document-root folders. A file that cannot be read is logged and the
search continues.
"""

import glob
import json
import logging
import os
from dataclasses import dataclass, fields, replace

from .errors import ConfigurationError
from .server import DEFAULT_ENTRY_FILE, DEFAULT_HOST, is_valid_port
from .watcher import DEFAULT_IGNORE, DEFAULT_QUIET_PERIOD

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".openlocalhost.json"
CONFIG_SEARCH_DIRS = ("", "public", "www", "htdocs", "web", "dist", "build")
HTML_EXTENSIONS = (".html", ".htm")
DEFAULT_PORT = 5500

# .openlocalhost.json key -> ServerConfig field
CONFIG_KEYS = {
    "port": "port",
    "entryFile": "entry_file",
    "autoOpenBrowser": "open_browser",
    "reconnectAttempts": "reconnect_attempts",
    "ignore": "ignore",
}


@dataclass
class ServerConfig:
    root: str
    entry_file: str = DEFAULT_ENTRY_FILE
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    open_browser: bool = True
    quiet_period: float = DEFAULT_QUIET_PERIOD
    ignore: tuple = DEFAULT_IGNORE
    reconnect_attempts: int = 0

    def __post_init__(self):
        if not is_valid_port(self.port):
            raise ConfigurationError(f"invalid port: {self.port!r}")
        if self.quiet_period < 0:
            raise ConfigurationError(f"quiet period must not be negative: {self.quiet_period}")
        if self.reconnect_attempts < 0:
            raise ConfigurationError("reconnect attempts must not be negative")
        if isinstance(self.ignore, str):
            self.ignore = (self.ignore,)
        self.ignore = tuple(self.ignore)

    @classmethod
    def from_target(cls, target, **overrides):
        """Build the config for a project directory or a single HTML file.

        Overrides set to None are ignored, so argparse results can be passed
        straight through.
        """
        target = os.path.abspath(target)
        if os.path.isfile(target):
            if not target.lower().endswith(HTML_EXTENSIONS):
                raise ConfigurationError(f"not an HTML file: {target}")
            root, entry = os.path.split(target)
        elif os.path.isdir(target):
            root, entry = target, None
        else:
            raise ConfigurationError(f"no such file or directory: {target}")

        values = load_config_file(root)
        document_root = values.pop("document_root", None)
        if document_root and entry is None:
            root = os.path.normpath(os.path.join(root, document_root))
            if not os.path.isdir(root):
                raise ConfigurationError(f"documentRoot not found: {root}")
        if entry is not None:
            values["entry_file"] = entry
        elif "entry_file" not in values:
            values["entry_file"] = find_entry_file(root)
        values.update({k: v for k, v in overrides.items() if v is not None})
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"unknown settings: {', '.join(sorted(unknown))}")
        return cls(root=root, **{k: v for k, v in values.items() if k != "root"})

    def with_port(self, port):
        return replace(self, port=port)


def find_entry_file(root):
    for name in ("index.html", "index.htm"):
        if os.path.isfile(os.path.join(root, name)):
            return name
    pages = sorted(
        os.path.basename(p)
        for ext in HTML_EXTENSIONS
        for p in glob.glob(os.path.join(glob.escape(root), "*" + ext))
    )
    return pages[0] if pages else DEFAULT_ENTRY_FILE


def find_config_file(root):
    for folder in CONFIG_SEARCH_DIRS:
        path = os.path.join(root, folder, CONFIG_FILE_NAME)
        if os.path.isfile(path):
            yield path


def load_config_file(root):
    """Return ServerConfig keyword values from the first readable config file."""
    for path in find_config_file(root):
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Skipping unreadable config file %s: %s", path, e)
            continue
        if not isinstance(data, dict):
            logger.warning("Skipping config file %s: expected a JSON object", path)
            continue
        logger.debug("Loaded settings from %s", path)
        values = {CONFIG_KEYS[k]: v for k, v in data.items() if k in CONFIG_KEYS}
        if "documentRoot" in data:
            values["document_root"] = data["documentRoot"]
        return values
    return {}
