import asyncio
import email.utils
import http
import logging
import os
from urllib.parse import unquote, urlsplit

from websockets.datastructures import Headers
from websockets.http11 import Response

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".map": "application/json",
    ".txt": "text/plain",
    ".xml": "application/xml",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".wasm": "application/wasm",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".pdf": "application/pdf",
    ".mp3": "audio/mpeg",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}

NO_CACHE = "no-cache, no-store, must-revalidate"


def content_type_for(path):
    return CONTENT_TYPES.get(os.path.splitext(path)[1].lower(), DEFAULT_CONTENT_TYPE)


def inject_script(html, script):
    """Insert ``script`` before the last closing body tag of ``html``.

    ``html`` is bytes; documents without a ``</body>`` get the script
    appended.
    """
    payload = script.encode("utf-8")
    index = html.lower().rfind(b"</body>")
    if index == -1:
        return html + payload
    return html[:index] + payload + html[index:]


def make_response(status, body=b"", content_type="text/plain"):
    status = http.HTTPStatus(status)
    if isinstance(body, str):
        body = body.encode("utf-8")
    headers = Headers()
    headers["Date"] = email.utils.formatdate(usegmt=True)
    headers["Connection"] = "close"
    headers["Content-Type"] = content_type
    headers["Content-Length"] = str(len(body))
    headers["Cache-Control"] = NO_CACHE
    return Response(status.value, status.phrase, headers, body)


class StaticResponder:
    """Serve files from ``root`` with the reload script injected into HTML.

    Unknown paths fall back to the entry file so client-side routers keep
    working after a reload.
    """

    def __init__(self, root, entry_file, script):
        self.root = os.path.realpath(root)
        self.entry_file = entry_file
        self.script = script

    @property
    def entry_path(self):
        return os.path.join(self.root, self.entry_file)

    def _contains(self, path):
        return os.path.commonpath([self.root, path]) == self.root

    def resolve(self, request_path):
        """Map a request path to ``(status, file_path)``.

        ``file_path`` is None unless status is 200.
        """
        path = unquote(urlsplit(request_path).path)
        if path in ("", "/"):
            candidate = self.entry_path
        else:
            candidate = os.path.join(self.root, path.lstrip("/"))
        candidate = os.path.realpath(candidate)
        if not self._contains(candidate):
            return http.HTTPStatus.FORBIDDEN, None
        if os.path.isdir(candidate):
            candidate = os.path.join(candidate, "index.html")
        if os.path.isfile(candidate):
            return http.HTTPStatus.OK, candidate
        if os.path.isfile(self.entry_path):
            logger.debug("%s not found, serving %s", path, self.entry_file)
            return http.HTTPStatus.OK, self.entry_path
        return http.HTTPStatus.NOT_FOUND, None

    async def respond(self, request_path):
        try:
            status, path = self.resolve(request_path)
        except (OSError, ValueError):
            logger.exception("Could not resolve %s", request_path)
            return make_response(500, "Internal server error")
        if status == http.HTTPStatus.FORBIDDEN:
            logger.warning("Refusing path outside root: %s", request_path)
            return make_response(403, "Forbidden")
        if status == http.HTTPStatus.NOT_FOUND:
            return make_response(404, "File not found")

        try:
            data = await asyncio.to_thread(_read_bytes, path)
        except OSError:
            logger.exception("Could not read %s", path)
            return make_response(500, "Internal server error")

        content_type = content_type_for(path)
        if content_type == "text/html":
            data = inject_script(data, self.script)
        logger.debug("200 %s -> %s", request_path, path)
        return make_response(200, data, content_type)


def _read_bytes(path):
    with open(path, "rb") as f:
        return f.read()
