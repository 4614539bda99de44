import argparse
import asyncio
import logging
import sys
import webbrowser

from .config import ServerConfig
from .errors import ConfigurationError, LiveServerError, StartError
from .server import LiveServer, ServerState

logger = logging.getLogger(__name__)


def open_browser(url):
    """Open ``url`` in the default browser. Returns the URL."""
    try:
        if not webbrowser.open(url):
            logger.warning("No browser available; open %s manually", url)
    except webbrowser.Error as e:
        logger.warning("Could not open browser (%s); open %s manually", e, url)
    return url


def report_status(state, session):
    if state is ServerState.STARTING:
        print(f"🚀 Live reload server starting for {session.root}...")
    elif state is ServerState.RUNNING:
        print(f"🌐 Serving {session.url}")
        print(f"🔁 Live reload on {session.url.replace('http://', 'ws://', 1)}")
    elif state is ServerState.IDLE:
        print("🛑 Server stopped")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="live-server",
        description="Serve a folder with automatic browser reload on file changes.",
    )
    parser.add_argument("target", nargs="?", default=".", help="Folder or HTML file to serve (default: .)")
    parser.add_argument("--port", type=int, help="Port to listen on, 0 for any free port (default: 5500)")
    parser.add_argument("--host", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--entry", dest="entry_file", help="File served for / and unknown paths")
    parser.add_argument(
        "--no-browser", dest="open_browser", action="store_false", default=None,
        help="Do not open a browser tab",
    )
    parser.add_argument("--quiet-period", type=float, help="Seconds a file must stay unchanged before reloading")
    parser.add_argument(
        "--reconnect", dest="reconnect_attempts", type=int,
        help="How many times pages retry a lost reload connection (default: 0)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    return parser


async def run(config):
    server = LiveServer(
        host=config.host,
        ignore=config.ignore,
        quiet_period=config.quiet_period,
        reconnect_attempts=config.reconnect_attempts,
    )
    server.subscribe(report_status)
    try:
        await server.start(config.root, config.port, config.entry_file)
    except StartError:
        if config.port == 0:
            raise
        logger.warning("Port %d is unavailable, trying a free port", config.port)
        await server.start(config.root, 0, config.entry_file)

    if config.open_browser:
        open_browser(server.url)
    try:
        await server.serve_forever()
    finally:
        await server.stop()


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.verbose:
        # websockets logs every plain HTTP request as a rejected handshake
        logging.getLogger("websockets").setLevel(logging.WARNING)

    overrides = vars(args)
    target = overrides.pop("target")
    overrides.pop("verbose")
    try:
        config = ServerConfig.from_target(target, **overrides)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        print("\n🛑 Stopping server...")
    except LiveServerError as e:
        print(f"❌ Live reload server failed to start: {e}", file=sys.stderr)
        return 1
    return 0
