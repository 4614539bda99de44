import asyncio
import os
import shutil

import pytest
from websockets.asyncio.client import connect

from conftest import INDEX_HTML, fetch, wait_until
from live_server.channel import RELOAD_SIGNAL
from live_server.errors import AlreadyRunning, ConfigurationError, StartError
from live_server.server import LiveServer, ServerState
from live_server.watcher import ChangeKind, WatchEvent

QUIET = 0.1


@pytest.fixture
async def server():
    s = LiveServer(quiet_period=QUIET)
    yield s
    await s.stop()


async def test_start_returns_bound_port(server, site):
    port = await server.start(str(site), 0, "index.html")
    assert port > 0
    assert server.port == port
    assert server.is_running
    assert server.state is ServerState.RUNNING
    assert server.url == f"http://localhost:{port}/"
    assert server.session.running


async def test_root_serves_entry_with_script(server, site):
    port = await server.start(str(site), 0, "index.html")
    status, headers, body = await fetch(port, "/")
    assert status == 200
    assert headers["content-type"] == "text/html"
    assert b"Hi" in body
    assert b"<script>" in body
    assert b"location.hostname" in body
    assert f'":{port}/"'.encode() in body
    assert body.startswith(INDEX_HTML.split("</body>")[0].encode())
    assert body.endswith(b"</body></html>")


async def test_serves_css_unmodified(server, site):
    port = await server.start(str(site), 0, "index.html")
    status, headers, body = await fetch(port, "/style.css")
    assert status == 200
    assert headers["content-type"] == "text/css"
    assert body == (site / "style.css").read_bytes()


async def test_traversal_is_forbidden(server, site):
    (site.parent / "secret.txt").write_text("secret")
    port = await server.start(str(site), 0, "index.html")
    status, _, body = await fetch(port, "/../secret.txt")
    assert status == 403
    assert b"secret" not in body


async def test_spa_fallback_and_404(server, site):
    port = await server.start(str(site), 0, "index.html")
    status, _, body = await fetch(port, "/some/client/route")
    assert status == 200
    assert b"Hi" in body

    (site / "index.html").unlink()
    status, _, _ = await fetch(port, "/some/client/route")
    assert status == 404


async def test_start_twice_is_already_running(server, site):
    await server.start(str(site), 0, "index.html")
    with pytest.raises(AlreadyRunning):
        await server.start(str(site), 0, "index.html")
    assert server.is_running


async def test_stop_is_idempotent(server, site):
    await server.stop()
    assert server.state is ServerState.IDLE
    await server.start(str(site), 0, "index.html")
    await server.stop()
    await server.stop()
    assert server.state is ServerState.IDLE
    assert not server.session.running


async def test_stop_refuses_new_connections(server, site):
    port = await server.start(str(site), 0, "index.html")
    status, _, _ = await fetch(port, "/")
    assert status == 200
    await server.stop()
    with pytest.raises(OSError):
        await fetch(port, "/")


async def test_stop_closes_clients(server, site):
    port = await server.start(str(site), 0, "index.html")
    async with connect(f"ws://127.0.0.1:{port}/") as ws:
        await wait_until(lambda: len(server.channel) == 1)
        await server.stop()
        await asyncio.wait_for(ws.wait_closed(), timeout=5)
    assert len(server.channel) == 0


@pytest.mark.parametrize(
    "root, entry",
    [(None, "index.html"), ("missing", "index.html"), (".", ""), (".", "/etc/passwd"), (".", "../x.html")],
)
async def test_bad_configuration_leaves_server_idle(server, site, root, entry):
    if root == "missing":
        root = str(site / "missing")
    elif root == ".":
        root = str(site)
    with pytest.raises(ConfigurationError):
        await server.start(root, 0, entry)
    assert server.state is ServerState.IDLE


async def test_bind_conflict_is_start_error(server, site):
    port = await server.start(str(site), 0, "index.html")
    other = LiveServer()
    with pytest.raises(StartError):
        await other.start(str(site), port, "index.html")
    assert other.state is ServerState.ERROR
    assert other._watcher is None and other._server is None

    await other.stop()
    assert other.state is ServerState.IDLE


async def test_watcher_failure_cleans_up_listener(site, monkeypatch):
    def broken(self):
        raise OSError("inotify watch limit reached")

    monkeypatch.setattr("live_server.watcher.DirectoryWatcher.start", broken)
    s = LiveServer()
    with pytest.raises(StartError):
        await s.start(str(site), 0, "index.html")
    assert s.state is ServerState.ERROR
    with pytest.raises(OSError):
        await fetch(s.session.port, "/")


async def test_status_transitions_are_reported(server, site):
    seen = []
    server.subscribe(lambda state, session: seen.append(state))
    await server.start(str(site), 0, "index.html")
    await server.stop()
    assert seen == [
        ServerState.STARTING,
        ServerState.RUNNING,
        ServerState.STOPPING,
        ServerState.IDLE,
    ]


async def test_file_change_reloads_every_client_once(server, site):
    port = await server.start(str(site), 0, "index.html")
    url = f"ws://127.0.0.1:{port}/"
    async with connect(url) as a, connect(url) as b, connect(url) as c:
        await wait_until(lambda: len(server.channel) == 3)
        for i in range(3):
            (site / "index.html").write_text(f"<html><body>v{i}</body></html>")

        for ws in (a, b, c):
            assert await asyncio.wait_for(ws.recv(), timeout=5) == RELOAD_SIGNAL
        for ws in (a, b, c):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(ws.recv(), timeout=QUIET * 5)


async def test_change_handler_ignores_other_kinds(server, site):
    await server.start(str(site), 0, "index.html")
    server._on_change(WatchEvent(str(site / "gone.html"), ChangeKind.DELETED))
    assert not server._broadcasts


async def test_change_handler_does_not_raise(server, site, monkeypatch):
    await server.start(str(site), 0, "index.html")

    def explode():
        raise RuntimeError("boom")

    monkeypatch.setattr(server.channel, "broadcast", explode)
    server._on_change(WatchEvent(str(site / "index.html"), ChangeKind.MODIFIED))
    assert not server._broadcasts


async def test_bad_port_type_is_configuration_error(server, site):
    with pytest.raises(ConfigurationError):
        await server.start(str(site), "8080", "index.html")
    assert server.state is ServerState.IDLE


async def test_rename_over_served_file_reloads(server, site):
    port = await server.start(str(site), 0, "index.html")
    async with connect(f"ws://127.0.0.1:{port}/") as ws:
        await wait_until(lambda: len(server.channel) == 1)
        tmp = site / ".index.html.tmp"
        tmp.write_text("<html><body>saved</body></html>")
        os.replace(tmp, site / "index.html")

        assert await asyncio.wait_for(ws.recv(), timeout=5) == RELOAD_SIGNAL
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(ws.recv(), timeout=QUIET * 5)


async def test_delete_and_rewrite_reloads(server, site):
    port = await server.start(str(site), 0, "index.html")
    async with connect(f"ws://127.0.0.1:{port}/") as ws:
        await wait_until(lambda: len(server.channel) == 1)
        (site / "style.css").unlink()
        (site / "style.css").write_text("body { color: blue; }")

        assert await asyncio.wait_for(ws.recv(), timeout=5) == RELOAD_SIGNAL


async def test_non_default_host(site):
    s = LiveServer(host="127.0.0.2", quiet_period=QUIET)
    port = await s.start(str(site), 0, "index.html")
    try:
        assert s.url == f"http://127.0.0.2:{port}/"
        status, _, body = await fetch(port, "/", host="127.0.0.2")
        assert status == 200
        assert b"location.hostname" in body
        assert f'":{port}/"'.encode() in body
        async with connect(f"ws://127.0.0.2:{port}/"):
            await wait_until(lambda: len(s.channel) == 1)
    finally:
        await s.stop()


async def test_removed_root_stops_watching_but_keeps_serving(server, site):
    port = await server.start(str(site), 0, "index.html")
    watcher = server._watcher
    shutil.rmtree(site)

    await wait_until(lambda: not watcher.running)
    assert server.is_running
    status, _, _ = await fetch(port, "/")
    assert status in (404, 500)
