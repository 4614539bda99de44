from .channel import RELOAD_SIGNAL

RECONNECT_BASE_DELAY_MS = 500
RECONNECT_MAX_DELAY_MS = 8000

_TEMPLATE = """
<script>
(function() {{
    if (window.__liveServerReload) return;
    window.__liveServerReload = true;
    var url = "ws://" + location.hostname + ":{port}/";
    var retriesLeft = {retries};
    var delay = {base_delay};
    function connect() {{
        var ws = new WebSocket(url);
        ws.onopen = function() {{
            delay = {base_delay};
            console.log("Live reload connected");
        }};
        ws.onmessage = function(event) {{
            if (event.data === "{signal}") location.reload();
        }};
        ws.onclose = function() {{
            console.log("Live reload disconnected");
            if (retriesLeft <= 0) return;
            retriesLeft -= 1;
            setTimeout(connect, delay);
            delay = Math.min(delay * 2, {max_delay});
        }};
    }}
    connect();
}})();
</script>
"""


def render_client_script(port, reconnect_attempts=0):
    """Return the <script> block injected into served HTML pages.

    With ``reconnect_attempts`` at 0 the page never reconnects after the
    socket closes; otherwise it retries that many times with exponential
    backoff.
    """
    return _TEMPLATE.format(
        port=port,
        retries=max(0, int(reconnect_attempts)),
        base_delay=RECONNECT_BASE_DELAY_MS,
        max_delay=RECONNECT_MAX_DELAY_MS,
        signal=RELOAD_SIGNAL,
    )
