"""Serving the app with werkzeug and shutting it down gracefully."""
import argparse
import logging
import signal
import socket
import sys
import threading
from datetime import timedelta

from werkzeug.serving import get_sockaddr, make_server, select_address_family

from .app import create_app
from .lifecycle import Shutdown

logger = logging.getLogger(__name__)

DEFAULT_ADDR = "localhost:8080"
SHUTDOWN_TIMEOUT = 60.0


def listen_address(addr):
    """Split ``host:port``, ``:port`` or ``[v6host]:port`` into ``(host, port)``."""
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError("invalid listen address %r" % addr)
    port = int(port)
    if port > 65535:
        raise ValueError("invalid port in listen address %r" % addr)
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError("IPv6 hosts must be bracketed in %r" % addr)
    return host or "0.0.0.0", port


def bind(host, port, backlog=128):
    """Open a listening socket, raising ``OSError`` when the address is unusable."""
    family = select_address_family(host, port)
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(get_sockaddr(host, port, family))
        sock.listen(backlog)
    except OSError:
        sock.close()
        raise
    return sock


class SlowServer:
    """A threaded werkzeug server around the app, with bounded graceful shutdown.

    Binding happens in the constructor, so a busy port raises ``OSError``
    before anything is served.
    """

    def __init__(self, host, port, shutdown=None, **config):
        self.shutdown_token = shutdown if shutdown is not None else Shutdown()
        self.app = create_app(self.shutdown_token, **config)
        self.inflight = self.app.extensions["slowupstream"]["inflight"]
        sock = bind(host, port)
        try:
            self._server = make_server(host, port, self.app, threaded=True, fd=sock.fileno())
        finally:
            # the server holds its own duplicate
            sock.close()
        # joining handler threads is bounded by shutdown() instead
        self._server.block_on_close = False
        self._thread = None

    @property
    def address(self):
        return self._server.server_address[:2]

    def start(self):
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="slowupstream-server", daemon=True
        )
        self._thread.start()

    def is_serving(self):
        return self._thread is not None and self._thread.is_alive()

    def shutdown(self, timeout=SHUTDOWN_TIMEOUT):
        """Broadcast shutdown, stop accepting and wait up to *timeout* for handlers.

        Returns False when handlers were still running after *timeout*.
        """
        self.shutdown_token.set()
        if self.is_serving():
            self._server.shutdown()
        done = self.inflight.wait(timeout)
        if not done:
            logger.warning(
                "failed to shutdown server: %d requests still in flight after %.1fs",
                self.inflight.count,
                timeout,
            )
        self._server.server_close()
        return done


def positive_seconds(value):
    seconds = float(value)
    if seconds <= 0:
        raise ValueError("must be positive: %r" % value)
    return seconds


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # one access line per request drowns out the tick logs
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="slowupstream",
        description="HTTP server that answers slowly, for testing proxy timeouts",
    )
    parser.add_argument(
        "addr",
        nargs="?",
        default=DEFAULT_ADDR,
        type=listen_address,
        help="listen address as host:port (default: %s)" % DEFAULT_ADDR,
    )
    parser.add_argument(
        "--no-tick",
        dest="ticking",
        action="store_false",
        help="sleep silently instead of streaming a tick line every interval",
    )
    parser.add_argument(
        "--tick-interval",
        type=positive_seconds,
        default=1.0,
        help="seconds between tick lines (default: 1)",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=positive_seconds,
        default=SHUTDOWN_TIMEOUT,
        help="seconds to wait for in-flight requests on shutdown (default: 60)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="log level (default: INFO)",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    host, port = args.addr
    shutdown = Shutdown()

    def on_signal(signum, frame):
        shutdown.set()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    logger.info("starting server on %s:%d", host, port)
    try:
        server = SlowServer(
            host,
            port,
            shutdown=shutdown,
            SLOW_TICKING=args.ticking,
            SLOW_TICK_INTERVAL=timedelta(seconds=args.tick_interval),
        )
    except OSError as e:
        logger.error("starting failed: %s", e)
        return 1
    server.start()

    status = 0
    while not shutdown.wait(0.5):
        if not server.is_serving():
            logger.error("server stopped unexpectedly")
            status = 1
            break
    else:
        logger.info("received termination signal, shutting down")

    server.shutdown(args.shutdown_timeout)
    logger.info("server shutdown complete")
    return status
