"""Flask application simulating slow and failing upstreams.

``/slow/<duration>`` holds the response open for ``duration``, writing one
``tick: <timestamp>`` line per tick interval, and ends early when the client
goes away or the server shuts down. ``/fail`` answers 504 straight away.
"""
import logging
import select
import socket
import time
from datetime import datetime, timedelta

from flask import Flask, Response, request
from werkzeug.routing import Rule
from werkzeug.wsgi import ClosingIterator

from .duration import InvalidDuration, format_duration, parse_duration
from .lifecycle import InFlight, Shutdown

logger = logging.getLogger(__name__)

DEFAULTS = {
    "SLOW_DEFAULT_DURATION": "10s",
    "SLOW_TICKING": True,
    "SLOW_TICK_INTERVAL": timedelta(seconds=1),
}


class RequestLog(logging.LoggerAdapter):
    """Prefixes messages with the request method and URL."""

    def log(self, level, msg, *args, **kwargs):
        if self.isEnabledFor(level):
            self.logger.log(
                level, "[%s %s] " + msg, self.extra["method"], self.extra["url"], *args, **kwargs
            )


def client_gone(sock):
    """Return True when the peer closed *sock*, without consuming pending data."""
    if sock is None:
        return False
    try:
        readable, _, _ = select.select([sock], [], [], 0)
        if not readable:
            return False
        return sock.recv(1, socket.MSG_PEEK) == b""
    except (OSError, ValueError):
        # closed or reset under us
        return True


class Pause:
    """Waits out a delay while watching the shutdown token and the client.

    Every wait is sliced into at most one tick interval so a disconnect is
    noticed within one interval even when nothing is being written.
    """

    def __init__(self, delay, shutdown, sock=None, interval=timedelta(seconds=1), log=logger):
        self.delay = max(delay, timedelta(0))
        self.shutdown = shutdown
        self.sock = sock
        self.interval = interval
        self.log = log
        self.started = None

    def _until(self, offset):
        """Wait until *offset* after start. Returns True if cancelled first."""
        deadline = self.started + offset.total_seconds()
        poll = self.interval.total_seconds()
        while True:
            if self.shutdown.is_set():
                self.log.info("shutdown requested, ending request")
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            if client_gone(self.sock):
                self.log.info("client went away")
                return True
            self.shutdown.wait(min(remaining, poll))

    def sleep(self):
        self.started = time.monotonic()
        self._until(self.delay)

    def ticks(self):
        self.started = time.monotonic()
        for n in range(1, self.delay // self.interval + 1):
            if self._until(self.interval * n):
                return
            self.log.info("tick")
            try:
                yield "tick: %s\n" % datetime.now().astimezone().isoformat()
            except GeneratorExit:
                self.log.error("failed to write tick")
                raise
        self._until(self.delay)


def create_app(shutdown=None, **config):
    """Build the application.

    *shutdown* is the process-wide :class:`Shutdown` token every handler
    observes; a fresh one is created when omitted. Keyword arguments
    override the ``SLOW_*`` config keys.
    """
    app = Flask(__name__)
    app.config.update(DEFAULTS)
    app.config.update(config)

    interval = app.config["SLOW_TICK_INTERVAL"]
    if interval <= timedelta(0):
        raise ValueError("SLOW_TICK_INTERVAL must be positive, got %r" % (interval,))

    if shutdown is None:
        shutdown = Shutdown()
    inflight = InFlight()
    app.extensions["slowupstream"] = {"shutdown": shutdown, "inflight": inflight}

    def slow(duration):
        log = RequestLog(logger, {"method": request.method, "url": request.url})

        if not duration:
            log.info("using default duration")
            duration = app.config["SLOW_DEFAULT_DURATION"]

        try:
            delay = parse_duration(duration)
        except InvalidDuration as e:
            log.error("failed to parse duration: %s", e)
            return "", 400

        log.info("starting request")
        log.info("pausing for %s", format_duration(delay))

        pause = Pause(
            delay,
            shutdown,
            sock=request.environ.get("werkzeug.socket"),
            interval=app.config["SLOW_TICK_INTERVAL"],
            log=log,
        )
        ticking = app.config["SLOW_TICKING"]

        def generate():
            if ticking:
                yield from pause.ticks()
            else:
                pause.sleep()

        def finish():
            log.info("finishing request")
            inflight.done()

        # counted from here so shutdown sees requests whose body has not started;
        # the server closes the body iterator whether or not it was consumed
        inflight.add()
        return Response(ClosingIterator(generate(), finish), mimetype="text/plain")

    def fail():
        return "", 504

    # rules without a method filter match every method, extension ones included
    app.url_map.add(Rule("/slow/", defaults={"duration": ""}, strict_slashes=False, endpoint="slow"))
    app.url_map.add(Rule("/slow/<duration>", endpoint="slow"))
    app.url_map.add(Rule("/fail", endpoint="fail"))
    app.view_functions["slow"] = slow
    app.view_functions["fail"] = fail

    return app
