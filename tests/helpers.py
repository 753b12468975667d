import time
import unittest
from datetime import timedelta

from slowupstream.server import SlowServer

HOST = "127.0.0.1"
TICK = timedelta(milliseconds=100)


def wait_for(predicate, timeout=2.0, step=0.01):
    """Poll *predicate* until it is true; return whether it became true in time."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step)
    return predicate()


class LiveServerCase(unittest.TestCase):
    """Runs a real threaded server on an ephemeral port for each test."""

    config = {"SLOW_TICK_INTERVAL": TICK}

    def setUp(self):
        self.server = SlowServer(HOST, 0, **self.config)
        self.server.start()
        self.port = self.server.address[1]
        self.base_url = f"http://{HOST}:{self.port}"

    def tearDown(self):
        self.server.shutdown(timeout=5)
