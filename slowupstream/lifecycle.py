"""Process-wide shutdown broadcast and in-flight request tracking."""
import threading


class Shutdown:
    """A cancellation token that is set once and observed by every handler."""

    def __init__(self):
        self._event = threading.Event()

    def set(self):
        self._event.set()

    def is_set(self):
        return self._event.is_set()

    def wait(self, timeout=None):
        """Block up to *timeout* seconds; return True once shutdown was requested."""
        return self._event.wait(timeout)


class InFlight:
    """Counts running handlers so shutdown can wait for them."""

    def __init__(self):
        self._cond = threading.Condition()
        self._count = 0

    @property
    def count(self):
        with self._cond:
            return self._count

    def add(self):
        with self._cond:
            self._count += 1

    def done(self):
        with self._cond:
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    def __enter__(self):
        self.add()
        return self

    def __exit__(self, *exc_info):
        self.done()
        return False

    def wait(self, timeout=None):
        """Wait until nothing is in flight; return False if *timeout* ran out first."""
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout)
