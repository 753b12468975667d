import time
import unittest
from datetime import datetime, timedelta

import requests

from slowupstream.app import create_app
from tests.helpers import TICK, LiveServerCase


class TestSlowEndpoint(unittest.TestCase):
    def setUp(self):
        self.app = create_app(SLOW_TICK_INTERVAL=TICK, SLOW_DEFAULT_DURATION="200ms")
        self.client = self.app.test_client()

    def test_tick_count_is_floor_of_delay(self):
        cases = {"350ms": 3, "300ms": 3, "50ms": 0, "0s": 0, "-1s": 0}
        for duration, ticks in cases.items():
            with self.subTest(duration=duration):
                resp = self.client.get(f"/slow/{duration}")
                self.assertEqual(resp.status_code, 200)
                lines = resp.get_data(as_text=True).splitlines()
                self.assertEqual(len(lines), ticks)

    def test_tick_lines_carry_a_timestamp(self):
        resp = self.client.get("/slow/200ms")
        for line in resp.get_data(as_text=True).splitlines():
            prefix, _, stamp = line.partition(": ")
            self.assertEqual(prefix, "tick")
            self.assertIsNotNone(datetime.fromisoformat(stamp).tzinfo)

    def test_completes_after_the_delay(self):
        start = time.monotonic()
        self.client.get("/slow/400ms").get_data()
        elapsed = time.monotonic() - start
        self.assertGreaterEqual(elapsed, 0.4)
        self.assertLess(elapsed, 0.4 + TICK.total_seconds() + 0.3)

    def test_empty_duration_uses_default(self):
        for path in ["/slow/", "/slow"]:
            with self.subTest(path=path):
                start = time.monotonic()
                resp = self.client.get(path)
                lines = resp.get_data(as_text=True).splitlines()
                self.assertEqual(resp.status_code, 200)
                self.assertEqual(len(lines), 2)
                self.assertGreaterEqual(time.monotonic() - start, 0.2)

    def test_default_is_ten_seconds(self):
        self.assertEqual(create_app().config["SLOW_DEFAULT_DURATION"], "10s")

    def test_malformed_duration_is_rejected_without_waiting(self):
        for duration in ["abc", "10", "1x", "1h-5m"]:
            with self.subTest(duration=duration):
                start = time.monotonic()
                resp = self.client.get(f"/slow/{duration}")
                self.assertEqual(resp.status_code, 400)
                self.assertEqual(resp.data, b"")
                self.assertLess(time.monotonic() - start, 0.1)
        self.assertEqual(self.app.extensions["slowupstream"]["inflight"].count, 0)

    def test_malformed_duration_is_logged(self):
        with self.assertLogs("slowupstream.app", "ERROR") as logs:
            self.client.get("/slow/abc")
        self.assertIn("[GET http://localhost/slow/abc] failed to parse duration", logs.output[0])

    def test_any_method_is_accepted(self):
        for method in ["POST", "PUT", "DELETE", "PATCH", "OPTIONS", "TRACE", "PURGE", "PROPFIND"]:
            with self.subTest(method=method):
                resp = self.client.open("/slow/100ms", method=method)
                self.assertEqual(resp.status_code, 200)
                self.assertEqual(len(resp.get_data(as_text=True).splitlines()), 1)

    def test_head_is_accepted(self):
        resp = self.client.head("/slow/100ms")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data, b"")

    def test_request_is_in_flight_before_the_body_starts(self):
        inflight = self.app.extensions["slowupstream"]["inflight"]
        resp = self.client.get("/slow/10s")
        self.assertEqual(inflight.count, 1)
        self.assertFalse(inflight.wait(timeout=0.05))
        resp.close()
        self.assertEqual(inflight.count, 0)
        self.assertTrue(inflight.wait(timeout=0))

    def test_finishing_is_logged_when_the_body_is_closed(self):
        resp = self.client.get("/slow/50ms")
        with self.assertLogs("slowupstream.app", "INFO") as logs:
            resp.get_data()
            resp.close()
        self.assertIn("finishing request", logs.output[-1])

    def test_sleep_only_mode_writes_nothing(self):
        client = create_app(SLOW_TICKING=False, SLOW_TICK_INTERVAL=TICK).test_client()
        start = time.monotonic()
        resp = client.get("/slow/300ms")
        self.assertEqual(resp.data, b"")
        self.assertEqual(resp.status_code, 200)
        self.assertGreaterEqual(time.monotonic() - start, 0.3)

    def test_tick_interval_must_be_positive(self):
        with self.assertRaises(ValueError):
            create_app(SLOW_TICK_INTERVAL=timedelta(0))


class TestStreamingOverTheWire(LiveServerCase):
    def test_ticks_are_streamed_before_completion(self):
        # stream=True ensures we read the chunked response incrementally
        start = time.monotonic()
        resp = requests.get(self.base_url + "/slow/1s", stream=True, timeout=5)
        self.assertEqual(resp.status_code, 200)

        arrivals = []
        for line in resp.iter_lines():
            arrivals.append(time.monotonic() - start)
            self.assertTrue(line.startswith(b"tick: "))

        self.assertEqual(len(arrivals), 10)
        self.assertLess(arrivals[0], 0.5)
        gaps = [b - a for a, b in zip(arrivals, arrivals[1:])]
        self.assertLess(max(gaps), 0.3)

    def test_malformed_duration_over_the_wire(self):
        resp = requests.get(self.base_url + "/slow/soon", timeout=2)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.content, b"")


if __name__ == "__main__":
    unittest.main()
