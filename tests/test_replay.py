"""
Replay protection tests.

A (sender, payload_hash, inception_time) tuple is admitted at most once,
and only while its inception time is within the freshness window.
"""

import threading
import unittest

from recordgate.errors import Reason, ReplayError
from recordgate.hashing import payload_hash
from recordgate.replay import InMemoryReplayStore, ReplayGuard, SqliteReplayStore

from fakes import NOW, OWNER, FakeClock


class TestReplayGuard(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock(NOW)
        self.store = InMemoryReplayStore()
        self.guard = ReplayGuard(window_seconds=300, store=self.store, clock=self.clock)
        self.hash = payload_hash(b"hello")

    def test_fresh_request_admitted(self):
        admission = self.guard.admit(OWNER, self.hash, NOW)
        self.assertEqual(admission.sender, OWNER.lower())
        self.assertEqual(admission.expires_at, NOW + 300)

    def test_second_admission_is_duplicate(self):
        self.guard.admit(OWNER, self.hash, NOW)
        with self.assertRaises(ReplayError) as ctx:
            self.guard.admit(OWNER, self.hash, NOW)
        self.assertEqual(ctx.exception.reason, Reason.DUPLICATE)

    def test_sender_case_does_not_evade_duplicate(self):
        self.guard.admit(OWNER, self.hash, NOW)
        with self.assertRaises(ReplayError) as ctx:
            self.guard.admit(OWNER.lower(), self.hash, NOW)
        self.assertEqual(ctx.exception.reason, Reason.DUPLICATE)

    def test_different_tuple_admitted(self):
        self.guard.admit(OWNER, self.hash, NOW)
        self.guard.admit(OWNER, self.hash, NOW - 1)
        self.guard.admit(OWNER, payload_hash(b"other"), NOW)

    def test_window_boundaries(self):
        self.guard.admit(OWNER, self.hash, NOW - 300)
        self.guard.admit(OWNER, self.hash, NOW + 300)
        for inception in (NOW - 301, NOW + 301):
            with self.assertRaises(ReplayError) as ctx:
                self.guard.admit(OWNER, self.hash, inception)
            self.assertEqual(ctx.exception.reason, Reason.STALE)

    def test_stale_request_is_not_recorded(self):
        with self.assertRaises(ReplayError):
            self.guard.admit(OWNER, self.hash, NOW - 1000)
        self.assertEqual(len(self.store), 0)

    def test_expired_tuple_becomes_stale_not_duplicate(self):
        self.guard.admit(OWNER, self.hash, NOW)
        self.clock.advance(301)
        with self.assertRaises(ReplayError) as ctx:
            self.guard.admit(OWNER, self.hash, NOW)
        self.assertEqual(ctx.exception.reason, Reason.STALE)

    def test_cleanup_drops_expired(self):
        self.guard.admit(OWNER, self.hash, NOW)
        self.guard.admit(OWNER, self.hash, NOW + 200)
        self.clock.advance(350)
        self.assertEqual(self.guard.cleanup(), 1)
        self.assertEqual(len(self.store), 1)

    def test_guard_keeps_given_store(self):
        self.assertIs(self.guard.store, self.store)
        self.guard.admit(OWNER, self.hash, NOW)
        self.assertEqual(len(self.store), 1)

    def test_admit_evicts_expired_tuples(self):
        for i in range(5):
            self.guard.admit(OWNER, self.hash, NOW - i)
        self.assertEqual(len(self.guard.store), 5)
        self.clock.advance(301)
        self.guard.admit(OWNER, self.hash, NOW + 301)
        self.assertEqual(len(self.guard.store), 1)

    def test_racing_duplicates_admit_once(self):
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(16)

        def attempt():
            barrier.wait()
            try:
                self.guard.admit(OWNER, self.hash, NOW)
                outcome = "admitted"
            except ReplayError as e:
                outcome = e.reason
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count("admitted"), 1)
        self.assertEqual(results.count(Reason.DUPLICATE), 15)

    def test_non_positive_window_rejected(self):
        with self.assertRaises(ValueError):
            ReplayGuard(window_seconds=0)


class TestSqliteReplayStore(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock(NOW)
        self.guard = ReplayGuard(window_seconds=300, store=SqliteReplayStore(), clock=self.clock)
        self.hash = payload_hash(b"hello")

    def test_duplicate_detected(self):
        self.guard.admit(OWNER, self.hash, NOW)
        with self.assertRaises(ReplayError) as ctx:
            self.guard.admit(OWNER, self.hash, NOW)
        self.assertEqual(ctx.exception.reason, Reason.DUPLICATE)

    def test_cleanup_removes_expired(self):
        self.guard.admit(OWNER, self.hash, NOW)
        self.clock.advance(400)
        self.assertEqual(self.guard.cleanup(), 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
