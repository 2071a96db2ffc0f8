import unittest

from recordgate.rate_limit import RateLimiter

from fakes import FakeClock


class TestRateLimiter(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock(1000)
        self.limiter = RateLimiter(rpm=3, window_seconds=60, clock=self.clock)

    def test_limit_per_key(self):
        for _ in range(3):
            self.assertTrue(self.limiter.allow("a"))
        result = self.limiter.check("a")
        self.assertFalse(result.allowed)
        self.assertEqual(result.retry_after, 60)
        self.assertTrue(self.limiter.allow("b"))

    def test_window_slides(self):
        for _ in range(3):
            self.limiter.allow("a")
        self.clock.advance(61)
        self.assertTrue(self.limiter.allow("a"))

    def test_remaining(self):
        self.assertEqual(self.limiter.check("a").remaining, 2)
        self.assertEqual(self.limiter.check("a").remaining, 1)

    def test_reset(self):
        for _ in range(3):
            self.limiter.allow("a")
        self.limiter.reset("a")
        self.assertTrue(self.limiter.allow("a"))

    def test_cleanup_expired(self):
        self.limiter.allow("a")
        self.limiter.allow("b")
        self.clock.advance(61)
        self.assertEqual(self.limiter.cleanup_expired(), 2)


if __name__ == "__main__":
    unittest.main(verbosity=2)
