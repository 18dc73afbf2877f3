from __future__ import annotations

import unittest

from intent_solver.intents.backoff import CACHE_BACKOFF, DAEMON_BACKOFF, BackoffPolicy


class BackoffPolicyTests(unittest.TestCase):
    def test_defaults_match_daemon_constants(self) -> None:
        self.assertEqual(DAEMON_BACKOFF.initial_delay, 1.0)
        self.assertEqual(DAEMON_BACKOFF.max_delay, 60.0)
        self.assertEqual(DAEMON_BACKOFF.factor, 2.0)
        self.assertEqual(DAEMON_BACKOFF.max_attempts, 5)
        self.assertEqual(CACHE_BACKOFF.max_delay, 30.0)
        self.assertEqual(CACHE_BACKOFF.jitter, 0.0)

    def test_delay_is_bounded_by_cap_plus_jitter(self) -> None:
        policy = BackoffPolicy()
        for attempts in range(0, 64):
            self.assertLessEqual(policy.delay(attempts, rng=lambda: 0.999999), policy.max_delay + policy.jitter)
            self.assertGreaterEqual(policy.delay(attempts, rng=lambda: 0.0), policy.initial_delay)

    def test_base_delay_is_non_decreasing_and_capped(self) -> None:
        policy = BackoffPolicy()
        delays = [policy.base_delay(attempts) for attempts in range(12)]
        self.assertEqual(delays[:4], [1.0, 2.0, 4.0, 8.0])
        self.assertEqual(delays, sorted(delays))
        self.assertEqual(delays[-1], 60.0)

    def test_huge_attempt_counts_do_not_overflow(self) -> None:
        policy = BackoffPolicy(jitter=0.0)
        self.assertEqual(policy.delay(10_000), 60.0)

    def test_jitter_is_drawn_from_the_window(self) -> None:
        policy = BackoffPolicy(jitter=1.0)
        self.assertAlmostEqual(policy.delay(2, rng=lambda: 0.5), 4.5)

    def test_next_retry_at_adds_delay_to_now(self) -> None:
        policy = BackoffPolicy(jitter=0.0)
        self.assertEqual(policy.next_retry_at(100.0, 3), 108.0)
        self.assertTrue(policy.exhausted(5))
        self.assertFalse(policy.exhausted(4))


if __name__ == "__main__":
    unittest.main()
