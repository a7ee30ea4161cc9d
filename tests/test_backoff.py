import random
from datetime import UTC, datetime, timedelta

from labmatch.v1.infra.jobs.backoff import BackoffPolicy


class ZeroRandom(random.Random):
    def random(self):
        return 0.0


class MaxRandom(random.Random):
    def random(self):
        return 1.0


def test_delay_grows_exponentially_without_jitter():
    policy = BackoffPolicy(base_delay_ms=1000, max_delay_ms=30000)
    rng = ZeroRandom()

    assert policy.delay_ms(1, rng) == 1000
    assert policy.delay_ms(2, rng) == 2000
    assert policy.delay_ms(3, rng) == 4000


def test_delay_strictly_increases_for_early_attempts():
    policy = BackoffPolicy()

    # Worst case jitter on n still stays below the smallest delay for n + 1
    assert policy.delay_ms(1, MaxRandom()) < policy.delay_ms(2, ZeroRandom())
    assert policy.delay_ms(2, MaxRandom()) < policy.delay_ms(3, ZeroRandom())


def test_delay_is_capped_including_jitter():
    policy = BackoffPolicy(base_delay_ms=1000, max_delay_ms=30000)

    for attempt in range(1, 20):
        assert policy.delay_ms(attempt) <= 30000 * 1.25
    assert policy.delay_ms(10, ZeroRandom()) == 30000
    assert policy.delay_ms(10, MaxRandom()) == 37500


def test_zero_base_disables_backoff():
    policy = BackoffPolicy(base_delay_ms=0)

    assert not policy.enabled
    assert policy.delay_ms(3) == 0.0
    assert policy.retry_after(3) is None


def test_retry_after_is_in_the_future():
    policy = BackoffPolicy(base_delay_ms=1000)
    now = datetime(2026, 1, 1, tzinfo=UTC)

    retry_after = policy.retry_after(1, now=now)

    assert now + timedelta(milliseconds=1000) <= retry_after
    assert retry_after <= now + timedelta(milliseconds=1250)
