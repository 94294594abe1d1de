"""Tests for the BackoffController."""

from __future__ import annotations

import random

import pytest

from console_pilot.core.backoff import EXHAUSTED, BackoffConfig, BackoffController


class FixedRandom(random.Random):
    """Random source that always returns the same value."""

    def __init__(self, value: float) -> None:
        super().__init__()
        self._value = value

    def random(self) -> float:
        return self._value


class TestBackoffConfig:
    """Tests for BackoffConfig validation."""

    def test_defaults(self) -> None:
        config = BackoffConfig()
        assert config.initial_delay_ms == 3000
        assert config.max_delay_ms == 15000
        assert config.exhausted_max_delay_ms == 60000
        assert config.max_retries == 3

    def test_rejects_max_below_initial(self) -> None:
        with pytest.raises(ValueError):
            BackoffConfig(initial_delay_ms=5000, max_delay_ms=1000)

    def test_rejects_jitter_above_base(self) -> None:
        with pytest.raises(ValueError):
            BackoffConfig(retry_base_ms=100, retry_jitter_ms=200)

    def test_rejects_shrinking_multiplier(self) -> None:
        with pytest.raises(ValueError):
            BackoffConfig(rate_limit_multiplier=0.5)

    def test_rejects_bad_decay(self) -> None:
        with pytest.raises(ValueError):
            BackoffConfig(success_decay=0.0)


class TestBackoffController:
    """Tests for delay growth, decay and exhaustion."""

    def test_initial_delay(self) -> None:
        backoff = BackoffController()
        assert backoff.next_delay() == 3000
        state = backoff.state
        assert state.consecutive_failures == 0
        assert state.retry_attempt == 0

    def test_rate_limit_grows_persistent_delay(self) -> None:
        backoff = BackoffController(rng=FixedRandom(0.0))
        backoff.on_rate_limited()
        assert backoff.next_delay() == 4500
        backoff.on_rate_limited()
        assert backoff.next_delay() == 6750

    def test_persistent_delay_capped_by_max(self) -> None:
        config = BackoffConfig(initial_delay_ms=10000, max_delay_ms=12000, max_retries=5)
        backoff = BackoffController(config, rng=FixedRandom(0.0))
        backoff.on_rate_limited()
        backoff.on_rate_limited()
        assert backoff.next_delay() == 12000

    def test_retry_delays_strictly_increase(self) -> None:
        backoff = BackoffController(rng=FixedRandom(0.999))
        delays = [backoff.on_rate_limited() for _ in range(3)]
        assert delays == [1499, 2499, 4499]
        assert delays[0] < delays[1] < delays[2]

    def test_retry_delay_without_jitter(self) -> None:
        config = BackoffConfig(retry_jitter_ms=0)
        backoff = BackoffController(config)
        assert backoff.on_rate_limited() == 1000
        assert backoff.on_rate_limited() == 2000

    def test_exhaustion_after_max_retries(self) -> None:
        backoff = BackoffController(rng=FixedRandom(0.0))
        for _ in range(3):
            assert backoff.on_rate_limited() is not EXHAUSTED
        before = backoff.next_delay()
        assert backoff.on_rate_limited() is EXHAUSTED
        assert before == 10125
        assert backoff.next_delay() == 30375
        assert backoff.next_delay() >= 3 * BackoffConfig().initial_delay_ms

    def test_exhaustion_delay_capped(self) -> None:
        config = BackoffConfig(max_retries=0, exhausted_max_delay_ms=20000)
        backoff = BackoffController(config)
        assert backoff.on_rate_limited() is EXHAUSTED
        assert backoff.next_delay() == 9000
        assert backoff.on_rate_limited() is EXHAUSTED
        assert backoff.next_delay() == 20000

    def test_exhaustion_starts_a_new_burst(self) -> None:
        backoff = BackoffController(rng=FixedRandom(0.0))
        for _ in range(4):
            backoff.on_rate_limited()
        assert backoff.state.retry_attempt == 0
        assert backoff.on_rate_limited() == 1000

    def test_rate_limit_never_lowers_delay(self) -> None:
        backoff = BackoffController(rng=FixedRandom(0.0))
        for _ in range(4):
            backoff.on_rate_limited()
        raised = backoff.next_delay()
        assert raised > backoff.config.max_delay_ms
        backoff.on_rate_limited()
        assert backoff.next_delay() == raised

    def test_success_decays_toward_floor(self) -> None:
        backoff = BackoffController(rng=FixedRandom(0.0))
        backoff.on_rate_limited()
        backoff.on_rate_limited()
        assert backoff.next_delay() == 6750
        backoff.on_success()
        assert backoff.next_delay() == 6075
        for _ in range(50):
            backoff.on_success()
        assert backoff.next_delay() == 3000

    def test_success_clears_counters(self) -> None:
        backoff = BackoffController()
        backoff.on_rate_limited(vision=True)
        backoff.on_rate_limited(vision=True)
        assert backoff.state.consecutive_vision_failures == 2
        backoff.on_success()
        state = backoff.state
        assert state.consecutive_failures == 0
        assert state.consecutive_vision_failures == 0
        assert state.retry_attempt == 0

    def test_vision_degraded_threshold(self) -> None:
        backoff = BackoffController()
        backoff.on_rate_limited(vision=True)
        backoff.on_rate_limited(vision=True)
        assert backoff.vision_degraded(2) is False
        backoff.on_rate_limited(vision=True)
        assert backoff.vision_degraded(2) is True

    def test_text_failures_do_not_count_as_vision(self) -> None:
        backoff = BackoffController()
        backoff.on_rate_limited(vision=False)
        assert backoff.state.consecutive_failures == 1
        assert backoff.state.consecutive_vision_failures == 0

    def test_reset(self) -> None:
        backoff = BackoffController()
        backoff.on_rate_limited()
        backoff.reset()
        assert backoff.next_delay() == 3000
        assert backoff.state.consecutive_failures == 0
