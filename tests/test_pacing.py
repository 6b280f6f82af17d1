"""Tests for the daily quota and delay sampling."""

import random
import statistics

import pytest

from leadflow.pacing import QuotaController, sample_normal


def make_quota(store, limit=80, day="2026-03-01", seed=7):
    return QuotaController(
        store,
        daily_limit=limit,
        min_delay=3.0,
        max_delay=8.0,
        delay_stddev=1.5,
        rng=random.Random(seed),
        today=lambda: day,
    )


@pytest.mark.unit
class TestQuota:

    def test_fresh_day_can_acquire(self, memory_store):
        quota = make_quota(memory_store)
        assert quota.can_acquire()
        assert quota.remaining() == 80

    def test_limit_stops_acquisition(self, memory_store):
        quota = make_quota(memory_store, limit=3)
        for _ in range(3):
            assert quota.record_acquisition()
        assert not quota.can_acquire()
        assert quota.remaining() == 0

    def test_count_never_exceeds_limit(self, store):
        quota = make_quota(store, limit=2)
        counted = [quota.record_acquisition() for _ in range(5)]
        assert counted == [True, True, False, False, False]
        assert store.get_day_counters("2026-03-01")["acquired"] == 2

    def test_count_is_monotonic_within_a_day(self, memory_store):
        quota = make_quota(memory_store, limit=10)
        seen = []
        for _ in range(12):
            quota.record_acquisition()
            seen.append(quota.status()["acquired"])
        assert seen == sorted(seen)

    def test_new_day_starts_fresh_window(self, memory_store):
        day = {"value": "2026-03-01"}
        quota = QuotaController(
            memory_store, daily_limit=1, min_delay=3, max_delay=8, delay_stddev=1.5,
            today=lambda: day["value"],
        )
        quota.record_acquisition()
        assert not quota.can_acquire()

        day["value"] = "2026-03-02"
        assert quota.can_acquire()
        assert memory_store.get_day_counters("2026-03-01")["acquired"] == 1

    def test_errors_counted_separately(self, memory_store):
        quota = make_quota(memory_store, limit=1)
        quota.record_error()
        quota.record_error()
        status = quota.status()
        assert status["errors"] == 2
        assert status["acquired"] == 0
        assert status["can_acquire"]

    def test_budget_survives_restart(self, tmp_path):
        from leadflow.db import SQLiteRecordStore

        path = str(tmp_path / "quota.db")
        store = SQLiteRecordStore(path)
        store.init()
        make_quota(store, limit=2).record_acquisition()
        make_quota(store, limit=2).record_acquisition()

        reopened = SQLiteRecordStore(path)
        reopened.init()
        assert not make_quota(reopened, limit=2).can_acquire()

    def test_min_above_max_rejected(self, memory_store):
        with pytest.raises(ValueError):
            QuotaController(memory_store, daily_limit=1, min_delay=9, max_delay=8, delay_stddev=1)


@pytest.mark.unit
class TestDelays:

    def test_delays_stay_inside_envelope(self, memory_store):
        quota = make_quota(memory_store, seed=12345)
        delays = [quota.next_delay() for _ in range(10000)]
        assert min(delays) >= 3.0
        assert max(delays) <= 8.0

    def test_delays_centre_on_midpoint(self, memory_store):
        quota = make_quota(memory_store, seed=99)
        delays = [quota.next_delay() for _ in range(5000)]
        assert statistics.mean(delays) == pytest.approx(5.5, abs=0.15)

    def test_sample_normal_rerolls_zero(self):
        class ZeroFirst(random.Random):
            def __init__(self):
                super().__init__(1)
                self.draws = [0.0, 0.5, 0.0, 0.25]

            def random(self):
                if self.draws:
                    return self.draws.pop(0)
                return super().random()

        rng = ZeroFirst()
        value = sample_normal(10.0, 2.0, rng)
        # u1=0.5, u2=0.25 -> cos(pi/2) == 0
        assert value == pytest.approx(10.0)
        assert rng.draws == []
