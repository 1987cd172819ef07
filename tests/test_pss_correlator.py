import numpy as np
import pytest

from nr_receiver.errors import FifoOverflowError
from nr_receiver.pss_correlator import (
    HALF_LEN,
    MultiplierReuseScheduler,
    PSSCorrelatorBank,
    pss_taps,
)
from nr_receiver.sequences import PSSGenerator


def pss_at_192(n_id_2: int, amp: float = 8000.0) -> np.ndarray:
    t = PSSGenerator.time_domain(n_id_2, 128)
    t = t / np.max(np.abs(t)) * amp
    return np.round(t.real) + 1j * np.round(t.imag)


def noise(n: int, amp: float = 200.0, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return np.round(amp * rng.standard_normal(n)) + 1j * np.round(amp * rng.standard_normal(n))


# ============================================================
# TAPOVI
# ============================================================

def test_taps_use_full_range():
    t = pss_taps(0, 16)
    peak = max(np.max(np.abs(t.real)), np.max(np.abs(t.imag)))
    assert peak == 32767
    assert t.shape == (128,)


# ============================================================
# KORELATOR
# ============================================================

class TestPSSCorrelatorBank:

    def test_peak_at_last_pss_sample_with_correct_sequence(self):
        bank = PSSCorrelatorBank()
        x = np.concatenate((noise(300), pss_at_192(2), noise(200, seed=1)))
        x[300:428] += noise(128, seed=2)
        block = bank.process(x)
        seq, col = np.unravel_index(np.argmax(block.energy), block.energy.shape)
        assert seq == 2
        assert col == 300 + 127

    def test_halves_sum_to_full(self):
        bank = PSSCorrelatorBank()
        block = bank.process(noise(500))
        np.testing.assert_array_equal(block.c1 + block.c2, block.full)
        np.testing.assert_array_equal(block.energy, block.full.real ** 2 + block.full.imag ** 2)

    def test_streaming_matches_single_call(self):
        x = noise(1000, seed=3)
        whole = PSSCorrelatorBank().process(x)

        bank = PSSCorrelatorBank()
        a = bank.process(x[:333])
        b = bank.process(x[333:])
        np.testing.assert_array_equal(np.concatenate((a.energy, b.energy), axis=1), whole.energy)
        assert b.start_index == 333

    def test_correlate_window_matches_process(self):
        bank = PSSCorrelatorBank()
        x = noise(256, seed=4)
        block = bank.process(x)
        c1, c2 = bank.correlate_window(x[-128:], 1)
        assert c1 == block.c1[1, -1]
        assert c2 == block.c2[1, -1]

    def test_correlate_window_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            PSSCorrelatorBank().correlate_window(np.zeros(HALF_LEN), 0)

    def test_output_is_truncated_to_corr_width(self):
        bank = PSSCorrelatorBank(in_width=16, tap_width=16, corr_width=24)
        x = np.full(300, 32767 - 32767j)
        block = bank.process(x)
        lim = 2 ** 23
        assert np.max(np.abs(block.full.real)) < lim
        assert np.max(np.abs(block.full.imag)) < lim

    def test_result_accessor(self):
        bank = PSSCorrelatorBank()
        block = bank.process(noise(200))
        r = block.result(0, 150)
        assert r.sample_offset == 150
        assert r.energy == block.energy[0, 150]


# ============================================================
# MULTIPLIER REUSE
# ============================================================

class TestMultiplierReuseScheduler:

    def test_full_parallel_finishes_next_clock(self):
        s = MultiplierReuseScheduler(mult_reuse=0)
        done, dropped = s.schedule(np.array([0, 1, 2]))
        np.testing.assert_array_equal(done, [1, 2, 3])
        assert not dropped.any()

    @pytest.mark.parametrize("mult_reuse", [2, 4])
    def test_no_backlog_when_arrivals_are_slow_enough(self, mult_reuse):
        s = MultiplierReuseScheduler(mult_reuse=mult_reuse)
        arrivals = np.arange(0, 40, mult_reuse)
        done, dropped = s.schedule(arrivals)
        np.testing.assert_array_equal(done, arrivals + mult_reuse)
        assert s.max_waiting == 0
        assert not dropped.any()

    def test_hold_overflow_raises(self):
        s = MultiplierReuseScheduler(mult_reuse=4, hold_depth=1, policy="hold")
        with pytest.raises(FifoOverflowError):
            s.schedule(np.arange(10))

    def test_hold_depth_absorbs_short_burst(self):
        s = MultiplierReuseScheduler(mult_reuse=3, hold_depth=2, policy="hold")
        done, _ = s.schedule(np.array([0, 1, 2, 20]))
        np.testing.assert_array_equal(done, [3, 6, 9, 23])
        assert s.max_waiting == 2

    def test_drop_policy_marks_samples(self):
        s = MultiplierReuseScheduler(mult_reuse=4, hold_depth=1, policy="drop")
        _, dropped = s.schedule(np.arange(12))
        assert dropped.any()
        assert s.dropped == int(dropped.sum())

    def test_dropped_samples_enter_correlator_as_zero(self):
        s = MultiplierReuseScheduler(mult_reuse=4, hold_depth=1, policy="drop")
        bank = PSSCorrelatorBank(scheduler=s)
        x = noise(64)
        block = bank.process(x, cycles=np.arange(64))
        assert block.dropped.any()

        ref = PSSCorrelatorBank()
        y = x.copy()
        y[block.dropped] = 0
        np.testing.assert_array_equal(ref.process(y).energy, block.energy)

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            MultiplierReuseScheduler(policy="block")
