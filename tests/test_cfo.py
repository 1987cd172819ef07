import numpy as np
import pytest

from nr_receiver.cfo import CFOCorrector, CFOEstimator
from nr_receiver.pss_correlator import PSSCorrelatorBank
from nr_receiver.sequences import PSSGenerator

FS_PSS = 1.92e6
FS_FFT = 3.84e6


def pss_window(n_id_2: int, cfo_hz: float, amp: float = 8000.0) -> np.ndarray:
    t = PSSGenerator.time_domain(n_id_2, 128)
    t = t / np.max(np.abs(t)) * amp
    t = t * np.exp(2j * np.pi * cfo_hz * np.arange(128) / FS_PSS)
    return np.round(t.real) + 1j * np.round(t.imag)


# ============================================================
# PROCJENA
# ============================================================

class TestCFOEstimator:

    def setup_method(self):
        self.bank = PSSCorrelatorBank()

    def test_max_cfo_is_one_subcarrier(self):
        assert CFOEstimator(FS_PSS, self.bank).max_cfo_hz == 15000.0

    def test_zero_cfo(self):
        est = CFOEstimator(FS_PSS, self.bank).estimate(pss_window(0, 0.0), 0)
        assert abs(est.coarse_hz) < 20.0
        assert abs(est.fine_hz) < 20.0

    @pytest.mark.parametrize("cfo_hz", [-4000.0, -1200.0, 700.0, 2500.0])
    def test_coarse_and_fine(self, cfo_hz):
        est = CFOEstimator(FS_PSS, self.bank).estimate(pss_window(1, cfo_hz), 1)
        assert est.coarse_hz == pytest.approx(cfo_hz, abs=0.2 * abs(cfo_hz))
        assert est.fine_hz == pytest.approx(cfo_hz, abs=0.05 * abs(cfo_hz) + 20.0)
        assert est.cfo_hz == est.fine_hz

    def test_coarse_only_mode(self):
        est = CFOEstimator(FS_PSS, self.bank, mode=0).estimate(pss_window(2, 1500.0), 2)
        assert est.fine_hz is None
        assert est.cfo_hz == est.coarse_hz

    def test_coarse_from_half_correlations(self):
        cfo = CFOEstimator(FS_PSS, self.bank)
        # rotacija od pi/4 između polovina
        c2 = np.exp(1j * np.pi / 4)
        assert cfo.coarse(1.0 + 0j, c2) == pytest.approx(FS_PSS / 8 / 64)

    @pytest.mark.parametrize("kwargs", [{"mode": 2}, {"segments": 1}, {"segments": 3}])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            CFOEstimator(FS_PSS, self.bank, **kwargs)


# ============================================================
# NCO
# ============================================================

class TestCFOCorrector:

    def test_zero_frequency_is_passthrough(self):
        x = np.arange(10) + 1j * np.arange(10)
        np.testing.assert_array_equal(CFOCorrector(FS_FFT).apply(x), x)

    def test_removes_tone(self):
        f = 1200.0
        n = np.arange(2000)
        x = np.round(10000 * np.exp(2j * np.pi * f * n / FS_FFT))
        nco = CFOCorrector(FS_FFT)
        nco.set_frequency(f)
        y = nco.apply(x)
        assert np.max(np.abs(np.angle(y))) < 0.01

    def test_new_estimate_replaces_increment(self):
        nco = CFOCorrector(FS_FFT)
        nco.set_frequency(1200.0)
        nco.set_frequency(500.0)

        ref = CFOCorrector(FS_FFT)
        ref.set_frequency(500.0)
        assert nco.increment == ref.increment
        assert nco.cfo_hz == 500.0

    def test_increment_rotates_against_offset(self):
        nco = CFOCorrector(FS_FFT, phase_bits=32)
        nco.set_frequency(1200.0)
        expected = (-round(1200.0 / FS_FFT * 2 ** 32)) & (2 ** 32 - 1)
        assert nco.increment == expected

    def test_phase_is_continuous_across_chunks(self):
        x = np.full(1000, 5000 + 0j)
        whole = CFOCorrector(FS_FFT)
        whole.set_frequency(3000.0)
        y = whole.apply(x)

        nco = CFOCorrector(FS_FFT)
        nco.set_frequency(3000.0)
        parts = np.concatenate((nco.apply(x[:137]), nco.apply(x[137:])))
        np.testing.assert_array_equal(parts, y)

    def test_reset(self):
        nco = CFOCorrector(FS_FFT)
        nco.set_frequency(1000.0)
        nco.apply(np.ones(10, dtype=np.complex128))
        nco.reset()
        assert nco.increment == 0
        assert nco.cfo_hz == 0.0
        x = np.ones(4, dtype=np.complex128)
        np.testing.assert_array_equal(nco.apply(x), x)

    def test_invalid_phase_bits(self):
        with pytest.raises(ValueError):
            CFOCorrector(FS_FFT, phase_bits=0)
