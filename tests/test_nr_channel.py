import numpy as np
import pytest

from nr_channel.awgn_channel import AWGNChannel
from nr_channel.frequency_offset import FrequencyOffset
from nr_channel.quantizer import quantize_waveform
from nr_receiver.cfo import CFOEstimator
from nr_receiver.pss_correlator import PSSCorrelatorBank
from nr_receiver.sequences import PSSGenerator


# -----------------------------
# Helperi
# -----------------------------
def _measured_snr_db(x: np.ndarray, y: np.ndarray) -> float:
    noise = y - x
    return 10.0 * np.log10(np.mean(np.abs(x) ** 2) / np.mean(np.abs(noise) ** 2))


def _tone(n: int = 4096) -> np.ndarray:
    return np.exp(2j * np.pi * 0.01 * np.arange(n))


# =============================
# AWGN
# =============================
@pytest.mark.parametrize("snr_db", [0.0, 10.0, 30.0])
def test_awgn_snr_is_close_to_target(snr_db):
    x = _tone(20000)
    y = AWGNChannel(snr_db, seed=1).apply(x)
    assert _measured_snr_db(x, y) == pytest.approx(snr_db, abs=0.3)


def test_awgn_explicit_signal_power():
    # isprekidan signal: snaga se zadaje, ne procjenjuje
    x = np.zeros(20000, dtype=np.complex128)
    x[:100] = 1.0
    y = AWGNChannel(20.0, seed=2).apply(x, signal_power=1.0)
    assert np.var(y[100:]) == pytest.approx(0.01, rel=0.1)


def test_awgn_seed_is_reproducible():
    x = _tone(100)
    np.testing.assert_array_equal(AWGNChannel(5.0, seed=3).apply(x), AWGNChannel(5.0, seed=3).apply(x))


@pytest.mark.parametrize("bad", [np.nan, np.inf])
def test_awgn_rejects_non_finite_snr(bad):
    with pytest.raises(ValueError):
        AWGNChannel(bad)


def test_awgn_rejects_real_and_silent_input():
    ch = AWGNChannel(10.0, seed=0)
    with pytest.raises(ValueError):
        ch.apply(np.ones(10))
    with pytest.raises(ValueError):
        ch.apply(np.zeros(10, dtype=np.complex128))


# =============================
# FREKVENCIJSKI OFSET
# =============================
def test_frequency_offset_rotates_by_expected_phase():
    fo = FrequencyOffset(1000.0, 3.84e6)
    y = fo.apply(np.ones(3840, dtype=np.complex128))
    step = np.angle(y[1:] * np.conj(y[:-1]))
    np.testing.assert_allclose(step, 2 * np.pi * 1000.0 / 3.84e6, atol=1e-12)


def test_frequency_offset_is_continuous_across_chunks():
    x = _tone(1000)
    whole = FrequencyOffset(750.0, 3.84e6, initial_phase_rad=0.3).apply(x)
    fo = FrequencyOffset(750.0, 3.84e6, initial_phase_rad=0.3)
    parts = np.concatenate((fo.apply(x[:321]), fo.apply(x[321:])))
    np.testing.assert_allclose(parts, whole, atol=1e-12)

    fo.reset()
    np.testing.assert_allclose(fo.apply(x), whole, atol=1e-12)


@pytest.mark.parametrize("cfo_hz", [-11000.0, 9000.0])
def test_offset_beyond_half_subcarrier_is_not_aliased(cfo_hz):
    # PSS na 1.92 MHz: gruba procjena pokriva ±15 kHz, ne samo ±7.5 kHz
    fs = 1.92e6
    t = PSSGenerator.time_domain(1, 128)
    t = t / np.max(np.abs(t)) * 8000.0
    x = FrequencyOffset(cfo_hz, fs).apply(t.astype(np.complex128))
    x = np.round(x.real) + 1j * np.round(x.imag)

    estimator = CFOEstimator(fs, PSSCorrelatorBank(), mode=0)
    assert abs(cfo_hz) < estimator.max_cfo_hz
    assert estimator.estimate(x, 1).coarse_hz == pytest.approx(cfo_hz, abs=0.25 * abs(cfo_hz))


@pytest.mark.parametrize("bad", [np.ones(4), np.array(1 + 1j)])
def test_frequency_offset_rejects_bad_input(bad):
    with pytest.raises(ValueError):
        FrequencyOffset(100.0, 1e6).apply(bad)


def test_frequency_offset_rejects_bad_rate():
    with pytest.raises(ValueError):
        FrequencyOffset(100.0, 0.0)


# =============================
# KVANTIZACIJA
# =============================
def test_quantize_uses_peak_fraction():
    y = quantize_waveform(np.array([0.5 - 1.0j, 0.25 + 0.1j]), width=16, peak_fraction=0.5)
    assert np.max(np.abs(y.imag)) == round(0.5 * 32767)
    np.testing.assert_array_equal(y, np.round(y.real) + 1j * np.round(y.imag))


def test_quantize_zero_input():
    np.testing.assert_array_equal(quantize_waveform(np.zeros(5, dtype=np.complex128)), np.zeros(5))


@pytest.mark.parametrize("fraction", [0.0, 1.5])
def test_quantize_rejects_bad_fraction(fraction):
    with pytest.raises(ValueError):
        quantize_waveform(_tone(10), peak_fraction=fraction)
