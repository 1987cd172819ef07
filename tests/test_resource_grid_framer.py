import numpy as np
import pytest

from nr_receiver.errors import FramingError, TimingMisalignmentError
from nr_receiver.fixed_point import BlockFloat
from nr_receiver.models import OFDMSymbol
from nr_receiver.resource_grid_framer import BWPConfig, ResourceGridFramer, TimingMonitor, parse_frame


def symbol(fft_len=256, exponent=-3, timestamp=0x123456789A, symbol_in_slot=5):
    rng = np.random.default_rng(0)
    mant = rng.integers(-30000, 30000, fft_len) + 1j * rng.integers(-30000, 30000, fft_len)
    return OFDMSymbol(subcarriers=BlockFloat(mantissa=mant, exponent=exponent), timestamp=timestamp,
                      symbol_in_slot=symbol_in_slot)


# ============================================================
# BWP I OKVIR
# ============================================================

class TestResourceGridFramer:

    def setup_method(self):
        self.framer = ResourceGridFramer(BWPConfig(fft_len=256, n_prb=20))

    def test_extracts_centered_bwp(self):
        sym = symbol()
        payload = self.framer.extract(sym)
        assert payload.size == 240
        np.testing.assert_array_equal(payload, sym.subcarriers.mantissa[8:248])

    def test_frame_words_and_tlast(self):
        words, tlast = self.framer.to_words(self.framer.frame(symbol()))
        assert words.size == 245
        assert tlast[-1] and not tlast[:-1].any()
        assert words[0] == (5 << 8) | 0xFD
        # vremenska oznaka, 16 bita po riječi, LSB prvo
        assert list(words[1:5]) == [0x789A, 0x3456, 0x0012, 0x0000]

    def test_parse_frame_restores_fields(self):
        sym = symbol()
        frame = self.framer.frame(sym)
        words, _ = self.framer.to_words(frame)
        parsed = parse_frame(words, n_prb=20)
        assert parsed.symbol_in_slot == 5
        assert parsed.exponent == -3
        assert parsed.timestamp == 0x123456789A
        np.testing.assert_array_equal(parsed.payload, frame.payload)

    @pytest.mark.parametrize("cut", [1, 10, 244])
    def test_truncated_frame_raises(self, cut):
        words, _ = self.framer.to_words(self.framer.frame(symbol()))
        with pytest.raises(FramingError):
            parse_frame(words[:-cut], n_prb=20)

    def test_framing_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_frame([0] * 10, n_prb=20)

    def test_wrong_symbol_size(self):
        with pytest.raises(ValueError):
            self.framer.extract(symbol(fft_len=512))

    def test_nfft_9_default_bwp(self):
        framer = ResourceGridFramer(BWPConfig(fft_len=512, n_prb=25))
        assert framer.cfg.frame_words == 5 + 300
        assert framer.cfg.first_subcarrier == 106

    def test_bwp_larger_than_fft(self):
        with pytest.raises(ValueError):
            BWPConfig(fft_len=256, n_prb=22)


# ============================================================
# MONITOR VREMENSKIH OZNAKA
# ============================================================

class TestTimingMonitor:

    def test_allowed_deltas(self):
        mon = TimingMonitor((274, 276))
        assert all(mon.check(t) for t in (100, 374, 650, 924))
        assert mon.deviations == 0

    def test_deviation_is_logged_and_counted(self, caplog):
        mon = TimingMonitor((274, 276))
        mon.check(100)
        with caplog.at_level("WARNING"):
            assert not mon.check(380)
        assert mon.deviations == 1
        assert "380" in caplog.text

    def test_exact_timing_raises(self):
        mon = TimingMonitor((274, 276), expect_exact_timing=True)
        mon.check(0)
        with pytest.raises(TimingMisalignmentError):
            mon.check(275)

    def test_reset_forgets_last_timestamp(self):
        mon = TimingMonitor((274, 276), expect_exact_timing=True)
        mon.check(0)
        mon.reset()
        assert mon.check(99999)
