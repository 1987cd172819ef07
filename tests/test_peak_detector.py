import numpy as np
import pytest

from nr_receiver.peak_detector import PeakDetector


def flat(n: int = 400, level: float = 1.0) -> np.ndarray:
    return np.full((3, n), level)


# ============================================================
# OSNOVNA DETEKCIJA
# ============================================================

class TestPeakDetector:

    def setup_method(self):
        self.det = PeakDetector(window_len=64, threshold_shift=4, search_len=8, holdoff=137)

    def test_single_spike_gives_one_decision(self):
        e = flat()
        e[1, 150] = 100.0
        decisions = self.det.process(e)
        assert len(decisions) == 1
        d = decisions[0]
        assert d.sequence_index == 1
        assert d.peak_index == 150
        assert d.decided_at == 157
        assert d.energy == 100.0
        assert d.mean_energy == 1.0

    def test_spike_below_threshold_is_ignored(self):
        e = flat()
        e[0, 150] = 15.0
        assert self.det.process(e) == []

    def test_no_candidates_before_window_is_full(self):
        e = flat()
        e[2, 10] = 1000.0
        assert self.det.process(e) == []

    def test_search_window_picks_later_stronger_peak(self):
        e = flat()
        e[0, 150] = 20.0
        e[2, 153] = 80.0
        (d,) = self.det.process(e)
        assert (d.sequence_index, d.peak_index) == (2, 153)

    def test_peak_outside_search_window_is_not_seen(self):
        e = flat()
        e[0, 150] = 20.0
        e[2, 158] = 80.0
        (d,) = self.det.process(e)
        assert (d.sequence_index, d.peak_index) == (0, 150)

    def test_ties_go_to_earliest_sample_then_lowest_sequence(self):
        e = flat()
        e[2, 150] = 50.0
        e[1, 150] = 50.0
        e[0, 152] = 50.0
        (d,) = self.det.process(e)
        assert (d.sequence_index, d.peak_index) == (1, 150)

    # ==========================================================
    # HOLDOFF
    # ==========================================================
    def test_holdoff_rejects_second_peak(self):
        e = flat()
        e[0, 150] = 100.0
        e[0, 200] = 100.0
        e[0, 300] = 100.0
        decisions = self.det.process(e)
        assert [d.peak_index for d in decisions] == [150, 300]
        assert self.det.rejected == 1

    # ==========================================================
    # STREAMING
    # ==========================================================
    @pytest.mark.parametrize("cut", [100, 152, 157, 158, 399])
    def test_chunking_does_not_change_decisions(self, cut):
        e = flat()
        e[1, 150] = 100.0
        e[2, 320] = 300.0
        whole = PeakDetector().process(e)

        det = PeakDetector()
        parts = det.process(e[:, :cut]) + det.process(e[:, cut:])
        assert parts == whole
        assert len(whole) == 2

    def test_hits_required(self):
        det = PeakDetector(hits_required=2)
        e = flat()
        e[0, 150] = 100.0
        assert det.process(e) == []

        det.reset()
        e = flat()
        e[0, 150] = 50.0
        e[0, 151] = 60.0
        (d,) = det.process(e)
        assert d.peak_index == 151
        assert d.decided_at == 158

    def test_reset_restarts_warm_up(self):
        e = flat()
        e[1, 150] = 100.0
        self.det.process(e)
        self.det.reset()
        e = flat()
        e[1, 20] = 100.0
        assert self.det.process(e) == []

    # ==========================================================
    # VALIDACIJA
    # ==========================================================
    def test_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            self.det.process(np.zeros((2, 10)))

    def test_rejects_bad_parameters(self):
        with pytest.raises(ValueError):
            PeakDetector(search_len=0)
