"""
pss_detector.py
===============

PSS detektor: decimacija na 1.92 MHz, banka korelatora, detektor vrha i
procjena CFO-a u jednom bloku.

Detektor radi nad nekorigovanim tokom na FFT sample rate-u i vraća
`DetectionEvent` objekte sa pozicijama izraženim u uzorcima FFT toka.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

from nr_receiver.cfo import CFOEstimator
from nr_receiver.config import PSS_LEN, ReceiverConfig
from nr_receiver.decimator import CICDecimator
from nr_receiver.models import CorrelationResult, DetectionEvent
from nr_receiver.peak_detector import PeakDetector
from nr_receiver.pss_correlator import MultiplierReuseScheduler, PSSCorrelatorBank

logger = logging.getLogger(__name__)


class PSSDetector:
    """
    PSSDetector vrši detekciju NR PSS-a u kontinuiranom toku.

    Modul obavlja:
    - decimaciju FFT toka na 1.92 MHz (CIC)
    - korelaciju sa sve tri PSS sekvence (N_ID_2 = 0, 1, 2)
    - detekciju vrha i izbor N_ID_2
    - procjenu CFO-a iz PSS prozora

    Primjer
    -------
    >>> detector = PSSDetector(ReceiverConfig(nfft=8))
    >>> events = detector.process(rx_chunk)
    >>> for ev in events:
    ...     print(ev.n_id_2, ev.sample_offset, ev.estimated_cfo_hz)

    Napomene
    --------
    - Pozicija vrha u decimiranom toku j odgovara kraju PSS simbola u FFT
      toku ``j * R + R - 1 - D`` (R faktor decimacije, D grupno kašnjenje CIC-a).
    - Tačna pozicija se dodatno traži na FFT rate-u u timing trackeru.
    """

    def __init__(self, config: ReceiverConfig) -> None:
        self.config = config
        self.decimation = config.pss_decimation
        self.cic = CICDecimator(self.decimation, config.cic_stages)
        self.scheduler = MultiplierReuseScheduler(config.mult_reuse, config.hold_depth, config.overflow_policy)
        self.correlator = PSSCorrelatorBank(config.in_width, config.tap_width, config.corr_width, self.scheduler)
        self.peak_detector = PeakDetector(
            window_len=config.window_len,
            threshold_shift=config.threshold_shift,
            hits_required=config.hits_required,
            search_len=config.search_len,
            holdoff=config.holdoff_samples,
        )
        self.cfo_estimator = CFOEstimator(config.pss_sample_rate_hz, self.correlator,
                                          mode=config.initial_cfo_mode, segments=config.fine_segments)
        self._keep = PSS_LEN + config.search_len + 1
        self.reset()

    def reset(self) -> None:
        self.cic.reset()
        self.correlator.reset()
        self.peak_detector.reset()
        self._history = np.zeros(0, dtype=np.complex128)
        self._history_start = 0
        self._fft_seen = 0
        self.detections = 0
        self.strongest: Optional[CorrelationResult] = None

    def to_fft_offset(self, detector_index: int) -> int:
        """Kraj PSS simbola u FFT toku za vrh u uzorku detektora `detector_index`."""
        r = self.decimation
        return int(detector_index) * r + r - 1 - self.cic.group_delay

    def _window(self, peak_index: int) -> np.ndarray:
        lo = peak_index - PSS_LEN + 1 - self._history_start
        if lo < 0:
            # vrh prije početka toka: nedostajući uzorci su nule
            pad = np.zeros(-lo, dtype=np.complex128)
            return np.concatenate((pad, self._history[:PSS_LEN + lo]))
        return self._history[lo:lo + PSS_LEN]

    def process(self, samples: np.ndarray, cycles: Optional[np.ndarray] = None) -> List[DetectionEvent]:
        """
        Obrađuje komad toka na FFT sample rate-u.

        Parameters
        ----------
        samples : np.ndarray
            Nekorigovani uzorci (cjelobrojni kompleksni).
        cycles : np.ndarray | None
            Takt svakog uzorka (iz ulaznog bloka).

        Returns
        -------
        list[DetectionEvent]
            Detekcije čija je odluka donesena u ovom komadu.
        """
        samples = np.asarray(samples, dtype=np.complex128)
        picks = self.cic.output_positions(samples.size)
        x = self.cic.process(samples)
        self._fft_seen += samples.size
        det_cycles = None if cycles is None else np.asarray(cycles, dtype=np.int64)[picks]

        block = self.correlator.process(x, det_cycles)
        if len(block):
            seq, col = np.unravel_index(int(np.argmax(block.energy)), block.energy.shape)
            self.strongest = block.result(int(seq), int(col))
            logger.debug("PSS korelator: najjača korelacija N_ID_2=%d na uzorku %d (energija %.3g)",
                         self.strongest.sequence_index, self.strongest.sample_offset, self.strongest.energy)
        if block.dropped.any():
            x = x.copy()
            x[block.dropped] = 0

        self._history = np.concatenate((self._history, x))

        events: List[DetectionEvent] = []
        for decision in self.peak_detector.process(block.energy):
            window = self._window(decision.peak_index)
            cfo = self.cfo_estimator.estimate(window, decision.sequence_index)
            cycle = None
            if block.cycles is not None:
                cycle = int(block.cycles[decision.decided_at - block.start_index])
            event = DetectionEvent(
                n_id_2=decision.sequence_index,
                sample_offset=self.to_fft_offset(decision.peak_index),
                available_at=(decision.decided_at + 1) * self.decimation,
                energy=decision.energy,
                cfo=cfo,
                detector_offset=decision.peak_index,
                cycle=cycle,
            )
            self.detections += 1
            logger.info("PSS detekcija: N_ID_2=%d, kraj PSS-a na uzorku %d, CFO %.1f Hz",
                        event.n_id_2, event.sample_offset, event.estimated_cfo_hz)
            events.append(event)
        if self._history.size > self._keep:
            cut = self._history.size - self._keep
            self._history = self._history[cut:]
            self._history_start += cut
        return events
