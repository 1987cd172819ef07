"""
cfo.py
======

Procjena i korekcija frekvencijskog ofseta nosioca (CFO).

Procjena
--------
Gruba procjena dolazi iz fazne razlike dvije polovine PSS korelacije u
vrhu. Ako je primljeni signal r[n] = s[n] exp(j 2 pi f n / fs), druga
polovina korelacije je zarotirana za 2 pi f (L/2) / fs u odnosu na prvu:

    f_coarse = angle(C2 * conj(C1)) * fs / (2 pi L/2)

Opseg jednoznačnosti je +-fs / L (+-15 kHz na 1.92 MHz).

Fina procjena (režim 1) derotira PSS prozor za grubu procjenu, dijeli ga
na `segments` segmenata i iz faznih priraštaja susjednih segmentnih
korelacija (ponderisanih njihovim amplitudama) računa ostatak.

Korekcija
---------
`CFOCorrector` je NCO sa cjelobrojnim faznim akumulatorom. Nova procjena
zamjenjuje inkrement akumulatora (ne sabira se sa starom), a faza ostaje
kontinuirana.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from nr_receiver.config import PSS_LEN
from nr_receiver.fixed_point import quantize_complex, truncate_shift
from nr_receiver.models import CfoEstimate
from nr_receiver.pss_correlator import HALF_LEN, PSSCorrelatorBank

logger = logging.getLogger(__name__)


class CFOEstimator:
    """
    Parametri
    ---------
    sample_rate_hz : float
        Sample rate PSS prozora (1.92 MHz).
    correlator : PSSCorrelatorBank
        Banka čiji se tapovi i skaliranje koriste za prozor.
    mode : int
        0 = samo gruba procjena, 1 = gruba + fina.
    segments : int
        Broj segmenata za finu procjenu (mora dijeliti 128).
    """

    def __init__(self, sample_rate_hz: float, correlator: PSSCorrelatorBank,
                 mode: int = 1, segments: int = 8) -> None:
        if mode not in (0, 1):
            raise ValueError("mode mora biti 0 ili 1.")
        if segments < 2 or PSS_LEN % segments:
            raise ValueError(f"segments mora biti >= 2 i dijeliti {PSS_LEN}.")
        self.sample_rate_hz = float(sample_rate_hz)
        self.correlator = correlator
        self.mode = mode
        self.segments = int(segments)

    @property
    def max_cfo_hz(self) -> float:
        return self.sample_rate_hz / PSS_LEN

    def coarse(self, c1: complex, c2: complex) -> float:
        return float(np.angle(c2 * np.conj(c1)) * self.sample_rate_hz / (2.0 * np.pi * HALF_LEN))

    def fine_residual(self, window: np.ndarray, n_id_2: int, coarse_hz: float) -> float:
        """
        Ostatak CFO-a nakon derotacije prozora za `coarse_hz`.
        """
        window = np.asarray(window, dtype=np.complex128)
        n = np.arange(window.size)
        derot = window * np.exp(-2j * np.pi * coarse_hz * n / self.sample_rate_hz)

        seg_len = PSS_LEN // self.segments
        taps = self.correlator.taps[n_id_2]
        z = (derot * np.conj(taps)).reshape(self.segments, seg_len).sum(axis=1)

        increments = z[1:] * np.conj(z[:-1])
        weights = np.abs(increments)
        if weights.sum() == 0.0:
            return 0.0
        step = np.sum(weights * np.angle(increments)) / weights.sum()
        return float(step * self.sample_rate_hz / (2.0 * np.pi * seg_len))

    def estimate(self, window: np.ndarray, n_id_2: int) -> CfoEstimate:
        """
        Procjena CFO-a iz PSS prozora (128 uzoraka koji završavaju u vrhu).

        Parameters
        ----------
        window : np.ndarray
            Ulazni uzorci korelatora koji čine PSS.
        n_id_2 : int
            Detektovana PSS sekvenca.

        Returns
        -------
        CfoEstimate
        """
        c1, c2 = self.correlator.correlate_window(window, n_id_2)
        coarse = self.coarse(c1, c2)
        fine: Optional[float] = None
        if self.mode == 1:
            fine = coarse + self.fine_residual(window, n_id_2, coarse)
        logger.debug("CFO: gruba %.1f Hz, fina %s", coarse,
                     "-" if fine is None else f"{fine:.1f} Hz")
        return CfoEstimate(coarse_hz=coarse, fine_hz=fine)


class CFOCorrector:
    """
    NCO za korekciju CFO-a na FFT sample rate-u.

    Parametri
    ---------
    sample_rate_hz : float
        Sample rate toka koji se korigira.
    phase_bits : int
        Širina faznog akumulatora.
    width : int
        Širina kvantizovanog rotora (po komponenti).

    Primjer
    -------
    >>> nco = CFOCorrector(3.84e6)
    >>> nco.set_frequency(1200.0)
    >>> y = nco.apply(np.full(16, 1000 + 0j))
    """

    def __init__(self, sample_rate_hz: float, phase_bits: int = 32, width: int = 16) -> None:
        if phase_bits <= 0 or phase_bits > 40:
            raise ValueError("phase_bits mora biti u opsegu 1..40.")
        self.sample_rate_hz = float(sample_rate_hz)
        self.phase_bits = int(phase_bits)
        self.width = int(width)
        self._mask = (1 << self.phase_bits) - 1
        self.reset()

    def reset(self) -> None:
        self._phase = 0
        self._increment = 0
        self.cfo_hz = 0.0

    @property
    def increment(self) -> int:
        return self._increment

    def set_frequency(self, cfo_hz: float) -> None:
        """
        Postavlja procijenjeni CFO; NCO rotira suprotnim smjerom.
        """
        self.cfo_hz = float(cfo_hz)
        inc = int(round(-self.cfo_hz / self.sample_rate_hz * (1 << self.phase_bits)))
        self._increment = inc & self._mask
        logger.debug("NCO: CFO %.1f Hz, inkrement 0x%x", self.cfo_hz, self._increment)

    def apply(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.complex128)
        if x.size == 0:
            return x.copy()
        if self._increment == 0 and self._phase == 0:
            return x.copy()

        steps = np.arange(x.size, dtype=np.int64)
        phase = (self._phase + steps * self._increment) & self._mask
        self._phase = int((self._phase + x.size * self._increment) & self._mask)

        angle = 2.0 * np.pi * phase.astype(np.float64) / float(1 << self.phase_bits)
        rot = quantize_complex(np.exp(1j * angle), self.width)
        return truncate_shift(x * rot, self.width - 1)
