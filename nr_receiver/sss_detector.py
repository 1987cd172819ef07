"""
sss_detector.py
===============

Detekcija N_ID_1 iz SSS-a (SSB simbol l = 2).

SSS zauzima 127 podnosilaca (SSB podnosioci 56..182). Primljene
vrijednosti se koreliraju sa svih 336 SSS sekvenci za poznati N_ID_2:

    M(N_ID_1) = | sum_k  Y[k] * d_SSS(N_ID_1, N_ID_2)[k] |^2

Ako vremenska sinhronizacija nije tačna (`timing_tolerance > 0`), isti
račun se ponavlja za linearne fazne rampe koje odgovaraju pomacima od
``-timing_tolerance`` do ``+timing_tolerance`` uzoraka.

Identitet se prijavljuje samo kada je najbolja metrika barem
`confidence_margin` puta veća od druge najbolje; inače se vraća None.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from nr_receiver.config import SSS_LEN
from nr_receiver.models import CellIdentity, OFDMSymbol
from nr_receiver.sequences import SSSGenerator

logger = logging.getLogger(__name__)


class SSSDetector:
    """
    Parameters
    ----------
    fft_len : int
        Dužina FFT-a.
    confidence_margin : float
        Minimalni odnos najbolje i druge najbolje metrike.
    timing_tolerance : int
        Broj uzoraka vremenske nesigurnosti (0 = tačna sinhronizacija).
    """

    def __init__(self, fft_len: int, confidence_margin: float = 2.0, timing_tolerance: int = 0) -> None:
        if confidence_margin < 1.0:
            raise ValueError("confidence_margin mora biti >= 1.")
        self.fft_len = int(fft_len)
        self.confidence_margin = float(confidence_margin)
        self.timing_tolerance = max(int(timing_tolerance), 0)
        self.sss_start = self.fft_len // 2 - (SSS_LEN + 1) // 2

        k = np.arange(self.sss_start, self.sss_start + SSS_LEN) - self.fft_len // 2
        shifts = np.arange(-self.timing_tolerance, self.timing_tolerance + 1)
        # (n_shifts, 127): kompenzacija pomaka prozora za `shift` uzoraka
        self.ramps = np.exp(2j * np.pi * np.outer(shifts, k) / self.fft_len)
        self.shifts = shifts

    def metrics(self, symbol: OFDMSymbol, n_id_2: int) -> np.ndarray:
        """
        Metrike oblika (n_shifts, 336).
        """
        rx = np.asarray(symbol.subcarriers.mantissa)[self.sss_start:self.sss_start + SSS_LEN]
        candidates = SSSGenerator.candidates(n_id_2)
        corr = (self.ramps * rx) @ candidates.T
        return np.abs(corr) ** 2

    def detect(self, symbol: OFDMSymbol, n_id_2: int) -> Optional[Tuple[CellIdentity, float]]:
        """
        Returns
        -------
        (CellIdentity, ratio) | None
            Identitet i odnos najbolje/druge najbolje metrike, ili None kada
            odluka nije dovoljno pouzdana.
        """
        m = self.metrics(symbol, n_id_2)
        per_candidate = m.max(axis=0)
        order = np.argsort(per_candidate)[::-1]
        best, second = per_candidate[order[0]], per_candidate[order[1]]

        if best <= 0.0:
            logger.debug("SSS: nulta metrika, nema odluke")
            return None
        ratio = float(best / second) if second > 0 else float("inf")
        if ratio < self.confidence_margin:
            logger.debug("SSS: odnos %.2f ispod praga %.2f, nema odluke", ratio, self.confidence_margin)
            return None

        n_id_1 = int(order[0])
        shift = int(self.shifts[np.argmax(m[:, n_id_1])])
        identity = CellIdentity(n_id_1=n_id_1, n_id_2=int(n_id_2))
        logger.info("SSS: N_ID_1=%d, N_ID=%d (odnos %.1f, pomak %+d)",
                    n_id_1, identity.n_id, ratio, shift)
        return identity, ratio
