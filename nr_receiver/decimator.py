"""
decimator.py
============

Ulaz uzoraka i konverzija sample rate-a.

`SampleIngest` prima sirove kompleksne uzorke (cjelobrojne vrijednosti,
`in_width` bita po komponenti) zajedno sa opcionalnom `valid` maskom po
taktu, odbacuje nevažeće taktove, pamti takt u kojem je svaki važeći
uzorak stigao i decimira tok na FFT sample rate.

`CICDecimator` je cjelobrojni CIC decimator (integratori → decimacija →
češljevi) koji čuva stanje između poziva, pa se tok može obrađivati u
proizvoljnim komadima.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from nr_receiver.fixed_point import check_range, truncate_shift

logger = logging.getLogger(__name__)


class CICDecimator:
    """
    CIC decimator sa `stages` integratora/češljeva i faktorom `factor`.

    Pojačanje CIC-a je factor**stages; uklanja se pomakom udesno (floor),
    pa je faktor ograničen na stepen dvojke.

    Parameters
    ----------
    factor : int
        Faktor decimacije (1 = propuštanje bez promjene).
    stages : int
        Red filtra.

    Napomene
    --------
    Izlazni uzorak j nastaje iz ulaznog uzorka ``j * factor + factor - 1``,
    a grupno kašnjenje filtra je ``stages * (factor - 1) / 2`` ulaznih uzoraka.
    """

    def __init__(self, factor: int, stages: int = 2) -> None:
        factor = int(factor)
        if factor < 1 or factor & (factor - 1):
            raise ValueError("factor mora biti stepen dvojke (1, 2, 4, ...).")
        if stages < 1:
            raise ValueError("stages mora biti >= 1.")

        self.factor = factor
        self.stages = int(stages)
        self.gain_shift = self.stages * (factor.bit_length() - 1)

        # integrator + comb kaskada je ekvivalentna FIR-u sa `stages`
        # konvolviranih boxcar prozora dužine `factor`
        taps = np.ones(1)
        for _ in range(self.stages):
            taps = np.convolve(taps, np.ones(factor))
        self.taps = taps
        self.reset()

    def reset(self) -> None:
        self._history = np.zeros(self.taps.size - 1, dtype=np.complex128)
        self._phase = 0

    @property
    def group_delay(self) -> int:
        """Grupno kašnjenje u ulaznim uzorcima (zaokruženo naniže)."""
        return self.stages * (self.factor - 1) // 2

    def output_positions(self, n_in: int) -> np.ndarray:
        """
        Relativni indeksi ulaznih uzoraka (unutar sljedećeg poziva sa
        `n_in` uzoraka) na kojima nastaju izlazni uzorci.
        """
        first = (self.factor - 1 - self._phase) % self.factor
        return np.arange(first, n_in, self.factor)

    def process(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.complex128)
        if self.factor == 1:
            return x.copy()
        if x.size == 0:
            return np.zeros(0, dtype=np.complex128)

        buf = np.concatenate((self._history, x))
        full = np.convolve(buf, self.taps, mode="valid")
        self._history = buf[buf.size - self._history.size:]

        picks = self.output_positions(x.size)
        self._phase = (self._phase + x.size) % self.factor
        return truncate_shift(full[picks], self.gain_shift)


class SampleIngest:
    """
    Ulazni blok prijemnika.

    Parametri
    ---------
    in_width : int
        Širina komponente ulaznog uzorka.
    decimation : int
        Odnos ulaznog i FFT sample rate-a.
    clocks_per_sample : int
        Broj taktova po uzorku kada `valid` maska nije zadana.
    stages : int
        Red CIC filtra.

    Primjer
    -------
    >>> ingest = SampleIngest(in_width=16, decimation=2)
    >>> y, cycles = ingest.push(np.array([100 + 20j, -4 + 8j, 7, 9]))
    >>> y.shape
    (2,)
    """

    def __init__(self, in_width: int, decimation: int = 1, clocks_per_sample: int = 1,
                 stages: int = 2) -> None:
        self.in_width = int(in_width)
        self.clocks_per_sample = int(clocks_per_sample)
        self.cic = CICDecimator(decimation, stages)
        self._cycle = 0
        self.samples_in = 0

    def reset(self) -> None:
        self.cic.reset()
        self._cycle = 0
        self.samples_in = 0

    def _validate(self, samples: np.ndarray) -> np.ndarray:
        x = np.asarray(samples)
        if x.ndim != 1:
            raise ValueError("Ulaz mora biti 1D niz kompleksnih uzoraka.")
        if not (np.issubdtype(x.dtype, np.complexfloating)
                or np.issubdtype(x.dtype, np.integer)
                or np.issubdtype(x.dtype, np.floating)):
            raise TypeError("Ulaz mora biti numerički NumPy niz.")
        x = x.astype(np.complex128)
        if not np.isfinite(x).all():
            raise ValueError("Ulaz sadrži NaN ili Inf vrijednosti.")
        if np.any(x.real != np.floor(x.real)) or np.any(x.imag != np.floor(x.imag)):
            raise ValueError("Ulazni uzorci moraju biti cjelobrojni (fiksni zarez).")
        check_range(x, self.in_width)
        return x

    def push(self, samples: np.ndarray, valid: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Prima komad ulaznog toka.

        Parameters
        ----------
        samples : np.ndarray
            Ulazni uzorci po taktu.
        valid : np.ndarray | None
            Bool maska iste dužine; False taktovi se preskaču. Ako je None,
            svi uzorci su važeći i razmaknuti `clocks_per_sample` taktova.

        Returns
        -------
        y : np.ndarray
            Uzorci na FFT sample rate-u.
        cycles : np.ndarray
            Takt (int64) u kojem je nastao svaki izlazni uzorak.

        Raises
        ------
        InputOverflowError
            Ako je bilo koji važeći uzorak van opsega.
        """
        x = np.asarray(samples)
        if valid is None:
            x = self._validate(x)
            cycles = self._cycle + np.arange(x.size, dtype=np.int64) * self.clocks_per_sample
            self._cycle += x.size * self.clocks_per_sample
        else:
            valid = np.asarray(valid, dtype=bool)
            if valid.shape != x.shape:
                raise ValueError("valid maska mora imati isti oblik kao samples.")
            cycles = self._cycle + np.flatnonzero(valid).astype(np.int64)
            self._cycle += x.size
            x = self._validate(x[valid])

        self.samples_in += x.size
        picks = self.cic.output_positions(x.size)
        y = self.cic.process(x)
        return y, cycles[picks]
