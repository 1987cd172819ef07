"""
pss_correlator.py
=================

Banka PSS korelatora (N_ID_2 = 0, 1, 2) na 1.92 MHz.

Za svaki ulazni uzorak n i svaku sekvencu s računa se:

    C1[s, n]   = sum_{k<64}  x[n-127+k] * conj(t_s[k])
    C2[s, n]   = sum_{k>=64} x[n-127+k] * conj(t_s[k])
    C[s, n]    = C1 + C2
    E[s, n]    = Re(C)^2 + Im(C)^2

gdje je t_s vremenski oblik PSS simbola (128 uzoraka) kvantizovan na
`tap_width` bita. Korelacije se odsijecaju (floor) na `corr_width` bita.

Polovične korelacije C1 i C2 se čuvaju jer iz njihove fazne razlike
CFO estimator dobija grubu procjenu frekvencijskog ofseta.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from nr_receiver.config import OVERFLOW_POLICIES, PSS_LEN
from nr_receiver.errors import FifoOverflowError
from nr_receiver.fixed_point import quantize_complex, truncate_shift
from nr_receiver.models import CorrelationResult
from nr_receiver.sequences import PSSGenerator

logger = logging.getLogger(__name__)

HALF_LEN = PSS_LEN // 2


def pss_taps(n_id_2: int, tap_width: int) -> np.ndarray:
    """
    Fiksni tapovi za jednu PSS sekvencu.

    Vremenski oblik se normalizuje na najveću komponentu i kvantizuje na
    `tap_width` bita, tako da se iskoristi cijeli opseg koeficijenata.
    """
    t = PSSGenerator.time_domain(n_id_2, PSS_LEN)
    peak = max(np.max(np.abs(t.real)), np.max(np.abs(t.imag)))
    return quantize_complex(t / peak, tap_width)


@dataclass
class CorrelatorBlock:
    """
    Izlaz banke korelatora za jedan komad ulaza.

    Attributes
    ----------
    c1, c2, full : np.ndarray
        Kompleksne korelacije oblika (3, n).
    energy : np.ndarray
        Energija pune korelacije, oblik (3, n).
    start_index : int
        Globalni indeks (u uzorcima detektora) prve kolone.
    cycles : np.ndarray | None
        Takt u kojem je svaka kolona predata detektoru.
    dropped : np.ndarray
        Maska uzoraka koje je multiplier-reuse raspoređivač odbacio.
    """
    c1: np.ndarray
    c2: np.ndarray
    full: np.ndarray
    energy: np.ndarray
    start_index: int
    cycles: Optional[np.ndarray]
    dropped: np.ndarray

    def __len__(self) -> int:
        return int(self.energy.shape[1])

    def result(self, sequence_index: int, column: int) -> CorrelationResult:
        return CorrelationResult(
            sequence_index=int(sequence_index),
            sample_offset=self.start_index + int(column),
            energy=float(self.energy[sequence_index, column]),
            value=complex(self.full[sequence_index, column]),
        )


class MultiplierReuseScheduler:
    """
    Model dijeljenja množača u korelatoru.

    Sa `mult_reuse = M > 1` korelator ima M puta manje množača i za jedan
    uzorak troši M taktova. Uzorci koji stignu dok je korelator zauzet
    čekaju u baferu dubine `hold_depth`.

    Parametri
    ---------
    mult_reuse : int
        Broj taktova po uzorku (0 ili 1 znači puna paralelnost).
    hold_depth : int
        Broj uzoraka koji mogu čekati na obradu.
    policy : str
        "hold": prepunjen bafer je greška (`FifoOverflowError`).
        "drop": uzorak se odbacuje (u korelaciju ulazi nula na njegovom
        mjestu) i broji se u `dropped`.
    """

    def __init__(self, mult_reuse: int = 0, hold_depth: int = 1, policy: str = "hold") -> None:
        if policy not in OVERFLOW_POLICIES:
            raise ValueError(f"policy mora biti jedno od {OVERFLOW_POLICIES}.")
        if hold_depth < 1:
            raise ValueError("hold_depth mora biti >= 1.")
        self.service = max(int(mult_reuse), 1)
        self.hold_depth = int(hold_depth)
        self.policy = policy
        self.reset()

    def reset(self) -> None:
        self._free_at = 0
        self._waiting: deque = deque()
        self.dropped = 0
        self.max_waiting = 0

    def schedule(self, arrivals: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Raspoređuje uzorke na množače.

        Parameters
        ----------
        arrivals : np.ndarray
            Takt dolaska svakog uzorka (neopadajući).

        Returns
        -------
        done : np.ndarray (int64)
            Takt u kojem je korelacija za uzorak gotova.
        dropped : np.ndarray (bool)
            Maska odbačenih uzoraka.
        """
        arrivals = np.asarray(arrivals, dtype=np.int64)
        done = np.empty(arrivals.size, dtype=np.int64)
        dropped = np.zeros(arrivals.size, dtype=bool)

        if self.service == 1:
            done[:] = arrivals + 1
            if arrivals.size:
                self._free_at = int(arrivals[-1]) + 1
            return done, dropped

        for i, a in enumerate(arrivals.tolist()):
            # uzorci čiji je početak obrade prošao više ne zauzimaju bafer
            while self._waiting and self._waiting[0] <= a:
                self._waiting.popleft()
            start = max(a, self._free_at)
            if start > a:
                if len(self._waiting) >= self.hold_depth:
                    if self.policy == "hold":
                        logger.error("PSS korelator: ulazni bafer pun u taktu %d (mult_reuse=%d)", a, self.service)
                        raise FifoOverflowError(
                            f"Korelator ne stiže obraditi uzorak u taktu {a}: "
                            f"mult_reuse={self.service}, hold_depth={self.hold_depth}."
                        )
                    dropped[i] = True
                    done[i] = a
                    self.dropped += 1
                    continue
                self._waiting.append(start)
                self.max_waiting = max(self.max_waiting, len(self._waiting))
            self._free_at = start + self.service
            done[i] = self._free_at

        if dropped.any():
            logger.warning("PSS korelator: odbačeno %d uzoraka (ukupno %d)", int(dropped.sum()), self.dropped)
        return done, dropped


class PSSCorrelatorBank:
    """
    Streaming korelator za sve tri PSS sekvence.

    Stanje (posljednjih 127 ulaznih uzoraka) se čuva između poziva, pa
    rezultat ne zavisi od podjele ulaza na komade.

    Parametri
    ---------
    in_width : int
        Širina komponente ulaznog uzorka.
    tap_width : int
        Širina komponente tapa.
    corr_width : int
        Širina komponente izlazne korelacije.
    scheduler : MultiplierReuseScheduler | None
        Model dijeljenja množača; None znači punu paralelnost.
    """

    def __init__(self, in_width: int = 16, tap_width: int = 16, corr_width: int = 24,
                 scheduler: Optional[MultiplierReuseScheduler] = None) -> None:
        self.in_width = int(in_width)
        self.tap_width = int(tap_width)
        self.corr_width = int(corr_width)
        self.scheduler = scheduler if scheduler is not None else MultiplierReuseScheduler()
        self.taps = np.vstack([pss_taps(n, self.tap_width) for n in range(3)])

        # rast: proizvod (in + tap - 1) bita + log2(128) sabiranja
        full_width = self.in_width + self.tap_width - 1 + int(np.log2(PSS_LEN)) + 1
        self.corr_shift = max(full_width - self.corr_width, 0)
        self.reset()

    def reset(self) -> None:
        self._history = np.zeros(PSS_LEN - 1, dtype=np.complex128)
        self.samples_seen = 0
        self.scheduler.reset()

    def correlate_window(self, window: np.ndarray, n_id_2: int) -> tuple[complex, complex]:
        """
        Polovične korelacije (C1, C2) za jedan prozor od 128 uzoraka.

        Računa isto što i `process` za posljednji uzorak prozora.
        """
        window = np.asarray(window, dtype=np.complex128)
        if window.size != PSS_LEN:
            raise ValueError(f"Prozor mora imati {PSS_LEN} uzoraka.")
        t = self.taps[n_id_2]
        c1 = np.sum(window[:HALF_LEN] * np.conj(t[:HALF_LEN]))
        c2 = np.sum(window[HALF_LEN:] * np.conj(t[HALF_LEN:]))
        c1 = complex(truncate_shift(np.array([c1]), self.corr_shift)[0])
        c2 = complex(truncate_shift(np.array([c2]), self.corr_shift)[0])
        return c1, c2

    def process(self, x: np.ndarray, cycles: Optional[np.ndarray] = None) -> CorrelatorBlock:
        """
        Korelira komad ulaza sa sve tri PSS sekvence.

        Parameters
        ----------
        x : np.ndarray
            Uzorci na 1.92 MHz (cjelobrojni kompleksni).
        cycles : np.ndarray | None
            Takt dolaska svakog uzorka; potreban za multiplier-reuse model.

        Returns
        -------
        CorrelatorBlock
        """
        x = np.asarray(x, dtype=np.complex128)
        n = x.size
        start_index = self.samples_seen

        done = None
        dropped = np.zeros(n, dtype=bool)
        if cycles is not None:
            done, dropped = self.scheduler.schedule(cycles)
            if dropped.any():
                x = x.copy()
                x[dropped] = 0

        buf = np.concatenate((self._history, x))
        self._history = buf[buf.size - (PSS_LEN - 1):]
        self.samples_seen += n

        c1 = np.empty((3, n), dtype=np.complex128)
        c2 = np.empty((3, n), dtype=np.complex128)
        for s in range(3):
            t = self.taps[s]
            # np.correlate konjuguje drugi argument
            c1[s] = np.correlate(buf[:buf.size - HALF_LEN], t[:HALF_LEN], mode="valid")
            c2[s] = np.correlate(buf[HALF_LEN:], t[HALF_LEN:], mode="valid")

        c1 = truncate_shift(c1, self.corr_shift)
        c2 = truncate_shift(c2, self.corr_shift)
        full = c1 + c2
        energy = full.real ** 2 + full.imag ** 2

        return CorrelatorBlock(c1=c1, c2=c2, full=full, energy=energy,
                               start_index=start_index, cycles=done, dropped=dropped)
