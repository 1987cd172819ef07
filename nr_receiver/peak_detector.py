"""
peak_detector.py
================

Detektor vrha PSS korelacije.

Uzorak je kandidat kada energija bilo koje sekvence pređe
``2**threshold_shift`` puta prosjek energije te sekvence u prethodnih
`window_len` uzoraka. Nakon `hits_required` uzastopnih kandidata detektor
se aktivira, posmatra narednih `search_len` uzoraka (uključujući i uzorak
aktiviranja) i prijavljuje najveću energiju preko svih sekvenci.

Novi vrh se ne prihvata dok ne prođe `holdoff` uzoraka od prethodnog
vrha, tako da jedan PSS daje tačno jednu odluku. Prvih `window_len`
uzoraka toka nikad nisu kandidati (prozor prosjeka još nije pun).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeakDecision:
    """
    Attributes
    ----------
    sequence_index : int
        Sekvenca sa najvećom energijom u prozoru pretrage.
    peak_index : int
        Globalni indeks uzorka vrha.
    decided_at : int
        Globalni indeks uzorka u kojem je odluka donesena.
    energy : float
        Energija u vrhu.
    mean_energy : float
        Lokalni prosjek energije u trenutku aktiviranja.
    """
    sequence_index: int
    peak_index: int
    decided_at: int
    energy: float
    mean_energy: float


@dataclass
class _Search:
    start: int
    mean_energy: float
    energy: List[np.ndarray] = field(default_factory=list)

    @property
    def collected(self) -> int:
        return sum(e.shape[1] for e in self.energy)


class PeakDetector:
    """
    Parametri
    ---------
    window_len : int
        Dužina prozora lokalnog prosjeka.
    threshold_shift : int
        log2 odnosa praga i lokalnog prosjeka.
    hits_required : int
        Broj uzastopnih kandidata potrebnih za aktiviranje.
    search_len : int
        Dužina prozora pretrage nakon aktiviranja.
    holdoff : int
        Broj uzoraka nakon vrha u kojima se nova aktiviranja odbacuju.
    n_sequences : int
        Broj paralelnih korelacija (3 za PSS).
    """

    def __init__(self, window_len: int = 64, threshold_shift: int = 4, hits_required: int = 1,
                 search_len: int = 8, holdoff: int = 137, n_sequences: int = 3) -> None:
        if window_len <= 0 or search_len <= 0 or hits_required <= 0:
            raise ValueError("window_len, search_len i hits_required moraju biti pozitivni.")
        self.window_len = int(window_len)
        self.threshold = float(1 << int(threshold_shift))
        self.hits_required = int(hits_required)
        self.search_len = int(search_len)
        self.holdoff = int(holdoff)
        self.n_sequences = int(n_sequences)
        self.reset()

    def reset(self) -> None:
        self._history = np.zeros((self.n_sequences, self.window_len))
        self._seen = 0
        self._run = 0
        self._last_candidate: Optional[int] = None
        self._holdoff_until = 0
        self._search: Optional[_Search] = None
        self.rejected = 0

    def _local_mean(self, energy: np.ndarray) -> np.ndarray:
        """Prosjek prethodnih `window_len` uzoraka za svaki uzorak komada."""
        buf = np.concatenate((self._history, energy), axis=1)
        csum = np.concatenate((np.zeros((self.n_sequences, 1)), np.cumsum(buf, axis=1)), axis=1)
        n = energy.shape[1]
        w = self.window_len
        return (csum[:, w:w + n] - csum[:, :n]) / w

    def _finish(self, decisions: List[PeakDecision]) -> None:
        search = self._search
        window = np.concatenate(search.energy, axis=1)[:, :self.search_len]
        # poredak uzorak-pa-sekvenca: jednake energije idu najranijem
        # uzorku, pa najmanjem N_ID_2
        flat = int(np.argmax(window.T.ravel()))
        offset, seq = divmod(flat, self.n_sequences)
        peak = search.start + offset
        decision = PeakDecision(
            sequence_index=seq,
            peak_index=peak,
            decided_at=search.start + self.search_len - 1,
            energy=float(window[seq, offset]),
            mean_energy=search.mean_energy,
        )
        decisions.append(decision)
        logger.debug("Vrh: seq=%d uzorak=%d E=%.3g (prosjek %.3g)",
                     seq, peak, decision.energy, decision.mean_energy)
        self._holdoff_until = peak + self.holdoff
        self._search = None
        self._run = 0
        self._last_candidate = None

    def _feed_search(self, energy: np.ndarray, pos: int, decisions: List[PeakDecision]) -> int:
        need = self.search_len - self._search.collected
        take = energy[:, pos:pos + need]
        self._search.energy.append(take)
        if self._search.collected >= self.search_len:
            self._finish(decisions)
        return pos + take.shape[1]

    def process(self, energy: np.ndarray) -> List[PeakDecision]:
        """
        Obrađuje komad energija oblika (n_sequences, n).

        Returns
        -------
        list[PeakDecision]
            Odluke donesene u ovom komadu (vrh može biti i u prethodnom komadu).
        """
        energy = np.asarray(energy, dtype=np.float64)
        if energy.ndim != 2 or energy.shape[0] != self.n_sequences:
            raise ValueError(f"energy mora imati oblik ({self.n_sequences}, n).")

        n = energy.shape[1]
        start = self._seen
        mean = self._local_mean(energy)
        candidate = ((energy > self.threshold * mean) & (mean > 0)).any(axis=0)
        # prosjek nije definisan dok prozor nije popunjen
        candidate &= (start + np.arange(n)) >= self.window_len

        decisions: List[PeakDecision] = []
        pos = 0
        if self._search is not None:
            pos = self._feed_search(energy, 0, decisions)

        for i in np.flatnonzero(candidate).tolist():
            if self._search is not None:
                break
            if i < pos:
                continue
            g = start + i
            self._run = self._run + 1 if self._last_candidate == g - 1 else 1
            self._last_candidate = g
            if g < self._holdoff_until:
                self.rejected += 1
                continue
            if self._run < self.hits_required:
                continue
            self._search = _Search(start=g, mean_energy=float(mean[:, i].max()))
            pos = self._feed_search(energy, i, decisions)

        self._history = np.concatenate((self._history, energy), axis=1)[:, -self.window_len:]
        self._seen += n
        return decisions
