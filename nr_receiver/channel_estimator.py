"""
channel_estimator.py
====================

Procjena kanala i ekvalizacija PBCH-a iz PBCH DMRS pilota.

Raspored unutar SSB-a (240 podnosilaca, SSB simboli l = 1, 2, 3):

* DMRS na podnosiocima k = v + 4m, v = N_ID mod 4
* l = 1 i l = 3: cijeli SSB (60 DMRS + 180 podataka po simbolu)
* l = 2: samo podnosioci 0..47 i 192..239 (24 DMRS + 72 podatka)

Ukupno 144 DMRS i 432 PBCH RE-a po SSB-u. DMRS sekvenca r(m) se mapira
redom po k, pa po l (prvo l = 1, zatim l = 2, pa l = 3).

Koraci:
1. izbor ibar_SSB (0..7) po koherentnoj energiji DMRS-a
2. LS procjena na DMRS pozicijama, linearna interpolacija po podnosiocima
3. zero-forcing ekvalizacija 432 PBCH RE-a
4. kvantizacija u BlockFloat sa jednim eksponentom za cijeli SSB
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from nr_receiver.config import PBCH_DATA_RE, SSB_SUBCARRIERS, SUBCARRIER_SPACING_HZ
from nr_receiver.fixed_point import BlockFloat
from nr_receiver.models import ChannelEstimate, OFDMSymbol
from nr_receiver.sequences import pbch_dmrs

logger = logging.getLogger(__name__)

SSB_PBCH_SYMBOLS = (1, 2, 3)
N_IBAR_CANDIDATES = 8
# broj susjednih DMRS-a koji se koherentno sabiraju pri izboru ibar_SSB
_COHERENT_GROUP = 6


def pbch_layout(n_id: int) -> Dict[int, Tuple[np.ndarray, np.ndarray]]:
    """
    Pozicije DMRS-a i PBCH podataka unutar SSB-a.

    Returns
    -------
    dict
        l -> (dmrs_k, data_k), indeksi podnosilaca 0..239.
    """
    v = n_id % 4
    k = np.arange(SSB_SUBCARRIERS)
    edge = (k < 48) | (k >= 192)
    layout = {}
    for l in SSB_PBCH_SYMBOLS:
        used = k if l != 2 else k[edge]
        dmrs = used[used % 4 == v]
        data = used[used % 4 != v]
        layout[l] = (dmrs, data)
    return layout


class ChannelEstimator:
    """
    Parameters
    ----------
    fft_len : int
        Dužina FFT-a (za položaj SSB-a u fftshift poretku).
    out_width : int
        Širina mantisa ekvalizovanih simbola.
    symbol_duration : int
        Trajanje OFDM simbola u uzorcima (za preostali CFO).
    sample_rate_hz : float
        Sample rate FFT toka.
    """

    def __init__(self, fft_len: int, out_width: int = 16, symbol_duration: Optional[int] = None,
                 sample_rate_hz: Optional[float] = None) -> None:
        self.fft_len = int(fft_len)
        self.ssb_start = self.fft_len // 2 - SSB_SUBCARRIERS // 2
        self.out_width = int(out_width)
        self.symbol_duration = symbol_duration if symbol_duration is not None else self.fft_len
        self.sample_rate_hz = (sample_rate_hz if sample_rate_hz is not None
                               else float(SUBCARRIER_SPACING_HZ * self.fft_len))

    def _ssb(self, symbol: OFDMSymbol) -> np.ndarray:
        values = symbol.subcarriers.to_float()
        return values[self.ssb_start:self.ssb_start + SSB_SUBCARRIERS]

    def _split_dmrs(self, n_id: int, ibar_ssb: int) -> Dict[int, np.ndarray]:
        r = pbch_dmrs(n_id, ibar_ssb)
        return {1: r[:60], 2: r[60:84], 3: r[84:]}

    def detect_ibar(self, rx: Dict[int, np.ndarray], n_id: int) -> Tuple[int, np.ndarray]:
        """
        Bira ibar_SSB sa najvećom koherentnom DMRS energijom.

        Returns
        -------
        (ibar_ssb, metrics)
        """
        layout = pbch_layout(n_id)
        metrics = np.zeros(N_IBAR_CANDIDATES)
        for ibar in range(N_IBAR_CANDIDATES):
            ref = self._split_dmrs(n_id, ibar)
            total = 0.0
            for l in SSB_PBCH_SYMBOLS:
                z = rx[l][layout[l][0]] * np.conj(ref[l])
                groups = z.size // _COHERENT_GROUP
                total += float(np.sum(np.abs(z.reshape(groups, _COHERENT_GROUP).sum(axis=1)) ** 2))
            metrics[ibar] = total
        return int(np.argmax(metrics)), metrics

    def estimate(self, symbols: Dict[int, OFDMSymbol], n_id: int) -> Tuple[ChannelEstimate, BlockFloat]:
        """
        Procjena kanala i ekvalizacija PBCH-a za jedan SSB.

        Parameters
        ----------
        symbols : dict
            SSB simboli l = 1, 2, 3 (OFDMSymbol).
        n_id : int
            Fizički identitet ćelije.

        Returns
        -------
        (ChannelEstimate, BlockFloat)
            Procjena kanala i 432 ekvalizovana PBCH simbola.
        """
        missing = [l for l in SSB_PBCH_SYMBOLS if l not in symbols]
        if missing:
            raise ValueError(f"Nedostaju SSB simboli {missing}.")

        rx = {l: self._ssb(symbols[l]) for l in SSB_PBCH_SYMBOLS}
        ibar, _ = self.detect_ibar(rx, n_id)
        ref = self._split_dmrs(n_id, ibar)
        layout = pbch_layout(n_id)

        k_all = np.arange(SSB_SUBCARRIERS)
        gains: Dict[int, BlockFloat] = {}
        ls: Dict[int, np.ndarray] = {}
        equalized = []
        for l in SSB_PBCH_SYMBOLS:
            dmrs_k, data_k = layout[l]
            h_dmrs = rx[l][dmrs_k] * np.conj(ref[l])
            ls[l] = h_dmrs
            h = (np.interp(k_all, dmrs_k, h_dmrs.real)
                 + 1j * np.interp(k_all, dmrs_k, h_dmrs.imag))
            gains[l] = BlockFloat.from_float(h, self.out_width)

            h_data = h[data_k]
            eq = np.zeros(data_k.size, dtype=np.complex128)
            ok = np.abs(h_data) > 0
            eq[ok] = rx[l][data_k][ok] / h_data[ok]
            equalized.append(eq)

        # rotacija DMRS-a između simbola 1 i 3 (isti podnosioci, 2 simbola razmaka)
        rot = np.sum(ls[3] * np.conj(ls[1]))
        residual = float(np.angle(rot) * self.sample_rate_hz / (2.0 * np.pi * 2 * self.symbol_duration))

        data = np.concatenate(equalized)
        if data.size != PBCH_DATA_RE:
            raise ValueError(f"Očekivano {PBCH_DATA_RE} PBCH RE-a, dobijeno {data.size}.")

        estimate = ChannelEstimate(gains=gains, ibar_ssb=ibar, residual_cfo_hz=residual)
        logger.debug("Kanal: ibar_SSB=%d, preostali CFO %.1f Hz", ibar, residual)
        return estimate, BlockFloat.from_float(data, self.out_width)
