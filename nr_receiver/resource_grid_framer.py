"""
resource_grid_framer.py
=======================

Izdvajanje bandwidth part-a (BWP) i uokviravanje resource-grid toka.

Za svaki demodulisani OFDM simbol uzima se centralnih ``n_prb * 12``
podnosilaca (fftshift poredak) i šalje kao jedan okvir:

====== =====================================================
riječ  sadržaj
====== =====================================================
0      zaglavlje: ``(symbol_in_slot << 8) | (exponent & 0xFF)``
1..4   vremenska oznaka (64 bita), 16 bita po riječi, LSB prvo
5..    payload: ``n_prb * 12`` IQ riječi (imag gore, real dolje)
====== =====================================================

Posljednja riječ okvira nosi oznaku kraja (tlast).

Prijemna strana (`parse_frame`) provjerava dužinu okvira, a
`TimingMonitor` provjerava razmak susjednih vremenskih oznaka.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from nr_receiver.config import SUBCARRIERS_PER_PRB
from nr_receiver.errors import FramingError, TimingMisalignmentError
from nr_receiver.fixed_point import from_twos_complement, pack_iq, to_twos_complement, unpack_iq
from nr_receiver.models import OFDMSymbol, ResourceGridFrame

logger = logging.getLogger(__name__)

HEADER_WORDS = 1
TIMESTAMP_WORDS = 4
TIMESTAMP_WORD_BITS = 16


@dataclass(frozen=True)
class BWPConfig:
    """Konfiguracija BWP ekstrakcije.

    Parameters
    ----------
    fft_len : int
        Dužina FFT-a.
    n_prb : int
        Broj PRB-ova u BWP-u (centriran oko DC-a).
    iq_width : int
        Širina komponente payload riječi.
    """

    fft_len: int = 256
    n_prb: int = 20
    iq_width: int = 16

    def __post_init__(self) -> None:
        if self.n_prb <= 0:
            raise ValueError("n_prb mora biti pozitivan cijeli broj.")
        if self.n_prb * SUBCARRIERS_PER_PRB > self.fft_len:
            raise ValueError(
                f"BWP od {self.n_prb} PRB-ova ne stane u FFT dužine {self.fft_len}."
            )

    @property
    def n_subcarriers(self) -> int:
        return self.n_prb * SUBCARRIERS_PER_PRB

    @property
    def first_subcarrier(self) -> int:
        return self.fft_len // 2 - self.n_subcarriers // 2

    @property
    def frame_words(self) -> int:
        return HEADER_WORDS + TIMESTAMP_WORDS + self.n_subcarriers


class ResourceGridFramer:
    """Uokviravanje BWP podnosilaca jednog OFDM simbola.

    Primjer
    -------
    >>> framer = ResourceGridFramer(BWPConfig(fft_len=256, n_prb=20))
    >>> frame = framer.frame(symbol)
    >>> words, tlast = framer.to_words(frame)
    >>> len(words)
    245
    """

    def __init__(self, cfg: Optional[BWPConfig] = None) -> None:
        self.cfg = cfg or BWPConfig()

    def extract(self, symbol: OFDMSymbol) -> np.ndarray:
        """Centralnih n_prb * 12 podnosilaca (mantise)."""
        values = np.asarray(symbol.subcarriers.mantissa)
        if values.size != self.cfg.fft_len:
            raise ValueError(
                f"Simbol ima {values.size} podnosilaca, očekujem {self.cfg.fft_len}."
            )
        k0 = self.cfg.first_subcarrier
        return values[k0:k0 + self.cfg.n_subcarriers].copy()

    def frame(self, symbol: OFDMSymbol) -> ResourceGridFrame:
        return ResourceGridFrame(
            symbol_in_slot=symbol.symbol_in_slot,
            exponent=symbol.exponent,
            timestamp=symbol.timestamp,
            payload=self.extract(symbol),
        )

    def to_words(self, frame: ResourceGridFrame) -> Tuple[np.ndarray, np.ndarray]:
        """
        Pretvara okvir u niz riječi.

        Returns
        -------
        words : np.ndarray (uint64)
            Riječi okvira.
        tlast : np.ndarray (bool)
            True samo na posljednjoj riječi.
        """
        header = (int(frame.symbol_in_slot) << 8) | to_twos_complement(frame.exponent, 8)
        ts = [(int(frame.timestamp) >> (TIMESTAMP_WORD_BITS * i)) & 0xFFFF for i in range(TIMESTAMP_WORDS)]
        payload = [pack_iq(v, self.cfg.iq_width) for v in frame.payload]

        words = np.array([header] + ts + payload, dtype=np.uint64)
        tlast = np.zeros(words.size, dtype=bool)
        tlast[-1] = True
        return words, tlast


def parse_frame(words: Sequence[int], n_prb: int, iq_width: int = 16) -> ResourceGridFrame:
    """
    Dekodira okvir resource-grid toka.

    Parameters
    ----------
    words : sequence of int
        Riječi jednog okvira (od zaglavlja do tlast-a).
    n_prb : int
        Broj PRB-ova BWP-a.
    iq_width : int
        Širina komponente payload riječi.

    Raises
    ------
    FramingError
        Ako dužina okvira nije ``5 + n_prb * 12``.
    """
    words = [int(w) for w in words]
    expected = HEADER_WORDS + TIMESTAMP_WORDS + n_prb * SUBCARRIERS_PER_PRB
    if len(words) != expected:
        raise FramingError(f"Okvir ima {len(words)} riječi, očekujem {expected}.")

    header = words[0]
    timestamp = 0
    for i in range(TIMESTAMP_WORDS):
        timestamp |= (words[1 + i] & 0xFFFF) << (TIMESTAMP_WORD_BITS * i)
    payload = np.array([unpack_iq(w, iq_width) for w in words[HEADER_WORDS + TIMESTAMP_WORDS:]],
                       dtype=np.complex128)
    return ResourceGridFrame(
        symbol_in_slot=header >> 8,
        exponent=from_twos_complement(header & 0xFF, 8),
        timestamp=timestamp,
        payload=payload,
    )


class TimingMonitor:
    """
    Provjera razmaka susjednih vremenskih oznaka.

    Parameters
    ----------
    allowed_deltas : sequence of int
        Dozvoljeni razmaci (FFT_LEN + CP2, FFT_LEN + CP1).
    expect_exact_timing : bool
        True: nedozvoljen razmak diže `TimingMisalignmentError`.
        False: upisuje upozorenje u log i broji odstupanja.
    """

    def __init__(self, allowed_deltas: Sequence[int], expect_exact_timing: bool = False) -> None:
        self.allowed_deltas = tuple(int(d) for d in allowed_deltas)
        self.expect_exact_timing = bool(expect_exact_timing)
        self.reset()

    def reset(self) -> None:
        self.last_timestamp: Optional[int] = None
        self.deviations = 0

    def check(self, timestamp: int) -> bool:
        """Vraća True ako je razmak od prethodne oznake dozvoljen."""
        timestamp = int(timestamp)
        previous, self.last_timestamp = self.last_timestamp, timestamp
        if previous is None:
            return True

        delta = timestamp - previous
        if delta in self.allowed_deltas:
            return True

        self.deviations += 1
        msg = f"Razmak vremenskih oznaka {delta} nije u {self.allowed_deltas} (oznaka {timestamp})."
        if self.expect_exact_timing:
            raise TimingMisalignmentError(msg)
        logger.warning(msg)
        return False
