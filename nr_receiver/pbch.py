"""
pbch.py
=======

Pomoćni blokovi nizvodno od LLR toka (PBCH).

* `descramble_llr`: poništava PBCH skremblovanje (TS 38.211 7.3.3.1)
* `RepetitionCombiner`: soft kombinovanje ponovljenih kodiranih bitova
  (obrnuti rate matching ponavljanjem)
* `CRCChecker`: bitski CRC (podrazumijevano CRC24C iz TS 38.212 5.1)

Polarno dekodiranje nije dio ovog modula.
"""

from __future__ import annotations

import numpy as np

from nr_receiver.config import PBCH_LLR_PER_SSB
from nr_receiver.sequences import pbch_scrambling_sequence

CRC24C_POLY = 0x1B2B117


def descramble_llr(llr: np.ndarray, n_id: int, ibar_ssb: int, l_max: int = 4) -> np.ndarray:
    """
    Poništava PBCH skremblovanje nad LLR vrijednostima.

    Skremblovani bit je b XOR c, pa se LLR okreće tamo gdje je c = 1.

    Parameters
    ----------
    llr : np.ndarray
        LLR vrijednosti jednog SSB-a (864).
    n_id : int
        Fizički identitet ćelije.
    ibar_ssb : int
        Indeks SSB-a.
    l_max : int
        Maksimalan broj SSB-ova u polu-okviru (4 ili 8).

    Returns
    -------
    np.ndarray
        Deskremblovani LLR-ovi (isti dtype).
    """
    llr = np.asarray(llr)
    if llr.size != PBCH_LLR_PER_SSB:
        raise ValueError(f"Očekujem {PBCH_LLR_PER_SSB} LLR vrijednosti, dobijeno {llr.size}.")
    c = pbch_scrambling_sequence(n_id, ibar_ssb, PBCH_LLR_PER_SSB, l_max)
    sign = 1 - 2 * c.astype(np.int16)
    return (llr * sign).astype(llr.dtype)


class RepetitionCombiner:
    """
    Soft kombinovanje ponovljenih bitova.

    Ako je kodirana riječ dužine `n_coded` ponovljena da popuni `n_rx`
    pozicija, primljena pozicija i odgovara kodiranom bitu ``i mod n_coded``.
    LLR-ovi istog bita se sabiraju.

    Parametri
    ---------
    n_coded : int
        Broj kodiranih bitova prije ponavljanja.

    Primjer
    -------
    >>> comb = RepetitionCombiner(n_coded=4)
    >>> comb.combine(np.array([10, -3, 5, 7, 12, -1, 6, 9]))
    array([22., -4., 11., 16.])
    """

    def __init__(self, n_coded: int):
        if n_coded <= 0:
            raise ValueError("n_coded mora biti pozitivan cijeli broj.")
        self.n_coded = int(n_coded)

    def combine(self, llr: np.ndarray) -> np.ndarray:
        llr = np.asarray(llr, dtype=float)
        indices = np.arange(llr.size) % self.n_coded
        return np.bincount(indices, weights=llr, minlength=self.n_coded)

    def hard_bits(self, llr: np.ndarray) -> np.ndarray:
        """Hard odluka nad kombinovanim LLR-ovima (pozitivan LLR = bit 0)."""
        return (self.combine(llr) < 0).astype(np.uint8)


class CRCChecker:
    """
    Bitski CRC checker.

    Parameters
    ----------
    poly : int, optional
        CRC polinom sa vodećim bitom (default: CRC24C, 0x1B2B117).
    init : int, optional
        Početna vrijednost registra (default: 0).

    Examples
    --------
    >>> crc = CRCChecker()
    >>> payload = np.array([1, 0, 1, 1, 0, 1], dtype=np.uint8)
    >>> payload_rx, ok = crc.check(crc.attach(payload))
    >>> ok
    True
    """

    def __init__(self, poly: int = CRC24C_POLY, init: int = 0):
        if poly < 2:
            raise ValueError("poly mora imati barem stepen 1.")
        self.poly = int(poly)
        self.width = self.poly.bit_length() - 1
        self.init = int(init)

    # ------------------------------------------------------------------
    # CRC
    # ------------------------------------------------------------------
    def remainder(self, bits: np.ndarray) -> np.ndarray:
        """
        Ostatak dijeljenja polinomom, MSB prvo.

        Returns
        -------
        np.ndarray
            `width` bitova ostatka.
        """
        bits = np.asarray(bits, dtype=np.uint8).flatten()
        mask = (1 << self.width) - 1
        top = 1 << (self.width - 1)

        reg = self.init
        for b in bits:
            reg ^= (int(b) & 1) << (self.width - 1)
            if reg & top:
                reg = ((reg << 1) ^ self.poly) & mask
            else:
                reg = (reg << 1) & mask

        return np.array([(reg >> (self.width - 1 - i)) & 1 for i in range(self.width)], dtype=np.uint8)

    def attach(self, payload: np.ndarray) -> np.ndarray:
        payload = np.asarray(payload, dtype=np.uint8).flatten()
        return np.concatenate([payload, self.remainder(payload)])

    def check(self, bits_with_crc: np.ndarray) -> tuple[np.ndarray, bool]:
        """
        Provjerava CRC.

        Returns
        -------
        payload_bits : np.ndarray
            Bitovi bez CRC-a.
        ok : bool
            True ako CRC prolazi.
        """
        bits = np.asarray(bits_with_crc, dtype=np.uint8).flatten()
        if bits.size < self.width:
            raise ValueError(f"Ulaz mora sadržavati barem {self.width} CRC bitova.")

        payload = bits[:-self.width]
        ok = np.array_equal(self.remainder(payload), bits[-self.width:])
        return payload, bool(ok)
