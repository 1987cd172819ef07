"""
sequences.py
============

Referentne sekvence za NR sinhronizaciju (3GPP TS 38.211):

* PSS: m-sekvenca dužine 127, tri cikličke rotacije (N_ID_2 = 0, 1, 2), 7.4.2.2
* SSS: proizvod dvije m-sekvence, 336 * 3 kombinacija, 7.4.2.3
* Gold (pseudo-random) sekvenca c(n), 5.2.1
* PBCH DMRS, 7.4.1.4

Sekvence se računaju jednom i keširaju (lru_cache), jer ih detektori
koriste za svaki simbol.
"""

from __future__ import annotations

from functools import lru_cache

import numpy as np

from nr_receiver.config import PSS_LEN, SSS_LEN


def _m_sequence(taps: tuple[int, ...], length: int = SSS_LEN) -> np.ndarray:
    """
    Binarna m-sekvenca x(i+7) = sum(x(i+t) for t in taps) mod 2
    sa početnim stanjem [1, 0, 0, 0, 0, 0, 0].
    """
    x = np.zeros(length + 7, dtype=np.uint8)
    x[0] = 1
    for i in range(length):
        x[i + 7] = np.bitwise_xor.reduce(x[[i + t for t in taps]])
    return x[:length]


class PSSGenerator:
    """
    Generator NR Primary Synchronization Signal (PSS) sekvence.

    d_PSS(n) = 1 - 2 x(m),  m = (n + 43 N_ID_2) mod 127

    gdje je x m-sekvenca x(i+7) = (x(i+4) + x(i)) mod 2 sa početnim
    stanjem [0, 1, 1, 0, 1, 1, 1].

    Metode
    -------
    generate(n_id_2):
        BPSK PSS sekvenca dužine 127 (vrijednosti ±1).
    time_domain(n_id_2, fft_len):
        Vremenski oblik PSS simbola (bez CP-a) za dati FFT.
    """

    _init_state = (0, 1, 1, 0, 1, 1, 1)

    @staticmethod
    @lru_cache(maxsize=None)
    def _base() -> np.ndarray:
        x = np.zeros(SSS_LEN + 7, dtype=np.uint8)
        x[:7] = PSSGenerator._init_state
        for i in range(SSS_LEN):
            x[i + 7] = (x[i + 4] + x[i]) % 2
        return x[:SSS_LEN]

    @staticmethod
    def generate(n_id_2: int) -> np.ndarray:
        """
        Parametri
        ----------
        n_id_2 : int
            Može biti samo {0, 1, 2}.

        Povratna vrijednost
        -------------------
        np.ndarray (float64)
            Vektor dužine 127 sa vrijednostima ±1.
        """
        if n_id_2 not in (0, 1, 2):
            raise ValueError("n_id_2 mora biti 0, 1 ili 2.")

        x = PSSGenerator._base()
        m = (np.arange(SSS_LEN) + 43 * n_id_2) % SSS_LEN
        return 1.0 - 2.0 * x[m]

    @staticmethod
    @lru_cache(maxsize=None)
    def time_domain(n_id_2: int, fft_len: int = PSS_LEN) -> np.ndarray:
        """
        PSS mapiran na podnosioce -64..62 oko DC-a i transformisan u
        vremenski domen (IFFT dužine `fft_len`, bez skaliranja 1/N).

        Ovo je isti raspored kao u SSB-u: PSS zauzima SSB podnosioce
        56..182, a centar SSB-a (podnosilac 120) pada na DC.
        """
        if fft_len < PSS_LEN:
            raise ValueError(f"fft_len mora biti barem {PSS_LEN}.")
        freq = np.zeros(fft_len, dtype=np.complex128)
        start = fft_len // 2 - (SSS_LEN + 1) // 2
        freq[start:start + SSS_LEN] = PSSGenerator.generate(n_id_2)
        return np.fft.ifft(np.fft.ifftshift(freq)) * fft_len


class SSSGenerator:
    """
    Generator NR Secondary Synchronization Signal (SSS) sekvence.

    d_SSS(n) = [1 - 2 x0((n + m0) mod 127)] [1 - 2 x1((n + m1) mod 127)]
    m0 = 15 floor(N_ID_1 / 112) + 5 N_ID_2,  m1 = N_ID_1 mod 112
    """

    @staticmethod
    @lru_cache(maxsize=None)
    def _bases() -> tuple[np.ndarray, np.ndarray]:
        return _m_sequence((4, 0)), _m_sequence((1, 0))

    @staticmethod
    def generate(n_id_1: int, n_id_2: int) -> np.ndarray:
        if not 0 <= n_id_1 < 336:
            raise ValueError("n_id_1 mora biti u opsegu 0..335.")
        if n_id_2 not in (0, 1, 2):
            raise ValueError("n_id_2 mora biti 0, 1 ili 2.")

        x0, x1 = SSSGenerator._bases()
        m0 = 15 * (n_id_1 // 112) + 5 * n_id_2
        m1 = n_id_1 % 112
        n = np.arange(SSS_LEN)
        return (1.0 - 2.0 * x0[(n + m0) % SSS_LEN]) * (1.0 - 2.0 * x1[(n + m1) % SSS_LEN])

    @staticmethod
    @lru_cache(maxsize=None)
    def candidates(n_id_2: int) -> np.ndarray:
        """Matrica (336, 127) svih SSS sekvenci za dati N_ID_2."""
        return np.vstack([SSSGenerator.generate(n1, n_id_2) for n1 in range(336)])


@lru_cache(maxsize=64)
def gold_sequence(c_init: int, length: int) -> np.ndarray:
    """
    Pseudo-slučajna (Gold) sekvenca c(n), TS 38.211 5.2.1.

    Parameters
    ----------
    c_init : int
        Inicijalizacija druge m-sekvence x2 (31 bit).
    length : int
        Broj traženih bita.

    Returns
    -------
    np.ndarray (uint8)
        Bitovi c(0..length-1).
    """
    if length < 0:
        raise ValueError("length ne može biti negativan.")
    if not 0 <= c_init < (1 << 31):
        raise ValueError("c_init mora stati u 31 bit.")

    nc = 1600
    total = length + nc
    x1 = np.zeros(total + 31, dtype=np.uint8)
    x2 = np.zeros(total + 31, dtype=np.uint8)
    x1[0] = 1
    x2[:31] = [(c_init >> i) & 1 for i in range(31)]
    for n in range(total):
        x1[n + 31] = x1[n + 3] ^ x1[n]
        x2[n + 31] = x2[n + 3] ^ x2[n + 2] ^ x2[n + 1] ^ x2[n]

    c = x1[nc:nc + length] ^ x2[nc:nc + length]
    c.flags.writeable = False
    return c


def pbch_dmrs(n_id: int, ibar_ssb: int) -> np.ndarray:
    """
    PBCH DMRS sekvenca r(m), m = 0..143 (TS 38.211 7.4.1.4.1).

    c_init = 2^11 (ibar + 1)(floor(N_ID / 4) + 1) + 2^6 (ibar + 1) + (N_ID mod 4)
    """
    if not 0 <= n_id < 1008:
        raise ValueError("n_id mora biti u opsegu 0..1007.")
    if not 0 <= ibar_ssb < 8:
        raise ValueError("ibar_ssb mora biti u opsegu 0..7.")

    c_init = (1 << 11) * (ibar_ssb + 1) * (n_id // 4 + 1) + (1 << 6) * (ibar_ssb + 1) + (n_id % 4)
    c = gold_sequence(c_init, 2 * 144).astype(np.float64)
    return ((1.0 - 2.0 * c[0::2]) + 1j * (1.0 - 2.0 * c[1::2])) / np.sqrt(2.0)


def pbch_scrambling_sequence(n_id: int, ibar_ssb: int, n_bits: int = 864, l_max: int = 4) -> np.ndarray:
    """
    Sekvenca za PBCH skremblovanje (TS 38.211 7.3.3.1).

    Koristi se c(n + v * M_bit) sa c_init = N_ID, gdje je v = ibar mod 4
    (L_max = 4) ili ibar mod 8 (L_max = 8).
    """
    if not 0 <= n_id < 1008:
        raise ValueError("n_id mora biti u opsegu 0..1007.")
    v = ibar_ssb % (4 if l_max == 4 else 8)
    c = gold_sequence(n_id, (v + 1) * n_bits)
    return c[v * n_bits:(v + 1) * n_bits]
