import logging

import numpy as np

from nr_receiver.config import DEMAP_MODES
from nr_receiver.fixed_point import BlockFloat, max_amplitude, saturate
from nr_receiver.models import LLRBlock, PayloadType

logger = logging.getLogger(__name__)


class QPSKDemapper:
    """
    QPSK demapper (LLR generator).

    Inverzni korak QPSK mapiranja iz TS 38.211 5.1.3:
        d = ((1 - 2 b0) + j (1 - 2 b1)) / sqrt(2)

    Pozitivan LLR znači bit 0, negativan bit 1.

    Režimi:
        "hard": LLR = +max ako je komponenta > 0, inače -max
        "soft": LLR = komponenta skalirana tako da 1/sqrt(2) daje pola
                opsega, zatim odsijecanje i saturacija na llr_width bita
    """

    def __init__(self, mode="soft", llr_width=8):
        """
        Parametri
        ----------
        mode : str
            "hard" ili "soft".
        llr_width : int
            Širina LLR vrijednosti u bitima (signed).
        """
        if mode not in DEMAP_MODES:
            raise ValueError(f"mode mora biti jedno od {DEMAP_MODES}")
        if llr_width < 2:
            raise ValueError("llr_width mora biti barem 2")

        self.mode = mode
        self.llr_width = int(llr_width)
        self.llr_max = max_amplitude(self.llr_width)
        # komponenta idealnog QPSK simbola (1/sqrt(2)) daje pola opsega
        self.scale = (self.llr_max / 2.0) * np.sqrt(2.0)

    # ==============================================================
    # HARD ODLUKA
    # ==============================================================

    def demap_bits(self, symbols):
        """
        Demapira QPSK simbole u bitove (hard decision).

        Parametri
        ----------
        symbols : numpy.ndarray of complex
            Ekvalizovani QPSK simboli.

        Povrat
        -------
        bits : numpy.ndarray of uint8
            Bitovi (0/1), dužine 2 * broj_simbola.
        """
        symbols = np.asarray(symbols, dtype=np.complex128)

        # bit = 1 ako je komponenta <= 0
        bits = np.empty(2 * symbols.size, dtype=np.uint8)
        bits[0::2] = (symbols.real <= 0).astype(np.uint8)
        bits[1::2] = (symbols.imag <= 0).astype(np.uint8)
        return bits

    # ==============================================================
    # LLR
    # ==============================================================

    def demap(self, symbols):
        """
        Računa LLR vrijednosti za QPSK simbole.

        Parametri
        ----------
        symbols : BlockFloat ili numpy.ndarray of complex
            Ekvalizovani simboli; BlockFloat se prvo svodi na prave vrijednosti.

        Povrat
        -------
        llr : numpy.ndarray of int16
            LLR vrijednosti, dužine 2 * broj_simbola, u opsegu +-(2**(llr_width-1) - 1).
        """
        if isinstance(symbols, BlockFloat):
            symbols = symbols.to_float()
        symbols = np.asarray(symbols, dtype=np.complex128)

        comp = np.empty(2 * symbols.size, dtype=np.float64)
        comp[0::2] = symbols.real
        comp[1::2] = symbols.imag

        if self.mode == "hard":
            llr = np.where(comp > 0, self.llr_max, -self.llr_max)
        else:
            llr = saturate(np.floor(comp * self.scale), self.llr_width)
        return llr.astype(np.int16)

    def demap_block(self, symbols, payload_type=PayloadType.PBCH, sample_offset=0):
        """Kao `demap`, ali vraća LLRBlock sa oznakom sadržaja."""
        llr = self.demap(symbols)
        saturated = int(np.count_nonzero(np.abs(llr) == self.llr_max))
        logger.debug("Demapper: %d LLR, %d saturisanih", llr.size, saturated)
        return LLRBlock(values=llr, payload_type=PayloadType(payload_type), sample_offset=int(sample_offset))
