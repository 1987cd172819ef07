import logging

import numpy as np

from nr_receiver.fixed_point import (
    BlockFloat,
    max_amplitude,
    quantize_complex,
    truncate_shift,
)
from nr_receiver.models import OFDMSymbol, SymbolWindow

logger = logging.getLogger(__name__)


def _peak_component(x):
    if x.size == 0:
        return 0.0
    return max(float(np.max(np.abs(x.real))), float(np.max(np.abs(x.imag))))


class FixedPointFFT:
    """
    Radix-2 FFT sa decimacijom u vremenu, u fiksnom zarezu.

    Ulaz se permutuje u bit-reversed poredak, pa je izlaz u prirodnom
    poretku. Nakon svakog množenja twiddle faktorom proizvod se odsijeca
    (floor). Ako izlaz stepena pređe radnu širinu, blok se pomjera udesno
    za jedan bit i broji se jedno skaliranje (dinamičko blok skaliranje).

    Parametri
    ----------
    fft_len : int
        Dužina FFT-a (stepen dvojke).
    work_width : int
        Radna širina komponente unutar stepena.
    out_width : int
        Širina komponente izlaza.
    twiddle_width : int
        Širina komponente twiddle faktora.
    """

    def __init__(self, fft_len, work_width=20, out_width=16, twiddle_width=16):
        if fft_len < 2 or fft_len & (fft_len - 1):
            raise ValueError("fft_len mora biti stepen dvojke.")
        if out_width > work_width:
            raise ValueError("out_width ne može biti veći od work_width.")

        self.fft_len = int(fft_len)
        self.work_width = int(work_width)
        self.out_width = int(out_width)
        self.twiddle_width = int(twiddle_width)
        self.n_stages = self.fft_len.bit_length() - 1

        bits = self.n_stages
        idx = np.arange(self.fft_len)
        rev = np.zeros(self.fft_len, dtype=np.int64)
        for b in range(bits):
            rev |= ((idx >> b) & 1) << (bits - 1 - b)
        self.bit_reversed = rev

        k = np.arange(self.fft_len // 2)
        self.twiddles = quantize_complex(np.exp(-2j * np.pi * k / self.fft_len), self.twiddle_width)

    def transform(self, x):
        """
        Parametri
        ----------
        x : numpy.ndarray
            fft_len cjelobrojnih kompleksnih uzoraka.

        Povratna vrijednost
        -------------------
        (mantissa, shifts) : (numpy.ndarray, int)
            Izlaz u prirodnom poretku i ukupan broj pomaka udesno.
            Prava vrijednost DFT-a je ``mantissa * 2**shifts``.
        """
        x = np.asarray(x, dtype=np.complex128)
        if x.size != self.fft_len:
            raise ValueError(f"Ulaz mora imati {self.fft_len} uzoraka.")

        work_lim = max_amplitude(self.work_width)
        tw_shift = self.twiddle_width - 1
        shifts = 0

        y = x[self.bit_reversed]
        half = 1
        while half < self.fft_len:
            groups = self.fft_len // (2 * half)
            tw = self.twiddles[np.arange(half) * groups]

            y = y.reshape(groups, 2, half)
            a = y[:, 0, :]
            b = truncate_shift(y[:, 1, :] * tw, tw_shift)
            y = np.concatenate((a + b, a - b), axis=1).reshape(self.fft_len)

            while _peak_component(y) > work_lim:
                y = truncate_shift(y, 1)
                shifts += 1
            half *= 2

        out_lim = max_amplitude(self.out_width)
        while _peak_component(y) > out_lim:
            y = truncate_shift(y, 1)
            shifts += 1
        return y, shifts


class OFDMDemodulator:
    """
    OFDM demodulator za jedan FFT prozor.

    Obavlja:
    - odsijecanje ulaza sa in_width na fft_in_width bita
    - FFT u fiksnom zarezu
    - fftshift (DC u sredini)
    - korekciju faze zbog ranijeg početka prozora (CP advance)

    Ako FFT prozor počinje a = cp_len - cp_advance uzoraka prije kraja CP-a,
    podnosilac k je zarotiran za exp(-j 2 pi a k / N). Korekcija za
    podnosilac na poziciji i (fftshift poredak, k = i - N/2) je

        exp(j (2 pi a i / N + pi a))

    Parametri
    ----------
    fft : FixedPointFFT
        FFT jezgro.
    in_width : int
        Širina komponente ulaznih uzoraka.
    fft_in_width : int ili None
        Širina na koju se ulaz odsijeca prije FFT-a (None = bez odsijecanja).
    """

    def __init__(self, fft, in_width=16, fft_in_width=None):
        self.fft = fft
        self.fft_len = fft.fft_len
        self.in_width = int(in_width)
        self.fft_in_width = int(fft_in_width) if fft_in_width is not None else self.in_width
        self.in_shift = self.in_width - self.fft_in_width
        self._corrections = {}

    @classmethod
    def from_config(cls, config):
        fft = FixedPointFFT(config.fft_len, config.fft_work_width,
                            config.fft_out_width, config.twiddle_width)
        return cls(fft, config.in_width, config.fft_in_width)

    # ==============================================================
    # KOREKCIJA FAZE
    # ==============================================================

    def phase_correction(self, advance_gap):
        """
        Kvantizovani vektor korekcije faze za `advance_gap` uzoraka
        (keširan po vrijednosti).
        """
        if advance_gap not in self._corrections:
            n = self.fft_len
            i = np.arange(n)
            rot = np.exp(1j * (2.0 * np.pi * advance_gap * i / n + np.pi * advance_gap))
            self._corrections[advance_gap] = quantize_complex(rot, self.fft.twiddle_width)
        return self._corrections[advance_gap]

    # ==============================================================
    # DEMODULACIJA
    # ==============================================================

    def demodulate(self, window):
        """
        Demodulira jedan SymbolWindow.

        Parametri
        ----------
        window : SymbolWindow
            FFT prozor koji je izdvojio timing tracker.

        Povratna vrijednost
        -------------------
        OFDMSymbol
            Podnosioci u fftshift poretku kao BlockFloat
            (exponent = -(shifts + in_shift), odsijecanje ulaza je uračunato).
        """
        x = truncate_shift(np.asarray(window.samples, dtype=np.complex128), self.in_shift)
        y, shifts = self.fft.transform(x)
        y = np.fft.fftshift(y)

        gap = window.cp_len - window.cp_advance
        if gap:
            y = truncate_shift(y * self.phase_correction(gap), self.fft.twiddle_width - 1)
            # rotacija može povećati komponentu do sqrt(2) puta
            if _peak_component(y) > max_amplitude(self.fft.out_width):
                y = truncate_shift(y, 1)
                shifts += 1

        logger.debug("FFT: simbol %d (ts=%d), %d pomaka",
                     window.symbol_in_slot, window.timestamp, shifts)
        return OFDMSymbol(
            subcarriers=BlockFloat(mantissa=y, exponent=-(shifts + self.in_shift)),
            timestamp=window.timestamp,
            symbol_in_slot=window.symbol_in_slot,
            ssb_symbol=window.ssb_symbol,
        )
