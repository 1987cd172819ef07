# nr_receiver/fixed_point.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from nr_receiver.errors import InputOverflowError


def max_amplitude(width: int) -> int:
    """Najveća pozitivna vrijednost za signed broj širine `width` bita."""
    return (1 << (int(width) - 1)) - 1


def truncate_shift(x: np.ndarray, shift: int) -> np.ndarray:
    """
    Aritmetički pomak udesno (floor) za realni ili kompleksni niz.

    Hardver odbacuje niže bitove (truncate), pa je rezultat uvijek
    zaokružen prema -inf. Ovo je namjerna sistematska greška koju kasnije
    skaliranje uzima u obzir.

    Parameters
    ----------
    x : np.ndarray
        Cjelobrojne vrijednosti (int, float ili complex dtype).
    shift : int
        Broj bita; 0 ne mijenja ulaz, negativna vrijednost množi sa 2**-shift.

    Returns
    -------
    np.ndarray
        Niz istog oblika i tipa kao ulaz.
    """
    x = np.asarray(x)
    if shift == 0:
        return x
    if shift < 0:
        return x * float(1 << -shift)

    scale = float(1 << shift)
    if np.iscomplexobj(x):
        return np.floor(x.real / scale) + 1j * np.floor(x.imag / scale)
    return np.floor(x / scale)


def saturate(x: np.ndarray, width: int) -> np.ndarray:
    """Ograničava realni niz na signed opseg širine `width`."""
    lim = max_amplitude(width)
    return np.clip(x, -lim, lim)


def quantize_complex(x: np.ndarray, width: int) -> np.ndarray:
    """
    Kvantizira kompleksne koeficijente (npr. twiddle faktore ili tapove)
    na signed širinu `width`, zaokruživanjem na najbliži cijeli broj.

    Koeficijenti se računaju jednom (ROM tabela), pa se za njih koristi
    zaokruživanje; truncate važi samo za podatke u toku.
    """
    scale = max_amplitude(width)
    x = np.asarray(x, dtype=np.complex128) * scale
    return np.round(x.real) + 1j * np.round(x.imag)


def check_range(x: np.ndarray, width: int) -> None:
    """
    Provjerava da nijedna komponenta ne izlazi iz signed opsega.

    Raises
    ------
    InputOverflowError
        Ako je |re| ili |im| veće od 2**(width-1) - 1.
    """
    x = np.asarray(x)
    lim = max_amplitude(width)
    if np.iscomplexobj(x):
        peak = max(float(np.max(np.abs(x.real), initial=0.0)),
                   float(np.max(np.abs(x.imag), initial=0.0)))
    else:
        peak = float(np.max(np.abs(x), initial=0.0))
    if peak > lim:
        raise InputOverflowError(
            f"Uzorak amplitude {peak:.0f} prelazi opseg {width}-bitnog formata (max {lim})."
        )


def to_twos_complement(value: int, width: int) -> int:
    """Pakuje signed cijeli broj u neoznačenu riječ širine `width`."""
    return int(value) & ((1 << width) - 1)


def from_twos_complement(word: int, width: int) -> int:
    """Raspakuje neoznačenu riječ širine `width` u signed cijeli broj."""
    word = int(word) & ((1 << width) - 1)
    if word & (1 << (width - 1)):
        word -= 1 << width
    return word


def pack_iq(sample: complex, width: int) -> int:
    """Pakuje kompleksni uzorak u riječ: imag u gornjoj, real u donjoj polovini."""
    re = to_twos_complement(int(np.real(sample)), width)
    im = to_twos_complement(int(np.imag(sample)), width)
    return (im << width) | re


def unpack_iq(word: int, width: int) -> complex:
    """Inverz od `pack_iq`."""
    re = from_twos_complement(word, width)
    im = from_twos_complement(int(word) >> width, width)
    return complex(re, im)


@dataclass
class BlockFloat:
    """
    Blok s pomičnim zarezom: cjelobrojne mantise sa zajedničkim eksponentom.

    Stvarna vrijednost je ``mantissa / 2**exponent``. Blokovi se ne
    reskaliraju implicitno; `to_float()` se poziva tek kada se vrijednosti
    iz različitih blokova porede ili kombinuju.

    Attributes
    ----------
    mantissa : np.ndarray
        Cjelobrojne (integer-valued) vrijednosti, realne ili kompleksne.
    exponent : int
        Zajednički eksponent bloka.
    """
    mantissa: np.ndarray
    exponent: int

    def to_float(self) -> np.ndarray:
        return np.asarray(self.mantissa) / float(2.0 ** self.exponent)

    def __len__(self) -> int:
        return int(np.asarray(self.mantissa).size)

    @classmethod
    def from_float(cls, x: np.ndarray, width: int, exponent: Optional[int] = None) -> "BlockFloat":
        """
        Kvantizira realne vrijednosti u blok sa `width`-bitnim mantisama.

        Ako eksponent nije zadan, bira se najveći eksponent za koji sve
        komponente staju u opseg (maksimalna iskorištenost dinamike).
        Mantise se dobijaju odsijecanjem (floor).
        """
        x = np.asarray(x)
        lim = max_amplitude(width)
        if exponent is None:
            if np.iscomplexobj(x):
                peak = max(float(np.max(np.abs(x.real), initial=0.0)),
                           float(np.max(np.abs(x.imag), initial=0.0)))
            else:
                peak = float(np.max(np.abs(x), initial=0.0))
            if peak == 0.0:
                exponent = 0
            else:
                exponent = int(np.floor(np.log2(lim / peak)))

        scaled = x * float(2.0 ** exponent)
        if np.iscomplexobj(scaled):
            mant = np.clip(np.floor(scaled.real), -lim, lim) + 1j * np.clip(np.floor(scaled.imag), -lim, lim)
        else:
            mant = np.clip(np.floor(scaled), -lim, lim)
        return cls(mantissa=mant, exponent=int(exponent))
