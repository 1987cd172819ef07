import logging

import numpy as np

from nr_receiver.fixed_point import max_amplitude

logger = logging.getLogger(__name__)


def quantize_waveform(samples, width=16, peak_fraction=0.8):
    """
    Pretvara float talasni oblik u cjelobrojne IQ uzorke (ADC model).

    Signal se skalira tako da najveća komponenta bude `peak_fraction`
    punog opsega, zatim se zaokružuje na cijeli broj.

    Parametri
    ---------
    samples : np.ndarray
        Kompleksni float signal.
    width : int
        Širina komponente u bitima.
    peak_fraction : float
        Udio punog opsega za najveću komponentu, 0 < peak_fraction <= 1.

    Povratna vrijednost
    -------------------
    np.ndarray
        Cjelobrojne vrijednosti u complex128 nizu.
    """
    if not 0.0 < peak_fraction <= 1.0:
        raise ValueError("peak_fraction mora biti u (0, 1].")

    x = np.asarray(samples, dtype=np.complex128)
    peak = max(float(np.max(np.abs(x.real), initial=0.0)), float(np.max(np.abs(x.imag), initial=0.0)))
    if peak == 0.0:
        return np.zeros_like(x)

    scale = peak_fraction * max_amplitude(width) / peak
    logger.debug("Kvantizacija: %d bita, skala %.3g", width, scale)
    y = x * scale
    return np.round(y.real) + 1j * np.round(y.imag)
