import numpy as np


class FrequencyOffset:
    """
    Frekvencijski ofset (CFO) nad kompleksnim baznim signalom.

    Model:

        r[n] = s[n] * exp( j * (2*pi*Δf * n / f_s + φ0) )

    Indeks n se nastavlja kroz uzastopne pozive `apply`, pa se signal
    podijeljen u komade ponaša kao jedan neprekidan tok. Ovo je bitno za
    prijemnik koji obrađuje tok u komadima proizvoljne dužine.

    Parameters
    ----------
    freq_offset_hz : float
        Δf u Hz. Za NR sa 15 kHz razmakom podnosilaca i PSS korelacijom na
        1.92 MHz, gruba procjena je nedvosmislena do ±f_s/L = ±15 kHz
        (L = 128, vidi `CFOEstimator.max_cfo_hz`).
    sample_rate_hz : float
        f_s u Hz (npr. 3.84e6 za FFT 256).
    initial_phase_rad : float, optional
        Početna faza φ0.
    """

    def __init__(self, freq_offset_hz: float, sample_rate_hz: float,
                 initial_phase_rad: float = 0.0) -> None:
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz mora biti pozitivan.")
        self.freq_offset_hz = float(freq_offset_hz)
        self.sample_rate_hz = float(sample_rate_hz)
        self.initial_phase_rad = float(initial_phase_rad)
        self._sample_index = 0

    def reset(self) -> None:
        self._sample_index = 0

    def apply(self, samples: np.ndarray) -> np.ndarray:
        """
        Rotira uzorke; vremenska osa je posljednja dimenzija.

        Raises
        ------
        ValueError
            Ako ulaz nije barem 1D kompleksni niz.
        """
        x = np.asarray(samples)
        if x.ndim < 1:
            raise ValueError("samples mora biti barem 1D NumPy niz.")
        if not np.iscomplexobj(x):
            raise ValueError("samples mora biti kompleksnog tipa.")

        n = self._sample_index + np.arange(x.shape[-1], dtype=np.float64)
        self._sample_index += x.shape[-1]
        phase = 2.0 * np.pi * self.freq_offset_hz * n / self.sample_rate_hz + self.initial_phase_rad
        return x * np.exp(1j * phase)
