from typing import Optional

import numpy as np


class AWGNChannel:
    """
    Aditivni bijeli Gaussov šum za kompleksni bazni signal.

        y[k] = x[k] + n[k],   sigma^2 po komponenti = P_noise / 2

    SNR je definisan u odnosu na snagu signala. Kod SSB talasnih oblika
    signal je isprekidan (SSB svakih 5-20 ms), pa se snaga može zadati
    eksplicitno umjesto da se procjenjuje iz cijelog niza.

    Parametri
    ---------
    snr_db : float
        Ciljani SNR u dB.
    seed : int, optional
        Sjeme za `np.random.default_rng` (ponovljive simulacije).
    """

    def __init__(self, snr_db: float, seed: Optional[int] = None) -> None:
        if not np.isfinite(snr_db):
            raise ValueError("snr_db mora biti konačan broj.")
        self.snr_db = float(snr_db)
        self._rng = np.random.default_rng(seed)

    def noise_std(self, signal_power: float) -> float:
        """Standardna devijacija šuma po komponenti za zadanu snagu signala."""
        if signal_power <= 0.0 or not np.isfinite(signal_power):
            raise ValueError("Snaga signala je nula ili neispravna; SNR nije definisan.")
        power_noise = signal_power / 10.0 ** (self.snr_db / 10.0)
        return float(np.sqrt(power_noise / 2.0))

    def apply(self, samples: np.ndarray, signal_power: Optional[float] = None) -> np.ndarray:
        """
        Dodaje šum.

        Parametri
        ---------
        samples : np.ndarray
            Kompleksni signal bilo kojeg oblika.
        signal_power : float, optional
            Referentna snaga signala; default je srednja snaga `samples`.

        Povratna vrijednost
        -------------------
        np.ndarray
            Signal sa šumom (complex128).
        """
        x = np.asarray(samples)
        if not np.iscomplexobj(x):
            raise ValueError("samples mora biti kompleksnog tipa.")

        if signal_power is None:
            signal_power = float(np.mean(np.abs(x) ** 2))
        sigma = self.noise_std(signal_power)

        noise = self._rng.standard_normal(x.shape) + 1j * self._rng.standard_normal(x.shape)
        return x.astype(np.complex128) + sigma * noise
