"""
config.py
=========

Konfiguracija prijemnog lanca (NR cell search + PBCH demodulacija).

Svi parametri su skupljeni u jednu nepromjenjivu (frozen) dataclass
strukturu. Izvedene veličine (FFT dužina, CP dužine, sample rate...) su
dostupne kao property-ji, tako da ih svaki blok računa na isti način.

Numerologija prati 15 kHz razmak podnosioca:

* ``FFT_LEN = 2**nfft`` (256 ili 512), ``fs = 15 kHz * FFT_LEN``
* CP1 = 20 * FFT_LEN / 256 (simboli 0 i 7 u slotu), CP2 = 18 * FFT_LEN / 256
* PSS korelacija radi na 1.92 MHz sa 128 tapova
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

SUBCARRIER_SPACING_HZ = 15_000
SYMBOLS_PER_SLOT = 14
SUBCARRIERS_PER_PRB = 12

PSS_LEN = 128
PSS_SAMPLE_RATE_HZ = 1_920_000
SSS_LEN = 127
SSB_SUBCARRIERS = 240
PBCH_DATA_RE = 432
PBCH_LLR_PER_SSB = 2 * PBCH_DATA_RE

# Podrazumijevani broj PRB-ova BWP-a po FFT veličini
_DEFAULT_N_PRB = {8: 20, 9: 25}

CP_ADVANCE_MODES = ("full", "half")
DEMAP_MODES = ("hard", "soft")
OVERFLOW_POLICIES = ("hold", "drop")


@dataclass(frozen=True)
class ReceiverConfig:
    """
    Parametri prijemnika.

    Parameters
    ----------
    nfft : int
        log2 FFT dužine (8 → 256, 9 → 512).
    input_sample_rate_hz : float | None
        Sample rate ulaznog toka. None znači da ulaz već dolazi na FFT rate-u.
    in_width : int
        Širina jedne komponente (I ili Q) ulaznog uzorka u bitima.
    clocks_per_sample : int
        Broj taktova po ulaznom uzorku kada `valid` maska nije zadana.
    tap_width, corr_width : int
        Širina PSS tapova i izlaza korelatora (po komponenti).
    window_len : int
        Dužina prozora za lokalni prosjek energije u detektoru vrha.
    threshold_shift : int
        Prag detekcije je ``2**threshold_shift`` puta lokalni prosjek.
    hits_required : int
        Broj uzastopnih prekoračenja praga prije nego se traži vrh.
    search_len : int
        Broj uzoraka nakon aktiviranja u kojima se traži najveći vrh.
    holdoff : int | None
        Debounce u uzorcima detektora (None → dužina PSS simbola sa CP-om).
    mult_reuse : int
        Broj taktova po uzorku koje korelator troši (0 ili 1 = puna paralelnost).
    hold_depth : int
        Dubina ulaznog bafera korelatora u multiplier-reuse režimu.
    overflow_policy : str
        "hold" (greška kad se bafer prepuni) ili "drop" (uzorak se mijenja nulom).
    initial_cfo_mode : int
        0 = samo gruba CFO procjena, 1 = gruba + fina.
    cp_advance : str
        "full" (FFT prozor odmah nakon CP-a) ili "half" (pola CP-a ranije).
    pss_symbol_index : int
        Indeks PSS simbola unutar slota od 14 simbola.
    ssb_period_ms : float
        Periodičnost SSB-a u milisekundama.
    expect_exact_timing : bool
        Ako je True, odstupanje vremenskih oznaka je fatalna greška.
    demap_mode : str
        "hard" ili "soft".
    """

    nfft: int = 8
    input_sample_rate_hz: Optional[float] = None
    in_width: int = 16
    clocks_per_sample: int = 1

    # PSS detektor
    tap_width: int = 16
    corr_width: int = 24
    window_len: int = 64
    threshold_shift: int = 4
    hits_required: int = 1
    search_len: int = 8
    holdoff: Optional[int] = None
    mult_reuse: int = 0
    hold_depth: int = 1
    overflow_policy: str = "hold"
    cic_stages: int = 2

    # CFO
    initial_cfo_mode: int = 1
    fine_segments: int = 8
    nco_phase_bits: int = 32
    nco_width: int = 16

    # vremenska sinhronizacija
    cp_advance: str = "half"
    pss_symbol_index: int = 2
    ssb_period_ms: float = 20.0
    fine_search: Optional[int] = None
    timing_tolerance: int = 8
    expect_exact_timing: bool = False

    # FFT
    fft_in_width: Optional[int] = None
    fft_work_width: int = 20
    fft_out_width: int = 16
    twiddle_width: int = 16

    # SSS / kanal / demaper
    sss_confidence_margin: float = 2.0
    sss_timing_tolerance: int = 2
    l_max: int = 4
    cest_out_width: int = 16
    demap_mode: str = "soft"
    llr_width: int = 8

    # izlaz
    n_prb: Optional[int] = None
    llr_fifo_depth: int = 8192
    rgs_fifo_depth: int = 4096

    cp_lengths: Tuple[int, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.nfft not in _DEFAULT_N_PRB:
            raise ValueError(f"Nepodržan nfft = {self.nfft} (dozvoljeno: 8, 9).")
        if self.cp_advance not in CP_ADVANCE_MODES:
            raise ValueError(f"cp_advance mora biti jedno od {CP_ADVANCE_MODES}.")
        if self.demap_mode not in DEMAP_MODES:
            raise ValueError(f"demap_mode mora biti jedno od {DEMAP_MODES}.")
        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(f"overflow_policy mora biti jedno od {OVERFLOW_POLICIES}.")
        if self.initial_cfo_mode not in (0, 1):
            raise ValueError("initial_cfo_mode mora biti 0 (gruba) ili 1 (gruba + fina).")
        if not 0 <= self.pss_symbol_index < SYMBOLS_PER_SLOT - 3:
            raise ValueError("pss_symbol_index mora ostaviti mjesta za 3 PBCH simbola u slotu.")
        if self.l_max not in (4, 8):
            raise ValueError("l_max mora biti 4 ili 8.")
        if self.ssb_period_ms <= 0:
            raise ValueError("ssb_period_ms mora biti pozitivan.")
        for name in ("in_width", "tap_width", "corr_width", "llr_width", "fft_out_width",
                     "twiddle_width", "cest_out_width", "window_len", "search_len",
                     "hits_required", "clocks_per_sample", "hold_depth", "fine_segments"):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"{name} mora biti pozitivan cijeli broj.")
        if self.mult_reuse < 0:
            raise ValueError("mult_reuse ne može biti negativan.")
        if self.fft_in_width is not None and self.fft_in_width > self.in_width:
            raise ValueError("fft_in_width ne može biti veći od in_width.")
        if self.input_sample_rate_hz is not None:
            ratio = self.input_sample_rate_hz / self.fft_sample_rate_hz
            if ratio < 1 or abs(ratio - round(ratio)) > 1e-9 or (int(round(ratio)) & (int(round(ratio)) - 1)):
                raise ValueError(
                    f"Ulazni sample rate {self.input_sample_rate_hz} nije 2^k * {self.fft_sample_rate_hz}."
                )

        cp1 = 20 * self.fft_len // 256
        cp2 = 18 * self.fft_len // 256
        cps = tuple(cp1 if sym in (0, 7) else cp2 for sym in range(SYMBOLS_PER_SLOT))
        object.__setattr__(self, "cp_lengths", cps)

    # ------------------------------------------------------------------
    # Izvedene veličine
    # ------------------------------------------------------------------
    @property
    def fft_len(self) -> int:
        return 1 << self.nfft

    @property
    def fft_sample_rate_hz(self) -> float:
        return float(SUBCARRIER_SPACING_HZ * self.fft_len)

    @property
    def ingest_decimation(self) -> int:
        if self.input_sample_rate_hz is None:
            return 1
        return int(round(self.input_sample_rate_hz / self.fft_sample_rate_hz))

    @property
    def pss_decimation(self) -> int:
        return self.fft_len // PSS_LEN

    @property
    def pss_sample_rate_hz(self) -> float:
        return self.fft_sample_rate_hz / self.pss_decimation

    @property
    def prb_count(self) -> int:
        return self.n_prb if self.n_prb is not None else _DEFAULT_N_PRB[self.nfft]

    @property
    def n_subcarriers(self) -> int:
        return self.prb_count * SUBCARRIERS_PER_PRB

    @property
    def symbol_deltas(self) -> Tuple[int, int]:
        """Dozvoljeni razmaci vremenskih oznaka susjednih simbola."""
        return (self.fft_len + min(self.cp_lengths), self.fft_len + max(self.cp_lengths))

    @property
    def samples_per_slot(self) -> int:
        return sum(self.cp_lengths) + SYMBOLS_PER_SLOT * self.fft_len

    @property
    def ssb_period_samples(self) -> int:
        return int(round(self.ssb_period_ms * 1e-3 * self.fft_sample_rate_hz))

    @property
    def holdoff_samples(self) -> int:
        if self.holdoff is not None:
            return int(self.holdoff)
        return PSS_LEN + 18 * PSS_LEN // 256

    @property
    def fine_search_samples(self) -> int:
        if self.fine_search is not None:
            return int(self.fine_search)
        return self.pss_decimation + 2

    @property
    def ssb_start(self) -> int:
        """Indeks prvog SSB podnosioca u fftshift poretku."""
        return self.fft_len // 2 - SSB_SUBCARRIERS // 2

    @property
    def sss_start(self) -> int:
        return self.fft_len // 2 - (SSS_LEN + 1) // 2

    def cp_advance_samples(self, cp_len: int) -> int:
        """Pozicija početka FFT prozora mjereno od početka CP-a."""
        return cp_len if self.cp_advance == "full" else cp_len // 2
