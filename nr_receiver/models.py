"""
models.py
=========

Strukture podataka koje teku kroz prijemni lanac.

Događaji (`DetectionEvent`, `CellIdEvent`, `CfoEvent`, `IbarEvent`) su
ekvivalent jednotaktnih impulsa hardvera: nose vrijednost i indeks uzorka
(FFT sample rate) na kojem su nastali.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Optional

import numpy as np

from nr_receiver.fixed_point import BlockFloat


class PayloadType(IntEnum):
    """Oznaka sadržaja LLR toka."""
    OTHER = 0
    PBCH = 1


class TrackerState(IntEnum):
    IDLE = 0
    ACQUIRING = 1
    TRACKING = 2


@dataclass(frozen=True)
class CorrelationResult:
    """Rezultat PSS korelacije za jedan uzorak i jednu sekvencu."""
    sequence_index: int
    sample_offset: int
    energy: float
    value: complex


@dataclass(frozen=True)
class CfoEstimate:
    """
    Procjena frekvencijskog ofseta.

    Attributes
    ----------
    coarse_hz : float
        Procjena iz faze između dvije polovine PSS korelacije.
    fine_hz : float | None
        Rezultat gruba + fina procjena (None u režimu samo grube procjene).
    """
    coarse_hz: float
    fine_hz: Optional[float] = None

    @property
    def cfo_hz(self) -> float:
        return self.fine_hz if self.fine_hz is not None else self.coarse_hz


@dataclass(frozen=True)
class DetectionEvent:
    """
    Jedna uspješna PSS detekcija.

    Attributes
    ----------
    n_id_2 : int
        Indeks detektovane PSS sekvence.
    sample_offset : int
        Posljednji uzorak korisnog dijela PSS simbola (FFT sample rate).
    available_at : int
        Uzorak (FFT sample rate) od kojeg je detekcija poznata.
    energy : float
        Energija korelacije u vrhu.
    cfo : CfoEstimate
        Procjena CFO-a iz vrha.
    detector_offset : int
        Indeks vrha u uzorcima detektora (1.92 MHz).
    cycle : int | None
        Takt u kojem je korelator predao uzorak odluke (zavisi od mult_reuse).
    """
    n_id_2: int
    sample_offset: int
    available_at: int
    energy: float
    cfo: CfoEstimate
    detector_offset: int
    cycle: Optional[int] = None

    @property
    def estimated_cfo_hz(self) -> float:
        return self.cfo.cfo_hz


@dataclass(frozen=True)
class CellIdentity:
    """Fizički identitet ćelije: N_ID = 3 N_ID_1 + N_ID_2."""
    n_id_1: int
    n_id_2: int

    def __post_init__(self) -> None:
        if not 0 <= self.n_id_1 <= 335:
            raise ValueError("n_id_1 mora biti u opsegu 0..335.")
        if self.n_id_2 not in (0, 1, 2):
            raise ValueError("n_id_2 mora biti 0, 1 ili 2.")

    @property
    def n_id(self) -> int:
        return 3 * self.n_id_1 + self.n_id_2


@dataclass(frozen=True)
class CellIdEvent:
    identity: CellIdentity
    sample_offset: int
    metric_ratio: float


@dataclass(frozen=True)
class CfoEvent:
    cfo_hz: float
    sample_offset: int


@dataclass(frozen=True)
class IbarEvent:
    ibar_ssb: int
    sample_offset: int


@dataclass(frozen=True)
class SymbolWindow:
    """
    FFT prozor jednog OFDM simbola koji je izdvojio timing tracker.

    Attributes
    ----------
    samples : np.ndarray
        FFT_LEN uzoraka (cjelobrojni kompleksni).
    timestamp : int
        Indeks prvog uzorka CP-a (brojač uzoraka).
    window_start : int
        Indeks prvog uzorka FFT prozora.
    cp_len : int
        Dužina CP-a simbola.
    cp_advance : int
        Pomak početka prozora od početka CP-a.
    symbol_in_slot : int
        Indeks simbola u slotu (0..13).
    ssb_symbol : int | None
        Indeks l unutar SSB-a (1, 2, 3) ili None.
    """
    samples: np.ndarray
    timestamp: int
    window_start: int
    cp_len: int
    cp_advance: int
    symbol_in_slot: int
    ssb_symbol: Optional[int] = None


@dataclass(frozen=True)
class OFDMSymbol:
    """Demodulisani OFDM simbol u frekvencijskom domenu (fftshift poredak)."""
    subcarriers: BlockFloat
    timestamp: int
    symbol_in_slot: int
    ssb_symbol: Optional[int] = None

    @property
    def exponent(self) -> int:
        return self.subcarriers.exponent


@dataclass(frozen=True)
class ChannelEstimate:
    """
    Procjena kanala za jedan SSB.

    Attributes
    ----------
    gains : Dict[int, BlockFloat]
        Koeficijenti kanala za 240 SSB podnosioca, po SSB simbolu (1, 2, 3).
    ibar_ssb : int
        Indeks SSB-a izabran preko DMRS korelacije.
    residual_cfo_hz : float
        Preostali CFO procijenjen iz rotacije DMRS-a između simbola 1 i 3.
    """
    gains: Dict[int, BlockFloat]
    ibar_ssb: int
    residual_cfo_hz: float = 0.0


@dataclass(frozen=True)
class LLRBlock:
    """LLR vrijednosti jednog SSB-a sa oznakom sadržaja."""
    values: np.ndarray
    payload_type: PayloadType
    sample_offset: int

    def __len__(self) -> int:
        return int(self.values.size)


@dataclass(frozen=True)
class ResourceGridFrame:
    """
    Jedan okvir resource-grid toka (jedan OFDM simbol BWP-a).

    Attributes
    ----------
    symbol_in_slot : int
        Indeks simbola u slotu.
    exponent : int
        Blok eksponent payload-a (vrijednost = mantisa / 2**exponent).
    timestamp : int
        Vremenska oznaka početka CP-a (64 bita).
    payload : np.ndarray
        n_prb * 12 cjelobrojnih kompleksnih mantisa.
    """
    symbol_in_slot: int
    exponent: int
    timestamp: int
    payload: np.ndarray

    def __len__(self) -> int:
        return int(self.payload.size)


@dataclass
class SyncContext:
    """
    Jedini aktivni sinhronizacioni kontekst prijemnika.

    Objekat se prosljeđuje stanicama eksplicitno; novi kontekst zamjenjuje
    stari atomski (na granici simbola).
    """
    n_id_2: Optional[int] = None
    pss_end: Optional[int] = None
    peak_energy: float = 0.0
    cfo_hz: float = 0.0
    residual_cfo_hz: float = 0.0
    identity: Optional[CellIdentity] = None
    ibar_ssb: Optional[int] = None
    channel_estimate: Optional[ChannelEstimate] = None
    ssb_count: int = 0
    ssb_symbols: Dict[int, OFDMSymbol] = field(default_factory=dict)
    ssb_identity: Optional[CellIdentity] = None

    def open_ssb(self) -> None:
        """Otvara novi SSB: kanal se računa samo ako je identitet već poznat."""
        self.ssb_symbols = {}
        self.ssb_identity = self.identity
        self.channel_estimate = None

    def close_ssb(self) -> None:
        self.ssb_symbols = {}
        self.ssb_count += 1
