# tests/ssb_waveform.py
"""
Sintetički NR talasni oblik sa periodičnim SSB-om za testove prijemnika.

Svaki slot ima 14 OFDM simbola (CP1 na simbolima 0 i 7, CP2 na ostalim).
SSB počinje na simbolu `pss_symbol_index` slota `ssb_slot` svakog perioda:

    l = 0  PSS (podnosioci 56..182 SSB-a)
    l = 1  PBCH + DMRS (svih 240 podnosilaca)
    l = 2  SSS (56..182) + PBCH/DMRS na ivicama (0..47, 192..239)
    l = 3  PBCH + DMRS

Ostali simboli nose slučajni QPSK u BWP-u, nižeg nivoa (filler), tako da
detektor uvijek vidi signal i prosjek energije nije nula.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from nr_channel.awgn_channel import AWGNChannel
from nr_channel.frequency_offset import FrequencyOffset
from nr_channel.quantizer import quantize_waveform
from nr_receiver.NRRxChain import NRRxChain
from nr_receiver.channel_estimator import pbch_layout
from nr_receiver.config import PBCH_LLR_PER_SSB, SSB_SUBCARRIERS, SSS_LEN, SYMBOLS_PER_SLOT, ReceiverConfig
from nr_receiver.pbch import CRCChecker
from nr_receiver.sequences import PSSGenerator, SSSGenerator, pbch_dmrs, pbch_scrambling_sequence


@dataclass
class SSBWaveform:
    samples: np.ndarray
    pss_ends: List[int]
    n_id_1: int
    n_id_2: int
    ibar_ssb: int
    coded_bits: np.ndarray
    payload: Optional[np.ndarray]
    oversample: int

    @property
    def n_id(self) -> int:
        return 3 * self.n_id_1 + self.n_id_2


def qpsk(bits: np.ndarray) -> np.ndarray:
    bits = np.asarray(bits, dtype=np.float64)
    return ((1.0 - 2.0 * bits[0::2]) + 1j * (1.0 - 2.0 * bits[1::2])) / np.sqrt(2.0)


def ssb_grid(n_id_1: int, n_id_2: int, ibar_ssb: int, coded_bits: np.ndarray, l_max: int = 4) -> np.ndarray:
    """SSB resursi oblika (4, 240): l = 0..3, podnosioci 0..239."""
    n_id = 3 * n_id_1 + n_id_2
    grid = np.zeros((4, SSB_SUBCARRIERS), dtype=np.complex128)
    sss_k = np.arange(56, 56 + SSS_LEN)
    grid[0, sss_k] = PSSGenerator.generate(n_id_2)
    grid[2, sss_k] = SSSGenerator.generate(n_id_1, n_id_2)

    scrambled = np.bitwise_xor(coded_bits.astype(np.uint8),
                               pbch_scrambling_sequence(n_id, ibar_ssb, PBCH_LLR_PER_SSB, l_max))
    data = qpsk(scrambled)
    dmrs = pbch_dmrs(n_id, ibar_ssb)

    d_pos = 0
    r_pos = 0
    for l, (dmrs_k, data_k) in pbch_layout(n_id).items():
        grid[l, dmrs_k] = dmrs[r_pos:r_pos + dmrs_k.size]
        grid[l, data_k] = data[d_pos:d_pos + data_k.size]
        r_pos += dmrs_k.size
        d_pos += data_k.size
    return grid


def make_ssb_waveform(
    config: ReceiverConfig,
    *,
    n_id_1: int = 123,
    n_id_2: int = 1,
    ibar_ssb: int = 0,
    n_ssb: int = 4,
    ssb_slot: int = 1,
    skip: int = 1000,
    cfo_hz: float = 0.0,
    snr_db: Optional[float] = 30.0,
    oversample: int = 1,
    payload: Optional[np.ndarray] = None,
    filler_level: float = 0.3,
    seed: int = 0,
) -> SSBWaveform:
    """
    Generiše cjelobrojni talasni oblik sa `n_ssb` SSB-ova.

    Parametri
    ---------
    config : ReceiverConfig
        nfft, pss_symbol_index, ssb_period_ms i n_prb se uzimaju odavde.
    skip : int
        Broj uzoraka (na FFT rate-u) odsječenih sa početka, tako da SSB
        ne pada na okruglu poziciju.
    oversample : int
        Odnos ulaznog i FFT sample rate-a (IFFT dužine N * oversample).
    payload : np.ndarray, optional
        Ako je zadan, kodirani bitovi su payload + CRC24C ponovljen do 864
        bita; inače su slučajni.

    Povratna vrijednost
    -------------------
    SSBWaveform
        `pss_ends` su indeksi posljednjeg uzorka PSS simbola na ulaznom rate-u.
    """
    rng = np.random.default_rng(seed)
    n = config.fft_len * oversample
    center = n // 2
    cps = [cp * oversample for cp in config.cp_lengths]
    slot_len = sum(cps) + SYMBOLS_PER_SLOT * n
    slots_per_period = config.ssb_period_samples // config.samples_per_slot
    n_slots = n_ssb * slots_per_period + 1

    if payload is not None:
        protected = CRCChecker().attach(payload)
        coded = np.resize(protected, PBCH_LLR_PER_SSB).astype(np.uint8)
    else:
        coded = rng.integers(0, 2, PBCH_LLR_PER_SSB).astype(np.uint8)
    ssb = ssb_grid(n_id_1, n_id_2, ibar_ssb, coded, config.l_max)

    bwp = np.arange(center - config.n_subcarriers // 2, center + config.n_subcarriers // 2)
    ssb_k = np.arange(center - SSB_SUBCARRIERS // 2, center + SSB_SUBCARRIERS // 2)
    first = config.pss_symbol_index

    chunks = []
    pss_ends = []
    pos = 0
    for slot in range(n_slots):
        has_ssb = slot % slots_per_period == ssb_slot
        for sym in range(SYMBOLS_PER_SLOT):
            freq = np.zeros(n, dtype=np.complex128)
            bits = rng.integers(0, 2, 2 * bwp.size)
            freq[bwp] = filler_level * qpsk(bits)
            if has_ssb and first <= sym < first + 4:
                freq[ssb_k] = ssb[sym - first]
            time = np.fft.ifft(np.fft.ifftshift(freq)) * np.sqrt(n)
            cp = cps[sym]
            chunks.append(np.concatenate((time[-cp:], time)))
            pos += cp + n
            if has_ssb and sym == first:
                pss_ends.append(pos - 1)
    x = np.concatenate(chunks)
    assert x.size == n_slots * slot_len

    x = x[skip * oversample:]
    pss_ends = [p - skip * oversample for p in pss_ends]

    if cfo_hz:
        x = FrequencyOffset(cfo_hz, config.fft_sample_rate_hz * oversample).apply(x)
    if snr_db is not None:
        x = AWGNChannel(snr_db, seed=seed + 1).apply(x, signal_power=1.0)

    return SSBWaveform(
        samples=quantize_waveform(x, config.in_width, peak_fraction=0.8),
        pss_ends=pss_ends,
        n_id_1=n_id_1,
        n_id_2=n_id_2,
        ibar_ssb=ibar_ssb,
        coded_bits=coded,
        payload=None if payload is None else np.asarray(payload, dtype=np.uint8),
        oversample=oversample,
    )


# ============================================================
# Pokretanje lanca
# ============================================================

@dataclass
class ChainRun:
    """Rezultat jednog prolaza talasnog oblika kroz NRRxChain."""
    rx: NRRxChain
    events: List[object]
    llrs: np.ndarray
    llr_tags: List[object]
    frames: List[object]
    snapshot: Dict[str, object] = field(default_factory=dict)

    def of_type(self, cls) -> list:
        return [e for e in self.events if isinstance(e, cls)]


def run_chain(config: ReceiverConfig, samples: np.ndarray, chunk: int = 4096,
              valid: Optional[np.ndarray] = None) -> ChainRun:
    """Pušta uzorke kroz lanac u komadima i prazni oba FIFO-a."""
    rx = NRRxChain(config)
    events: List[object] = []
    for lo in range(0, samples.size, chunk):
        mask = None if valid is None else valid[lo:lo + chunk]
        events.extend(rx.process(samples[lo:lo + chunk], mask))

    entries = rx.llr_fifo.pop_many()
    return ChainRun(
        rx=rx,
        events=events,
        llrs=np.array([v for v, _ in entries], dtype=np.int16),
        llr_tags=[t for _, t in entries],
        frames=rx.read_frames(),
        snapshot=rx.regmap.snapshot(),
    )
