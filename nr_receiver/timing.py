"""
timing.py
=========

Praćenje vremenske sinhronizacije OFDM simbola.

Tracker prima korigovani tok na FFT sample rate-u i PSS detekcije, a
izdaje FFT prozore (`SymbolWindow`) za svaki OFDM simbol:

    IDLE --detekcija--> ACQUIRING --fina pretraga--> TRACKING --gubitak--> IDLE

* ACQUIRING: oko pozicije koju je dao detektor (+-fine_search uzoraka)
  traži se tačan kraj PSS simbola korelacijom sa PSS-om na FFT rate-u.
* TRACKING: brojač uzoraka i indeks simbola u slotu određuju početak
  svakog CP-a; FFT prozor počinje `cp_advance` uzoraka nakon početka CP-a.
* Detekcija unutar `timing_tolerance` od predviđene pozicije potvrđuje
  kontekst (eventualni drift se poravnava i broji); jača detekcija na
  drugom mjestu resetuje kontekst na sljedećoj granici simbola; slabija
  se ignoriše.
* Ako potvrda ne stigne unutar jednog SSB perioda (+ tolerancija), tracker
  gubi sinhronizaciju i vraća se u IDLE.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

import numpy as np

from nr_receiver.config import SYMBOLS_PER_SLOT, ReceiverConfig
from nr_receiver.models import DetectionEvent, SymbolWindow, TrackerState
from nr_receiver.sequences import PSSGenerator

logger = logging.getLogger(__name__)

SSB_PBCH_SYMBOLS = 3


class TimingTracker:
    """
    Parametri
    ---------
    config : ReceiverConfig
        Konfiguracija prijemnika.
    on_reset : callable | None
        Poziva se sa razlogom ("reset", "loss") kada tracker napušta kontekst.
    """

    def __init__(self, config: ReceiverConfig, on_reset: Optional[Callable[[str], None]] = None) -> None:
        self.config = config
        self.fft_len = config.fft_len
        self.period = config.ssb_period_samples
        self.tolerance = int(config.timing_tolerance)
        self.fine_search = config.fine_search_samples
        self.on_reset = on_reset
        # kašnjenje od kraja PSS-a do trenutka kada je detekcija poznata
        self.latency = (config.pss_decimation * (config.search_len + config.hits_required + 2)
                        + self.fine_search)
        self._keep = 4 * self.fft_len + max(config.cp_lengths)
        self.reset()

    def reset(self) -> None:
        self.state = TrackerState.IDLE
        self._buf = np.zeros(0, dtype=np.complex128)
        self._buf_start = 0
        self._pending: Optional[DetectionEvent] = None
        self._pending_reset: Optional[DetectionEvent] = None
        self.n_id_2: Optional[int] = None
        self.pss_end: Optional[int] = None
        self.peak_energy = 0.0
        self.next_start = 0
        self.symbol_in_slot = 0
        self._ssb_symbol: Optional[int] = None
        self._deadline = 0
        self.confirmations = 0
        self.drift_corrections = 0
        self.context_resets = 0
        self.sync_losses = 0

    # ------------------------------------------------------------------
    # Pomoćne funkcije
    # ------------------------------------------------------------------
    @property
    def buffer_end(self) -> int:
        """Globalni indeks prvog uzorka koji još nije primljen."""
        return self._buf_start + self._buf.size

    def _leave(self, reason: str) -> None:
        self.state = TrackerState.IDLE
        self.n_id_2 = None
        self.pss_end = None
        self.peak_energy = 0.0
        self._ssb_symbol = None
        if self.on_reset is not None:
            self.on_reset(reason)

    def fine_timing(self, n_id_2: int, offset: int) -> Optional[int]:
        """
        Tačan kraj PSS simbola u opsegu ``offset +- fine_search``.

        Returns
        -------
        int | None
            Pozicija posljednjeg uzorka PSS simbola ili None ako potrebni
            uzorci još nisu primljeni.
        """
        n = self.fft_len
        hi = offset + self.fine_search
        if hi >= self.buffer_end:
            return None
        lo = max(offset - self.fine_search, self._buf_start + n - 1)
        if lo > hi:
            return offset

        seg = self._buf[lo - n + 1 - self._buf_start:hi + 1 - self._buf_start]
        template = PSSGenerator.time_domain(n_id_2, n)
        metric = np.abs(np.correlate(seg, template, mode="valid")) ** 2
        return lo + int(np.argmax(metric))

    def _align(self, event: DetectionEvent, pss_end: int) -> None:
        self.n_id_2 = event.n_id_2
        self.pss_end = pss_end
        self.peak_energy = event.energy
        self.next_start = pss_end + 1
        self.symbol_in_slot = self.config.pss_symbol_index + 1
        self._ssb_symbol = 1
        self._deadline = pss_end + self.period + self.tolerance + self.latency

    def _try_acquire(self) -> bool:
        event = self._pending
        pss_end = self.fine_timing(event.n_id_2, event.sample_offset)
        if pss_end is None:
            return False
        self._pending = None
        self._align(event, pss_end)
        self.state = TrackerState.TRACKING
        logger.info("Timing: akvizicija N_ID_2=%d, kraj PSS-a %d (detektor %d)",
                    event.n_id_2, pss_end, event.sample_offset)
        return True

    # ------------------------------------------------------------------
    # Detekcije
    # ------------------------------------------------------------------
    def on_detection(self, event: DetectionEvent) -> str:
        """
        Obrađuje PSS detekciju koja je upravo postala dostupna.

        Returns
        -------
        str
            "acquiring", "confirmed", "reset_scheduled" ili "ignored".
        """
        if self.state == TrackerState.IDLE:
            self._pending = event
            self.state = TrackerState.ACQUIRING
            self._try_acquire()
            return "acquiring"

        if self.state == TrackerState.ACQUIRING:
            if event.energy > self._pending.energy:
                self._pending = event
            self._try_acquire()
            return "acquiring"

        k = int(round((event.sample_offset - self.pss_end) / self.period))
        predicted = self.pss_end + k * self.period
        if k >= 1 and abs(event.sample_offset - predicted) <= self.tolerance and event.n_id_2 == self.n_id_2:
            pss_end = self.fine_timing(event.n_id_2, event.sample_offset)
            if pss_end is None:
                pss_end = event.sample_offset
            drift = pss_end - predicted
            if drift:
                self.drift_corrections += 1
                logger.warning("Timing: drift %+d uzoraka, poravnavanje na %d", drift, pss_end)
            self._align(event, pss_end)
            self._pending_reset = None
            self.confirmations += 1
            logger.debug("Timing: potvrda SSB-a na %d", pss_end)
            return "confirmed"

        if event.energy > self.peak_energy:
            self._pending_reset = event
            logger.warning("Timing: jača detekcija (N_ID_2=%d, uzorak %d), reset na granici simbola",
                           event.n_id_2, event.sample_offset)
            return "reset_scheduled"

        logger.debug("Timing: slabija detekcija na %d ignorisana", event.sample_offset)
        return "ignored"

    # ------------------------------------------------------------------
    # Tok uzoraka
    # ------------------------------------------------------------------
    def push(self, samples: np.ndarray) -> List[SymbolWindow]:
        """
        Dodaje korigovane uzorke i vraća sve FFT prozore koji su kompletni.
        """
        samples = np.asarray(samples, dtype=np.complex128)
        self._buf = np.concatenate((self._buf, samples))
        windows: List[SymbolWindow] = []

        if self.state == TrackerState.ACQUIRING:
            self._try_acquire()

        n = self.fft_len
        while self.state == TrackerState.TRACKING:
            if self._pending_reset is not None:
                event = self._pending_reset
                self._pending_reset = None
                self.context_resets += 1
                self._leave("reset")
                self._pending = event
                self.state = TrackerState.ACQUIRING
                self._try_acquire()
                continue

            cp = self.config.cp_lengths[self.symbol_in_slot]
            advance = self.config.cp_advance_samples(cp)
            start = self.next_start + advance
            if start + n > self.buffer_end:
                break

            lo = start - self._buf_start
            windows.append(SymbolWindow(
                samples=self._buf[lo:lo + n].copy(),
                timestamp=self.next_start,
                window_start=start,
                cp_len=cp,
                cp_advance=advance,
                symbol_in_slot=self.symbol_in_slot,
                ssb_symbol=self._ssb_symbol,
            ))
            self.next_start += cp + n
            self.symbol_in_slot = (self.symbol_in_slot + 1) % SYMBOLS_PER_SLOT
            if self._ssb_symbol is not None:
                self._ssb_symbol = self._ssb_symbol + 1 if self._ssb_symbol < SSB_PBCH_SYMBOLS else None

        if self.state == TrackerState.TRACKING and self.buffer_end > self._deadline:
            self.sync_losses += 1
            logger.warning("Timing: gubitak sinhronizacije (nema PSS-a do uzorka %d)", self._deadline)
            self._leave("loss")

        self._trim()
        return windows

    def _trim(self) -> None:
        keep_from = self.buffer_end - self._keep
        if self.state == TrackerState.TRACKING:
            keep_from = min(keep_from, self.next_start)
        if keep_from > self._buf_start:
            cut = keep_from - self._buf_start
            self._buf = self._buf[cut:]
            self._buf_start = keep_from
