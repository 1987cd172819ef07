import logging
import threading
from typing import List, Optional

import numpy as np

from nr_receiver.cfo import CFOCorrector
from nr_receiver.channel_estimator import SSB_PBCH_SYMBOLS, ChannelEstimator
from nr_receiver.config import ReceiverConfig
from nr_receiver.decimator import SampleIngest
from nr_receiver.fifo import BoundedFifo
from nr_receiver.models import (
    CellIdEvent,
    CfoEvent,
    DetectionEvent,
    IbarEvent,
    PayloadType,
    SymbolWindow,
    SyncContext,
)
from nr_receiver.ofdm_demodulator import OFDMDemodulator
from nr_receiver.pss_detector import PSSDetector
from nr_receiver.qpsk_demapper import QPSKDemapper
from nr_receiver.regmap import RegisterMap
from nr_receiver.resource_grid_framer import BWPConfig, ResourceGridFramer, TimingMonitor
from nr_receiver.sss_detector import SSSDetector
from nr_receiver.timing import TimingTracker

logger = logging.getLogger(__name__)


class NRRxChain:
    """
    NR prijemni lanac za cell search i PBCH demodulaciju.

    Klasa povezuje sve blokove prijemnika u jedan streaming interfejs:
    uzorci se predaju u komadima proizvoljne dužine, a lanac čuva stanje
    između poziva.

    Koraci obrade
    -------------
    1. **Ulaz:** provjera opsega, valid maska, decimacija na FFT rate.
    2. **PSS detekcija:** korelacija na 1.92 MHz, detekcija vrha, N_ID_2 i CFO.
    3. **CFO korekcija:** NCO primjenjuje posljednju procjenu od trenutka
       kada je ona poznata.
    4. **Timing:** fina akvizicija i praćenje granica OFDM simbola.
    5. **FFT:** fiksni zarez, korekcija faze za CP advance.
    6. **SSB:** SSS → N_ID_1 (simbol l=2); procjena kanala, ekvalizacija i
       LLR-ovi (simbol l=3) ako je identitet bio poznat na početku SSB-a.
    7. **Izlaz:** resource-grid okviri u RGS FIFO, LLR-ovi u LLR FIFO,
       stanje u registrima.

    Parametri
    ---------
    config : ReceiverConfig, optional
        Konfiguracija prijemnika (default: ReceiverConfig()).

    Atributi
    --------
    llr_fifo : BoundedFifo
        Parovi (llr, PayloadType).
    rgs_fifo : BoundedFifo
        ResourceGridFrame okviri.
    regmap : RegisterMap
        Kontrolni i statusni registri.
    context : SyncContext
        Aktivni sinhronizacioni kontekst.

    Primjeri
    --------
    >>> rx = NRRxChain(ReceiverConfig(nfft=8))
    >>> events = rx.process(samples)
    >>> [type(e).__name__ for e in events]
    ['DetectionEvent', 'CfoEvent', 'CellIdEvent', ...]
    >>> rx.regmap.read(5 * 4)      # popunjenost LLR FIFO-a
    """

    def __init__(self, config: Optional[ReceiverConfig] = None):
        self.config = config or ReceiverConfig()
        cfg = self.config

        # 1. Ulaz i PSS detekcija
        self.ingest = SampleIngest(cfg.in_width, cfg.ingest_decimation, cfg.clocks_per_sample, cfg.cic_stages)
        self.pss_detector = PSSDetector(cfg)
        self.nco = CFOCorrector(cfg.fft_sample_rate_hz, cfg.nco_phase_bits, cfg.nco_width)

        # 2. Timing i demodulacija
        self.tracker = TimingTracker(cfg, on_reset=self._on_tracker_reset)
        self.ofdm_demod = OFDMDemodulator.from_config(cfg)

        # 3. SSB obrada
        sss_tolerance = 0 if cfg.expect_exact_timing else cfg.sss_timing_tolerance
        self.sss_detector = SSSDetector(cfg.fft_len, cfg.sss_confidence_margin, sss_tolerance)
        self.channel_estimator = ChannelEstimator(
            cfg.fft_len,
            out_width=cfg.cest_out_width,
            symbol_duration=cfg.fft_len + cfg.cp_lengths[cfg.pss_symbol_index + 1],
            sample_rate_hz=cfg.fft_sample_rate_hz,
        )
        self.demapper = QPSKDemapper(mode=cfg.demap_mode, llr_width=cfg.llr_width)

        # 4. Izlaz
        self.framer = ResourceGridFramer(BWPConfig(cfg.fft_len, cfg.prb_count, cfg.fft_out_width))
        self.timing_monitor = TimingMonitor(cfg.symbol_deltas, cfg.expect_exact_timing)
        self.llr_fifo = BoundedFifo(cfg.llr_fifo_depth, name="llr_fifo")
        self.rgs_fifo = BoundedFifo(cfg.rgs_fifo_depth, name="rgs_fifo")
        self.regmap = RegisterMap(self.llr_fifo, self.rgs_fifo, cfg.llr_width, on_reset=self.request_reset)

        self.context = SyncContext()
        self._fft_index = 0
        self._reset_requested = threading.Event()
        self._tracker_reset: Optional[str] = None
        self._reset_event: Optional[DetectionEvent] = None
        self._last_detection: Optional[DetectionEvent] = None
        self.pbch_blocks = 0

    # ==============================================================
    # KONTEKST
    # ==============================================================

    def reset(self) -> None:
        """Prekida sinhronizacioni kontekst; tok uzoraka i brojači ostaju."""
        logger.info("NRRxChain: reset sinhronizacije")
        self.tracker.reset()
        self.nco.reset()
        self.timing_monitor.reset()
        self.context = SyncContext()
        self._reset_event = None
        self._publish()

    def request_reset(self) -> None:
        """
        Zahtjev za reset iz kontrolnog registra (može doći iz druge niti).

        Reset se primjenjuje na početku sljedećeg segmenta obrade, tj. na
        granici simbola, a ne usred poziva `process`.
        """
        logger.info("NRRxChain: reset zatražen, čeka granicu simbola")
        self._reset_requested.set()

    def _on_tracker_reset(self, reason: str) -> None:
        self._tracker_reset = reason

    def _clear_context(self, reason: str) -> None:
        logger.warning("NRRxChain: kontekst poništen (%s)", reason)
        self.context = SyncContext()
        self.timing_monitor.reset()
        if reason == "reset" and self._reset_event is not None:
            self._apply_cfo(self._reset_event)
        self._reset_event = None

    def _apply_cfo(self, event: DetectionEvent) -> CfoEvent:
        self.nco.set_frequency(event.estimated_cfo_hz)
        self.context.cfo_hz = event.estimated_cfo_hz
        return CfoEvent(cfo_hz=event.estimated_cfo_hz, sample_offset=event.available_at)

    # ==============================================================
    # OBRADA
    # ==============================================================

    def process(self, samples: np.ndarray, valid: Optional[np.ndarray] = None) -> list:
        """
        Obrađuje komad ulaznog toka.

        Parametri
        ---------
        samples : np.ndarray
            Kompleksni cjelobrojni uzorci (in_width bita po komponenti).
        valid : np.ndarray, optional
            Bool maska važećih taktova.

        Povratna vrijednost
        -------------------
        list
            Događaji nastali u ovom pozivu, hronološki:
            DetectionEvent, CfoEvent, CellIdEvent, IbarEvent.

        Raises
        ------
        InputOverflowError
            Uzorak van opsega.
        FifoOverflowError
            Pun LLR ili RGS FIFO (ili ulazni bafer korelatora u "hold" režimu).
        TimingMisalignmentError
            Nedozvoljen razmak vremenskih oznaka uz expect_exact_timing.
        """
        y, cycles = self.ingest.push(samples, valid)
        start = self._fft_index
        self._fft_index += y.size

        dropped_before = self.pss_detector.scheduler.dropped
        detections = self.pss_detector.process(y, cycles)
        if self.pss_detector.scheduler.dropped > dropped_before:
            self.regmap.flag_dropped_samples()

        events: list = []
        pos = 0
        for det in sorted(detections, key=lambda d: d.available_at):
            cut = int(np.clip(det.available_at - start, pos, y.size))
            events.extend(self._run_segment(y[pos:cut]))
            pos = cut
            events.extend(self._handle_detection(det))
        events.extend(self._run_segment(y[pos:]))

        self._publish()
        return events

    def _handle_detection(self, det: DetectionEvent) -> list:
        events: list = [det]
        self._last_detection = det
        action = self.tracker.on_detection(det)
        if action in ("acquiring", "confirmed"):
            if action == "acquiring":
                self.context.n_id_2 = det.n_id_2
            self.context.peak_energy = det.energy
            events.append(self._apply_cfo(det))
        elif action == "reset_scheduled":
            self._reset_event = det
        return events

    def _run_segment(self, x: np.ndarray) -> list:
        if self._reset_requested.is_set():
            self._reset_requested.clear()
            self.reset()
        if x.size == 0:
            return []
        corrected = self.nco.apply(x)

        self._tracker_reset = None
        windows = self.tracker.push(corrected)
        reason = self._tracker_reset

        events: list = []
        # reset se primjenjuje prije prvog prozora, gubitak nakon posljednjeg
        if reason == "reset":
            self._clear_context(reason)
            self.context.n_id_2 = self.tracker.n_id_2
        for window in windows:
            events.extend(self._handle_symbol(window))
        if reason == "loss":
            self._clear_context(reason)
        return events

    def _handle_symbol(self, window: SymbolWindow) -> list:
        symbol = self.ofdm_demod.demodulate(window)
        frame = self.framer.frame(symbol)
        self.timing_monitor.check(frame.timestamp)
        self.rgs_fifo.push(frame)

        l = window.ssb_symbol
        if l is None:
            return []

        ctx = self.context
        events: list = []
        if l == 1:
            ctx.open_ssb()
            ctx.n_id_2 = self.tracker.n_id_2
            ctx.pss_end = self.tracker.pss_end
        ctx.ssb_symbols[l] = symbol

        if l == 2 and ctx.n_id_2 is not None:
            result = self.sss_detector.detect(symbol, ctx.n_id_2)
            if result is not None:
                identity, ratio = result
                ctx.identity = identity
                events.append(CellIdEvent(identity=identity, sample_offset=symbol.timestamp,
                                          metric_ratio=ratio))

        if l == SSB_PBCH_SYMBOLS[-1]:
            if ctx.ssb_identity is not None and all(k in ctx.ssb_symbols for k in SSB_PBCH_SYMBOLS):
                events.extend(self._demodulate_pbch(symbol.timestamp))
            ctx.close_ssb()
        return events

    def _demodulate_pbch(self, timestamp: int) -> list:
        ctx = self.context
        estimate, equalized = self.channel_estimator.estimate(ctx.ssb_symbols, ctx.ssb_identity.n_id)
        ctx.channel_estimate = estimate
        ctx.residual_cfo_hz = estimate.residual_cfo_hz

        events: list = []
        if estimate.ibar_ssb != ctx.ibar_ssb:
            logger.info("NRRxChain: ibar_SSB=%d", estimate.ibar_ssb)
        ctx.ibar_ssb = estimate.ibar_ssb
        events.append(IbarEvent(ibar_ssb=estimate.ibar_ssb, sample_offset=timestamp))

        block = self.demapper.demap_block(equalized, PayloadType.PBCH, timestamp)
        self.llr_fifo.push_many((int(v), block.payload_type) for v in block.values)
        self.pbch_blocks += 1
        logger.debug("NRRxChain: PBCH blok %d, %d LLR", self.pbch_blocks, len(block))
        return events

    def _publish(self) -> None:
        ctx = self.context
        last = self._last_detection
        self.regmap.publish(
            tracker_state=int(self.tracker.state),
            n_id=ctx.identity.n_id if ctx.identity is not None else None,
            ibar_ssb=ctx.ibar_ssb,
            cfo_hz=self.nco.cfo_hz,
            residual_cfo_hz=ctx.residual_cfo_hz,
            detections=self.pss_detector.detections,
            last_n_id_2=last.n_id_2 if last is not None else 0,
            last_peak_offset=last.sample_offset if last is not None else 0,
            last_cfo_hz=last.estimated_cfo_hz if last is not None else 0.0,
        )

    # ==============================================================
    # POMOĆNE FUNKCIJE
    # ==============================================================

    def read_llrs(self, count: Optional[int] = None) -> np.ndarray:
        """Uzima LLR vrijednosti iz LLR FIFO-a (bez oznaka)."""
        entries = self.llr_fifo.pop_many(count)
        return np.array([v for v, _ in entries], dtype=np.int16)

    def read_frames(self) -> List:
        """Uzima sve okvire iz RGS FIFO-a."""
        return self.rgs_fifo.pop_many()
