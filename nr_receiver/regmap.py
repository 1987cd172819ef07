"""
regmap.py
=========

Kontrolni i statusni registri prijemnika (AXI-lite stil).

Adrese su bajtne i poravnate na 4 bajta; indeks registra je ``adresa // 4``.

Glavni blok (baza 0x0000):

===== ============== ===============================================
index ime            sadržaj
===== ============== ===============================================
0     ID             0x00010069
1     STATUS         [1:0] stanje trackera, [2] N_ID važeći,
                     [3] ibar_SSB važeći, [4] LLR FIFO overflow,
                     [5] RGS FIFO overflow, [6] odbačeni uzorci
2     N_ID           fizički identitet ćelije
3     IBAR_SSB       indeks SSB-a
4     CFO            procijenjeni CFO u Hz (signed 32 bita)
5     LLR_LEVEL      popunjenost LLR FIFO-a
6     DETECTIONS     broj PSS detekcija
7     LLR_DATA       čitanje uzima jedan LLR iz FIFO-a
8     CONTROL        upis: [0] briše sticky zastavice, [1] reset sinhronizacije
9     RESIDUAL_CFO   preostali CFO iz PBCH DMRS pilota u Hz (signed 32 bita)
===== ============== ===============================================

Blok PSS detektora (baza 1 << 14):

===== ============== ===============================================
0     ID             0x00010061
1     N_ID_2         posljednji detektovani N_ID_2
2     OFFSET_LO      donja riječ pozicije vrha (čitanje zaključava gornju)
3     OFFSET_HI      gornja riječ zaključana pri čitanju donje
4     COUNT          broj detekcija
5     CFO            CFO posljednje detekcije u Hz (signed 32 bita)
===== ============== ===============================================

Prijemni lanac objavljuje stanje preko `publish`, a čitanja uvijek vide
konzistentan snimak (sve vrijednosti iz iste objave).
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from nr_receiver.fifo import BoundedFifo
from nr_receiver.fixed_point import to_twos_complement

logger = logging.getLogger(__name__)

RECEIVER_ID = 0x00010069
PSS_DETECTOR_ID = 0x00010061
PSS_BLOCK_BASE = 1 << 14

REG_ID = 0
REG_STATUS = 1
REG_N_ID = 2
REG_IBAR_SSB = 3
REG_CFO = 4
REG_LLR_LEVEL = 5
REG_DETECTIONS = 6
REG_LLR_DATA = 7
REG_CONTROL = 8
REG_RESIDUAL_CFO = 9

PSS_REG_ID = 0
PSS_REG_N_ID_2 = 1
PSS_REG_OFFSET_LO = 2
PSS_REG_OFFSET_HI = 3
PSS_REG_COUNT = 4
PSS_REG_CFO = 5

CONTROL_CLEAR_STICKY = 1 << 0
CONTROL_RESET = 1 << 1

_SNAPSHOT_FIELDS = {
    "tracker_state": 0,
    "n_id": None,
    "ibar_ssb": None,
    "cfo_hz": 0.0,
    "residual_cfo_hz": 0.0,
    "detections": 0,
    "last_n_id_2": 0,
    "last_peak_offset": 0,
    "last_cfo_hz": 0.0,
}


class RegisterMap:
    """
    Parameters
    ----------
    llr_fifo : BoundedFifo
        LLR FIFO čiji se nivo i podaci čitaju preko registara 5 i 7.
    rgs_fifo : BoundedFifo | None
        FIFO resource-grid toka (samo za overflow zastavicu).
    llr_width : int
        Širina LLR vrijednosti u registru podataka.
    on_reset : callable | None
        Poziva se kada se u CONTROL upiše zahtjev za reset.
    """

    def __init__(self, llr_fifo: BoundedFifo, rgs_fifo: Optional[BoundedFifo] = None,
                 llr_width: int = 8, on_reset: Optional[Callable[[], None]] = None) -> None:
        self.llr_fifo = llr_fifo
        self.rgs_fifo = rgs_fifo
        self.llr_width = int(llr_width)
        self.on_reset = on_reset
        self._lock = threading.Lock()
        self._snapshot: Dict[str, object] = dict(_SNAPSHOT_FIELDS)
        self._latched_offset_hi = 0
        self._samples_dropped = False

    # ------------------------------------------------------------------
    # Strana prijemnika
    # ------------------------------------------------------------------
    def publish(self, **fields) -> None:
        """Atomski ažurira snimak stanja."""
        unknown = set(fields) - set(_SNAPSHOT_FIELDS)
        if unknown:
            raise KeyError(f"Nepoznata polja snimka: {sorted(unknown)}")
        with self._lock:
            snapshot = dict(self._snapshot)
            snapshot.update(fields)
            self._snapshot = snapshot

    def flag_dropped_samples(self) -> None:
        with self._lock:
            self._samples_dropped = True

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return dict(self._snapshot)

    # ------------------------------------------------------------------
    # Pristup registrima
    # ------------------------------------------------------------------
    @staticmethod
    def _index(address: int) -> int:
        address = int(address)
        if address < 0 or address % 4:
            raise ValueError(f"Adresa 0x{address:x} nije poravnata na 4 bajta.")
        return address // 4

    def _status(self, snap: Dict[str, object]) -> int:
        status = int(snap["tracker_state"]) & 0x3
        if snap["n_id"] is not None:
            status |= 1 << 2
        if snap["ibar_ssb"] is not None:
            status |= 1 << 3
        if self.llr_fifo.overflow:
            status |= 1 << 4
        if self.rgs_fifo is not None and self.rgs_fifo.overflow:
            status |= 1 << 5
        if self._samples_dropped:
            status |= 1 << 6
        return status

    def read(self, address: int) -> int:
        """
        Čita 32-bitni registar.

        Raises
        ------
        ValueError
            Ako adresa nije poravnata ili ne postoji.
        """
        if address >= PSS_BLOCK_BASE:
            return self._read_pss(self._index(address - PSS_BLOCK_BASE))

        index = self._index(address)
        with self._lock:
            snap = self._snapshot
            if index == REG_ID:
                return RECEIVER_ID
            if index == REG_STATUS:
                return self._status(snap)
            if index == REG_N_ID:
                return int(snap["n_id"]) if snap["n_id"] is not None else 0
            if index == REG_IBAR_SSB:
                return int(snap["ibar_ssb"]) if snap["ibar_ssb"] is not None else 0
            if index == REG_CFO:
                return to_twos_complement(int(round(float(snap["cfo_hz"]))), 32)
            if index == REG_DETECTIONS:
                return int(snap["detections"]) & 0xFFFFFFFF
            if index == REG_CONTROL:
                return 0
            if index == REG_RESIDUAL_CFO:
                return to_twos_complement(int(round(float(snap["residual_cfo_hz"]))), 32)

        # FIFO ima svoju bravu
        if index == REG_LLR_LEVEL:
            return self.llr_fifo.level
        if index == REG_LLR_DATA:
            # element FIFO-a je par (llr, PayloadType)
            entry = self.llr_fifo.pop()
            return 0 if entry is None else to_twos_complement(int(entry[0]), self.llr_width)
        raise ValueError(f"Nepostojeći registar na adresi 0x{int(address):x}.")

    def _read_pss(self, index: int) -> int:
        with self._lock:
            snap = self._snapshot
            if index == PSS_REG_ID:
                return PSS_DETECTOR_ID
            if index == PSS_REG_N_ID_2:
                return int(snap["last_n_id_2"])
            if index == PSS_REG_OFFSET_LO:
                offset = int(snap["last_peak_offset"]) & 0xFFFFFFFFFFFFFFFF
                self._latched_offset_hi = offset >> 32
                return offset & 0xFFFFFFFF
            if index == PSS_REG_OFFSET_HI:
                return self._latched_offset_hi
            if index == PSS_REG_COUNT:
                return int(snap["detections"]) & 0xFFFFFFFF
            if index == PSS_REG_CFO:
                return to_twos_complement(int(round(float(snap["last_cfo_hz"]))), 32)
        raise ValueError(f"Nepostojeći registar PSS bloka, indeks {index}.")

    def read_peak_offset(self) -> int:
        """64-bitna pozicija vrha čitana kao par LO/HI."""
        lo = self.read(PSS_BLOCK_BASE + 4 * PSS_REG_OFFSET_LO)
        hi = self.read(PSS_BLOCK_BASE + 4 * PSS_REG_OFFSET_HI)
        return (hi << 32) | lo

    def write(self, address: int, value: int) -> None:
        """
        Upis u registar; jedini upisivi registar je CONTROL.
        """
        index = self._index(address)
        if address >= PSS_BLOCK_BASE or index != REG_CONTROL:
            raise ValueError(f"Registar na adresi 0x{int(address):x} nije upisiv.")

        value = int(value)
        if value & CONTROL_CLEAR_STICKY:
            self.llr_fifo.clear_overflow()
            if self.rgs_fifo is not None:
                self.rgs_fifo.clear_overflow()
            with self._lock:
                self._samples_dropped = False
            logger.info("Regmap: sticky zastavice obrisane")
        if value & CONTROL_RESET:
            logger.info("Regmap: zahtjev za reset sinhronizacije")
            if self.on_reset is not None:
                self.on_reset()
