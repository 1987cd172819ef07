"""
fifo.py
=======

Ograničeni FIFO red između stanica prijemnika.

Red modelira hardverski AXIS FIFO: ima fiksnu dubinu, izlaže trenutnu
popunjenost (`level`) i nikad ne odbacuje podatke tiho. Pokušaj upisa u
pun red postavlja trajnu (sticky) zastavicu `overflow`, upisuje poruku u
log i diže `FifoOverflowError`.

Red je thread-safe: proizvođač (prijemni lanac) i potrošač (register
map / vanjski čitač) mogu raditi iz različitih niti.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Iterable, List, Optional

from nr_receiver.errors import FifoOverflowError

logger = logging.getLogger(__name__)


class BoundedFifo:
    """
    Parameters
    ----------
    depth : int
        Maksimalan broj elemenata u redu.
    name : str
        Ime reda (koristi se u porukama).
    """

    def __init__(self, depth: int, name: str = "fifo") -> None:
        if depth <= 0:
            raise ValueError("depth mora biti pozitivan cijeli broj.")
        self.depth = int(depth)
        self.name = name
        self._items: deque = deque()
        self._lock = threading.Lock()
        self.overflow = False
        self.total_pushed = 0

    @property
    def level(self) -> int:
        with self._lock:
            return len(self._items)

    def __len__(self) -> int:
        return self.level

    def _overflowed(self, requested: int, level: int) -> None:
        self.overflow = True
        logger.error("%s: overflow (level=%d, depth=%d, upis=%d)", self.name, level, self.depth, requested)
        raise FifoOverflowError(
            f"{self.name}: red je pun ({level}/{self.depth}), upis {requested} elemenata nije moguć."
        )

    def push(self, item: Any) -> None:
        with self._lock:
            if len(self._items) >= self.depth:
                self._overflowed(1, len(self._items))
            self._items.append(item)
            self.total_pushed += 1

    def push_many(self, items: Iterable[Any]) -> None:
        """
        Upisuje sve elemente ili nijedan: ako ne stanu, red ostaje
        nepromijenjen i diže se `FifoOverflowError`.
        """
        items = list(items)
        with self._lock:
            if len(self._items) + len(items) > self.depth:
                self._overflowed(len(items), len(self._items))
            self._items.extend(items)
            self.total_pushed += len(items)

    def pop(self) -> Optional[Any]:
        """Vraća najstariji element ili None ako je red prazan."""
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def pop_many(self, count: Optional[int] = None) -> List[Any]:
        with self._lock:
            n = len(self._items) if count is None else min(int(count), len(self._items))
            return [self._items.popleft() for _ in range(n)]

    def clear_overflow(self) -> None:
        with self._lock:
            self.overflow = False
