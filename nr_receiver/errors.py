"""
errors.py
=========

Izuzeci prijemnog lanca.

Svi izuzeci nasljeđuju `ReceiverError`, a uz to i ugrađeni tip koji bi
pozivalac inače očekivao (ValueError, OverflowError), tako da postojeći
`except ValueError` blokovi i dalje hvataju greške ulaza.
"""


class ReceiverError(Exception):
    """Bazna klasa za sve greške prijemnika."""


class InputOverflowError(ReceiverError, ValueError):
    """Ulazni uzorak je van opsega koji fiksni zarez može predstaviti."""


class FifoOverflowError(ReceiverError, OverflowError):
    """Ograničeni red (FIFO) je pun, a proizvođač pokušava upisati još."""


class TimingMisalignmentError(ReceiverError):
    """Vremenske oznake OFDM simbola ne odgovaraju dozvoljenim razmacima."""


class FramingError(ReceiverError, ValueError):
    """Resource-grid okvir nema očekivanu dužinu ili zaglavlje."""
