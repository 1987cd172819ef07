# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ------------------------------------------------------------
# PATH FIX: da import radi kad pytest starta iz root-a projekta
# ------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parents[1]
for p in (PROJECT_ROOT, PROJECT_ROOT / "tests"):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from nr_receiver.config import ReceiverConfig
from ssb_waveform import ChainRun, SSBWaveform, make_ssb_waveform, run_chain


@pytest.fixture(scope="session")
def rx_config() -> ReceiverConfig:
    # SSB svakih 5 ms da testovi budu kratki
    return ReceiverConfig(nfft=8, ssb_period_ms=5.0)


@pytest.fixture(scope="session")
def ssb_waveform(rx_config) -> SSBWaveform:
    return make_ssb_waveform(rx_config, n_id_1=123, n_id_2=1, ibar_ssb=0, n_ssb=4)


@pytest.fixture(scope="session")
def chain_run(rx_config, ssb_waveform) -> ChainRun:
    return run_chain(rx_config, ssb_waveform.samples)
