import numpy as np
import pytest

from nr_receiver.sequences import (
    PSSGenerator,
    SSSGenerator,
    gold_sequence,
    pbch_dmrs,
    pbch_scrambling_sequence,
)


# =======================================================
# PSS
# =======================================================

@pytest.mark.parametrize("n_id_2", [0, 1, 2])
def test_pss_is_bpsk_of_length_127(n_id_2):
    d = PSSGenerator.generate(n_id_2)
    assert d.shape == (127,)
    assert set(np.unique(d)) == {-1.0, 1.0}


def test_pss_first_values_for_nid2_0():
    # x = [0 1 1 0 1 1 1 ...] -> d = 1 - 2x
    np.testing.assert_array_equal(PSSGenerator.generate(0)[:7], [1, -1, -1, 1, -1, -1, -1])


def test_pss_sequences_are_cyclic_shifts_by_43():
    np.testing.assert_array_equal(PSSGenerator.generate(1), np.roll(PSSGenerator.generate(0), -43))


def test_pss_cross_correlation_is_low():
    d = [PSSGenerator.generate(n) for n in range(3)]
    auto = np.dot(d[0], d[0])
    for a in range(3):
        for b in range(a + 1, 3):
            assert abs(np.dot(d[a], d[b])) < 0.1 * auto


def test_pss_rejects_invalid_nid2():
    with pytest.raises(ValueError):
        PSSGenerator.generate(3)


def test_pss_time_domain_round_trip():
    t = PSSGenerator.time_domain(2, 256)
    freq = np.fft.fftshift(np.fft.fft(t)) / 256
    np.testing.assert_allclose(freq[64:64 + 127], PSSGenerator.generate(2), atol=1e-9)
    np.testing.assert_allclose(freq[:64], 0, atol=1e-9)


def test_pss_time_domain_at_128_is_decimated_256():
    # PSS zauzima samo centralne podnosioce, pa je oblik na 1.92 MHz
    # svaki drugi uzorak oblika na 3.84 MHz
    t128 = PSSGenerator.time_domain(0, 128)
    t256 = PSSGenerator.time_domain(0, 256)
    np.testing.assert_allclose(t256[::2], t128, atol=1e-9)


# =======================================================
# SSS
# =======================================================

def test_sss_candidates_shape_and_uniqueness():
    c = SSSGenerator.candidates(0)
    assert c.shape == (336, 127)
    assert np.unique(c, axis=0).shape[0] == 336


def test_sss_matches_generate():
    np.testing.assert_array_equal(SSSGenerator.candidates(2)[200], SSSGenerator.generate(200, 2))


@pytest.mark.parametrize("n_id_1, n_id_2", [(-1, 0), (336, 0), (0, 3)])
def test_sss_rejects_invalid_ids(n_id_1, n_id_2):
    with pytest.raises(ValueError):
        SSSGenerator.generate(n_id_1, n_id_2)


# =======================================================
# GOLD, DMRS, SKREMBLOVANJE
# =======================================================

def test_gold_sequence_is_binary_and_deterministic():
    c1 = gold_sequence(1234, 100)
    c2 = gold_sequence(1234, 100)
    assert set(np.unique(c1)) <= {0, 1}
    np.testing.assert_array_equal(c1, c2)
    assert not np.array_equal(c1, gold_sequence(1235, 100))


def test_gold_sequence_cache_is_read_only():
    c = gold_sequence(7, 16)
    with pytest.raises(ValueError):
        c[0] = 1


def test_pbch_dmrs_is_unit_qpsk():
    r = pbch_dmrs(369, 2)
    assert r.shape == (144,)
    np.testing.assert_allclose(np.abs(r), 1.0)


def test_pbch_dmrs_depends_on_ibar():
    assert not np.allclose(pbch_dmrs(10, 0), pbch_dmrs(10, 1))


def test_scrambling_sequence_offsets_by_ibar():
    full = gold_sequence(42, 4 * 864)
    np.testing.assert_array_equal(pbch_scrambling_sequence(42, 2), full[2 * 864:3 * 864])
    # L_max = 4: ibar 6 koristi isti v kao ibar 2
    np.testing.assert_array_equal(pbch_scrambling_sequence(42, 6), pbch_scrambling_sequence(42, 2))
