import math
import numpy as np
import pytest

from transmitter import (
    BitSource,
    bits_to_symbol_indices,
    modulate_bits,
    modulate_sequence,
)
from receiver import (
    demod,
    demod_hard,
    demod_soft,
    llr_to_bits,
    symbol_indices_to_bits,
)
from channel import AWGNChannel, apply_awgn
from quantizer import ScalarQuantizerEncoder, DEFAULT_LLR_BOUNDARIES
from scrambler import Scrambler, SubframeCounter, gold_sequence, scrambling_init
from metrics import ErrorRate, bit_error_rate, count_bit_errors, theoretical_ber_awgn
from utils import (
    ConfigurationError,
    DemodType,
    Modulation,
    bits_per_symbol,
    ebn0_to_snr_db,
    get_constellation_bits,
    get_normalized_constellation,
    snr_db_to_noise_sigma,
    snr_db_to_noise_var,
)

ALL_SCHEMES = [Modulation.QPSK, Modulation.QAM16, Modulation.QAM64]


@pytest.mark.parametrize("mod", ALL_SCHEMES)
def test_constellation_normalization(mod):
    """
    Ensure every normalized constellation has unit average energy.
    """
    lut = get_normalized_constellation(mod)
    assert lut.size == 2 ** mod.bps
    avg_energy = np.mean(np.abs(lut)**2)
    assert math.isclose(avg_energy, 1.0, rel_tol=1e-9), \
        f"{mod.value} constellation not normalized (avg_energy={avg_energy:.6f})"


def test_unsupported_modulation_raises():
    with pytest.raises(ConfigurationError):
        get_normalized_constellation(8)
    with pytest.raises(ConfigurationError):
        Modulation.parse("8PSK")
    with pytest.raises(ConfigurationError):
        DemodType.parse("medium")
    with pytest.raises(ConfigurationError):
        bits_per_symbol(12)


@pytest.mark.parametrize("mod", ALL_SCHEMES)
def test_constellation_is_gray_coded(mod):
    lut = get_normalized_constellation(mod)
    labels = get_constellation_bits(mod)
    d = np.abs(lut[:, None] - lut[None, :])
    d_min = d[d > 0].min()
    for a, b in zip(*np.nonzero(np.isclose(d, d_min))):
        assert np.sum(labels[a] != labels[b]) == 1


def test_parse_accepts_names_and_members():
    assert Modulation.parse("16qam") is Modulation.QAM16
    assert Modulation.parse(Modulation.QAM64) is Modulation.QAM64
    assert DemodType.parse("SOFT") is DemodType.SOFT
    assert [m.bps for m in ALL_SCHEMES] == [2, 4, 6]


# -------------------------------------------------------------------------
# Transmitter tests
# -------------------------------------------------------------------------

def test_bit_source_reproducible():
    a = BitSource(7).generate(100)
    b = BitSource(7).generate(100)
    assert np.array_equal(a, b)
    assert set(np.unique(a)) <= {0, 1}
    assert not a.flags.writeable


def test_qpsk_mapping():
    tx = modulate_bits(np.array([0, 0, 1, 0, 0, 1, 1, 1]), "QPSK")
    expected = np.array([1+1j, -1+1j, 1-1j, -1-1j]) / math.sqrt(2)
    assert np.allclose(tx, expected)


def test_qam16_mapping():
    # 36.211: b0 b2 -> I, b1 b3 -> Q
    tx = modulate_bits(np.array([0, 0, 0, 0, 1, 1, 1, 1]), "16QAM")
    assert np.allclose(tx, np.array([1+1j, -3-3j]) / math.sqrt(10))


def test_modulate_bits_rejects_partial_group():
    with pytest.raises(ConfigurationError):
        modulate_bits(np.zeros(7, dtype=np.uint8), "QPSK")
    with pytest.raises(ConfigurationError):
        modulate_bits(np.zeros(10, dtype=np.uint8), "64QAM")


def test_modulate_sequence_range():
    with pytest.raises(ValueError):
        modulate_sequence([0, 4], 4)


def test_bit_symbol_conversion():
    bits = np.random.default_rng(0).integers(0, 2, size=36)
    bps = bits_per_symbol(64)
    syms = bits_to_symbol_indices(bits, bps)
    bits_rt = symbol_indices_to_bits(syms, bps)
    assert bits_rt.tolist() == bits.tolist()

# -------------------------------------------------------------------------
# Receiver tests
# -------------------------------------------------------------------------

@pytest.mark.parametrize("mod", ALL_SCHEMES)
def test_demod_hard_roundtrip(mod):
    bits = np.random.default_rng(1).integers(0, 2, size=mod.bps * 200)
    tx = modulate_bits(bits, mod)
    assert np.array_equal(demod_hard(tx, mod), bits)


def test_demod_roundtrip_indices():
    sym = np.random.default_rng(2).integers(0, 64, size=50)
    tx = modulate_sequence(sym, 64)
    assert demod(tx, 64) == sym.tolist()


@pytest.mark.parametrize("mod", ALL_SCHEMES)
def test_demod_soft_sign_follows_bits(mod):
    bits = np.random.default_rng(3).integers(0, 2, size=mod.bps * 100)
    llr = demod_soft(modulate_bits(bits, mod), mod, 0.1)
    assert np.all(llr[bits == 0] > 0)
    assert np.all(llr[bits == 1] < 0)
    assert np.array_equal(llr_to_bits(llr), bits)


def test_demod_soft_qpsk_closed_form():
    rng = np.random.default_rng(4)
    y = rng.normal(size=50) + 1j * rng.normal(size=50)
    n0 = 0.7
    llr = demod_soft(y, "QPSK", n0)
    expected = np.empty(100)
    expected[0::2] = 2 * math.sqrt(2) * y.real / n0
    expected[1::2] = 2 * math.sqrt(2) * y.imag / n0
    assert np.allclose(llr, expected)


def test_demod_soft_finite_without_noise():
    y = np.array([10+10j, -10-10j, 0j, 1.5-0.3j])
    for n0 in (0.0, 1e-300):
        llr = demod_soft(y, "64QAM", n0)
        assert llr.shape == (24,)
        assert np.all(np.isfinite(llr))


def test_llr_to_bits_zero_is_zero():
    assert llr_to_bits(np.array([2.0, -1.0, 0.0])).tolist() == [0, 1, 0]

# -------------------------------------------------------------------------
# Channel tests
# -------------------------------------------------------------------------

def test_ebn0_to_snr_db():
    assert math.isclose(ebn0_to_snr_db(0, 2, 0.5), 0.0, abs_tol=1e-12)
    assert math.isclose(ebn0_to_snr_db(3, 4), 3 + 10 * math.log10(4))
    assert math.isclose(snr_db_to_noise_var(10), 0.1)
    assert snr_db_to_noise_var(math.inf) == 0.0


def test_snr_db_to_noise_sigma():
    assert math.isclose(snr_db_to_noise_sigma(0), math.sqrt(1/2), rel_tol=1e-6)
    assert math.isclose(snr_db_to_noise_sigma(3), math.sqrt(0.5 / 10**(3/10)), rel_tol=1e-6)


def test_apply_awgn():
    data = np.zeros(5, dtype=complex)
    rng1 = np.random.default_rng(123)
    rng2 = np.random.default_rng(123)
    y1 = apply_awgn(data, 10, rng1)
    y2 = apply_awgn(data, 10, rng2)
    assert np.array_equal(y1, y2)
    assert y1.shape == data.shape


def test_awgn_channel_noise_power():
    ch = AWGNChannel(seed=5, snr_db=5)
    noise = ch.transmit(np.zeros(200_000, dtype=complex))
    assert abs(np.mean(np.abs(noise)**2) / ch.noise_var - 1) < 0.02
    assert abs(np.var(noise.real) - np.var(noise.imag)) < 0.01


def test_awgn_channel_stream_continues_until_reseed():
    ch = AWGNChannel(seed=9, snr_db=0)
    first = ch.transmit(np.zeros(8, dtype=complex))
    second = ch.transmit(np.zeros(8, dtype=complex))
    assert not np.array_equal(first, second)
    ch.reseed(9)
    assert np.array_equal(ch.transmit(np.zeros(8, dtype=complex)), first)


def test_awgn_channel_infinite_snr_is_noiseless():
    ch = AWGNChannel(seed=1)
    x = np.array([1+1j, -1-1j]) / math.sqrt(2)
    assert np.array_equal(ch.transmit(x, math.inf), x)

# -------------------------------------------------------------------------
# Quantizer tests
# -------------------------------------------------------------------------

def test_quantizer_saturation():
    q = ScalarQuantizerEncoder()
    assert q.n_levels == 16
    out = q.quantize(np.array([-1e9, -7.5, 7.5, 1e9]))
    assert out.tolist() == [0, 0, 15, 15]
    assert out.dtype == np.uint8


def test_quantizer_boundary_goes_to_lower_interval():
    q = ScalarQuantizerEncoder(DEFAULT_LLR_BOUNDARIES)
    assert q.quantize(np.array([-7.0, -6.5, 0.0, 0.5, 7.0, 7.01])).tolist() == [0, 1, 7, 8, 14, 15]


def test_quantizer_is_monotonic():
    x = np.linspace(-20, 20, 1001)
    idx = ScalarQuantizerEncoder().quantize(x)
    assert np.all(np.diff(idx.astype(int)) >= 0)


def test_quantizer_rejects_bad_boundaries():
    with pytest.raises(ConfigurationError):
        ScalarQuantizerEncoder([0, 0, 1])
    with pytest.raises(ConfigurationError):
        ScalarQuantizerEncoder([])

# -------------------------------------------------------------------------
# Scrambler tests
# -------------------------------------------------------------------------

@pytest.mark.parametrize("subframe", range(20))
def test_scramble_roundtrip(subframe):
    bits = BitSource(subframe).generate(2400)
    s = Scrambler()
    scrambled = s.scramble(bits, subframe)
    assert not np.array_equal(scrambled, bits)
    assert np.array_equal(s.descramble(scrambled, subframe), bits)


def test_soft_descramble_flips_llr_signs():
    s = Scrambler()
    bits = BitSource(11).generate(600)
    llr = 1.0 - 2.0 * s.scramble(bits, 4)
    assert np.array_equal(llr_to_bits(s.descramble(llr, 4, soft=True)), bits)


def test_wrong_subframe_gives_garbage():
    s = Scrambler()
    bits = BitSource(12).generate(2400)
    rx = s.descramble(s.scramble(bits, 0), 2)
    assert 0.4 < bit_error_rate(bits, rx) < 0.6


def test_gold_sequence_selection():
    assert scrambling_init(0) == 2**14
    assert scrambling_init(5, rnti=0, cell_id=3) == 2 * 2**9 + 3
    c = gold_sequence(scrambling_init(0), 1000)
    assert c.shape == (1000,)
    assert set(np.unique(c)) == {0, 1}
    s = Scrambler()
    # even and odd subframe of the same slot pair share a sequence
    assert np.array_equal(s.sequence(2, 100), s.sequence(3, 100))
    assert not np.array_equal(s.sequence(0, 100), s.sequence(2, 100))


def test_subframe_counter_wraps():
    c = SubframeCounter()
    seen = [c.value] + [c.advance() for _ in range(11)]
    assert seen == [0, 2, 4, 6, 8, 10, 12, 14, 16, 18, 0, 2]
    c.reset()
    assert c.value == 0

# -------------------------------------------------------------------------
# Metrics tests
# -------------------------------------------------------------------------

def test_count_bit_errors():
    assert count_bit_errors(np.array([1, 0, 1]), np.array([1, 1, 0])) == 2
    assert count_bit_errors([], []) == 0


def test_bit_error_rate():
    assert bit_error_rate([0, 1, 1, 0], [0, 0, 1, 1]) == 0.5
    with pytest.raises(ValueError):
        bit_error_rate([0, 1], [0])


def test_error_rate_tally():
    tally = ErrorRate()
    assert math.isnan(tally.ber)
    assert tally.update([0, 1, 1, 0], [1, 1, 1, 0]) == (0.25, 1, 4)
    assert tally.update([0, 0], [0, 0]) == (1 / 6, 1, 6)
    tally.reset()
    assert (tally.errors, tally.bits) == (0, 0)


def test_theoretical_ber_awgn():
    assert math.isclose(theoretical_ber_awgn("QPSK", 0), 0.0786496, rel_tol=1e-4)
    assert theoretical_ber_awgn(16, 10) < theoretical_ber_awgn(16, 5)
    assert theoretical_ber_awgn("64QAM", 10) > theoretical_ber_awgn("16QAM", 10)




if __name__ == "__main__":
    import pytest
    raise SystemExit(pytest.main([__file__]))
