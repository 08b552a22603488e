import pytest
import numpy as np

from convolutional import (
    ConvolutionalCode,
    ConvolutionalEncoder,
    ViterbiDecoder,
    poly_gcd,
)
from utils import ConfigurationError


def conv_ref(bits):
    """Tiny reference encoder for the (7,5), K=3 code."""
    d1 = d0 = 0
    out = []
    for u in list(bits) + [0, 0]:
        out += [u ^ d1 ^ d0, u ^ d0]
        d0, d1 = d1, u
    return out


def to_soft(coded, n_levels=16):
    """Noise-free soft input: 0 -> most confident 0, 1 -> most confident 1."""
    return np.asarray(coded, dtype=np.int64) * (n_levels - 1)


# -------------------------------------------------------------------------
# Code descriptor
# -------------------------------------------------------------------------

def test_default_code():
    code = ConvolutionalCode()
    assert code.generators == (0o171, 0o133)
    assert (code.memory, code.n_states, code.n_outputs) == (6, 64, 2)
    assert code.rate == 0.5
    next_state, outputs = code.trellis()
    assert next_state.shape == (64, 2)
    assert outputs.shape == (64, 2, 2)
    # input bit enters the MSB of the state
    assert next_state[0, 1] == 32
    assert next_state[1, 0] == 0


def test_code_is_hashable_and_shared():
    assert ConvolutionalCode() == ConvolutionalCode([0o171, 0o133], 7)
    assert ConvolutionalCode().trellis()[0] is ConvolutionalCode().trellis()[0]


@pytest.mark.parametrize("gens, K", [
    ((0o17, 0o5), 3),     # generator wider than K
    ((0b011, 0b001), 3),  # no tap on the current input
    ((0b11, 0b11), 2),    # common factor -> catastrophic
    ((0b110, 0b101), 3),  # (x+1) divides both
    ((), 3),
])
def test_invalid_codes(gens, K):
    with pytest.raises(ConfigurationError):
        ConvolutionalCode(gens, K)


def test_poly_gcd():
    assert poly_gcd(0b111, 0b101) == 1
    assert poly_gcd(0b110, 0b101) == 0b11

# -------------------------------------------------------------------------
# Encoder
# -------------------------------------------------------------------------

def test_impulse_response():
    coded = ConvolutionalEncoder().encode(np.array([1]))
    assert coded.tolist() == [1, 1, 1, 0, 1, 1, 1, 1, 0, 0, 0, 1, 1, 1]


def test_encoder_length_and_termination():
    enc = ConvolutionalEncoder()
    bits = np.random.default_rng(0).integers(0, 2, size=2048)
    coded = enc.encode(bits)
    assert coded.size == 2 * (2048 + 6)
    assert coded.dtype == np.uint8


@pytest.mark.parametrize("msg_bits", [
    [0, 0, 0, 0],
    [1, 0, 1, 1],
    [1, 0, 1, 1, 0, 0, 1],
    list(np.random.default_rng(5).integers(0, 2, size=40)),
])
def test_small_code_matches_reference(msg_bits):
    enc = ConvolutionalEncoder(ConvolutionalCode((0o7, 0o5), 3))
    assert enc.encode(np.array(msg_bits)).tolist() == conv_ref(msg_bits)


def test_encoder_rejects_non_binary():
    with pytest.raises(ValueError):
        ConvolutionalEncoder().encode(np.array([0, 2, 1]))

# -------------------------------------------------------------------------
# Decoder
# -------------------------------------------------------------------------

@pytest.mark.parametrize("n_bits", [1, 7, 100, 2048])
def test_noiseless_roundtrip(n_bits):
    code = ConvolutionalCode()
    bits = np.random.default_rng(n_bits).integers(0, 2, size=n_bits)
    coded = ConvolutionalEncoder(code).encode(bits)
    dec = ViterbiDecoder(code)
    assert np.array_equal(dec.decode(to_soft(coded)), bits)
    assert dec.last_metric == 0


def test_empty_message():
    code = ConvolutionalCode()
    coded = ConvolutionalEncoder(code).encode(np.array([], dtype=np.uint8))
    assert coded.size == 12
    assert ViterbiDecoder(code).decode(to_soft(coded)).size == 0


def test_hard_decision_corrects_scattered_errors():
    code = ConvolutionalCode()
    bits = np.random.default_rng(1).integers(0, 2, size=500)
    coded = ConvolutionalEncoder(code).encode(bits)
    coded[[10, 250, 600, 900]] ^= 1
    dec = ViterbiDecoder(code, soft_bits=1)
    assert dec.n_levels == 2
    assert np.array_equal(dec.decode(coded), bits)


def test_soft_decision_uses_reliability():
    code = ConvolutionalCode((0o7, 0o5), 3)
    bits = np.random.default_rng(2).integers(0, 2, size=60)
    soft = to_soft(ConvolutionalEncoder(code).encode(bits))
    # two adjacent wrong but unconfident values, surrounded by confident ones
    soft[20] = 8 if soft[20] == 0 else 7
    soft[21] = 8 if soft[21] == 0 else 7
    assert np.array_equal(ViterbiDecoder(code).decode(soft), bits)


def test_decode_is_deterministic():
    soft = np.random.default_rng(3).integers(0, 16, size=2 * 300)
    dec = ViterbiDecoder()
    assert np.array_equal(dec.decode(soft), dec.decode(soft.copy()))


@pytest.mark.parametrize("soft", [
    np.zeros(31, dtype=np.int64),          # not a multiple of n
    np.zeros(10, dtype=np.int64),          # shorter than the tail
    np.full(40, 16, dtype=np.int64),       # outside the 4-bit alphabet
    np.full(40, -1, dtype=np.int64),
])
def test_decode_rejects_bad_input(soft):
    with pytest.raises(ConfigurationError):
        ViterbiDecoder().decode(soft)


def test_decoder_soft_bits_range():
    with pytest.raises(ConfigurationError):
        ViterbiDecoder(soft_bits=0)
    assert ViterbiDecoder(soft_bits=3).n_levels == 8
