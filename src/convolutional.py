"""
Terminated rate-1/n convolutional code with a soft-input Viterbi decoder.

Generators are given in octal with the most significant tap on the current
input bit, e.g. the K=7 code (171, 133). The encoder state holds the K-1
previous inputs, most recent bit in the MSB.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple
import numpy as np
from numba import njit

from utils import ConfigurationError

log = logging.getLogger(__name__)


# =========================
# GF(2) polynomial helpers
# =========================

def poly_degree(x: int) -> int:
    if x == 0:
        return -1
    return x.bit_length() - 1


def _mod2_rem(dividend: int, divisor: int) -> int:
    r = dividend
    d = poly_degree(divisor)
    while r and poly_degree(r) >= d:
        r ^= divisor << (poly_degree(r) - d)
    return r


def poly_gcd(a: int, b: int) -> int:
    while b:
        a, b = b, _mod2_rem(a, b)
    return a


def _parity(x: int) -> int:
    return bin(x).count("1") & 1


@dataclass(frozen=True)
class ConvolutionalCode:
    """
    Immutable code descriptor shared by encoder and decoder.
    """
    generators: Tuple[int, ...] = (0o171, 0o133)
    constraint_length: int = 7

    def __post_init__(self):
        K = self.constraint_length
        gens = tuple(int(g) for g in self.generators)
        object.__setattr__(self, "generators", gens)
        if K < 2:
            raise ConfigurationError("constraint_length must be >= 2")
        if not gens:
            raise ConfigurationError("at least one generator is required")
        for g in gens:
            if g <= 0 or poly_degree(g) >= K:
                raise ConfigurationError(f"generator {g:o} (octal) does not fit K={K}")
        if not any((g >> (K - 1)) & 1 for g in gens):
            raise ConfigurationError("no generator taps the current input bit")
        common = 0
        for g in gens:
            common = g if common == 0 else poly_gcd(common, g)
        # a shared factor of x only means the oldest tap is unused
        while common and not common & 1:
            common >>= 1
        if len(gens) > 1 and common != 1:
            raise ConfigurationError("catastrophic code: generators share a common factor")

    @property
    def memory(self) -> int:
        return self.constraint_length - 1

    @property
    def tail_length(self) -> int:
        return self.memory

    @property
    def n_outputs(self) -> int:
        return len(self.generators)

    @property
    def n_states(self) -> int:
        return 1 << self.memory

    @property
    def rate(self) -> float:
        return 1.0 / self.n_outputs

    def trellis(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        (next_state[s, u], outputs[s, u, j]) for every state s and input u.
        """
        return _build_trellis(self)


@lru_cache(maxsize=None)
def _build_trellis(code: ConvolutionalCode) -> Tuple[np.ndarray, np.ndarray]:
    m = code.memory
    next_state = np.empty((code.n_states, 2), dtype=np.int64)
    outputs = np.empty((code.n_states, 2, code.n_outputs), dtype=np.int64)
    for s in range(code.n_states):
        for u in (0, 1):
            reg = (u << m) | s
            next_state[s, u] = reg >> 1
            for j, g in enumerate(code.generators):
                outputs[s, u, j] = _parity(reg & g)
    return next_state, outputs


@njit(cache=True)
def _encode_terminated(bits, next_state, outputs, memory):
    n_out = outputs.shape[2]
    n_in = bits.shape[0] + memory
    coded = np.empty(n_in * n_out, dtype=np.uint8)
    s = 0
    for t in range(n_in):
        u = bits[t] if t < bits.shape[0] else 0
        for j in range(n_out):
            coded[t*n_out + j] = outputs[s, u, j]
        s = next_state[s, u]
    return coded, s


@njit(cache=True)
def _viterbi_terminated(soft, n_levels, next_state, outputs, memory):
    n_states = next_state.shape[0]
    n_out = outputs.shape[2]
    n_steps = soft.shape[0] // n_out
    inf = np.int64(1) << 60

    pm = np.full(n_states, inf, dtype=np.int64)
    pm[0] = 0
    survivor = np.zeros((n_steps, n_states), dtype=np.int64)

    for t in range(n_steps):
        new_pm = np.full(n_states, inf, dtype=np.int64)
        for s in range(n_states):
            if pm[s] >= inf:
                continue
            for u in range(2):
                bm = 0
                for j in range(n_out):
                    q = soft[t*n_out + j]
                    if outputs[s, u, j] == 0:
                        bm += q
                    else:
                        bm += n_levels - 1 - q
                ns = next_state[s, u]
                cand = pm[s] + bm
                # strict '<' keeps the lowest predecessor on ties
                if cand < new_pm[ns]:
                    new_pm[ns] = cand
                    survivor[t, ns] = s
        pm = new_pm

    # terminated trellis: trace back from the zero state
    decoded = np.empty(n_steps, dtype=np.uint8)
    s = 0
    for t in range(n_steps - 1, -1, -1):
        decoded[t] = (s >> (memory - 1)) & 1 if memory > 0 else 0
        s = survivor[t, s]
    return decoded[:n_steps - memory], pm[0]


class ConvolutionalEncoder:

    def __init__(self, code: ConvolutionalCode = ConvolutionalCode()):
        self.code = code
        self._next_state, self._outputs = code.trellis()

    def encode(self, bits: np.ndarray) -> np.ndarray:
        """
        Encode and append K-1 zero tail bits so the trellis ends in state 0.
        Output length = n * (len(bits) + K - 1).
        """
        bits = np.ascontiguousarray(bits, dtype=np.int64)
        if bits.size and (bits.min() < 0 or bits.max() > 1):
            raise ValueError("Input bits must be 0/1")
        coded, end_state = _encode_terminated(
            bits, self._next_state, self._outputs, self.code.memory
        )
        if end_state != 0:
            raise RuntimeError("Zero termination failed to end in state 0")
        return coded


class ViterbiDecoder:
    """
    Maximum-likelihood decoder for the terminated trellis.

    Input is one quantized soft value per coded bit on 0..2**soft_bits - 1,
    where 0 is the most confident 0 and the top index the most confident 1.
    soft_bits=1 gives plain hard-decision decoding.
    """

    def __init__(self, code: ConvolutionalCode = ConvolutionalCode(), soft_bits: int = 4):
        if not 1 <= soft_bits <= 8:
            raise ConfigurationError(f"soft_bits must be in 1..8, got {soft_bits}")
        self.code = code
        self.soft_bits = soft_bits
        self._next_state, self._outputs = code.trellis()
        self.last_metric = None

    @property
    def n_levels(self) -> int:
        return 1 << self.soft_bits

    def decode(self, soft: np.ndarray) -> np.ndarray:
        soft = np.ascontiguousarray(soft, dtype=np.int64)
        n = self.code.n_outputs
        if soft.size % n != 0:
            raise ConfigurationError(
                f"decoder input length {soft.size} is not a multiple of {n}"
            )
        if soft.size < n * self.code.tail_length:
            raise ConfigurationError("decoder input is shorter than the termination tail")
        if soft.size and (soft.min() < 0 or soft.max() >= self.n_levels):
            raise ConfigurationError(
                f"soft input outside 0..{self.n_levels - 1}"
            )
        decoded, metric = _viterbi_terminated(
            soft, self.n_levels, self._next_state, self._outputs, self.code.memory
        )
        self.last_metric = int(metric)
        log.debug("viterbi: %d steps, final metric %d", soft.size // n, metric)
        return decoded
