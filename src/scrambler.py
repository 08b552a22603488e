"""
Bit scrambling with the LTE length-31 Gold sequence (3GPP TS 36.211, 7.2).

The sequence is selected by the subframe index through c_init, so a block
scrambled for subframe `ns` must be descrambled with the same `ns`.
A mismatched index does not fail; it just returns wrong bits.
"""
from functools import lru_cache
import numpy as np
from numba import njit

N_C = 1600
SUBFRAME_STEP = 2
SUBFRAME_PERIOD = 20


@njit(cache=True)
def _gold_sequence(c_init: int, length: int) -> np.ndarray:
    total = N_C + length + 31
    x1 = np.zeros(total, dtype=np.uint8)
    x2 = np.zeros(total, dtype=np.uint8)
    x1[0] = 1
    for i in range(31):
        x2[i] = (c_init >> i) & 1
    for n in range(total - 31):
        x1[n + 31] = (x1[n + 3] + x1[n]) % 2
        x2[n + 31] = (x2[n + 3] + x2[n + 2] + x2[n + 1] + x2[n]) % 2
    c = np.empty(length, dtype=np.uint8)
    for n in range(length):
        c[n] = (x1[n + N_C] + x2[n + N_C]) % 2
    return c


@lru_cache(maxsize=64)
def gold_sequence(c_init: int, length: int) -> np.ndarray:
    """Pseudo-random sequence c(0..length-1) for the given initial state."""
    c = _gold_sequence(int(c_init), int(length))
    c.flags.writeable = False
    return c


def scrambling_init(subframe: int, rnti: int = 1, codeword: int = 0, cell_id: int = 0) -> int:
    return rnti * 2**14 + codeword * 2**13 + (subframe // 2) * 2**9 + cell_id


class Scrambler:
    """
    XOR scrambler for bits, sign-flip descrambler for LLRs.
    """

    def __init__(self, rnti: int = 1, codeword: int = 0, cell_id: int = 0):
        self.rnti = rnti
        self.codeword = codeword
        self.cell_id = cell_id

    def sequence(self, subframe: int, length: int) -> np.ndarray:
        c_init = scrambling_init(subframe, self.rnti, self.codeword, self.cell_id)
        return gold_sequence(c_init, length)

    def scramble(self, bits: np.ndarray, subframe: int) -> np.ndarray:
        bits = np.asarray(bits, dtype=np.uint8)
        return np.bitwise_xor(bits, self.sequence(subframe, bits.size))

    def descramble(self, values: np.ndarray, subframe: int, soft: bool = False) -> np.ndarray:
        """
        Undo `scramble`. With soft=True the input is LLRs and the sign of
        every value under a 1 in the sequence is flipped.
        """
        if not soft:
            return self.scramble(values, subframe)
        values = np.asarray(values, dtype=np.float64)
        c = self.sequence(subframe, values.size)
        return values * (1.0 - 2.0 * c)


class SubframeCounter:
    """Rolling subframe index: 0, 2, 4, ..., 18, 0, ..."""

    def __init__(self, step: int = SUBFRAME_STEP, period: int = SUBFRAME_PERIOD):
        self.step = step
        self.period = period
        self.value = 0

    def advance(self) -> int:
        self.value = (self.value + self.step) % self.period
        return self.value

    def reset(self) -> None:
        self.value = 0
