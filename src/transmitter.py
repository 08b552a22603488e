import numpy as np
from numba import njit
from typing import Optional, Sequence, Union
from utils import ConfigurationError, Modulation, get_normalized_constellation


class BitSource:
    """
    Uniform random bit source with its own generator, so that the bit
    stream is reproducible independently of the channel noise.
    """

    def __init__(self, rng: Optional[Union[int, np.random.Generator, np.random.SeedSequence]] = None):
        self.rng = np.random.default_rng(rng)

    def reseed(self, seed) -> None:
        self.rng = np.random.default_rng(seed)

    def generate(self, n_bits: int) -> np.ndarray:
        if n_bits < 0:
            raise ConfigurationError(f"n_bits must be >= 0, got {n_bits}")
        bits = self.rng.integers(0, 2, size=n_bits, dtype=np.uint8)
        bits.flags.writeable = False
        return bits


@njit(cache=True)
def bits_to_symbol_indices(bits: np.ndarray, bps: int) -> np.ndarray:
    n_sym = bits.shape[0] // bps
    syms = np.empty(n_sym, np.int64)
    for i in range(n_sym):
        # pack MSB first; the LUT is already Gray-labelled
        val = 0
        for b in range(bps):
            val = (val << 1) | bits[i*bps + b]
        syms[i] = val
    return syms


def modulate_sequence(
    sequence: Sequence[int],
    mod: Union[int, str, Modulation]
) -> np.ndarray:
    """
    Map integer symbols to unit-energy constellation points.
    """
    lut = get_normalized_constellation(mod)
    seq = np.asarray(sequence, dtype=np.int64)
    if seq.size and (seq.min() < 0 or seq.max() >= lut.size):
        raise ValueError(f"Symbol index out of range for M={lut.size}")
    return lut[seq]


def modulate_bits(
    bits: np.ndarray,
    mod: Union[str, Modulation]
) -> np.ndarray:
    """
    Map groups of log2(M) bits onto Gray-coded, unit-energy symbols.

    Raises
    ------
    ConfigurationError
        If the number of bits is not a multiple of the bits per symbol.
    """
    mod = Modulation.parse(mod)
    bits = np.ascontiguousarray(bits, dtype=np.int64)
    if bits.size % mod.bps != 0:
        raise ConfigurationError(
            f"{mod.value} needs a multiple of {mod.bps} bits, got {bits.size}"
        )
    return modulate_sequence(bits_to_symbol_indices(bits, mod.bps), mod)
