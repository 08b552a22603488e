import numpy as np
from numba import njit
from scipy.special import logsumexp
from typing import Sequence, List, Union
from utils import (
    Modulation,
    get_constellation_bits,
    get_normalized_constellation,
)

# Noise variance floor and LLR clip for the soft demodulator
MIN_NOISE_VAR = 1e-12
LLR_LIMIT = 1e6


def demod(
    data: Sequence[complex],
    mod: Union[int, str, Modulation],
) -> List[int]:
    """
    Nearest-neighbor demodulation using shared normalized LUT.
    """
    arr = np.asarray(data, dtype=np.complex128)
    lut = get_normalized_constellation(mod)
    # distance matrix and argmin
    dists = np.abs(arr[:, None] - lut[None, :])
    idxs = dists.argmin(axis=1)
    return idxs.tolist()


@njit(cache=True)
def symbol_indices_to_bits(symbols: np.ndarray, bps: int) -> np.ndarray:
    n_sym = symbols.shape[0]
    bits = np.empty(n_sym * bps, dtype=np.uint8)
    for i in range(n_sym):
        s = symbols[i]
        # unpack bits MSB→LSB
        for b in range(bps):
            bits[i*bps + b] = (s >> (bps - 1 - b)) & 1
    return bits


def demod_hard(
    symbols: np.ndarray,
    mod: Union[str, Modulation]
) -> np.ndarray:
    """
    Hard-decision demodulation: bit group of the nearest constellation point.
    """
    mod = Modulation.parse(mod)
    idxs = np.asarray(demod(symbols, mod), dtype=np.int64)
    return symbol_indices_to_bits(idxs, mod.bps)


def demod_soft(
    symbols: np.ndarray,
    mod: Union[str, Modulation],
    noise_var: float
) -> np.ndarray:
    """
    Exact log-MAP demodulation.

    Parameters
    ----------
    symbols
        Received complex samples.
    mod
        Modulation scheme used at the transmitter.
    noise_var
        Complex noise variance N0 (per-quadrature variance is N0/2).

    Returns
    -------
    llr : np.ndarray of float
        ln(P(b=0|y) / P(b=1|y)) for every bit, in transmission order.
        Positive values favour 0.
    """
    mod = Modulation.parse(mod)
    y = np.asarray(symbols, dtype=np.complex128)
    lut = get_normalized_constellation(mod)
    labels = get_constellation_bits(mod)
    noise_var = max(float(noise_var), MIN_NOISE_VAR)

    metric = -np.abs(y[:, None] - lut[None, :])**2 / noise_var
    llr = np.empty((y.size, mod.bps), dtype=np.float64)
    for b in range(mod.bps):
        ones = labels[:, b] == 1
        llr[:, b] = logsumexp(metric[:, ~ones], axis=1) - logsumexp(metric[:, ones], axis=1)

    llr = np.nan_to_num(llr, nan=0.0, posinf=LLR_LIMIT, neginf=-LLR_LIMIT)
    return np.clip(llr, -LLR_LIMIT, LLR_LIMIT).reshape(-1)


def llr_to_bits(llr: np.ndarray) -> np.ndarray:
    """Positive or zero LLR -> 0, negative LLR -> 1."""
    return (np.asarray(llr) < 0).astype(np.uint8)
