import numpy as np
import math
from typing import Sequence, Tuple, Union
from scipy.special import erfc
from utils import Modulation, bits_per_symbol


def count_bit_errors(
    tx_bits: Sequence[int],
    rx_bits: Sequence[int]
) -> int:
    if len(tx_bits) != len(rx_bits):
        raise ValueError("tx_bits and rx_bits must have the same length")
    return int(np.count_nonzero(np.asarray(tx_bits) != np.asarray(rx_bits)))


def bit_error_rate(
    tx_bits: Sequence[int],
    rx_bits: Sequence[int]
) -> float:
    """
    Compute the Bit Error Rate (BER) between transmitted and received bit sequences.

    Parameters
    ----------
    tx_bits
        Original bit sequence (0/1).
    rx_bits
        Demodulated bit sequence (0/1), same length as tx_bits.

    Returns
    -------
    ber : float
        Ratio of bit errors to total bits.

    Raises
    ------
    ValueError
        If tx_bits and rx_bits lengths differ.
    """
    errors = count_bit_errors(tx_bits, rx_bits)
    return errors / len(tx_bits)


class ErrorRate:
    """
    Running error/bit tally.

    Only the counters live here, so resetting a tally never touches the
    random streams of the link that feeds it.
    """

    def __init__(self):
        self.errors = 0
        self.bits = 0

    @property
    def ber(self) -> float:
        return self.errors / self.bits if self.bits else math.nan

    def update(self, tx_bits: Sequence[int], rx_bits: Sequence[int]) -> Tuple[float, int, int]:
        self.errors += count_bit_errors(tx_bits, rx_bits)
        self.bits += len(tx_bits)
        return self.ber, self.errors, self.bits

    def reset(self) -> None:
        self.errors = 0
        self.bits = 0


def theoretical_ber_awgn(
    modulation: Union[int, str, Modulation],
    ebno_db: float
) -> float:
    """
    Compute theoretical BER over AWGN for Gray-coded square M-QAM.

    For QPSK, uses Q-function: BER = 0.5*erfc(sqrt(Eb/N0)).
    For M-QAM, approximates BER with the nearest-neighbour bound:
      BER ≈ (4*(1 - 1/√M)/log2(M)) * Q(√(3*log2(M)/(M-1) * Eb/N0)).

    Parameters
    ----------
    modulation
        M (4, 16, 64) or a modulation name such as '16QAM'.
    ebno_db
        Eb/N0 in dB.

    Returns
    -------
    ber : float
        Theoretical bit-error rate.
    """
    if isinstance(modulation, (int, np.integer)):
        modulation_order = int(modulation)
    else:
        modulation_order = Modulation.parse(modulation).order
    bps = bits_per_symbol(modulation_order)
    ebno = 10**(ebno_db/10)
    # QPSK special case (same as BPSK)
    if modulation_order == 4:
        return float(0.5 * erfc(math.sqrt(ebno)))
    m = int(math.sqrt(modulation_order))
    if m*m != modulation_order:
        raise ValueError(f"Only square QAM is supported, got M={modulation_order}")
    alpha = 4 * (1 - 1/m) / bps
    beta = 3 * bps / (modulation_order - 1)
    return float(alpha * 0.5 * erfc(math.sqrt(beta * ebno / 2)))
