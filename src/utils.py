import math
from enum import Enum
from typing import Dict, Union
import numpy as np


class ConfigurationError(ValueError):
    """Raised for settings that make a simulation impossible to start."""


# ----------------------------------------------------------------------------
# Raw constellation maps (Gray-coded, unnormalized)
# ----------------------------------------------------------------------------
# Bit groups are read MSB first. Even bit positions drive I, odd ones drive Q,
# as in 3GPP TS 36.211 section 7.1. Each axis is a Gray-coded PAM keyed by the
# integer formed from its own bits.
_PAM_LEVELS: Dict[int, Dict[int, int]] = {
    1: {0: 1, 1: -1},
    2: {0b00: 1, 0b01: 3, 0b10: -1, 0b11: -3},
    3: {0b000: 3, 0b001: 1, 0b010: 5, 0b011: 7,
        0b100: -3, 0b101: -1, 0b110: -5, 0b111: -7},
}


def _build_raw_constellation(bps: int) -> np.ndarray:
    half = bps // 2
    points = np.empty(2 ** bps, dtype=np.complex128)
    for s in range(2 ** bps):
        i_bits = q_bits = 0
        for b in range(bps):
            bit = (s >> (bps - 1 - b)) & 1
            if b % 2 == 0:
                i_bits = (i_bits << 1) | bit
            else:
                q_bits = (q_bits << 1) | bit
        points[s] = _PAM_LEVELS[half][i_bits] + 1j * _PAM_LEVELS[half][q_bits]
    return points


_RAW_QPSK = _build_raw_constellation(2)
_RAW_QAM16 = _build_raw_constellation(4)
_RAW_QAM64 = _build_raw_constellation(6)

# Map modulation order to raw LUT
_CONSTELLATIONS: Dict[int, np.ndarray] = {
    4: _RAW_QPSK,
    16: _RAW_QAM16,
    64: _RAW_QAM64,
}


class Modulation(Enum):
    """Supported modulation schemes, keyed by their configuration names."""
    QPSK = "QPSK"
    QAM16 = "16QAM"
    QAM64 = "64QAM"

    @property
    def order(self) -> int:
        return {"QPSK": 4, "16QAM": 16, "64QAM": 64}[self.value]

    @property
    def bps(self) -> int:
        return bits_per_symbol(self.order)

    @classmethod
    def parse(cls, value: Union[str, "Modulation"]) -> "Modulation":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ConfigurationError(
                f"Modulation scheme must be 'QPSK', '16QAM' or '64QAM', got {value!r}"
            ) from None


class DemodType(Enum):
    HARD = "hard"
    SOFT = "soft"

    @classmethod
    def parse(cls, value: Union[str, "DemodType"]) -> "DemodType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"Demodulation type must be 'hard' or 'soft', got {value!r}"
            ) from None


def _order_of(mod: Union[int, str, Modulation]) -> int:
    if isinstance(mod, (int, np.integer)):
        return int(mod)
    return Modulation.parse(mod).order


def bits_per_symbol(mod_complexity: int) -> int:
    """
    Compute number of bits per symbol for an M-ary modulation.
    Raises ConfigurationError if M is not a power of two.
    """
    if mod_complexity < 2:
        raise ConfigurationError(f"Unsupported modulation order: {mod_complexity}")
    bps = int(math.log2(mod_complexity))
    if 2**bps != mod_complexity:
        raise ConfigurationError(f"Unsupported modulation order: {mod_complexity}")
    return bps


def get_constellation(mod: Union[int, str, Modulation]) -> np.ndarray:
    """
    Return the raw constellation points for given modulation.
    """
    order = _order_of(mod)
    try:
        return _CONSTELLATIONS[order]
    except KeyError:
        raise ConfigurationError(f"Unsupported modulation order: {order}") from None


def normalize_constellation(raw_const: np.ndarray) -> np.ndarray:
    """
    Normalize a raw constellation so its average symbol energy = 1.
    """
    Es = np.mean(np.abs(raw_const)**2)
    return raw_const / math.sqrt(Es)


def get_normalized_constellation(mod: Union[int, str, Modulation]) -> np.ndarray:
    """
    Return a unit-energy normalized constellation for given modulation.
    """
    raw = get_constellation(mod)
    return normalize_constellation(raw)


def get_constellation_bits(mod: Union[int, str, Modulation]) -> np.ndarray:
    """
    Bit labels of every constellation point, shape (M, bps), MSB first.
    Row s holds the bit group that maps onto point s.
    """
    order = _order_of(mod)
    bps = bits_per_symbol(order)
    idx = np.arange(order)[:, None]
    shifts = np.arange(bps - 1, -1, -1)[None, :]
    return ((idx >> shifts) & 1).astype(np.uint8)


def ebn0_to_snr_db(ebno_db: float, bps: int, code_rate: float = 1.0) -> float:
    """
    Convert Eb/N0 (dB) to Es/N0 (dB) given bits-per-symbol and code rate.
    Es/N0 (dB) = Eb/N0 (dB) + 10*log10(bps) + 10*log10(code_rate).
    """
    return ebno_db + 10 * math.log10(bps) + 10 * math.log10(code_rate)


def snr_db_to_noise_var(snr_db: float) -> float:
    """
    Complex noise variance N0 for unit symbol energy: N0 = 10^(-SNR/10).
    An infinite SNR gives a noiseless channel.
    """
    return 10 ** (-snr_db / 10)


def snr_db_to_noise_sigma(snr_db: float) -> float:
    """
    Convert SNR in dB to per-quadrature Gaussian noise std dev,
    assuming unit symbol energy: N0 = 1 / (10^(SNR/10)), sigma = sqrt(N0/2).
    """
    n0 = snr_db_to_noise_var(snr_db)
    return math.sqrt(n0 / 2)
