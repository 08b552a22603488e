import logging
import numpy as np
from typing import Optional

from utils import snr_db_to_noise_sigma, snr_db_to_noise_var

log = logging.getLogger(__name__)


def apply_awgn(
    data: np.ndarray,
    snr_db: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Add complex AWGN to a signal to achieve the specified SNR (in dB).

    Parameters
    ----------
    data
        Input complex baseband signal.
    snr_db
        Desired SNR in dB (Es/N0, assuming unit symbol energy).
    rng
        Numpy random Generator for reproducibility.

    Returns
    -------
    noisy_signal : np.ndarray
        data + complex Gaussian noise with per-quadrature sigma.
    """
    sigma = snr_db_to_noise_sigma(snr_db)
    noise = rng.normal(0.0, sigma, size=data.shape) + 1j * rng.normal(0.0, sigma, size=data.shape)
    return data + noise


class AWGNChannel:
    """
    Stateful AWGN channel.

    The noise generator keeps running across blocks and across Eb/No
    points; it only restarts when `reseed` is called.
    """

    def __init__(self, seed=None, snr_db: float = np.inf):
        self.rng = np.random.default_rng(seed)
        self.snr_db = snr_db

    @property
    def noise_var(self) -> float:
        return snr_db_to_noise_var(self.snr_db)

    def reseed(self, seed) -> None:
        log.debug("AWGN channel reseeded")
        self.rng = np.random.default_rng(seed)

    def transmit(self, symbols: np.ndarray, snr_db: Optional[float] = None) -> np.ndarray:
        """
        Pass symbols through the channel. When `snr_db` is given it replaces
        the configured SNR for this and later calls.
        """
        if snr_db is not None:
            self.snr_db = snr_db
        return apply_awgn(np.asarray(symbols, dtype=np.complex128), self.snr_db, self.rng)
