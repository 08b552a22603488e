import numpy as np
from typing import Sequence
from utils import ConfigurationError

# 16 output levels for a 4-bit soft-input decoder
DEFAULT_LLR_BOUNDARIES = np.arange(-7, 8, dtype=np.float64)


class ScalarQuantizerEncoder:
    """
    Map real values to interval indices on an unbounded partition.

    With boundaries b_0 < b_1 < ... < b_{N-1} the output alphabet is 0..N.
    Index i covers (b_{i-1}, b_i]; everything <= b_0 saturates to 0 and
    everything > b_{N-1} saturates to N. A value exactly on a boundary
    therefore goes to the lower interval.
    """

    def __init__(self, boundary_points: Sequence[float] = DEFAULT_LLR_BOUNDARIES):
        bounds = np.asarray(boundary_points, dtype=np.float64).ravel()
        if bounds.size == 0:
            raise ConfigurationError("boundary_points must not be empty")
        if np.any(np.diff(bounds) <= 0):
            raise ConfigurationError("boundary_points must be strictly increasing")
        if bounds.size > 255:
            raise ConfigurationError("at most 255 boundary points fit a uint8 index")
        self.boundaries = bounds

    @property
    def n_levels(self) -> int:
        return self.boundaries.size + 1

    def quantize(self, values: np.ndarray) -> np.ndarray:
        values = np.asarray(values, dtype=np.float64)
        return np.searchsorted(self.boundaries, values, side="left").astype(np.uint8)
