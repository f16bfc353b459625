"""
Color-bin breakpoints for abundance maps.

Abundance values are strongly right-skewed: most occupied cells have low
abundance and a few cells have very high abundance. Breaks are placed at
equal intervals of a power transform of the positive values, with the
exponent chosen so that bins hold similar numbers of cells.

Zero is always a separate category and never takes part in placing breaks.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Tuple, Union

import numpy as np
import xarray as xr

from .errors import EmptyInputWarning, warn

logger = logging.getLogger(__name__)

# Number of bins for positive abundance
N_BINS = 9

# Candidate exponents for the power transform, searched in this order
POWER_CANDIDATES = tuple(np.round(np.arange(0.05, 1.0001, 0.05), 2))


@dataclass(frozen=True)
class BinSpec:
    """
    Breakpoints shared by one or more abundance grids.

    Attributes
    ----------
    breaks : tuple of float
        Strictly increasing breakpoints; ``len(breaks) - 1`` bins.
    power : float
        Exponent of the power transform the breaks are equally spaced in.
    """

    breaks: Tuple[float, ...]
    power: float

    @property
    def n_bins(self) -> int:
        return max(len(self.breaks) - 1, 0)

    def digitize(self, values: Union[np.ndarray, xr.DataArray]) -> np.ndarray:
        """
        Assign each value to a category.

        Returns
        -------
        np.ndarray
            -1 for missing, 0 for zero, 1..n_bins for positive values.
            Values outside the break range go to the first or last bin.
        """
        values = np.asarray(values, dtype=np.float64)
        out = np.full(values.shape, -1, dtype=np.int16)
        out[values == 0] = 0
        positive = values > 0
        if self.n_bins == 0:
            out[positive] = 1
            return out
        inner = np.asarray(self.breaks[1:-1])
        out[positive] = np.searchsorted(inner, values[positive], side='right') + 1
        return out


def positive_values(grids: Iterable[Union[np.ndarray, xr.DataArray]]) -> np.ndarray:
    """Pool the non-missing, strictly positive cell values of several grids."""
    pooled = []
    for grid in grids:
        values = np.asarray(grid, dtype=np.float64).ravel()
        pooled.append(values[values > 0])
    if not pooled:
        return np.array([], dtype=np.float64)
    return np.concatenate(pooled)


def power_breaks(values: np.ndarray, power: float, n_bins: int = N_BINS) -> np.ndarray:
    """
    Breaks at equal intervals of ``values ** power``.

    Parameters
    ----------
    values : np.ndarray
        Positive values.
    power : float
        Exponent in (0, 1].
    n_bins : int, optional
        Number of bins. Default is 9.

    Returns
    -------
    np.ndarray
        ``n_bins + 1`` breaks, ends pinned to the min and max of ``values``.
    """
    if not 0 < power <= 1:
        raise ValueError(f"Power must be in (0, 1], got {power}")
    vmin = float(values.min())
    vmax = float(values.max())
    breaks = np.linspace(vmin ** power, vmax ** power, n_bins + 1) ** (1.0 / power)
    breaks = np.clip(breaks, vmin, vmax)
    breaks[0] = vmin
    breaks[-1] = vmax
    return breaks


def bin_balance(values: np.ndarray, breaks: np.ndarray) -> float:
    """
    Coefficient of variation of bin populations (0 = perfectly balanced).
    """
    counts, _ = np.histogram(values, bins=breaks)
    mean = counts.mean()
    if mean == 0:
        return np.inf
    return float(counts.std() / mean)


def select_power(values: np.ndarray, n_bins: int = N_BINS) -> float:
    """
    Exponent giving the most balanced bin populations.

    Ties go to the first candidate in POWER_CANDIDATES.
    """
    scores = [bin_balance(values, power_breaks(values, p, n_bins)) for p in POWER_CANDIDATES]
    best = int(np.argmin(scores))
    logger.debug(f"Selected power {POWER_CANDIDATES[best]} (balance {scores[best]:.3f})")
    return float(POWER_CANDIDATES[best])


def calculate_bins(
    grids: Union[xr.DataArray, np.ndarray, Iterable[Union[xr.DataArray, np.ndarray]]],
    n_bins: int = N_BINS,
) -> BinSpec:
    """
    Calculate breakpoints usable across one or more composite grids.

    Parameters
    ----------
    grids : DataArray, ndarray or iterable of them
        Grids whose positive values are pooled.
    n_bins : int, optional
        Number of bins. Default is 9.

    Returns
    -------
    BinSpec
        Breakpoints and power. Breaks are deduplicated, so fewer than
        ``n_bins + 1`` breaks are returned when the data have few distinct
        values. Empty if no grid has a positive value.
    """
    if n_bins < 1:
        raise ValueError(f"n_bins must be >= 1, got {n_bins}")
    if isinstance(grids, (xr.DataArray, np.ndarray)):
        grids = [grids]

    values = positive_values(grids)
    if values.size == 0:
        warn("No positive abundance values; returning empty bins", EmptyInputWarning, logger)
        return BinSpec(breaks=(), power=1.0)

    if values.min() == values.max():
        logger.info("All positive values are equal; using a single bin")
        return BinSpec(breaks=(float(values.min()),), power=1.0)

    power = select_power(values, n_bins)
    breaks = np.unique(power_breaks(values, power, n_bins))
    logger.info(f"Calculated {len(breaks) - 1} bins with power {power} from {values.size} cells")
    return BinSpec(breaks=tuple(float(b) for b in breaks), power=power)
