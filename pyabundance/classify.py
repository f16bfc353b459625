"""
Flags deciding how migration and year-round seasons are displayed.

Both flags are derived from the spatial overlap of the season composites;
the composites themselves are never modified.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

import numpy as np
import xarray as xr

from .errors import DegenerateRatioWarning, warn
from .utils import check_same_grid

logger = logging.getLogger(__name__)

# Minimum share of migration cells used by only one migration season for the
# two migrations to be shown separately
MIGRATION_SPLIT_THRESHOLD = 0.4

# Minimum share of annually occupied cells occupied in all four seasons for a
# year-round class to be shown
YEARROUND_THRESHOLD = 0.01

MIGRATION_SEASONS = ("prebreeding_migration", "postbreeding_migration")
FOUR_SEASONS = (
    "nonbreeding",
    "prebreeding_migration",
    "breeding",
    "postbreeding_migration",
)


@dataclass(frozen=True)
class SeasonFlags:
    """
    Display flags for a species.

    Attributes
    ----------
    split_migration : bool
        Show pre- and post-breeding migration as separate classes.
    show_yearround : bool
        Show a year-round class.
    migration_ratio : float, optional
        Share of exclusive migration cells, None if not computed.
    yearround_ratio : float, optional
        Share of annually occupied cells occupied year-round, None if not
        computed.
    """

    split_migration: bool
    show_yearround: bool
    migration_ratio: Optional[float] = None
    yearround_ratio: Optional[float] = None


def _present(grid: xr.DataArray) -> np.ndarray:
    # NaN compares False, so missing cells are never present
    return np.asarray(grid.values > 0)


def migration_overlap(
    prebreeding: xr.DataArray,
    postbreeding: xr.DataArray
) -> Optional[float]:
    """
    Share of migration cells occupied in exactly one migration season.

    Returns
    -------
    float or None
        n_just / n_all, or None if no cell is occupied in either season.
    """
    check_same_grid(prebreeding, postbreeding)
    pre = _present(prebreeding)
    post = _present(postbreeding)
    n_just = int(np.sum(pre & ~post) + np.sum(post & ~pre))
    n_all = int(np.sum(pre | post))
    logger.debug(f"Migration cells: {n_just} exclusive of {n_all}")
    if n_all == 0:
        return None
    return n_just / n_all


def _migration_flag(composites: Mapping[str, xr.DataArray]) -> Tuple[bool, Optional[float]]:
    if not all(s in composites for s in MIGRATION_SEASONS):
        return True, None
    ratio = migration_overlap(*(composites[s] for s in MIGRATION_SEASONS))
    if ratio is None:
        warn("No cells occupied in either migration season; migrations not split",
             DegenerateRatioWarning, logger)
        return False, None
    return ratio >= MIGRATION_SPLIT_THRESHOLD, ratio


def split_migration(composites: Mapping[str, xr.DataArray]) -> bool:
    """Whether pre- and post-breeding migration are shown separately."""
    split, ratio = _migration_flag(composites)
    logger.debug(f"split_migration={split} (ratio {ratio})")
    return split


def yearround_mask(composites: Mapping[str, xr.DataArray]) -> Optional[xr.DataArray]:
    """
    Cells with positive abundance in all four seasons.

    Returns
    -------
    xr.DataArray or None
        Boolean mask, or None if any of the four seasons is missing.
    """
    if not all(s in composites for s in FOUR_SEASONS):
        return None
    grids = [composites[s] for s in FOUR_SEASONS]
    check_same_grid(*grids)
    mask = np.logical_and.reduce([_present(g) for g in grids])
    return xr.DataArray(mask, dims=grids[0].dims, coords=grids[0].coords, name='year_round')


def yearround_overlap(
    composites: Mapping[str, xr.DataArray],
    annual: xr.DataArray
) -> Optional[float]:
    """
    Share of annually occupied cells occupied in all four seasons.

    Returns
    -------
    float or None
        n_yr / n_an, or None if no cell has positive annual abundance.
    """
    mask = yearround_mask(composites)
    check_same_grid(mask, annual)
    annual_present = _present(annual)
    n_yr = int(np.sum(mask.values & annual_present))
    n_an = int(np.sum(annual_present))
    logger.debug(f"Year-round cells: {n_yr} of {n_an} annually occupied")
    if n_an == 0:
        return None
    return n_yr / n_an


def classify_seasons(
    composites: Mapping[str, xr.DataArray],
    annual: Optional[xr.DataArray],
) -> SeasonFlags:
    """
    Compute the migration split and year-round flags.

    Parameters
    ----------
    composites : mapping
        Season name to composite grid, for seasons that passed review.
    annual : xr.DataArray, optional
        Annual composite. If None, the year-round flag is False.

    Returns
    -------
    SeasonFlags
        Derived flags and the ratios behind them.
    """
    split, migration_ratio = _migration_flag(composites)

    yearround_ratio = None
    show_yearround = False
    if annual is not None and all(s in composites for s in FOUR_SEASONS):
        yearround_ratio = yearround_overlap(composites, annual)
        if yearround_ratio is None:
            warn("No cells with positive annual abundance; year-round class not shown",
                 DegenerateRatioWarning, logger)
        else:
            show_yearround = yearround_ratio >= YEARROUND_THRESHOLD

    logger.info(f"Season flags: split_migration={split}, show_yearround={show_yearround}")
    return SeasonFlags(split, show_yearround, migration_ratio, yearround_ratio)
