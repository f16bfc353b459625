"""
Seasonal and annual composites of a weekly abundance cube.
"""

import logging
from typing import Dict, Iterable, Optional, Sequence

import numpy as np
import xarray as xr
from dask import delayed, compute
from dask.diagnostics import ProgressBar

from .errors import EmptyInputWarning, warn
from .seasons import filter_cube

logger = logging.getLogger(__name__)


def mean_ignoring_missing(stack: xr.DataArray, dim: str = 'week') -> xr.DataArray:
    """
    Cell-wise mean over ``dim``, ignoring NaN.

    A cell stays NaN only if every value along ``dim`` is NaN, which keeps
    "never predicted" distinct from "predicted zero".

    Parameters
    ----------
    stack : xr.DataArray
        Stack of grids.
    dim : str, optional
        Dimension to reduce. Default is 'week'.

    Returns
    -------
    xr.DataArray
        Composite grid.
    """
    total = stack.sum(dim=dim, skipna=True)
    count = stack.count(dim=dim)
    with np.errstate(divide='ignore', invalid='ignore'):
        composite = (total / count).where(count > 0)
    return composite.astype(np.float64)


def _season_composite(working: xr.DataArray, season: str) -> xr.DataArray:
    bands = working.isel(week=np.flatnonzero(working['season'].values == season))
    logger.debug(f"Compositing {season} from {bands.sizes['week']} weeks")
    composite = mean_ignoring_missing(bands).compute()
    composite = composite.drop_vars(
        [c for c in ('season', 'date') if c in composite.coords]
    )
    composite.name = season
    composite.attrs = {
        'long_name': 'relative_abundance',
        'season': season,
        'n_weeks': int(bands.sizes['week']),
    }
    return composite


def season_composites(
    cube: xr.DataArray,
    labels: Sequence[Optional[str]],
    expected: Optional[Iterable[str]] = None,
    n_workers: Optional[int] = None,
) -> Dict[str, xr.DataArray]:
    """
    Composite the weekly bands of each season.

    Unassigned weeks are dropped before compositing. Seasons are
    independent, so they can be computed in parallel with dask.

    Parameters
    ----------
    cube : xr.DataArray
        Weekly cube with dims ('week', 'y', 'x').
    labels : sequence
        Season label (or None) for every week of ``cube``.
    expected : iterable of str, optional
        Seasons that passed review. Any of them without assigned weeks is
        reported with an EmptyInputWarning and left out of the result.
    n_workers : int, optional
        Number of dask workers. If None, seasons are composited
        sequentially.

    Returns
    -------
    dict
        Mapping of season name to composite grid, in order of first
        appearance in ``labels``.
    """
    working = filter_cube(cube, labels)
    seasons = list(dict.fromkeys(label for label in labels if label is not None))

    for season in expected or ():
        if season not in seasons:
            warn(f"Season '{season}' has no assigned weeks; composite omitted",
                 EmptyInputWarning, logger)

    if n_workers is None:
        results = [_season_composite(working, s) for s in seasons]
    else:
        logger.info(f"Compositing {len(seasons)} seasons with {n_workers} workers")
        tasks = [delayed(_season_composite)(working, s) for s in seasons]
        with ProgressBar():
            results = compute(*tasks, num_workers=n_workers)

    return dict(zip(seasons, results))


def annual_composite(cube: xr.DataArray) -> xr.DataArray:
    """
    Mean over all weekly bands of the unfiltered cube, ignoring NaN.

    Parameters
    ----------
    cube : xr.DataArray
        Full weekly cube.

    Returns
    -------
    xr.DataArray
        Annual composite grid.
    """
    composite = mean_ignoring_missing(cube).compute()
    composite = composite.drop_vars([c for c in ('season', 'date') if c in composite.coords])
    composite.name = 'annual'
    composite.attrs = {
        'long_name': 'relative_abundance',
        'season': 'annual',
        'n_weeks': int(cube.sizes['week']),
    }
    return composite
