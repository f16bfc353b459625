"""
Regional summary statistics by zonal aggregation.

Region membership is decided by cell centres falling inside the region
polygon. Masks are computed inside each region's bounding window, so memory
scales with region size rather than with the number of regions times the
domain size.

Statistics (all "pct" statistics are fractions in [0, 1]):

- abundance_mean: mean composite value of valid region cells.
- pct_population: region sum / domain sum of the composite.
- pct_region_occupied: region cells > 0 / valid region cells.
- pct_range_in_region: region cells > 0 / domain cells > 0.
- days_occupation: 7 x number of season weeks in which the fraction of
  region cells > 0 exceeds OCCUPANCY_THRESHOLD.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import xarray as xr
import geopandas as gpd
from pyproj import CRS
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from rasterio.windows import from_bounds
from shapely.geometry.base import BaseGeometry

from .errors import DomainMismatchError
from .seasons import season_weeks, week_dates
from .utils import aggregate_array, check_same_grid, grid_transform

logger = logging.getLogger(__name__)

# A region is occupied in a week when strictly more than this fraction of
# its cells has positive abundance
OCCUPANCY_THRESHOLD = 0.05

DAYS_PER_WEEK = 7

STATISTICS = (
    "abundance_mean",
    "pct_population",
    "pct_region_occupied",
    "pct_range_in_region",
    "days_occupation",
)


@dataclass(frozen=True)
class Region:
    """A polygon with a stable identifier."""

    region_id: object
    geometry: BaseGeometry


class RegionStat(NamedTuple):
    """One statistic for one region and period (season name or week number)."""

    region_id: object
    period: object
    statistic: str
    value: float


@dataclass(frozen=True)
class RegionMask:
    """Cells of a grid whose centres fall inside a region."""

    region_id: object
    rows: slice
    cols: slice
    mask: np.ndarray

    def extract(self, values: np.ndarray) -> np.ndarray:
        """Values of the region's cells as a flat array."""
        return values[self.rows, self.cols][self.mask]


@dataclass(frozen=True)
class WeekOccupancy:
    """
    Occupancy of every region in one week.

    Attributes
    ----------
    week : int
        1-indexed week number.
    date : date
        Anchor date of the week.
    season : str or None
        Season the week is assigned to.
    region_ids : tuple
        Region identifiers, aligned with the arrays below.
    fraction : np.ndarray
        Fraction of valid region cells with abundance > 0; 0 when the region
        has no valid cell that week.
    occupied : np.ndarray
        ``fraction > threshold``.
    abundance_mean : np.ndarray
        Mean abundance of valid region cells, NaN when none is valid.
    """

    week: int
    date: date
    season: Optional[str]
    region_ids: Tuple
    fraction: np.ndarray
    occupied: np.ndarray
    abundance_mean: np.ndarray


RegionsLike = Union[gpd.GeoDataFrame, Sequence[Region]]


def as_regions(regions: RegionsLike, crs=None, id_column: str = 'region_id') -> List[Region]:
    """
    Normalize regions to a list of Region.

    Parameters
    ----------
    regions : GeoDataFrame or sequence of Region
        Region polygons.
    crs : optional
        CRS of the grid. A GeoDataFrame in a different CRS is rejected.
    id_column : str, optional
        Identifier column of a GeoDataFrame. Default is 'region_id'.

    Raises
    ------
    DomainMismatchError
        If the regions are in a different CRS from the grid.
    """
    if isinstance(regions, gpd.GeoDataFrame):
        if crs is not None and regions.crs is not None:
            if CRS.from_user_input(crs) != CRS.from_user_input(regions.crs):
                raise DomainMismatchError(
                    f"Regions CRS {regions.crs} does not match grid CRS {crs}"
                )
        if id_column not in regions.columns:
            raise ValueError(f"Region id column '{id_column}' not found")
        return [Region(rid, geom) for rid, geom in zip(regions[id_column], regions.geometry)]
    return list(regions)


def region_masks(
    regions: Sequence[Region],
    transform: Affine,
    shape: Tuple[int, int]
) -> List[RegionMask]:
    """
    Rasterize regions against a grid, one bounding window per region.

    Parameters
    ----------
    regions : sequence of Region
        Region polygons in the grid CRS.
    transform : Affine
        North-up grid transform.
    shape : tuple
        (rows, cols) of the grid.

    Returns
    -------
    list of RegionMask
        One mask per region; regions outside the grid get an empty mask.
    """
    n_rows, n_cols = shape
    masks = []
    for region in regions:
        rows, cols = slice(0, 0), slice(0, 0)
        mask = np.zeros((0, 0), dtype=bool)
        if region.geometry is not None and not region.geometry.is_empty:
            minx, miny, maxx, maxy = region.geometry.bounds
            window = from_bounds(minx, miny, maxx, maxy, transform)
            r0 = max(int(np.floor(window.row_off)), 0)
            r1 = min(int(np.ceil(window.row_off + window.height)), n_rows)
            c0 = max(int(np.floor(window.col_off)), 0)
            c1 = min(int(np.ceil(window.col_off + window.width)), n_cols)
            if r1 > r0 and c1 > c0:
                rows, cols = slice(r0, r1), slice(c0, c1)
                mask = geometry_mask(
                    [region.geometry],
                    out_shape=(r1 - r0, c1 - c0),
                    transform=transform @ Affine.translation(c0, r0),
                    invert=True,
                )
        if not mask.any():
            logger.debug(f"Region {region.region_id} covers no cell centres")
        masks.append(RegionMask(region.region_id, rows, cols, mask))
    return masks


def _aggregated_shape(shape: Tuple[int, int], factor: int) -> Tuple[int, int]:
    return (-(-shape[0] // factor), -(-shape[1] // factor))


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else np.nan


def season_region_stats(
    values: np.ndarray,
    masks: Sequence[RegionMask],
    season: str,
) -> List[RegionStat]:
    """
    Abundance, population and range statistics of one composite per region.

    Parameters
    ----------
    values : np.ndarray
        Composite values (NaN = missing).
    masks : sequence of RegionMask
        Region masks for the grid of ``values``.
    season : str
        Season name used as the period.

    Returns
    -------
    list of RegionStat
        Four statistics per region. Zero denominators give NaN.
    """
    valid = ~np.isnan(values)
    domain_sum = float(values[valid].sum())
    domain_positive = int(np.sum(values > 0))

    records = []
    for m in masks:
        v = m.extract(values)
        v = v[~np.isnan(v)]
        n_valid = v.size
        n_positive = int(np.sum(v > 0))
        region_sum = float(v.sum())
        records.extend([
            RegionStat(m.region_id, season, 'abundance_mean', _ratio(region_sum, n_valid)),
            RegionStat(m.region_id, season, 'pct_population', _ratio(region_sum, domain_sum)),
            RegionStat(m.region_id, season, 'pct_region_occupied', _ratio(n_positive, n_valid)),
            RegionStat(m.region_id, season, 'pct_range_in_region',
                       _ratio(n_positive, domain_positive)),
        ])
    return records


def week_occupancy(
    values: np.ndarray,
    masks: Sequence[RegionMask],
    threshold: float = OCCUPANCY_THRESHOLD,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Occupied fraction, occupancy flag and mean abundance of each region.

    Regions without a valid cell have fraction 0 (not occupied) and NaN mean.

    Returns
    -------
    tuple
        Tuple of (fraction, occupied, abundance_mean) arrays.
    """
    fraction = np.zeros(len(masks), dtype=np.float64)
    mean = np.full(len(masks), np.nan, dtype=np.float64)
    for i, m in enumerate(masks):
        v = m.extract(values)
        v = v[~np.isnan(v)]
        if v.size > 0:
            fraction[i] = np.sum(v > 0) / v.size
            mean[i] = v.mean()
    return fraction, fraction > threshold, mean


def iter_week_occupancy(
    cube: xr.DataArray,
    regions: RegionsLike,
    labels: Optional[Sequence[Optional[str]]] = None,
    start_week: int = 1,
    weeks: Optional[Iterable[int]] = None,
    factor: int = 1,
    threshold: float = OCCUPANCY_THRESHOLD,
    id_column: str = 'region_id',
) -> Iterator[WeekOccupancy]:
    """
    Lazily classify region occupancy one week at a time.

    Only one band of the cube is loaded per step and nothing is carried
    between weeks, so a run can be resumed at any week boundary with
    ``start_week``.

    Parameters
    ----------
    cube : xr.DataArray
        Weekly cube with dims ('week', 'y', 'x').
    regions : GeoDataFrame or sequence of Region
        Region polygons in the cube CRS.
    labels : sequence, optional
        Season label per week, attached to each record.
    start_week : int, optional
        First 1-indexed week to process. Default is 1.
    weeks : iterable of int, optional
        Restrict processing to these 1-indexed weeks.
    factor : int, optional
        Aggregation factor applied to each band. Default is 1.
    threshold : float, optional
        Occupancy threshold. Default is OCCUPANCY_THRESHOLD.
    id_column : str, optional
        Identifier column when ``regions`` is a GeoDataFrame.

    Yields
    ------
    WeekOccupancy
        Occupancy of all regions for one week.
    """
    n_weeks = cube.sizes['week']
    if not 1 <= start_week <= n_weeks + 1:
        raise ValueError(f"start_week must be between 1 and {n_weeks + 1}, got {start_week}")
    if labels is not None and len(labels) != n_weeks:
        raise ValueError(f"Got {len(labels)} labels for a cube with {n_weeks} weeks")

    region_list = as_regions(regions, crs=cube.rio.crs, id_column=id_column)
    transform = grid_transform(cube)
    agg_transform = transform @ Affine.scale(factor)
    masks = region_masks(region_list, agg_transform, _aggregated_shape(cube.shape[1:], factor))
    region_ids = tuple(m.region_id for m in masks)
    dates = week_dates(n_weeks)
    selected = set(weeks) if weeks is not None else None

    for week in range(start_week, n_weeks + 1):
        if selected is not None and week not in selected:
            continue
        band = np.asarray(cube.isel(week=week - 1).values, dtype=np.float64)
        values, _ = aggregate_array(band, transform, factor)
        fraction, occupied, mean = week_occupancy(values, masks, threshold)
        logger.debug(f"Week {week}: {int(occupied.sum())} of {len(masks)} regions occupied")
        yield WeekOccupancy(
            week=week,
            date=dates[week - 1],
            season=labels[week - 1] if labels is not None else None,
            region_ids=region_ids,
            fraction=fraction,
            occupied=occupied,
            abundance_mean=mean,
        )


def days_of_occupation(
    cube: xr.DataArray,
    regions: RegionsLike,
    labels: Sequence[Optional[str]],
    seasons: Optional[Iterable[str]] = None,
    factor: int = 1,
    threshold: float = OCCUPANCY_THRESHOLD,
    id_column: str = 'region_id',
) -> pd.DataFrame:
    """
    Days each region is occupied in each season.

    Weeks are streamed with ``iter_week_occupancy``; only per-season counts
    are kept in memory.

    Parameters
    ----------
    cube : xr.DataArray
        Weekly cube.
    regions : GeoDataFrame or sequence of Region
        Region polygons.
    labels : sequence
        Season label per week.
    seasons : iterable of str, optional
        Seasons to report. Defaults to the labels present. Seasons without
        assigned weeks report 0 days.

    Returns
    -------
    pd.DataFrame
        Regions as index, seasons as columns, days as values.
    """
    seasons = list(seasons) if seasons is not None else list(
        dict.fromkeys(s for s in labels if s is not None)
    )
    weeks_by_season = season_weeks(labels)
    assigned = sorted(w for s in seasons for w in weeks_by_season.get(s, []))

    region_list = as_regions(regions, crs=cube.rio.crs, id_column=id_column)
    counts: Dict[str, np.ndarray] = {s: np.zeros(len(region_list), dtype=np.int64) for s in seasons}
    for occ in iter_week_occupancy(cube, region_list, labels, weeks=assigned,
                                   factor=factor, threshold=threshold):
        counts[occ.season] += occ.occupied

    days = pd.DataFrame(
        {s: counts[s] * DAYS_PER_WEEK for s in seasons},
        index=pd.Index([r.region_id for r in region_list], name='region_id'),
    )
    return days


def regional_stats(
    cube: xr.DataArray,
    composites: Mapping[str, xr.DataArray],
    labels: Sequence[Optional[str]],
    regions: RegionsLike,
    factor: int = 1,
    threshold: float = OCCUPANCY_THRESHOLD,
    id_column: str = 'region_id',
) -> pd.DataFrame:
    """
    Seasonal summary statistics for every region.

    Parameters
    ----------
    cube : xr.DataArray
        Weekly cube with dims ('week', 'y', 'x').
    composites : mapping
        Season name to composite grid on the cube grid.
    labels : sequence
        Season label per week.
    regions : GeoDataFrame or sequence of Region
        Region polygons in the cube CRS.
    factor : int, optional
        Aggregation factor applied to composites and weekly bands.
    threshold : float, optional
        Weekly occupancy threshold.
    id_column : str, optional
        Identifier column when ``regions`` is a GeoDataFrame.

    Returns
    -------
    pd.DataFrame
        Long table with columns region_id, season, statistic, value.
    """
    if composites:
        check_same_grid(cube.isel(week=0), *composites.values())

    region_list = as_regions(regions, crs=cube.rio.crs, id_column=id_column)
    transform = grid_transform(cube)
    agg_transform = transform @ Affine.scale(factor)
    masks = region_masks(region_list, agg_transform, _aggregated_shape(cube.shape[1:], factor))
    logger.info(f"Computing statistics for {len(masks)} regions and {len(composites)} seasons")

    records: List[RegionStat] = []
    for season, composite in composites.items():
        values, _ = aggregate_array(
            np.asarray(composite.values, dtype=np.float64), transform, factor
        )
        records.extend(season_region_stats(values, masks, season))

    days = days_of_occupation(cube, region_list, labels, seasons=list(composites),
                              factor=factor, threshold=threshold)
    for season in days.columns:
        for region_id, value in days[season].items():
            records.append(RegionStat(region_id, season, 'days_occupation', float(value)))

    return pd.DataFrame(records, columns=['region_id', 'season', 'statistic', 'value'])


def weekly_stats(
    cube: xr.DataArray,
    regions: RegionsLike,
    labels: Optional[Sequence[Optional[str]]] = None,
    factor: int = 1,
    threshold: float = OCCUPANCY_THRESHOLD,
    id_column: str = 'region_id',
) -> pd.DataFrame:
    """
    Weekly abundance and occupancy for every region.

    Returns
    -------
    pd.DataFrame
        Long table with columns region_id, week, date, season, statistic,
        value. Statistics are abundance_mean, pct_region_occupied and
        occupied (0 or 1).
    """
    rows = []
    for occ in iter_week_occupancy(cube, regions, labels, factor=factor,
                                   threshold=threshold, id_column=id_column):
        for i, region_id in enumerate(occ.region_ids):
            base = (region_id, occ.week, occ.date, occ.season)
            rows.append(base + ('abundance_mean', float(occ.abundance_mean[i])))
            rows.append(base + ('pct_region_occupied', float(occ.fraction[i])))
            rows.append(base + ('occupied', float(occ.occupied[i])))
    return pd.DataFrame(
        rows, columns=['region_id', 'week', 'date', 'season', 'statistic', 'value']
    )
